"""
Ingest Work Items Handler.
POST /admin/work-items

Body: {"poolId": "...", "items": [{"durationSeconds": 90, "storageRef": "audio/0001.wav"}, ...]}
Creates AVAILABLE items; list position becomes the ordinal that breaks
createdAt ties when items are claimed. Ids already in use are refused (409).
"""
import uuid
from shared.auth import require_admin
from shared.errors import ValidationError
from shared.logging import logger
from shared.models import WorkItem, WorkItemStatus
from shared.store import WorkStore
from shared.utils import api_handler, parse_body, now_epoch


def build_work_items(items_data, pool_id=None, created_at=None):
    """Validate the request items and turn them into new AVAILABLE work items."""
    if not items_data:
        raise ValidationError('No items provided')

    created_at = now_epoch() if created_at is None else created_at
    work_items = []
    for index, item_input in enumerate(items_data):
        try:
            duration = int(item_input.get('durationSeconds'))
        except (AttributeError, TypeError, ValueError):
            raise ValidationError(f'Item {index}: durationSeconds must be an integer', index=index)
        if duration < 0:
            raise ValidationError(f'Item {index}: durationSeconds must not be negative', index=index)

        work_items.append(WorkItem(
            work_item_id=item_input.get('workItemId') or str(uuid.uuid4()),
            status=WorkItemStatus.AVAILABLE,
            duration_seconds=duration,
            created_at=created_at,
            ordinal=int(item_input.get('ordinal', index)),
            pool_id=item_input.get('poolId') or pool_id,
            storage_ref=item_input.get('storageRef'),
            updated_at=created_at,
        ))
    return work_items


@api_handler
def handler(event, context):
    admin = require_admin(event)
    body = parse_body(event)

    work_items = build_work_items(body.get('items'), pool_id=body.get('poolId'))
    WorkStore().put_work_items(work_items)

    logger.info(f"Admin {admin.id} ingested {len(work_items)} work item(s) into pool {body.get('poolId')}")
    return 201, {
        'message': f'Created {len(work_items)} work items',
        'workItemIds': [w.work_item_id for w in work_items],
    }
