"""
Claim Work Handler.
POST /worker/work-items/claim

Body (optional): {"workItemId": "...", "poolId": "..."}
Without workItemId the oldest available item (in the pool, if given) is leased.
"""
from shared.auth import authenticated
from shared.leases import LeaseManager
from shared.store import WorkStore
from shared.utils import api_handler, parse_body


@api_handler
def handler(event, context):
    worker = authenticated(event)
    body = parse_body(event)

    store = WorkStore()
    lease = LeaseManager(store=store).claim(
        worker.id,
        pool_id=body.get('poolId'),
        work_item_id=body.get('workItemId'),
    )
    work_item = store.get_work_item(lease.work_item_id)

    return 201, {
        'message': 'Work item claimed',
        'lease': lease.to_item(),
        'workItem': work_item.to_item() if work_item else None,
    }
