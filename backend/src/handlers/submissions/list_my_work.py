"""
List My Work Handler.
GET /worker/my-work

The caller's active leases with their work item, signed audio URL and draft.
"""
from shared.auth import authenticated
from shared.leases import LeaseManager
from shared.storage import signed_read_url
from shared.utils import api_handler


@api_handler
def handler(event, context):
    worker = authenticated(event)

    items = []
    for entry in LeaseManager().my_work(worker.id):
        items.append({
            'lease': entry.lease.to_item(),
            'workItem': entry.work_item.to_item() if entry.work_item else None,
            'url': signed_read_url(entry.work_item.storage_ref) if entry.work_item else None,
            'draft': entry.draft.to_item() if entry.draft else None,
        })

    return 200, {'items': items}
