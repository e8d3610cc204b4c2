"""
Report Broken Handler.
POST /worker/work-items/{workItemId}/report

Marks the item FAILED (unusable audio) and closes its open leases.
"""
from shared.auth import authenticated
from shared.errors import ValidationError
from shared.leases import LeaseManager
from shared.utils import api_handler, get_path_param


@api_handler
def handler(event, context):
    worker = authenticated(event)
    work_item_id = get_path_param(event, 'workItemId')
    if not work_item_id:
        raise ValidationError('Missing workItemId')

    work_item = LeaseManager().report_broken(work_item_id, worker.id)
    return 200, {'workItem': work_item.to_item()}
