"""
Return To Pool Handler.
POST /admin/work-items/{workItemId}/return
"""
from shared.auth import require_admin
from shared.errors import ValidationError
from shared.leases import LeaseManager
from shared.utils import api_handler, get_path_param


@api_handler
def handler(event, context):
    require_admin(event)
    work_item_id = get_path_param(event, 'workItemId')
    if not work_item_id:
        raise ValidationError('Missing workItemId')

    work_item = LeaseManager().return_to_pool(work_item_id)
    return 200, {'workItem': work_item.to_item()}
