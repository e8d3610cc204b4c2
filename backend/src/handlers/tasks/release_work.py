"""
Release Work Handler.
POST /worker/leases/{leaseId}/release

Idempotent: releasing an already-closed lease returns alreadyReleased.
"""
from shared.auth import authenticated
from shared.errors import ValidationError
from shared.leases import LeaseManager
from shared.utils import api_handler, get_path_param


@api_handler
def handler(event, context):
    worker = authenticated(event)
    lease_id = get_path_param(event, 'leaseId')
    if not lease_id:
        raise ValidationError('Missing leaseId')

    result = LeaseManager().release(lease_id, worker.id)

    return 200, {
        'lease': result.lease.to_item(),
        'alreadyReleased': result.already_released,
        'itemReopened': result.item_reopened,
    }
