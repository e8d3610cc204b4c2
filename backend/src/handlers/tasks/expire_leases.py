"""
Expire Leases Handler.
Triggered by the EventBridge schedule, and by admins via POST /admin/leases/expire.

Closes leases past their expiresAt and returns their items to the pool.
"""
from shared.auth import require_admin
from shared.leases import LeaseManager
from shared.logging import logger
from shared.utils import api_handler


def handler(event, context):
    if event.get('source') == 'aws.events':
        expired = LeaseManager().expire_stale()
        logger.info(f"Scheduled lease sweep expired {expired} lease(s)")
        return {'expired': expired}
    return api(event, context)


@api_handler
def api(event, context):
    require_admin(event)
    return 200, {'expired': LeaseManager().expire_stale()}
