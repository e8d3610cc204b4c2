"""
Reconcile Statuses Handler.
POST /admin/reconcile/statuses
"""
from shared.auth import require_admin
from shared.reconciliation import Reconciler
from shared.utils import api_handler


@api_handler
def handler(event, context):
    require_admin(event)
    fixed = Reconciler().reconcile_statuses()
    return 200, {'fixed': fixed, 'total': sum(fixed.values())}
