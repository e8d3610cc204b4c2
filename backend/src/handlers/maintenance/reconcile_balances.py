"""
Reconcile Balances Handler.
POST /admin/reconcile/balances

Body (optional): {"workerId": "...", "dryRun": true}
Without workerId every worker is checked.
"""
from shared.auth import require_admin
from shared.reconciliation import Reconciler
from shared.utils import api_handler, parse_body


@api_handler
def handler(event, context):
    require_admin(event)
    body = parse_body(event)

    report = Reconciler().reconcile_balances(
        worker_id=body.get('workerId'),
        dry_run=bool(body.get('dryRun', False)),
    )
    return 200, report.to_dict()
