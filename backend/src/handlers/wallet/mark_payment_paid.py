"""
Mark Payment Paid Handler.
POST /admin/payments/{paymentId}/paid

Debits the worker's ledger by the payment amount.
"""
from shared.auth import require_admin
from shared.errors import ValidationError
from shared.ledger import Ledger
from shared.utils import api_handler, get_path_param, parse_body


@api_handler
def handler(event, context):
    require_admin(event)
    payment_id = get_path_param(event, 'paymentId')
    if not payment_id:
        raise ValidationError('Missing paymentId')

    entry = Ledger().mark_payment_paid(payment_id, notes=parse_body(event).get('notes'))
    return 200, {'paymentId': payment_id, 'ledgerEntry': entry.to_item()}
