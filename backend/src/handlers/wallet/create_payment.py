"""
Create Payment Handler.
POST /admin/payments

Body: {"workerId": "...", "amountCents": 1200, "currency": "USD", "reference": "...", "notes": "..."}
"""
from shared.auth import require_admin
from shared.errors import ValidationError
from shared.ledger import Ledger
from shared.utils import api_handler, parse_body, require_fields


@api_handler
def handler(event, context):
    require_admin(event)
    body = parse_body(event)
    worker_id, amount = require_fields(body, 'workerId', 'amountCents')

    try:
        amount_cents = int(amount)
    except (TypeError, ValueError):
        raise ValidationError('amountCents must be a positive integer')

    payment = Ledger().create_payment(
        worker_id,
        amount_cents,
        currency=body.get('currency', 'USD'),
        reference=body.get('reference'),
        notes=body.get('notes'),
    )
    return 201, {'payment': payment.to_item()}
