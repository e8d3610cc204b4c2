"""
Get Wallet Handler.
GET /worker/wallet

Cached balance plus the ledger entries and payouts behind it.
"""
from shared.auth import authenticated
from shared.ledger import Ledger
from shared.store import WorkStore
from shared.utils import api_handler


@api_handler
def handler(event, context):
    worker = authenticated(event)
    store = WorkStore()

    account = store.get_worker(worker.id)
    entries = Ledger().entries(worker.id)

    return 200, {
        'workerId': worker.id,
        'balanceCents': account.total_earnings_cents,
        'currency': 'USD',
        'entries': [entry.to_item() for entry in reversed(entries)],
        'payments': [payment.to_item() for payment in store.payments_for_worker(worker.id)],
    }
