"""
Worker ledger: append-only signed deltas, the only source of truth for
balances.

Every append writes the entry and increments the worker's cached
totalEarningsCents in the same transaction. Entries are never updated or
deleted; corrections are new entries.
"""
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional
from boto3.dynamodb.conditions import Key
from .config import config as default_config
from .logging import logger
from .models import LedgerEntry, LedgerEntryKind, Payment, PaymentStatus
from .errors import PaymentNotFound, InvalidState, ValidationError, ConcurrentModification
from .schema import WORKER_INDEX
from .utils import now_epoch
from . import dynamo


class Ledger:
    """Append and read ledger entries."""

    def __init__(self, settings=None, clock: Callable[[], int] = now_epoch):
        self.settings = settings or default_config
        self.clock = clock

    def new_entry(
        self,
        worker_id: str,
        delta_cents: int,
        description: str,
        kind: str,
        work_item_id: Optional[str] = None,
        submission_id: Optional[str] = None,
        related_payment_id: Optional[str] = None,
        created_at: Optional[int] = None
    ) -> LedgerEntry:
        return LedgerEntry(
            entry_id=str(uuid.uuid4()),
            worker_id=worker_id,
            delta_cents=int(delta_cents),
            description=description,
            created_at=self.clock() if created_at is None else created_at,
            kind=kind,
            work_item_id=work_item_id,
            submission_id=submission_id,
            related_payment_id=related_payment_id,
        )

    def entry_operations(self, entry: LedgerEntry) -> List[Dict[str, Any]]:
        """Transaction operations that append `entry` and move the cached balance with it."""
        return [
            dynamo.put_op(
                self.settings.LEDGER_TABLE,
                entry.to_item(),
                condition='attribute_not_exists(#entryId)'
            ),
            dynamo.update_op(
                self.settings.WORKERS_TABLE,
                {'workerId': entry.worker_id},
                add={'totalEarningsCents': entry.delta_cents},
            ),
        ]

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        dynamo.transact_write(self.entry_operations(entry))
        logger.info(f"Ledger {entry.kind} {entry.delta_cents:+d} cents for worker {entry.worker_id}")
        return entry

    def entries(self, worker_id: str) -> List[LedgerEntry]:
        """A worker's entries, oldest first."""
        items = dynamo.query(
            self.settings.LEDGER_TABLE,
            index_name=WORKER_INDEX,
            key_condition=Key('workerId').eq(worker_id),
        )
        return [LedgerEntry.from_item(item) for item in items]

    def balance(self, worker_id: str) -> int:
        return sum(entry.delta_cents for entry in self.entries(worker_id))

    def balances(self) -> Dict[str, int]:
        """Ledger sum for every worker that has at least one entry."""
        totals = defaultdict(int)
        for item in dynamo.scan(self.settings.LEDGER_TABLE):
            entry = LedgerEntry.from_item(item)
            totals[entry.worker_id] += entry.delta_cents
        return dict(totals)

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    def create_payment(
        self,
        worker_id: str,
        amount_cents: int,
        currency: str = 'USD',
        reference: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Payment:
        """Open a pending payout run for a worker. Nothing is debited until it is paid."""
        if int(amount_cents) <= 0:
            raise ValidationError('amountCents must be a positive integer')

        payment = Payment(
            payment_id=str(uuid.uuid4()),
            worker_id=worker_id,
            amount_cents=int(amount_cents),
            status=PaymentStatus.PENDING,
            created_at=self.clock(),
            currency=currency,
            reference=reference,
            notes=notes,
        )
        dynamo.transact_write([
            dynamo.put_op(
                self.settings.PAYMENTS_TABLE,
                payment.to_item(),
                condition='attribute_not_exists(#paymentId)'
            )
        ])
        logger.info(f"Created payment {payment.payment_id} of {payment.amount_cents} cents for worker {worker_id}")
        return payment

    def mark_payment_paid(self, payment_id: str, notes: Optional[str] = None) -> LedgerEntry:
        """
        Mark a pending payment PAID and debit the worker's ledger by the same
        amount, atomically.
        """
        item = dynamo.get_item(self.settings.PAYMENTS_TABLE, {'paymentId': payment_id})
        if not item:
            raise PaymentNotFound(paymentId=payment_id)
        payment = Payment.from_item(item)
        if payment.status != PaymentStatus.PENDING:
            raise InvalidState(f'Payment is already {payment.status}', paymentId=payment_id)

        now = self.clock()
        entry = self.new_entry(
            worker_id=payment.worker_id,
            delta_cents=-abs(payment.amount_cents),
            description=f'Payout for payment {payment.payment_id}',
            kind=LedgerEntryKind.PAYOUT,
            related_payment_id=payment.payment_id,
            created_at=now,
        )
        set_fields = {'status': PaymentStatus.PAID, 'paidAt': now}
        if notes is not None:
            set_fields['notes'] = notes

        operations = [
            dynamo.update_op(
                self.settings.PAYMENTS_TABLE,
                {'paymentId': payment_id},
                set_fields=set_fields,
                condition='#status = :pending',
                condition_values={':pending': PaymentStatus.PENDING},
            )
        ] + self.entry_operations(entry)

        try:
            dynamo.transact_write(operations)
        except dynamo.TransactionConflict:
            current = Payment.from_item(dynamo.get_item(self.settings.PAYMENTS_TABLE, {'paymentId': payment_id}))
            if current.status != PaymentStatus.PENDING:
                raise InvalidState(f'Payment is already {current.status}', paymentId=payment_id)
            raise ConcurrentModification(paymentId=payment_id)

        logger.info(f"Payment {payment_id} paid: {entry.delta_cents} cents for worker {payment.worker_id}")
        return entry
