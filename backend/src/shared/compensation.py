"""
Compensation engine: prices approved work and credits the worker's ledger.

Pay is fixed by the work item's duration and the active rate plan:
every started minute is billed, with a one-minute minimum.

The engine does not look for an earlier credit for the same item. Paying
exactly once relies on the review gate never approving an item twice.
"""
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from boto3.dynamodb.conditions import Attr
from .config import config as default_config
from .logging import logger
from .models import LedgerEntry, LedgerEntryKind, RatePlan, Review
from .errors import NoActiveRatePlan
from .ledger import Ledger
from .utils import now_epoch
from . import dynamo


def calc_cents_for_duration(duration_seconds: int, rate_per_minute_cents: int) -> int:
    """
    Amount owed for a work item.

    60s bills one minute, 61s bills two, and anything at or under a minute
    (including zero) bills one.
    """
    minutes = max(1, math.ceil(int(duration_seconds) / 60))
    return minutes * int(rate_per_minute_cents)


class DynamoRatePlanResolver:
    """Active rate plan from the rate plans table: the newest plan flagged active."""

    def __init__(self, settings=None):
        self.settings = settings or default_config

    def active_rate_plan(self) -> RatePlan:
        items = dynamo.scan(self.settings.RATE_PLANS_TABLE, filter_expression=Attr('active').eq(True))
        if not items:
            raise NoActiveRatePlan()
        plans = sorted((RatePlan.from_item(item) for item in items), key=lambda p: p.created_at)
        return plans[-1]


class FixedRatePlanResolver:
    """Resolver pinned to one plan, or to none."""

    def __init__(self, plan: Optional[RatePlan]):
        self.plan = plan

    def active_rate_plan(self) -> RatePlan:
        if self.plan is None:
            raise NoActiveRatePlan()
        return self.plan


@dataclass
class CreditPlan:
    """Priced ledger entry plus the transaction operations that book it."""
    amount_cents: int
    entry: LedgerEntry
    operations: List[Dict[str, Any]]
    rate_plan: Optional[RatePlan] = None


class CompensationEngine:
    """Credits approved work at the rate supplied by the injected resolver."""

    def __init__(self, resolver, ledger: Optional[Ledger] = None, settings=None,
                 clock: Callable[[], int] = now_epoch):
        self.resolver = resolver
        self.settings = settings or default_config
        self.clock = clock
        self.ledger = ledger or Ledger(self.settings, clock=clock)

    def prepare_credit(
        self,
        worker_id: str,
        work_item_id: str,
        duration_seconds: int,
        submission_id: Optional[str] = None
    ) -> CreditPlan:
        """
        Price the work and build the ledger writes without executing them, so
        the approval transaction can include them.

        Raises:
            NoActiveRatePlan: no plan is active; approval must not proceed
        """
        plan = self.resolver.active_rate_plan()
        amount_cents = calc_cents_for_duration(duration_seconds, plan.rate_per_minute_cents)
        entry = self.ledger.new_entry(
            worker_id=worker_id,
            delta_cents=amount_cents,
            description=f'Approved transcription for work item {work_item_id}',
            kind=LedgerEntryKind.APPROVAL_CREDIT,
            work_item_id=work_item_id,
            submission_id=submission_id,
        )
        return CreditPlan(amount_cents, entry, self.ledger.entry_operations(entry), plan)

    def credit(self, worker_id: str, work_item_id: str, duration_seconds: int) -> int:
        """Append one credit entry and increment the cached balance, atomically."""
        credit_plan = self.prepare_credit(worker_id, work_item_id, duration_seconds)
        dynamo.transact_write(credit_plan.operations)
        logger.info(
            f"Credited worker {worker_id} {credit_plan.amount_cents} cents for work item {work_item_id} "
            f"({duration_seconds}s at {credit_plan.rate_plan.rate_per_minute_cents} cents/min)"
        )
        return credit_plan.amount_cents

    def prepare_reversal(self, review: Review, worker_id: str, work_item_id: str) -> Optional[CreditPlan]:
        """
        Compensating entry for a reverted approval: the negative of what the
        approval credited. Reviews written without a recorded credit reverse
        nothing.
        """
        if not review.credited_cents:
            return None
        entry = self.ledger.new_entry(
            worker_id=worker_id,
            delta_cents=-abs(review.credited_cents),
            description=f'Reverted approval for work item {work_item_id}',
            kind=LedgerEntryKind.APPROVAL_REVERSAL,
            work_item_id=work_item_id,
            submission_id=review.submission_id,
        )
        return CreditPlan(entry.delta_cents, entry, self.ledger.entry_operations(entry))
