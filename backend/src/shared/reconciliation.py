"""
Reconciliation sweeps: heal stored work item statuses and cached balances
against their ground truth.

Item status is a cache of what the leases, submissions and approval pointer
say. The cached balance is a cache of the ledger sum. Both can drift when a
write path fails half way or an operator edits a row; these sweeps put them
back. Each correction is conditional on the value the sweep observed, so a
concurrent writer wins and the next run looks again.
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set
from .config import config as default_config
from .logging import logger
from .models import Lease, Submission, WorkItem, WorkItemStatus
from .ledger import Ledger
from .store import WorkStore
from .utils import now_epoch
from . import dynamo


@dataclass
class BalanceDiff:
    worker_id: str
    cached_cents: int
    ledger_cents: int

    @property
    def diff_cents(self) -> int:
        return self.ledger_cents - self.cached_cents

    def to_dict(self) -> dict:
        return {
            'workerId': self.worker_id,
            'cachedCents': self.cached_cents,
            'ledgerCents': self.ledger_cents,
            'diffCents': self.diff_cents,
        }


@dataclass
class BalanceReport:
    checked: int = 0
    fixed: int = 0
    dry_run: bool = False
    diffs: List[BalanceDiff] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'checked': self.checked,
            'fixed': self.fixed,
            'dryRun': self.dry_run,
            'diffs': [diff.to_dict() for diff in self.diffs],
        }


class Reconciler:

    def __init__(self, store: Optional[WorkStore] = None, ledger: Optional[Ledger] = None,
                 settings=None, clock: Callable[[], int] = now_epoch):
        self.settings = settings or default_config
        self.store = store or WorkStore(self.settings)
        self.ledger = ledger or Ledger(self.settings, clock=clock)
        self.clock = clock

    # ------------------------------------------------------------------
    # Statuses
    # ------------------------------------------------------------------

    def reconcile_statuses(self) -> Dict[str, int]:
        """
        Derive each item's status (APPROVED > SUBMITTED > ASSIGNED > AVAILABLE)
        and correct the ones that disagree.

        A table-wide snapshot of leases and pending submissions picks the
        candidates. Each candidate is then re-read on its own, item first, and
        only corrected if the fresh reads still disagree. The write is
        conditional on the status, pointer and lease the re-read observed, and
        on the lease it displaces being released or expired.

        Returns:
            Count of corrected items per target status
        """
        now = self.clock()
        pending_items: Set[str] = {s.work_item_id for s in self.store.pending_submissions()}
        holding: Dict[str, str] = {}
        for lease in self.store.unreleased_leases():
            if lease.is_active(now):
                holding.setdefault(lease.work_item_id, lease.lease_id)

        fixed = Counter()
        for work_item in self.store.all_work_items():
            target, lease_id = self._derive_from_snapshot(work_item, pending_items, holding)
            if self._agrees(work_item, target, lease_id):
                continue

            work_item = self.store.get_work_item(work_item.work_item_id)
            if work_item is None:
                continue
            target, lease_id = self._derive(
                work_item,
                self.store.leases_for_item(work_item.work_item_id),
                self.store.submissions_for_item(work_item.work_item_id),
                now,
            )
            if self._agrees(work_item, target, lease_id):
                continue
            if self._correct(work_item, target, lease_id, now):
                fixed[target] += 1

        if fixed:
            logger.warning(f"Status reconciliation corrected {sum(fixed.values())} item(s): {dict(fixed)}")
        else:
            logger.info("Status reconciliation found nothing to correct")
        return dict(fixed)

    @staticmethod
    def _agrees(work_item: WorkItem, target: str, lease_id: Optional[str]) -> bool:
        return work_item.status == target and work_item.active_lease_id == lease_id

    @staticmethod
    def _derive_from_snapshot(work_item: WorkItem, pending_items: Set[str], holding: Dict[str, str]):
        if work_item.approved_submission_id:
            return WorkItemStatus.APPROVED, None
        if work_item.work_item_id in pending_items:
            return WorkItemStatus.SUBMITTED, None
        if work_item.work_item_id in holding:
            return WorkItemStatus.ASSIGNED, holding[work_item.work_item_id]
        return WorkItemStatus.AVAILABLE, None

    @staticmethod
    def _derive(work_item: WorkItem, leases: List[Lease], submissions: List[Submission], now: int):
        if work_item.approved_submission_id:
            return WorkItemStatus.APPROVED, None
        if any(s.is_pending_review for s in submissions):
            return WorkItemStatus.SUBMITTED, None
        active = sorted((lease for lease in leases if lease.is_active(now)), key=lambda l: l.created_at)
        if active:
            # Keep the item's own lease when it is one of the live ones
            held = [lease for lease in active if lease.lease_id == work_item.active_lease_id]
            return WorkItemStatus.ASSIGNED, (held or active)[0].lease_id
        return WorkItemStatus.AVAILABLE, None

    def _correct(self, work_item: WorkItem, target: str, lease_id: Optional[str], now: int) -> bool:
        set_fields = {'status': target, 'updatedAt': now}
        remove = None
        if lease_id:
            set_fields['activeLeaseId'] = lease_id
        else:
            remove = ['activeLeaseId']

        # Pointer and lease state must be what the derivation saw
        conditions = ['#status = :seen_status']
        values = {':seen_status': work_item.status}
        if work_item.approved_submission_id:
            conditions.append('#approvedSubmissionId = :pointer')
            values[':pointer'] = work_item.approved_submission_id
        else:
            conditions.append('attribute_not_exists(#approvedSubmissionId)')
        if work_item.active_lease_id:
            conditions.append('#activeLeaseId = :seen_lease')
            values[':seen_lease'] = work_item.active_lease_id
        else:
            conditions.append('attribute_not_exists(#activeLeaseId)')

        operations = [
            dynamo.update_op(
                self.settings.WORK_ITEMS_TABLE,
                {'workItemId': work_item.work_item_id},
                set_fields=set_fields,
                remove=remove,
                condition=' AND '.join(conditions),
                condition_values=values,
            )
        ]
        if target == WorkItemStatus.AVAILABLE and work_item.active_lease_id:
            # Reopening: the displaced lease must no longer hold the item
            operations.append(dynamo.condition_check_op(
                self.settings.LEASES_TABLE,
                {'leaseId': work_item.active_lease_id},
                'attribute_not_exists(#leaseId) OR attribute_exists(#releasedAt) OR #expiresAt <= :now',
                {':now': now},
            ))
        if lease_id and lease_id != work_item.active_lease_id:
            operations.append(dynamo.condition_check_op(
                self.settings.LEASES_TABLE,
                {'leaseId': lease_id},
                'attribute_not_exists(#releasedAt) AND #expiresAt > :now',
                {':now': now},
            ))

        try:
            dynamo.transact_write(operations)
        except dynamo.TransactionConflict:
            logger.info(f"Skipped work item {work_item.work_item_id}: changed during reconciliation")
            return False

        logger.info(f"Work item {work_item.work_item_id}: {work_item.status} -> {target}")
        return True

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def reconcile_balances(self, worker_id: Optional[str] = None, dry_run: bool = False) -> BalanceReport:
        """
        Compare each cached balance with its ledger sum and overwrite the
        cache where they differ. The ledger is never written.
        """
        if worker_id:
            workers = {worker_id: self.store.get_worker(worker_id).total_earnings_cents}
            sums = {worker_id: self.ledger.balance(worker_id)}
        else:
            workers = {w.worker_id: w.total_earnings_cents for w in self.store.all_workers()}
            sums = self.ledger.balances()
            for missing in sums.keys() - workers.keys():
                workers[missing] = 0

        report = BalanceReport(dry_run=dry_run)
        for wid in sorted(workers):
            report.checked += 1
            cached = workers[wid]
            actual = sums.get(wid, 0)
            if cached == actual:
                continue

            diff = BalanceDiff(wid, cached, actual)
            report.diffs.append(diff)
            if dry_run:
                continue
            if self._overwrite_balance(wid, cached, actual):
                report.fixed += 1

        if report.diffs:
            logger.warning(
                f"Balance reconciliation: {len(report.diffs)} mismatch(es), fixed {report.fixed}"
                f"{' (dry run)' if dry_run else ''}"
            )
        return report

    def _overwrite_balance(self, worker_id: str, cached: int, actual: int) -> bool:
        # Absent attribute reads as zero
        if cached == 0:
            condition = 'attribute_not_exists(#totalEarningsCents) OR #totalEarningsCents = :seen'
        else:
            condition = '#totalEarningsCents = :seen'
        try:
            dynamo.transact_write([
                dynamo.update_op(
                    self.settings.WORKERS_TABLE,
                    {'workerId': worker_id},
                    set_fields={'totalEarningsCents': actual},
                    condition=condition,
                    condition_values={':seen': cached},
                )
            ])
        except dynamo.TransactionConflict:
            logger.info(f"Skipped balance for worker {worker_id}: changed during reconciliation")
            return False

        logger.info(f"Worker {worker_id} balance {cached} -> {actual} cents")
        return True
