"""
Lease manager: claim, release and lazy expiry of work item leases.

A lease is the time-bounded right of one worker to submit for one work item.
At most one lease per item may be unreleased and unexpired at any time. The
guarantee comes from the claim transaction: the item moves AVAILABLE ->
ASSIGNED under a condition that it is still AVAILABLE at commit, so of two
concurrent claimants exactly one commits.

Expiry is lazy. Nothing closes a lease the moment it runs out; expire_stale()
closes expired leases when the available-work listing is read, when an
operator triggers maintenance, or on the scheduled sweep. Until then an item
may still show ASSIGNED for a lease that can no longer be submitted against.
"""
import math
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from .config import config as default_config
from .logging import logger
from .models import WorkItem, WorkItemStatus, Lease, ReleaseReason, Submission, WorkerAccount
from .errors import (
    NoCapacity, Cooldown, NoItemsAvailable, ItemNoLongerAvailable,
    LeaseNotOwned, InvalidState, ConcurrentModification,
)
from .store import WorkStore
from .storage import signed_read_url
from .utils import now_epoch
from . import dynamo

# Release re-reads and retries when the item moves under it
RELEASE_ATTEMPTS = 3


@dataclass
class ReleaseResult:
    lease: Lease
    already_released: bool = False
    item_reopened: bool = False


@dataclass
class MyWorkEntry:
    lease: Lease
    work_item: Optional[WorkItem]
    draft: Optional[Submission]


class LeaseManager:
    """Creates, releases and expires leases on behalf of workers."""

    def __init__(self, store: Optional[WorkStore] = None, settings=None,
                 clock: Callable[[], int] = now_epoch):
        self.settings = settings or default_config
        self.store = store or WorkStore(self.settings)
        self.clock = clock

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def claim(self, worker_id: str, pool_id: Optional[str] = None,
              work_item_id: Optional[str] = None) -> Lease:
        """
        Lease the requested item, or the oldest AVAILABLE one in the pool.

        Raises:
            NoCapacity: the worker already holds MAX_ACTIVE_LEASES active leases
            Cooldown: the worker's last claim was under CLAIM_COOLDOWN_SECONDS ago
            NoItemsAvailable: nothing to claim
            WorkItemNotFound: the explicit item does not exist
            ItemNoLongerAvailable: the item was taken first
        """
        now = self.clock()
        worker = self.store.get_worker(worker_id)
        leases = self.store.leases_for_worker(worker_id)
        self._check_capacity(leases, now)
        self._check_cooldown(leases, now)

        target = self._select_item(pool_id, work_item_id)
        expires_at = now + self.settings.LEASE_MINUTES * 60
        lease = Lease(
            lease_id=str(uuid.uuid4()),
            work_item_id=target.work_item_id,
            worker_id=worker_id,
            created_at=now,
            expires_at=expires_at,
        )

        operations = [
            # Re-verify the item is still AVAILABLE at commit
            dynamo.update_op(
                self.settings.WORK_ITEMS_TABLE,
                {'workItemId': target.work_item_id},
                set_fields={
                    'status': WorkItemStatus.ASSIGNED,
                    'activeLeaseId': lease.lease_id,
                    'updatedAt': now,
                },
                condition='#status = :available AND attribute_not_exists(#approvedSubmissionId)',
                condition_values={':available': WorkItemStatus.AVAILABLE},
            ),
            dynamo.put_op(
                self.settings.LEASES_TABLE,
                lease.to_item(),
                condition='attribute_not_exists(#leaseId)',
            ),
            self._claim_guard_op(worker, now),
        ]

        try:
            dynamo.transact_write(operations)
        except dynamo.TransactionConflict:
            raise self._classify_claim_conflict(worker, target.work_item_id)

        logger.info(
            f"Worker {worker_id} claimed work item {target.work_item_id} "
            f"(lease {lease.lease_id}, expires {expires_at})"
        )
        return lease

    def _check_capacity(self, leases: List[Lease], now: int) -> None:
        active = [lease for lease in leases if lease.is_active(now)]
        if len(active) >= self.settings.MAX_ACTIVE_LEASES:
            raise NoCapacity(
                activeLeases=[
                    {'leaseId': lease.lease_id, 'workItemId': lease.work_item_id} for lease in active
                ]
            )

    def _check_cooldown(self, leases: List[Lease], now: int) -> None:
        """Cooldown counts from the worker's latest lease creation, whatever its item or fate."""
        cooldown = self.settings.CLAIM_COOLDOWN_SECONDS
        if cooldown <= 0 or not leases:
            return
        elapsed = now - max(lease.created_at for lease in leases)
        if elapsed < cooldown:
            raise Cooldown(retry_after_seconds=int(math.ceil(cooldown - elapsed)))

    def _select_item(self, pool_id: Optional[str], work_item_id: Optional[str]) -> WorkItem:
        if work_item_id:
            work_item = self.store.require_work_item(work_item_id)
            if pool_id and work_item.pool_id != pool_id:
                raise NoItemsAvailable('Work item is not in the requested pool', workItemId=work_item_id)
            if work_item.status != WorkItemStatus.AVAILABLE or work_item.approved_submission_id:
                raise ItemNoLongerAvailable(workItemId=work_item_id)
            return work_item

        for work_item in self.store.work_items_with_status(WorkItemStatus.AVAILABLE, pool_id):
            if not work_item.approved_submission_id:
                return work_item
        raise NoItemsAvailable()

    def _claim_guard_op(self, worker: WorkerAccount, now: int) -> dict:
        """
        Stamp lastClaimAt on the worker record, conditional on the value read
        before the capacity and cooldown checks. Two concurrent claims by the
        same worker cannot both pass.
        """
        if worker.last_claim_at is None:
            condition = 'attribute_not_exists(#lastClaimAt)'
            values = None
        else:
            condition = '#lastClaimAt = :seen_last_claim'
            values = {':seen_last_claim': worker.last_claim_at}
        return dynamo.update_op(
            self.settings.WORKERS_TABLE,
            {'workerId': worker.worker_id},
            set_fields={'lastClaimAt': now},
            condition=condition,
            condition_values=values,
        )

    def _classify_claim_conflict(self, worker: WorkerAccount, work_item_id: str) -> Exception:
        """Re-read after a cancelled claim and name what was lost."""
        current = self.store.get_work_item(work_item_id)
        if current is None or current.status != WorkItemStatus.AVAILABLE or current.approved_submission_id:
            return ItemNoLongerAvailable(workItemId=work_item_id)

        now = self.clock()
        if self.store.get_worker(worker.worker_id).last_claim_at != worker.last_claim_at:
            # Another claim by this worker committed first
            leases = self.store.leases_for_worker(worker.worker_id)
            try:
                self._check_capacity(leases, now)
                self._check_cooldown(leases, now)
            except (NoCapacity, Cooldown) as e:
                return e
        return ConcurrentModification(workItemId=work_item_id)

    # ------------------------------------------------------------------
    # Release and expiry
    # ------------------------------------------------------------------

    def release(self, lease_id: str, worker_id: str) -> ReleaseResult:
        """
        Give a lease back. Releasing an already-closed lease is a no-op.

        The item returns to AVAILABLE only while it is still ASSIGNED to this
        lease with no approval; an item already advanced by a submission is
        never re-opened.
        """
        lease = self.store.require_lease(lease_id)
        if lease.worker_id != worker_id:
            raise LeaseNotOwned(leaseId=lease_id)

        for _ in range(RELEASE_ATTEMPTS):
            if lease.released_at is not None:
                return ReleaseResult(lease, already_released=True)

            now = self.clock()
            work_item = self.store.get_work_item(lease.work_item_id)
            reopen = self._holds(work_item, lease)

            operations = [self._close_lease_op(lease, now, ReleaseReason.ABANDONED)]
            if reopen:
                operations.append(self._reopen_item_op(lease, now))

            try:
                dynamo.transact_write(operations)
            except dynamo.TransactionConflict:
                lease = self.store.require_lease(lease_id)
                continue

            lease.released_at = now
            lease.release_reason = ReleaseReason.ABANDONED
            logger.info(
                f"Worker {worker_id} released lease {lease_id} "
                f"(work item {lease.work_item_id}, reopened={reopen})"
            )
            return ReleaseResult(lease, item_reopened=reopen)

        raise ConcurrentModification(leaseId=lease_id)

    def expire_stale(self, limit: Optional[int] = None) -> int:
        """
        Close unreleased leases whose expiresAt has passed, returning each
        still-held, unapproved item to AVAILABLE. Running it twice in a row
        leaves the same state as running it once.

        Returns:
            Number of leases closed by this call
        """
        now = self.clock()
        limit = limit or self.settings.EXPIRE_BATCH_LIMIT
        stale = self.store.unreleased_leases(expired_before=now, limit=limit)

        released = 0
        for lease in stale:
            work_item = self.store.get_work_item(lease.work_item_id)
            reopen = self._holds(work_item, lease)

            operations = [self._close_lease_op(lease, now, ReleaseReason.EXPIRED, expired_before=now)]
            if reopen:
                operations.append(self._reopen_item_op(lease, now))

            try:
                dynamo.transact_write(operations)
            except dynamo.TransactionConflict:
                # Released, submitted or swept by someone else in the meantime
                logger.info(f"Skipped stale lease {lease.lease_id}: changed concurrently")
                continue

            released += 1
            logger.info(
                f"Expired lease {lease.lease_id} (work item {lease.work_item_id}, "
                f"worker {lease.worker_id}, reopened={reopen})"
            )

        if stale:
            logger.info(f"Expired {released} of {len(stale)} stale leases")
        return released

    @staticmethod
    def _holds(work_item: Optional[WorkItem], lease: Lease) -> bool:
        return (
            work_item is not None
            and work_item.approved_submission_id is None
            and work_item.status == WorkItemStatus.ASSIGNED
            and work_item.active_lease_id == lease.lease_id
        )

    def _close_lease_op(self, lease: Lease, now: int, reason: str,
                        expired_before: Optional[int] = None) -> dict:
        condition = 'attribute_not_exists(#releasedAt)'
        values = None
        if expired_before is not None:
            condition += ' AND #expiresAt < :expired_before'
            values = {':expired_before': expired_before}
        return dynamo.update_op(
            self.settings.LEASES_TABLE,
            {'leaseId': lease.lease_id},
            set_fields={'releasedAt': now, 'releaseReason': reason},
            condition=condition,
            condition_values=values,
        )

    def _reopen_item_op(self, lease: Lease, now: int) -> dict:
        return dynamo.update_op(
            self.settings.WORK_ITEMS_TABLE,
            {'workItemId': lease.work_item_id},
            set_fields={'status': WorkItemStatus.AVAILABLE, 'updatedAt': now},
            remove=['activeLeaseId'],
            condition=(
                '#status = :assigned AND #activeLeaseId = :lease_id '
                'AND attribute_not_exists(#approvedSubmissionId)'
            ),
            condition_values={':assigned': WorkItemStatus.ASSIGNED, ':lease_id': lease.lease_id},
        )

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def list_available(self, pool_id: Optional[str] = None, page: int = 1,
                       page_size: int = 25, sign_urls: bool = True) -> Tuple[int, List[dict]]:
        """
        Claimable items, oldest first, with a signed audio URL when one can
        be produced. Sweeps expired leases first; the list may still be
        slightly stale and a claim from it can lose the race.
        """
        self.expire_stale()

        items = [
            work_item for work_item in self.store.work_items_with_status(WorkItemStatus.AVAILABLE, pool_id)
            if not work_item.approved_submission_id
        ]
        start = (page - 1) * page_size
        page_items = []
        for work_item in items[start:start + page_size]:
            payload = work_item.to_item()
            payload['url'] = signed_read_url(work_item.storage_ref) if sign_urls else None
            page_items.append(payload)
        return len(items), page_items

    def my_work(self, worker_id: str) -> List[MyWorkEntry]:
        """The worker's active leases, newest first, with item and current draft."""
        now = self.clock()
        active = [lease for lease in self.store.leases_for_worker(worker_id) if lease.is_active(now)]
        work_items = self.store.get_work_items(lease.work_item_id for lease in active)
        entries = []
        for lease in active:
            draft = self.store.get_submission(lease.draft_submission_id) if lease.draft_submission_id else None
            entries.append(MyWorkEntry(lease, work_items.get(lease.work_item_id), draft))
        return entries

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def report_broken(self, work_item_id: str, worker_id: str) -> WorkItem:
        """
        Take an item with unusable audio out of circulation: status FAILED and
        every open lease on it closed.
        """
        work_item = self.store.require_work_item(work_item_id)
        if work_item.approved_submission_id:
            raise InvalidState('Approved work items cannot be reported broken', workItemId=work_item_id)

        now = self.clock()
        open_leases = [lease for lease in self.store.leases_for_item(work_item_id) if lease.released_at is None]
        operations = [
            dynamo.update_op(
                self.settings.WORK_ITEMS_TABLE,
                {'workItemId': work_item_id},
                set_fields={
                    'status': WorkItemStatus.FAILED,
                    'reportedBroken': True,
                    'reportedBy': worker_id,
                    'reportedAt': now,
                    'updatedAt': now,
                },
                remove=['activeLeaseId'],
                condition='attribute_not_exists(#approvedSubmissionId)',
            )
        ] + [self._close_lease_op(lease, now, ReleaseReason.BROKEN) for lease in open_leases]

        try:
            dynamo.transact_write(operations)
        except dynamo.TransactionConflict:
            current = self.store.require_work_item(work_item_id)
            if current.approved_submission_id:
                raise InvalidState('Approved work items cannot be reported broken', workItemId=work_item_id)
            raise ConcurrentModification(workItemId=work_item_id)

        logger.warning(
            f"Work item {work_item_id} reported broken by {worker_id}; closed {len(open_leases)} lease(s)"
        )
        return self.store.require_work_item(work_item_id)

    def return_to_pool(self, work_item_id: str) -> WorkItem:
        """Explicitly put a REJECTED or FAILED item back up for claiming."""
        work_item = self.store.require_work_item(work_item_id)
        if work_item.status not in (WorkItemStatus.REJECTED, WorkItemStatus.FAILED) \
                or work_item.approved_submission_id:
            raise InvalidState(
                f'Only rejected or failed work items can return to the pool (status {work_item.status})',
                workItemId=work_item_id,
            )

        now = self.clock()
        try:
            dynamo.transact_write([
                dynamo.update_op(
                    self.settings.WORK_ITEMS_TABLE,
                    {'workItemId': work_item_id},
                    set_fields={'status': WorkItemStatus.AVAILABLE, 'updatedAt': now},
                    remove=['activeLeaseId', 'reportedBroken'],
                    condition='#status = :seen AND attribute_not_exists(#approvedSubmissionId)',
                    condition_values={':seen': work_item.status},
                )
            ])
        except dynamo.TransactionConflict:
            raise ConcurrentModification(workItemId=work_item_id)

        logger.info(f"Work item {work_item_id} returned to pool from {work_item.status}")
        return self.store.require_work_item(work_item_id)
