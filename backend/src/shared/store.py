"""
Read access to the work platform tables.

Writes that change more than one row go through transactions built by the
services; the store only reads, plus bulk ingestion of new work items.
"""
from collections import Counter
from typing import Dict, Iterable, List, Optional
from boto3.dynamodb.conditions import Key, Attr
from .config import config as default_config
from .models import WorkItem, Lease, Submission, Review, WorkerAccount, Payment
from .errors import WorkItemNotFound, WorkItemExists, SubmissionNotFound, LeaseNotFound, ValidationError
from .schema import STATUS_INDEX, WORKER_INDEX, WORK_ITEM_INDEX
from . import dynamo


class WorkStore:
    """Typed reads over the DynamoDB tables named in the settings."""

    def __init__(self, settings=None):
        self.settings = settings or default_config

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    def get_work_item(self, work_item_id: str) -> Optional[WorkItem]:
        item = dynamo.get_item(self.settings.WORK_ITEMS_TABLE, {'workItemId': work_item_id})
        return WorkItem.from_item(item) if item else None

    def require_work_item(self, work_item_id: str) -> WorkItem:
        work_item = self.get_work_item(work_item_id)
        if work_item is None:
            raise WorkItemNotFound(workItemId=work_item_id)
        return work_item

    def get_work_items(self, work_item_ids: Iterable[str]) -> Dict[str, WorkItem]:
        found = dynamo.batch_get_items(self.settings.WORK_ITEMS_TABLE, 'workItemId', work_item_ids)
        return {item_id: WorkItem.from_item(item) for item_id, item in found.items()}

    def work_items_with_status(self, status: str, pool_id: Optional[str] = None) -> List[WorkItem]:
        """Items in a status, oldest first (createdAt, then ordinal, then id)."""
        items = dynamo.query(
            self.settings.WORK_ITEMS_TABLE,
            index_name=STATUS_INDEX,
            key_condition=Key('status').eq(status),
            filter_expression=Attr('poolId').eq(pool_id) if pool_id else None,
        )
        return sorted((WorkItem.from_item(item) for item in items), key=lambda w: w.sort_key)

    def all_work_items(self) -> List[WorkItem]:
        return [WorkItem.from_item(item) for item in dynamo.scan(self.settings.WORK_ITEMS_TABLE)]

    def put_work_items(self, work_items: List[WorkItem]) -> None:
        """
        Create new work items. A stored id is never overwritten: every put is
        conditional on the id being unused and each batch of up to 100 items
        commits as a whole.

        Raises:
            ValidationError: the same id appears twice in the request
            WorkItemExists: an id is already stored
        """
        ids = [work_item.work_item_id for work_item in work_items]
        repeated = sorted(item_id for item_id, count in Counter(ids).items() if count > 1)
        if repeated:
            raise ValidationError('Duplicate workItemId in request', workItemIds=repeated)
        existing = sorted(self.get_work_items(ids))
        if existing:
            raise WorkItemExists(workItemIds=existing)

        for start in range(0, len(work_items), dynamo.MAX_TRANSACT_ITEMS):
            batch = work_items[start:start + dynamo.MAX_TRANSACT_ITEMS]
            try:
                dynamo.transact_write([
                    dynamo.put_op(
                        self.settings.WORK_ITEMS_TABLE,
                        work_item.to_item(),
                        condition='attribute_not_exists(#workItemId)',
                    )
                    for work_item in batch
                ])
            except dynamo.TransactionConflict as e:
                taken = [w.work_item_id for index, w in enumerate(batch) if e.failed_at(index)]
                raise WorkItemExists(workItemIds=taken, created=start) from e

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    def get_lease(self, lease_id: str) -> Optional[Lease]:
        item = dynamo.get_item(self.settings.LEASES_TABLE, {'leaseId': lease_id})
        return Lease.from_item(item) if item else None

    def require_lease(self, lease_id: str) -> Lease:
        lease = self.get_lease(lease_id)
        if lease is None:
            raise LeaseNotFound(leaseId=lease_id)
        return lease

    def leases_for_worker(self, worker_id: str) -> List[Lease]:
        """A worker's leases, newest first."""
        items = dynamo.query(
            self.settings.LEASES_TABLE,
            index_name=WORKER_INDEX,
            key_condition=Key('workerId').eq(worker_id),
            scan_forward=False,
        )
        return [Lease.from_item(item) for item in items]

    def leases_for_item(self, work_item_id: str) -> List[Lease]:
        items = dynamo.query(
            self.settings.LEASES_TABLE,
            index_name=WORK_ITEM_INDEX,
            key_condition=Key('workItemId').eq(work_item_id),
        )
        return [Lease.from_item(item) for item in items]

    def unreleased_leases(self, expired_before: Optional[int] = None, limit: Optional[int] = None) -> List[Lease]:
        """Leases with no releasedAt, optionally only those that expired before a time."""
        condition = Attr('releasedAt').not_exists()
        if expired_before is not None:
            condition = condition & Attr('expiresAt').lt(expired_before)
        items = dynamo.scan(self.settings.LEASES_TABLE, filter_expression=condition, limit=limit)
        return [Lease.from_item(item) for item in items]

    # ------------------------------------------------------------------
    # Submissions and reviews
    # ------------------------------------------------------------------

    def get_submission(self, submission_id: str) -> Optional[Submission]:
        item = dynamo.get_item(self.settings.SUBMISSIONS_TABLE, {'submissionId': submission_id})
        return Submission.from_item(item) if item else None

    def require_submission(self, submission_id: str) -> Submission:
        submission = self.get_submission(submission_id)
        if submission is None:
            raise SubmissionNotFound(submissionId=submission_id)
        return submission

    def submissions_for_item(self, work_item_id: str) -> List[Submission]:
        items = dynamo.query(
            self.settings.SUBMISSIONS_TABLE,
            index_name=WORK_ITEM_INDEX,
            key_condition=Key('workItemId').eq(work_item_id),
        )
        return [Submission.from_item(item) for item in items]

    def submissions_for_worker(self, worker_id: str) -> List[Submission]:
        """A worker's submissions and drafts, newest first."""
        items = dynamo.query(
            self.settings.SUBMISSIONS_TABLE,
            index_name=WORKER_INDEX,
            key_condition=Key('workerId').eq(worker_id),
            scan_forward=False,
        )
        return [Submission.from_item(item) for item in items]

    def pending_submissions(self) -> List[Submission]:
        """Submitted and not yet reviewed, across all items."""
        items = dynamo.scan(
            self.settings.SUBMISSIONS_TABLE,
            filter_expression=Attr('submittedAt').exists() & Attr('reviewDecision').not_exists(),
        )
        return [Submission.from_item(item) for item in items]

    def get_review(self, submission_id: str) -> Optional[Review]:
        item = dynamo.get_item(self.settings.REVIEWS_TABLE, {'submissionId': submission_id})
        return Review.from_item(item) if item else None

    # ------------------------------------------------------------------
    # Workers and payments
    # ------------------------------------------------------------------

    def get_worker(self, worker_id: str) -> WorkerAccount:
        """Worker record; a worker with no record yet has a zero balance."""
        item = dynamo.get_item(self.settings.WORKERS_TABLE, {'workerId': worker_id})
        return WorkerAccount.from_item(item) if item else WorkerAccount(worker_id=worker_id)

    def all_workers(self) -> List[WorkerAccount]:
        return [WorkerAccount.from_item(item) for item in dynamo.scan(self.settings.WORKERS_TABLE)]

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        item = dynamo.get_item(self.settings.PAYMENTS_TABLE, {'paymentId': payment_id})
        return Payment.from_item(item) if item else None

    def payments_for_worker(self, worker_id: str) -> List[Payment]:
        items = dynamo.query(
            self.settings.PAYMENTS_TABLE,
            index_name=WORKER_INDEX,
            key_condition=Key('workerId').eq(worker_id),
            scan_forward=False,
        )
        return [Payment.from_item(item) for item in items]
