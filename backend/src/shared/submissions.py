"""
Drafts and final submissions against a lease.

A lease has at most one open draft. Submitting freezes it (or a fresh
submission when no draft was saved), moves the item to SUBMITTED and closes
the lease, in one transaction whose lease condition re-checks ownership,
open state and expiry at commit.
"""
import uuid
from typing import Callable, List, Optional
from .config import config as default_config
from .logging import logger
from .models import Lease, Submission, SubmissionFilter, ReviewDecision, WorkItemStatus, ReleaseReason
from .errors import (
    LeaseNotOwned, LeaseExpired, LeaseClosed, AlreadyApproved,
    ValidationError, ConcurrentModification,
)
from .store import WorkStore
from .utils import now_epoch
from . import dynamo
from . import text_assist

# Condition on a lease that may still be written against
LEASE_OPEN_CONDITION = (
    'attribute_not_exists(#releasedAt) AND #workerId = :worker_id '
    'AND (attribute_not_exists(#expiresAt) OR #expiresAt > :now)'
)

LIST_FILTERS = (SubmissionFilter.ALL, SubmissionFilter.PENDING) + ReviewDecision.ALL


def check_lease(lease: Lease, worker_id: str, now: int) -> None:
    """Raise the lease-validity error that applies, if any."""
    if lease.worker_id != worker_id:
        raise LeaseNotOwned(leaseId=lease.lease_id)
    if lease.released_at is not None:
        raise LeaseClosed(leaseId=lease.lease_id)
    if lease.is_expired(now):
        raise LeaseExpired(leaseId=lease.lease_id)


class SubmissionService:
    """Save drafts and submit transcriptions for leased work items."""

    def __init__(self, store: Optional[WorkStore] = None, settings=None,
                 clock: Callable[[], int] = now_epoch,
                 improve: Callable[[str], Optional[str]] = text_assist.improve):
        self.settings = settings or default_config
        self.store = store or WorkStore(self.settings)
        self.clock = clock
        self.improve = improve

    def _lease_open_values(self, worker_id: str, now: int) -> dict:
        return {':worker_id': worker_id, ':now': now}

    def save_draft(self, lease_id: str, worker_id: str, text: str,
                   language: Optional[str] = None, notes: Optional[str] = None) -> Submission:
        """
        Create or update the lease's single open draft.

        Raises:
            LeaseNotFound, LeaseNotOwned, LeaseClosed, LeaseExpired
        """
        if text is None:
            raise ValidationError('Missing text', missing=['text'])

        lease = self.store.require_lease(lease_id)
        now = self.clock()
        check_lease(lease, worker_id, now)

        if lease.draft_submission_id:
            return self._update_draft(lease, worker_id, text, language, notes, now)

        draft = Submission(
            submission_id=str(uuid.uuid4()),
            lease_id=lease.lease_id,
            work_item_id=lease.work_item_id,
            worker_id=worker_id,
            text=text,
            created_at=now,
            updated_at=now,
            language=language,
            notes=notes,
        )
        try:
            dynamo.transact_write([
                dynamo.put_op(
                    self.settings.SUBMISSIONS_TABLE,
                    draft.to_item(),
                    condition='attribute_not_exists(#submissionId)',
                ),
                # First save wins; a concurrent save sees the pointer and updates instead
                dynamo.update_op(
                    self.settings.LEASES_TABLE,
                    {'leaseId': lease.lease_id},
                    set_fields={'draftSubmissionId': draft.submission_id},
                    condition=f'attribute_not_exists(#draftSubmissionId) AND {LEASE_OPEN_CONDITION}',
                    condition_values=self._lease_open_values(worker_id, now),
                ),
            ])
        except dynamo.TransactionConflict:
            lease = self.store.require_lease(lease_id)
            check_lease(lease, worker_id, now)
            if lease.draft_submission_id:
                return self._update_draft(lease, worker_id, text, language, notes, now)
            raise ConcurrentModification(leaseId=lease_id)

        logger.info(f"Draft {draft.submission_id} created for lease {lease_id}")
        return draft

    def _update_draft(self, lease: Lease, worker_id: str, text: str,
                      language: Optional[str], notes: Optional[str], now: int) -> Submission:
        set_fields = {'text': text, 'updatedAt': now}
        if language is not None:
            set_fields['language'] = language
        if notes is not None:
            set_fields['notes'] = notes

        try:
            dynamo.transact_write([
                dynamo.update_op(
                    self.settings.SUBMISSIONS_TABLE,
                    {'submissionId': lease.draft_submission_id},
                    set_fields=set_fields,
                    condition='attribute_exists(#submissionId) AND attribute_not_exists(#submittedAt)',
                ),
                dynamo.condition_check_op(
                    self.settings.LEASES_TABLE,
                    {'leaseId': lease.lease_id},
                    condition=LEASE_OPEN_CONDITION,
                    condition_values=self._lease_open_values(worker_id, now),
                ),
            ])
        except dynamo.TransactionConflict:
            check_lease(self.store.require_lease(lease.lease_id), worker_id, now)
            # Lease still open but the draft was frozen by a submit on another tab
            raise LeaseClosed(leaseId=lease.lease_id)

        return self.store.require_submission(lease.draft_submission_id)

    def submit(self, lease_id: str, worker_id: str, text: str,
               language: Optional[str] = None, notes: Optional[str] = None) -> Submission:
        """
        Finalize the transcription for a lease.

        Raises:
            ValidationError: empty text
            LeaseNotFound, LeaseNotOwned, LeaseClosed, LeaseExpired
            AlreadyApproved: the item was approved through another submission
        """
        if not text or not str(text).strip():
            raise ValidationError('Missing text', missing=['text'])

        lease = self.store.require_lease(lease_id)
        check_lease(lease, worker_id, self.clock())

        suggestion = self._suggest(text)

        now = self.clock()
        draft = self.store.get_submission(lease.draft_submission_id) if lease.draft_submission_id else None
        submission = Submission(
            submission_id=draft.submission_id if draft else str(uuid.uuid4()),
            lease_id=lease.lease_id,
            work_item_id=lease.work_item_id,
            worker_id=worker_id,
            text=text,
            created_at=draft.created_at if draft else now,
            submitted_at=now,
            updated_at=now,
            language=language if language is not None else (draft.language if draft else None),
            notes=notes if notes is not None else (draft.notes if draft else None),
            ai_suggested_text=suggestion,
        )

        lease_condition = LEASE_OPEN_CONDITION
        lease_values = self._lease_open_values(worker_id, now)
        if draft:
            lease_condition += ' AND #draftSubmissionId = :draft_id'
            lease_values[':draft_id'] = draft.submission_id
        else:
            lease_condition += ' AND attribute_not_exists(#draftSubmissionId)'

        operations = [
            dynamo.put_op(
                self.settings.SUBMISSIONS_TABLE,
                submission.to_item(),
                condition='attribute_not_exists(#submittedAt)',
            ),
            dynamo.update_op(
                self.settings.WORK_ITEMS_TABLE,
                {'workItemId': lease.work_item_id},
                set_fields={'status': WorkItemStatus.SUBMITTED, 'updatedAt': now},
                remove=['activeLeaseId'],
                condition='attribute_exists(#workItemId) AND attribute_not_exists(#approvedSubmissionId)',
            ),
            dynamo.update_op(
                self.settings.LEASES_TABLE,
                {'leaseId': lease.lease_id},
                set_fields={
                    'releasedAt': now,
                    'releaseReason': ReleaseReason.SUBMITTED,
                    'draftSubmissionId': submission.submission_id,
                },
                condition=lease_condition,
                condition_values=lease_values,
            ),
        ]

        try:
            dynamo.transact_write(operations)
        except dynamo.TransactionConflict:
            current = self.store.require_lease(lease_id)
            check_lease(current, worker_id, now)
            work_item = self.store.get_work_item(lease.work_item_id)
            if work_item is not None and work_item.approved_submission_id:
                raise AlreadyApproved(workItemId=lease.work_item_id)
            raise ConcurrentModification(leaseId=lease_id)

        logger.info(
            f"Worker {worker_id} submitted {submission.submission_id} for work item "
            f"{lease.work_item_id} (lease {lease_id})"
        )
        return submission

    def _suggest(self, text: str) -> Optional[str]:
        try:
            return self.improve(text)
        except Exception as e:
            logger.warning(f"Text assist failed, submitting without suggestion: {e}")
            return None

    def list_for_worker(self, worker_id: str, status: str = SubmissionFilter.ALL) -> List[Submission]:
        """A worker's submitted work, newest first. Drafts are not listed."""
        status = (status or SubmissionFilter.ALL).upper()
        if status not in LIST_FILTERS:
            raise ValidationError(f'Unknown status filter {status}', allowed=list(LIST_FILTERS))

        submitted = [s for s in self.store.submissions_for_worker(worker_id) if not s.is_draft]
        if status == SubmissionFilter.PENDING:
            return [s for s in submitted if s.is_pending_review]
        if status in ReviewDecision.ALL:
            return [s for s in submitted if s.review_decision == status]
        return submitted
