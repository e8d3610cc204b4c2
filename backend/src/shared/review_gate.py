"""
Review gate: single-reviewer decisions with double-approval protection.

A review is write-once: the reviews table is keyed by submissionId and the
put is conditional on no review existing. An approval sets the item's
approvedSubmissionId only while it is unset (or already this submission), and
books the worker's pay in the same transaction. Two approvals for one item
therefore cannot both commit, and the worker is paid once.
"""
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from .config import config as default_config
from .logging import logger
from .models import Review, ReviewDecision, Submission, WorkItem, WorkItemStatus
from .errors import (
    AlreadyReviewed, AlreadyApproved, NotApproved, InvalidState,
    ValidationError, ConcurrentModification,
)
from .compensation import CompensationEngine
from .store import WorkStore
from .utils import now_epoch
from . import dynamo
from . import notifications

# Item status written for each non-approving decision
DECISION_STATUS = {
    ReviewDecision.REJECTED: WorkItemStatus.REJECTED,
    ReviewDecision.EDIT_REQUESTED: WorkItemStatus.UNDER_REVIEW,
}


@dataclass
class PendingReview:
    submission: Submission
    work_item: WorkItem


@dataclass
class ReviewOutcome:
    review: Review
    work_item_id: str
    work_item_status: str
    amount_cents: int = 0


@dataclass
class RevertOutcome:
    work_item_id: str
    submission_id: str
    reversed_cents: int = 0


class ReviewGate:

    def __init__(self, engine: CompensationEngine, store: Optional[WorkStore] = None, settings=None,
                 clock: Callable[[], int] = now_epoch,
                 notifier: Callable[..., bool] = notifications.notify_review):
        self.engine = engine
        self.settings = settings or default_config
        self.store = store or WorkStore(self.settings)
        self.clock = clock
        self.notifier = notifier

    def list_pending(self, limit: Optional[int] = None) -> List[PendingReview]:
        """
        Review queue: per work item only its oldest unreviewed submission,
        only for items not yet approved, oldest first.
        """
        limit = limit or self.settings.PENDING_REVIEW_LIMIT

        oldest: Dict[str, Submission] = {}
        for submission in self.store.pending_submissions():
            current = oldest.get(submission.work_item_id)
            if current is None or _queue_key(submission) < _queue_key(current):
                oldest[submission.work_item_id] = submission

        work_items = self.store.get_work_items(oldest.keys())
        queue = [
            PendingReview(submission, work_items[item_id])
            for item_id, submission in oldest.items()
            if item_id in work_items and not work_items[item_id].approved_submission_id
        ]
        queue.sort(key=lambda pending: _queue_key(pending.submission))
        return queue[:limit]

    def decide(self, submission_id: str, reviewer_id: str, decision: str,
               final_text: Optional[str] = None, comments: Optional[str] = None) -> ReviewOutcome:
        """
        Record a reviewer's decision.

        Raises:
            ValidationError: unknown decision
            SubmissionNotFound: no such submission
            InvalidState: the submission is still a draft
            AlreadyReviewed: the submission already has a review
            AlreadyApproved: another submission for the item was approved
            NoActiveRatePlan: approving with no active rate plan
        """
        decision = (decision or '').upper()
        if decision not in ReviewDecision.ALL:
            raise ValidationError(f'Unknown decision {decision}', allowed=list(ReviewDecision.ALL))

        submission = self.store.require_submission(submission_id)
        if submission.is_draft:
            raise InvalidState('Drafts cannot be reviewed', submissionId=submission_id)
        if self.store.get_review(submission_id) is not None:
            raise AlreadyReviewed(submissionId=submission_id)

        work_item = self.store.require_work_item(submission.work_item_id)
        if decision == ReviewDecision.APPROVED and work_item.approved_submission_id not in (None, submission_id):
            raise AlreadyApproved(workItemId=work_item.work_item_id)

        now = self.clock()
        review = Review(
            submission_id=submission_id,
            review_id=str(uuid.uuid4()),
            reviewer_id=reviewer_id,
            decision=decision,
            created_at=now,
            comments=comments,
        )

        submission_fields = {'reviewDecision': decision, 'reviewedAt': now, 'updatedAt': now}
        item_op = None
        credit_ops = []
        amount_cents = 0
        item_status = work_item.status

        if decision == ReviewDecision.APPROVED:
            credit = self.engine.prepare_credit(
                submission.worker_id, work_item.work_item_id, work_item.duration_seconds, submission_id
            )
            review.approved_duration_seconds = work_item.duration_seconds
            review.credited_cents = credit.amount_cents
            review.ledger_entry_id = credit.entry.entry_id
            amount_cents = credit.amount_cents
            credit_ops = credit.operations
            if final_text and final_text.strip():
                submission_fields['text'] = final_text.strip()

            item_status = WorkItemStatus.APPROVED
            item_op = dynamo.update_op(
                self.settings.WORK_ITEMS_TABLE,
                {'workItemId': work_item.work_item_id},
                set_fields={'status': item_status, 'approvedSubmissionId': submission_id, 'updatedAt': now},
                remove=['activeLeaseId'],
                condition='attribute_not_exists(#approvedSubmissionId) OR #approvedSubmissionId = :submission_id',
                condition_values={':submission_id': submission_id},
            )
        elif not work_item.approved_submission_id:
            item_status = DECISION_STATUS[decision]
            item_op = dynamo.update_op(
                self.settings.WORK_ITEMS_TABLE,
                {'workItemId': work_item.work_item_id},
                set_fields={'status': item_status, 'updatedAt': now},
                condition='attribute_not_exists(#approvedSubmissionId)',
            )

        operations = [
            dynamo.put_op(
                self.settings.REVIEWS_TABLE,
                review.to_item(),
                condition='attribute_not_exists(#submissionId)',
            ),
            dynamo.update_op(
                self.settings.SUBMISSIONS_TABLE,
                {'submissionId': submission_id},
                set_fields=submission_fields,
                condition='attribute_not_exists(#reviewDecision)',
            ),
        ]
        if item_op:
            operations.append(item_op)
        operations.extend(credit_ops)

        try:
            dynamo.transact_write(operations)
        except dynamo.TransactionConflict:
            raise self._classify_decide_conflict(submission_id, work_item.work_item_id, decision)

        logger.info(
            f"Reviewer {reviewer_id} {decision} submission {submission_id} "
            f"(work item {work_item.work_item_id} -> {item_status}, credited {amount_cents} cents)"
        )
        self.notifier(submission.worker_id, submission_id, decision, comments)
        return ReviewOutcome(review, work_item.work_item_id, item_status, amount_cents)

    def _classify_decide_conflict(self, submission_id: str, work_item_id: str, decision: str) -> Exception:
        if self.store.get_review(submission_id) is not None:
            return AlreadyReviewed(submissionId=submission_id)
        current = self.store.get_work_item(work_item_id)
        if (decision == ReviewDecision.APPROVED and current is not None
                and current.approved_submission_id not in (None, submission_id)):
            return AlreadyApproved(workItemId=work_item_id)
        return ConcurrentModification(submissionId=submission_id)

    def revert(self, work_item_id: str) -> RevertOutcome:
        """
        Undo an approval: delete its review, clear the pointer, item back to
        SUBMITTED, and append a reversing ledger entry for whatever the
        approval credited. The submission becomes reviewable again.

        Raises:
            WorkItemNotFound: no such item
            NotApproved: the item has no approved submission
        """
        work_item = self.store.require_work_item(work_item_id)
        submission_id = work_item.approved_submission_id
        if not submission_id:
            raise NotApproved(workItemId=work_item_id)

        now = self.clock()
        review = self.store.get_review(submission_id)
        submission = self.store.get_submission(submission_id)

        operations = [
            dynamo.update_op(
                self.settings.WORK_ITEMS_TABLE,
                {'workItemId': work_item_id},
                set_fields={'status': WorkItemStatus.SUBMITTED, 'updatedAt': now},
                remove=['approvedSubmissionId'],
                condition='#approvedSubmissionId = :submission_id',
                condition_values={':submission_id': submission_id},
            )
        ]
        if submission is not None:
            operations.append(dynamo.update_op(
                self.settings.SUBMISSIONS_TABLE,
                {'submissionId': submission_id},
                set_fields={'updatedAt': now},
                remove=['reviewDecision', 'reviewedAt'],
            ))

        reversed_cents = 0
        if review is not None:
            operations.append(dynamo.delete_op(
                self.settings.REVIEWS_TABLE,
                {'submissionId': submission_id},
                condition='#reviewId = :review_id',
                condition_values={':review_id': review.review_id},
            ))
            worker_id = submission.worker_id if submission else None
            reversal = self.engine.prepare_reversal(review, worker_id, work_item_id) if worker_id else None
            if reversal is not None:
                reversed_cents = -reversal.amount_cents
                operations.extend(reversal.operations)
        else:
            logger.warning(f"Approved work item {work_item_id} has no review for {submission_id}")

        try:
            dynamo.transact_write(operations)
        except dynamo.TransactionConflict:
            current = self.store.require_work_item(work_item_id)
            if current.approved_submission_id != submission_id:
                raise NotApproved(workItemId=work_item_id)
            raise ConcurrentModification(workItemId=work_item_id)

        logger.warning(
            f"Reverted approval of submission {submission_id} on work item {work_item_id} "
            f"(reversed {reversed_cents} cents)"
        )
        return RevertOutcome(work_item_id, submission_id, reversed_cents)


def _queue_key(submission: Submission):
    return (submission.submitted_at or 0, submission.created_at, submission.submission_id)
