"""
Data models and status constants for the transcription work platform.
Work item lifecycle: Available → Assigned → Submitted → (Under Review) → Approved/Rejected

Records reference each other by id only; a WorkItem points at its approved
Submission and a Submission points back at its WorkItem, never by object.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional


class WorkItemStatus:
    """Work item lifecycle statuses."""
    AVAILABLE = 'AVAILABLE'
    ASSIGNED = 'ASSIGNED'
    SUBMITTED = 'SUBMITTED'
    UNDER_REVIEW = 'UNDER_REVIEW'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    FAILED = 'FAILED'

    ALL = (AVAILABLE, ASSIGNED, SUBMITTED, UNDER_REVIEW, APPROVED, REJECTED, FAILED)


class ReleaseReason:
    """Why a lease was closed."""
    ABANDONED = 'ABANDONED'
    SUBMITTED = 'SUBMITTED'
    EXPIRED = 'EXPIRED'
    BROKEN = 'BROKEN'


class ReviewDecision:
    """Reviewer decisions."""
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    EDIT_REQUESTED = 'EDIT_REQUESTED'

    ALL = (APPROVED, REJECTED, EDIT_REQUESTED)


class SubmissionFilter:
    """Filters for a worker's own submission listing."""
    PENDING = 'PENDING'
    ALL = 'ALL'


class LedgerEntryKind:
    """Ledger entry types."""
    APPROVAL_CREDIT = 'APPROVAL_CREDIT'
    APPROVAL_REVERSAL = 'APPROVAL_REVERSAL'
    PAYOUT = 'PAYOUT'


class PaymentStatus:
    """Payout run statuses."""
    PENDING = 'PENDING'
    PAID = 'PAID'


class Role:
    """Cognito groups recognised by the handlers."""
    WORKER = 'worker'
    REVIEWER = 'reviewer'
    ADMIN = 'admin'


def _int(value: Any) -> Optional[int]:
    """DynamoDB returns numbers as Decimal."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return int(value)
    return int(value)


def compact(item: Dict[str, Any]) -> Dict[str, Any]:
    """Drop None values; nullable fields are stored as absent attributes."""
    return {k: v for k, v in item.items() if v is not None}


@dataclass
class WorkItem:
    work_item_id: str
    status: str
    duration_seconds: int
    created_at: int
    ordinal: int = 0
    pool_id: Optional[str] = None
    storage_ref: Optional[str] = None
    approved_submission_id: Optional[str] = None
    active_lease_id: Optional[str] = None
    reported_broken: bool = False
    reported_by: Optional[str] = None
    reported_at: Optional[int] = None
    updated_at: Optional[int] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'WorkItem':
        return cls(
            work_item_id=item['workItemId'],
            status=item['status'],
            duration_seconds=_int(item.get('durationSeconds', 0)),
            created_at=_int(item.get('createdAt', 0)),
            ordinal=_int(item.get('ordinal', 0)),
            pool_id=item.get('poolId'),
            storage_ref=item.get('storageRef'),
            approved_submission_id=item.get('approvedSubmissionId'),
            active_lease_id=item.get('activeLeaseId'),
            reported_broken=bool(item.get('reportedBroken', False)),
            reported_by=item.get('reportedBy'),
            reported_at=_int(item.get('reportedAt')),
            updated_at=_int(item.get('updatedAt')),
        )

    def to_item(self) -> Dict[str, Any]:
        return compact({
            'workItemId': self.work_item_id,
            'status': self.status,
            'durationSeconds': self.duration_seconds,
            'createdAt': self.created_at,
            'ordinal': self.ordinal,
            'poolId': self.pool_id,
            'storageRef': self.storage_ref,
            'approvedSubmissionId': self.approved_submission_id,
            'activeLeaseId': self.active_lease_id,
            'reportedBroken': self.reported_broken or None,
            'reportedBy': self.reported_by,
            'reportedAt': self.reported_at,
            'updatedAt': self.updated_at,
        })

    @property
    def sort_key(self):
        return (self.created_at, self.ordinal, self.work_item_id)


@dataclass
class Lease:
    lease_id: str
    work_item_id: str
    worker_id: str
    created_at: int
    expires_at: Optional[int] = None
    released_at: Optional[int] = None
    release_reason: Optional[str] = None
    draft_submission_id: Optional[str] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Lease':
        return cls(
            lease_id=item['leaseId'],
            work_item_id=item['workItemId'],
            worker_id=item['workerId'],
            created_at=_int(item.get('createdAt', 0)),
            expires_at=_int(item.get('expiresAt')),
            released_at=_int(item.get('releasedAt')),
            release_reason=item.get('releaseReason'),
            draft_submission_id=item.get('draftSubmissionId'),
        )

    def to_item(self) -> Dict[str, Any]:
        return compact({
            'leaseId': self.lease_id,
            'workItemId': self.work_item_id,
            'workerId': self.worker_id,
            'createdAt': self.created_at,
            'expiresAt': self.expires_at,
            'releasedAt': self.released_at,
            'releaseReason': self.release_reason,
            'draftSubmissionId': self.draft_submission_id,
        })

    def is_expired(self, now: int) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_active(self, now: int) -> bool:
        """Unreleased and unexpired: the lease that holds mutual exclusion."""
        return self.released_at is None and not self.is_expired(now)


@dataclass
class Submission:
    submission_id: str
    lease_id: str
    work_item_id: str
    worker_id: str
    text: str
    created_at: int
    submitted_at: Optional[int] = None
    updated_at: Optional[int] = None
    language: Optional[str] = None
    notes: Optional[str] = None
    ai_suggested_text: Optional[str] = None
    review_decision: Optional[str] = None
    reviewed_at: Optional[int] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Submission':
        return cls(
            submission_id=item['submissionId'],
            lease_id=item['leaseId'],
            work_item_id=item['workItemId'],
            worker_id=item['workerId'],
            text=item.get('text', ''),
            created_at=_int(item.get('createdAt', 0)),
            submitted_at=_int(item.get('submittedAt')),
            updated_at=_int(item.get('updatedAt')),
            language=item.get('language'),
            notes=item.get('notes'),
            ai_suggested_text=item.get('aiSuggestedText'),
            review_decision=item.get('reviewDecision'),
            reviewed_at=_int(item.get('reviewedAt')),
        )

    def to_item(self) -> Dict[str, Any]:
        return compact({
            'submissionId': self.submission_id,
            'leaseId': self.lease_id,
            'workItemId': self.work_item_id,
            'workerId': self.worker_id,
            'text': self.text,
            'createdAt': self.created_at,
            'submittedAt': self.submitted_at,
            'updatedAt': self.updated_at,
            'language': self.language,
            'notes': self.notes,
            'aiSuggestedText': self.ai_suggested_text,
            'reviewDecision': self.review_decision,
            'reviewedAt': self.reviewed_at,
        })

    @property
    def is_draft(self) -> bool:
        return self.submitted_at is None

    @property
    def is_pending_review(self) -> bool:
        return self.submitted_at is not None and self.review_decision is None


@dataclass
class Review:
    submission_id: str
    review_id: str
    reviewer_id: str
    decision: str
    created_at: int
    comments: Optional[str] = None
    approved_duration_seconds: Optional[int] = None
    credited_cents: Optional[int] = None
    ledger_entry_id: Optional[str] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Review':
        return cls(
            submission_id=item['submissionId'],
            review_id=item['reviewId'],
            reviewer_id=item['reviewerId'],
            decision=item['decision'],
            created_at=_int(item.get('createdAt', 0)),
            comments=item.get('comments'),
            approved_duration_seconds=_int(item.get('approvedDurationSeconds')),
            credited_cents=_int(item.get('creditedCents')),
            ledger_entry_id=item.get('ledgerEntryId'),
        )

    def to_item(self) -> Dict[str, Any]:
        return compact({
            'submissionId': self.submission_id,
            'reviewId': self.review_id,
            'reviewerId': self.reviewer_id,
            'decision': self.decision,
            'createdAt': self.created_at,
            'comments': self.comments,
            'approvedDurationSeconds': self.approved_duration_seconds,
            'creditedCents': self.credited_cents,
            'ledgerEntryId': self.ledger_entry_id,
        })


@dataclass
class LedgerEntry:
    entry_id: str
    worker_id: str
    delta_cents: int
    description: str
    created_at: int
    kind: str = LedgerEntryKind.APPROVAL_CREDIT
    work_item_id: Optional[str] = None
    submission_id: Optional[str] = None
    related_payment_id: Optional[str] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'LedgerEntry':
        return cls(
            entry_id=item['entryId'],
            worker_id=item['workerId'],
            delta_cents=_int(item['deltaCents']),
            description=item.get('description', ''),
            created_at=_int(item.get('createdAt', 0)),
            kind=item.get('kind', LedgerEntryKind.APPROVAL_CREDIT),
            work_item_id=item.get('workItemId'),
            submission_id=item.get('submissionId'),
            related_payment_id=item.get('relatedPaymentId'),
        )

    def to_item(self) -> Dict[str, Any]:
        return compact({
            'entryId': self.entry_id,
            'workerId': self.worker_id,
            'deltaCents': self.delta_cents,
            'description': self.description,
            'createdAt': self.created_at,
            'kind': self.kind,
            'workItemId': self.work_item_id,
            'submissionId': self.submission_id,
            'relatedPaymentId': self.related_payment_id,
        })


@dataclass
class RatePlan:
    rate_plan_id: str
    rate_per_minute_cents: int
    currency: str = 'USD'
    name: Optional[str] = None
    active: bool = True
    created_at: int = 0

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'RatePlan':
        return cls(
            rate_plan_id=item['ratePlanId'],
            rate_per_minute_cents=_int(item['ratePerMinuteCents']),
            currency=item.get('currency', 'USD'),
            name=item.get('name'),
            active=bool(item.get('active', False)),
            created_at=_int(item.get('createdAt', 0)),
        )

    def to_item(self) -> Dict[str, Any]:
        return compact({
            'ratePlanId': self.rate_plan_id,
            'ratePerMinuteCents': self.rate_per_minute_cents,
            'currency': self.currency,
            'name': self.name,
            'active': self.active,
            'createdAt': self.created_at,
        })


@dataclass
class Payment:
    payment_id: str
    worker_id: str
    amount_cents: int
    status: str
    created_at: int
    currency: str = 'USD'
    reference: Optional[str] = None
    notes: Optional[str] = None
    paid_at: Optional[int] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Payment':
        return cls(
            payment_id=item['paymentId'],
            worker_id=item['workerId'],
            amount_cents=_int(item['amountCents']),
            status=item['status'],
            created_at=_int(item.get('createdAt', 0)),
            currency=item.get('currency', 'USD'),
            reference=item.get('reference'),
            notes=item.get('notes'),
            paid_at=_int(item.get('paidAt')),
        )

    def to_item(self) -> Dict[str, Any]:
        return compact({
            'paymentId': self.payment_id,
            'workerId': self.worker_id,
            'amountCents': self.amount_cents,
            'status': self.status,
            'createdAt': self.created_at,
            'currency': self.currency,
            'reference': self.reference,
            'notes': self.notes,
            'paidAt': self.paid_at,
        })


@dataclass
class WorkerAccount:
    worker_id: str
    total_earnings_cents: int = 0
    last_claim_at: Optional[int] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'WorkerAccount':
        return cls(
            worker_id=item['workerId'],
            total_earnings_cents=_int(item.get('totalEarningsCents', 0)),
            last_claim_at=_int(item.get('lastClaimAt')),
        )


@dataclass
class Identity:
    """Authenticated caller, resolved from the Cognito authorizer claims."""
    id: str
    roles: list = field(default_factory=list)
    email: Optional[str] = None

    @property
    def role(self) -> str:
        for role in (Role.ADMIN, Role.REVIEWER, Role.WORKER):
            if role in self.roles:
                return role
        return Role.WORKER

    def has_any(self, *roles: str) -> bool:
        return any(role in self.roles for role in roles)
