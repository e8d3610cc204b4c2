"""
Typed business errors for the work platform.

Every rule violation raised by the services is a WorkError subclass carrying
the HTTP status and stable error code the API handlers return. Race losses and
capacity limits are expected under normal load; callers refresh and retry.
"""
from typing import Any, Dict, Optional


class WorkError(Exception):
    """Base class for all business-rule errors."""

    status_code = 400
    code = 'WorkError'
    default_message = 'Request could not be completed'

    def __init__(self, message: Optional[str] = None, **details: Any):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body = {'error': self.code, 'message': self.message}
        body.update(self.details)
        return body


# Capacity / timing

class NoCapacity(WorkError):
    status_code = 409
    code = 'NoCapacity'
    default_message = 'You already have active assignment(s) at the limit'


class Cooldown(WorkError):
    status_code = 429
    code = 'Cooldown'
    default_message = 'Please wait before claiming again'

    def __init__(self, retry_after_seconds: int, message: Optional[str] = None):
        super().__init__(message, retryAfterSeconds=retry_after_seconds)
        self.retry_after_seconds = retry_after_seconds


class NoItemsAvailable(WorkError):
    status_code = 404
    code = 'NoItemsAvailable'
    default_message = 'No work items available'


# Race losses

class ItemNoLongerAvailable(WorkError):
    status_code = 409
    code = 'ItemNoLongerAvailable'
    default_message = 'Work item is no longer available'


class AlreadyApproved(WorkError):
    status_code = 409
    code = 'AlreadyApproved'
    default_message = 'Work item already has an approved submission'


class AlreadyReviewed(WorkError):
    status_code = 409
    code = 'AlreadyReviewed'
    default_message = 'Submission already reviewed'


# Lease validity

class LeaseNotFound(WorkError):
    status_code = 404
    code = 'LeaseNotFound'
    default_message = 'Lease not found'


class LeaseNotOwned(WorkError):
    status_code = 403
    code = 'LeaseNotOwned'
    default_message = 'Lease belongs to another worker'


class LeaseExpired(WorkError):
    status_code = 410
    code = 'LeaseExpired'
    default_message = 'Lease expired, please claim again'


class LeaseClosed(WorkError):
    status_code = 409
    code = 'LeaseClosed'
    default_message = 'Lease already released, please claim again'


# Configuration

class NoActiveRatePlan(WorkError):
    status_code = 503
    code = 'NoActiveRatePlan'
    default_message = 'No active rate plan found'


# Lookups and state

class WorkItemNotFound(WorkError):
    status_code = 404
    code = 'WorkItemNotFound'
    default_message = 'Work item not found'


class WorkItemExists(WorkError):
    status_code = 409
    code = 'WorkItemExists'
    default_message = 'Work item id already in use'


class SubmissionNotFound(WorkError):
    status_code = 404
    code = 'SubmissionNotFound'
    default_message = 'Submission not found'


class PaymentNotFound(WorkError):
    status_code = 404
    code = 'PaymentNotFound'
    default_message = 'Payment not found'


class NotApproved(WorkError):
    status_code = 409
    code = 'NotApproved'
    default_message = 'Work item is not approved'


class InvalidState(WorkError):
    status_code = 409
    code = 'InvalidState'
    default_message = 'Operation not allowed in the current state'


class ValidationError(WorkError):
    status_code = 400
    code = 'ValidationError'
    default_message = 'Invalid request'


# Access

class Unauthorized(WorkError):
    status_code = 401
    code = 'Unauthorized'
    default_message = 'Unauthorized'


class Forbidden(WorkError):
    status_code = 403
    code = 'Forbidden'
    default_message = 'Forbidden'


# Transient

class ConcurrentModification(WorkError):
    """A conditional transaction lost a race that maps to no business error."""
    status_code = 503
    code = 'ConcurrentModification'
    default_message = 'The record changed while the request was processed, please retry'
