"""
Decide Review Handler.
POST /reviewer/submissions/{submissionId}/decision

Body: {"decision": "APPROVED|REJECTED|EDIT_REQUESTED", "finalText": "...", "comments": "..."}

Approval credits the worker in the same transaction.
"""
from shared.auth import require_reviewer
from shared.compensation import CompensationEngine, DynamoRatePlanResolver
from shared.errors import ValidationError
from shared.review_gate import ReviewGate
from shared.utils import api_handler, get_path_param, parse_body, require_fields


@api_handler
def handler(event, context):
    reviewer = require_reviewer(event)
    submission_id = get_path_param(event, 'submissionId')
    if not submission_id:
        raise ValidationError('Missing submissionId')

    body = parse_body(event)
    decision, = require_fields(body, 'decision')

    gate = ReviewGate(CompensationEngine(DynamoRatePlanResolver()))
    outcome = gate.decide(
        submission_id,
        reviewer.id,
        decision,
        final_text=body.get('finalText'),
        comments=body.get('comments'),
    )
    return 200, {
        'review': outcome.review.to_item(),
        'workItemId': outcome.work_item_id,
        'workItemStatus': outcome.work_item_status,
        'creditedCents': outcome.amount_cents,
    }
