"""
Revert Approval Handler.
POST /admin/work-items/{workItemId}/revert

Removes the approval and books a reversing ledger entry for its credit.
"""
from shared.auth import require_admin
from shared.compensation import CompensationEngine, DynamoRatePlanResolver
from shared.errors import ValidationError
from shared.review_gate import ReviewGate
from shared.utils import api_handler, get_path_param


@api_handler
def handler(event, context):
    require_admin(event)
    work_item_id = get_path_param(event, 'workItemId')
    if not work_item_id:
        raise ValidationError('Missing workItemId')

    outcome = ReviewGate(CompensationEngine(DynamoRatePlanResolver())).revert(work_item_id)
    return 200, {
        'workItemId': outcome.work_item_id,
        'submissionId': outcome.submission_id,
        'reversedCents': outcome.reversed_cents,
    }
