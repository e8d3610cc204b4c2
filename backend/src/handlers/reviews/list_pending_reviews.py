"""
List Pending Reviews Handler.
GET /reviewer/submissions/pending?limit=
"""
from shared.auth import require_reviewer
from shared.compensation import CompensationEngine, DynamoRatePlanResolver
from shared.config import config
from shared.review_gate import ReviewGate
from shared.storage import signed_read_url
from shared.utils import api_handler, get_int_param


@api_handler
def handler(event, context):
    require_reviewer(event)
    limit = get_int_param(event, 'limit', config.PENDING_REVIEW_LIMIT, maximum=config.PENDING_REVIEW_LIMIT)

    gate = ReviewGate(CompensationEngine(DynamoRatePlanResolver()))
    items = [
        {
            'submission': pending.submission.to_item(),
            'workItem': pending.work_item.to_item(),
            'url': signed_read_url(pending.work_item.storage_ref),
        }
        for pending in gate.list_pending(limit)
    ]
    return 200, {'items': items}
