"""
List My Submissions Handler.
GET /worker/submissions?status=PENDING|APPROVED|REJECTED|EDIT_REQUESTED|ALL
"""
from shared.auth import authenticated
from shared.submissions import SubmissionService
from shared.utils import api_handler, get_query_param


@api_handler
def handler(event, context):
    worker = authenticated(event)
    submissions = SubmissionService().list_for_worker(worker.id, get_query_param(event, 'status', 'ALL'))
    return 200, {'items': [s.to_item() for s in submissions]}
