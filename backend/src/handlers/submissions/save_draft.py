"""
Save Draft Handler.
PUT /worker/leases/{leaseId}/draft

Body: {"text": "...", "language": "en", "notes": "..."}
"""
from shared.auth import authenticated
from shared.errors import ValidationError
from shared.submissions import SubmissionService
from shared.utils import api_handler, get_path_param, parse_body


@api_handler
def handler(event, context):
    worker = authenticated(event)
    lease_id = get_path_param(event, 'leaseId')
    if not lease_id:
        raise ValidationError('Missing leaseId')

    body = parse_body(event)
    draft = SubmissionService().save_draft(
        lease_id,
        worker.id,
        body.get('text'),
        language=body.get('language'),
        notes=body.get('notes'),
    )
    return 200, {'submission': draft.to_item()}
