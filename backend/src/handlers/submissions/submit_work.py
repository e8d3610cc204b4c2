"""
Submit Work Handler.
POST /worker/leases/{leaseId}/submit

Body: {"text": "...", "language": "en", "notes": "..."}

Freezes the transcription, closes the lease and queues the item for review.
An advisory corrected text from the text-assist endpoint is attached when
available; submission never waits on it.
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
    submission = SubmissionService().submit(
        lease_id,
        worker.id,
        body.get('text'),
        language=body.get('language'),
        notes=body.get('notes'),
    )
    return 201, {
        'message': 'Submission received',
        'submission': submission.to_item(),
    }
