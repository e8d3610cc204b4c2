"""
Review notifications published to SQS for the delivery service.
"""
import boto3
import json
from typing import Dict, Any, Optional
from .config import config
from .logging import logger

_sqs_client = None


def get_sqs_client():
    global _sqs_client
    if _sqs_client is None:
        _sqs_client = boto3.client('sqs', region_name=config.AWS_REGION)
    return _sqs_client


def reset_client() -> None:
    global _sqs_client
    _sqs_client = None


def send_message(queue_url: str, message_body: Dict[str, Any]) -> bool:
    """
    Send a single message to SQS queue.

    Args:
        queue_url: SQS queue URL
        message_body: Message body as dict (will be JSON serialized)

    Returns:
        True if sent successfully, False otherwise
    """
    try:
        get_sqs_client().send_message(
            QueueUrl=queue_url,
            MessageBody=json.dumps(message_body, default=str)
        )
        logger.info(f"Message sent to {queue_url}")
        return True
    except Exception as e:
        logger.warning(f"Error sending message to SQS (non-critical): {e}")
        return False


REVIEW_TITLES = {
    'APPROVED': 'Submission approved',
    'REJECTED': 'Submission rejected',
    'EDIT_REQUESTED': 'Edits requested',
}


def notify_review(worker_id: str, submission_id: str, decision: str,
                  comments: Optional[str] = None, queue_url: Optional[str] = None) -> bool:
    """Tell the worker about a review decision. Skipped when no queue is configured."""
    queue_url = queue_url or config.NOTIFICATIONS_QUEUE_URL
    if not queue_url:
        return False
    return send_message(queue_url, {
        'type': 'REVIEW',
        'workerId': worker_id,
        'submissionId': submission_id,
        'decision': decision,
        'title': REVIEW_TITLES.get(decision, 'Submission reviewed'),
        'body': comments,
    })
