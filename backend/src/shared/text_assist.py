"""
Advisory text improvement for submitted transcriptions.
Calls a SageMaker endpoint that returns a corrected version of the text.

The suggestion is shown to reviewers next to the worker's text and never
replaces it. Any failure returns None; submission never waits on it.
"""
import json
import boto3
from typing import Optional
from .config import config
from .logging import logger

_sagemaker_client = None


def get_sagemaker_client():
    """Get or create SageMaker Runtime client."""
    global _sagemaker_client
    if _sagemaker_client is None:
        _sagemaker_client = boto3.client('sagemaker-runtime', region_name=config.AWS_REGION)
    return _sagemaker_client


def reset_client() -> None:
    global _sagemaker_client
    _sagemaker_client = None


def improve(text: str, endpoint_name: Optional[str] = None) -> Optional[str]:
    """
    Ask the text-assist model for a corrected transcription.

    Args:
        text: The worker's transcription
        endpoint_name: SageMaker endpoint name, defaults to config value

    Returns:
        Corrected text, or None if the endpoint is not configured or fails
    """
    if endpoint_name is None:
        endpoint_name = config.TEXT_ASSIST_ENDPOINT

    if not endpoint_name or not text:
        return None

    try:
        response = get_sagemaker_client().invoke_endpoint(
            EndpointName=endpoint_name,
            ContentType='application/json',
            Accept='application/json',
            Body=json.dumps({'text': text})
        )
        result = json.loads(response['Body'].read().decode('utf-8'))
    except Exception as e:
        logger.warning(f"Text assist unavailable, continuing without suggestion: {e}")
        return None

    corrected = result.get('corrected') if isinstance(result, dict) else None
    if not isinstance(corrected, str) or not corrected.strip():
        return None
    return corrected.strip()
