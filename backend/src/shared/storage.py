"""
S3 utility functions for audio storage.
Generates presigned URLs for private bucket access.
"""
import boto3
from typing import Optional
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from .config import config
from .logging import logger

_s3_client = None


def get_s3_client():
    """Get or create the S3 client, signing with s3v4 for presigned URLs."""
    global _s3_client
    if _s3_client is None:
        _s3_client = boto3.client(
            's3',
            region_name=config.AWS_REGION,
            config=BotoConfig(signature_version='s3v4')
        )
    return _s3_client


def reset_client() -> None:
    global _s3_client
    _s3_client = None


def signed_read_url(
    storage_ref: Optional[str],
    expiration: Optional[int] = None,
    bucket_name: Optional[str] = None
) -> Optional[str]:
    """
    Generate a presigned GET URL for an audio object.

    Best-effort: a missing reference, missing bucket or signing failure
    yields None and the caller serves the item without a URL.

    Args:
        storage_ref: S3 key (e.g. 'audio/source-1/0003.wav') or s3://bucket/key URI
        expiration: URL lifetime in seconds, defaults to config.SIGNED_URL_TTL_SECONDS
        bucket_name: Optional bucket name, defaults to config.MEDIA_BUCKET

    Returns:
        Presigned URL string or None
    """
    if not storage_ref:
        return None

    bucket = bucket_name or config.MEDIA_BUCKET
    key = storage_ref

    # s3://bucket/key references carry their own bucket
    if storage_ref.startswith('s3://'):
        bucket, _, key = storage_ref[len('s3://'):].partition('/')

    if not bucket or not key:
        logger.warning(f"Cannot sign {storage_ref}: no bucket configured")
        return None

    try:
        url = get_s3_client().generate_presigned_url(
            'get_object',
            Params={
                'Bucket': bucket,
                'Key': key
            },
            ExpiresIn=expiration or config.SIGNED_URL_TTL_SECONDS
        )
        return url

    except (ClientError, BotoCoreError) as e:
        logger.warning(f"Error generating presigned URL for {storage_ref}: {e}")
        return None
