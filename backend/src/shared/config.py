"""
Configuration module for Lambda handlers.
Loads all environment variables needed by the work platform.
"""
import os


class Config:
    """Centralized configuration from environment variables."""

    def __init__(self, environ=None):
        env = os.environ if environ is None else environ

        # AWS Region
        self.AWS_REGION = env.get('AWS_REGION', 'us-east-1')

        # DynamoDB Tables
        self.WORK_ITEMS_TABLE = env.get('WORK_ITEMS_TABLE', 'work-items')
        self.LEASES_TABLE = env.get('LEASES_TABLE', 'leases')
        self.SUBMISSIONS_TABLE = env.get('SUBMISSIONS_TABLE', 'submissions')
        self.REVIEWS_TABLE = env.get('REVIEWS_TABLE', 'reviews')
        self.LEDGER_TABLE = env.get('LEDGER_TABLE', 'ledger')
        self.WORKERS_TABLE = env.get('WORKERS_TABLE', 'workers')
        self.RATE_PLANS_TABLE = env.get('RATE_PLANS_TABLE', 'rate-plans')
        self.PAYMENTS_TABLE = env.get('PAYMENTS_TABLE', 'payments')

        # Lease policy
        self.LEASE_MINUTES = int(env.get('LEASE_MINUTES', '15'))
        self.MAX_ACTIVE_LEASES = int(env.get('MAX_ACTIVE_LEASES', '1'))
        self.CLAIM_COOLDOWN_SECONDS = int(env.get('CLAIM_COOLDOWN_SECONDS', '30'))

        # Sweeps and listings
        self.EXPIRE_BATCH_LIMIT = int(env.get('EXPIRE_BATCH_LIMIT', '500'))
        self.PENDING_REVIEW_LIMIT = int(env.get('PENDING_REVIEW_LIMIT', '100'))

        # S3 audio storage
        self.MEDIA_BUCKET = env.get('MEDIA_BUCKET', '')
        self.SIGNED_URL_TTL_SECONDS = int(env.get('SIGNED_URL_TTL_SECONDS', '3600'))

        # SageMaker endpoint used for advisory text improvement
        self.TEXT_ASSIST_ENDPOINT = env.get('TEXT_ASSIST_ENDPOINT', '')

        # SQS queue for review notifications
        self.NOTIFICATIONS_QUEUE_URL = env.get('NOTIFICATIONS_QUEUE_URL', '')


config = Config()
