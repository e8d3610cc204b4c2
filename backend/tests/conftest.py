"""
Shared fixtures: moto-backed AWS, a controllable clock and wired services.
"""
import json
import os
import sys
from dataclasses import dataclass
from unittest.mock import MagicMock

import pytest

# Fake credentials before any boto3 client is created
os.environ.setdefault('AWS_ACCESS_KEY_ID', 'testing')
os.environ.setdefault('AWS_SECRET_ACCESS_KEY', 'testing')
os.environ.setdefault('AWS_SECURITY_TOKEN', 'testing')
os.environ.setdefault('AWS_SESSION_TOKEN', 'testing')
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-east-1')
os.environ.setdefault('AWS_REGION', 'us-east-1')

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from moto import mock_aws  # noqa: E402

from shared import dynamo, notifications, schema, storage, text_assist  # noqa: E402
from shared.compensation import CompensationEngine, FixedRatePlanResolver  # noqa: E402
from shared.config import Config  # noqa: E402
from shared.leases import LeaseManager  # noqa: E402
from shared.ledger import Ledger  # noqa: E402
from shared.models import RatePlan, Submission, WorkItem, WorkItemStatus  # noqa: E402
from shared.reconciliation import Reconciler  # noqa: E402
from shared.review_gate import ReviewGate  # noqa: E402
from shared.store import WorkStore  # noqa: E402
from shared.submissions import SubmissionService  # noqa: E402

T0 = 1_700_000_000


class FakeClock:
    """Epoch-seconds clock the tests move by hand."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


def _reset_clients():
    dynamo.reset_clients()
    storage.reset_client()
    text_assist.reset_client()
    notifications.reset_client()


@pytest.fixture
def aws():
    """Empty platform tables inside a moto mock."""
    with mock_aws():
        _reset_clients()
        schema.create_tables(dynamo.get_dynamodb(), Config(environ={}))
        yield
    _reset_clients()


@pytest.fixture
def clock():
    return FakeClock()


@dataclass
class Platform:
    settings: Config
    clock: FakeClock
    store: WorkStore
    ledger: Ledger
    engine: CompensationEngine
    leases: LeaseManager
    submissions: SubmissionService
    gate: ReviewGate
    reconciler: Reconciler
    notifier: MagicMock
    resolver: FixedRatePlanResolver

    def add_item(self, work_item_id, duration_seconds=90, created_at=None, ordinal=0,
                 pool_id=None, status=WorkItemStatus.AVAILABLE, **extra) -> WorkItem:
        work_item = WorkItem(
            work_item_id=work_item_id,
            status=status,
            duration_seconds=duration_seconds,
            created_at=self.clock() if created_at is None else created_at,
            ordinal=ordinal,
            pool_id=pool_id,
            **extra
        )
        dynamo.get_table(self.settings.WORK_ITEMS_TABLE).put_item(Item=work_item.to_item())
        return work_item

    def add_submission(self, submission: Submission) -> Submission:
        dynamo.get_table(self.settings.SUBMISSIONS_TABLE).put_item(Item=submission.to_item())
        return submission

    def item(self, work_item_id) -> WorkItem:
        return self.store.require_work_item(work_item_id)

    def balance(self, worker_id) -> int:
        return self.store.get_worker(worker_id).total_earnings_cents

    def claim_and_submit(self, worker_id, work_item_id, text='Hello'):
        lease = self.leases.claim(worker_id, work_item_id=work_item_id)
        return self.submissions.submit(lease.lease_id, worker_id, text)


def build_platform(settings=None, clock=None, rate_per_minute_cents=120) -> Platform:
    settings = settings or Config(environ={})
    clock = clock or FakeClock()
    store = WorkStore(settings)
    ledger = Ledger(settings, clock=clock)
    plan = RatePlan('plan-1', rate_per_minute_cents, created_at=T0) if rate_per_minute_cents else None
    resolver = FixedRatePlanResolver(plan)
    engine = CompensationEngine(resolver, ledger=ledger, settings=settings, clock=clock)
    notifier = MagicMock(return_value=True)
    return Platform(
        settings=settings,
        clock=clock,
        store=store,
        ledger=ledger,
        engine=engine,
        leases=LeaseManager(store=store, settings=settings, clock=clock),
        submissions=SubmissionService(store=store, settings=settings, clock=clock, improve=lambda text: None),
        gate=ReviewGate(engine, store=store, settings=settings, clock=clock, notifier=notifier),
        reconciler=Reconciler(store=store, ledger=ledger, settings=settings, clock=clock),
        notifier=notifier,
        resolver=resolver,
    )


@pytest.fixture
def platform(aws, clock):
    return build_platform(clock=clock)


def api_event(sub='w1', groups='worker', body=None, path=None, query=None):
    """API Gateway proxy event with Cognito claims."""
    return {
        'requestContext': {'authorizer': {'claims': {'sub': sub, 'cognito:groups': groups}}} if sub else {},
        'pathParameters': path,
        'queryStringParameters': query,
        'body': json.dumps(body) if body is not None else None,
    }
