"""
Tests for the Lambda handlers: auth, status codes and response bodies.
"""
import json
from unittest.mock import patch

import pytest

from conftest import api_event
from shared import dynamo
from shared.models import RatePlan, WorkItem, WorkItemStatus

from handlers.tasks import (
    claim_work, release_work, list_available_work, expire_leases, ingest_work_items,
    report_broken, return_to_pool,
)
from handlers.submissions import save_draft, submit_work, list_my_work, list_my_submissions
from handlers.reviews import list_pending_reviews, decide_review, revert_approval
from handlers.maintenance import reconcile_statuses, reconcile_balances
from handlers.wallet import get_wallet, create_payment, mark_payment_paid


def body_of(response):
    return json.loads(response['body'])


def add_item(work_item_id, duration_seconds=90, created_at=1, **extra):
    work_item = WorkItem(work_item_id, WorkItemStatus.AVAILABLE, duration_seconds, created_at, **extra)
    dynamo.get_table('work-items').put_item(Item=work_item.to_item())


def add_rate_plan(rate=120):
    dynamo.get_table('rate-plans').put_item(Item=RatePlan('plan-1', rate, created_at=1).to_item())


def claim(worker='w1', body=None):
    return claim_work.handler(api_event(sub=worker, body=body or {}), None)


def submit(lease_id, worker='w1', text='Hello'):
    return submit_work.handler(api_event(sub=worker, body={'text': text}, path={'leaseId': lease_id}), None)


REVIEWER = {'sub': 'r1', 'groups': 'reviewer'}
ADMIN = {'sub': 'admin-1', 'groups': 'admin'}


class TestWorkerFlow:

    def test_unauthenticated(self, aws):
        response = claim_work.handler(api_event(sub=None), None)

        assert response['statusCode'] == 401
        assert body_of(response)['error'] == 'Unauthorized'

    def test_list_claim_release(self, aws):
        add_item('i1')

        listing = body_of(list_available_work.handler(api_event(query={'pageSize': '10'}), None))
        assert listing['total'] == 1
        assert listing['items'][0]['workItemId'] == 'i1'

        response = claim()
        assert response['statusCode'] == 201
        assert response['headers']['Access-Control-Allow-Origin'] == '*'
        payload = body_of(response)
        assert payload['workItem']['status'] == WorkItemStatus.ASSIGNED
        lease_id = payload['lease']['leaseId']

        my_work = body_of(list_my_work.handler(api_event(), None))
        assert [entry['lease']['leaseId'] for entry in my_work['items']] == [lease_id]

        released = release_work.handler(api_event(path={'leaseId': lease_id}), None)
        assert released['statusCode'] == 200
        assert body_of(released)['itemReopened'] is True

    def test_second_claim_is_no_capacity(self, aws):
        add_item('i1')
        add_item('i2', created_at=2)
        claim()

        response = claim()

        assert response['statusCode'] == 409
        assert body_of(response)['error'] == 'NoCapacity'

    def test_claim_with_nothing_available(self, aws):
        response = claim()

        assert response['statusCode'] == 404
        assert body_of(response)['error'] == 'NoItemsAvailable'

    def test_release_someone_elses_lease(self, aws):
        add_item('i1')
        lease_id = body_of(claim())['lease']['leaseId']

        response = release_work.handler(api_event(sub='w2', path={'leaseId': lease_id}), None)

        assert response['statusCode'] == 403
        assert body_of(response)['error'] == 'LeaseNotOwned'

    def test_draft_then_submit(self, aws):
        add_item('i1')
        lease_id = body_of(claim())['lease']['leaseId']

        draft = save_draft.handler(api_event(body={'text': 'wip'}, path={'leaseId': lease_id}), None)
        assert draft['statusCode'] == 200

        response = submit(lease_id)
        assert response['statusCode'] == 201
        assert body_of(response)['submission']['submissionId'] == body_of(draft)['submission']['submissionId']

        mine = body_of(list_my_submissions.handler(api_event(query={'status': 'PENDING'}), None))
        assert len(mine['items']) == 1

    def test_submit_without_text(self, aws):
        add_item('i1')
        lease_id = body_of(claim())['lease']['leaseId']

        response = submit_work.handler(api_event(body={}, path={'leaseId': lease_id}), None)

        assert response['statusCode'] == 400
        assert body_of(response)['error'] == 'ValidationError'

    def test_report_broken(self, aws):
        add_item('i1')
        claim()

        response = report_broken.handler(api_event(path={'workItemId': 'i1'}), None)

        assert response['statusCode'] == 200
        assert body_of(response)['workItem']['status'] == WorkItemStatus.FAILED

    def test_unexpected_error_is_500(self, aws):
        with patch('shared.leases.LeaseManager.claim', side_effect=RuntimeError('boom')):
            response = claim()

        assert response['statusCode'] == 500
        assert body_of(response)['error'] == 'InternalError'


class TestReviewFlow:

    @pytest.fixture
    def submission_id(self, aws):
        add_item('i1')
        lease_id = body_of(claim())['lease']['leaseId']
        return body_of(submit(lease_id))['submission']['submissionId']

    def decide(self, submission_id, decision='APPROVED', sub='r1', groups='reviewer'):
        return decide_review.handler(api_event(
            sub=sub, groups=groups, body={'decision': decision}, path={'submissionId': submission_id},
        ), None)

    def test_workers_cannot_review(self, submission_id):
        response = self.decide(submission_id, sub='w2', groups='worker')

        assert response['statusCode'] == 403

    def test_approval_needs_a_rate_plan(self, submission_id):
        response = self.decide(submission_id)

        assert response['statusCode'] == 503
        assert body_of(response)['error'] == 'NoActiveRatePlan'

    def test_pending_then_approve_then_wallet(self, submission_id):
        add_rate_plan(120)

        pending = body_of(list_pending_reviews.handler(api_event(**REVIEWER), None))
        assert [p['submission']['submissionId'] for p in pending['items']] == [submission_id]

        response = self.decide(submission_id)
        assert response['statusCode'] == 200
        assert body_of(response)['creditedCents'] == 240
        assert body_of(response)['workItemStatus'] == WorkItemStatus.APPROVED

        again = self.decide(submission_id)
        assert again['statusCode'] == 409
        assert body_of(again)['error'] == 'AlreadyReviewed'

        wallet = body_of(get_wallet.handler(api_event(), None))
        assert wallet['balanceCents'] == 240
        assert [e['deltaCents'] for e in wallet['entries']] == [240]

    def test_admin_revert(self, submission_id):
        add_rate_plan(120)
        self.decide(submission_id)

        worker_try = revert_approval.handler(api_event(path={'workItemId': 'i1'}), None)
        assert worker_try['statusCode'] == 403

        response = revert_approval.handler(api_event(path={'workItemId': 'i1'}, **ADMIN), None)
        assert response['statusCode'] == 200
        assert body_of(response)['reversedCents'] == 240

        again = revert_approval.handler(api_event(path={'workItemId': 'i1'}, **ADMIN), None)
        assert body_of(again)['error'] == 'NotApproved'

    def test_reject_and_return_to_pool(self, submission_id):
        self.decide(submission_id, decision='REJECTED')

        response = return_to_pool.handler(api_event(path={'workItemId': 'i1'}, **ADMIN), None)

        assert response['statusCode'] == 200
        assert body_of(response)['workItem']['status'] == WorkItemStatus.AVAILABLE


class TestAdminHandlers:

    def test_ingest(self, aws):
        response = ingest_work_items.handler(api_event(body={
            'poolId': 'p1',
            'items': [{'durationSeconds': 90, 'storageRef': 'audio/1.wav'}, {'durationSeconds': 30}],
        }, **ADMIN), None)

        assert response['statusCode'] == 201
        ids = body_of(response)['workItemIds']
        stored = [WorkItem.from_item(dynamo.get_item('work-items', {'workItemId': i})) for i in ids]
        assert [(w.ordinal, w.pool_id, w.status) for w in stored] == [
            (0, 'p1', WorkItemStatus.AVAILABLE), (1, 'p1', WorkItemStatus.AVAILABLE),
        ]

    def test_ingest_validation(self, aws):
        response = ingest_work_items.handler(api_event(body={'items': [{'durationSeconds': 'long'}]}, **ADMIN), None)

        assert response['statusCode'] == 400

    def test_ingest_refuses_ids_in_use(self, aws):
        add_item('i1', duration_seconds=30)

        response = ingest_work_items.handler(api_event(body={
            'items': [{'workItemId': 'i2', 'durationSeconds': 5}, {'workItemId': 'i1', 'durationSeconds': 5}],
        }, **ADMIN), None)

        assert response['statusCode'] == 409
        assert body_of(response)['workItemIds'] == ['i1']
        assert dynamo.get_item('work-items', {'workItemId': 'i2'}) is None
        assert dynamo.get_item('work-items', {'workItemId': 'i1'})['durationSeconds'] == 30

    def test_ingest_refuses_repeated_ids(self, aws):
        response = ingest_work_items.handler(api_event(body={
            'items': [{'workItemId': 'i1', 'durationSeconds': 5}, {'workItemId': 'i1', 'durationSeconds': 6}],
        }, **ADMIN), None)

        assert response['statusCode'] == 400

    def test_ingest_requires_admin(self, aws):
        response = ingest_work_items.handler(api_event(body={'items': [{'durationSeconds': 5}]}), None)

        assert response['statusCode'] == 403

    def test_scheduled_expiry(self, aws):
        assert expire_leases.handler({'source': 'aws.events', 'detail-type': 'Scheduled Event'}, None) == {'expired': 0}

    def test_expiry_via_api(self, aws):
        response = expire_leases.handler(api_event(**ADMIN), None)

        assert response['statusCode'] == 200
        assert body_of(response) == {'expired': 0}

    def test_reconcile_handlers(self, aws):
        add_item('i1')
        claim()

        statuses = reconcile_statuses.handler(api_event(**ADMIN), None)
        balances = reconcile_balances.handler(api_event(body={'dryRun': True}, **ADMIN), None)

        assert body_of(statuses) == {'fixed': {}, 'total': 0}
        assert body_of(balances)['dryRun'] is True

    def test_payments(self, aws):
        created = create_payment.handler(api_event(body={'workerId': 'w1', 'amountCents': 150}, **ADMIN), None)
        assert created['statusCode'] == 201
        payment_id = body_of(created)['payment']['paymentId']

        paid = mark_payment_paid.handler(api_event(path={'paymentId': payment_id}, **ADMIN), None)
        assert paid['statusCode'] == 200
        assert body_of(paid)['ledgerEntry']['deltaCents'] == -150

        twice = mark_payment_paid.handler(api_event(path={'paymentId': payment_id}, **ADMIN), None)
        assert twice['statusCode'] == 409

    def test_payment_amount_validation(self, aws):
        response = create_payment.handler(api_event(body={'workerId': 'w1', 'amountCents': 'lots'}, **ADMIN), None)

        assert response['statusCode'] == 400
