"""
Tests for drafts and submissions.
"""
from unittest.mock import MagicMock

import pytest

from conftest import build_platform
from shared.config import Config
from shared.errors import (
    LeaseExpired, LeaseClosed, LeaseNotOwned, LeaseNotFound, AlreadyApproved, ValidationError,
)
from shared.models import WorkItemStatus, ReleaseReason, SubmissionFilter, ReviewDecision
from shared.submissions import SubmissionService


@pytest.fixture
def leased(platform):
    platform.add_item('i1')
    return platform.leases.claim('w1')


class TestSaveDraft:

    def test_first_save_creates_draft_and_links_lease(self, platform, leased):
        draft = platform.submissions.save_draft(leased.lease_id, 'w1', 'first pass')

        assert draft.is_draft
        assert platform.store.get_lease(leased.lease_id).draft_submission_id == draft.submission_id

    def test_later_saves_update_the_same_draft(self, platform, leased):
        first = platform.submissions.save_draft(leased.lease_id, 'w1', 'first pass')
        platform.clock.advance(5)
        second = platform.submissions.save_draft(leased.lease_id, 'w1', 'second pass', language='en')

        assert second.submission_id == first.submission_id
        assert second.text == 'second pass'
        assert second.language == 'en'
        assert len(platform.store.submissions_for_item('i1')) == 1

    def test_racing_first_saves_end_with_one_draft(self, platform, leased, monkeypatch):
        # This save read the lease before another tab created the draft
        stale = platform.store.get_lease(leased.lease_id)
        other = platform.submissions.save_draft(leased.lease_id, 'w1', 'from tab one')
        monkeypatch.setattr(platform.store, 'require_lease', MagicMock(
            side_effect=[stale, platform.store.get_lease(leased.lease_id)]))

        draft = platform.submissions.save_draft(leased.lease_id, 'w1', 'from tab two')

        assert draft.submission_id == other.submission_id
        assert draft.text == 'from tab two'
        assert len(platform.store.submissions_for_item('i1')) == 1

    def test_draft_on_released_lease(self, platform, leased):
        platform.leases.release(leased.lease_id, 'w1')

        with pytest.raises(LeaseClosed):
            platform.submissions.save_draft(leased.lease_id, 'w1', 'late')

    def test_draft_on_expired_lease(self, platform, leased):
        platform.clock.advance(15 * 60)

        with pytest.raises(LeaseExpired):
            platform.submissions.save_draft(leased.lease_id, 'w1', 'late')

    def test_draft_on_someone_elses_lease(self, platform, leased):
        with pytest.raises(LeaseNotOwned):
            platform.submissions.save_draft(leased.lease_id, 'w2', 'mine now')

    def test_draft_on_unknown_lease(self, platform):
        with pytest.raises(LeaseNotFound):
            platform.submissions.save_draft('missing', 'w1', 'text')


class TestSubmit:

    def test_submit_moves_item_and_closes_lease(self, platform, leased):
        submission = platform.submissions.submit(leased.lease_id, 'w1', 'Hello')

        assert submission.submitted_at == platform.clock()
        item = platform.item('i1')
        assert item.status == WorkItemStatus.SUBMITTED
        assert item.active_lease_id is None
        lease = platform.store.get_lease(leased.lease_id)
        assert lease.released_at == platform.clock()
        assert lease.release_reason == ReleaseReason.SUBMITTED

    def test_submit_reuses_draft(self, platform, leased):
        draft = platform.submissions.save_draft(leased.lease_id, 'w1', 'draft', notes='noisy')

        submission = platform.submissions.submit(leased.lease_id, 'w1', 'final')

        assert submission.submission_id == draft.submission_id
        assert submission.created_at == draft.created_at
        assert submission.notes == 'noisy'
        stored = platform.store.get_submission(draft.submission_id)
        assert stored.text == 'final' and not stored.is_draft

    def test_submit_twice(self, platform, leased):
        platform.submissions.submit(leased.lease_id, 'w1', 'Hello')

        with pytest.raises(LeaseClosed):
            platform.submissions.submit(leased.lease_id, 'w1', 'Hello again')

    def test_submit_after_expiry(self, platform, leased):
        platform.clock.advance(15 * 60)

        with pytest.raises(LeaseExpired):
            platform.submissions.submit(leased.lease_id, 'w1', 'Hello')
        assert platform.item('i1').status == WorkItemStatus.ASSIGNED

    def test_zero_minute_lease_cannot_submit(self, aws, clock):
        platform = build_platform(Config(environ={'LEASE_MINUTES': '0'}), clock)
        platform.add_item('i1')
        lease = platform.leases.claim('w1')

        with pytest.raises(LeaseExpired):
            platform.submissions.submit(lease.lease_id, 'w1', 'Hello')

    def test_submit_with_expiry_at_commit(self, platform, leased, monkeypatch):
        # The lease runs out between the precheck and the transaction
        times = iter([platform.clock(), platform.clock() + 15 * 60])
        monkeypatch.setattr(platform.submissions, 'clock', lambda: next(times))

        with pytest.raises(LeaseExpired):
            platform.submissions.submit(leased.lease_id, 'w1', 'Hello')
        assert platform.item('i1').status == WorkItemStatus.ASSIGNED

    def test_submit_on_approved_item(self, platform, leased):
        platform.add_item('i1', status=WorkItemStatus.APPROVED, approved_submission_id='s-other')

        with pytest.raises(AlreadyApproved):
            platform.submissions.submit(leased.lease_id, 'w1', 'Hello')
        assert platform.store.get_lease(leased.lease_id).released_at is None

    def test_empty_text_rejected(self, platform, leased):
        with pytest.raises(ValidationError):
            platform.submissions.submit(leased.lease_id, 'w1', '   ')

    def test_text_assist_suggestion_attached(self, platform, leased):
        service = SubmissionService(store=platform.store, settings=platform.settings, clock=platform.clock,
                                    improve=lambda text: 'Hello.')

        submission = service.submit(leased.lease_id, 'w1', 'hello')

        assert submission.text == 'hello'
        assert submission.ai_suggested_text == 'Hello.'

    def test_text_assist_failure_does_not_block(self, platform, leased):
        failing = MagicMock(side_effect=RuntimeError('endpoint down'))
        service = SubmissionService(store=platform.store, settings=platform.settings, clock=platform.clock,
                                    improve=failing)

        submission = service.submit(leased.lease_id, 'w1', 'hello')

        assert submission.ai_suggested_text is None
        assert platform.item('i1').status == WorkItemStatus.SUBMITTED


class TestListForWorker:

    def test_filters(self, platform):
        platform.add_item('i1', created_at=1)
        platform.add_item('i2', created_at=2)
        first = platform.claim_and_submit('w1', 'i1')
        platform.clock.advance(30)
        second = platform.claim_and_submit('w1', 'i2')
        platform.gate.decide(first.submission_id, 'r1', ReviewDecision.REJECTED)

        everything = platform.submissions.list_for_worker('w1')
        pending = platform.submissions.list_for_worker('w1', SubmissionFilter.PENDING)
        rejected = platform.submissions.list_for_worker('w1', 'rejected')

        assert [s.submission_id for s in everything] == [second.submission_id, first.submission_id]
        assert [s.submission_id for s in pending] == [second.submission_id]
        assert [s.submission_id for s in rejected] == [first.submission_id]

    def test_drafts_not_listed(self, platform, leased):
        platform.submissions.save_draft(leased.lease_id, 'w1', 'draft')

        assert platform.submissions.list_for_worker('w1') == []

    def test_unknown_filter(self, platform):
        with pytest.raises(ValidationError):
            platform.submissions.list_for_worker('w1', 'SOMETIMES')
