"""
Tests for claiming, releasing and expiring leases.
"""
from unittest.mock import MagicMock

import pytest

from conftest import build_platform
from shared.config import Config
from shared.errors import (
    NoCapacity, Cooldown, NoItemsAvailable, ItemNoLongerAvailable, WorkItemNotFound,
    LeaseNotOwned, LeaseNotFound, InvalidState,
)
from shared.models import WorkItemStatus, ReleaseReason


class TestClaim:

    def test_claim_assigns_oldest_available_item(self, platform):
        platform.add_item('newer', created_at=200)
        platform.add_item('older', created_at=100)

        lease = platform.leases.claim('w1')

        assert lease.work_item_id == 'older'
        assert lease.expires_at == platform.clock() + 15 * 60
        item = platform.item('older')
        assert item.status == WorkItemStatus.ASSIGNED
        assert item.active_lease_id == lease.lease_id
        assert platform.store.get_worker('w1').last_claim_at == platform.clock()

    def test_ordinal_breaks_created_at_ties(self, platform):
        platform.add_item('b', created_at=100, ordinal=2)
        platform.add_item('a', created_at=100, ordinal=1)

        assert platform.leases.claim('w1').work_item_id == 'a'

    def test_pool_filter(self, platform):
        platform.add_item('other-pool', created_at=100, pool_id='p2')
        platform.add_item('mine', created_at=200, pool_id='p1')

        assert platform.leases.claim('w1', pool_id='p1').work_item_id == 'mine'

    def test_no_items_available(self, platform):
        platform.add_item('taken', status=WorkItemStatus.SUBMITTED)

        with pytest.raises(NoItemsAvailable):
            platform.leases.claim('w1')

    def test_explicit_item_missing(self, platform):
        with pytest.raises(WorkItemNotFound):
            platform.leases.claim('w1', work_item_id='nope')

    def test_explicit_item_not_available(self, platform):
        platform.add_item('i1', status=WorkItemStatus.APPROVED, approved_submission_id='s0')

        with pytest.raises(ItemNoLongerAvailable):
            platform.leases.claim('w1', work_item_id='i1')

    def test_explicit_item_outside_pool(self, platform):
        platform.add_item('i1', pool_id='p1')

        with pytest.raises(NoItemsAvailable):
            platform.leases.claim('w1', pool_id='p2', work_item_id='i1')

    def test_capacity_limit(self, platform):
        platform.add_item('i1', created_at=1)
        platform.add_item('i2', created_at=2)
        platform.leases.claim('w1')
        platform.clock.advance(60)

        with pytest.raises(NoCapacity) as exc:
            platform.leases.claim('w1')
        assert exc.value.status_code == 409
        assert exc.value.details['activeLeases'][0]['workItemId'] == 'i1'

    def test_higher_capacity_allows_parallel_leases(self, aws, clock):
        platform = build_platform(Config(environ={'MAX_ACTIVE_LEASES': '2', 'CLAIM_COOLDOWN_SECONDS': '0'}), clock)
        platform.add_item('i1', created_at=1)
        platform.add_item('i2', created_at=2)
        platform.add_item('i3', created_at=3)

        platform.leases.claim('w1')
        platform.leases.claim('w1')
        with pytest.raises(NoCapacity):
            platform.leases.claim('w1')

    def test_cooldown_counts_from_last_claim(self, platform):
        platform.add_item('i1', created_at=1)
        platform.add_item('i2', created_at=2)
        lease = platform.leases.claim('w1')
        platform.leases.release(lease.lease_id, 'w1')
        platform.clock.advance(10)

        with pytest.raises(Cooldown) as exc:
            platform.leases.claim('w1')
        assert exc.value.retry_after_seconds == 20
        assert exc.value.to_dict()['retryAfterSeconds'] == 20

        platform.clock.advance(20)
        assert platform.leases.claim('w1') is not None

    def test_cooldown_is_per_worker(self, platform):
        platform.add_item('i1', created_at=1)
        platform.add_item('i2', created_at=2)
        platform.leases.claim('w1')

        assert platform.leases.claim('w2').work_item_id == 'i2'

    def test_claim_loses_race_for_stale_item(self, platform, monkeypatch):
        stale = platform.add_item('i2')
        platform.leases.claim('w1')

        monkeypatch.setattr(platform.leases, '_select_item', lambda pool_id, work_item_id: stale)
        with pytest.raises(ItemNoLongerAvailable):
            platform.leases.claim('w2')

        assert len([lease for lease in platform.store.leases_for_item('i2')]) == 1

    def test_concurrent_claim_by_same_worker_is_refused(self, platform, monkeypatch):
        platform.add_item('i1', created_at=1)
        platform.add_item('i2', created_at=2)
        other = build_platform(clock=platform.clock)

        # The second claim read the worker before the first committed; re-reads see the truth
        seen_worker = platform.store.get_worker('w1')
        other.leases.claim('w1')
        monkeypatch.setattr(platform.store, 'get_worker', MagicMock(
            side_effect=[seen_worker, platform.store.get_worker('w1')]))
        monkeypatch.setattr(platform.store, 'leases_for_worker', MagicMock(
            side_effect=[[], platform.store.leases_for_worker('w1')]))

        with pytest.raises((NoCapacity, Cooldown)):
            platform.leases.claim('w1')
        assert platform.item('i2').status == WorkItemStatus.AVAILABLE


class TestRelease:

    def test_release_returns_item_to_pool(self, platform):
        platform.add_item('i1')
        lease = platform.leases.claim('w1')

        result = platform.leases.release(lease.lease_id, 'w1')

        assert result.item_reopened and not result.already_released
        stored = platform.store.get_lease(lease.lease_id)
        assert stored.released_at == platform.clock()
        assert stored.release_reason == ReleaseReason.ABANDONED
        item = platform.item('i1')
        assert item.status == WorkItemStatus.AVAILABLE
        assert item.active_lease_id is None

    def test_release_is_idempotent(self, platform):
        platform.add_item('i1')
        lease = platform.leases.claim('w1')
        platform.leases.release(lease.lease_id, 'w1')

        again = platform.leases.release(lease.lease_id, 'w1')

        assert again.already_released
        assert platform.item('i1').status == WorkItemStatus.AVAILABLE

    def test_release_after_submit_keeps_item_submitted(self, platform):
        platform.add_item('i1')
        lease = platform.leases.claim('w1')
        platform.submissions.submit(lease.lease_id, 'w1', 'Hello')

        result = platform.leases.release(lease.lease_id, 'w1')

        assert result.already_released
        assert platform.item('i1').status == WorkItemStatus.SUBMITTED

    def test_release_other_workers_lease(self, platform):
        platform.add_item('i1')
        lease = platform.leases.claim('w1')

        with pytest.raises(LeaseNotOwned):
            platform.leases.release(lease.lease_id, 'w2')

    def test_release_unknown_lease(self, platform):
        with pytest.raises(LeaseNotFound):
            platform.leases.release('missing', 'w1')

    def test_claim_release_round_trip_restores_item(self, platform):
        before = platform.add_item('i1')
        lease = platform.leases.claim('w1')
        platform.leases.release(lease.lease_id, 'w1')

        item = platform.item('i1')
        assert item.status == before.status
        assert item.approved_submission_id is None
        assert item.active_lease_id is None


class TestExpireStale:

    def test_expired_lease_returns_item(self, platform):
        platform.add_item('i1')
        lease = platform.leases.claim('w1')
        platform.clock.advance(15 * 60 + 1)

        assert platform.leases.expire_stale() == 1

        stored = platform.store.get_lease(lease.lease_id)
        assert stored.release_reason == ReleaseReason.EXPIRED
        assert platform.item('i1').status == WorkItemStatus.AVAILABLE

    def test_unexpired_lease_untouched(self, platform):
        platform.add_item('i1')
        platform.leases.claim('w1')
        platform.clock.advance(15 * 60 - 1)

        assert platform.leases.expire_stale() == 0
        assert platform.item('i1').status == WorkItemStatus.ASSIGNED

    def test_expire_stale_is_idempotent(self, platform):
        platform.add_item('i1')
        platform.add_item('i2')
        platform.leases.claim('w1', work_item_id='i1')
        platform.leases.claim('w2', work_item_id='i2')
        platform.clock.advance(3600)

        assert platform.leases.expire_stale() == 2
        first = {w.work_item_id: w.status for w in platform.store.all_work_items()}
        assert platform.leases.expire_stale() == 0
        second = {w.work_item_id: w.status for w in platform.store.all_work_items()}
        assert first == second

    def test_expiry_does_not_reopen_approved_item(self, platform):
        platform.add_item('i1')
        lease = platform.leases.claim('w1')
        # Approved through another path while the lease was still open
        platform.add_item('i1', status=WorkItemStatus.APPROVED, approved_submission_id='s-other',
                          active_lease_id=lease.lease_id)
        platform.clock.advance(3600)

        assert platform.leases.expire_stale() == 1
        assert platform.item('i1').status == WorkItemStatus.APPROVED

    def test_expired_lease_frees_capacity(self, platform):
        platform.add_item('i1', created_at=1)
        platform.add_item('i2', created_at=2)
        platform.leases.claim('w1')
        platform.clock.advance(15 * 60)

        # Expired but not yet swept still no longer counts
        assert platform.leases.claim('w1').work_item_id == 'i2'

    def test_listing_sweeps_first(self, platform):
        platform.add_item('i1')
        platform.leases.claim('w1')
        platform.clock.advance(3600)

        total, items = platform.leases.list_available(sign_urls=False)

        assert total == 1
        assert items[0]['workItemId'] == 'i1'


class TestListings:

    def test_list_available_pages(self, platform):
        for n in range(5):
            platform.add_item(f'i{n}', created_at=n)
        platform.add_item('done', status=WorkItemStatus.APPROVED, approved_submission_id='s')

        total, items = platform.leases.list_available(page=2, page_size=2)

        assert total == 5
        assert [i['workItemId'] for i in items] == ['i2', 'i3']
        assert items[0]['url'] is None

    def test_my_work_shows_active_leases_with_draft(self, platform):
        platform.add_item('i1')
        lease = platform.leases.claim('w1')
        platform.submissions.save_draft(lease.lease_id, 'w1', 'draft text')

        entries = platform.leases.my_work('w1')

        assert len(entries) == 1
        assert entries[0].work_item.work_item_id == 'i1'
        assert entries[0].draft.text == 'draft text'
        assert platform.leases.my_work('w2') == []


class TestReportBroken:

    def test_report_marks_failed_and_closes_leases(self, platform):
        platform.add_item('i1')
        lease = platform.leases.claim('w1')

        item = platform.leases.report_broken('i1', 'w1')

        assert item.status == WorkItemStatus.FAILED
        assert item.reported_broken and item.reported_by == 'w1'
        assert platform.store.get_lease(lease.lease_id).release_reason == ReleaseReason.BROKEN

    def test_report_refused_for_approved_item(self, platform):
        platform.add_item('i1', status=WorkItemStatus.APPROVED, approved_submission_id='s1')

        with pytest.raises(InvalidState):
            platform.leases.report_broken('i1', 'w1')

    def test_return_to_pool(self, platform):
        platform.add_item('i1')
        platform.leases.report_broken('i1', 'w1')

        item = platform.leases.return_to_pool('i1')

        assert item.status == WorkItemStatus.AVAILABLE
        assert not item.reported_broken

    def test_return_to_pool_refuses_assigned(self, platform):
        platform.add_item('i1')
        platform.leases.claim('w1')

        with pytest.raises(InvalidState):
            platform.leases.return_to_pool('i1')
