"""Tests for instance creation and the claim protocol."""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from conftest import T0
from rapidcron.claims import InstanceClaimProtocol
from rapidcron.db import InstanceStatus, TriggeredBy
from rapidcron.executors.base import ERROR_TRANSIENT, SUCCESS, ExecutionResult
from rapidcron.retry import Done, GiveUp, Retry


@pytest.fixture
def claims(store, config):
    return InstanceClaimProtocol.from_config(store, config)


@pytest.fixture
def task(make_task):
    return make_task(name="job", timeout_seconds=20)


class TestCreateInstance:
    """Test idempotent instance creation."""

    @pytest.mark.unit
    def test_create_is_idempotent(self, claims, task):
        first, created_first = claims.create_instance(task, T0)
        second, created_second = claims.create_instance(task, T0)

        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        assert first.status == InstanceStatus.PENDING.value
        assert first.triggered_by == TriggeredBy.SCHEDULER.value
        assert first.next_attempt_at == T0

    @pytest.mark.unit
    def test_concurrent_create_yields_one_instance(self, claims, store, task):
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: claims.create_instance(task, T0), range(8)))

        assert sum(1 for _, created in results if created) == 1
        assert len({instance.id for instance, _ in results}) == 1
        assert len(store.instances(task_id=task.id)) == 1

    @pytest.mark.unit
    def test_skipped_instance_is_terminal(self, claims, task):
        instance, _ = claims.create_instance(task, T0, status=InstanceStatus.SKIPPED)
        assert instance.status == InstanceStatus.SKIPPED.value
        assert instance.end_time is not None


class TestClaim:
    """Test claiming pending instances."""

    @pytest.mark.unit
    def test_claim_sets_owner_and_lease(self, claims, task):
        instance, _ = claims.create_instance(task, T0)

        claimed = claims.claim(instance, "w1", T0, claims.timeout_for(task))

        assert claimed is not None
        assert claimed.status == InstanceStatus.CLAIMED.value
        assert claimed.executor_id == "w1"
        assert claimed.claimed_at == T0
        # timeout 20 + grace 5
        assert claimed.lease_expires_at == T0 + timedelta(seconds=25)

    @pytest.mark.unit
    def test_concurrent_claim_has_one_winner(self, claims, task):
        instance, _ = claims.create_instance(task, T0)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda i: claims.claim(instance, f"w{i}", T0, 20), range(8)))

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert winners[0].status == InstanceStatus.CLAIMED.value

    @pytest.mark.unit
    def test_not_claimable_before_visible(self, claims, task):
        instance, _ = claims.create_instance(task, T0 + timedelta(minutes=1))
        assert claims.claim(instance, "w1", T0, 20) is None

    @pytest.mark.unit
    def test_cancelled_instance_cannot_be_claimed(self, claims, task):
        instance, _ = claims.create_instance(task, T0)
        assert claims.cancel(instance.id) is True
        assert claims.claim(instance, "w1", T0, 20) is None


class TestLifecycle:
    """Test transitions after a claim."""

    @pytest.mark.unit
    def test_success(self, claims, store, task):
        instance, _ = claims.create_instance(task, T0)
        owned = claims.claim(instance, "w1", T0, 20)
        assert claims.start(owned, T0) is True

        result = ExecutionResult(status=SUCCESS, output_summary="ok")
        assert claims.finish(owned, Done(), result, T0 + timedelta(seconds=1)) is True

        stored = store.get_instance(instance.id)
        assert stored.status == InstanceStatus.SUCCESS.value
        assert stored.executor_id is None
        assert stored.lease_expires_at is None
        assert stored.end_time == T0 + timedelta(seconds=1)
        assert stored.result["output_summary"] == "ok"

    @pytest.mark.unit
    def test_retry_returns_to_pending(self, claims, store, task):
        instance, _ = claims.create_instance(task, T0)
        owned = claims.claim(instance, "w1", T0, 20)
        claims.start(owned, T0)

        not_before = T0 + timedelta(seconds=10)
        result = ExecutionResult.failure(ERROR_TRANSIENT, "boom")
        assert claims.finish(owned, Retry(delay_seconds=10, not_before=not_before), result, T0) is True

        stored = store.get_instance(instance.id)
        assert stored.status == InstanceStatus.PENDING.value
        assert stored.retry_count == 1
        assert stored.next_attempt_at == not_before
        assert stored.claimed_at is None
        assert claims.claim(stored, "w2", T0 + timedelta(seconds=5), 20) is None
        assert claims.claim(stored, "w2", not_before, 20) is not None

    @pytest.mark.unit
    def test_give_up_is_terminal(self, claims, store, task):
        instance, _ = claims.create_instance(task, T0)
        owned = claims.claim(instance, "w1", T0, 20)
        claims.start(owned, T0)

        result = ExecutionResult.failure(ERROR_TRANSIENT, "boom")
        assert claims.finish(owned, GiveUp(reason="retries exhausted"), result, T0) is True
        assert store.get_instance(instance.id).status == InstanceStatus.FAILED.value

    @pytest.mark.unit
    def test_running_instance_cannot_be_cancelled(self, claims, task):
        instance, _ = claims.create_instance(task, T0)
        owned = claims.claim(instance, "w1", T0, 20)
        claims.start(owned, T0)
        assert claims.cancel(instance.id) is False

    @pytest.mark.unit
    def test_expired_lease_is_reclaimed_once(self, claims, store, task):
        instance, _ = claims.create_instance(task, T0)
        owned = claims.claim(instance, "w1", T0, 20)
        claims.start(owned, T0)
        snapshot = store.get_instance(instance.id)

        result = ExecutionResult.failure("lease_expired", "gone")
        retry = Retry(delay_seconds=0, not_before=T0 + timedelta(seconds=30))

        # Lease still valid
        assert claims.expire(snapshot, retry, result, T0 + timedelta(seconds=10)) is False

        later = T0 + timedelta(seconds=30)
        assert claims.expire(snapshot, retry, result, later) is True
        assert claims.expire(snapshot, retry, result, later) is False

        stored = store.get_instance(instance.id)
        assert stored.status == InstanceStatus.PENDING.value
        assert stored.retry_count == 1

    @pytest.mark.unit
    def test_stale_owner_cannot_overwrite_new_owner(self, claims, store, task):
        instance, _ = claims.create_instance(task, T0)
        stale = claims.claim(instance, "w1", T0, 20)
        claims.start(stale, T0)

        later = T0 + timedelta(seconds=30)
        retry = Retry(delay_seconds=0, not_before=later)
        claims.expire(store.get_instance(instance.id), retry, ExecutionResult.failure("lease_expired", "gone"), later)
        fresh = claims.claim(store.get_instance(instance.id), "w2", later, 20)
        assert fresh is not None

        # The first owner finally reports back
        result = ExecutionResult(status=SUCCESS)
        assert claims.finish(stale, Done(), result, later) is False

        stored = store.get_instance(instance.id)
        assert stored.status == InstanceStatus.CLAIMED.value
        assert stored.executor_id == "w2"
