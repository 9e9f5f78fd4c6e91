"""Tests for rapidcron task administration."""

from datetime import timedelta
from uuid import uuid4

import pytest

import rapidcron
from conftest import T0
from rapidcron.db import InstanceStatus, TaskInstance, TriggeredBy, utcnow
from rapidcron.exceptions import InstanceNotFound, TaskNotFound, TaskValidationError


def _command_task(name: str = "backup", **kwargs):
    return rapidcron.create_task(name, "0 0 3 * * *", "command", {"command": "echo hi"}, **kwargs)


class TestCreateTask:
    """Test task creation."""

    @pytest.mark.unit
    def test_create_task(self, init_rapidcron):
        """Test creating a command task."""
        task = _command_task(description="nightly", timeout_seconds=60, max_retries=1)

        stored = rapidcron.get_task(task.id)
        assert stored is not None
        assert stored.name == "backup"
        assert stored.payload == {"command": "echo hi"}
        assert stored.enabled is True
        assert stored.timeout_seconds == 60
        assert stored.max_retries == 1
        assert stored.dependency_ids == []

    @pytest.mark.unit
    def test_get_task_by_name(self, init_rapidcron):
        task = _command_task()
        assert rapidcron.get_task_by_name("backup").id == task.id
        assert rapidcron.get_task_by_name("missing") is None

    @pytest.mark.unit
    def test_duplicate_name(self, init_rapidcron):
        """Test that names are unique among active tasks."""
        _command_task()
        with pytest.raises(TaskValidationError, match="already in use"):
            _command_task()

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "schedule,task_type,payload",
        [
            ("* * * * *", "command", {"command": "echo"}),
            ("0 0 3 * * *", "nope", {}),
            ("0 0 3 * * *", "command", {}),
            ("0 0 3 * * *", "http", {"url": "not-a-url"}),
        ],
    )
    def test_invalid_definition(self, init_rapidcron, schedule, task_type, payload):
        """Test rejecting bad schedules, types and payloads."""
        with pytest.raises(TaskValidationError):
            rapidcron.create_task("bad", schedule, task_type, payload)

    @pytest.mark.unit
    def test_unknown_dependency(self, init_rapidcron):
        with pytest.raises(TaskValidationError, match="Unknown dependency"):
            _command_task(dependency_ids=["00000000-0000-0000-0000-000000000000"])

    @pytest.mark.unit
    def test_invalid_limits(self, init_rapidcron):
        with pytest.raises(TaskValidationError, match="timeout_seconds"):
            _command_task(timeout_seconds=0)
        with pytest.raises(TaskValidationError, match="max_retries"):
            _command_task(max_retries=-1)

    @pytest.mark.unit
    def test_http_payload_defaults_are_normalized(self, init_rapidcron):
        task = rapidcron.create_task("ping", "*/30 * * * * *", "http", {"url": "https://example.com", "method": "get"})
        assert task.payload["method"] == "GET"
        assert task.payload["url"] == "https://example.com"


class TestUpdateTask:
    """Test changing tasks."""

    @pytest.mark.unit
    def test_update_fields(self, init_rapidcron):
        task = _command_task()

        updated = rapidcron.update_task(task.id, schedule="0 30 3 * * *", description="later")

        assert updated.schedule == "0 30 3 * * *"
        assert updated.description == "later"
        assert updated.updated_at >= task.updated_at

    @pytest.mark.unit
    def test_unknown_field(self, init_rapidcron):
        task = _command_task()
        with pytest.raises(TaskValidationError, match="Cannot update"):
            rapidcron.update_task(task.id, created_at=T0)

    @pytest.mark.unit
    def test_dependency_cycle_rejected(self, init_rapidcron):
        """Test that a dependency cycle is rejected."""
        first = _command_task("first")
        second = _command_task("second", dependency_ids=[first.id])
        third = _command_task("third", dependency_ids=[second.id])

        with pytest.raises(TaskValidationError, match="cycle"):
            rapidcron.update_task(first.id, dependency_ids=[third.id])

    @pytest.mark.unit
    def test_self_dependency_rejected(self, init_rapidcron):
        task = _command_task()
        with pytest.raises(TaskValidationError, match="itself"):
            rapidcron.update_task(task.id, dependency_ids=[task.id])

    @pytest.mark.unit
    def test_enable_disable(self, init_rapidcron):
        task = _command_task()
        assert rapidcron.disable_task(task.id).enabled is False
        assert rapidcron.enable_task(task.id).enabled is True

    @pytest.mark.unit
    def test_reenable_records_enable_time(self, init_rapidcron):
        task = _command_task()
        assert task.enabled_at is not None

        rapidcron.disable_task(task.id)
        reenabled = rapidcron.enable_task(task.id)
        assert reenabled.enabled_at >= task.enabled_at

        # Enabling an enabled task keeps the original time
        again = rapidcron.enable_task(task.id)
        assert again.enabled_at == reenabled.enabled_at

    @pytest.mark.unit
    def test_created_disabled_has_no_enable_time(self, init_rapidcron):
        assert _command_task(enabled=False).enabled_at is None

    @pytest.mark.unit
    def test_missing_task(self, init_rapidcron):
        with pytest.raises(TaskNotFound):
            rapidcron.enable_task("00000000-0000-0000-0000-000000000000")

    @pytest.mark.unit
    def test_invalid_id(self, init_rapidcron):
        with pytest.raises(TaskValidationError, match="Invalid id"):
            rapidcron.get_task("not-a-uuid")


class TestDeleteTask:
    """Test soft deletion."""

    @pytest.mark.unit
    def test_soft_delete_frees_name(self, init_rapidcron):
        """Test that a deleted task keeps its row but releases its name."""
        task = _command_task()

        deleted = rapidcron.delete_task(task.id)
        replacement = _command_task()

        assert deleted.deleted_at is not None
        assert rapidcron.get_task(task.id).deleted_at is not None
        assert replacement.id != task.id
        assert [t.id for t in rapidcron.list_tasks()] == [replacement.id]
        assert len(rapidcron.list_tasks(include_deleted=True)) == 2

    @pytest.mark.unit
    def test_delete_with_dependents(self, init_rapidcron):
        upstream = _command_task("upstream")
        _command_task("downstream", dependency_ids=[upstream.id])

        with pytest.raises(TaskValidationError, match="downstream"):
            rapidcron.delete_task(upstream.id)

        assert rapidcron.delete_task(upstream.id, force=True).deleted_at is not None

    @pytest.mark.unit
    def test_deleted_task_cannot_be_updated(self, init_rapidcron):
        task = _command_task()
        rapidcron.delete_task(task.id)
        with pytest.raises(TaskValidationError, match="deleted"):
            rapidcron.update_task(task.id, description="x")


class TestTaskListing:
    """Test task listing and filtering."""

    @pytest.mark.unit
    def test_list_filters(self, init_rapidcron):
        _command_task("one")
        _command_task("two", enabled=False)
        rapidcron.create_task("ping", "0 * * * * *", "http", {"url": "https://example.com"})

        assert len(rapidcron.list_tasks()) == 3
        assert [t.name for t in rapidcron.list_tasks(enabled=False)] == ["two"]
        assert [t.name for t in rapidcron.list_tasks(type="http")] == ["ping"]
        assert [t.name for t in rapidcron.list_tasks(name="one")] == ["one"]


class TestInstances:
    """Test manual triggers, cancellation and inspection."""

    @pytest.mark.unit
    def test_trigger_task(self, init_rapidcron):
        task = _command_task()

        instance = rapidcron.trigger_task(task.id)

        assert rapidcron.is_pending(instance)
        assert instance.triggered_by == TriggeredBy.MANUAL.value
        assert instance.scheduled_time <= utcnow()
        assert [i.id for i in rapidcron.list_instances(task_id=task.id)] == [instance.id]

    @pytest.mark.unit
    def test_trigger_disabled_task(self, init_rapidcron):
        task = _command_task(enabled=False)
        with pytest.raises(TaskValidationError, match="disabled"):
            rapidcron.trigger_task(task.id)

    @pytest.mark.unit
    def test_cancel_instance(self, init_rapidcron):
        task = _command_task()
        instance = rapidcron.trigger_task(task.id, when=T0)

        assert rapidcron.cancel_instance(instance.id) is True
        assert rapidcron.cancel_instance(instance.id) is False

        cancelled = rapidcron.get_instance(instance.id)
        assert cancelled.status == InstanceStatus.CANCELLED.value
        assert rapidcron.is_terminal(cancelled)

    @pytest.mark.unit
    def test_cancel_missing_instance(self, init_rapidcron):
        with pytest.raises(InstanceNotFound):
            rapidcron.cancel_instance("00000000-0000-0000-0000-000000000000")

    @pytest.mark.unit
    def test_list_instances_time_range(self, init_rapidcron):
        task = _command_task()
        for minutes in range(3):
            rapidcron.trigger_task(task.id, when=T0 + timedelta(minutes=minutes))

        found = rapidcron.list_instances(
            task_id=task.id,
            scheduled_after=T0 + timedelta(minutes=1),
            scheduled_before=T0 + timedelta(minutes=3),
        )

        assert [i.scheduled_time for i in found] == [T0 + timedelta(minutes=2), T0 + timedelta(minutes=1)]

    @pytest.mark.unit
    def test_list_logs_empty(self, init_rapidcron):
        task = _command_task()
        assert rapidcron.list_logs(task_id=task.id) == []


class TestStatusHelpers:
    """Test instance status predicates."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "status,pending,running,succeeded,failed,terminal",
        [
            (InstanceStatus.PENDING, True, False, False, False, False),
            (InstanceStatus.CLAIMED, False, True, False, False, False),
            (InstanceStatus.RUNNING, False, True, False, False, False),
            (InstanceStatus.SUCCESS, False, False, True, False, True),
            (InstanceStatus.FAILED, False, False, False, True, True),
            (InstanceStatus.SKIPPED, False, False, False, False, True),
            (InstanceStatus.CANCELLED, False, False, False, False, True),
        ],
    )
    def test_predicates(self, status, pending, running, succeeded, failed, terminal):
        instance = TaskInstance(task_id=uuid4(), scheduled_time=T0, status=status.value)

        assert rapidcron.is_pending(instance) is pending
        assert rapidcron.is_running(instance) is running
        assert rapidcron.is_succeeded(instance) is succeeded
        assert rapidcron.is_failed(instance) is failed
        assert rapidcron.is_terminal(instance) is terminal
