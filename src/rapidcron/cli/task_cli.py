"""RapidCron task administration commands."""

import json
from typing import Any, Optional

import click

import rapidcron
from rapidcron.db import TaskInstance, utcnow
from rapidcron.exceptions import ConfigurationError, RapidCronError
from rapidcron.schedule import next_occurrence

from .main import build_config, config_option, db_url_option, import_executor_modules, main


def _connect(db_url: Optional[str], config: Optional[str], executor_module: tuple[str, ...] = ()) -> None:
    cfg, _ = build_config(db_url, config)
    if executor_module:
        import_executor_modules(list(executor_module))
    rapidcron.init(cfg)


def _parse_payload(payload: Optional[str], command: Optional[str], url: Optional[str]) -> Optional[dict]:
    if payload:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise click.ClickException(f"--payload is not valid JSON: {e}")
        if not isinstance(data, dict):
            raise click.ClickException("--payload must be a JSON object")
        return data
    if command:
        return {"command": command}
    if url:
        return {"url": url}
    return None


def _resolve_task_id(ref: str) -> str:
    """Accept a task id or the name of an active task."""
    task = rapidcron.get_task_by_name(ref)
    if task is not None:
        return str(task.id)
    return ref


def _echo_task(task: Any) -> None:
    state = "deleted" if task.deleted_at else ("enabled" if task.enabled else "disabled")
    click.echo(f"{task.id}  {task.name}  [{task.type}]  '{task.schedule}'  {state}")


def _echo_instance(instance: TaskInstance) -> None:
    click.echo(
        f"{instance.id}  {instance.scheduled_time.isoformat()}  {instance.status:<9}  "
        f"retries={instance.retry_count}  executor={instance.executor_id or '-'}"
    )


@main.group()
def task() -> None:
    """Create, inspect and change tasks."""
    pass


@task.command("add")
@click.argument("name")
@click.option("--schedule", required=True, help="6-field cron, seconds first", metavar="CRON")
@click.option("--type", "task_type", required=True, help="Executor type (command, http, ...)", metavar="TYPE")
@click.option("--payload", default=None, help="Executor payload as a JSON object", metavar="JSON")
@click.option("--command", default=None, help="Shortcut for a command payload", metavar="CMD")
@click.option("--url", default=None, help="Shortcut for an http GET payload", metavar="URL")
@click.option("--depends-on", multiple=True, help="Task id or name this task depends on", metavar="TASK")
@click.option("--description", default=None)
@click.option("--timeout", type=int, default=None, help="Timeout in seconds", metavar="SECONDS")
@click.option("--max-retries", type=int, default=None, metavar="N")
@click.option("--disabled", is_flag=True, help="Create the task disabled")
@click.option("--executor-module", multiple=True, help="Module registering extra executor plugins", metavar="MODULE")
@db_url_option
@config_option
def task_add(
    name: str,
    schedule: str,
    task_type: str,
    payload: Optional[str],
    command: Optional[str],
    url: Optional[str],
    depends_on: tuple[str, ...],
    description: Optional[str],
    timeout: Optional[int],
    max_retries: Optional[int],
    disabled: bool,
    executor_module: tuple[str, ...],
    db_url: Optional[str],
    config: Optional[str],
) -> None:
    """Register a recurring task.

    Examples:
        rapidcron task add backup --schedule "0 0 3 * * *" --type command --command "./backup.sh"
        rapidcron task add ping --schedule "*/30 * * * * *" --type http --url https://example.com/health
    """
    _connect(db_url, config, executor_module)
    try:
        created = rapidcron.create_task(
            name,
            schedule,
            task_type,
            _parse_payload(payload, command, url),
            dependency_ids=[_resolve_task_id(d) for d in depends_on],
            description=description,
            enabled=not disabled,
            timeout_seconds=timeout,
            max_retries=max_retries,
        )
    except RapidCronError as e:
        raise click.ClickException(str(e))

    click.secho(f"Task created: {created.id}", fg="green")
    _echo_task(created)


@task.command("list")
@click.option("--all", "include_deleted", is_flag=True, help="Include deleted tasks")
@click.option("--type", "task_type", default=None, help="Filter by executor type")
@db_url_option
@config_option
def task_list(include_deleted: bool, task_type: Optional[str], db_url: Optional[str], config: Optional[str]) -> None:
    """List tasks."""
    _connect(db_url, config)
    tasks = rapidcron.list_tasks(type=task_type, include_deleted=include_deleted)
    if not tasks:
        click.echo("No tasks.")
    for t in tasks:
        _echo_task(t)


@task.command("show")
@click.argument("task_ref")
@db_url_option
@config_option
def task_show(task_ref: str, db_url: Optional[str], config: Optional[str]) -> None:
    """Show a task and its latest instances."""
    _connect(db_url, config)
    try:
        found = rapidcron.get_task(_resolve_task_id(task_ref))
    except RapidCronError as e:
        raise click.ClickException(str(e))
    if found is None:
        raise click.ClickException(f"Task '{task_ref}' not found")

    _echo_task(found)
    click.echo(f"   Payload: {json.dumps(found.payload)}")
    if found.is_schedulable:
        try:
            click.echo(f"   Next run: {next_occurrence(found.schedule, utcnow()).isoformat()}")
        except ConfigurationError as e:
            click.secho(f"   Invalid schedule: {e}", fg="red")
    if found.dependency_ids:
        click.echo(f"   Depends on: {', '.join(found.dependency_ids)}")
    max_retries = found.max_retries if found.max_retries is not None else "default"
    click.echo(f"   Timeout: {found.timeout_seconds or 'default'}  Max retries: {max_retries}")
    for instance in rapidcron.list_instances(task_id=found.id, limit=10):
        _echo_instance(instance)


@task.command("update")
@click.argument("task_ref")
@click.option("--name", default=None)
@click.option("--schedule", default=None, metavar="CRON")
@click.option("--payload", default=None, metavar="JSON")
@click.option("--depends-on", multiple=True, metavar="TASK")
@click.option("--no-dependencies", is_flag=True, help="Remove all dependencies")
@click.option("--description", default=None)
@click.option("--timeout", type=int, default=None, metavar="SECONDS")
@click.option("--max-retries", type=int, default=None, metavar="N")
@db_url_option
@config_option
def task_update(
    task_ref: str,
    name: Optional[str],
    schedule: Optional[str],
    payload: Optional[str],
    depends_on: tuple[str, ...],
    no_dependencies: bool,
    description: Optional[str],
    timeout: Optional[int],
    max_retries: Optional[int],
    db_url: Optional[str],
    config: Optional[str],
) -> None:
    """Change fields of a task."""
    _connect(db_url, config)

    changes: dict[str, Any] = {}
    if name is not None:
        changes["name"] = name
    if schedule is not None:
        changes["schedule"] = schedule
    if payload is not None:
        changes["payload"] = _parse_payload(payload, None, None)
    if depends_on:
        changes["dependency_ids"] = [_resolve_task_id(d) for d in depends_on]
    elif no_dependencies:
        changes["dependency_ids"] = []
    if description is not None:
        changes["description"] = description
    if timeout is not None:
        changes["timeout_seconds"] = timeout
    if max_retries is not None:
        changes["max_retries"] = max_retries

    if not changes:
        raise click.ClickException("Nothing to update")

    try:
        updated = rapidcron.update_task(_resolve_task_id(task_ref), **changes)
    except RapidCronError as e:
        raise click.ClickException(str(e))
    click.secho("Task updated", fg="green")
    _echo_task(updated)


@task.command("enable")
@click.argument("task_ref")
@db_url_option
@config_option
def task_enable(task_ref: str, db_url: Optional[str], config: Optional[str]) -> None:
    """Enable a task."""
    _connect(db_url, config)
    try:
        _echo_task(rapidcron.enable_task(_resolve_task_id(task_ref)))
    except RapidCronError as e:
        raise click.ClickException(str(e))


@task.command("disable")
@click.argument("task_ref")
@db_url_option
@config_option
def task_disable(task_ref: str, db_url: Optional[str], config: Optional[str]) -> None:
    """Disable a task. Existing instances may still complete."""
    _connect(db_url, config)
    try:
        _echo_task(rapidcron.disable_task(_resolve_task_id(task_ref)))
    except RapidCronError as e:
        raise click.ClickException(str(e))


@task.command("delete")
@click.argument("task_ref")
@click.option("--force", is_flag=True, help="Delete even if other tasks depend on it")
@db_url_option
@config_option
def task_delete(task_ref: str, force: bool, db_url: Optional[str], config: Optional[str]) -> None:
    """Soft-delete a task. Instances and logs are kept."""
    _connect(db_url, config)
    try:
        deleted = rapidcron.delete_task(_resolve_task_id(task_ref), force=force)
    except RapidCronError as e:
        raise click.ClickException(str(e))
    click.secho(f"Task deleted: {deleted.name}", fg="green")


@main.command()
@click.argument("task_ref")
@db_url_option
@config_option
def trigger(task_ref: str, db_url: Optional[str], config: Optional[str]) -> None:
    """Run a task now, outside its schedule."""
    _connect(db_url, config)
    try:
        instance = rapidcron.trigger_task(_resolve_task_id(task_ref))
    except RapidCronError as e:
        raise click.ClickException(str(e))
    click.secho(f"Instance created: {instance.id}", fg="green")


@main.command()
@click.argument("instance_id")
@db_url_option
@config_option
def cancel(instance_id: str, db_url: Optional[str], config: Optional[str]) -> None:
    """Cancel a pending or claimed instance."""
    _connect(db_url, config)
    try:
        cancelled = rapidcron.cancel_instance(instance_id)
    except RapidCronError as e:
        raise click.ClickException(str(e))
    if not cancelled:
        raise click.ClickException(f"Instance {instance_id} is already running or finished")
    click.secho(f"Instance cancelled: {instance_id}", fg="green")


@main.command()
@click.option("--task", "task_ref", default=None, help="Task id or name")
@click.option("--status", default=None, help="Filter by status")
@click.option("--limit", type=int, default=20)
@db_url_option
@config_option
def instances(
    task_ref: Optional[str], status: Optional[str], limit: int, db_url: Optional[str], config: Optional[str]
) -> None:
    """List task instances, newest first."""
    _connect(db_url, config)
    try:
        rows = rapidcron.list_instances(
            task_id=_resolve_task_id(task_ref) if task_ref else None,
            status=status,
            limit=limit,
        )
    except RapidCronError as e:
        raise click.ClickException(str(e))
    if not rows:
        click.echo("No instances.")
    for instance in rows:
        _echo_instance(instance)


@main.command()
@click.option("--task", "task_ref", default=None, help="Task id or name")
@click.option("--instance", "instance_id", default=None, help="Instance id")
@click.option("--status", default=None, help="Filter by status")
@click.option("--limit", type=int, default=20)
@db_url_option
@config_option
def logs(
    task_ref: Optional[str],
    instance_id: Optional[str],
    status: Optional[str],
    limit: int,
    db_url: Optional[str],
    config: Optional[str],
) -> None:
    """Show execution logs, oldest first."""
    _connect(db_url, config)
    try:
        rows = rapidcron.list_logs(
            task_id=_resolve_task_id(task_ref) if task_ref else None,
            instance_id=instance_id,
            status=status,
            limit=limit,
        )
    except RapidCronError as e:
        raise click.ClickException(str(e))
    if not rows:
        click.echo("No logs.")
    for log in rows:
        line = (
            f"{log.end_time.isoformat()}  {log.task_name}  attempt={log.attempt}  "
            f"{log.status}  {log.duration_ms}ms  ({log.triggered_by})"
        )
        if log.error_message:
            line += f"  error: {log.error_message}"
        click.echo(line)
