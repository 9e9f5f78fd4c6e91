"""Simple example of rapidcron usage.

Registers a few tasks in a local SQLite database and runs a scheduler and a
worker in the same process until Ctrl+C.
"""

import asyncio
import logging

import rapidcron

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


def define_tasks() -> None:
    """Create the example tasks (skipped if they already exist)."""
    if rapidcron.get_task_by_name("heartbeat") is not None:
        return

    heartbeat = rapidcron.create_task(
        "heartbeat",
        "*/5 * * * * *",  # every 5 seconds
        "command",
        {"command": "date -u"},
    )
    print(f"heartbeat: {heartbeat.id}")

    # Runs after each heartbeat occurrence that succeeded
    report = rapidcron.create_task(
        "report",
        "*/10 * * * * *",
        "command",
        {"command": "echo report done"},
        dependency_ids=[heartbeat.id],
    )
    print(f"report: {report.id}")

    # Fails every time: retried twice, then marked failed
    flaky = rapidcron.create_task(
        "flaky",
        "0 * * * * *",
        "command",
        {"command": "echo 'something broke' >&2; exit 1"},
        max_retries=2,
    )
    print(f"flaky: {flaky.id}")

    # Times out after 2 seconds
    slow = rapidcron.create_task(
        "slow",
        "30 * * * * *",
        "command",
        {"command": "sleep 10"},
        timeout_seconds=2,
    )
    print(f"slow: {slow.id}")


async def main():
    config = rapidcron.Config(
        database_url="sqlite:///rapidcron_example.db",
        base_retry_delay_seconds=1.0,
    )
    rapidcron.init(config)
    define_tasks()

    engine = rapidcron.Engine(config)
    print("Running scheduler and worker... (Ctrl+C to stop)")
    await engine.run()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        for log in rapidcron.list_logs(limit=20):
            print(f"{log.end_time} {log.task_name} attempt={log.attempt} {log.status} {log.error_message or ''}")
