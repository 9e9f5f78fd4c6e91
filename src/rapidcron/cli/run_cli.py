"""RapidCron scheduler, worker and run commands."""

import asyncio
import logging
import signal
import sys
from typing import Optional

import click

from rapidcron import Config, Engine, Scheduler, Worker

from .main import (
    build_config,
    config_option,
    configure_logging,
    db_url_option,
    get_config_value,
    import_executor_modules,
    main,
)

logger = logging.getLogger("rapidcron")

log_level_option = click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    default=None,
    help="Logging level",
)
executor_module_option = click.option(
    "--executor-module",
    multiple=True,
    help="Module registering extra executor plugins (can be used multiple times)",
    metavar="MODULE",
)


def _setup(cfg: Config, config_data: dict, executor_module: tuple[str, ...]) -> None:
    configure_logging(cfg.log_level, cfg.log_output, cfg.log_dir, cfg.log_format)

    modules = list(executor_module) or get_config_value(None, config_data, "executors.modules", [])
    if modules:
        logger.info(f"Importing executor modules: {', '.join(modules)}")
        import_executor_modules(modules)


async def _run_until_signalled(runner) -> None:
    """Run a scheduler/worker/engine, stopping it on SIGINT or SIGTERM."""
    loop = asyncio.get_running_loop()

    def handle_shutdown() -> None:
        logger.info("Received shutdown signal, gracefully stopping...")
        runner.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_shutdown)
        except NotImplementedError:
            pass

    try:
        await runner.run()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


@main.command()
@db_url_option
@config_option
@click.option("--tick-interval", type=float, default=None, help="Seconds between ticks", metavar="SECONDS")
@click.option("--max-backfill", type=int, default=None, help="Max missed occurrences to run", metavar="N")
@log_level_option
def scheduler(
    db_url: Optional[str],
    config: Optional[str],
    tick_interval: Optional[float],
    max_backfill: Optional[int],
    log_level: Optional[str],
) -> None:
    """Run the scheduler loop, creating instances for due occurrences.

    Configuration priority: CLI flags (and DATABASE_URL) > config file > defaults.
    """
    cfg, config_data = build_config(
        db_url,
        config,
        tick_interval_seconds=tick_interval,
        max_backfill=max_backfill,
        log_level=log_level,
    )
    _setup(cfg, config_data, ())

    logger.info("Starting RapidCron scheduler...")
    logger.info(f"  Tick interval: {cfg.tick_interval_seconds}s")
    logger.info(f"  Max backfill: {cfg.max_backfill}")

    asyncio.run(_run_until_signalled(Scheduler(cfg)))


@main.command()
@db_url_option
@config_option
@executor_module_option
@click.option("--worker-id", default=None, help="Worker ID (auto-generated if not provided)", metavar="ID")
@click.option("--concurrency", type=int, default=None, help="Number of concurrent executions", metavar="N")
@click.option("--poll-interval", type=float, default=None, help="Poll interval in seconds", metavar="SECONDS")
@click.option("--max-retries", type=int, default=None, help="Default max retries for tasks", metavar="N")
@click.option("--base-retry-delay", type=float, default=None, help="Base retry delay in seconds", metavar="SECONDS")
@log_level_option
def worker(
    db_url: Optional[str],
    config: Optional[str],
    executor_module: tuple[str, ...],
    worker_id: Optional[str],
    concurrency: Optional[int],
    poll_interval: Optional[float],
    max_retries: Optional[int],
    base_retry_delay: Optional[float],
    log_level: Optional[str],
) -> None:
    """Run a worker that claims and executes instances.

    Configuration priority: CLI flags (and DATABASE_URL) > config file > defaults.
    """
    cfg, config_data = build_config(
        db_url,
        config,
        worker_id=worker_id,
        concurrency=concurrency,
        poll_interval_seconds=poll_interval,
        max_retries=max_retries,
        base_retry_delay_seconds=base_retry_delay,
        log_level=log_level,
    )
    _setup(cfg, config_data, executor_module)

    w = Worker(cfg)
    logger.info("Starting RapidCron worker...")
    logger.info(f"  Worker ID: {w.worker_id}")
    logger.info(f"  Concurrency: {cfg.concurrency}")
    logger.info(f"  Poll interval: {cfg.poll_interval_seconds}s")

    asyncio.run(_run_until_signalled(w))


@main.command()
@db_url_option
@config_option
@executor_module_option
@click.option("--worker-id", default=None, help="Worker ID (auto-generated if not provided)", metavar="ID")
@click.option("--concurrency", type=int, default=None, help="Number of concurrent executions", metavar="N")
@log_level_option
def run(
    db_url: Optional[str],
    config: Optional[str],
    executor_module: tuple[str, ...],
    worker_id: Optional[str],
    concurrency: Optional[int],
    log_level: Optional[str],
) -> None:
    """Run a scheduler and a worker in one process."""
    cfg, config_data = build_config(
        db_url,
        config,
        worker_id=worker_id,
        concurrency=concurrency,
        log_level=log_level,
    )
    _setup(cfg, config_data, executor_module)

    logger.info("Starting RapidCron engine...")
    asyncio.run(_run_until_signalled(Engine(cfg)))
