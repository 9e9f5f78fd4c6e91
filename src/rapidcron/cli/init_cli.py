"""RapidCron init command."""

import logging
from typing import Optional

import click
from sqlalchemy import create_engine as sa_create_engine
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from rapidcron.db import init_database

from .main import build_config, config_option, db_url_option, main

logger = logging.getLogger("rapidcron")

TABLES = ("tasks", "task_instances", "execution_logs")


@main.command("init")
@db_url_option
@config_option
@click.option(
    "--force",
    is_flag=True,
    help="Run schema creation even if tables exist",
)
def init_cmd(db_url: Optional[str], config: Optional[str], force: bool) -> None:
    """Initialize RapidCron database.

    Creates the tasks, task_instances and execution_logs tables if they
    don't exist.
    """
    cfg, _ = build_config(db_url, config)

    try:
        engine = sa_create_engine(cfg.database_url, echo=False)
        existing = set(inspect(engine).get_table_names())
        engine.dispose()

        if existing.issuperset(TABLES):
            if not force:
                click.secho("The RapidCron tables already exist", fg="yellow")
                click.echo("Database is already initialized.")
                click.echo("To run schema creation anyway, run: rapidcron init --force")
                return
            logger.info("Reinitializing database (--force flag used)...")
        else:
            logger.info("Initializing RapidCron database...")

        init_database(cfg.database_url)
        click.secho("Database initialized successfully", fg="green")
        click.echo(f"   Tables: {', '.join(TABLES)}")

    except SQLAlchemyError as e:
        raise click.ClickException(f"Database error: {e}")
