"""RapidCron CLI main entrypoint."""

import logging
import os
from datetime import date
from typing import Any, Optional

import click
import structlog
import yaml

from rapidcron import Config
from rapidcron.exceptions import ConfigurationError

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("rapidcron")


def _formatter(log_format: str) -> logging.Formatter:
    """Plain text lines, or one JSON object per record rendered by structlog."""
    if log_format == "json":
        return structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.format_exc_info,
            ],
        )
    return logging.Formatter(LOG_FORMAT)


def configure_logging(
    level: str = "INFO", output: str = "stdout", log_dir: str = "logs", log_format: str = "plain"
) -> None:
    """Configure the root logger for stdout, a dated file in log_dir, or both."""
    handlers: list[logging.Handler] = []
    if output in ("stdout", "both"):
        handlers.append(logging.StreamHandler())
    if output in ("file", "both"):
        os.makedirs(log_dir, exist_ok=True)
        path = os.path.join(log_dir, f"{date.today().isoformat()}.log")
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    formatter = _formatter(log_format)
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=logging.INFO, handlers=handlers, force=True)
    logging.getLogger("rapidcron").setLevel(level)


def load_config_file(config_path: str) -> dict:
    """Load YAML configuration file."""
    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f)
            return config or {}
    except FileNotFoundError as e:
        raise click.ClickException(f"Config file not found: {config_path}") from e
    except yaml.YAMLError as e:
        raise click.ClickException(f"Invalid YAML in config file: {e}") from e


def import_executor_modules(modules: list[str]) -> None:
    """Import modules that register executor plugins."""
    for module_name in modules:
        try:
            __import__(module_name)
            logger.debug(f"Imported executor module: {module_name}")
        except ImportError as e:
            raise click.ClickException(f"Failed to import executor module '{module_name}': {e}")


def get_config_value(cli_value, config_dict: dict, config_key: str, default=None):
    """Get config value with priority: CLI flag > config file > default.

    Args:
        cli_value: Value from CLI flag (if provided)
        config_dict: Configuration dictionary from config file
        config_key: Dot-separated key path in config dict (e.g., "database.url")
        default: Default value if not found

    Returns:
        The resolved config value

    Example:
        db_url = get_config_value(cli_db_url, config_data, "database.url")
    """
    if cli_value is not None:
        return cli_value

    keys = config_key.split(".")
    current = config_dict
    for key in keys:
        if isinstance(current, dict) and key in current:
            current = current[key]
        else:
            return default

    return current if current is not None else default


def build_config(db_url: Optional[str], config_path: Optional[str], **overrides: Any) -> tuple[Config, dict]:
    """Resolve a Config from CLI flags, an optional config file and env vars.

    Returns:
        (config, raw config file data)
    """
    config_data: dict = {}
    if config_path:
        config_data = load_config_file(config_path)
        logger.info(f"Loaded config from {config_path}")

    final_db_url = get_config_value(db_url, config_data, "database.url")
    if not final_db_url:
        raise click.ClickException("DATABASE_URL not provided. Use --db-url flag or DATABASE_URL env var")

    try:
        cfg = Config.from_dict(config_data, database_url=final_db_url, **overrides)
    except ConfigurationError as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    return cfg, config_data


db_url_option = click.option(
    "--db-url",
    envvar="DATABASE_URL",
    help="Database URL",
    metavar="URL",
)
config_option = click.option(
    "--config",
    type=click.Path(exists=True),
    help="Path to rapidcron.yaml config file",
    metavar="PATH",
)


@click.group()
@click.version_option(package_name="rapidcron")
def main() -> None:
    """RapidCron: durable cron scheduler with dependencies and retries."""
    pass


# Import commands to register them with the main group
from . import init_cli, run_cli, task_cli  # noqa: E402, F401
