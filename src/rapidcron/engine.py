"""Run a scheduler and a worker in one process."""

import asyncio
import logging
from typing import Optional

from .config import Config
from .db import Store, init_database
from .executors import Dispatcher
from .scheduler import Scheduler
from .worker import Worker

logger = logging.getLogger(__name__)


class Engine:
    """
    Scheduler plus worker sharing one store.

    Example:
        engine = Engine(Config(database_url="sqlite:///rapidcron.db"))
        await engine.run()
    """

    def __init__(self, config: Config, dispatcher: Optional[Dispatcher] = None):
        self.config = config
        self.store = Store(init_database(config.database_url))
        self.scheduler = Scheduler(config, store=self.store)
        self.worker = Worker(config, store=self.store, dispatcher=dispatcher)

    async def run(self) -> None:
        logger.info(f"Starting engine (worker {self.worker.worker_id})")
        await asyncio.gather(self.scheduler.run(), self.worker.run())

    def stop(self) -> None:
        self.scheduler.stop()
        self.worker.stop()
