"""
Main entry point for the Machine Controller.

Wires the object store, the resolver, the reconciler, the controller and
the HTTP API together and runs them until a shutdown signal arrives.
"""

import asyncio
import logging
import signal
from typing import Optional

from api import APIServer
from client import StoreClient
from config import Config, get_config
from controller import Controller
from db import DatabaseManager
from events import EventBus
from external import ExternalResolver
from reconciler import MachineReconciler
from scheme import Scheme

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class Application:
    """Main application that orchestrates the controller and the API."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.db: Optional[DatabaseManager] = None
        self.controller: Optional[Controller] = None
        self.api: Optional[APIServer] = None
        self.event_bus: Optional[EventBus] = None
        self.running = False

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing Machine Controller")

        db_config = self.config.database
        self.db = DatabaseManager(
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            user=db_config.user,
            password=db_config.password,
            min_pool_size=db_config.min_pool_size,
            max_pool_size=db_config.max_pool_size,
        )
        await self.db.connect()
        await self.db.initialize_schema()
        logger.info("Database initialized")

        self.event_bus = EventBus()

        ctrl_config = self.config.controller
        scheme = Scheme.from_entries(self.config.scheme.groups)
        client = StoreClient(self.db, timeout=ctrl_config.call_timeout)
        reconciler = MachineReconciler(
            client=client,
            resolver=ExternalResolver(client, scheme),
            not_found_requeue_after=ctrl_config.not_found_requeue_after,
            deletion_requeue_after=ctrl_config.deletion_requeue_after,
        )
        logger.info(f"Resolving references in groups: {scheme.groups()}")

        self.controller = Controller(
            reconciler=reconciler,
            db_manager=self.db,
            config=ctrl_config,
            event_bus=self.event_bus,
        )
        self.api = APIServer(self.db, self.event_bus, self.config.api)

        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if not self.controller:
            await self.initialize()

        self.running = True
        logger.info("Starting Machine Controller")

        tasks = [
            asyncio.create_task(self.controller.start()),
            asyncio.create_task(self.api.start()),
        ]

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        if not self.running:
            return
        logger.info("Stopping Machine Controller")
        self.running = False

        if self.api:
            await self.api.stop()

        if self.controller:
            await self.controller.stop()

        if self.db:
            await self.db.close()

        logger.info("Machine Controller stopped")


async def main():
    """Main entry point."""
    config = get_config()
    setup_logging(config.api.log_level)
    app = Application(config)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.stop()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
