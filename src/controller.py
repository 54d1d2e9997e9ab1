"""
Machine Controller - Worker pool driving the machine reconciler.

Keys reach the work queue from three sources: watch events published on
the event bus, a periodic resync of every Machine, and requeue requests
returned by the reconciler. The queue guarantees a key is processed by at
most one worker at a time.
"""

import asyncio
import logging
from typing import Any, List, Optional

from config import ControllerConfig
from errors import ConflictError
from events import EventBus, ObjectEvent
from machine import ReconcileKey
from reconciler import MachineReconciler
from workqueue import RateLimiter, WorkQueue

logger = logging.getLogger(__name__)


class Controller:
    """
    Runs reconcile passes for Machines.

    Args:
        reconciler: The per-Machine state machine.
        db_manager: Store used for resync listing and event-to-key mapping.
        config: Controller configuration.
        event_bus: Optional source of watch events.
    """

    def __init__(
        self,
        reconciler: MachineReconciler,
        db_manager: Any,
        config: Optional[ControllerConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.reconciler = reconciler
        self.db = db_manager
        self.config = config or ControllerConfig()
        self.max_concurrent_reconciles = self.config.max_concurrent_reconciles
        self.queue = WorkQueue(
            RateLimiter(
                base_delay=self.config.backoff_base_delay,
                max_delay=self.config.backoff_max_delay,
                jitter_factor=self.config.backoff_jitter_factor,
            )
        )
        self.running = False
        self._event_bus = event_bus
        self._subscriber_id: Optional[str] = None
        self._tasks: List[asyncio.Task] = []

    async def start(self):
        """Start the workers, the resync loop and the watch loop."""
        logger.info(
            f"Starting machine controller with "
            f"{self.max_concurrent_reconciles} workers"
        )
        self.running = True

        self._tasks = [
            asyncio.create_task(self._worker(i))
            for i in range(self.max_concurrent_reconciles)
        ]
        self._tasks.append(asyncio.create_task(self._resync_loop()))
        if self._event_bus:
            self._tasks.append(asyncio.create_task(self._watch_loop()))

        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Controller tasks cancelled")

    async def stop(self):
        """Stop accepting work and let in-flight passes finish."""
        logger.info("Stopping machine controller")
        self.running = False
        self.queue.shutdown()

        if self._event_bus and self._subscriber_id:
            await self._event_bus.unsubscribe(self._subscriber_id)
            self._subscriber_id = None

        for task in self._tasks:
            if not task.done() and task is not asyncio.current_task():
                task.cancel()

    def enqueue(self, key: ReconcileKey) -> None:
        """Request a reconcile pass for a Machine."""
        self.queue.add(key)

    async def _worker(self, worker_id: int):
        while True:
            key = await self.queue.get()
            if key is None:
                logger.debug(f"Worker {worker_id} exiting")
                return
            try:
                await self.process(key)
            finally:
                self.queue.done(key)

    async def process(self, key: ReconcileKey) -> None:
        """
        Run one pass for ``key`` and schedule what follows it.

        A failed pass is retried with backoff; a successful pass resets the
        backoff and honors the requested requeue delay.
        """
        try:
            result = await self.reconciler.reconcile(key)
        except ConflictError as e:
            logger.info(f"Conflict reconciling {key}, retrying: {e}")
            self.queue.add_rate_limited(key)
            return
        except Exception as e:
            logger.error(f"Error reconciling {key}: {e}", exc_info=True)
            self.queue.add_rate_limited(key)
            return

        self.queue.forget(key)
        if result.requeue_after:
            logger.debug(f"Requeue {key} after {result.requeue_after}s")
            self.queue.add_after(key, result.requeue_after)

    async def _resync_loop(self):
        """Periodically enqueue every Machine so missed events are recovered."""
        while self.running:
            try:
                machines = await self.db.list_machines()
                for machine in machines:
                    self.queue.add(machine.key)
                logger.debug(f"Resync queued {len(machines)} machines")
                await asyncio.sleep(self.config.resync_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in resync loop: {e}", exc_info=True)
                await asyncio.sleep(10)  # Brief pause on error

    async def _watch_loop(self):
        """Turn watch events into reconcile keys."""
        self._subscriber_id, subscription = await self._event_bus.subscribe()
        async for event in subscription:
            try:
                for key in await self.keys_for_event(event):
                    self.queue.add(key)
            except Exception as e:
                logger.error(
                    f"Error mapping {event.kind} {event.namespace}/{event.name} "
                    f"to machines: {e}",
                    exc_info=True,
                )

    async def keys_for_event(self, event: ObjectEvent) -> List[ReconcileKey]:
        """
        Map an object event to the Machines it affects.

        Machine events map to the Machine itself; any other object maps to
        the Machines in its namespace that reference it.
        """
        if event.kind == "Machine":
            return [ReconcileKey(namespace=event.namespace, name=event.name)]

        machines = await self.db.list_machines_referencing(
            event.namespace, event.kind, event.name
        )
        return [machine.key for machine in machines]
