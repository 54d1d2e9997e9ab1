"""
Store Client - Deadline-bounded access to the object store.

Every call the reconciler makes goes through here. A call that exceeds its
deadline, or fails in the driver or network, surfaces as TransientError so
the pass aborts without committing anything further.
"""

import asyncio
import logging
from typing import Any, Awaitable, Dict, Optional, TypeVar

import asyncpg

from errors import TransientError
from machine import Machine, ObjectReference

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_EXCEPTIONS = (
    asyncio.TimeoutError,
    OSError,
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
)


class StoreClient:
    """
    Wraps a store (normally a DatabaseManager) with per-call deadlines.

    Args:
        store: Object exposing get_machine/update_machine/get_external/
            delete_external coroutines.
        timeout: Deadline in seconds applied to each call.
    """

    def __init__(self, store: Any, timeout: float = 10.0):
        self.store = store
        self.timeout = timeout

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except TRANSIENT_EXCEPTIONS as e:
            logger.warning(f"Store call {operation} failed: {e!r}")
            raise TransientError(f"{operation} failed: {e!r}") from e

    async def get_machine(self, namespace: str, name: str) -> Optional[Machine]:
        return await self._call(
            f"get machine {namespace}/{name}",
            self.store.get_machine(namespace, name),
        )

    async def update_machine(self, machine: Machine) -> Optional[Machine]:
        """Write a machine; returns None when the write let the store erase it."""
        return await self._call(
            f"update machine {machine.key}", self.store.update_machine(machine)
        )

    async def get_external(self, ref: ObjectReference) -> Optional[Dict[str, Any]]:
        return await self._call(
            f"get {ref}",
            self.store.get_external(ref.api_version, ref.kind, ref.namespace, ref.name),
        )

    async def delete_external(self, ref: ObjectReference) -> bool:
        return await self._call(
            f"delete {ref}",
            self.store.delete_external(
                ref.api_version, ref.kind, ref.namespace, ref.name
            ),
        )
