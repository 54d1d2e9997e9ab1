"""
Event Streaming - In-memory pub/sub for object change events.

Serves two consumers: the controller, which turns events into reconcile
keys, and the HTTP API, which streams them to watchers as Server-Sent
Events.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


def _json_default(obj: Any) -> str:
    """JSON serializer for objects not handled by default json encoder."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class EventType(Enum):
    """Types of object events."""

    CREATED = "CREATED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class ObjectEvent:
    """Event emitted when a machine or external object changes."""

    event_type: EventType
    api_version: str
    kind: str
    namespace: str
    name: str
    object_data: Dict[str, Any]
    timestamp: str

    def to_sse(self) -> str:
        """
        Format the event as an SSE message.

        Returns:
            SSE-formatted string with event type and JSON data lines.
        """
        data = {
            "event_type": self.event_type.value,
            "apiVersion": self.api_version,
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
            "object": self.object_data,
            "timestamp": self.timestamp,
        }
        json_data = json.dumps(data, default=_json_default)
        return f"event: {self.event_type.value}\ndata: {json_data}\n\n"

    @classmethod
    def from_object(
        cls,
        event_type: EventType,
        obj: Dict[str, Any],
    ) -> "ObjectEvent":
        """
        Create an event from an object dict in Kubernetes layout.

        Args:
            event_type: The type of event.
            obj: Object with ``apiVersion``, ``kind`` and ``metadata``.

        Returns:
            A new ObjectEvent instance.
        """
        metadata = obj.get("metadata") or {}
        return cls(
            event_type=event_type,
            api_version=obj.get("apiVersion", ""),
            kind=obj.get("kind", ""),
            namespace=metadata.get("namespace") or "default",
            name=metadata.get("name", ""),
            object_data=obj,
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        )


@dataclass
class WatchFilter:
    """Restricts a watch to one kind and/or one namespace; None matches all."""

    kind: Optional[str] = None
    namespace: Optional[str] = None

    def matches(self, event: ObjectEvent) -> bool:
        if self.kind and event.kind != self.kind:
            return False
        if self.namespace and event.namespace != self.namespace:
            return False
        return True


class EventSubscription:
    """
    Async iterator over the events delivered to one watcher.

    Filtering happens when the bus delivers, so the queue only ever holds
    events this watcher asked for. A ``None`` sentinel ends iteration.
    """

    def __init__(self, queue: asyncio.Queue, watch: Optional[WatchFilter] = None):
        self._queue = queue
        self.watch = watch or WatchFilter()

    def __aiter__(self) -> AsyncIterator[ObjectEvent]:
        return self

    async def __anext__(self) -> ObjectEvent:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def offer(self, event: Optional[ObjectEvent]) -> bool:
        """Queue an event if it matches; False if the queue was full."""
        if event is not None and not self.watch.matches(event):
            return True
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        """Deliver the end-of-stream sentinel, evicting the oldest event if full."""
        if not self.offer(None):
            self._queue.get_nowait()
            self._queue.put_nowait(None)


class EventBus:
    """
    In-memory fan-out of object events to watchers.

    Publishing never blocks: a watcher whose queue is full misses the
    event. The controller's periodic resync recovers anything a missed
    event would have triggered, and SSE watchers are best-effort.
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._subscribers: Dict[str, EventSubscription] = {}
        self._lock = asyncio.Lock()

    async def publish(self, event: ObjectEvent) -> None:
        async with self._lock:
            subscribers = list(self._subscribers.items())

        for subscriber_id, subscription in subscribers:
            if not subscription.offer(event):
                logger.warning(
                    f"Dropped {event.kind} {event.namespace}/{event.name} "
                    f"for watcher {subscriber_id}: queue full"
                )

    async def subscribe(
        self, kind: Optional[str] = None, namespace: Optional[str] = None
    ) -> Tuple[str, EventSubscription]:
        """
        Start a watch.

        Args:
            kind: Only deliver events for this kind.
            namespace: Only deliver events in this namespace.

        Returns:
            A tuple of ``(subscriber_id, EventSubscription)``.
        """
        subscriber_id = str(uuid.uuid4())
        subscription = EventSubscription(
            asyncio.Queue(maxsize=self._queue_size),
            WatchFilter(kind=kind, namespace=namespace),
        )

        async with self._lock:
            self._subscribers[subscriber_id] = subscription

        logger.info(f"New watcher {subscriber_id} (kind={kind}, namespace={namespace})")
        return subscriber_id, subscription

    async def unsubscribe(self, subscriber_id: str) -> None:
        """Stop a watch; its iterator ends after the events already queued."""
        async with self._lock:
            subscription = self._subscribers.pop(subscriber_id, None)

        if subscription is not None:
            subscription.close()
            logger.info(f"Watcher {subscriber_id} stopped")

    def subscriber_count(self) -> int:
        return len(self._subscribers)
