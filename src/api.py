"""
HTTP API - REST surface over the object store.

Lets users create and delete Machines, lets providers publish their
infrastructure and bootstrap objects, and streams change events. Every
write publishes an event so the controller reacts without waiting for the
next resync.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, field_validator

from config import APIConfig
from errors import ConflictError
from events import EventBus, EventType, ObjectEvent
from machine import Machine, MachineSpec
from validation import validate_external_object, validate_machine_spec

logger = logging.getLogger(__name__)

# Kubernetes-style name pattern: lowercase alphanumeric, hyphens, max 63 chars
NAME_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
MAX_NAME_LENGTH = 63


def validate_name_format(value: str, field_name: str) -> str:
    """Validate that a name follows Kubernetes naming conventions."""
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    if len(value) > MAX_NAME_LENGTH:
        raise ValueError(f"{field_name} cannot exceed {MAX_NAME_LENGTH} characters")
    if not NAME_PATTERN.match(value):
        raise ValueError(
            f"{field_name} must consist of lowercase alphanumeric characters or '-', "
            f"must start and end with an alphanumeric character"
        )
    return value


class MachineCreate(BaseModel):
    """Request model for creating a machine."""

    name: str = Field(..., description="Machine name")
    namespace: str = Field(default="default", description="Machine namespace")
    spec: Dict[str, Any] = Field(..., description="Machine spec (camelCase)")
    finalizers: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_name_format(v, "name")

    @field_validator("namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        return validate_name_format(v, "namespace")

    @field_validator("spec")
    @classmethod
    def validate_spec(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        is_valid, error = validate_machine_spec(v)
        if not is_valid:
            raise ValueError(error)
        return v


class APIServer:
    """FastAPI application serving machines, external objects and events."""

    def __init__(
        self,
        db_manager: Any,
        event_bus: Optional[EventBus] = None,
        config: Optional[APIConfig] = None,
    ):
        self._db = db_manager
        self._event_bus = event_bus
        self.config = config or APIConfig()
        self.server: Optional[uvicorn.Server] = None
        self.app = FastAPI(
            title="Machine Controller API",
            description="Machines and their infrastructure and bootstrap objects",
            version="1.0.0",
        )
        if self.config.cors_enabled:
            self.app.add_middleware(
                CORSMiddleware,
                allow_origins=self.config.cors_origins,
                allow_methods=["*"],
                allow_headers=["*"],
            )
        self._setup_routes()

    async def _publish(self, event_type: EventType, obj: Dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.publish(ObjectEvent.from_object(event_type, obj))

    def _setup_routes(self) -> None:
        """
        Configure the REST routes:
        - Health check: GET /
        - Machines: /api/v1/machines, /api/v1/namespaces/{ns}/machines/{name}
        - External objects: PUT /api/v1/objects,
          /apis/{group}/{version}/namespaces/{ns}/{kind}/{name}
        - Watch: GET /api/v1/events (SSE)
        """

        @self.app.get("/")
        async def health_check():
            """Health check endpoint."""
            return {"status": "ok", "service": "machine-controller"}

        # ==================== Machine Endpoints ====================

        @self.app.post("/api/v1/machines", status_code=201)
        async def create_machine(request: MachineCreate):
            """Create a machine."""
            machine = Machine(
                namespace=request.namespace,
                name=request.name,
                spec=MachineSpec.from_dict(request.spec),
                finalizers=list(dict.fromkeys(request.finalizers)),
            )
            try:
                created = await self._db.create_machine(machine)
            except ConflictError as e:
                raise HTTPException(status_code=409, detail=e.message)

            data = created.to_dict()
            await self._publish(EventType.CREATED, data)
            return data

        @self.app.get("/api/v1/machines")
        async def list_machines(namespace: Optional[str] = None, limit: int = 1000):
            """List machines."""
            machines = await self._db.list_machines(namespace=namespace, limit=limit)
            return [m.to_dict() for m in machines]

        @self.app.get("/api/v1/namespaces/{namespace}/machines/{name}")
        async def get_machine(namespace: str, name: str):
            """Get a machine."""
            machine = await self._db.get_machine(namespace, name)
            if not machine:
                raise HTTPException(status_code=404, detail="Machine not found")
            return machine.to_dict()

        @self.app.delete(
            "/api/v1/namespaces/{namespace}/machines/{name}", status_code=202
        )
        async def delete_machine(namespace: str, name: str):
            """Request deletion of a machine; it lingers until its finalizers clear."""
            existing = await self._db.get_machine(namespace, name)
            if not existing:
                raise HTTPException(status_code=404, detail="Machine not found")

            await self._db.delete_machine(namespace, name)

            current = await self._db.get_machine(namespace, name)
            if current is None:
                await self._publish(EventType.DELETED, existing.to_dict())
                return {"message": "Machine deleted", "name": name}

            await self._publish(EventType.MODIFIED, current.to_dict())
            return {
                "message": "Machine marked for deletion",
                "name": name,
                "finalizers": current.finalizers,
            }

        # ==================== External Object Endpoints ====================

        @self.app.put("/api/v1/objects")
        async def put_object(obj: Dict[str, Any] = Body(...)):
            """Create or replace an infrastructure or bootstrap object."""
            is_valid, error = validate_external_object(obj)
            if not is_valid:
                raise HTTPException(status_code=422, detail=error)

            stored = await self._db.put_external(obj)
            if stored is None:
                await self._publish(EventType.DELETED, obj)
                return {"message": "Object deleted"}

            await self._publish(EventType.MODIFIED, stored)
            return stored

        @self.app.get("/apis/{group}/{version}/namespaces/{namespace}/{kind}/{name}")
        async def get_object(
            group: str, version: str, namespace: str, kind: str, name: str
        ):
            """Get an external object."""
            obj = await self._db.get_external(f"{group}/{version}", kind, namespace, name)
            if obj is None:
                raise HTTPException(status_code=404, detail="Object not found")
            return obj

        @self.app.delete(
            "/apis/{group}/{version}/namespaces/{namespace}/{kind}/{name}",
            status_code=202,
        )
        async def delete_object(
            group: str, version: str, namespace: str, kind: str, name: str
        ):
            """Request deletion of an external object."""
            api_version = f"{group}/{version}"
            existing = await self._db.get_external(api_version, kind, namespace, name)
            if existing is None:
                raise HTTPException(status_code=404, detail="Object not found")

            await self._db.delete_external(api_version, kind, namespace, name)

            current = await self._db.get_external(api_version, kind, namespace, name)
            if current is None:
                await self._publish(EventType.DELETED, existing)
                return {"message": "Object deleted", "name": name}

            await self._publish(EventType.MODIFIED, current)
            return {"message": "Object marked for deletion", "name": name}

        # ==================== Event Streaming Endpoints ====================

        @self.app.get("/api/v1/events")
        async def stream_events(
            kind: Optional[str] = None, namespace: Optional[str] = None
        ):
            """SSE stream of object events, optionally filtered by kind and namespace."""
            if not self._event_bus:
                raise HTTPException(
                    status_code=503,
                    detail="Event streaming not available",
                )

            subscriber_id, subscription = await self._event_bus.subscribe(
                kind=kind, namespace=namespace
            )

            async def event_generator():
                try:
                    async for event in subscription:
                        yield event.to_sse()
                except asyncio.CancelledError:
                    pass
                finally:
                    await self._event_bus.unsubscribe(subscriber_id)

            return StreamingResponse(
                event_generator(),
                media_type="text/event-stream",
                headers={
                    "Cache-Control": "no-cache",
                    "X-Accel-Buffering": "no",
                },
            )

    async def start(self) -> None:
        """Start the HTTP server."""
        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower(),
        )
        self.server = uvicorn.Server(config)

        logger.info(f"Starting HTTP API on {self.config.host}:{self.config.port}")
        await self.server.serve()

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        logger.info("Stopping HTTP API")
        if self.server:
            self.server.should_exit = True
