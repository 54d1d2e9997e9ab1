"""
Database Manager - PostgreSQL object store.

Stores machines and generic external resources. Every row carries a
monotonically increasing resource_version used as the optimistic
concurrency token, a finalizer set and a deletion marker.
"""

import asyncpg
import json
import logging
from typing import Any, Dict, List, Optional

from errors import ConflictError, NotFoundError
from machine import Machine, MachineSpec, MachineStatus
from migrate import run_migrations

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages PostgreSQL database operations for the controller."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 5,
        max_pool_size: int = 20,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,  # Query timeout
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        """Apply database migrations to bring schema up to date."""
        self._ensure_connected()
        await run_migrations(self.pool)
        logger.info("Database schema initialized")

    # ==================== Machine Methods ====================

    async def create_machine(self, machine: Machine) -> Machine:
        """
        Create a new machine.

        Raises:
            ConflictError: If a machine with the same namespace/name exists.
        """
        async with self.pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    INSERT INTO machines (namespace, name, spec, status, finalizers)
                    VALUES ($1, $2, $3, $4, $5)
                    RETURNING *
                    """,
                    machine.namespace,
                    machine.name,
                    json.dumps(machine.spec.to_dict()),
                    json.dumps(machine.status.to_dict()),
                    json.dumps(machine.finalizers),
                )
            except asyncpg.UniqueViolationError:
                raise ConflictError(f"Machine {machine.key} already exists")

            logger.info(f"Created machine {machine.key}")
            return self._parse_machine_row(row)

    async def get_machine(self, namespace: str, name: str) -> Optional[Machine]:
        """Get a machine by namespace and name."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM machines WHERE namespace = $1 AND name = $2",
                namespace,
                name,
            )
            if not row:
                return None
            return self._parse_machine_row(row)

    async def list_machines(
        self, namespace: Optional[str] = None, limit: int = 1000
    ) -> List[Machine]:
        """List machines, optionally restricted to one namespace."""
        async with self.pool.acquire() as conn:
            query = "SELECT * FROM machines WHERE 1=1"
            params = []
            param_count = 0

            if namespace:
                param_count += 1
                query += f" AND namespace = ${param_count}"
                params.append(namespace)

            param_count += 1
            query += f" ORDER BY namespace, name LIMIT ${param_count}"
            params.append(limit)

            rows = await conn.fetch(query, *params)
            return [self._parse_machine_row(row) for row in rows]

    async def list_machines_referencing(
        self, namespace: str, kind: str, name: str
    ) -> List[Machine]:
        """List machines whose infrastructure or bootstrap reference names an object."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM machines
                WHERE namespace = $1
                  AND (
                    (spec->'infrastructureRef'->>'kind' = $2
                     AND spec->'infrastructureRef'->>'name' = $3)
                    OR (spec->'bootstrap'->'configRef'->>'kind' = $2
                        AND spec->'bootstrap'->'configRef'->>'name' = $3)
                  )
                """,
                namespace,
                kind,
                name,
            )
            return [self._parse_machine_row(row) for row in rows]

    async def update_machine(self, machine: Machine) -> Optional[Machine]:
        """
        Write a machine's spec, status and finalizers.

        The write only applies if ``machine.resource_version`` still matches
        the stored version. A machine that is marked for deletion and whose
        finalizer set becomes empty is erased in the same transaction.

        Returns:
            The stored machine with its new resource_version, or None if
            the write erased it.

        Raises:
            ConflictError: If the version token is stale or missing.
            NotFoundError: If the machine no longer exists.
        """
        version = self._parse_version(machine.resource_version)
        if version is None:
            raise ConflictError(f"Machine {machine.key} written without a version")

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    UPDATE machines
                    SET spec = $3,
                        status = $4,
                        finalizers = $5,
                        resource_version = resource_version + 1,
                        updated_at = NOW()
                    WHERE namespace = $1 AND name = $2 AND resource_version = $6
                    RETURNING *
                    """,
                    machine.namespace,
                    machine.name,
                    json.dumps(machine.spec.to_dict()),
                    json.dumps(machine.status.to_dict()),
                    json.dumps(machine.finalizers),
                    version,
                )

                if row is None:
                    exists = await conn.fetchval(
                        "SELECT 1 FROM machines WHERE namespace = $1 AND name = $2",
                        machine.namespace,
                        machine.name,
                    )
                    if exists:
                        raise ConflictError(
                            f"Machine {machine.key} was modified "
                            f"(stale version {machine.resource_version})"
                        )
                    raise NotFoundError(f"Machine {machine.key} not found")

                if row["deletion_timestamp"] is not None and not machine.finalizers:
                    await conn.execute(
                        "DELETE FROM machines WHERE namespace = $1 AND name = $2",
                        machine.namespace,
                        machine.name,
                    )
                    logger.info(f"Erased machine {machine.key}")
                    return None

                return self._parse_machine_row(row)

    async def delete_machine(self, namespace: str, name: str) -> bool:
        """
        Request deletion of a machine.

        Erases the machine immediately when it has no finalizers, otherwise
        sets its deletion marker (once) and leaves erasure to the finalizer
        owners.

        Returns:
            True if the machine existed, False otherwise.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    SELECT finalizers, deletion_timestamp FROM machines
                    WHERE namespace = $1 AND name = $2
                    FOR UPDATE
                    """,
                    namespace,
                    name,
                )
                if not row:
                    return False

                if not self._parse_json_list(row["finalizers"]):
                    await conn.execute(
                        "DELETE FROM machines WHERE namespace = $1 AND name = $2",
                        namespace,
                        name,
                    )
                    logger.info(f"Erased machine {namespace}/{name}")
                    return True

                if row["deletion_timestamp"] is None:
                    await conn.execute(
                        """
                        UPDATE machines
                        SET deletion_timestamp = NOW(),
                            resource_version = resource_version + 1,
                            updated_at = NOW()
                        WHERE namespace = $1 AND name = $2
                        """,
                        namespace,
                        name,
                    )
                    logger.info(f"Marked machine {namespace}/{name} for deletion")
                return True

    # ==================== External Resource Methods ====================

    async def put_external(self, obj: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Create or replace an external resource.

        An object already marked for deletion is erased once the replacement
        carries no finalizers.

        Returns:
            The stored object, or None if the write erased it.
        """
        metadata = obj.get("metadata") or {}
        api_version = obj["apiVersion"]
        kind = obj["kind"]
        namespace = metadata.get("namespace") or "default"
        name = metadata["name"]

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    INSERT INTO external_resources
                        (api_version, kind, namespace, name, object)
                    VALUES ($1, $2, $3, $4, $5)
                    ON CONFLICT (api_version, kind, namespace, name) DO UPDATE
                    SET object = EXCLUDED.object,
                        resource_version = external_resources.resource_version + 1,
                        updated_at = NOW()
                    RETURNING *
                    """,
                    api_version,
                    kind,
                    namespace,
                    name,
                    json.dumps(obj),
                )

                if row["deletion_timestamp"] is not None and not metadata.get(
                    "finalizers"
                ):
                    await self._erase_external(conn, api_version, kind, namespace, name)
                    return None

                return self._parse_external_row(row)

    async def get_external(
        self, api_version: str, kind: str, namespace: str, name: str
    ) -> Optional[Dict[str, Any]]:
        """Get an external resource by its reference fields."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM external_resources
                WHERE api_version = $1 AND kind = $2
                  AND namespace = $3 AND name = $4
                """,
                api_version,
                kind,
                namespace,
                name,
            )
            if not row:
                return None
            return self._parse_external_row(row)

    async def delete_external(
        self, api_version: str, kind: str, namespace: str, name: str
    ) -> bool:
        """
        Request deletion of an external resource.

        Deleting an object that is already being deleted is a no-op.

        Returns:
            True if the object existed, False if it was not found.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    SELECT object, deletion_timestamp FROM external_resources
                    WHERE api_version = $1 AND kind = $2
                      AND namespace = $3 AND name = $4
                    FOR UPDATE
                    """,
                    api_version,
                    kind,
                    namespace,
                    name,
                )
                if not row:
                    return False

                obj = self._parse_json_dict(row["object"])
                if not (obj.get("metadata") or {}).get("finalizers"):
                    await self._erase_external(conn, api_version, kind, namespace, name)
                    return True

                if row["deletion_timestamp"] is None:
                    await conn.execute(
                        """
                        UPDATE external_resources
                        SET deletion_timestamp = NOW(),
                            resource_version = resource_version + 1,
                            updated_at = NOW()
                        WHERE api_version = $1 AND kind = $2
                          AND namespace = $3 AND name = $4
                        """,
                        api_version,
                        kind,
                        namespace,
                        name,
                    )
                    logger.info(
                        f"Marked {kind} {namespace}/{name} for deletion"
                    )
                return True

    async def _erase_external(
        self,
        conn: asyncpg.Connection,
        api_version: str,
        kind: str,
        namespace: str,
        name: str,
    ) -> None:
        await conn.execute(
            """
            DELETE FROM external_resources
            WHERE api_version = $1 AND kind = $2 AND namespace = $3 AND name = $4
            """,
            api_version,
            kind,
            namespace,
            name,
        )
        logger.info(f"Erased {kind} {namespace}/{name}")

    # ==================== Row Parsing ====================

    def _parse_machine_row(self, row: asyncpg.Record) -> Machine:
        """
        Convert a machines row into a Machine.

        JSONB columns arrive as strings from asyncpg and are decoded here.
        """
        return Machine(
            namespace=row["namespace"],
            name=row["name"],
            spec=MachineSpec.from_dict(self._parse_json_dict(row["spec"])),
            status=MachineStatus.from_dict(self._parse_json_dict(row["status"])),
            finalizers=self._parse_json_list(row.get("finalizers")),
            deletion_timestamp=row.get("deletion_timestamp"),
            resource_version=str(row["resource_version"]),
        )

    def _parse_external_row(self, row: asyncpg.Record) -> Dict[str, Any]:
        """Decode an external_resources row, stamping store-owned metadata."""
        obj = self._parse_json_dict(row["object"])
        metadata = obj.setdefault("metadata", {})
        metadata["namespace"] = row["namespace"]
        metadata["resourceVersion"] = str(row["resource_version"])
        deletion_timestamp = row.get("deletion_timestamp")
        if deletion_timestamp is not None:
            metadata["deletionTimestamp"] = deletion_timestamp.isoformat()
        return obj

    @staticmethod
    def _parse_json_dict(value: Any) -> Dict[str, Any]:
        if isinstance(value, str):
            return json.loads(value)
        return value or {}

    @staticmethod
    def _parse_json_list(value: Any) -> List[str]:
        if isinstance(value, str):
            return json.loads(value)
        return list(value or [])

    @staticmethod
    def _parse_version(value: Optional[str]) -> Optional[int]:
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
