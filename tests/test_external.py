"""Unit tests for external.py and client.py - reference resolution."""

import asyncio
from unittest.mock import AsyncMock

import asyncpg
import pytest

from client import StoreClient
from errors import ConflictError, TransientError, UnknownKindError
from machine import ObjectReference

from conftest import INFRA_API_VERSION, INFRA_KIND


@pytest.mark.asyncio
class TestStoreClient:
    """Tests for StoreClient deadline and error translation."""

    async def test_passes_result_through(self):
        store = AsyncMock()
        store.get_machine.return_value = None
        client = StoreClient(store, timeout=1.0)

        assert await client.get_machine("default", "m1") is None
        store.get_machine.assert_awaited_once_with("default", "m1")

    async def test_timeout_becomes_transient(self):
        async def hang(*args):
            await asyncio.sleep(5)

        store = AsyncMock()
        store.get_machine = hang
        client = StoreClient(store, timeout=0.01)

        with pytest.raises(TransientError) as exc_info:
            await client.get_machine("default", "m1")
        assert exc_info.value.retryable is True

    async def test_driver_error_becomes_transient(self):
        store = AsyncMock()
        store.get_external.side_effect = asyncpg.InterfaceError("pool is closed")
        client = StoreClient(store)

        with pytest.raises(TransientError):
            await client.get_external(ObjectReference("g/v1", "K", "n", "default"))

    async def test_conflict_passes_through(self, make_machine):
        store = AsyncMock()
        store.update_machine.side_effect = ConflictError("stale")
        client = StoreClient(store)

        with pytest.raises(ConflictError):
            await client.update_machine(make_machine())

    async def test_external_ref_unpacked(self):
        store = AsyncMock()
        store.delete_external.return_value = True
        client = StoreClient(store)

        assert await client.delete_external(ObjectReference("g/v1", "K", "n", "ns"))
        store.delete_external.assert_awaited_once_with("g/v1", "K", "ns", "n")


@pytest.mark.asyncio
class TestExternalResolver:
    """Tests for ExternalResolver."""

    async def test_resolve_existing(self, resolver, store, make_infra):
        store.add_external(make_infra(ready=True))
        ref = ObjectReference(INFRA_API_VERSION, INFRA_KIND, "infra-1")

        payload = await resolver.resolve(ref, "default")

        assert payload["status"]["ready"] is True

    async def test_resolve_missing_is_none(self, resolver):
        ref = ObjectReference(INFRA_API_VERSION, INFRA_KIND, "infra-1")
        assert await resolver.resolve(ref, "default") is None

    async def test_empty_namespace_uses_machine_namespace(
        self, resolver, store, make_infra
    ):
        store.add_external(make_infra(namespace="team-a"))
        ref = ObjectReference(INFRA_API_VERSION, INFRA_KIND, "infra-1")

        assert await resolver.resolve(ref, "team-a") is not None
        assert await resolver.resolve(ref, "default") is None

    async def test_explicit_namespace_wins(self, resolver, store, make_infra):
        store.add_external(make_infra(namespace="shared"))
        ref = ObjectReference(INFRA_API_VERSION, INFRA_KIND, "infra-1", "shared")

        assert await resolver.resolve(ref, "team-a") is not None

    async def test_unknown_kind_rejected_before_fetch(self, resolver, store):
        store.failures["get_external"] = AssertionError("should not be called")
        ref = ObjectReference("example.com/v1", "Widget", "w1")

        with pytest.raises(UnknownKindError):
            await resolver.resolve(ref, "default")

    async def test_fetch_error_is_not_not_found(self, resolver, store):
        store.failures["get_external"] = OSError("connection reset")
        ref = ObjectReference(INFRA_API_VERSION, INFRA_KIND, "infra-1")

        with pytest.raises(TransientError):
            await resolver.resolve(ref, "default")

    async def test_delete_missing_is_noop(self, resolver, store):
        ref = ObjectReference(INFRA_API_VERSION, INFRA_KIND, "infra-1")

        await resolver.delete(ref, "default")

        assert store.external_deletes == [
            (INFRA_API_VERSION, INFRA_KIND, "default", "infra-1")
        ]

    async def test_delete_existing(self, resolver, store, make_infra):
        store.add_external(make_infra())
        ref = ObjectReference(INFRA_API_VERSION, INFRA_KIND, "infra-1")

        await resolver.delete(ref, "default")

        assert await resolver.resolve(ref, "default") is None
