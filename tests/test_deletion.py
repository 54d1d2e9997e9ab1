"""Unit tests for deletion.py - dependent teardown."""

import pytest

from deletion import reconcile_delete_external
from errors import TransientError

from conftest import BOOTSTRAP_API_VERSION, BOOTSTRAP_KIND, INFRA_API_VERSION, INFRA_KIND

BOOTSTRAP_KEY = (BOOTSTRAP_API_VERSION, BOOTSTRAP_KIND, "default", "bootstrap-1")
INFRA_KEY = (INFRA_API_VERSION, INFRA_KIND, "default", "infra-1")


@pytest.mark.asyncio
class TestReconcileDeleteExternal:
    """Tests for reconcile_delete_external."""

    async def test_both_gone(self, resolver, store, make_machine):
        machine = make_machine(bootstrap_name="bootstrap-1", deleting=True)

        assert await reconcile_delete_external(machine, resolver) is True
        assert store.external_deletes == []

    async def test_only_bootstrap_exists(
        self, resolver, store, make_machine, make_bootstrap
    ):
        machine = make_machine(bootstrap_name="bootstrap-1", deleting=True)
        store.add_external(make_bootstrap())

        assert await reconcile_delete_external(machine, resolver) is False
        assert store.external_deletes == [BOOTSTRAP_KEY]

    async def test_only_infra_exists(self, resolver, store, make_machine, make_infra):
        machine = make_machine(bootstrap_name="bootstrap-1", deleting=True)
        store.add_external(make_infra())

        assert await reconcile_delete_external(machine, resolver) is False
        assert store.external_deletes == [INFRA_KEY]

    async def test_both_exist_deleted_in_order(
        self, resolver, store, make_machine, make_infra, make_bootstrap
    ):
        machine = make_machine(bootstrap_name="bootstrap-1", deleting=True)
        store.add_external(make_bootstrap())
        store.add_external(make_infra())

        assert await reconcile_delete_external(machine, resolver) is False
        assert store.external_deletes == [BOOTSTRAP_KEY, INFRA_KEY]

    async def test_deleting_object_is_deleted_again(
        self, resolver, store, make_machine, make_infra
    ):
        """An object already marked for deletion still counts as present."""
        machine = make_machine(deleting=True)
        infra = make_infra()
        infra["metadata"]["finalizers"] = ["infra-provider"]
        store.add_external(infra)

        assert await reconcile_delete_external(machine, resolver) is False
        assert await reconcile_delete_external(machine, resolver) is False
        assert store.external_deletes == [INFRA_KEY, INFRA_KEY]

    async def test_absent_references_count_as_gone(self, resolver, make_machine):
        machine = make_machine(infra_name=None, deleting=True)

        assert await reconcile_delete_external(machine, resolver) is True

    async def test_resolve_error_propagates(self, resolver, store, make_machine):
        machine = make_machine(bootstrap_name="bootstrap-1", deleting=True)
        store.failures["get_external"] = ConnectionRefusedError("refused")

        with pytest.raises(TransientError):
            await reconcile_delete_external(machine, resolver)
        assert store.external_deletes == []

    async def test_delete_error_propagates(
        self, resolver, store, make_machine, make_infra
    ):
        machine = make_machine(deleting=True)
        store.add_external(make_infra())
        store.failures["delete_external"] = OSError("network down")

        with pytest.raises(TransientError):
            await reconcile_delete_external(machine, resolver)
        assert INFRA_KEY in store.externals
