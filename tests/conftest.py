"""Pytest configuration and fixtures."""

import copy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from client import StoreClient
from errors import ConflictError, NotFoundError
from external import ExternalResolver
from machine import (
    MACHINE_FINALIZER,
    Bootstrap,
    Machine,
    MachineSpec,
    ObjectReference,
)
from reconciler import MachineReconciler
from scheme import Scheme

INFRA_API_VERSION = "infrastructure.cluster.x-k8s.io/v1alpha2"
INFRA_KIND = "InfrastructureConfig"
BOOTSTRAP_API_VERSION = "bootstrap.cluster.x-k8s.io/v1alpha2"
BOOTSTRAP_KIND = "BootstrapConfig"


class FakeStore:
    """
    In-memory object store with the same contract as DatabaseManager.

    Enforces version tokens and finalizer-gated erasure, records every
    write, and can be told to fail a given operation once.
    """

    def __init__(self):
        self.machines: Dict[Tuple[str, str], Machine] = {}
        self.externals: Dict[Tuple[str, str, str, str], Dict[str, Any]] = {}
        self.updates: List[Machine] = []
        self.external_deletes: List[Tuple[str, str, str, str]] = []
        self.failures: Dict[str, Exception] = {}
        self._version = 0

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures.pop(operation)

    # Test setup helpers

    def add_machine(self, machine: Machine) -> Machine:
        stored = copy.deepcopy(machine)
        stored.resource_version = self._next_version()
        self.machines[(stored.namespace, stored.name)] = stored
        return copy.deepcopy(stored)

    def add_external(self, obj: Dict[str, Any]) -> None:
        metadata = obj["metadata"]
        key = (
            obj["apiVersion"],
            obj["kind"],
            metadata.get("namespace", "default"),
            metadata["name"],
        )
        self.externals[key] = copy.deepcopy(obj)

    def bump(self, namespace: str, name: str) -> None:
        """Simulate a concurrent writer touching a machine."""
        self.machines[(namespace, name)].resource_version = self._next_version()

    def stored(self, namespace: str, name: str) -> Optional[Machine]:
        machine = self.machines.get((namespace, name))
        return copy.deepcopy(machine) if machine else None

    # Store contract

    async def get_machine(self, namespace: str, name: str) -> Optional[Machine]:
        self._maybe_fail("get_machine")
        return self.stored(namespace, name)

    async def list_machines(
        self, namespace: Optional[str] = None, limit: int = 1000
    ) -> List[Machine]:
        machines = [
            copy.deepcopy(m)
            for (ns, _), m in sorted(self.machines.items())
            if namespace is None or ns == namespace
        ]
        return machines[:limit]

    async def list_machines_referencing(
        self, namespace: str, kind: str, name: str
    ) -> List[Machine]:
        result = []
        for machine in await self.list_machines(namespace):
            refs = [machine.spec.infrastructure_ref, machine.spec.bootstrap.config_ref]
            if any(r is not None and r.kind == kind and r.name == name for r in refs):
                result.append(machine)
        return result

    async def update_machine(self, machine: Machine) -> Optional[Machine]:
        self._maybe_fail("update_machine")
        key = (machine.namespace, machine.name)
        current = self.machines.get(key)
        if current is None:
            raise NotFoundError(f"Machine {machine.key} not found")
        if current.resource_version != machine.resource_version:
            raise ConflictError(f"Machine {machine.key} was modified")

        stored = copy.deepcopy(machine)
        stored.deletion_timestamp = current.deletion_timestamp
        stored.resource_version = self._next_version()
        self.updates.append(copy.deepcopy(stored))

        if stored.deletion_timestamp is not None and not stored.finalizers:
            del self.machines[key]
            return None

        self.machines[key] = stored
        return copy.deepcopy(stored)

    async def get_external(
        self, api_version: str, kind: str, namespace: str, name: str
    ) -> Optional[Dict[str, Any]]:
        self._maybe_fail("get_external")
        obj = self.externals.get((api_version, kind, namespace, name))
        return copy.deepcopy(obj) if obj else None

    async def delete_external(
        self, api_version: str, kind: str, namespace: str, name: str
    ) -> bool:
        self._maybe_fail("delete_external")
        key = (api_version, kind, namespace, name)
        self.external_deletes.append(key)
        obj = self.externals.get(key)
        if obj is None:
            return False
        if obj["metadata"].get("finalizers"):
            obj["metadata"].setdefault(
                "deletionTimestamp", datetime.now(timezone.utc).isoformat()
            )
        else:
            del self.externals[key]
        return True


def build_machine(
    name: str = "machine-1",
    namespace: str = "default",
    infra_name: Optional[str] = "infra-1",
    bootstrap_name: Optional[str] = None,
    bootstrap_data: Optional[str] = None,
    finalizers: Optional[List[str]] = None,
    deleting: bool = False,
) -> Machine:
    infra_ref = (
        ObjectReference(INFRA_API_VERSION, INFRA_KIND, infra_name)
        if infra_name
        else None
    )
    config_ref = (
        ObjectReference(BOOTSTRAP_API_VERSION, BOOTSTRAP_KIND, bootstrap_name)
        if bootstrap_name
        else None
    )
    return Machine(
        namespace=namespace,
        name=name,
        spec=MachineSpec(
            infrastructure_ref=infra_ref,
            bootstrap=Bootstrap(config_ref=config_ref, data=bootstrap_data),
        ),
        finalizers=list(finalizers or []),
        deletion_timestamp=datetime.now(timezone.utc) if deleting else None,
    )


def build_infra(
    name: str = "infra-1",
    namespace: str = "default",
    ready: Optional[bool] = None,
    addresses: Optional[List[Dict[str, str]]] = None,
    provider_id: Optional[str] = None,
    **status: Any,
) -> Dict[str, Any]:
    obj: Dict[str, Any] = {
        "apiVersion": INFRA_API_VERSION,
        "kind": INFRA_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": {},
        "status": dict(status),
    }
    if ready is not None:
        obj["status"]["ready"] = ready
    if addresses is not None:
        obj["status"]["addresses"] = addresses
    if provider_id is not None:
        obj["spec"]["providerID"] = provider_id
    return obj


def build_bootstrap(
    name: str = "bootstrap-1",
    namespace: str = "default",
    ready: bool = False,
    data: Optional[str] = None,
) -> Dict[str, Any]:
    status: Dict[str, Any] = {"ready": ready}
    if data is not None:
        status["bootstrapData"] = data
    return {
        "apiVersion": BOOTSTRAP_API_VERSION,
        "kind": BOOTSTRAP_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "status": status,
    }


@pytest.fixture
def make_machine():
    """Factory for Machine objects referencing the test infra/bootstrap kinds."""
    return build_machine


@pytest.fixture
def make_infra():
    """Factory for infrastructure object payloads."""
    return build_infra


@pytest.fixture
def make_bootstrap():
    """Factory for bootstrap object payloads."""
    return build_bootstrap


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def scheme():
    return Scheme.default()


@pytest.fixture
def client(store):
    return StoreClient(store, timeout=1.0)


@pytest.fixture
def resolver(client, scheme):
    return ExternalResolver(client, scheme)


@pytest.fixture
def reconciler(client, resolver):
    return MachineReconciler(
        client=client,
        resolver=resolver,
        not_found_requeue_after=30.0,
        deletion_requeue_after=20.0,
    )


@pytest.fixture
def finalizer():
    return MACHINE_FINALIZER
