"""
Machine Model - Desired and observed state of a compute node.

Machines are stored and exchanged in a Kubernetes-style dict layout
(``metadata``/``spec``/``status`` with camelCase keys). The dataclasses here
are the typed view the reconciler works with.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

# Finalizer token owned by the machine controller
MACHINE_FINALIZER = "machine.cluster.x-k8s.io"

MACHINE_API_VERSION = "cluster.x-k8s.io/v1alpha2"


class MachinePhase(Enum):
    """Advisory lifecycle phase of a machine."""

    PENDING = "Pending"
    PROVISIONING = "Provisioning"
    PROVISIONED = "Provisioned"
    DELETING = "Deleting"
    FAILED = "Failed"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


@dataclass(frozen=True)
class ReconcileKey:
    """Identifies the machine a reconcile pass operates on."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ObjectReference:
    """Reference to an external resource by API version, kind and name."""

    api_version: str
    kind: str
    name: str
    namespace: str = ""

    @property
    def group(self) -> str:
        """API group ('' for the core group)."""
        if "/" in self.api_version:
            return self.api_version.split("/", 1)[0]
        return ""

    @property
    def version(self) -> str:
        return self.api_version.rsplit("/", 1)[-1]

    def in_namespace(self, namespace: str) -> "ObjectReference":
        """Return this reference with an empty namespace defaulted."""
        if self.namespace:
            return self
        return ObjectReference(
            api_version=self.api_version,
            kind=self.kind,
            name=self.name,
            namespace=namespace,
        )

    def __str__(self) -> str:
        return f"{self.kind}.{self.api_version} {self.namespace}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        data = {"apiVersion": self.api_version, "kind": self.kind, "name": self.name}
        if self.namespace:
            data["namespace"] = self.namespace
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ObjectReference"]:
        if not data:
            return None
        return cls(
            api_version=data.get("apiVersion", ""),
            kind=data.get("kind", ""),
            name=data.get("name", ""),
            namespace=data.get("namespace", "") or "",
        )


@dataclass
class Bootstrap:
    """Bootstrap configuration: a reference to a bootstrap resource or inline data."""

    config_ref: Optional[ObjectReference] = None
    data: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.config_ref is not None:
            data["configRef"] = self.config_ref.to_dict()
        if self.data is not None:
            data["data"] = self.data
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Bootstrap":
        data = data or {}
        return cls(
            config_ref=ObjectReference.from_dict(data.get("configRef")),
            data=data.get("data"),
        )


@dataclass
class MachineSpec:
    """Desired state of a machine."""

    infrastructure_ref: Optional[ObjectReference] = None
    bootstrap: Bootstrap = field(default_factory=Bootstrap)
    provider_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"bootstrap": self.bootstrap.to_dict()}
        if self.infrastructure_ref is not None:
            data["infrastructureRef"] = self.infrastructure_ref.to_dict()
        if self.provider_id is not None:
            data["providerID"] = self.provider_id
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MachineSpec":
        data = data or {}
        return cls(
            infrastructure_ref=ObjectReference.from_dict(data.get("infrastructureRef")),
            bootstrap=Bootstrap.from_dict(data.get("bootstrap")),
            provider_id=data.get("providerID"),
        )


@dataclass(frozen=True)
class MachineAddress:
    """A network address reported for a machine."""

    type: str
    address: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "address": self.address}


@dataclass
class MachineStatus:
    """Observed state of a machine, owned by the controller."""

    ready: bool = False
    addresses: List[MachineAddress] = field(default_factory=list)
    provider_id: Optional[str] = None
    phase: str = MachinePhase.PENDING.value
    bootstrap_ready: bool = False
    failure_reason: Optional[str] = None
    failure_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "ready": self.ready,
            "addresses": [a.to_dict() for a in self.addresses],
            "phase": self.phase,
            "bootstrapReady": self.bootstrap_ready,
        }
        if self.provider_id is not None:
            data["providerID"] = self.provider_id
        if self.failure_reason is not None:
            data["failureReason"] = self.failure_reason
        if self.failure_message is not None:
            data["failureMessage"] = self.failure_message
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MachineStatus":
        data = data or {}
        return cls(
            ready=bool(data.get("ready", False)),
            addresses=[
                MachineAddress(type=a.get("type", ""), address=a.get("address", ""))
                for a in data.get("addresses") or []
            ],
            provider_id=data.get("providerID"),
            phase=data.get("phase", MachinePhase.PENDING.value),
            bootstrap_ready=bool(data.get("bootstrapReady", False)),
            failure_reason=data.get("failureReason"),
            failure_message=data.get("failureMessage"),
        )


@dataclass
class Machine:
    """
    A machine object as read from the store.

    ``resource_version`` is the store's version token; it must accompany
    every write and is replaced by the value the store returns.
    """

    namespace: str
    name: str
    spec: MachineSpec = field(default_factory=MachineSpec)
    status: MachineStatus = field(default_factory=MachineStatus)
    finalizers: List[str] = field(default_factory=list)
    deletion_timestamp: Optional[datetime] = None
    resource_version: Optional[str] = None

    @property
    def key(self) -> ReconcileKey:
        return ReconcileKey(namespace=self.namespace, name=self.name)

    @property
    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self, token: str) -> bool:
        return token in self.finalizers

    def copy(self) -> "Machine":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "namespace": self.namespace,
            "name": self.name,
            "finalizers": list(self.finalizers),
        }
        if self.deletion_timestamp is not None:
            metadata["deletionTimestamp"] = self.deletion_timestamp.isoformat()
        if self.resource_version is not None:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": MACHINE_API_VERSION,
            "kind": "Machine",
            "metadata": metadata,
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Machine":
        metadata = data.get("metadata") or {}
        resource_version = metadata.get("resourceVersion")
        return cls(
            namespace=metadata.get("namespace") or "default",
            name=metadata["name"],
            spec=MachineSpec.from_dict(data.get("spec")),
            status=MachineStatus.from_dict(data.get("status")),
            finalizers=list(metadata.get("finalizers") or []),
            deletion_timestamp=_parse_timestamp(metadata.get("deletionTimestamp")),
            resource_version=(
                str(resource_version) if resource_version is not None else None
            ),
        )
