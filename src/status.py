"""
Status Projection - Normalized views over loosely typed provider objects.

Providers evolve independently of this controller, so every accessor here
is best-effort: a missing field or a field of the wrong shape yields the
zero value instead of an error.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type

from machine import Machine, MachineAddress, MachinePhase

_MISSING = object()


def nested_field(
    obj: Any, path: Tuple[str, ...], expected_type: Type, default: Any = None
) -> Any:
    """
    Read ``obj[path[0]][path[1]]...`` if every step is a dict and the leaf
    has ``expected_type``; otherwise return ``default``.
    """
    current = obj
    for key in path:
        if not isinstance(current, dict):
            return default
        current = current.get(key, _MISSING)
        if current is _MISSING:
            return default
    # bool is a subclass of int; keep them apart
    if expected_type is not bool and isinstance(current, bool):
        return default
    if not isinstance(current, expected_type):
        return default
    return current


def _first_string(obj: Any, *paths: Tuple[str, ...]) -> Optional[str]:
    for path in paths:
        value = nested_field(obj, path, str)
        if value:
            return value
    return None


@dataclass(frozen=True)
class InfrastructureStatus:
    """What a Machine needs to know about its infrastructure object."""

    ready: bool = False
    addresses: List[MachineAddress] = field(default_factory=list)
    provider_id: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_message: Optional[str] = None


@dataclass(frozen=True)
class BootstrapStatus:
    """What a Machine needs to know about its bootstrap object."""

    ready: bool = False
    data: Optional[str] = None


def project(payload: Optional[Dict[str, Any]]) -> InfrastructureStatus:
    """
    Project an infrastructure object onto the Machine status fields.

    Reads ``status.ready``, ``status.addresses[{type, address}]``,
    ``spec.providerID`` and the failure reason/message. Address entries
    that are not string pairs are skipped; order is preserved.
    """
    addresses = []
    for entry in nested_field(payload, ("status", "addresses"), list, []):
        address_type = nested_field(entry, ("type",), str)
        address = nested_field(entry, ("address",), str)
        if address_type is not None and address is not None:
            addresses.append(MachineAddress(type=address_type, address=address))

    return InfrastructureStatus(
        ready=nested_field(payload, ("status", "ready"), bool, False),
        addresses=addresses,
        provider_id=_first_string(payload, ("spec", "providerID")),
        failure_reason=_first_string(
            payload, ("status", "failureReason"), ("status", "errorReason")
        ),
        failure_message=_first_string(
            payload, ("status", "failureMessage"), ("status", "errorMessage")
        ),
    )


def project_bootstrap(payload: Optional[Dict[str, Any]]) -> BootstrapStatus:
    """Project a bootstrap object: ready flag and generated bootstrap data."""
    return BootstrapStatus(
        ready=nested_field(payload, ("status", "ready"), bool, False),
        data=_first_string(payload, ("status", "bootstrapData")),
    )


def machine_phase(machine: Machine) -> MachinePhase:
    """Advisory phase derived from the rest of the Machine; never read back."""
    if machine.is_deleting:
        return MachinePhase.DELETING
    if machine.status.failure_reason or machine.status.failure_message:
        return MachinePhase.FAILED
    if machine.status.ready:
        return MachinePhase.PROVISIONED
    if machine.status.bootstrap_ready:
        return MachinePhase.PROVISIONING
    return MachinePhase.PENDING
