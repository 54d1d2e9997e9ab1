"""
Scheme - Explicit lookup table of referenceable API groups and kinds.

The scheme is built once at startup and handed to the resolver; there is
no process-wide registry.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set

from errors import UnknownKindError
from machine import ObjectReference

logger = logging.getLogger(__name__)

DEFAULT_GROUPS = [
    "infrastructure.cluster.x-k8s.io",
    "bootstrap.cluster.x-k8s.io",
]


class Scheme:
    """
    Maps API groups to the kinds that may be referenced from a Machine.

    A group registered without kinds accepts any kind in that group.
    """

    def __init__(self) -> None:
        self._groups: Dict[str, Optional[Set[str]]] = {}

    def add_group(self, group: str, kinds: Optional[Iterable[str]] = None) -> None:
        """Register a group, optionally restricted to the given kinds."""
        if kinds is None:
            self._groups[group] = None
            return
        existing = self._groups.get(group, set())
        if existing is None:
            # Already open to every kind
            return
        existing.update(kinds)
        self._groups[group] = existing

    def recognizes(self, ref: ObjectReference) -> bool:
        if ref.group not in self._groups:
            return False
        kinds = self._groups[ref.group]
        return kinds is None or ref.kind in kinds

    def check(self, ref: ObjectReference) -> None:
        """
        Ensure a reference can be resolved through this scheme.

        Raises:
            UnknownKindError: If the group or kind is not registered, or the
                reference is missing its kind or name.
        """
        if not ref.kind or not ref.name:
            raise UnknownKindError(f"Incomplete reference: {ref}")
        if not self.recognizes(ref):
            raise UnknownKindError(
                f"Kind {ref.kind} in group '{ref.group}' is not registered"
            )

    def groups(self) -> List[str]:
        return sorted(self._groups)

    @classmethod
    def from_entries(cls, entries: Iterable[str]) -> "Scheme":
        """
        Build a scheme from ``group`` or ``group/Kind`` entries.

        Args:
            entries: e.g. ``["bootstrap.cluster.x-k8s.io",
                "infrastructure.cluster.x-k8s.io/DockerMachine"]``
        """
        scheme = cls()
        for entry in entries:
            entry = entry.strip()
            if not entry:
                continue
            if "/" in entry:
                group, kind = entry.split("/", 1)
                scheme.add_group(group, [kind])
            else:
                scheme.add_group(entry)
        logger.debug(f"Scheme registered groups: {scheme.groups()}")
        return scheme

    @classmethod
    def default(cls) -> "Scheme":
        return cls.from_entries(DEFAULT_GROUPS)
