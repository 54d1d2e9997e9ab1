"""
Deletion Coordinator - Ordered teardown of a Machine's dependents.

Each pass deletes whatever still exists and reports whether everything is
gone. Nothing is remembered between passes; existence is re-checked every
time.
"""

import logging

from external import ExternalResolver
from machine import Machine

logger = logging.getLogger(__name__)


async def reconcile_delete_external(
    machine: Machine, resolver: ExternalResolver
) -> bool:
    """
    Drive deletion of the bootstrap and infrastructure objects of a Machine.

    Both references are handled sequentially in the same pass. A resolver
    error propagates and is never taken to mean the object is gone.

    Args:
        machine: A Machine with its deletion marker set.
        resolver: Resolver used to check existence and issue deletes.

    Returns:
        True only when every referenced object resolves to not-found, i.e.
        the Machine's finalizer may be released.
    """
    refs = [
        ("bootstrap", machine.spec.bootstrap.config_ref),
        ("infrastructure", machine.spec.infrastructure_ref),
    ]

    remaining = []
    for role, ref in refs:
        if ref is None:
            continue
        payload = await resolver.resolve(ref, machine.namespace)
        if payload is None:
            continue
        await resolver.delete(ref, machine.namespace)
        remaining.append(role)

    if remaining:
        logger.info(
            f"Machine {machine.key} waiting on {', '.join(remaining)} deletion"
        )
        return False

    logger.info(f"Machine {machine.key} dependents are gone")
    return True
