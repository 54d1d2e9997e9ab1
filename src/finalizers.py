"""
Finalizers - Idempotent edits of a Machine's finalizer set.

Both helpers mutate the in-memory Machine and report whether anything
changed, so callers can skip writes that would only churn the version token.
"""

from machine import Machine


def ensure_finalizer(machine: Machine, token: str) -> bool:
    """Add ``token`` if absent. Returns True if the set changed."""
    if machine.has_finalizer(token):
        return False
    machine.finalizers.append(token)
    return True


def remove_finalizer(machine: Machine, token: str) -> bool:
    """Remove every occurrence of ``token``. Returns True if the set changed."""
    if not machine.has_finalizer(token):
        return False
    machine.finalizers = [f for f in machine.finalizers if f != token]
    return True
