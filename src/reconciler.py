"""
Machine Reconciler - One pass of the machine state machine.

Each pass re-reads the Machine, derives its desired status from the
current state of its infrastructure and bootstrap objects, and writes back
only what changed. Nothing is cached between passes.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from client import StoreClient
from deletion import reconcile_delete_external
from errors import InvalidMachineError
from external import ExternalResolver
from finalizers import ensure_finalizer, remove_finalizer
from machine import MACHINE_FINALIZER, Machine, MachinePhase, ReconcileKey
from status import machine_phase, project, project_bootstrap

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of a successful pass. Failures are raised, never returned."""

    requeue_after: Optional[float] = None
    message: str = ""


class MachineReconciler:
    """
    Drives a Machine toward its declared state.

    Assumes the caller never runs two passes for the same key at once.
    Every write carries the version token of the object read at the start
    of the pass; a stale token raises ConflictError and the next pass
    starts over from a fresh read.
    """

    def __init__(
        self,
        client: StoreClient,
        resolver: ExternalResolver,
        not_found_requeue_after: float = 30.0,
        deletion_requeue_after: float = 20.0,
        finalizer: str = MACHINE_FINALIZER,
    ):
        self.client = client
        self.resolver = resolver
        self.not_found_requeue_after = not_found_requeue_after
        self.deletion_requeue_after = deletion_requeue_after
        self.finalizer = finalizer

    async def reconcile(self, key: ReconcileKey) -> ReconcileResult:
        """
        Run one reconcile pass for a Machine.

        Returns:
            ReconcileResult with an optional requeue delay in seconds.

        Raises:
            ReconcileError: For conflicts, transient failures and invalid
                Machines; the caller retries with backoff.
        """
        machine = await self.client.get_machine(key.namespace, key.name)
        if machine is None:
            logger.debug(f"Machine {key} not found, nothing to reconcile")
            return ReconcileResult(message="Machine not found")

        if machine.is_deleting:
            return await self._reconcile_delete(machine)
        return await self._reconcile_normal(machine)

    async def _reconcile_normal(self, machine: Machine) -> ReconcileResult:
        # The finalizer lands before any validation of the spec
        if ensure_finalizer(machine, self.finalizer):
            machine = await self.client.update_machine(machine)
            logger.info(f"Added finalizer {self.finalizer} to {machine.key}")

        if machine.spec.infrastructure_ref is None:
            raise InvalidMachineError(
                f"Machine {machine.key} has no infrastructureRef"
            )

        desired = machine.copy()
        delays = [
            await self._reconcile_bootstrap(desired),
            await self._reconcile_infrastructure(desired),
        ]
        desired.status.phase = machine_phase(desired).value

        if desired.spec != machine.spec or desired.status != machine.status:
            await self.client.update_machine(desired)
            logger.info(
                f"Updated machine {machine.key}: phase={desired.status.phase} "
                f"ready={desired.status.ready}"
            )

        delays = [d for d in delays if d]
        if delays:
            return ReconcileResult(
                requeue_after=min(delays),
                message="Waiting for referenced objects to exist",
            )
        return ReconcileResult()

    async def _reconcile_bootstrap(self, machine: Machine) -> Optional[float]:
        """Fill in bootstrap data from the bootstrap object; returns a requeue delay."""
        bootstrap = machine.spec.bootstrap
        if bootstrap.data is not None:
            machine.status.bootstrap_ready = True
            return None

        if bootstrap.config_ref is None:
            logger.debug(f"Machine {machine.key} has no bootstrap configured")
            machine.status.bootstrap_ready = False
            return None

        payload = await self.resolver.resolve(bootstrap.config_ref, machine.namespace)
        if payload is None:
            logger.info(
                f"Bootstrap {bootstrap.config_ref.name} for {machine.key} not found"
            )
            machine.status.bootstrap_ready = False
            return self.not_found_requeue_after

        view = project_bootstrap(payload)
        if view.ready and view.data is not None:
            bootstrap.data = view.data
            machine.status.bootstrap_ready = True
        else:
            machine.status.bootstrap_ready = False
        return None

    async def _reconcile_infrastructure(self, machine: Machine) -> Optional[float]:
        """Project the infrastructure object onto status; returns a requeue delay."""
        ref = machine.spec.infrastructure_ref
        payload = await self.resolver.resolve(ref, machine.namespace)
        if payload is None:
            logger.info(f"Infrastructure {ref.name} for {machine.key} not found")
            machine.status.ready = False
            machine.status.addresses = []
            machine.status.failure_reason = None
            machine.status.failure_message = None
            return self.not_found_requeue_after

        view = project(payload)
        machine.status.ready = view.ready
        machine.status.addresses = list(view.addresses)
        machine.status.failure_reason = view.failure_reason
        machine.status.failure_message = view.failure_message
        if view.provider_id is not None:
            machine.status.provider_id = view.provider_id
            if machine.spec.provider_id is None:
                machine.spec.provider_id = view.provider_id
        return None

    async def _reconcile_delete(self, machine: Machine) -> ReconcileResult:
        desired = machine.copy()
        desired.status.phase = MachinePhase.DELETING.value

        if not await reconcile_delete_external(machine, self.resolver):
            if desired.status != machine.status:
                await self.client.update_machine(desired)
            return ReconcileResult(
                requeue_after=self.deletion_requeue_after,
                message="Waiting for dependents to be deleted",
            )

        if remove_finalizer(desired, self.finalizer):
            await self.client.update_machine(desired)
            logger.info(f"Removed finalizer {self.finalizer} from {machine.key}")
        return ReconcileResult()
