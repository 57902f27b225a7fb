"""Lease-guarded machine updates."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Protocol

from fleet_deploy.core.config import Settings, settings as default_settings
from fleet_deploy.core.exceptions import LeaseError
from fleet_deploy.core.logging import get_logger
from fleet_deploy.models import LaunchMachineInput, Machine, MachineGuest, MachineLease
from fleet_deploy.services.machines.guest import attempt_fix, classify_update_error

logger = get_logger(__name__)


class MachinesAPI(Protocol):
    def acquire_lease(self, machine_id: str, ttl_seconds: int) -> MachineLease: ...

    def release_lease(self, machine_id: str, nonce: str) -> None: ...

    def update_machine(self, machine_id: str, machine_input: LaunchMachineInput, nonce: str) -> Machine: ...


Mutation = Callable[[Machine], LaunchMachineInput]


class LeaseCoordinator:
    """Applies a mutation to machines one at a time, each under its own lease."""

    def __init__(self, api: MachinesAPI, settings: Settings | None = None):
        self.api = api
        self.settings = settings or default_settings
        self._held: dict[str, MachineLease] = {}

    @property
    def held_leases(self) -> dict[str, MachineLease]:
        return dict(self._held)

    @contextmanager
    def machine_lease(self, machine: Machine) -> Iterator[MachineLease]:
        """Hold an exclusive lease on ``machine`` for the duration of the block.

        The lease is released on every exit path. Release failures are logged
        and never replace an error raised inside the block.
        """
        if machine.id in self._held:
            raise LeaseError(
                f"lease on machine {machine.id} is already held",
                error_code="lease_already_held",
                details={"machine": machine.id},
            )
        lease = self.api.acquire_lease(machine.id, self.settings.lease_ttl_seconds)
        self._held[machine.id] = lease
        machine.lease = lease
        logger.debug("machines.lease_acquired", machine=machine.id, expires_at=lease.expires_at)
        try:
            yield lease
        finally:
            self._held.pop(machine.id, None)
            machine.lease = None
            try:
                self.api.release_lease(machine.id, lease.nonce)
            except Exception as exc:
                logger.warning("machines.lease_release_failed", machine=machine.id, error=str(exc))
            else:
                logger.debug("machines.lease_released", machine=machine.id)

    def update_machine(self, machine: Machine, mutate: Mutation) -> Machine:
        """Lease ``machine``, apply ``mutate`` and push the result.

        A rejected update that names a fixable guest problem is corrected and
        retried once. If no fix applies, or the retry fails, the first error is
        raised.
        """
        with self.machine_lease(machine) as lease:
            machine_input = mutate(machine)
            try:
                return self.api.update_machine(machine.id, machine_input, lease.nonce)
            except Exception as exc:
                retry_input = self._corrected_input(machine_input, exc)
                if retry_input is None:
                    raise
                logger.info("machines.update_retry", machine=machine.id, reason=str(exc))
                try:
                    return self.api.update_machine(machine.id, retry_input, lease.nonce)
                except Exception as retry_exc:
                    logger.warning("machines.update_retry_failed", machine=machine.id, error=str(retry_exc))
                    raise exc from retry_exc

    def update_machines(self, machines: Iterable[Machine], mutate: Mutation) -> list[Machine]:
        """Update ``machines`` in order, stopping at the first failure.

        Machines updated before the failure keep their new configuration.
        """
        updated: list[Machine] = []
        for machine in machines:
            updated.append(self.update_machine(machine, mutate))
            logger.info("machines.updated", machine=machine.id, region=machine.region)
        return updated

    @staticmethod
    def _corrected_input(machine_input: LaunchMachineInput, error: Exception) -> LaunchMachineInput | None:
        guest = MachineGuest.from_dict(machine_input.config.get("guest"))
        invalid = classify_update_error(error, guest)
        if invalid is None:
            return None
        fixed = attempt_fix(invalid, guest)
        if fixed is None:
            return None
        config = dict(machine_input.config)
        config["guest"] = {**(config.get("guest") or {}), **fixed.to_dict()}
        return replace(machine_input, config=config)
