from __future__ import annotations

from typing import Protocol

from fleet_deploy.core.exceptions import ConfigurationError
from fleet_deploy.core.logging import get_logger
from fleet_deploy.models import AppConfig, LaunchMachineInput, Machine, VMSize
from fleet_deploy.services.machines.guest import guest_for_size, set_size, size_name
from fleet_deploy.services.machines.leases import LeaseCoordinator, MachinesAPI

logger = get_logger(__name__)


class ScalableMachinesAPI(MachinesAPI, Protocol):
    def list_active(self) -> list[Machine]: ...


def list_machines_in_group(api: ScalableMachinesAPI, group: str) -> list[Machine]:
    return [machine for machine in api.list_active() if machine.process_group() == group]


def scale_vm(
    api: ScalableMachinesAPI,
    app_config: AppConfig,
    size: str = "",
    memory_mb: int = 0,
    group: str = "",
    coordinator: LeaseCoordinator | None = None,
) -> VMSize:
    """Resize every machine in a process group.

    Args:
        api: Machines API bound to the app
        app_config: The app's configuration, used to resolve the default group
        size: Preset name such as ``shared-cpu-2x``; empty keeps the current size
        memory_mb: Memory override in MB; 0 keeps the size's memory
        group: Process group; required when the app has more than one

    Returns:
        The resulting size of the first machine in the group
    """
    if size:
        guest_for_size(size)

    if not group:
        names = app_config.process_names()
        if len(names) > 1:
            raise ConfigurationError(
                "scaling an app with multiple process groups requires specifying a group; "
                f"this app has the following process groups: {', '.join(names)}",
                error_code="process_group_required",
                details={"process_groups": names},
            )
        group = app_config.default_process_name()

    machines = list_machines_in_group(api, group)
    if not machines:
        raise ConfigurationError(
            f"no active machines in process group '{group}'",
            error_code="no_machines",
            details={"group": group},
        )

    def mutate(machine: Machine) -> LaunchMachineInput:
        if size:
            set_size(machine.guest, size)
        if memory_mb > 0:
            machine.guest.memory_mb = memory_mb
        config = dict(machine.config)
        config["guest"] = {**(config.get("guest") or {}), **machine.guest.to_dict()}
        return LaunchMachineInput(name=machine.name, region=machine.region, config=config)

    coordinator = coordinator or LeaseCoordinator(api)
    logger.info("machines.scale_start", group=group, size=size or None, memory_mb=memory_mb or None, count=len(machines))
    updated = coordinator.update_machines(machines, mutate)

    guest = updated[0].guest
    return VMSize(name=size_name(guest), memory_mb=guest.memory_mb, cpu_cores=float(guest.cpus))
