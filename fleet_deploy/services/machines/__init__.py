"""Machine leasing, updates and scaling."""

from fleet_deploy.services.machines.flaps import FlapsClient
from fleet_deploy.services.machines.leases import LeaseCoordinator
from fleet_deploy.services.machines.scale import scale_vm

__all__ = ["FlapsClient", "LeaseCoordinator", "scale_vm"]
