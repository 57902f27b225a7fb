"""Fleet deployment core: lease-guarded machine updates and statics synchronization."""

from fleet_deploy.models import AppConfig, Static, StaticsContext
from fleet_deploy.statics import StaticsDeployment, is_sync_candidate

__all__ = [
    "AppConfig",
    "Static",
    "StaticsContext",
    "StaticsDeployment",
    "is_sync_candidate",
]
