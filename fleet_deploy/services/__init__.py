from fleet_deploy.services.credentials import CredentialIssuer
from fleet_deploy.services.provisioning import BucketProvisioner
from fleet_deploy.services.recovery import FailureRecovery
from fleet_deploy.services.retention import RetentionManager
from fleet_deploy.services.sync import AssetSynchronizer

__all__ = [
    "AssetSynchronizer",
    "BucketProvisioner",
    "CredentialIssuer",
    "FailureRecovery",
    "RetentionManager",
]
