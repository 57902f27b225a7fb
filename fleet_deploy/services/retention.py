from __future__ import annotations

from fleet_deploy.core.config import Settings, settings as default_settings
from fleet_deploy.core.logging import get_logger
from fleet_deploy.services.storage.s3_client import BucketStorage

logger = get_logger(__name__)


class RetentionManager:
    """Garbage-collects old statics versions for an app."""

    def __init__(self, storage: BucketStorage, settings: Settings | None = None, keep: int | None = None):
        self.storage = storage
        self.settings = settings or default_settings
        self.keep = keep or self.settings.statics_keep_versions

    def app_prefix(self, app_name: str) -> str:
        return f"{self.settings.statics_root}/{app_name}/"

    def version_prefix(self, app_name: str, version: int) -> str:
        return f"{self.app_prefix(app_name)}{version}/"

    def list_versions(self, app_name: str) -> list[int]:
        """Version numbers present under the app's root.

        Prefixes whose last segment is not a plain number are ignored.
        """
        app_prefix = self.app_prefix(app_name)
        versions: list[int] = []
        # TODO: follow continuation tokens once an app can hold more than one page of versions.
        for prefix in self.storage.list_common_prefixes(app_prefix, delimiter="/"):
            segment = prefix[len(app_prefix) :].strip("/") if prefix.startswith(app_prefix) else ""
            if not segment.isdigit():
                logger.debug("statics.retention_skip_prefix", prefix=prefix)
                continue
            versions.append(int(segment))
        return versions

    def delete_old_versions(self, app_name: str, current_version: int) -> list[int]:
        """Delete versions newer than ``current_version`` and all but the newest ``keep`` others.

        Returns:
            The versions that were deleted
        """
        versions = self.list_versions(app_name)
        deleted: list[int] = []

        for version in sorted({v for v in versions if v > current_version}):
            # Leftovers from an earlier app that used the same name.
            logger.info("statics.delete_future_version", app=app_name, version=version, current=current_version)
            self.storage.delete_directory(self.version_prefix(app_name, version))
            deleted.append(version)

        valid = sorted({v for v in versions if v <= current_version})
        if len(valid) > self.keep:
            for version in valid[: len(valid) - self.keep]:
                logger.info("statics.delete_old_version", app=app_name, version=version)
                self.storage.delete_directory(self.version_prefix(app_name, version))
                deleted.append(version)

        return deleted
