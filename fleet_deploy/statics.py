"""Statics deployment: push an app's static directories into its versioned bucket.

Steps, in the order a deploy runs them:

1. ``initialize`` finds or creates the bucket and builds a storage client that
   writes through the tokenizing proxy;
2. ``push`` (or ``start_push`` on a background thread) uploads each candidate
   static to ``<root>/<index>/`` and points the app config at the bucket;
3. ``finalize`` garbage-collects old versions after a successful deploy.

A failed push always removes the partially written version directory.
"""

from __future__ import annotations

import posixpath
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from fleet_deploy.core.config import Settings, settings as default_settings
from fleet_deploy.core.logging import get_logger
from fleet_deploy.models import App, AppConfig, Static, StaticsContext
from fleet_deploy.services.provisioning import BucketProvisioner, ExtensionsAPI
from fleet_deploy.services.recovery import FailureRecovery
from fleet_deploy.services.retention import RetentionManager
from fleet_deploy.services.storage.s3_client import BucketStorage, build_tokenized_s3_client
from fleet_deploy.services.sync import AssetSynchronizer

logger = get_logger(__name__)

StorageFactory = Callable[[str, str], BucketStorage]


def is_sync_candidate(static: Static) -> bool:
    """Whether ``static`` should be pushed to object storage.

    Statics bound to a bucket belong to the user. Absolute paths live inside
    the deployed image.
    """
    if static.tigris_bucket:
        return False
    if not static.guest_path:
        return False
    return not static.guest_path.startswith("/")


class StaticsDeployment:
    def __init__(
        self,
        app: App,
        app_config: AppConfig,
        release_version: int,
        extensions: ExtensionsAPI,
        *,
        settings: Settings | None = None,
        provisioner: BucketProvisioner | None = None,
        storage_factory: StorageFactory | None = None,
        source_root: Path | str | None = None,
        user_auth_header: str | None = None,
    ):
        self.app = app
        self.app_config = app_config
        self.release_version = release_version
        self.settings = settings or default_settings
        self.provisioner = provisioner or BucketProvisioner(extensions, settings=self.settings)
        self.source_root = Path(source_root) if source_root is not None else Path.cwd()
        self._user_auth_header = user_auth_header
        self._storage_factory = storage_factory or self._tokenized_storage

    def uses_object_storage(self) -> bool:
        return any(is_sync_candidate(static) for static in self.app_config.statics)

    def _tokenized_storage(self, bucket: str, sealed_credential: str) -> BucketStorage:
        client = build_tokenized_s3_client(self.settings, sealed_credential, self._user_auth_header)
        return BucketStorage(client, bucket)

    def initialize(self) -> StaticsContext:
        """Ensure the bucket exists and take the candidate statics out of the config.

        The candidates come back as bucket-backed statics during ``push``, so
        the config never lists a directory twice.
        """
        bucket = self.provisioner.ensure_bucket(self.app, self.app_config.app_name, self.app_config.primary_region)

        original = list(self.app_config.statics)
        self.app_config.statics[:] = [static for static in original if not is_sync_candidate(static)]

        ctx = StaticsContext(
            bucket=bucket.name,
            root=f"{self.settings.statics_root}/{self.app_config.app_name}/{self.release_version}",
            storage=self._storage_factory(bucket.name, bucket.sealed_credential),
            sealed_credential=bucket.sealed_credential,
            original_statics=original,
        )
        logger.info("statics.initialized", bucket=ctx.bucket, root=ctx.root, created=bucket.created)
        return ctx

    def push(self, ctx: StaticsContext, cancel: threading.Event | None = None) -> None:
        """Upload every candidate static for this release.

        Any failure removes the whole version directory and drops the
        bucket-backed statics added so far before the error is re-raised.
        """
        statics_before = list(self.app_config.statics)
        try:
            self._push(ctx, cancel)
        except BaseException as exc:
            logger.error("statics.push_failed", root=ctx.root, error=str(exc))
            self.app_config.statics[:] = statics_before
            FailureRecovery(ctx.storage, settings=self.settings).cleanup(ctx.root)
            raise

    def start_push(self, ctx: StaticsContext, cancel: threading.Event | None = None) -> Future:
        """Run ``push`` on a background thread; errors surface through the future."""
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="statics-push")
        future = executor.submit(self.push, ctx, cancel)
        executor.shutdown(wait=False)
        return future

    def _push(self, ctx: StaticsContext, cancel: threading.Event | None) -> None:
        synchronizer = AssetSynchronizer(ctx.storage, settings=self.settings)
        index = 0
        for static in ctx.original_statics:
            if not is_sync_candidate(static):
                continue
            dest = ctx.version_prefix(index)
            index += 1

            local = self.source_root / posixpath.normpath(static.guest_path)
            synchronizer.upload_directory(dest, local, cancel=cancel)

            self.app_config.statics.append(
                Static(
                    guest_path="/" + dest,
                    url_prefix=static.url_prefix,
                    tigris_bucket=ctx.bucket,
                    index_document=static.index_document,
                )
            )
        logger.info("statics.push_complete", root=ctx.root, statics=index)

    def finalize(self, ctx: StaticsContext) -> None:
        """Delete versions outside the retention window; failures are only logged."""
        retention = RetentionManager(ctx.storage, settings=self.settings)
        try:
            deleted = retention.delete_old_versions(self.app_config.app_name, self.release_version)
        except Exception as exc:
            logger.warning("statics.retention_failed", app=self.app_config.app_name, error=str(exc))
            return
        if deleted:
            logger.info("statics.retention_complete", app=self.app_config.app_name, deleted=deleted)
