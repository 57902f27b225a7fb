from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

from fleet_deploy.core.config import Settings, settings as default_settings
from fleet_deploy.core.logging import get_logger
from fleet_deploy.services.storage.s3_client import BucketStorage

logger = get_logger(__name__)


class FailureRecovery:
    """Removes the version directory left behind by a failed statics push."""

    def __init__(self, storage: BucketStorage, settings: Settings | None = None, timeout: float | None = None):
        self.storage = storage
        settings = settings or default_settings
        self.timeout = timeout if timeout is not None else settings.statics_cleanup_timeout_seconds

    def cleanup(self, version_root: str) -> bool:
        """Best-effort delete of ``version_root``; never raises.

        Runs on its own thread so a cancelled upload cannot hold it up, and
        gives up waiting after ``timeout`` seconds. A delete that has not
        finished by then keeps running in the background until the storage
        client's connect and read timeouts end it, and interpreter exit waits
        for that thread.

        Returns:
            True if the directory was deleted in time
        """
        logger.info("statics.cleanup_start", bucket=self.storage.bucket, prefix=version_root)
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="statics-cleanup")
        try:
            future = pool.submit(self.storage.delete_directory, version_root)
            removed = future.result(timeout=self.timeout)
        except FutureTimeoutError:
            logger.warning("statics.cleanup_timeout", prefix=version_root, timeout_seconds=self.timeout)
            return False
        except Exception as exc:
            logger.warning("statics.cleanup_failed", prefix=version_root, error=str(exc))
            return False
        finally:
            # Does not stop a running delete; the worker thread is only abandoned.
            pool.shutdown(wait=False)
        logger.info("statics.cleanup_complete", prefix=version_root, removed=removed)
        return True
