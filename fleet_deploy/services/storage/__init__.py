"""Storage infrastructure clients."""

from fleet_deploy.services.storage.s3_client import BucketStorage, build_tokenized_s3_client, normalize_prefix

__all__ = ["BucketStorage", "build_tokenized_s3_client", "normalize_prefix"]
