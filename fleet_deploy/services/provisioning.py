"""Statics bucket provisioning on top of the managed-extension API."""

from __future__ import annotations

import random
from typing import Any, Protocol

from fleet_deploy.core.config import Settings, settings as default_settings
from fleet_deploy.core.exceptions import ExtensionError
from fleet_deploy.core.logging import get_logger
from fleet_deploy.models import (
    AddOn,
    App,
    ExtensionParams,
    Organization,
    ProvisionedBucket,
    ProvisionedExtension,
    StaticsBucketMetadata,
    decode_bucket_metadata,
)
from fleet_deploy.services.credentials import CredentialIssuer

logger = get_logger(__name__)

_ADJECTIVES = (
    "autumn", "hidden", "bitter", "misty", "silent", "empty", "dry", "dark", "summer", "icy",
    "delicate", "quiet", "white", "cool", "spring", "winter", "patient", "twilight", "dawn",
    "crimson", "wispy", "weathered", "blue", "billowing", "broken", "cold", "damp", "falling",
    "frosty", "green", "long", "late", "lingering", "bold", "little", "morning", "muddy", "old",
    "red", "rough", "still", "small", "sparkling", "shy", "wandering", "withered", "wild",
    "black", "young", "holy", "solitary", "fragrant", "aged", "snowy", "proud", "floral",
    "restless", "divine", "polished", "ancient", "purple", "lively", "nameless",
)
_NOUNS = (
    "waterfall", "river", "breeze", "moon", "rain", "wind", "sea", "morning", "snow", "lake",
    "sunset", "pine", "shadow", "leaf", "dawn", "glitter", "forest", "hill", "cloud", "meadow",
    "sun", "glade", "bird", "brook", "butterfly", "bush", "dew", "dust", "field", "fire",
    "flower", "firefly", "feather", "grass", "haze", "mountain", "night", "pond", "darkness",
    "snowflake", "silence", "sound", "sky", "shape", "surf", "thunder", "violet", "water",
    "wildflower", "wave", "resonance", "wood", "dream", "cherry", "tree", "fog", "frost",
    "voice", "paper", "frog", "smoke", "star",
)


def haikunate(rng: random.Random | None = None) -> str:
    """Return a random ``adjective-noun-NNNN`` name suffix."""
    rng = rng or random.SystemRandom()
    return f"{rng.choice(_ADJECTIVES)}-{rng.choice(_NOUNS)}-{rng.randint(0, 9999):04d}"


class ExtensionsAPI(Protocol):
    """Managed-extension control plane used to create and tag the statics bucket.

    Implementations raise :class:`ExtensionError` for API-level failures.
    """

    def list_add_ons(self, provider: str) -> list[AddOn]: ...

    def get_organization(self, slug: str) -> Organization: ...

    def provision_extension(self, params: ExtensionParams) -> ProvisionedExtension: ...

    def get_add_on(self, name: str, provider: str) -> AddOn: ...

    def update_add_on(
        self,
        add_on_id: str,
        plan_id: str,
        options: dict[str, Any],
        metadata: dict[str, Any],
    ) -> None: ...

    def delete_add_on(self, name: str) -> None: ...


class BucketProvisioner:
    """Ensures each app has exactly one statics bucket carrying its sealed credential."""

    def __init__(
        self,
        extensions: ExtensionsAPI,
        issuer: CredentialIssuer | None = None,
        settings: Settings | None = None,
        name_suffix=haikunate,
    ):
        self.extensions = extensions
        self.settings = settings or default_settings
        self.issuer = issuer or CredentialIssuer(self.settings)
        self._name_suffix = name_suffix

    def find_existing(self, app: App) -> ProvisionedBucket | None:
        """Return the bucket already tagged with ``app``'s id, if any."""
        for add_on in self.extensions.list_add_ons(self.settings.statics_provider):
            lookup = decode_bucket_metadata(add_on.metadata)
            if not lookup.found:
                if add_on.metadata is not None:
                    logger.debug("provisioning.metadata_skipped", add_on=add_on.name, status=lookup.status.value)
                continue
            if lookup.metadata.app_id == app.id:
                logger.info("provisioning.bucket_reused", bucket=add_on.name, app=app.name)
                return ProvisionedBucket(name=add_on.name, sealed_credential=lookup.metadata.tokenized_auth)
        return None

    def ensure_bucket(self, app: App, app_name: str, primary_region: str = "") -> ProvisionedBucket:
        """Find or create the statics bucket for ``app``.

        Raises:
            ExtensionError: If the bucket cannot be created or tagged
            CredentialSealError: If the provider's secrets cannot be sealed
        """
        existing = self.find_existing(app)
        if existing is not None:
            return existing

        org = self.extensions.get_organization(app.organization_slug)
        params = ExtensionParams(
            organization=org,
            provider=self.settings.statics_provider,
            name=f"{app_name}-statics",
            region=primary_region,
            options={"website": {"domain_name": ""}, "accelerate": False, "public": True},
        )
        extension = self._provision(params)
        bucket = params.name
        logger.info("provisioning.bucket_created", bucket=bucket, app=app.name, region=primary_region)

        try:
            credential = self.issuer.issue(org, app, bucket, extension.environment)
            record = self.extensions.get_add_on(bucket, self.settings.statics_provider)
            metadata = StaticsBucketMetadata(app_id=app.id, tokenized_auth=credential.value)
            self.extensions.update_add_on(record.id, record.plan_id, record.options, metadata.to_metadata())
        except Exception:
            self._rollback(bucket)
            raise

        return ProvisionedBucket(name=bucket, sealed_credential=credential.value, created=True)

    def _provision(self, params: ExtensionParams) -> ProvisionedExtension:
        try:
            return self.extensions.provision_extension(params)
        except ExtensionError as exc:
            if not exc.is_name_collision:
                raise
            original = exc

        params.name = f"{params.name}-{self._name_suffix()}"
        logger.info("provisioning.name_taken_retry", bucket=params.name)
        try:
            return self.extensions.provision_extension(params)
        except ExtensionError as retry_exc:
            logger.warning("provisioning.retry_failed", bucket=params.name, error=str(retry_exc))
            raise original from retry_exc

    def _rollback(self, bucket: str) -> None:
        try:
            self.extensions.delete_add_on(bucket)
        except Exception as exc:
            logger.error("provisioning.rollback_failed", bucket=bucket, error=str(exc))
        else:
            logger.info("provisioning.rolled_back", bucket=bucket)
