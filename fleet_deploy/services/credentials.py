"""Sealed, write-only credentials for the statics bucket.

The sealed value is what the tokenizing proxy understands: a document naming
who may use the secret (org/app, write access), which hosts it may be sent to,
and the sigv4 keys the proxy signs with. Only the proxy can open it.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Literal

from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from pydantic import BaseModel, Field, ValidationError

from fleet_deploy.core.config import Settings, settings as default_settings
from fleet_deploy.core.exceptions import CredentialSealError
from fleet_deploy.core.logging import get_logger
from fleet_deploy.models import App, Organization

logger = get_logger(__name__)

ACCESS_KEY_ENV = "AWS_ACCESS_KEY_ID"
SECRET_KEY_ENV = "AWS_SECRET_ACCESS_KEY"

NONCE_SIZE = 12
SEAL_INFO = b"fleet-deploy/sealed-secret/v1"


class AccessScope(BaseModel):
    """Who may use a sealed secret, and where it may be sent."""

    action: Literal["write"] = "write"
    org_id: int = Field(ge=0)
    app_id: int = Field(ge=0)
    allowed_hosts: list[str] = Field(min_length=1, max_length=1)

    def allows_host(self, host: str) -> bool:
        return host.lower() in {allowed.lower() for allowed in self.allowed_hosts}

    def allows_action(self, action: str) -> bool:
        return action == self.action


@dataclass(frozen=True, slots=True)
class SealedCredential:
    value: str
    scope: AccessScope

    def __str__(self) -> str:
        return self.value


def _derive_keys(seal_key: str) -> tuple[bytes, bytes]:
    try:
        master = bytes.fromhex(seal_key)
    except ValueError as exc:
        raise CredentialSealError("seal key is not valid hex", error_code="bad_seal_key") from exc
    if len(master) != 32:
        raise CredentialSealError("seal key must be 32 bytes", error_code="bad_seal_key")
    okm = HKDF(algorithm=hashes.SHA256(), length=64, salt=None, info=SEAL_INFO).derive(master)
    return okm[:32], okm[32:]


def seal(document: dict[str, Any], seal_key: str) -> str:
    """Seal ``document`` under ``seal_key``.

    AES-256-GCM with a synthetic IV: the nonce is an HMAC of the plaintext, so
    the same document and key always produce the same sealed string.
    """
    enc_key, mac_key = _derive_keys(seal_key)
    plaintext = json.dumps(document, sort_keys=True, separators=(",", ":")).encode("utf-8")
    mac = hmac.HMAC(mac_key, hashes.SHA256())
    mac.update(plaintext)
    nonce = mac.finalize()[:NONCE_SIZE]
    ciphertext = AESGCM(enc_key).encrypt(nonce, plaintext, SEAL_INFO)
    return base64.urlsafe_b64encode(nonce + ciphertext).decode("ascii")


class CredentialIssuer:
    """Mints sealed credentials that can only write to one statics bucket."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or default_settings

    def bucket_host(self, bucket: str) -> str:
        return f"{bucket}.{self.settings.storage_hostname}"

    def issue(
        self,
        org: Organization,
        app: App,
        bucket: str,
        secrets: dict[str, Any],
    ) -> SealedCredential:
        """Seal the bucket's sigv4 keys behind a write-only, single-host scope.

        Args:
            org: Organization owning the app
            app: App the credential is bound to
            bucket: The one bucket the credential may reach
            secrets: Environment returned by the storage provider

        Raises:
            CredentialSealError: If any input is malformed or sealing fails
        """
        try:
            org_id = int(org.internal_numeric_id)
        except (TypeError, ValueError) as exc:
            raise CredentialSealError(
                f"failed to decode org ID for {org.slug}",
                error_code="bad_org_id",
                details={"org": org.slug},
            ) from exc
        if org_id < 0:
            raise CredentialSealError(f"failed to decode org ID for {org.slug}", error_code="bad_org_id")

        access_key = secrets.get(ACCESS_KEY_ENV)
        secret_key = secrets.get(SECRET_KEY_ENV)
        if not isinstance(access_key, str) or not isinstance(secret_key, str) or not access_key or not secret_key:
            raise CredentialSealError(
                "storage provider did not return usable access keys",
                error_code="bad_secret_material",
                details={"bucket": bucket},
            )

        try:
            scope = AccessScope(
                org_id=org_id,
                app_id=app.internal_numeric_id,
                allowed_hosts=[self.bucket_host(bucket)],
            )
        except ValidationError as exc:
            raise CredentialSealError(
                f"failed to build access scope for app {app.name}",
                error_code="bad_app_id",
                details={"app": app.name},
            ) from exc
        document = {
            "fly_macaroon_auth": {"access": {"action": "w", "org_id": scope.org_id, "app_id": scope.app_id}},
            "sigv4_processor": {"access_key": access_key, "secret_key": secret_key},
            "allowed_hosts": scope.allowed_hosts,
        }
        value = seal(document, self.settings.tokenizer_seal_key)
        logger.info("credentials.sealed", bucket=bucket, app=app.name, allowed_host=scope.allowed_hosts[0])
        return SealedCredential(value=value, scope=scope)
