from functools import lru_cache

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

DEFAULT_SEAL_KEY = "3afdb665d93f741adc98a6cfecb36f1e02403a095e8efa921fd2321857011f42"


class Settings(BaseSettings):
    """Configuration for fleet deployments.

    All values can be overridden via environment variables. Prefix: ``FLEET_DEPLOY_``.
    """

    # Object storage reached through the tokenizing proxy
    storage_hostname: str = Field(default="fly.storage.tigris.dev")
    tokenizer_url: str = Field(default="https://tokenizer.fly.io")
    tokenizer_seal_key: str = Field(default=DEFAULT_SEAL_KEY)

    # Statics synchronization
    statics_root: str = "fly-statics"
    statics_provider: str = "tigris"
    statics_keep_versions: int = 3
    statics_upload_workers: int = 5
    statics_cleanup_timeout_seconds: float = 5.0
    storage_connect_timeout_seconds: float = 5.0
    storage_read_timeout_seconds: float = 30.0

    # Machines API
    flaps_base_url: str = Field(default="https://api.machines.dev")
    api_token: str | None = None
    lease_ttl_seconds: int = 120
    http_timeout_seconds: float = 60.0

    # Logging
    log_level: str = "INFO"
    log_json_output: bool = False

    model_config = SettingsConfigDict(env_prefix="FLEET_DEPLOY_", env_file=".env", extra="ignore")

    @field_validator("statics_keep_versions", "statics_upload_workers", "lease_ttl_seconds")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("tokenizer_seal_key")
    @classmethod
    def _seal_key_is_hex32(cls, value: str) -> str:
        try:
            raw = bytes.fromhex(value)
        except ValueError as exc:
            raise ValueError("seal key must be hex encoded") from exc
        if len(raw) != 32:
            raise ValueError("seal key must be 32 bytes")
        return value.lower()

    @field_validator("statics_root")
    @classmethod
    def _strip_root(cls, value: str) -> str:
        return value.strip("/")

    @property
    def storage_endpoint_url(self) -> str:
        # Plain HTTP: the tokenizer terminates TLS and forwards upstream over HTTPS.
        return f"http://{self.storage_hostname}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
