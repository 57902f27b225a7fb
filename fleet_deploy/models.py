from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from fleet_deploy.services.storage.s3_client import BucketStorage

STATICS_META_APP_ID = "fly-statics-app-id"
STATICS_META_TOKENIZED_AUTH = "fly-statics-tokenized-auth"

DEFAULT_PROCESS_GROUP = "app"
RELEASE_COMMAND_GROUP = "fly_app_release_command"


# ============================================================================
# App configuration
# ============================================================================


@dataclass(slots=True)
class Static:
    """A directory served as static content under ``url_prefix``."""

    guest_path: str
    url_prefix: str
    tigris_bucket: str = ""
    index_document: str = ""


@dataclass(slots=True)
class AppConfig:
    """The validated subset of an app's configuration used during deploys."""

    app_name: str
    primary_region: str = ""
    statics: list[Static] = field(default_factory=list)
    processes: dict[str, str] = field(default_factory=dict)

    def process_names(self) -> list[str]:
        if not self.processes:
            return [DEFAULT_PROCESS_GROUP]
        return sorted(self.processes)

    def default_process_name(self) -> str:
        return self.process_names()[0]


@dataclass(slots=True)
class Organization:
    id: str
    slug: str
    internal_numeric_id: str


@dataclass(slots=True)
class App:
    id: str
    name: str
    internal_numeric_id: int
    organization_slug: str


# ============================================================================
# Managed extensions (add-ons)
# ============================================================================


@dataclass(slots=True)
class AddOn:
    id: str
    name: str
    plan_id: str = ""
    options: dict[str, Any] = field(default_factory=dict)
    metadata: Any = None


@dataclass(slots=True)
class ExtensionParams:
    """Request for a new managed extension."""

    organization: Organization
    provider: str
    name: str
    region: str = ""
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ProvisionedExtension:
    name: str
    environment: dict[str, Any] = field(default_factory=dict)


class StaticsBucketMetadata(BaseModel):
    """Metadata written onto the add-on record that backs an app's statics bucket."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    app_id: str = Field(alias=STATICS_META_APP_ID, min_length=1)
    tokenized_auth: str = Field(alias=STATICS_META_TOKENIZED_AUTH, min_length=1)

    def to_metadata(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


class MetadataStatus(str, Enum):
    FOUND = "found"
    MALFORMED = "malformed"
    NOT_FOUND = "not_found"


@dataclass(slots=True)
class MetadataLookup:
    status: MetadataStatus
    metadata: StaticsBucketMetadata | None = None

    @property
    def found(self) -> bool:
        return self.status is MetadataStatus.FOUND


def decode_bucket_metadata(raw: Any) -> MetadataLookup:
    """Decode add-on metadata without ever raising.

    Missing metadata, or metadata that lacks the statics keys entirely, is
    ``NOT_FOUND``. Metadata that carries the keys with unusable values is
    ``MALFORMED``. Callers treat both as "not ours".
    """
    if not isinstance(raw, dict):
        return MetadataLookup(MetadataStatus.NOT_FOUND if raw is None else MetadataStatus.MALFORMED)
    if STATICS_META_APP_ID not in raw and STATICS_META_TOKENIZED_AUTH not in raw:
        return MetadataLookup(MetadataStatus.NOT_FOUND)
    try:
        metadata = StaticsBucketMetadata.model_validate(raw)
    except ValidationError:
        return MetadataLookup(MetadataStatus.MALFORMED)
    return MetadataLookup(MetadataStatus.FOUND, metadata)


# ============================================================================
# Statics deployment
# ============================================================================


@dataclass(slots=True)
class ProvisionedBucket:
    name: str
    sealed_credential: str
    created: bool = False


@dataclass(slots=True)
class StaticsContext:
    """Per-deployment state handed between the statics steps."""

    bucket: str
    root: str
    storage: BucketStorage
    sealed_credential: str
    original_statics: list[Static] = field(default_factory=list)

    def version_prefix(self, index: int) -> str:
        return f"{self.root}/{index}/"


# ============================================================================
# Machines
# ============================================================================


@dataclass(slots=True)
class MachineGuest:
    cpu_kind: str = "shared"
    cpus: int = 1
    memory_mb: int = 256

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MachineGuest:
        data = data or {}
        return cls(
            cpu_kind=data.get("cpu_kind", "shared"),
            cpus=int(data.get("cpus", 1)),
            memory_mb=int(data.get("memory_mb", 256)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"cpu_kind": self.cpu_kind, "cpus": self.cpus, "memory_mb": self.memory_mb}


@dataclass(slots=True)
class MachineLease:
    nonce: str
    expires_at: int | None = None
    owner: str | None = None


@dataclass(slots=True)
class Machine:
    id: str
    name: str
    region: str
    state: str = "started"
    guest: MachineGuest = field(default_factory=MachineGuest)
    config: dict[str, Any] = field(default_factory=dict)
    lease: MachineLease | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Machine:
        config = dict(data.get("config") or {})
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            region=data.get("region", ""),
            state=data.get("state", ""),
            guest=MachineGuest.from_dict(config.get("guest")),
            config=config,
        )

    @property
    def metadata(self) -> dict[str, str]:
        return self.config.get("metadata") or {}

    def process_group(self) -> str:
        return self.metadata.get("fly_process_group") or self.metadata.get("process_group") or ""

    def is_release_command(self) -> bool:
        return self.process_group() == RELEASE_COMMAND_GROUP


@dataclass(slots=True)
class LaunchMachineInput:
    name: str
    region: str
    config: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "region": self.region, "config": self.config}


@dataclass(slots=True)
class VMSize:
    name: str
    memory_mb: int
    cpu_cores: float
