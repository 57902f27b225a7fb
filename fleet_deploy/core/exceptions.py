"""Custom exceptions for fleet-deploy domain errors.

Exception Hierarchy:
    FleetDeployError (base)
    ├── ConfigurationError
    ├── CredentialSealError
    ├── ExternalServiceError
    │   ├── ExtensionError
    │   └── MachineAPIError
    ├── StorageError
    │   └── StaticsUploadCancelled
    ├── LeaseError
    └── InvalidConfigError
"""

from __future__ import annotations

from typing import Any

NAME_COLLISION_MARKERS = ("already exists for app", "unavailable for creation")


class FleetDeployError(Exception):
    """Base exception for all fleet-deploy domain errors.

    Attributes:
        message: Descriptive error message
        error_code: Machine-readable error identifier
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary suitable for structured logs."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details if self.details else None,
        }


class ConfigurationError(FleetDeployError):
    """Raised when settings or app configuration are invalid.

    Example:
        >>> raise ConfigurationError(
        ...     message="unknown machine size 'huge-cpu-1x'",
        ...     error_code="unknown_size",
        ...     details={"size": "huge-cpu-1x"},
        ... )
    """

    pass


class CredentialSealError(FleetDeployError):
    """Raised when a storage credential cannot be sealed.

    Reasons might include:
    - Missing or non-string processor secrets
    - An organization id that is not an unsigned integer
    - A seal key that is not 32 bytes of hex
    """

    pass


class ExternalServiceError(FleetDeployError):
    """Base exception for failures reported by a remote control plane."""

    pass


class ExtensionError(ExternalServiceError):
    """Raised by the managed-extension API (add-on create/lookup/update/delete)."""

    @property
    def is_name_collision(self) -> bool:
        """Whether the API rejected the requested name as taken."""
        return any(marker in self.message for marker in NAME_COLLISION_MARKERS)


class MachineAPIError(ExternalServiceError):
    """Raised when the machines API answers with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, error_code=error_code, details=details)


class StorageError(FleetDeployError):
    """Base exception for object-storage failures."""

    pass


class StaticsUploadCancelled(StorageError):
    """Raised when a directory upload is cancelled before it completes."""

    pass


class LeaseError(FleetDeployError):
    """Raised when a machine lease cannot be acquired or is already held."""

    pass


class InvalidConfigError(FleetDeployError):
    """A machine update rejected because of a fixable guest configuration.

    ``reason`` is one of the ``REASON_*`` constants in
    :mod:`fleet_deploy.services.machines.guest`.
    """

    def __init__(self, message: str, reason: str, details: dict[str, Any] | None = None) -> None:
        self.reason = reason
        super().__init__(message, error_code=reason, details=details)
