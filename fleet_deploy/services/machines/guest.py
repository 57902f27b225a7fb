"""Machine guest presets and the corrective fixes applied to rejected updates."""

from __future__ import annotations

from dataclasses import replace

from fleet_deploy.core.exceptions import ConfigurationError, InvalidConfigError, MachineAPIError
from fleet_deploy.models import MachineGuest

MEMORY_MB_STEP = 256
MIN_MEMORY_MB_PER_SHARED_CPU = 256
MAX_MEMORY_MB_PER_SHARED_CPU = 2048
MIN_MEMORY_MB_PER_CPU = 2048
MAX_MEMORY_MB_PER_CPU = 8192

VALID_CPUS = {
    "shared": (1, 2, 4, 8),
    "performance": (1, 2, 4, 8, 16),
}

PRESETS: dict[str, MachineGuest] = {
    "shared-cpu-1x": MachineGuest("shared", 1, 256),
    "shared-cpu-2x": MachineGuest("shared", 2, 512),
    "shared-cpu-4x": MachineGuest("shared", 4, 1024),
    "shared-cpu-8x": MachineGuest("shared", 8, 2048),
    "performance-1x": MachineGuest("performance", 1, 2048),
    "performance-2x": MachineGuest("performance", 2, 4096),
    "performance-4x": MachineGuest("performance", 4, 8192),
    "performance-8x": MachineGuest("performance", 8, 16384),
    "performance-16x": MachineGuest("performance", 16, 32768),
}

REASON_MEMORY_TOO_LOW = "memory_too_low"
REASON_MEMORY_TOO_HIGH = "memory_too_high"
REASON_MEMORY_NOT_MULTIPLE = "memory_not_multiple"
REASON_INVALID_CPUS = "invalid_cpus"

# Statuses the machines API uses for rejected machine configs.
_CONFIG_REJECTION_STATUSES = {400, 412, 422}


def guest_for_size(size_name: str) -> MachineGuest:
    try:
        preset = PRESETS[size_name]
    except KeyError:
        raise ConfigurationError(
            f"unknown machine size '{size_name}'",
            error_code="unknown_size",
            details={"size": size_name, "valid": sorted(PRESETS)},
        ) from None
    return replace(preset)


def set_size(guest: MachineGuest, size_name: str) -> None:
    """Apply preset ``size_name`` to ``guest`` in place."""
    preset = guest_for_size(size_name)
    guest.cpu_kind = preset.cpu_kind
    guest.cpus = preset.cpus
    guest.memory_mb = preset.memory_mb


def size_name(guest: MachineGuest) -> str:
    if guest.cpu_kind == "performance":
        return f"performance-{guest.cpus}x"
    return f"shared-cpu-{guest.cpus}x"


def memory_bounds(guest: MachineGuest) -> tuple[int, int]:
    if guest.cpu_kind == "performance":
        return guest.cpus * MIN_MEMORY_MB_PER_CPU, guest.cpus * MAX_MEMORY_MB_PER_CPU
    return guest.cpus * MIN_MEMORY_MB_PER_SHARED_CPU, guest.cpus * MAX_MEMORY_MB_PER_SHARED_CPU


def validate_guest(guest: MachineGuest) -> InvalidConfigError | None:
    """Return the first problem with ``guest``, or None when it is valid."""
    details = guest.to_dict()
    if guest.cpus not in VALID_CPUS.get(guest.cpu_kind, ()):
        return InvalidConfigError(
            f"invalid number of CPUs ({guest.cpus}) for {guest.cpu_kind} guests", REASON_INVALID_CPUS, details
        )
    if guest.memory_mb % MEMORY_MB_STEP:
        return InvalidConfigError(
            f"memory size {guest.memory_mb}MB must be a multiple of {MEMORY_MB_STEP}MB",
            REASON_MEMORY_NOT_MULTIPLE,
            details,
        )
    low, high = memory_bounds(guest)
    if guest.memory_mb < low:
        return InvalidConfigError(
            f"memory size {guest.memory_mb}MB is too low for {size_name(guest)}; minimum is {low}MB",
            REASON_MEMORY_TOO_LOW,
            details,
        )
    if guest.memory_mb > high:
        return InvalidConfigError(
            f"memory size {guest.memory_mb}MB is too high for {size_name(guest)}; maximum is {high}MB",
            REASON_MEMORY_TOO_HIGH,
            details,
        )
    return None


def classify_update_error(error: Exception, guest: MachineGuest) -> InvalidConfigError | None:
    """Recognize an update failure that a guest correction could fix."""
    if isinstance(error, InvalidConfigError):
        return error
    if not isinstance(error, MachineAPIError) or error.status_code not in _CONFIG_REJECTION_STATUSES:
        return None

    message = error.message.lower()
    details = guest.to_dict()
    if "memory" in message:
        if "multiple" in message:
            return InvalidConfigError(error.message, REASON_MEMORY_NOT_MULTIPLE, details)
        if "too low" in message or "minimum" in message:
            return InvalidConfigError(error.message, REASON_MEMORY_TOO_LOW, details)
        if "too high" in message or "maximum" in message:
            return InvalidConfigError(error.message, REASON_MEMORY_TOO_HIGH, details)
    if "cpu" in message and "invalid" in message:
        return InvalidConfigError(error.message, REASON_INVALID_CPUS, details)
    return validate_guest(guest)


def attempt_fix(error: InvalidConfigError, guest: MachineGuest) -> MachineGuest | None:
    """Return a corrected copy of ``guest`` for ``error``, or None if nothing applies."""
    fixed = replace(guest)
    if error.reason == REASON_INVALID_CPUS:
        valid = VALID_CPUS.get(fixed.cpu_kind)
        if not valid:
            return None
        fixed.cpus = min(valid, key=lambda count: (abs(count - fixed.cpus), count))
    elif error.reason == REASON_MEMORY_NOT_MULTIPLE:
        fixed.memory_mb = -(-fixed.memory_mb // MEMORY_MB_STEP) * MEMORY_MB_STEP
    elif error.reason not in (REASON_MEMORY_TOO_LOW, REASON_MEMORY_TOO_HIGH):
        return None

    low, high = memory_bounds(fixed)
    fixed.memory_mb = min(max(fixed.memory_mb, low), high)
    if fixed == guest or validate_guest(fixed) is not None:
        return None
    return fixed
