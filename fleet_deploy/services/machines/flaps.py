"""Client for the machines REST API."""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fleet_deploy.core.config import Settings, settings as default_settings
from fleet_deploy.core.exceptions import MachineAPIError
from fleet_deploy.core.logging import get_logger
from fleet_deploy.models import LaunchMachineInput, Machine, MachineLease

logger = get_logger(__name__)

LEASE_NONCE_HEADER = "fly-machine-lease-nonce"

_INACTIVE_STATES = {"destroyed", "destroying"}


class FlapsClient:
    """Synchronous client for listing, leasing and updating machines."""

    def __init__(
        self,
        app_name: str,
        settings: Settings | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        settings = settings or default_settings
        headers = {"User-Agent": "fleet-deploy"}
        if settings.api_token:
            headers["Authorization"] = f"Bearer {settings.api_token}"
        self.app_name = app_name
        self._client = httpx.Client(
            base_url=settings.flaps_base_url,
            headers=headers,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> FlapsClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _machine_path(self, machine_id: str, suffix: str = "") -> str:
        return f"/v1/apps/{self.app_name}/machines/{machine_id}{suffix}"

    @retry(
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send one request, retrying only failures to connect."""
        return self._client.request(method, path, **kwargs)

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._send(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise MachineAPIError(f"{method} {path} failed: {exc}") from exc
        if response.is_error:
            raise MachineAPIError(_error_message(response), status_code=response.status_code)
        if not response.content:
            return None
        return response.json()

    def list_machines(self) -> list[Machine]:
        data = self._request("GET", f"/v1/apps/{self.app_name}/machines")
        return [Machine.from_api(item) for item in data or []]

    def list_active(self) -> list[Machine]:
        """Machines that can take updates: not destroyed and not release commands."""
        return [
            machine
            for machine in self.list_machines()
            if machine.state not in _INACTIVE_STATES and not machine.is_release_command()
        ]

    def acquire_lease(self, machine_id: str, ttl_seconds: int) -> MachineLease:
        data = self._request("POST", self._machine_path(machine_id, "/lease"), json={"ttl": ttl_seconds})
        lease = (data or {}).get("data") or {}
        if not lease.get("nonce"):
            raise MachineAPIError(f"lease response for machine {machine_id} carried no nonce")
        return MachineLease(nonce=lease["nonce"], expires_at=lease.get("expires_at"), owner=lease.get("owner"))

    def release_lease(self, machine_id: str, nonce: str) -> None:
        self._request("DELETE", self._machine_path(machine_id, "/lease"), headers={LEASE_NONCE_HEADER: nonce})

    def update_machine(self, machine_id: str, machine_input: LaunchMachineInput, nonce: str) -> Machine:
        logger.debug("machines.update", machine=machine_id, region=machine_input.region)
        data = self._request(
            "POST",
            self._machine_path(machine_id),
            json=machine_input.to_dict(),
            headers={LEASE_NONCE_HEADER: nonce},
        )
        return Machine.from_api(data)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.text
