"""
Shared pytest configuration and fixtures for fleet-deploy tests.

This module provides reusable fixtures for:
- Settings with safe defaults
- AWS S3 mocking (moto)
- Local static directory trees
- An in-memory managed-extension API
- Machines API mocking (httpx.MockTransport)
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import boto3
import httpx
import pytest
from moto import mock_aws

from fleet_deploy.core.config import Settings
from fleet_deploy.core.exceptions import ExtensionError
from fleet_deploy.models import AddOn, App, ExtensionParams, Organization, ProvisionedExtension
from fleet_deploy.services.storage.s3_client import BucketStorage

TEST_BUCKET = "demo-statics"


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings object with safe defaults."""
    return Settings(
        api_token="test-token",
        flaps_base_url="https://machines.test",
        statics_cleanup_timeout_seconds=2.0,
        log_level="DEBUG",
    )


# ============================================================================
# AWS/S3 Fixtures
# ============================================================================


@pytest.fixture
def override_s3_settings(monkeypatch):
    """Override AWS credentials so nothing can reach a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def mock_s3_client(override_s3_settings):
    """Mocked S3 client using moto."""
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        yield client


@pytest.fixture
def statics_bucket(mock_s3_client):
    """Mocked S3 client with the statics bucket created."""
    mock_s3_client.create_bucket(Bucket=TEST_BUCKET)
    yield mock_s3_client


@pytest.fixture
def storage(statics_bucket) -> BucketStorage:
    return BucketStorage(statics_bucket, TEST_BUCKET)


def bucket_keys(client, prefix: str = "") -> set[str]:
    """Every key in the statics bucket under ``prefix``."""
    paginator = client.get_paginator("list_objects_v2")
    keys: set[str] = set()
    for page in paginator.paginate(Bucket=TEST_BUCKET, Prefix=prefix):
        keys.update(obj["Key"] for obj in page.get("Contents", []))
    return keys


# ============================================================================
# Local Tree Fixtures
# ============================================================================


@pytest.fixture
def make_tree(tmp_path):
    """Build a directory tree from a ``{relative_path: bytes | str}`` mapping."""

    def _make(name: str, files: dict[str, bytes | str]) -> Path:
        root = tmp_path / name
        root.mkdir(parents=True, exist_ok=True)
        for rel, content in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, str):
                path.write_text(content, encoding="utf-8")
            else:
                path.write_bytes(content)
        return root

    return _make


# ============================================================================
# Identity Fixtures
# ============================================================================


@pytest.fixture
def organization() -> Organization:
    return Organization(id="org_abc", slug="acme", internal_numeric_id="4242")


@pytest.fixture
def app() -> App:
    return App(id="app_123", name="demo", internal_numeric_id=9001, organization_slug="acme")


@pytest.fixture
def storage_secrets() -> dict[str, str]:
    return {
        "AWS_ACCESS_KEY_ID": "tid_FAKEACCESSKEY",
        "AWS_SECRET_ACCESS_KEY": "tsec_FAKESECRETKEY",
        "BUCKET_NAME": TEST_BUCKET,
    }


# ============================================================================
# Managed Extension Fixtures
# ============================================================================


class FakeExtensionsAPI:
    """In-memory managed-extension API that records every call."""

    def __init__(self, organization: Organization, secrets: dict[str, Any]):
        self.organization = organization
        self.secrets = secrets
        self.add_ons: dict[str, AddOn] = {}
        self.calls: list[tuple[str, Any]] = []
        self.taken_names: set[str] = set()
        self.provision_error: ExtensionError | None = None
        self.update_error: Exception | None = None
        self.delete_error: Exception | None = None

    def list_add_ons(self, provider: str) -> list[AddOn]:
        self.calls.append(("list_add_ons", provider))
        return list(self.add_ons.values())

    def get_organization(self, slug: str) -> Organization:
        self.calls.append(("get_organization", slug))
        return self.organization

    def provision_extension(self, params: ExtensionParams) -> ProvisionedExtension:
        self.calls.append(("provision_extension", params.name))
        if self.provision_error is not None:
            raise self.provision_error
        if params.name in self.taken_names:
            raise ExtensionError(f"Name '{params.name}' already exists for app")
        self.add_ons[params.name] = AddOn(
            id=f"addon_{len(self.add_ons) + 1}",
            name=params.name,
            plan_id="plan_free",
            options=dict(params.options),
        )
        return ProvisionedExtension(name=params.name, environment=dict(self.secrets))

    def get_add_on(self, name: str, provider: str) -> AddOn:
        self.calls.append(("get_add_on", name))
        try:
            return self.add_ons[name]
        except KeyError:
            raise ExtensionError(f"add-on {name} not found") from None

    def update_add_on(self, add_on_id: str, plan_id: str, options: dict[str, Any], metadata: dict[str, Any]) -> None:
        self.calls.append(("update_add_on", add_on_id))
        if self.update_error is not None:
            raise self.update_error
        for add_on in self.add_ons.values():
            if add_on.id == add_on_id:
                add_on.metadata = dict(metadata)
                return
        raise ExtensionError(f"add-on {add_on_id} not found")

    def delete_add_on(self, name: str) -> None:
        self.calls.append(("delete_add_on", name))
        if self.delete_error is not None:
            raise self.delete_error
        self.add_ons.pop(name, None)

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def extensions(organization, storage_secrets) -> FakeExtensionsAPI:
    return FakeExtensionsAPI(organization, storage_secrets)


# ============================================================================
# Machines API Fixtures
# ============================================================================


def machine_payload(
    machine_id: str,
    group: str = "app",
    state: str = "started",
    cpu_kind: str = "shared",
    cpus: int = 1,
    memory_mb: int = 256,
) -> dict[str, Any]:
    return {
        "id": machine_id,
        "name": f"machine-{machine_id}",
        "region": "ord",
        "state": state,
        "config": {
            "image": "registry.fly.io/demo:deployment-1",
            "guest": {"cpu_kind": cpu_kind, "cpus": cpus, "memory_mb": memory_mb},
            "metadata": {"fly_process_group": group},
        },
    }


class FlapsRecorder:
    """Records machines API requests and answers them from a route table."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Any] = {}

    def route(self, method: str, path: str, response: Any) -> None:
        """Register a response: an ``httpx.Response``, a JSON payload, or a callable."""
        self.routes[(method, path)] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"error": f"no route for {request.method} {request.url.path}"})
        if callable(response):
            response = response(request)
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self) -> list[tuple[str, str]]:
        return [(request.method, request.url.path) for request in self.requests]

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None


@pytest.fixture
def flaps() -> FlapsRecorder:
    return FlapsRecorder()
