"""Tests for cleanup after a failed statics push."""

import threading
from unittest.mock import MagicMock

import pytest
from conftest import TEST_BUCKET, bucket_keys

from fleet_deploy.services.recovery import FailureRecovery

pytestmark = pytest.mark.integration


def test_cleanup_removes_the_version_directory(storage, statics_bucket):
    for key in ("fly-statics/demo/7/0/index.html", "fly-statics/demo/7/1/app.css", "fly-statics/demo/6/0/index.html"):
        statics_bucket.put_object(Bucket=TEST_BUCKET, Key=key, Body=b"x")

    assert FailureRecovery(storage, timeout=5).cleanup("fly-statics/demo/7") is True

    assert bucket_keys(statics_bucket) == {"fly-statics/demo/6/0/index.html"}


def test_cleanup_failure_is_logged_not_raised():
    storage = MagicMock()
    storage.bucket = TEST_BUCKET
    storage.delete_directory.side_effect = RuntimeError("storage unavailable")

    assert FailureRecovery(storage, timeout=1).cleanup("fly-statics/demo/7") is False


def test_cleanup_gives_up_after_timeout():
    release = threading.Event()
    storage = MagicMock()
    storage.bucket = TEST_BUCKET
    storage.delete_directory.side_effect = lambda prefix: release.wait(5)

    try:
        assert FailureRecovery(storage, timeout=0.05).cleanup("fly-statics/demo/7") is False
    finally:
        release.set()


def test_timeout_defaults_to_settings(test_settings):
    recovery = FailureRecovery(MagicMock(), settings=test_settings)

    assert recovery.timeout == test_settings.statics_cleanup_timeout_seconds
