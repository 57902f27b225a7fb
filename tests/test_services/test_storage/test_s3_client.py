"""Unit tests for the BucketStorage wrapper and the tokenized client factory."""

from types import SimpleNamespace
from unittest.mock import MagicMock, Mock

import pytest
from botocore.config import Config

from fleet_deploy.core.config import Settings
from fleet_deploy.core.exceptions import StorageError
from fleet_deploy.services.storage import BucketStorage, build_tokenized_s3_client, normalize_prefix
from fleet_deploy.services.storage.s3_client import (
    PROXY_AUTHORIZATION_HEADER,
    PROXY_TOKENIZER_HEADER,
    _proxy_header_hook,
)


@pytest.fixture
def mock_boto3_client():
    """Create a mock boto3 S3 client."""
    client = MagicMock()
    client.delete_objects.return_value = {}
    return client


@pytest.fixture
def bucket_storage(mock_boto3_client):
    return BucketStorage(mock_boto3_client, "demo-statics")


class TestNormalizePrefix:
    def test_adds_trailing_slash(self):
        assert normalize_prefix("fly-statics/demo/3") == "fly-statics/demo/3/"

    def test_keeps_single_trailing_slash(self):
        assert normalize_prefix("fly-statics/demo/3/") == "fly-statics/demo/3/"

    def test_converts_backslashes(self):
        assert normalize_prefix("fly-statics\\demo\\3") == "fly-statics/demo/3/"


class TestBucketStorage:
    def test_put_object_sets_content_type(self, bucket_storage, mock_boto3_client):
        bucket_storage.put_object("a/b.css", b"body{}", "text/css")

        mock_boto3_client.put_object.assert_called_once_with(
            Bucket="demo-statics", Key="a/b.css", Body=b"body{}", ContentType="text/css"
        )

    def test_list_keys_follows_pages(self, bucket_storage, mock_boto3_client):
        paginator = Mock()
        paginator.paginate.return_value = [
            {"Contents": [{"Key": "p/1"}, {"Key": "p/2"}]},
            {"Contents": [{"Key": "p/3"}]},
            {},
        ]
        mock_boto3_client.get_paginator.return_value = paginator

        assert bucket_storage.list_keys("p/") == ["p/1", "p/2", "p/3"]
        paginator.paginate.assert_called_once_with(Bucket="demo-statics", Prefix="p/")

    def test_list_common_prefixes_reads_one_page(self, bucket_storage, mock_boto3_client):
        mock_boto3_client.list_objects_v2.return_value = {
            "CommonPrefixes": [{"Prefix": "fly-statics/demo/1/"}, {"Prefix": "fly-statics/demo/2/"}],
            "IsTruncated": True,
        }

        prefixes = bucket_storage.list_common_prefixes("fly-statics/demo/")

        assert prefixes == ["fly-statics/demo/1/", "fly-statics/demo/2/"]
        mock_boto3_client.list_objects_v2.assert_called_once_with(
            Bucket="demo-statics", Prefix="fly-statics/demo/", Delimiter="/"
        )

    def test_delete_keys_batches_by_thousand(self, bucket_storage, mock_boto3_client):
        keys = [f"k/{i}" for i in range(2500)]

        bucket_storage.delete_keys(keys)

        batches = [call.kwargs["Delete"]["Objects"] for call in mock_boto3_client.delete_objects.call_args_list]
        assert [len(batch) for batch in batches] == [1000, 1000, 500]
        assert batches[2][-1] == {"Key": "k/2499"}

    def test_delete_keys_with_nothing_to_delete(self, bucket_storage, mock_boto3_client):
        bucket_storage.delete_keys([])

        mock_boto3_client.delete_objects.assert_not_called()

    def test_delete_keys_reports_partial_failures(self, bucket_storage, mock_boto3_client):
        mock_boto3_client.delete_objects.return_value = {
            "Errors": [{"Key": "k/1", "Code": "AccessDenied", "Message": "Access Denied"}]
        }

        with pytest.raises(StorageError, match="k/1: Access Denied"):
            bucket_storage.delete_keys(["k/1"])

    def test_delete_directory_against_moto(self, storage, statics_bucket):
        for key in ("site/a.txt", "site/b/c.txt", "site-other/a.txt"):
            statics_bucket.put_object(Bucket="demo-statics", Key=key, Body=b"x")

        assert storage.delete_directory("site") == 2

        remaining = statics_bucket.list_objects_v2(Bucket="demo-statics")["Contents"]
        assert [obj["Key"] for obj in remaining] == ["site-other/a.txt"]


class TestTokenizedClient:
    def test_client_targets_storage_through_proxy(self, override_s3_settings):
        settings = Settings(storage_hostname="storage.example.test", tokenizer_url="https://tokenizer.example.test")

        client = build_tokenized_s3_client(settings, "sealed-value", "Bearer user-token")

        assert client.meta.endpoint_url == "http://storage.example.test"
        assert client.meta.region_name == "auto"
        assert isinstance(client.meta.config, Config)
        assert client.meta.config.proxies == {
            "http": "https://tokenizer.example.test",
            "https": "https://tokenizer.example.test",
        }
        assert client.meta.config.s3["addressing_style"] == "virtual"

    def test_client_bounds_each_request(self, override_s3_settings):
        settings = Settings(storage_connect_timeout_seconds=2.0, storage_read_timeout_seconds=10.0)

        client = build_tokenized_s3_client(settings, "sealed-value")

        assert client.meta.config.connect_timeout == 2.0
        assert client.meta.config.read_timeout == 10.0

    def test_proxy_hook_adds_sealed_credential(self):
        request = SimpleNamespace(headers={})

        _proxy_header_hook("sealed-value", "Bearer user-token")(request=request)

        assert request.headers[PROXY_TOKENIZER_HEADER] == "sealed-value"
        assert request.headers[PROXY_AUTHORIZATION_HEADER] == "Bearer user-token"

    def test_proxy_hook_without_user_auth(self):
        request = SimpleNamespace(headers={})

        _proxy_header_hook("sealed-value", None)(request=request)

        assert request.headers == {PROXY_TOKENIZER_HEADER: "sealed-value"}
