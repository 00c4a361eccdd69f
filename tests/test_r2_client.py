"""Tests for core.r2_client — S3 calls against a mocked boto3 client."""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from acctctl.core.errors import (
    ArchiveFileNotFound,
    AuthenticationFailure,
    NetworkFailure,
    RemoteArchiveError,
)
from acctctl.core.r2_client import R2ArchiveStore, R2Credentials

CREDS = R2Credentials(
    account_id="acc-1", access_key_id="ak", secret_access_key="sk", bucket_name="backups"
)


def _client_error(code, status, operation="GetObject"):
    return ClientError(
        {"Error": {"Code": code, "Message": f"{code} message"}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


@pytest.fixture
def s3():
    with patch("acctctl.core.r2_client.boto3.client") as mock_client_fn:
        mock_s3 = MagicMock()
        mock_client_fn.return_value = mock_s3
        mock_s3.client_fn = mock_client_fn
        yield mock_s3


class TestR2ArchiveStore:
    def test_client_targets_account_endpoint(self, s3):
        R2ArchiveStore(CREDS)
        args, kwargs = s3.client_fn.call_args
        assert args == ("s3",)
        assert kwargs["endpoint_url"] == "https://acc-1.r2.cloudflarestorage.com"
        assert kwargs["aws_access_key_id"] == "ak"
        assert kwargs["aws_secret_access_key"] == "sk"
        assert kwargs["region_name"] == "auto"

    def test_upload_strips_leading_slash(self, s3):
        store = R2ArchiveStore(CREDS)
        store.upload("/CloudFlareAssistant/b.json", b"{}")
        s3.put_object.assert_called_once_with(
            Bucket="backups", Key="CloudFlareAssistant/b.json", Body=b"{}", ContentType="application/json"
        )

    def test_download_returns_bytes(self, s3):
        s3.get_object.return_value = {"Body": MagicMock(read=MagicMock(return_value=b'{"version": "1.1"}'))}
        store = R2ArchiveStore(CREDS)
        assert store.download("p/b.json") == b'{"version": "1.1"}'
        s3.get_object.assert_called_once_with(Bucket="backups", Key="p/b.json")

    def test_download_missing_raises_not_found(self, s3):
        s3.get_object.side_effect = _client_error("NoSuchKey", 404)
        store = R2ArchiveStore(CREDS)
        with pytest.raises(ArchiveFileNotFound) as exc_info:
            store.download("p/missing.json")
        assert exc_info.value.path == "p/missing.json"

    def test_auth_rejection(self, s3):
        s3.get_object.side_effect = _client_error("SignatureDoesNotMatch", 403)
        store = R2ArchiveStore(CREDS)
        with pytest.raises(AuthenticationFailure, match="403"):
            store.download("p/b.json")

    def test_other_client_error(self, s3):
        s3.put_object.side_effect = _client_error("InternalError", 500, "PutObject")
        store = R2ArchiveStore(CREDS)
        with pytest.raises(RemoteArchiveError, match="500") as exc_info:
            store.upload("p/b.json", b"{}")
        assert not isinstance(exc_info.value, (ArchiveFileNotFound, AuthenticationFailure))

    def test_endpoint_error_is_network_failure(self, s3):
        s3.get_object.side_effect = EndpointConnectionError(endpoint_url="https://acc-1.r2.cloudflarestorage.com")
        store = R2ArchiveStore(CREDS)
        with pytest.raises(NetworkFailure):
            store.download("p/b.json")

    def test_list_returns_direct_children(self, s3):
        paginator = s3.get_paginator.return_value
        paginator.paginate.return_value = [
            {"Contents": [
                {"Key": "CloudFlareAssistant/"},
                {"Key": "CloudFlareAssistant/cloudflare_backup_20260101_101010.json"},
            ]},
            {"Contents": [{"Key": "CloudFlareAssistant/notes.txt"}]},
            {},
        ]
        store = R2ArchiveStore(CREDS)

        names = store.list("CloudFlareAssistant")

        assert names == ["cloudflare_backup_20260101_101010.json", "notes.txt"]
        s3.get_paginator.assert_called_once_with("list_objects_v2")
        paginator.paginate.assert_called_once_with(
            Bucket="backups", Prefix="CloudFlareAssistant/", Delimiter="/"
        )

    def test_list_bucket_root(self, s3):
        s3.get_paginator.return_value.paginate.return_value = [{"Contents": [{"Key": "a.json"}]}]
        store = R2ArchiveStore(CREDS)
        assert store.list("") == ["a.json"]
        assert s3.get_paginator.return_value.paginate.call_args.kwargs["Prefix"] == ""

    def test_list_missing_bucket_is_not_a_file_error(self, s3):
        s3.get_paginator.return_value.paginate.side_effect = _client_error("NoSuchBucket", 404, "ListObjectsV2")
        store = R2ArchiveStore(CREDS)
        with pytest.raises(RemoteArchiveError) as exc_info:
            store.list("p/")
        assert not isinstance(exc_info.value, ArchiveFileNotFound)

    def test_delete(self, s3):
        store = R2ArchiveStore(CREDS)
        assert store.delete("p/b.json") is True
        s3.delete_object.assert_called_once_with(Bucket="backups", Key="p/b.json")

    def test_delete_missing_returns_false(self, s3):
        s3.head_object.side_effect = _client_error("404", 404, "HeadObject")
        store = R2ArchiveStore(CREDS)
        assert store.delete("p/b.json") is False
        s3.delete_object.assert_not_called()

    def test_connection_ok(self, s3):
        store = R2ArchiveStore(CREDS)
        assert store.test_connection() is True
        s3.head_bucket.assert_called_once_with(Bucket="backups")

    def test_connection_failure_returns_false(self, s3):
        s3.head_bucket.side_effect = _client_error("403", 403, "HeadBucket")
        store = R2ArchiveStore(CREDS)
        assert store.test_connection() is False
