"""Remote archive store — Cloudflare R2 buckets through the S3 API."""

import logging
from dataclasses import dataclass

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from acctctl.config import HTTP_TIMEOUT_SECONDS, R2_ENDPOINT_TEMPLATE, R2_REGION
from acctctl.core.errors import (
    ArchiveFileNotFound,
    AuthenticationFailure,
    NetworkFailure,
    RemoteArchiveError,
)
from acctctl.core.webdav_client import ArchiveStore

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_AUTH_CODES = {"401", "403", "AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"}


@dataclass(frozen=True)
class R2Credentials:
    """Account, key pair and bucket that together address one R2 archive."""

    account_id: str
    access_key_id: str
    secret_access_key: str
    bucket_name: str

    @property
    def endpoint(self) -> str:
        return R2_ENDPOINT_TEMPLATE.format(account_id=self.account_id)


class R2ArchiveStore(ArchiveStore):
    """S3-compatible implementation backed by a ``boto3`` client."""

    def __init__(self, credentials: R2Credentials) -> None:
        self.credentials = credentials
        self._bucket = credentials.bucket_name
        self._s3 = boto3.client(
            "s3",
            endpoint_url=credentials.endpoint,
            aws_access_key_id=credentials.access_key_id,
            aws_secret_access_key=credentials.secret_access_key,
            region_name=R2_REGION,
            config=BotoConfig(
                connect_timeout=HTTP_TIMEOUT_SECONDS,
                read_timeout=HTTP_TIMEOUT_SECONDS,
                retries={"max_attempts": 1},
            ),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _key(path: str) -> str:
        return path.strip().lstrip("/")

    def _call(self, operation: str, path: str = "", **kwargs):
        """Invoke an S3 operation, translating botocore failures."""
        try:
            return getattr(self._s3, operation)(Bucket=self._bucket, **kwargs)
        except ClientError as exc:
            raise _translate(exc, operation, path) from exc
        except BotoCoreError as exc:
            raise NetworkFailure(f"{operation} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def check_connection(self) -> None:
        self._call("head_bucket")

    def upload(self, path: str, data: bytes) -> None:
        key = self._key(path)
        self._call("put_object", path, Key=key, Body=data, ContentType="application/json")
        logger.info("Uploaded %d bytes to r2://%s/%s", len(data), self._bucket, key)

    def download(self, path: str) -> bytes:
        resp = self._call("get_object", path, Key=self._key(path))
        try:
            return resp["Body"].read()
        except BotoCoreError as exc:
            raise NetworkFailure(f"Reading {path} failed: {exc}") from exc

    def list(self, path_prefix: str) -> list[str]:
        """Return the names of objects directly under *path_prefix*."""
        prefix = self._key(path_prefix)
        if prefix and not prefix.endswith("/"):
            prefix += "/"
        paginator = self._s3.get_paginator("list_objects_v2")
        names: list[str] = []
        try:
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix, Delimiter="/"):
                for obj in page.get("Contents", []):
                    key = obj["Key"]
                    if key.endswith("/"):
                        continue
                    name = key.rsplit("/", 1)[-1]
                    if name not in names:
                        names.append(name)
        except ClientError as exc:
            raise _translate(exc, "list_objects_v2", "") from exc
        except BotoCoreError as exc:
            raise NetworkFailure(f"list_objects_v2 failed: {exc}") from exc
        logger.debug("Listed %d object(s) under %s", len(names), prefix or "/")
        return names

    def delete(self, path: str) -> bool:
        """Delete *path*.  Returns False if it did not exist."""
        key = self._key(path)
        try:
            self._call("head_object", path, Key=key)
        except ArchiveFileNotFound:
            return False
        self._call("delete_object", path, Key=key)
        return True


def _translate(exc: ClientError, operation: str, path: str) -> RemoteArchiveError:
    error = exc.response.get("Error", {})
    code = str(error.get("Code", ""))
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
    message = error.get("Message") or code or str(exc)
    if path and (code in _NOT_FOUND_CODES or status == 404):
        return ArchiveFileNotFound(path)
    if code in _AUTH_CODES or status in (401, 403):
        return AuthenticationFailure(status or 403, f"{operation}: {message}")
    return RemoteArchiveError(status, f"{operation}: {message}")
