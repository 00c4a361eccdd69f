"""Remote archive store — WebDAV file operations over HTTP Basic auth."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from urllib.parse import unquote
from xml.etree import ElementTree

import requests

from acctctl.config import HTTP_TIMEOUT_SECONDS
from acctctl.core.errors import (
    ArchiveFileNotFound,
    AuthenticationFailure,
    NetworkFailure,
    RemoteArchiveError,
)

logger = logging.getLogger(__name__)

_DAV_NS = "{DAV:}"

_PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8" ?>\n'
    '<D:propfind xmlns:D="DAV:">\n'
    "  <D:prop>\n"
    "    <D:displayname/>\n"
    "    <D:resourcetype/>\n"
    "    <D:getcontenttype/>\n"
    "  </D:prop>\n"
    "</D:propfind>"
)


@dataclass(frozen=True)
class ArchiveCredentials:
    """Where the archive lives and how to log in to it."""

    base_url: str
    username: str
    password: str


class ArchiveStore(ABC):
    """A remote file store holding snapshot files under a path prefix.

    Every call is a single network round trip that either completes or
    raises a ``RemoteArchiveError``; nothing is retried.
    """

    @abstractmethod
    def check_connection(self) -> None:
        """Raise ``RemoteArchiveError`` if the archive is unreachable."""

    def test_connection(self) -> bool:
        """Return True if the archive answers and accepts the credentials."""
        try:
            self.check_connection()
        except RemoteArchiveError as exc:
            logger.warning("Archive connection test failed: %s", exc)
            return False
        return True

    @abstractmethod
    def upload(self, path: str, data: bytes) -> None: ...

    @abstractmethod
    def download(self, path: str) -> bytes: ...

    @abstractmethod
    def list(self, path_prefix: str) -> list[str]: ...

    @abstractmethod
    def delete(self, path: str) -> bool: ...


class WebDavArchiveStore(ArchiveStore):
    """WebDAV implementation backed by a ``requests.Session``."""

    def __init__(self, credentials: ArchiveCredentials) -> None:
        self.credentials = credentials
        self._session = requests.Session()
        self._session.auth = (credentials.username, credentials.password)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        base = self.credentials.base_url.strip().rstrip("/")
        clean = path.strip().lstrip("/")
        return f"{base}/{clean}" if clean else base

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            resp = self._session.request(method, url, timeout=HTTP_TIMEOUT_SECONDS, **kwargs)
        except requests.Timeout as exc:
            raise NetworkFailure(f"Request timed out: {exc}") from exc
        except requests.ConnectionError as exc:
            raise NetworkFailure(f"Connection failed: {exc}") from exc
        except requests.RequestException as exc:
            raise NetworkFailure(str(exc)) from exc

        if resp.status_code in (401, 403):
            raise AuthenticationFailure(resp.status_code, "Credentials rejected by server")
        return resp

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def check_connection(self) -> None:
        resp = self._request("PROPFIND", self._url(""), headers={"Depth": "0"})
        if not resp.ok:
            raise RemoteArchiveError(resp.status_code, f"Connection failed: {resp.reason}")

    def upload(self, path: str, data: bytes) -> None:
        """PUT *data* at *path*, creating the parent collection first if needed."""
        url = self._url(path)
        self._ensure_collection(url.rsplit("/", 1)[0])
        resp = self._request(
            "PUT", url, data=data, headers={"Content-Type": "application/json"}
        )
        if not resp.ok:
            raise RemoteArchiveError(resp.status_code, f"Upload failed: {resp.reason}")
        logger.info("Uploaded %d bytes to %s", len(data), path)

    def download(self, path: str) -> bytes:
        resp = self._request("GET", self._url(path))
        if resp.status_code == 404:
            raise ArchiveFileNotFound(path)
        if not resp.ok:
            raise RemoteArchiveError(resp.status_code, f"Download failed: {resp.reason}")
        return resp.content

    def list(self, path_prefix: str) -> list[str]:
        """Return the names of files directly under *path_prefix*.

        A missing collection yields an empty list.
        """
        url = self._url(path_prefix.strip().strip("/"))
        if not url.endswith("/"):
            url += "/"
        resp = self._request(
            "PROPFIND",
            url,
            data=_PROPFIND_BODY.encode("utf-8"),
            headers={"Depth": "1", "Content-Type": "application/xml"},
        )
        if resp.status_code == 404:
            return []
        if not resp.ok:
            raise RemoteArchiveError(resp.status_code, f"Listing failed: {resp.reason}")
        names = parse_propfind_names(resp.content)
        logger.debug("Listed %d file(s) under %s", len(names), path_prefix)
        return names

    def delete(self, path: str) -> bool:
        """Delete *path*.  Returns False if it did not exist."""
        resp = self._request("DELETE", self._url(path))
        if resp.status_code == 404:
            return False
        if not resp.ok:
            raise RemoteArchiveError(resp.status_code, f"Delete failed: {resp.reason}")
        return True

    def _ensure_collection(self, url: str) -> None:
        # MKCOL answers 405 when the collection already exists
        resp = self._request("MKCOL", url)
        if resp.status_code not in (201, 405):
            logger.debug("MKCOL %s returned %d", url, resp.status_code)


# ------------------------------------------------------------------
# PROPFIND parsing
# ------------------------------------------------------------------

def parse_propfind_names(body: bytes) -> list[str]:
    """Extract file names (not collections) from a multistatus document."""
    try:
        root = ElementTree.fromstring(body)
    except ElementTree.ParseError as exc:
        raise RemoteArchiveError(207, f"Unparseable PROPFIND response: {exc}") from exc

    names: list[str] = []
    for response in root.iter(f"{_DAV_NS}response"):
        href_el = response.find(f"{_DAV_NS}href")
        if href_el is None or not href_el.text:
            continue
        href = unquote(href_el.text.strip())
        if href.endswith("/") or response.find(f".//{_DAV_NS}collection") is not None:
            continue
        name = href.rsplit("/", 1)[-1]
        if name and name not in names:
            names.append(name)
    return names
