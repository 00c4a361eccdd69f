"""Cloudflare API client — token verification and zone discovery."""

import logging
import re
import time
from typing import Any

import requests

from acctctl.config import CLOUDFLARE_API_BASE, HTTP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

# Maximum retries on 429 (rate-limited) responses and dropped connections
_MAX_RETRIES = 5
_BACKOFF_BASE = 1.0  # seconds

_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_\-]{20,}$")


class CloudflareAPIError(Exception):
    """Raised when a Cloudflare API call fails."""

    def __init__(self, status_code: int, errors: list[dict]):
        self.status_code = status_code
        self.errors = errors
        messages = "; ".join(e.get("message", str(e)) for e in errors)
        super().__init__(f"Cloudflare API error ({status_code}): {messages}")


def sanitize_token(raw: str) -> str:
    """Extract a clean API token from pasted input.

    Strips surrounding quotes and a ``Bearer`` prefix.  Raises ``ValueError``
    for a pasted curl command or anything that doesn't look like a token.
    """
    cleaned = raw.strip().strip('"').strip("'").strip()

    if cleaned.lower().startswith("curl "):
        raise ValueError(
            "It looks like you pasted a curl command.\n"
            "Please paste only the API token value."
        )
    if "Bearer " in cleaned:
        cleaned = cleaned[cleaned.rfind("Bearer ") + len("Bearer "):]
    cleaned = cleaned.strip().strip('"').strip("'").strip()

    if not cleaned:
        raise ValueError("Token is empty.")
    if not _TOKEN_PATTERN.match(cleaned):
        raise ValueError(
            "Invalid API token format.\n"
            "A Cloudflare API token is an alphanumeric string (typically 40 characters)."
        )
    return cleaned


class CloudflareClient:
    """Thin wrapper around the parts of the v4 REST API that feed the local store.

    The *token* is passed per call; each account carries its own.
    """

    def __init__(self) -> None:
        self._session = requests.Session()

    def _request(
        self,
        method: str,
        path: str,
        token: str,
        *,
        params: dict | None = None,
    ) -> Any:
        """Execute an API call with exponential backoff on 429 and connection errors."""
        url = f"{CLOUDFLARE_API_BASE}{path}"
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

        for attempt in range(_MAX_RETRIES):
            wait = _BACKOFF_BASE * (2 ** attempt)
            try:
                resp = self._session.request(
                    method, url, headers=headers, params=params, timeout=HTTP_TIMEOUT_SECONDS
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                if attempt < _MAX_RETRIES - 1:
                    logger.warning("Cloudflare request failed, retrying in %.1fs: %s", wait, exc)
                    time.sleep(wait)
                    continue
                raise CloudflareAPIError(0, [{"message": f"Connection failed: {exc}"}]) from exc

            if resp.status_code == 429:
                retry_after = resp.headers.get("Retry-After")
                if retry_after:
                    try:
                        wait = max(wait, float(retry_after))
                    except ValueError:
                        pass
                logger.warning("Rate-limited by Cloudflare, retrying in %.1fs", wait)
                time.sleep(wait)
                continue

            data = resp.json()
            if not data.get("success", False):
                raise CloudflareAPIError(resp.status_code, data.get("errors", []))
            return data

        raise CloudflareAPIError(429, [{"message": "Rate-limit retries exhausted"}])

    def verify_token(self, token: str) -> bool:
        """True if *token* is valid and active."""
        data = self._request("GET", "/user/tokens/verify", token)
        return data.get("result", {}).get("status", "") == "active"

    def list_zones(self, token: str, account_id: str | None = None) -> list[dict]:
        """Return every zone visible to *token*, optionally limited to one account.

        Each dict has ``id``, ``name``, ``status``, ``type`` and ``paused``.
        """
        zones: list[dict] = []
        page = 1
        while True:
            params: dict[str, Any] = {"page": page, "per_page": 50}
            if account_id:
                params["account.id"] = account_id
            data = self._request("GET", "/zones", token, params=params)
            for z in data["result"]:
                zones.append({
                    "id": z["id"],
                    "name": z["name"],
                    "status": z.get("status", "unknown"),
                    "type": z.get("type"),
                    "paused": bool(z.get("paused", False)),
                })
            info = data.get("result_info", {})
            if page >= info.get("total_pages", 1):
                break
            page += 1
        return zones
