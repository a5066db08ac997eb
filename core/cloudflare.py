"""
cloudflare.py -- All Cloudflare API traffic for the reconciler.

Two endpoints are used:
  GET   /zones/{zone_id}/custom_hostnames?page=N&per_page=M   -- paginated listing
  PATCH /zones/{zone_id}/custom_hostnames/{id}                -- per-record ssl update

Unlike a best-effort feed fetcher, failures here are raised, not swallowed:
the reconcile engine decides whether a failure aborts the pass (listing) or
is recorded and skipped (mutation). No retries and no backoff.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from core.models import REMEDIATION_SSL_METHOD, REMEDIATION_SSL_TYPE, TARGET_MIN_TLS_VERSION

logger = logging.getLogger("tlsreconciler.cloudflare")

DEFAULT_API_BASE = "https://api.cloudflare.com/client/v4"


class CloudflareError(Exception):
    """Base class for Cloudflare API failures."""


class RemoteSourceError(CloudflareError):
    """A listing page could not be fetched or was reported as failed."""


class RemoteMutationError(CloudflareError):
    """A per-record update returned a non-success status."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"{status_code} {detail}")
        self.status_code = status_code
        self.detail = detail


@dataclass
class HostnamePage:
    """One page of the custom_hostnames listing.

    records are the raw Cloudflare custom hostname objects; the engine reads
    id, hostname and the ssl block out of them.
    """

    records: list[dict[str, Any]] = field(default_factory=list)
    page: int = 1
    total_pages: int = 0
    total_count: int = 0


class CloudflareClient:
    def __init__(
        self,
        api_token: str,
        zone_id: str,
        base_url: str = DEFAULT_API_BASE,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.zone_id = zone_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        # Known API host; a long redirect chain is never legitimate here.
        self._session.max_redirects = 3
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            }
        )

    def _hostnames_url(self) -> str:
        return f"{self.base_url}/zones/{self.zone_id}/custom_hostnames"

    def list_custom_hostnames(self, page: int, per_page: int) -> HostnamePage:
        """Fetch one page of custom hostnames.

        Raises RemoteSourceError on transport errors, non-2xx statuses, and
        payloads where Cloudflare reports success=false.
        """
        try:
            resp = self._session.get(
                self._hostnames_url(),
                params={"page": page, "per_page": per_page},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RemoteSourceError(f"Cloudflare API request failed: {e}") from e

        if not resp.ok:
            raise RemoteSourceError(f"Cloudflare API error: {resp.status_code} {resp.reason}")

        try:
            data = resp.json()
        except ValueError as e:
            raise RemoteSourceError(f"Cloudflare API returned invalid JSON on page {page}") from e

        if not data.get("success"):
            raise RemoteSourceError(f"Cloudflare API error: {json.dumps(data.get('errors') or [])}")

        info = data.get("result_info") or {}
        records = data.get("result") or []
        logger.debug("Fetched page %d (%d records)", page, len(records))
        return HostnamePage(
            records=records,
            page=int(info.get("page") or page),
            total_pages=int(info.get("total_pages") or 0),
            total_count=int(info.get("total_count") or len(records)),
        )

    def set_min_tls_version(self, record_id: str, version: str = TARGET_MIN_TLS_VERSION) -> None:
        """PATCH one custom hostname's ssl.settings.min_tls_version.

        Raises RemoteMutationError on a non-2xx response. Transport failures
        propagate as requests.RequestException.
        """
        body = {
            "ssl": {
                "method": REMEDIATION_SSL_METHOD,
                "type": REMEDIATION_SSL_TYPE,
                "settings": {"min_tls_version": version},
            }
        }
        resp = self._session.patch(f"{self._hostnames_url()}/{record_id}", json=body, timeout=self.timeout)
        if not resp.ok:
            raise RemoteMutationError(resp.status_code, resp.text)

    def close(self) -> None:
        self._session.close()
