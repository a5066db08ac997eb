"""
core/reconcile.py -- The two-phase TLS reconcile engine.

Snapshot Sync pages through every Cloudflare custom hostname and upserts it
into the Snapshot Store with a derived needs_update flag. The Remediation
Pass reads a bounded batch of flagged rows, PATCHes each one to TLS 1.2, and
clears the flag locally on success.

The passes never call each other. The needs_update column is their only
point of contact, so remediation is only as accurate as the most recent
sync. There is no locking between them: if both run at once, last write wins.

Both passes are strictly sequential -- one page, then one record at a time.
No side effects beyond the remote calls, the store writes, and logging.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import requests
from sqlalchemy.exc import SQLAlchemyError

from core.cloudflare import CloudflareClient, CloudflareError, HostnamePage, RemoteMutationError
from core.config import Settings
from core.models import (
    REMEDIATION_BATCH_SIZE,
    SYNC_PAGE_SIZE,
    TARGET_MIN_TLS_VERSION,
    UNKNOWN_TLS_VERSION,
    RemediationResult,
    SyncResult,
)
from snapshot.models import HostnameRecord

logger = logging.getLogger("tlsreconciler.reconcile")


class SyncError(Exception):
    """A snapshot sync was aborted. Rows written before the failing page remain."""

    def __init__(self, message: str, page: int) -> None:
        super().__init__(message)
        self.page = page


class HostnameSource(Protocol):
    def list_custom_hostnames(self, page: int, per_page: int) -> HostnamePage: ...

    def set_min_tls_version(self, record_id: str, version: str = ...) -> None: ...

    def close(self) -> None: ...


class RecordStore(Protocol):
    def ensure_schema(self) -> None: ...

    def upsert(self, record: HostnameRecord) -> None: ...

    def mark_compliant(self, record_id: str, timestamp: Optional[str] = None) -> bool: ...

    def list_non_compliant(self, limit: int) -> list[HostnameRecord]: ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Compliance derivation
# ---------------------------------------------------------------------------


def compliance_for(raw: dict[str, Any]) -> tuple[str, bool]:
    """Return (min_tls_version, needs_update) for a raw Cloudflare hostname.

    A missing ssl block, settings block, or empty version all map to
    "unknown", which is non-compliant. Only an exact "1.2" passes; "1.3"
    is flagged too, since the policy pins the minimum rather than a floor.
    """
    settings = (raw.get("ssl") or {}).get("settings") or {}
    version = settings.get("min_tls_version") or UNKNOWN_TLS_VERSION
    return version, version != TARGET_MIN_TLS_VERSION


def record_from_remote(raw: dict[str, Any], now: str) -> HostnameRecord:
    ssl = raw.get("ssl") or {}
    version, needs_update = compliance_for(raw)
    return HostnameRecord(
        id=raw["id"],
        hostname=raw["hostname"],
        min_tls_version=version,
        needs_update=needs_update,
        ssl_status=ssl.get("status"),
        ssl_method=ssl.get("method"),
        ssl_type=ssl.get("type"),
        last_updated=now,
    )


# ---------------------------------------------------------------------------
# Snapshot Sync
# ---------------------------------------------------------------------------


def run_snapshot_sync(source: HostnameSource, store: RecordStore, page_size: int = SYNC_PAGE_SIZE) -> SyncResult:
    """Re-scan every remote hostname into the store.

    Stops once the page just consumed is >= total_pages, so N pages cost
    exactly N requests (and a zone with no hostnames costs one).

    Raises SyncError on the first failing page. Not transactional across
    pages: earlier pages stay written, and the next sync overwrites them.
    """
    result = SyncResult()
    page = 1

    while True:
        try:
            batch = source.list_custom_hostnames(page=page, per_page=page_size)
        except (CloudflareError, requests.RequestException) as e:
            logger.error("Snapshot sync aborted on page %d: %s", page, e)
            raise SyncError(str(e), page=page) from e
        result.pages_fetched += 1

        for raw in batch.records:
            try:
                record = record_from_remote(raw, _now_iso())
            except KeyError as e:
                raise SyncError(f"Malformed custom hostname on page {page}: missing {e}", page=page) from e
            try:
                store.upsert(record)
            except SQLAlchemyError as e:
                logger.error("Snapshot sync aborted on page %d: store write failed for %s: %s", page, record.id, e)
                raise SyncError(f"Store write failed on page {page} for {record.hostname}: {e}", page=page) from e
            result.total_inserted += 1

        result.total_processed += len(batch.records)
        logger.info(
            "Synced page %d/%d (%d records, %d so far)",
            page,
            batch.total_pages,
            len(batch.records),
            result.total_processed,
        )

        if page >= batch.total_pages:
            break
        page += 1

    result.timestamp = _now_iso()
    return result


# ---------------------------------------------------------------------------
# Remediation Pass
# ---------------------------------------------------------------------------


def run_remediation_pass(
    source: HostnameSource, store: RecordStore, batch_size: int = REMEDIATION_BATCH_SIZE
) -> RemediationResult:
    """Move up to batch_size flagged hostnames to TLS 1.2.

    Per-record failures are collected in result.errors and never abort the
    pass; a failed record keeps its flag and is picked up again next time.
    Only a failure to read the batch from the store propagates.
    """
    result = RemediationResult()
    pending = store.list_non_compliant(batch_size)

    for record in pending:
        result.attempted += 1
        try:
            source.set_min_tls_version(record.id, TARGET_MIN_TLS_VERSION)
        except RemoteMutationError as e:
            logger.warning("TLS update failed for %s (%s): %s", record.hostname, record.id, e)
            result.errors.append(f"{record.hostname}: {e.status_code} {e.detail}")
            continue
        except (CloudflareError, requests.RequestException) as e:
            logger.warning("TLS update failed for %s (%s): %s", record.hostname, record.id, e)
            result.errors.append(f"{record.hostname}: {e}")
            continue

        try:
            marked = store.mark_compliant(record.id, _now_iso())
        except SQLAlchemyError as e:
            # Remote side is updated but the flag stays set; the next pass re-applies it.
            logger.warning("Local update failed for %s (%s): %s", record.hostname, record.id, e)
            result.errors.append(f"{record.hostname}: {e}")
            continue
        if not marked:
            # Remote side is already updated; the row vanished locally.
            logger.warning("Record %s (%s) not found when marking compliant", record.id, record.hostname)
        result.updated += 1

    if pending:
        logger.info("Remediation pass: %d updated, %d failed", result.updated, len(result.errors))
    else:
        logger.info("Remediation pass: no hostnames need TLS version update")
    result.timestamp = _now_iso()
    return result


# ---------------------------------------------------------------------------
# Engine facade
# ---------------------------------------------------------------------------


class ReconcileEngine:
    """The three operations exposed to the HTTP and CLI boundaries.

    sync_enabled / remediation_enabled are fixed at construction time. The
    engine reports them but never consults them; gating is the caller's job.
    """

    def __init__(
        self,
        source: HostnameSource,
        store: RecordStore,
        sync_enabled: bool = False,
        remediation_enabled: bool = False,
        page_size: int = SYNC_PAGE_SIZE,
        batch_size: int = REMEDIATION_BATCH_SIZE,
    ) -> None:
        self.source = source
        self.store = store
        self.sync_enabled = sync_enabled
        self.remediation_enabled = remediation_enabled
        self.page_size = page_size
        self.batch_size = batch_size

    @classmethod
    def from_settings(cls, settings: Settings, store: RecordStore) -> "ReconcileEngine":
        client = CloudflareClient(
            api_token=settings.cf_api_token,
            zone_id=settings.zone_id,
            base_url=settings.cf_api_base,
            timeout=settings.cf_timeout,
        )
        return cls(
            client,
            store,
            sync_enabled=settings.enable_export,
            remediation_enabled=settings.enable_update,
        )

    def init_schema(self) -> None:
        self.store.ensure_schema()

    def run_snapshot_sync(self) -> SyncResult:
        return run_snapshot_sync(self.source, self.store, page_size=self.page_size)

    def run_remediation_pass(self) -> RemediationResult:
        return run_remediation_pass(self.source, self.store, batch_size=self.batch_size)
