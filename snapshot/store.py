"""
snapshot/store.py -- SQLAlchemy-backed Snapshot Store for custom hostnames.

Uses SQLAlchemy Core (not ORM) so HostnameRecord in snapshot/models.py
remains the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. SnapshotStore is the repository;
_row_to_record is the mapper. The reconcile engine and route handlers never
touch SQL directly.

The needs_update column is the only coupling between Snapshot Sync and the
Remediation Pass: sync writes it, remediation reads and clears it. Tests may
seed rows directly with upsert() to exercise remediation without a sync.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = SnapshotStore()                               # SQLite default
    store = SnapshotStore("postgresql://user:pw@host/db") # PostgreSQL
    store.ensure_schema()
    store.upsert(record)
    pending = store.list_non_compliant(100)
    store.mark_compliant(record.id, now)
    store.close()
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from core.config import get_settings
from core.models import TARGET_MIN_TLS_VERSION
from snapshot.models import HostnameRecord

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_hostnames = Table(
    "custom_hostnames",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("hostname", String(255), nullable=False),
    Column("ssl_status", String(64)),
    Column("ssl_method", String(32)),
    Column("ssl_type", String(32)),
    Column("min_tls_version", String(16)),
    Column("needs_update", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
    Column("last_updated", String(32)),
    Column("created_at", String(32), nullable=False),
)

Index("idx_needs_update", _hostnames.c.needs_update)
Index("idx_hostname", _hostnames.c.hostname)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_record(row) -> HostnameRecord:
    return HostnameRecord(
        id=row.id,
        hostname=row.hostname,
        min_tls_version=row.min_tls_version,
        needs_update=bool(row.needs_update),
        ssl_status=row.ssl_status,
        ssl_method=row.ssl_method,
        ssl_type=row.ssl_type,
        last_updated=row.last_updated or "",
        created_at=row.created_at,
    )


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so a sync and a remediation pass can overlap.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SnapshotStore:
    def __init__(self, db_url: Optional[str] = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # The API runs sync handlers in a thread pool; one store instance
            # is shared across those threads.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)

    def ensure_schema(self) -> None:
        """Create the custom_hostnames table and its indexes if missing.

        create_all() checks for existence first, so this is safe to call on an
        already-initialized database.
        """
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, record: HostnameRecord) -> None:
        """Insert a record, or replace every mutable field of the existing row.

        created_at is preserved across replaces: it is set once, on first
        insert, and never rewritten. Calling this repeatedly with the same
        record leaves the row unchanged apart from last_updated.
        """
        values = {
            "hostname": record.hostname,
            "ssl_status": record.ssl_status,
            "ssl_method": record.ssl_method,
            "ssl_type": record.ssl_type,
            "min_tls_version": record.min_tls_version,
            "needs_update": 1 if record.needs_update else 0,
            "last_updated": record.last_updated or _now_iso(),
        }
        with self.engine.begin() as conn:
            existing = conn.execute(select(_hostnames.c.id).where(_hostnames.c.id == record.id)).first()
            if existing is None:
                conn.execute(
                    _hostnames.insert().values(
                        id=record.id,
                        created_at=record.created_at or values["last_updated"],
                        **values,
                    )
                )
            else:
                conn.execute(_hostnames.update().where(_hostnames.c.id == record.id).values(**values))

    def mark_compliant(self, record_id: str, timestamp: Optional[str] = None) -> bool:
        """Record a successful remediation: TLS 1.2, flag cleared.

        Returns False when no row has this id (nothing is written); the caller
        decides whether that is worth logging.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _hostnames.update()
                .where(_hostnames.c.id == record_id)
                .values(
                    min_tls_version=TARGET_MIN_TLS_VERSION,
                    needs_update=0,
                    last_updated=timestamp or _now_iso(),
                )
            )
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_non_compliant(self, limit: int) -> list[HostnameRecord]:
        """Return up to limit flagged records in primary-key order."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_hostnames).where(_hostnames.c.needs_update == 1).order_by(_hostnames.c.id).limit(limit)
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def get(self, record_id: str) -> Optional[HostnameRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(select(_hostnames).where(_hostnames.c.id == record_id)).first()
        return _row_to_record(row) if row else None

    def find_by_hostname(self, hostname: str) -> list[HostnameRecord]:
        """All records for a hostname. Usually one; more when Cloudflare holds duplicates."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_hostnames).where(_hostnames.c.hostname == hostname).order_by(_hostnames.c.id)
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_hostnames)).scalar_one()

    def count_non_compliant(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(
                select(func.count()).select_from(_hostnames).where(_hostnames.c.needs_update == 1)
            ).scalar_one()

    def close(self) -> None:
        self.engine.dispose()
