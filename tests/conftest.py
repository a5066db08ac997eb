"""
tests/conftest.py -- Shared test fixtures for the TLS reconciler.

This module provides:
  - make_hostname(): builds a raw Cloudflare custom hostname dict
  - FakeCloudflare: in-process stand-in for the Cloudflare client that pages
    a fixed record list and records every call it receives
  - store: in-memory SnapshotStore with the schema created
  - make_api_client: factory yielding a TestClient wired to an isolated store
    and a FakeCloudflare, with chosen enable switches

Design: the API fixtures use named shared-memory SQLite URIs (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

DEBUG must be set before any core import so get_settings() tolerates missing
Cloudflare credentials instead of raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import Optional

# CRITICAL: Set DEBUG before any core import.
os.environ.setdefault("DEBUG", "true")

import pytest
import requests
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from core.cloudflare import HostnamePage, RemoteMutationError, RemoteSourceError
from core.reconcile import ReconcileEngine
from snapshot.store import SnapshotStore

# Trigger routes are rate limited; tests hit them far faster than any cron.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Fake remote source
# ---------------------------------------------------------------------------


def make_hostname(
    record_id: str,
    hostname: Optional[str] = None,
    min_tls_version: Optional[str] = "1.2",
    status: str = "active",
) -> dict:
    """Build a raw custom hostname as Cloudflare returns it.

    min_tls_version=None omits the ssl.settings block entirely.
    """
    ssl: dict = {"status": status, "method": "http", "type": "dv"}
    if min_tls_version is not None:
        ssl["settings"] = {"min_tls_version": min_tls_version}
    return {"id": record_id, "hostname": hostname or f"{record_id}.example.com", "ssl": ssl}


class FakeCloudflare:
    """Pages a fixed record list like the custom_hostnames endpoint.

    fail_on_page       -- raise RemoteSourceError when this page is requested
    reject_ids         -- PATCH returns a 4xx for these ids
    unreachable_ids    -- PATCH raises a transport error for these ids
    """

    def __init__(
        self,
        records: list[dict],
        fail_on_page: Optional[int] = None,
        reject_ids: Optional[set[str]] = None,
        unreachable_ids: Optional[set[str]] = None,
    ) -> None:
        self.records = records
        self.fail_on_page = fail_on_page
        self.reject_ids = reject_ids or set()
        self.unreachable_ids = unreachable_ids or set()
        self.page_requests: list[int] = []
        self.patched: list[tuple[str, str]] = []
        self.closed = False

    def list_custom_hostnames(self, page: int, per_page: int) -> HostnamePage:
        self.page_requests.append(page)
        if page == self.fail_on_page:
            raise RemoteSourceError("Cloudflare API error: 500 Internal Server Error")
        total_pages = -(-len(self.records) // per_page)
        start = (page - 1) * per_page
        return HostnamePage(
            records=self.records[start : start + per_page],
            page=page,
            total_pages=total_pages,
            total_count=len(self.records),
        )

    def set_min_tls_version(self, record_id: str, version: str = "1.2") -> None:
        if record_id in self.unreachable_ids:
            raise requests.ConnectionError("connection reset by peer")
        if record_id in self.reject_ids:
            raise RemoteMutationError(400, '{"success":false,"errors":[{"code":1406}]}')
        self.patched.append((record_id, version))
        for raw in self.records:
            if raw["id"] == record_id:
                raw["ssl"].setdefault("settings", {})["min_tls_version"] = version

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[SnapshotStore, None, None]:
    s = SnapshotStore("sqlite:///:memory:")
    s.ensure_schema()
    yield s
    s.close()


def _shared_memory_store() -> SnapshotStore:
    return SnapshotStore(f"sqlite:///file:test_snapshot_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(engine: ReconcileEngine):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine and its store into app.state so routes never build
    a real Cloudflare client or touch the default database file.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = engine.store
        app.state.engine = engine
        yield

    return test_lifespan


@pytest.fixture
def make_api_client():
    """Yield a factory: (source, export_enabled, update_enabled, init_schema) -> (client, engine).

    Every call gets its own shared-memory database. Clients are closed and
    stores disposed at teardown.
    """
    opened: list[tuple[TestClient, SnapshotStore]] = []

    def _make(
        source: FakeCloudflare,
        export_enabled: bool = True,
        update_enabled: bool = True,
        init_schema: bool = True,
    ) -> tuple[TestClient, ReconcileEngine]:
        s = _shared_memory_store()
        if init_schema:
            s.ensure_schema()
        engine = ReconcileEngine(source, s, sync_enabled=export_enabled, remediation_enabled=update_enabled)
        app.router.lifespan_context = _patch_lifespan(engine)
        client = TestClient(app, raise_server_exceptions=False)
        client.__enter__()
        opened.append((client, s))
        return client, engine

    yield _make

    for client, s in opened:
        client.__exit__(None, None, None)
        s.close()
