"""Tests for main.py -- the command-line boundary.

Settings and the engine factory are patched so no real Cloudflare client
is used; the store is a SQLite file under tmp_path so state survives across
separate CLI invocations, as it would in production.
"""

import json

import pytest
from conftest import FakeCloudflare, make_hostname

import main
from core.config import Settings
from core.reconcile import ReconcileEngine


@pytest.fixture
def cli(monkeypatch, tmp_path):
    """Return (run, source): run(argv, **switches) invokes the CLI against a FakeCloudflare."""
    source = FakeCloudflare([make_hostname(f"id-{i:02d}", min_tls_version="1.1" if i < 3 else "1.2") for i in range(8)])
    db_url = f"sqlite:///{tmp_path / 'snapshot.db'}"

    def _run(argv, export=True, update=True):
        settings = Settings(debug=True, database_url=db_url, enable_export=export, enable_update=update)
        monkeypatch.setattr(main, "get_settings", lambda: settings)
        monkeypatch.setattr(
            main.ReconcileEngine,
            "from_settings",
            classmethod(
                lambda cls, s, store: ReconcileEngine(
                    source, store, sync_enabled=s.enable_export, remediation_enabled=s.enable_update
                )
            ),
        )
        return main.run(argv)

    return _run, source


class TestCli:
    def test_full_cycle(self, cli, capsys):
        run, source = cli
        assert run(["init"]) == 0
        assert "Database initialized" in capsys.readouterr().out
        assert run(["export", "--json"]) == 0
        exported = json.loads(capsys.readouterr().out)
        assert exported["total_processed"] == 8

        assert run(["update-tls", "--json"]) == 0
        updated = json.loads(capsys.readouterr().out)
        assert updated["updated"] == 3
        assert "errors" not in updated

        assert run(["status", "--json"]) == 0
        status = json.loads(capsys.readouterr().out)
        assert status["total_records"] == 8
        assert status["pending_updates"] == 0
        assert source.closed is True

    def test_disabled_export_exits_2(self, cli, capsys):
        run, source = cli
        run(["init"])
        assert run(["export"], export=False) == 2
        assert "ENABLE_EXPORT" in capsys.readouterr().err
        assert source.page_requests == []

    def test_disabled_update_exits_2(self, cli, capsys):
        run, source = cli
        run(["init"])
        assert run(["update-tls"], update=False) == 2
        assert "ENABLE_UPDATE" in capsys.readouterr().err

    def test_sync_failure_exits_1(self, cli, capsys):
        run, source = cli
        run(["init"])
        source.fail_on_page = 1
        assert run(["export"]) == 1
        assert "aborted on page 1" in capsys.readouterr().err

    def test_errors_printed_in_text_mode(self, cli, capsys):
        run, source = cli
        run(["init"])
        run(["export"])
        source.reject_ids = {"id-00"}
        capsys.readouterr()
        assert run(["update-tls"]) == 0
        out = capsys.readouterr().out
        assert "updated: 2" in out
        assert "id-00.example.com: 400" in out

    def test_status_before_init_reports_null_counters(self, cli, capsys):
        run, source = cli
        assert run(["status", "--json"]) == 0
        captured = capsys.readouterr()
        status = json.loads(captured.out)
        assert status["total_records"] is None
        assert status["pending_updates"] is None
        assert status["export_enabled"] is True
        assert "run 'init' first" in captured.err

    def test_export_before_init_exits_1(self, cli, capsys):
        run, source = cli
        assert run(["export"]) == 1
        err = capsys.readouterr().err
        assert "aborted on page 1" in err
        assert "run 'init' first" in err
        assert source.closed is True

    def test_update_before_init_exits_1(self, cli, capsys):
        run, source = cli
        assert run(["update-tls"]) == 1
        assert "run 'init' first" in capsys.readouterr().err
        assert source.patched == []
