"""
Unit tests for the sync CLI.

Dry runs use the built-in sample data and an in-memory store, so no
remote system or database is needed.
"""

import pytest

from erpsync.sync_cli import main, parse_args


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch, tmp_path):
    """Keep non dry-run commands away from the working directory's state file."""
    monkeypatch.delenv("ERPSYNC_DB_BACKEND", raising=False)
    monkeypatch.setenv("ERPSYNC_SQLITE_PATH", str(tmp_path / "state.db"))


class TestParseArgs:
    """Tests for argument parsing."""

    def test_sync_page_defaults(self):
        args = parse_args(["sync-page", "--connection", "main"])

        assert args.command == "sync-page"
        assert args.limit == 60
        assert args.offset == 0
        assert args.estimate_only is False

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])


class TestDryRun:
    """Tests for dry-run commands."""

    def test_start(self, capsys):
        """Test a dry-run sync completes all three jobs."""
        assert main(["start", "--dry-run"]) == 0

        out = capsys.readouterr().out
        assert '"invoice_lines"' in out
        assert '"status": "completed"' in out

    def test_count(self, capsys):
        assert main(["count", "--dry-run"]) == 0

        out = capsys.readouterr().out
        assert '"total_lines": 6' in out
        assert '"total_invoices": 3' in out

    def test_sync_page(self, capsys):
        assert main(["sync-page", "--dry-run", "--limit", "2"]) == 0

        out = capsys.readouterr().out
        assert '"linesSynced": 2' in out


class TestErrors:
    """Tests for exit codes on errors."""

    def test_missing_config_file(self, tmp_path):
        assert main(["--config", str(tmp_path / "missing.yaml"), "status", "x"]) == 2

    def test_unknown_job(self):
        assert main(["status", "missing-job"]) == 1

    def test_connection_required(self):
        assert main(["count"]) == 1

    def test_unknown_connection(self):
        assert main(["count", "--connection", "nope"]) == 1
