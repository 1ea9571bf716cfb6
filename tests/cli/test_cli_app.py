"""Tests for the rostersync command line."""

import json

import pytest
from loguru import logger
from typer.testing import CliRunner

from roster_sync import __version__
from roster_sync.cli.app import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    logger.remove()


@pytest.fixture
def database(tmp_path, monkeypatch):
    """Point the CLI at a fresh database file and create the schema."""
    path = tmp_path / "cli.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{path}")
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0, result.output
    return path


class TestApp:
    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_command_groups(self):
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for group in ("sync", "locks", "clever", "init-db"):
            assert group in result.output

    def test_init_db_creates_file(self, database):
        assert database.exists()


class TestSyncCommands:
    def test_run_requires_a_scope(self):
        result = runner.invoke(app, ["sync", "run"])

        assert result.exit_code == 1
        assert "exactly one" in result.output

    def test_run_rejects_two_scopes(self):
        result = runner.invoke(app, ["sync", "run", "--school", "1", "--all"])

        assert result.exit_code == 1

    def test_history_empty(self, database):
        result = runner.invoke(app, ["sync", "history"])

        assert result.exit_code == 0
        assert "No sync runs recorded" in result.output

    def test_history_json(self, database):
        result = runner.invoke(app, ["sync", "history", "--format", "json"])

        assert result.exit_code == 0
        assert json.loads(result.output) == []


class TestLockCommands:
    def test_list_empty(self, database):
        result = runner.invoke(app, ["locks", "list"])

        assert result.exit_code == 0
        assert "No active locks" in result.output

    def test_cleanup(self, database):
        result = runner.invoke(app, ["locks", "cleanup"])

        assert result.exit_code == 0
        assert "Removed 0 expired lock(s)" in result.output

    def test_release_missing_lock(self, database):
        result = runner.invoke(app, ["locks", "release", "school:1"])

        assert result.exit_code == 1
