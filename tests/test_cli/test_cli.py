"""Smoke tests for the typer CLI."""

from __future__ import annotations

import logging

import pytest
from typer.testing import CliRunner

from pure_ingest.cli import app
from pure_ingest.db.connection import get_connection
from pure_ingest.db.schema import ALL_TABLE_NAMES, get_existing_tables

runner = CliRunner()


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """Commands call configure_logging; put the root logger back afterwards."""
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


@pytest.fixture
def cli_config(tmp_path, monkeypatch):
    monkeypatch.setenv("PURE_API_KEY", "cli-secret")
    path = tmp_path / "default.toml"
    path.write_text(
        "[database]\n"
        f'db_path = "{(tmp_path / "cli.db").as_posix()}"\n'
        "[logging]\n"
        'log_file = ""\n'
    )
    return path


def test_validate_config_masks_api_key(cli_config):
    result = runner.invoke(app, ["validate-config", "--config", str(cli_config), "--full"])

    assert result.exit_code == 0
    assert "[OK] Config valid." in result.output
    assert "cli-secret" not in result.output


def test_validate_config_missing_file(tmp_path):
    result = runner.invoke(app, ["validate-config", "--config", str(tmp_path / "nope.toml")])
    assert result.exit_code == 1


def test_init_db_creates_tables(cli_config, tmp_path):
    db_path = tmp_path / "override.db"

    result = runner.invoke(app, ["init-db", "--config", str(cli_config), "--db-path", str(db_path)])

    assert result.exit_code == 0
    with get_connection(str(db_path)) as conn:
        assert set(ALL_TABLE_NAMES) <= set(get_existing_tables(conn))
