import pytest
from typer.testing import CliRunner
from jose import jwt
from sqlalchemy import create_engine, inspect

from lead_magnet_client import cli
from lead_magnet_client.cli import app
from lead_magnet_client.config import reset_settings

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Points the settings at a throwaway SQLite file and storage root."""
    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("POSTGRES__DSN", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("STORAGE__BACKEND", "local")
    monkeypatch.setenv("STORAGE__LOCAL_ROOT", str(tmp_path / "uploads"))
    monkeypatch.setenv("AUTH__SECRET_KEY", "cli-secret")
    # the runner swaps stdout per invocation; keep handlers off it
    monkeypatch.setattr(cli, "configure_logging", lambda level=None: None)
    reset_settings()
    yield db_path
    reset_settings()


def test_cli_init_and_check(cli_env, tmp_path):
    """
    init creates the schema and the storage root; check then reports both as reachable.
    """
    result_init = runner.invoke(app, ["init"])

    assert result_init.exit_code == 0, f"'init' failed: {result_init.output}"
    assert "Database tables created successfully" in result_init.output
    assert "Storage is ready" in result_init.output
    assert (tmp_path / "uploads").is_dir()

    engine = create_engine(f"sqlite:///{cli_env}")
    inspector = inspect(engine)
    for table in ("users", "files", "pages", "page_files", "leads", "customers", "analytics"):
        assert inspector.has_table(table), f"table '{table}' was not created"
    engine.dispose()

    result_check = runner.invoke(app, ["check"])
    assert result_check.exit_code == 0, result_check.output
    assert "Database connection: OK" in result_check.output
    assert "Storage connection: OK" in result_check.output


def test_cli_check_fails_without_schema_dir(monkeypatch, tmp_path):
    monkeypatch.setenv("POSTGRES__DSN", f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'x.db'}")
    monkeypatch.setenv("STORAGE__LOCAL_ROOT", str(tmp_path / "uploads"))
    monkeypatch.setattr(cli, "configure_logging", lambda level=None: None)
    reset_settings()
    try:
        result = runner.invoke(app, ["check"])
    finally:
        reset_settings()

    assert result.exit_code == 1
    assert "Database connection: FAILED" in result.output


def test_cli_create_user_and_issue_token(cli_env):
    assert runner.invoke(app, ["init"]).exit_code == 0

    created = runner.invoke(app, ["create-user", "Creator@Example.com", "--name", "Creator"])
    assert created.exit_code == 0, created.output
    assert "<creator@example.com>" in created.output

    duplicate = runner.invoke(app, ["create-user", "creator@example.com"])
    assert duplicate.exit_code == 1

    token = runner.invoke(app, ["issue-token", "1"])
    assert token.exit_code == 0, token.output
    claims = jwt.decode(token.output.strip().splitlines()[-1], "cli-secret", algorithms=["HS256"])
    assert claims["sub"] == "1"

    missing = runner.invoke(app, ["issue-token", "42"])
    assert missing.exit_code == 1
    assert "User 42 not found" in missing.output
