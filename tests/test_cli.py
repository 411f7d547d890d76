from typer.testing import CliRunner

from themis import config
from themis.cli import app

runner = CliRunner()


def test_ci_check_requires_api_key(monkeypatch):
    monkeypatch.delenv("THEMIS_API_KEY", raising=False)
    monkeypatch.setenv("GITHUB_REPOSITORY", "org/app")

    result = runner.invoke(app, ["ci-check"])

    assert result.exit_code == 1
    assert "THEMIS_API_KEY environment variable is required" in result.output


def test_ci_check_requires_repository(monkeypatch):
    monkeypatch.setenv("THEMIS_API_KEY", "secret")
    monkeypatch.delenv("GITHUB_REPOSITORY", raising=False)

    result = runner.invoke(app, ["ci-check"])

    assert result.exit_code == 1
    assert "GITHUB_REPOSITORY" in result.output


def test_migrate_command(tmp_path, monkeypatch):
    db_path = tmp_path / "themis.sqlite3"
    monkeypatch.setattr(config, "DB_PATH", str(db_path))

    result = runner.invoke(app, ["migrate"])

    assert result.exit_code == 0
    assert db_path.exists()
