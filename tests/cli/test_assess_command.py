"""Tests for the CLI entry point and the assess command."""

import json

import pytest
from click.testing import CliRunner

from cloudposture import __version__
from cloudposture.cli.main import cli

from conftest import OTHER_SUBSCRIPTION


@pytest.fixture
def cli_runner():
    """Create CLI runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep stray CLOUDPOSTURE_ variables and .env files out of the CLI."""
    for name in ("CLOUDPOSTURE_CONFIG", "CLOUDPOSTURE_SNAPSHOT_PATH", "CLOUDPOSTURE_CLIENT_ID",
                 "CLOUDPOSTURE_ORGANIZATION_ID", "CLOUDPOSTURE_LOG_LEVEL", "CLOUDPOSTURE_SUBSCRIPTION_IDS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


class TestMainCommands:
    """Tests for the top-level group."""

    def test_version_command(self, cli_runner):
        result = cli_runner.invoke(cli, ["version"])

        assert result.exit_code == 0
        assert f"v{__version__}" in result.output

    def test_version_option(self, cli_runner):
        result = cli_runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_config_file_aborts(self, cli_runner, tmp_path):
        result = cli_runner.invoke(cli, ["--config", str(tmp_path / "nope.yaml"), "version"])

        assert result.exit_code == 1
        assert "Configuration error" in result.output


class TestAssessCommand:
    """Tests for `cloudposture assess`."""

    def test_assess_snapshot(self, cli_runner, snapshot_file, tmp_path):
        output = tmp_path / "reports" / "assessment.json"

        result = cli_runner.invoke(cli, ["assess", "--snapshot", str(snapshot_file), "--output", str(output)])

        assert result.exit_code == 0, result.output
        assert "Security Posture Assessment" in result.output
        assert "Domain Scores" in result.output
        assert "Assessment saved to" in result.output

        data = json.loads(output.read_text(encoding="utf-8"))
        assert 0 <= data["score"] <= 100
        assert data["delegated"] is False
        assert data["resources_assessed"] == 3
        assert any("AllowRDP" in f["issue"] for f in data["findings"])

    def test_subscription_filter(self, cli_runner, snapshot_file, tmp_path):
        output = tmp_path / "assessment.json"

        result = cli_runner.invoke(
            cli,
            ["assess", "-s", str(snapshot_file), "--subscription", OTHER_SUBSCRIPTION, "-o", str(output)],
        )

        assert result.exit_code == 0, result.output
        assert json.loads(output.read_text(encoding="utf-8"))["resources_assessed"] == 1

    def test_severity_filter(self, cli_runner, snapshot_file):
        result = cli_runner.invoke(cli, ["assess", "-s", str(snapshot_file), "--severity-filter", "high"])

        assert result.exit_code == 0, result.output
        assert "HIGH SEVERITY FINDINGS" in result.output
        assert "LOW SEVERITY FINDINGS" not in result.output
        assert "MEDIUM SEVERITY FINDINGS" not in result.output

    def test_delegated_assessment(self, cli_runner, snapshot_file, tmp_path):
        output = tmp_path / "assessment.json"

        result = cli_runner.invoke(
            cli,
            ["assess", "-s", str(snapshot_file), "--client-id", "app-1", "--org-id", "org-1", "-o", str(output)],
        )

        assert result.exit_code == 0, result.output
        data = json.loads(output.read_text(encoding="utf-8"))
        assert data["delegated"] is True
        assert any(f["resource_id"] == "oauth.security.app-1" for f in data["findings"])

    def test_client_id_without_org_id(self, cli_runner, snapshot_file):
        result = cli_runner.invoke(cli, ["assess", "-s", str(snapshot_file), "--client-id", "app-1"])

        assert result.exit_code == 2
        assert "must be given together" in result.output

    def test_no_snapshot(self, cli_runner):
        result = cli_runner.invoke(cli, ["assess"])

        assert result.exit_code == 2
        assert "No snapshot given" in result.output

    def test_snapshot_must_exist(self, cli_runner, tmp_path):
        result = cli_runner.invoke(cli, ["assess", "-s", str(tmp_path / "missing.json")])

        assert result.exit_code == 2

    def test_unreadable_snapshot(self, cli_runner, tmp_path):
        snapshot = tmp_path / "broken.json"
        snapshot.write_text("{oops", encoding="utf-8")

        result = cli_runner.invoke(cli, ["assess", "-s", str(snapshot)])

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_snapshot_from_config_file(self, cli_runner, snapshot_file, tmp_path):
        config_file = tmp_path / "cloudposture.yaml"
        config_file.write_text(f"snapshot_path: {snapshot_file}\nlog_level: WARNING\n", encoding="utf-8")

        result = cli_runner.invoke(cli, ["--config", str(config_file), "assess"])

        assert result.exit_code == 0, result.output
        assert "Security Posture Assessment" in result.output
