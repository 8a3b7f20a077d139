"""CLI smoke tests against a throwaway data directory."""

import os

import pytest
from typer.testing import CliRunner

from pulsekeeper.cli import app

runner = CliRunner()


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.delenv("PULSEKEEPER_TELEGRAM_BOT_TOKEN", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(f"data_dir: {tmp_path / 'data'}\n")
    return str(path)


def test_reward_then_status_and_ledger(config_path):
    result = runner.invoke(app, ["--config", config_path, "reward", "250000", "first", "launch"])
    assert result.exit_code == 0
    assert "+250,000 tokens" in result.output

    result = runner.invoke(app, ["--config", config_path, "status"])
    assert result.exit_code == 0
    assert "normal" in result.output

    result = runner.invoke(app, ["--config", config_path, "ledger", "--count", "5"])
    assert result.exit_code == 0
    assert "owner_reward" in result.output


def test_invalid_reward_exits_nonzero(config_path):
    result = runner.invoke(app, ["--config", config_path, "reward", "lots"])
    assert result.exit_code == 1
    assert "Invalid amount" in result.output


def test_tasks_and_decisions(config_path):
    result = runner.invoke(app, ["--config", config_path, "tasks"])
    assert result.exit_code == 0
    assert "economy-check" in result.output

    result = runner.invoke(app, ["--config", config_path, "decisions"])
    assert result.exit_code == 0
    assert "No decisions recorded yet" in result.output


def test_reward_refused_while_daemon_holds_data_dir(config_path, tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "pulsekeeper.pid").write_text(str(os.getpid()))

    result = runner.invoke(app, ["--config", config_path, "reward", "50000", "late"])
    assert result.exit_code == 1
    assert "POST /reward" in result.output
    assert not (data_dir / "economy.json").exists()


def test_stale_pid_file_does_not_block_reward(config_path, tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "pulsekeeper.pid").write_text("garbage")

    result = runner.invoke(app, ["--config", config_path, "reward", "50000"])
    assert result.exit_code == 0
    assert (data_dir / "economy.json").exists()
