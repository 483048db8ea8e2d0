"""Tests for the CLI entry point and logging setup."""

import logging
import sys
from dataclasses import replace
from pathlib import Path

import pytest

from voice_bridge import __version__
from voice_bridge.config import Config, SystemConfig
from voice_bridge.main import cli, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    saved = (root.handlers[:], root.level)
    yield
    for handler in root.handlers:
        if handler not in saved[0]:
            handler.close()
    root.handlers[:] = saved[0]
    root.setLevel(saved[1])


class TestSetupLogging:
    """Test logging configuration."""

    def test_stdout_only(self, app_config: Config, restore_logging) -> None:
        """Test no log file without LOG_DIR."""
        assert setup_logging(app_config) is None
        assert logging.getLogger().level == logging.INFO

    def test_log_file(self, app_config: Config, tmp_path: Path, restore_logging) -> None:
        """Test a timestamped log file under LOG_DIR."""
        cfg = replace(
            app_config,
            system=SystemConfig(log_level="debug", log_format="json", log_dir=str(tmp_path / "logs"))
        )

        log_file = setup_logging(cfg)

        assert log_file is not None
        assert log_file.parent == tmp_path / "logs"
        assert log_file.name.startswith("voice-bridge_")
        assert log_file.exists()
        assert logging.getLogger().level == logging.DEBUG


class TestCli:
    """Test command-line parsing."""

    def test_version(self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
        """Test --version prints the package version."""
        monkeypatch.setattr(sys, "argv", ["voice-bridge", "--version"])

        with pytest.raises(SystemExit) as exc_info:
            cli()

        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out
