"""
Tests for zmigrate_core.cli — the command-line entry point.

Covers:
  - Summary printed for a migrated wallet
  - [logging] from the config file applied to the run
  - --log-level overriding the config
  - Non-zero exit on a decode failure
  - argparse rejection of an unknown format
"""

import json
import logging

import pytest

from zmigrate_core.cli import main


@pytest.fixture(autouse=True)
def no_env_overrides(monkeypatch):
    for name in ("ZMIGRATE_LOG_LEVEL", "ZMIGRATE_LOG_FMT", "ZMIGRATE_LOG_FILE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def wallet_path(tmp_path, small_wallet_bytes):
    path = tmp_path / "wallet.dat"
    path.write_bytes(small_wallet_bytes)
    return path


def _config(tmp_path, level="DEBUG"):
    log_file = tmp_path / "logs" / "run.log"
    path = tmp_path / "zmigrate.toml"
    path.write_text(
        f'[logging]\nlevel = "{level}"\nformat = "json"\nfile = "{log_file.as_posix()}"\n'
    )
    return path, log_file


def _log_lines(root, log_file):
    for handler in root.handlers:
        handler.flush()
    return [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]


class TestMain:

    def test_prints_summary(self, root_logger, wallet_path, capsys):
        assert main(["--format", "zcashd", str(wallet_path)]) == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["wallets"] == 1
        assert summary["addresses"] == 1
        assert summary["transactions"] == 1

    def test_config_drives_logging(self, root_logger, tmp_path, wallet_path):
        config, log_file = _config(tmp_path)
        assert main(["--config", str(config), "--format", "zcashd", str(wallet_path)]) == 0
        assert root_logger.level == logging.DEBUG
        lines = _log_lines(root_logger, log_file)
        assert any(
            line["logger"] == "zmigrate_formats" and line["msg"].startswith("Migrating")
            for line in lines
        )

    def test_log_level_flag_wins(self, root_logger, tmp_path, wallet_path):
        config, _ = _config(tmp_path, level="ERROR")
        main(["--config", str(config), "--log-level", "info", "--format", "zcashd",
              str(wallet_path)])
        assert root_logger.level == logging.INFO

    def test_decode_failure(self, root_logger, tmp_path, capsys):
        config, log_file = _config(tmp_path)
        empty = tmp_path / "empty.dat"
        empty.write_bytes(b"")
        assert main(["--config", str(config), "--format", "zcashd", str(empty)]) == 1
        assert capsys.readouterr().out == ""
        errors = [line for line in _log_lines(root_logger, log_file) if line["level"] == "ERROR"]
        assert len(errors) == 1
        assert errors[0]["logger"] == "zmigrate_cli"
        assert "empty.dat" in errors[0]["msg"]

    def test_unknown_format(self, wallet_path):
        with pytest.raises(SystemExit) as exc:
            main(["--format", "electrum", str(wallet_path)])
        assert exc.value.code == 2
