"""Tests for the command line entry point."""

import io
import sys
from pathlib import Path

import pytest
from rich.console import Console

from zaanet_provisioner import cli
from zaanet_provisioner.installer import RunOutcome


def write_settings(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(
        "paths:\n"
        f"  config_dir: {tmp_path / 'zaanet'}\n"
        f"  web_root: {tmp_path / 'htdocs'}\n"
        "logging:\n"
        "  file: null\n"
        f"  db: {tmp_path / 'history.db'}\n"
    )
    return path


def run_main(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["zaanet-provisioner", *argv])
    with pytest.raises(SystemExit) as exc:
        cli.main()
    return exc.value.code


def test_no_command_prints_help(monkeypatch):
    assert run_main(monkeypatch) == 1


def test_bad_settings_file(monkeypatch, tmp_path):
    assert run_main(monkeypatch, "--config", str(tmp_path / "missing.yaml"), "identity") == 1


def test_job_without_install_is_a_no_op(monkeypatch, tmp_path):
    settings = write_settings(tmp_path)
    assert run_main(monkeypatch, "--config", str(settings), "job", "network-info") == 0


def test_history_on_empty_database(monkeypatch, tmp_path):
    settings = write_settings(tmp_path)
    assert run_main(monkeypatch, "--config", str(settings), "history") == 0


def test_invalid_whitelist_mac(monkeypatch, tmp_path):
    settings = write_settings(tmp_path)
    assert run_main(monkeypatch, "--config", str(settings), "whitelist", "not-a-mac") == 1


def test_interrupt_exits_130(monkeypatch, tmp_path):
    settings = write_settings(tmp_path)

    async def interrupted(args, config):
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "cmd_identity", interrupted)
    assert run_main(monkeypatch, "--config", str(settings), "identity") == 130


def test_failed_uninstall_reports_phase_and_log(monkeypatch, tmp_path):
    settings = write_settings(tmp_path)
    output = io.StringIO()
    monkeypatch.setattr(cli, "console", Console(file=output, width=200))

    class FailingUninstaller:
        """Uninstaller that stops while restoring the gateway config."""

        def __init__(self, *args, **kwargs):
            pass

        async def run(self):
            return RunOutcome(
                success=False,
                exit_code=1,
                phase="Restoring configuration",
                error="uci commit failed",
                log_path=Path("/tmp/zaanet-uninstall-20240501-123000.log"),
            )

    monkeypatch.setattr("zaanet_provisioner.installer.Uninstaller", FailingUninstaller)

    assert run_main(monkeypatch, "--config", str(settings), "uninstall") == 1

    text = output.getvalue()
    assert "Uninstallation failed during Restoring configuration: uci commit failed" in text
    assert "Log: /tmp/zaanet-uninstall-20240501-123000.log" in text
    assert "Uninstallation complete" not in text
