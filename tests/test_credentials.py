"""Tests for the persisted provisioning record."""

import os
import stat
from datetime import datetime

import pytest
from pydantic import ValidationError

from zaanet_provisioner.credentials import (
    ProvisioningConfig,
    load_provisioning_config,
    load_router_id,
    render_provisioning_config,
    save_provisioning_config,
)


class TestProvisioningConfig:
    """Tests for ProvisioningConfig validation."""

    def test_blank_values_rejected(self, provisioning):
        data = provisioning.model_dump()
        data["contract_id"] = "   "
        with pytest.raises(ValidationError):
            ProvisioningConfig(**data)

    def test_trailing_slash_stripped(self, provisioning):
        data = provisioning.model_dump()
        data["main_server"] = "https://api.example.test/"
        assert ProvisioningConfig(**data).main_server == "https://api.example.test"


class TestPersistence:
    """Tests for save/load of the credentials file."""

    def test_render_format(self, provisioning):
        text = render_provisioning_config(provisioning, now=datetime(2024, 5, 1, 12, 0, 0))

        assert text.startswith("# ZaaNet Router Configuration\n# Generated: Wed May 01 12:00:00 2024\n")
        assert 'ROUTER_ID="ZN-0123456789AB"' in text
        assert 'ZAANET_SECRET="s3cret-key-long-enough"' in text
        assert "# ZaaNet secret key (keep secure!)" in text

    def test_save_is_private_and_atomic(self, tmp_path, provisioning):
        path = tmp_path / "zaanet" / "config"

        save_provisioning_config(provisioning, path)

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert not (path.parent / ".config.tmp").exists()

    def test_round_trip_with_quotes_and_backslashes(self, tmp_path, provisioning):
        data = provisioning.model_dump()
        data["secret_key"] = 'a"b\\c d$e'
        data["wifi_ssid"] = "Joe's Cafe"
        config = ProvisioningConfig(**data)
        path = tmp_path / "config"

        save_provisioning_config(config, path)

        assert load_provisioning_config(path) == config

    def test_missing_file(self, tmp_path):
        assert load_provisioning_config(tmp_path / "config") is None
        assert load_router_id(tmp_path / "config") is None

    def test_incomplete_file(self, tmp_path):
        path = tmp_path / "config"
        path.write_text('ROUTER_ID="ZN-0123456789AB"\n')

        assert load_router_id(path) == "ZN-0123456789AB"
        with pytest.raises(ValidationError):
            load_provisioning_config(path)

    def test_overwrite_replaces_previous(self, tmp_path, provisioning):
        path = tmp_path / "config"
        path.write_text("old contents")
        os.chmod(path, 0o644)

        save_provisioning_config(provisioning, path)

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert load_provisioning_config(path).router_id == "ZN-0123456789AB"
