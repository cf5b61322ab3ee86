"""Tests for the uci-backed configuration store."""

from unittest.mock import AsyncMock, patch

import pytest

from zaanet_provisioner.commands import CommandResult
from zaanet_provisioner.errors import ConfigStoreError
from zaanet_provisioner.store import UciStore


@pytest.mark.asyncio
async def test_set_uses_dotted_reference():
    runner = AsyncMock(return_value=CommandResult(returncode=0))
    store = UciStore("nodogsplash")

    with patch("zaanet_provisioner.store.run_command", runner):
        await store.set("@nodogsplash[0]", "gatewayport", "2050")

    runner.assert_awaited_once_with(
        "uci", "-q", "set", "nodogsplash.@nodogsplash[0].gatewayport=2050", timeout=15.0
    )


@pytest.mark.asyncio
async def test_custom_config_dir_is_passed():
    runner = AsyncMock(return_value=CommandResult(returncode=0))
    store = UciStore("wireless", config_dir="/tmp/uci")

    with patch("zaanet_provisioner.store.run_command", runner):
        await store.commit()

    assert runner.await_args.args == ("uci", "-q", "-c", "/tmp/uci", "commit", "wireless")


@pytest.mark.asyncio
async def test_rejected_set_raises():
    runner = AsyncMock(return_value=CommandResult(returncode=1, stderr="uci: Invalid argument"))

    with patch("zaanet_provisioner.store.run_command", runner):
        with pytest.raises(ConfigStoreError, match="Invalid argument"):
            await UciStore("nodogsplash").add_list("@nodogsplash[0]", "trustedmaclist", "aa:bb:cc:dd:ee:ff")


@pytest.mark.asyncio
async def test_missing_option_reads_as_none():
    """Deleting or reading an absent key is not an error."""
    runner = AsyncMock(return_value=CommandResult(returncode=1))

    with patch("zaanet_provisioner.store.run_command", runner):
        store = UciStore("nodogsplash")
        assert await store.get("@nodogsplash[0]", "trustedmaclist") is None
        assert await store.get_list("@nodogsplash[0]", "trustedmaclist") == []
        await store.delete("@nodogsplash[0]", "checkinterval")


@pytest.mark.asyncio
async def test_get_list_splits_values():
    runner = AsyncMock(return_value=CommandResult(returncode=0, stdout="aa:aa:aa:aa:aa:aa bb:bb:bb:bb:bb:bb\n"))

    with patch("zaanet_provisioner.store.run_command", runner):
        macs = await UciStore("nodogsplash").get_list("@nodogsplash[0]", "trustedmaclist")

    assert macs == ["aa:aa:aa:aa:aa:aa", "bb:bb:bb:bb:bb:bb"]
