"""Mutation batches for the captive-portal gateway and the radios.

Criticality is declared per mutation here rather than inferred from error
handling at the call site:

- critical: the parameters that make the daemon serve this portal
  (enabled, interface, port, docroot, splash page), the admin whitelist
  entry, and the primary radio's SSID/encryption/enabled state
- best-effort: display name, timeouts, log level, removal of legacy
  options, firewall rules, the secondary radio
"""

import asyncio
import logging
import socket
from typing import Iterable, Optional
from urllib.parse import urlparse

from .config import GatewayConfig, WirelessConfig
from .transaction import MutationBatch, Target

logger = logging.getLogger(__name__)

PRIMARY_IFACE = "@wifi-iface[0]"
SECONDARY_IFACE = "@wifi-iface[1]"
TRUSTED_MAC_LIST = "trustedmaclist"


def gateway_parameters_batch(gateway: GatewayConfig, docroot: str, splash_page: str) -> MutationBatch:
    """Core daemon parameters, plus clearing the access lists rebuilt later."""
    s = gateway.section
    batch = MutationBatch(phase="gateway")

    for option in gateway.legacy_options:
        batch.delete(Target.GATEWAY, s, option)

    batch.set(Target.GATEWAY, s, "enabled", "1", critical=True)
    batch.set(Target.GATEWAY, s, "gatewayname", gateway.name)
    batch.set(Target.GATEWAY, s, "gatewayinterface", gateway.interface, critical=True)
    batch.set(Target.GATEWAY, s, "preauthidletimeout", str(gateway.preauth_idle_timeout))
    batch.set(Target.GATEWAY, s, "authidletimeout", str(gateway.auth_idle_timeout))
    batch.set(Target.GATEWAY, s, "sessiontimeout", str(gateway.session_timeout))
    batch.set(Target.GATEWAY, s, "gatewayport", str(gateway.port), critical=True)
    batch.set(Target.GATEWAY, s, "docroot", docroot, critical=True)
    batch.set(Target.GATEWAY, s, "splashpage", splash_page, critical=True)
    batch.set(Target.GATEWAY, s, "loglevel", gateway.log_level)

    batch.delete(Target.GATEWAY, s, "preauthenticated_users")
    batch.delete(Target.GATEWAY, s, "users_to_router")
    batch.delete(Target.GATEWAY, s, TRUSTED_MAC_LIST)
    return batch


def admin_whitelist_batch(gateway: GatewayConfig, macs: Iterable[str]) -> MutationBatch:
    """Trusted MACs bypass the portal. Applied before the firewall rules."""
    batch = MutationBatch(phase="admin_whitelist")
    for mac in macs:
        batch.add_to_list(Target.GATEWAY, gateway.section, TRUSTED_MAC_LIST, mac, critical=True)
    return batch


def firewall_batch(gateway: GatewayConfig, api_ip: Optional[str] = None) -> MutationBatch:
    """Pre-authentication and users-to-router access rules."""
    s = gateway.section
    batch = MutationBatch(phase="firewall")

    for rule in gateway.preauthenticated_users:
        batch.add_to_list(Target.GATEWAY, s, "preauthenticated_users", rule)

    for rule in gateway.users_to_router:
        batch.add_to_list(Target.GATEWAY, s, "users_to_router", rule)

    # Clients must reach the backend API while still captive
    if api_ip:
        batch.add_to_list(Target.GATEWAY, s, "preauthenticated_users", f"allow tcp port 443 to {api_ip}")

    return batch


def wireless_batch(wireless: WirelessConfig, ssid: str, include_secondary: bool = True) -> MutationBatch:
    """Open radios; the captive portal handles authentication."""
    batch = MutationBatch(phase="wireless")

    batch.set(Target.NETWORK, PRIMARY_IFACE, "encryption", "none", critical=True)
    batch.set(Target.NETWORK, PRIMARY_IFACE, "ssid", ssid, critical=True)
    batch.set(Target.NETWORK, PRIMARY_IFACE, "disabled", "0", critical=True)
    batch.delete(Target.NETWORK, PRIMARY_IFACE, "key")

    if include_secondary:
        batch.set(Target.NETWORK, SECONDARY_IFACE, "encryption", "none")
        batch.set(Target.NETWORK, SECONDARY_IFACE, "ssid", f"{ssid}{wireless.secondary_suffix}")
        batch.set(Target.NETWORK, SECONDARY_IFACE, "disabled", "0")
        batch.delete(Target.NETWORK, SECONDARY_IFACE, "key")

    return batch


def wireless_reset_batch(wireless: WirelessConfig, include_secondary: bool = True) -> MutationBatch:
    """Factory-style WPA2 settings used when uninstalling without a backup."""
    batch = MutationBatch(phase="wireless_reset")

    batch.set(Target.NETWORK, PRIMARY_IFACE, "encryption", wireless.reset_encryption, critical=True)
    batch.set(Target.NETWORK, PRIMARY_IFACE, "key", wireless.reset_key, critical=True)
    batch.set(Target.NETWORK, PRIMARY_IFACE, "ssid", wireless.reset_ssid, critical=True)

    if include_secondary:
        batch.set(Target.NETWORK, SECONDARY_IFACE, "encryption", wireless.reset_encryption)
        batch.set(Target.NETWORK, SECONDARY_IFACE, "key", wireless.reset_key)
        batch.set(Target.NETWORK, SECONDARY_IFACE, "ssid", f"{wireless.reset_ssid}{wireless.secondary_suffix}")

    return batch


def default_gateway_config(gateway: GatewayConfig) -> str:
    """Minimal, disabled daemon configuration written on uninstall."""
    return (
        f"config {gateway.package}\n"
        "    option enabled '0'\n"
        "    option gatewayname 'OpenWrt Nodogsplash'\n"
        f"    option gatewayinterface '{gateway.interface}'\n"
        "    option maxclients '250'\n"
        "    list authenticated_users 'allow all'\n"
    )


async def resolve_api_ip(main_server: str) -> Optional[str]:
    """IPv4 address of the backend API host, or None."""
    host = urlparse(main_server).hostname
    if not host:
        return None

    loop = asyncio.get_running_loop()
    try:
        infos = await asyncio.wait_for(
            loop.getaddrinfo(host, 443, family=socket.AF_INET, type=socket.SOCK_STREAM),
            timeout=10,
        )
    except (OSError, asyncio.TimeoutError) as e:
        logger.warning(f"Failed to resolve {host}: {e}")
        return None

    for _family, _type, _proto, _canon, sockaddr in infos:
        return sockaddr[0]
    return None
