"""Router identity and admin device resolution.

The router id is derived from the hardware address of the first active
non-loopback interface, falling back to the host name and finally to the
clock. The admin device is the operator's own machine (the SSH client),
resolved IP -> MAC through an ordered chain of lookup strategies.
"""

import asyncio
import hashlib
import logging
import os
import re
import socket
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple

from .commands import run_command

logger = logging.getLogger(__name__)

ROUTER_ID_PREFIX = "ZN-"
ROUTER_ID_LENGTH = 12
ZERO_MAC = "00:00:00:00:00:00"
MAC_PATTERN = re.compile(r"^([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}$")
ROUTER_ID_PATTERN = re.compile(r"^ZN-[0-9A-F]{12}$")

# Digests tried in order; FIPS builds may refuse md5
DIGESTS = ("md5", "sha1")


@dataclass(frozen=True)
class RouterIdentity:
    """Stable router identifier and the value it was derived from."""
    id: str
    source_address: str
    source_kind: str  # "mac", "hostname" or "timestamp"


@dataclass
class AdminDevice:
    """The operator's device, exempted from the captive portal."""
    ip: Optional[str] = None
    mac: Optional[str] = None
    whitelisted: bool = False


def normalize_mac(candidate: Optional[str]) -> Optional[str]:
    """Validate a MAC candidate and return it lower-cased.

    Accepts exactly six hex pairs joined by colons, in either case.
    The all-zero sentinel is rejected.
    """
    if not candidate:
        return None
    candidate = candidate.strip()
    if not MAC_PATTERN.match(candidate):
        return None
    mac = candidate.lower()
    if mac == ZERO_MAC:
        return None
    return mac


# ---------------------------------------------------------------------------
# Router identity
# ---------------------------------------------------------------------------

def _read(path: Path) -> Optional[str]:
    try:
        return path.read_text().strip()
    except OSError:
        return None


def _interface_order(iface: Path) -> Tuple[int, str]:
    index = _read(iface / "ifindex")
    try:
        return int(index), iface.name
    except (TypeError, ValueError):
        return 1 << 30, iface.name


def _is_active(iface: Path) -> bool:
    if _read(iface / "carrier") == "1":
        return True
    return _read(iface / "operstate") == "up"


def select_interface(net_dir: Path) -> Optional[Path]:
    """Pick the interface whose hardware address seeds the router id.

    Prefers the first non-loopback interface with link activity, then eth0,
    then any non-loopback interface.
    """
    net_dir = Path(net_dir)
    try:
        interfaces = sorted(
            (p for p in net_dir.iterdir() if p.name != "lo"),
            key=_interface_order,
        )
    except OSError:
        return None

    for iface in interfaces:
        if _is_active(iface):
            return iface

    eth0 = net_dir / "eth0"
    if eth0.exists():
        return eth0

    return interfaces[0] if interfaces else None


def _digest(source: str) -> Optional[str]:
    for name in DIGESTS:
        try:
            return hashlib.new(name, source.encode()).hexdigest()
        except ValueError:
            logger.debug(f"Digest {name} unavailable")
    return None


def derive_router_id(source: str) -> Optional[str]:
    """Hash a source address into a ``ZN-XXXXXXXXXXXX`` id."""
    digest = _digest(source)
    if digest is None:
        return None
    return ROUTER_ID_PREFIX + digest[:ROUTER_ID_LENGTH].upper()


def resolve_router_identity(
    net_dir: Path = Path("/sys/class/net"),
    hostname: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> RouterIdentity:
    """Resolve the router identity. Never raises."""
    source = None
    kind = "mac"

    iface = select_interface(net_dir)
    if iface is not None:
        address = _read(iface / "address")
        if address and address != ZERO_MAC:
            source = address
            logger.debug(f"Router id source: {iface.name} ({address})")

    if source is None:
        source = hostname or socket.gethostname()
        kind = "hostname"
        logger.info(f"No hardware address available, using host name: {source}")

    router_id = derive_router_id(source)
    if router_id is None:
        logger.warning("No hash function available, using timestamp-based id")
        stamp = str(int(clock()))[-ROUTER_ID_LENGTH:].zfill(ROUTER_ID_LENGTH)
        return RouterIdentity(id=ROUTER_ID_PREFIX + stamp, source_address=stamp, source_kind="timestamp")

    return RouterIdentity(id=router_id, source_address=source, source_kind=kind)


# ---------------------------------------------------------------------------
# Admin device
# ---------------------------------------------------------------------------

def parse_neighbor_table(output: str, ip: str) -> Optional[str]:
    """Find the lladdr bound to ip in ``ip neigh show`` output."""
    for line in output.splitlines():
        parts = line.split()
        if not parts or parts[0] != ip or "FAILED" in parts:
            continue
        if "lladdr" in parts:
            idx = parts.index("lladdr")
            if idx + 1 < len(parts):
                return parts[idx + 1]
    return None


def parse_arp_table(content: str, ip: str) -> Optional[str]:
    """Find the hardware address bound to ip in /proc/net/arp."""
    for line in content.splitlines()[1:]:
        parts = line.split()
        if len(parts) >= 4 and parts[0] == ip:
            return parts[3]
    return None


def parse_dnsmasq_leases(content: str, ip: str) -> Optional[str]:
    """dnsmasq lease lines: ``<expiry> <mac> <ip> <hostname> <client-id>``."""
    for line in content.splitlines():
        parts = line.split()
        if len(parts) >= 3 and parts[2] == ip:
            return parts[1]
    return None


_ISC_LEASE = re.compile(r"lease\s+(\S+)\s*\{(.*?)\}", re.DOTALL)
_ISC_HARDWARE = re.compile(r"hardware\s+ethernet\s+([0-9A-Fa-f:]+)\s*;")


def parse_isc_leases(content: str, ip: str) -> Optional[str]:
    """ISC dhcpd lease blocks. The most recent block for ip wins."""
    mac = None
    for match in _ISC_LEASE.finditer(content):
        if match.group(1) != ip:
            continue
        hardware = _ISC_HARDWARE.search(match.group(2))
        if hardware:
            mac = hardware.group(1)
    return mac


def parse_leases(content: str, ip: str) -> Optional[str]:
    """Parse either lease format."""
    if "lease " in content and "{" in content:
        return parse_isc_leases(content, ip)
    return parse_dnsmasq_leases(content, ip)


def list_neighbors(output: str) -> List[Tuple[str, str]]:
    """(ip, mac) pairs from ``ip neigh show`` output, skipping failed entries."""
    neighbors = []
    for line in output.splitlines():
        parts = line.split()
        if not parts or "FAILED" in parts or "lladdr" not in parts:
            continue
        idx = parts.index("lladdr")
        if idx + 1 < len(parts):
            neighbors.append((parts[0], parts[idx + 1]))
    return neighbors


class LookupContext:
    """Access to the tables consulted while resolving an IP to a MAC.

    Tests substitute the readers; strategies never touch the system directly.
    """

    def __init__(
        self,
        ip: str,
        arp_table_path: str = "/proc/net/arp",
        lease_paths: Sequence[str] = ("/tmp/dhcp.leases", "/var/lib/dhcp/dhcpd.leases"),
        probe_wait: float = 2.0,
    ):
        self.ip = ip
        self.arp_table_path = Path(arp_table_path)
        self.lease_paths = [Path(p) for p in lease_paths]
        self.probe_wait = probe_wait

    async def neighbor_table(self) -> str:
        result = await run_command("ip", "neigh", "show", timeout=10)
        return result.stdout if result.ok else ""

    async def probe(self) -> None:
        """Ping the address so the kernel populates its neighbour entry."""
        await run_command("ping", "-c", "2", "-W", "2", self.ip, timeout=10)
        await asyncio.sleep(self.probe_wait)

    def arp_table(self) -> str:
        return _read(self.arp_table_path) or ""

    def lease_files(self) -> Iterable[str]:
        for path in self.lease_paths:
            content = _read(path)
            if content:
                yield content


Strategy = Callable[[LookupContext], Awaitable[Optional[str]]]


async def from_neighbor_table(ctx: LookupContext) -> Optional[str]:
    return parse_neighbor_table(await ctx.neighbor_table(), ctx.ip)


async def from_probed_neighbor_table(ctx: LookupContext) -> Optional[str]:
    logger.info("Refreshing neighbor table...")
    await ctx.probe()
    return parse_neighbor_table(await ctx.neighbor_table(), ctx.ip)


async def from_arp_cache(ctx: LookupContext) -> Optional[str]:
    return parse_arp_table(ctx.arp_table(), ctx.ip)


async def from_dhcp_leases(ctx: LookupContext) -> Optional[str]:
    for content in ctx.lease_files():
        mac = parse_leases(content, ctx.ip)
        if mac:
            return mac
    return None


DEFAULT_STRATEGIES: Tuple[Strategy, ...] = (
    from_neighbor_table,
    from_probed_neighbor_table,
    from_arp_cache,
    from_dhcp_leases,
)


async def resolve_mac(ctx: LookupContext, strategies: Sequence[Strategy] = DEFAULT_STRATEGIES) -> Optional[str]:
    """Try each strategy in order until one yields a valid MAC."""
    for strategy in strategies:
        candidate = await strategy(ctx)
        mac = normalize_mac(candidate)
        if mac:
            logger.debug(f"{strategy.__name__} resolved {ctx.ip} -> {mac}")
            return mac
        if candidate:
            logger.warning(f"Invalid MAC format detected: {candidate}")
    return None


async def resolve_connection_ip(env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """IP of the operator's session, from SSH_CONNECTION or ``who -m``."""
    env = os.environ if env is None else env
    ssh_connection = env.get("SSH_CONNECTION", "").split()
    if ssh_connection:
        return ssh_connection[0]

    result = await run_command("who", "-m", timeout=5)
    if result.ok:
        fields = result.stdout.split()
        if len(fields) >= 5:
            ip = fields[4].strip("()")
            if ip:
                return ip
    return None


async def resolve_admin_device(
    ip_hint: Optional[str] = None,
    context_factory: Callable[[str], LookupContext] = LookupContext,
    strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
) -> Optional[AdminDevice]:
    """Resolve the operator's device.

    Returns None when no IP is known, and an AdminDevice without a MAC
    when the IP could not be mapped. Neither case is an error.
    """
    ip = ip_hint or await resolve_connection_ip()
    if not ip:
        logger.info("Could not determine the operator's IP address")
        return None

    logger.info(f"Detected connection from: {ip}")
    mac = await resolve_mac(context_factory(ip), strategies)
    return AdminDevice(ip=ip, mac=mac)
