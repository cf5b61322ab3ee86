"""Tests for router identity and admin device resolution."""

import hashlib

import pytest

from zaanet_provisioner.identity import (
    ROUTER_ID_PATTERN,
    AdminDevice,
    LookupContext,
    derive_router_id,
    from_arp_cache,
    from_dhcp_leases,
    from_neighbor_table,
    list_neighbors,
    normalize_mac,
    parse_isc_leases,
    resolve_admin_device,
    resolve_connection_ip,
    resolve_mac,
    resolve_router_identity,
    select_interface,
)


def make_iface(net_dir, name, address, ifindex, carrier=None, operstate=None):
    iface = net_dir / name
    iface.mkdir(parents=True)
    (iface / "address").write_text(address + "\n")
    (iface / "ifindex").write_text(f"{ifindex}\n")
    if carrier is not None:
        (iface / "carrier").write_text(carrier + "\n")
    if operstate is not None:
        (iface / "operstate").write_text(operstate + "\n")
    return iface


class TestNormalizeMac:
    """Tests for MAC candidate validation."""

    def test_accepts_lowercase_and_uppercase(self):
        assert normalize_mac("aa:bb:cc:dd:ee:ff") == "aa:bb:cc:dd:ee:ff"
        assert normalize_mac("AA:BB:CC:DD:EE:FF") == "aa:bb:cc:dd:ee:ff"
        assert normalize_mac(" 0a:1B:2c:3D:4e:5F ") == "0a:1b:2c:3d:4e:5f"

    def test_rejects_zero_sentinel(self):
        assert normalize_mac("00:00:00:00:00:00") is None

    @pytest.mark.parametrize("candidate", [
        None,
        "",
        "aa:bb:cc:dd:ee",
        "aa:bb:cc:dd:ee:ff:00",
        "aa-bb-cc-dd-ee-ff",
        "aabb.ccdd.eeff",
        "gg:bb:cc:dd:ee:ff",
        "a:bb:cc:dd:ee:ff",
        "<incomplete>",
    ])
    def test_rejects_malformed(self, candidate):
        assert normalize_mac(candidate) is None


class TestRouterIdentity:
    """Tests for router id derivation."""

    def test_id_format_from_mac(self):
        router_id = derive_router_id("aa:bb:cc:dd:ee:ff")
        assert ROUTER_ID_PATTERN.match(router_id)
        expected = hashlib.md5(b"aa:bb:cc:dd:ee:ff").hexdigest()[:12].upper()
        assert router_id == f"ZN-{expected}"

    def test_resolution_is_deterministic(self, tmp_path):
        net = tmp_path / "net"
        make_iface(net, "lo", "00:00:00:00:00:00", 1, carrier="1")
        make_iface(net, "eth0", "aa:bb:cc:dd:ee:ff", 2, carrier="1")

        first = resolve_router_identity(net, hostname="router")
        second = resolve_router_identity(net, hostname="router")

        assert first == second
        assert first.source_kind == "mac"
        assert first.source_address == "aa:bb:cc:dd:ee:ff"
        assert first.id == derive_router_id("aa:bb:cc:dd:ee:ff")

    def test_prefers_active_interface(self, tmp_path):
        net = tmp_path / "net"
        make_iface(net, "eth0", "11:11:11:11:11:11", 2, carrier="0")
        make_iface(net, "wlan0", "22:22:22:22:22:22", 3, operstate="up")

        assert select_interface(net).name == "wlan0"

    def test_falls_back_to_eth0_without_activity(self, tmp_path):
        net = tmp_path / "net"
        make_iface(net, "br-lan", "33:33:33:33:33:33", 2, carrier="0")
        make_iface(net, "eth0", "44:44:44:44:44:44", 5, carrier="0")

        assert select_interface(net).name == "eth0"

    def test_falls_back_to_hostname(self, tmp_path):
        identity = resolve_router_identity(tmp_path / "missing", hostname="GL-XE300")

        assert identity.source_kind == "hostname"
        assert identity.id == derive_router_id("GL-XE300")

    def test_zero_address_is_not_used(self, tmp_path):
        net = tmp_path / "net"
        make_iface(net, "eth0", "00:00:00:00:00:00", 2, carrier="1")

        identity = resolve_router_identity(net, hostname="router")
        assert identity.source_kind == "hostname"

    def test_timestamp_fallback_without_digests(self, tmp_path, monkeypatch):
        monkeypatch.setattr("zaanet_provisioner.identity.DIGESTS", ())

        identity = resolve_router_identity(tmp_path, hostname="router", clock=lambda: 1700000000123.0)

        assert identity.source_kind == "timestamp"
        assert identity.id == "ZN-700000000123"

    def test_timestamp_fallback_is_a_valid_router_id(self, tmp_path, monkeypatch):
        """Seconds since the epoch are shorter than the id; pad them so re-runs reuse it."""
        monkeypatch.setattr("zaanet_provisioner.identity.DIGESTS", ())

        identity = resolve_router_identity(tmp_path, hostname="router", clock=lambda: 1760000000.0)

        assert identity.id == "ZN-001760000000"
        assert ROUTER_ID_PATTERN.match(identity.id)


class StaticContext(LookupContext):
    """Lookup context with canned tables."""

    def __init__(self, ip, neighbors="", neighbors_after_probe=None, arp="", leases=()):
        super().__init__(ip, probe_wait=0)
        self._neighbors = neighbors
        self._after_probe = neighbors_after_probe
        self._arp = arp
        self._leases = list(leases)
        self.probed = False

    async def neighbor_table(self):
        if self.probed and self._after_probe is not None:
            return self._after_probe
        return self._neighbors

    async def probe(self):
        self.probed = True

    def arp_table(self):
        return self._arp

    def lease_files(self):
        return iter(self._leases)


class TestAdminDevice:
    """Tests for the IP -> MAC strategy chain."""

    @pytest.mark.asyncio
    async def test_dhcp_lease_fallback(self):
        """No neighbour entry, but a matching lease line yields the lease MAC."""
        leases = (
            "1700000000 11:22:33:44:55:66 192.168.8.10 phone *\n"
            "1700000300 AA:BB:CC:DD:EE:01 192.168.8.50 laptop 01:aa:bb:cc:dd:ee:01\n"
        )
        ctx = StaticContext("192.168.8.50", neighbors="", leases=[leases])

        mac = await resolve_mac(ctx)

        assert mac == "aa:bb:cc:dd:ee:01"
        assert ctx.probed

    @pytest.mark.asyncio
    async def test_neighbor_table_first(self):
        neighbors = "192.168.8.50 dev br-lan lladdr 66:55:44:33:22:11 REACHABLE\n"
        ctx = StaticContext("192.168.8.50", neighbors=neighbors, leases=["1 aa:aa:aa:aa:aa:aa 192.168.8.50 x *"])

        assert await resolve_mac(ctx) == "66:55:44:33:22:11"
        assert not ctx.probed

    @pytest.mark.asyncio
    async def test_probe_populates_neighbor_table(self):
        after = "192.168.8.50 dev br-lan lladdr 66:55:44:33:22:11 DELAY\n"
        ctx = StaticContext("192.168.8.50", neighbors="", neighbors_after_probe=after)

        assert await resolve_mac(ctx) == "66:55:44:33:22:11"
        assert ctx.probed

    @pytest.mark.asyncio
    async def test_failed_and_zero_entries_are_skipped(self):
        neighbors = "192.168.8.50 dev br-lan  FAILED\n"
        arp = (
            "IP address       HW type     Flags       HW address            Mask     Device\n"
            "192.168.8.50     0x1         0x0         00:00:00:00:00:00     *        br-lan\n"
        )
        ctx = StaticContext("192.168.8.50", neighbors=neighbors, arp=arp)

        assert await resolve_mac(ctx) is None

    @pytest.mark.asyncio
    async def test_arp_cache_strategy(self):
        arp = (
            "IP address       HW type     Flags       HW address            Mask     Device\n"
            "192.168.8.50     0x1         0x2         de:ad:be:ef:00:01     *        br-lan\n"
        )
        ctx = StaticContext("192.168.8.50", arp=arp)

        assert await resolve_mac(ctx, [from_neighbor_table, from_arp_cache]) == "de:ad:be:ef:00:01"

    @pytest.mark.asyncio
    async def test_isc_lease_format(self):
        leases = (
            "lease 192.168.8.50 {\n"
            "  starts 4 2024/01/01 00:00:00;\n"
            "  hardware ethernet 0A:0B:0C:0D:0E:0F;\n"
            "}\n"
        )
        ctx = StaticContext("192.168.8.50", leases=[leases])

        assert await resolve_mac(ctx, [from_dhcp_leases]) == "0a:0b:0c:0d:0e:0f"
        assert parse_isc_leases(leases, "192.168.8.51") is None

    @pytest.mark.asyncio
    async def test_unmapped_ip_is_not_an_error(self):
        device = await resolve_admin_device(
            "192.168.8.77",
            context_factory=lambda ip: StaticContext(ip),
        )

        assert device == AdminDevice(ip="192.168.8.77", mac=None)

    @pytest.mark.asyncio
    async def test_unknown_ip_returns_none(self, monkeypatch):
        async def no_ip():
            return None

        monkeypatch.setattr("zaanet_provisioner.identity.resolve_connection_ip", no_ip)

        assert await resolve_admin_device(context_factory=lambda ip: StaticContext(ip)) is None

    @pytest.mark.asyncio
    async def test_connection_ip_from_ssh(self):
        env = {"SSH_CONNECTION": "192.168.8.50 51234 192.168.8.1 22"}
        assert await resolve_connection_ip(env) == "192.168.8.50"

    def test_list_neighbors(self):
        output = (
            "192.168.8.50 dev br-lan lladdr 66:55:44:33:22:11 REACHABLE\n"
            "192.168.8.60 dev br-lan  FAILED\n"
            "fe80::1 dev br-lan lladdr 66:55:44:33:22:12 STALE\n"
        )
        assert list_neighbors(output) == [
            ("192.168.8.50", "66:55:44:33:22:11"),
            ("fe80::1", "66:55:44:33:22:12"),
        ]
