# tests/test_wireguard.py
"""
Unit Tests for the VPN engine
IPAM, keys, config rendering, interface sync and peer status

Run with:
    pytest tests/test_wireguard.py -v
"""

import base64
import os
import stat
from types import SimpleNamespace

import pytest

from conftest import FakeHost, run
from meshgate.config import TunnelInterfaceSettings
from meshgate.core.errors import AllocationExhausted, InvalidNode, ValidationFailed
from meshgate.wireguard.config_builder import WireGuardConfigBuilder
from meshgate.wireguard.ipam import IPAMService
from meshgate.wireguard.keys import generate_keypair, public_key_from_private
from meshgate.wireguard.manager import WireGuardManager
from meshgate.wireguard.peer_stats import PeerStats, parse_dump


def make_node(**overrides):
    node = SimpleNamespace(
        id=2,
        name="laptop",
        address="10.8.0.2",
        wg_interface="wg0",
        public_key="PUB-laptop",
        private_key="PRIV-laptop",
        is_gateway=False,
        is_local=False,
        allow_internet=False,
        enabled=True,
        gateway_networks=[],
    )
    for key, value in overrides.items():
        setattr(node, key, value)
    return node


class TestIPAM:
    """Tests for tunnel address allocation"""

    @pytest.fixture
    def ipam(self):
        return IPAMService([TunnelInterfaceSettings(name="wg0", subnet="10.8.0.0/29")])

    def test_server_address_is_first_host(self, ipam):
        assert ipam.server_address("wg0") == "10.8.0.1"

    def test_allocates_lowest_free(self, ipam):
        assert ipam.allocate("wg0", []) == "10.8.0.2"
        assert ipam.allocate("wg0", ["10.8.0.2", "10.8.0.4"]) == "10.8.0.3"

    def test_reserved_addresses_never_allocated(self, ipam):
        assert ipam.reserved("wg0") == {"10.8.0.0", "10.8.0.7", "10.8.0.1"}

    def test_exhaustion(self, ipam):
        used = [f"10.8.0.{i}" for i in range(2, 7)]
        with pytest.raises(AllocationExhausted):
            ipam.allocate("wg0", used)

    def test_validate_ip_outside_network(self, ipam):
        valid, message = ipam.validate_ip("wg0", "10.9.0.2")
        assert not valid
        assert "not in network" in message

    def test_validate_ip_reserved(self, ipam):
        valid, _ = ipam.validate_ip("wg0", "10.8.0.1")
        assert not valid

    def test_validate_ip_normalizes_host_prefix(self, ipam):
        assert ipam.validate_ip("wg0", "10.8.0.2/32") == (True, "10.8.0.2")
        assert ipam.validate_ip("wg0", " 10.8.0.3 ") == (True, "10.8.0.3")

    def test_validate_ip_rejects_network_prefix(self, ipam):
        valid, message = ipam.validate_ip("wg0", "10.8.0.2/24")
        assert not valid
        assert "/32" in message

    def test_unknown_interface(self, ipam):
        with pytest.raises(ValueError):
            ipam.network("wg9")


class TestKeys:
    """Tests for X25519 keypairs"""

    def test_keypair_is_base64_32_bytes(self):
        public_key, private_key = generate_keypair()
        assert len(base64.b64decode(public_key)) == 32
        assert len(base64.b64decode(private_key)) == 32
        assert len(public_key) == 44

    def test_public_key_derivation(self):
        public_key, private_key = generate_keypair()
        assert public_key_from_private(private_key) == public_key

    def test_keypairs_are_unique(self):
        assert generate_keypair() != generate_keypair()


class TestConfigBuilder:
    """Tests for wg-quick rendering"""

    def test_client_config_exact_text(self):
        builder = WireGuardConfigBuilder()
        config = builder.build_client_config(
            node=make_node(),
            server_public_key="PUB-server",
            endpoint="vpn.example.com:51820",
            allowed_ips=["10.8.0.0/24", "192.168.1.0/24"],
            dns=["1.1.1.1"],
            keepalive=25,
        )

        assert config == (
            "[Interface]\n"
            "PrivateKey = PRIV-laptop\n"
            "Address = 10.8.0.2/32\n"
            "DNS = 1.1.1.1\n"
            "\n"
            "[Peer]\n"
            "PublicKey = PUB-server\n"
            "AllowedIPs = 10.8.0.0/24, 192.168.1.0/24\n"
            "Endpoint = vpn.example.com:51820\n"
            "PersistentKeepalive = 25\n"
        )

    def test_server_config_skips_local_disabled_and_keyless(self):
        builder = WireGuardConfigBuilder()
        nodes = [
            make_node(id=1, is_local=True, public_key=None, address="10.8.0.1"),
            make_node(id=2, public_key="PUB-a"),
            make_node(id=3, public_key="PUB-b", enabled=False, address="10.8.0.3"),
            make_node(
                id=4, public_key="PUB-gw", address="10.8.0.4", is_gateway=True,
                gateway_networks=[SimpleNamespace(subnet="192.168.10.0/24")],
            ),
        ]

        config = builder.build_server_config("10.8.0.1/24", "PRIV-server", 51820, nodes)

        assert "ListenPort = 51820" in config
        assert config.count("[Peer]") == 2
        assert "PUB-b" not in config
        assert "AllowedIPs = 10.8.0.2/32\n" in config
        assert "AllowedIPs = 10.8.0.4/32, 192.168.10.0/24\n" in config

    def test_write_config_mode_and_backup(self, tmp_path):
        builder = WireGuardConfigBuilder()
        path = tmp_path / "wg0.conf"

        builder.write_config("first\n", path)
        builder.write_config("second\n", path)

        assert path.read_text() == "second\n"
        assert (tmp_path / "wg0.conf.bak").read_text() == "first\n"
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


class TestWireGuardManager:
    """Tests for interface sync through the fake host"""

    def test_brings_interface_up_when_down(self, tmp_path):
        host = FakeHost()
        manager = WireGuardManager("wg0", str(tmp_path), runner=host)
        manager.config_file.write_text("[Interface]\n")

        run(manager.sync_config())

        assert "wg0" in host.up
        assert host.commands("wg-quick up")
        assert host.syncs == 0

    def test_syncconf_when_up(self, tmp_path):
        host = FakeHost()
        host.up.add("wg0")
        manager = WireGuardManager("wg0", str(tmp_path), runner=host)
        manager.config_file.write_text("[Interface]\n")

        run(manager.sync_config())

        assert host.commands("wg-quick strip")
        assert host.syncs == 1
        assert not host.commands("wg-quick up")

    def test_dump_none_when_down(self, tmp_path):
        manager = WireGuardManager("wg0", str(tmp_path), runner=FakeHost())
        assert run(manager.dump()) is None


class TestPeerStats:
    """Tests for dump parsing and probing"""

    DUMP = (
        "privkey\tpubkey\t51820\toff\n"
        "PUB-a\t(none)\t203.0.113.5:40000\t10.8.0.2/32\t1000\t500\t700\toff\n"
        "PUB-b\t(none)\t(none)\t10.8.0.3/32\t0\t0\t0\toff\n"
    )

    def test_parse_dump(self):
        peers = parse_dump(self.DUMP, now=1100)

        assert peers["PUB-a"]["is_connected"] is True
        assert peers["PUB-a"]["endpoint"] == "203.0.113.5:40000"
        assert peers["PUB-a"]["transfer_rx"] == 500
        assert peers["PUB-b"]["is_connected"] is False
        assert peers["PUB-b"]["endpoint"] is None

    def test_stale_handshake_is_disconnected(self):
        peers = parse_dump(self.DUMP, now=1000 + 181)
        assert peers["PUB-a"]["is_connected"] is False

    def test_probe_many(self):
        host = FakeHost()
        host.reachable["10.8.0.2"] = 1.5
        stats = PeerStats(runner=host, timeout=1, concurrency=2)

        results = run(stats.probe_many(["10.8.0.2", "10.8.0.3", "10.8.0.4"]))

        assert results["10.8.0.2"] == (True, 1.5)
        assert results["10.8.0.3"] == (False, None)
        assert len(host.commands("ping")) == 3


class TestWireGuardService:
    """Tests for the VPN engine through the wired components"""

    def test_initialize_creates_local_node_and_server_key(self, components, host, forwarding):
        run(components.vpn.initialize())

        local = components.nodes.get_local()
        assert local.address == "10.8.0.1"
        assert local.private_key is None
        assert components.vpn.managers["wg0"].key_file.exists()
        assert forwarding.is_forwarding_enabled()
        assert "wg0" in host.up

    def test_allocate_honours_requested_address(self, started):
        draft = started.vpn.allocate_client_params(SimpleNamespace(name="a", address="10.8.0.50"))
        assert draft.address == "10.8.0.50"
        assert draft.public_key and draft.private_key

    def test_allocate_rejects_taken_address(self, started):
        with pytest.raises(ValidationFailed):
            started.vpn.allocate_client_params(SimpleNamespace(name="a", address="10.8.0.1"))

    def test_allocate_rejects_unknown_interface(self, started):
        with pytest.raises(ValidationFailed):
            started.vpn.allocate_client_params(SimpleNamespace(name="a", wg_interface="wg7"))

    def test_local_node_has_no_client_config(self, started):
        with pytest.raises(InvalidNode):
            started.vpn.get_client_config(started.nodes.get_local())

    def test_runtime_probe_overrides_handshake(self, started, host):
        node = started.nodes.add({
            "name": "a", "address": "10.8.0.2", "wg_interface": "wg0",
            "public_key": "PUB-a", "private_key": "PRIV-a",
        })
        host.reachable["10.8.0.2"] = 3.2

        infos = run(started.vpn.get_runtime_info([started.nodes.get_local(), node], probe=True))

        local_info, node_info = infos
        assert local_info.connected is True
        assert node_info.connected is True
        assert node_info.latency_ms == 3.2
