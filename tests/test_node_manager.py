# tests/test_node_manager.py
"""
Tests for node orchestration against the fake host

Covers the registry / tunnel / route / proxy consistency rules:
routes always equal the enabled gateway networks, key rotation revokes
tokens, deletion cascades, and the local node is immutable.

Run with:
    pytest tests/test_node_manager.py -v
"""

import asyncio
from datetime import datetime
from types import SimpleNamespace

import pytest

from conftest import run
from meshgate.core.errors import Immutable, InvalidNode, NotFound, ValidationFailed
from meshgate.schemas import NodeCreate


def expected_routes(components):
    """Union of enabled gateway networks, each via its node's address"""
    return {
        (network.subnet, node.address)
        for node in components.nodes.get_all()
        if node.is_gateway and node.enabled
        for network in node.gateway_networks
    }


def create(components, **fields):
    return run(components.node_manager.create_node(NodeCreate(**fields)))


class TestCreateNode:
    """Tests for node creation"""

    def test_create_allocates_address_and_token(self, started):
        result = create(started, name="laptop")

        assert result.node.address == "10.8.0.2"
        assert result.node.public_key
        assert result.token
        assert result.warnings == []
        assert started.tokens.verify(result.token).node_id == result.node.id

    def test_create_adds_peer_to_tunnel_config(self, started):
        result = create(started, name="laptop")

        config = started.vpn.managers["wg0"].config_file.read_text()
        assert f"PublicKey = {result.node.public_key}" in config
        assert "AllowedIPs = 10.8.0.2/32" in config

    def test_gateway_adds_routes(self, started, host):
        result = create(started, name="office", is_gateway=True, gateway_networks=["192.168.1.0/24"])

        assert host.route_table() == {("192.168.1.0/24", result.node.address)}

    def test_client_config_includes_gateway_subnets(self, started):
        laptop = create(started, name="laptop", allow_internet=True).node
        create(started, name="office", is_gateway=True, gateway_networks=["192.168.1.0/24"])

        config = started.node_manager.get_node_config(laptop.id)

        assert "AllowedIPs = 10.8.0.0/24, 192.168.1.0/24, 0.0.0.0/0\n" in config
        assert "Endpoint = vpn.example.com:51820\n" in config
        assert config.endswith("\n")

    def test_networks_on_non_gateway_rejected(self, started):
        with pytest.raises(ValidationFailed):
            create(started, name="laptop", gateway_networks=["192.168.1.0/24"])

        assert started.nodes.find(name="laptop")[1] == 0

    def test_requested_address_is_normalized(self, started):
        result = create(started, name="laptop", address="10.8.0.5/32")

        assert result.node.address == "10.8.0.5"
        config = started.node_manager.get_node_config(result.node.id)
        assert "Address = 10.8.0.5/32\n" in config

    def test_duplicate_address_with_prefix_rejected(self, started):
        first = create(started, name="a").node

        with pytest.raises(ValidationFailed):
            create(started, name="b", address=f"{first.address}/32")

        assert started.nodes.find(name="b")[1] == 0

    def test_local_node_cannot_be_created(self, started):
        with pytest.raises(ValidationFailed):
            run(started.node_manager.create_node(SimpleNamespace(name="x", is_local=True)))

    def test_vpn_failure_is_degraded_success(self, started, host):
        host.fail["wg-quick"] = "wg-quick: failed\n"

        result = create(started, name="laptop")

        assert result.degraded
        assert started.nodes.get(result.node.id) is not None
        assert result.token


class TestRouteConsistency:
    """Routes follow the registry after any sequence of operations"""

    def test_operation_sequence(self, started, host):
        manager = started.node_manager

        a = create(started, name="a", is_gateway=True, gateway_networks=["192.168.1.0/24"]).node
        assert host.route_table() == expected_routes(started)

        b = create(started, name="b", is_gateway=True,
                   gateway_networks=["192.168.2.0/24", "192.168.3.0/24"]).node
        assert host.route_table() == expected_routes(started)

        run(manager.disable_node(a.id))
        assert host.route_table() == expected_routes(started)
        assert ("192.168.1.0/24", a.address) not in host.route_table()

        run(manager.update_node(b.id, {"gateway_networks": ["192.168.4.0/24"]}))
        assert host.route_table() == expected_routes(started)

        run(manager.enable_node(a.id))
        assert host.route_table() == expected_routes(started)

        run(manager.regenerate_node_keys(b.id))
        assert host.route_table() == expected_routes(started)

        run(manager.update_node(b.id, {"is_gateway": False}))
        assert host.route_table() == expected_routes(started)

        run(manager.delete_node(a.id))
        assert host.route_table() == expected_routes(started) == set()

    def test_empty_networks_on_gateway_withdraws_routes(self, started, host):
        node = create(started, name="gw", is_gateway=True, gateway_networks=["192.168.1.0/24"]).node

        result = run(started.node_manager.update_node(node.id, {"is_gateway": True, "gateway_networks": []}))

        assert result.node.is_gateway
        assert result.node.gateway_networks == []
        assert host.route_table() == set()

    def test_update_reconciles_tunnel_after_routes(self, started, host):
        node = create(started, name="gw", is_gateway=True, gateway_networks=["192.168.1.0/24"]).node
        syncs = host.syncs

        run(started.node_manager.update_node(node.id, {"gateway_networks": ["192.168.2.0/24"]}))

        assert host.syncs == syncs + 2
        route_add = max(i for i, c in enumerate(host.calls) if c[:3] == ["ip", "route", "add"])
        last_sync = max(i for i, c in enumerate(host.calls) if c[:2] == ["wg", "syncconf"])
        assert last_sync > route_add

    def test_concurrent_updates_on_one_node(self, started, host):
        manager = started.node_manager
        node = create(started, name="gw", is_gateway=True, gateway_networks=["192.168.1.0/24"]).node

        async def update_concurrently():
            return await asyncio.gather(
                manager.update_node(node.id, {"gateway_networks": ["192.168.4.0/24"]}),
                manager.disable_node(node.id),
                manager.update_node(node.id, {"gateway_networks": ["192.168.5.0/24", "192.168.6.0/24"]}),
                manager.enable_node(node.id),
            )

        results = run(update_concurrently())

        assert all(r.warnings == [] for r in results)
        assert host.route_table() == expected_routes(started)
        assert host.route_table() == {
            ("192.168.5.0/24", node.address),
            ("192.168.6.0/24", node.address),
        }

    def test_disable_enable_restores_routes(self, started, host):
        node = create(started, name="gw", is_gateway=True, gateway_networks=["10.20.0.0/16"]).node
        before = host.route_table()

        run(started.node_manager.disable_node(node.id))
        assert host.route_table() == set()

        run(started.node_manager.enable_node(node.id))
        assert host.route_table() == before

    def test_network_objects_accepted(self, started, host):
        request = SimpleNamespace(
            name="gw", is_gateway=True,
            gateway_networks=[SimpleNamespace(subnet="192.168.1.0/24")],
        )

        node = run(started.node_manager.create_node(request)).node

        assert [n.subnet for n in node.gateway_networks] == ["192.168.1.0/24"]
        assert host.route_table() == {("192.168.1.0/24", node.address)}

    def test_subnet_mappings_accepted(self, started, host):
        node = create(started, name="gw", is_gateway=True,
                      gateway_networks=[{"subnet": "192.168.7.0/24"}]).node

        run(started.node_manager.update_node(node.id, {"gateway_networks": [{"subnet": "192.168.8.0/24"}]}))

        assert host.route_table() == {("192.168.8.0/24", node.address)}

    def test_malformed_network_entry_is_validation_error(self, started):
        with pytest.raises(ValidationFailed):
            run(started.node_manager.create_node(SimpleNamespace(
                name="gw", is_gateway=True, gateway_networks=[{"cidr": "192.168.1.0/24"}],
            )))

    def test_networks_are_normalized(self, started, host):
        node = create(started, name="gw", is_gateway=True, gateway_networks=["10.20.3.4/16"]).node

        assert [n.subnet for n in node.gateway_networks] == ["10.20.0.0/16"]
        assert host.route_table() == {("10.20.0.0/16", node.address)}


class TestRegenerate:
    """Tests for key and address rotation"""

    def test_rotates_keys_and_address_keeps_id(self, started):
        created = create(started, name="laptop")
        old = created.node

        result = run(started.node_manager.regenerate_node_keys(old.id))

        assert result.node.id == old.id
        assert result.node.public_key != old.public_key
        assert result.node.private_key != old.private_key
        assert result.node.address != old.address

    def test_revokes_tokens_and_issues_one_default(self, started):
        created = create(started, name="laptop")
        started.node_manager.create_node_token(created.node.id, "ci")

        result = run(started.node_manager.regenerate_node_keys(created.node.id))

        tokens = started.node_manager.list_node_tokens(created.node.id)
        assert [t.name for t in tokens] == ["default"]
        assert started.tokens.verify(created.token) is None
        assert started.tokens.verify(result.token).node_id == created.node.id

    def test_gateway_routes_move_to_new_address(self, started, host):
        created = create(started, name="gw", is_gateway=True, gateway_networks=["192.168.1.0/24"])

        result = run(started.node_manager.regenerate_node_keys(created.node.id))

        assert host.route_table() == {("192.168.1.0/24", result.node.address)}


class TestDeleteNode:
    """Tests for node deletion"""

    def test_cascades_services_routes_and_tokens(self, started, host):
        node = create(started, name="gw", is_gateway=True, gateway_networks=["192.168.1.0/24"]).node
        run(started.http_services.create({
            "name": "app", "domain": "app.example.com", "backend_port": 8080,
            "node_id": node.id, "ssl": False,
        }))
        run(started.tcp_services.create({"name": "ssh", "backend_port": 22, "node_id": node.id}))

        warnings = run(started.node_manager.delete_node(node.id))

        assert warnings == []
        assert started.nodes.get(node.id) is None
        assert started.http_services.list() == []
        assert started.tcp_services.list() == []
        assert started.tokens.list(node.id) == []
        assert host.route_table() == set()
        assert "app.example.com" not in started.proxy.http_file.read_text()
        assert "listen 32000" not in started.proxy.stream_file.read_text()

    def test_unwritable_proxy_config_reported_as_warning(self, started, tmp_path):
        node = create(started, name="web").node
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory\n")
        started.proxy.config_dir = blocker / "nginx"
        started.proxy.http_file = started.proxy.config_dir / "http.conf"
        started.proxy.stream_file = started.proxy.config_dir / "stream.conf"

        warnings = run(started.node_manager.delete_node(node.id))

        assert warnings
        assert started.nodes.get(node.id) is None

    def test_unknown_node(self, started):
        with pytest.raises(NotFound):
            run(started.node_manager.delete_node(999))


class TestLocalNode:
    """The local node cannot be changed"""

    def test_delete_local(self, started):
        local = started.nodes.get_local()
        with pytest.raises(Immutable):
            run(started.node_manager.delete_node(local.id))

    def test_update_local(self, started):
        local = started.nodes.get_local()
        with pytest.raises(Immutable):
            run(started.node_manager.update_node(local.id, {"name": "renamed"}))

    def test_regenerate_local(self, started):
        local = started.nodes.get_local()
        with pytest.raises(Immutable):
            run(started.node_manager.regenerate_node_keys(local.id))

    def test_local_config(self, started):
        local = started.nodes.get_local()
        with pytest.raises(InvalidNode):
            started.node_manager.get_node_config(local.id)


class TestReads:
    """Tests for listing, runtime and tokens"""

    def test_list_filters_and_pagination(self, started):
        create(started, name="alpha")
        create(started, name="beta", is_gateway=True, gateway_networks=["192.168.9.0/24"])
        create(started, name="alphabet")

        gateways, total = started.node_manager.list_nodes(is_gateway=True)
        assert [n.name for n in gateways] == ["beta"]
        assert total == 1

        page, total = started.node_manager.list_nodes(name="alpha", limit=1, page=2)
        assert [n.name for n in page] == ["alphabet"]
        assert total == 2

    def test_get_unknown_node(self, started):
        with pytest.raises(NotFound):
            started.node_manager.get_node(12345)

    def test_runtime_handshake_without_probe(self, started, host):
        node = create(started, name="laptop").node
        host.dumps["wg0"] = (
            "privkey\tpubkey\t51820\toff\n"
            f"{node.public_key}\t(none)\t203.0.113.9:5555\t10.8.0.2/32\t0\t10\t20\toff\n"
        )

        info = run(started.node_manager.get_node_info(node.id))

        assert info.connected is False
        assert info.last_handshake is None
        assert info.rx_bytes == 10
        assert info.tx_bytes == 20
        assert info.latency_ms is None

    def test_runtime_handshake_time_is_naive_utc(self, started, host):
        node = create(started, name="laptop").node
        host.dumps["wg0"] = (
            "privkey\tpubkey\t51820\toff\n"
            f"{node.public_key}\t(none)\t203.0.113.9:5555\t10.8.0.2/32\t1700000000\t10\t20\toff\n"
        )

        info = run(started.node_manager.get_node_info(node.id))

        assert info.last_handshake == datetime(2023, 11, 14, 22, 13, 20)
        assert info.last_handshake.tzinfo is None

    def test_revoke_token(self, started):
        created = create(started, name="laptop")
        token = started.node_manager.list_node_tokens(created.node.id)[0]

        started.node_manager.revoke_node_token(created.node.id, token.id)

        assert started.node_manager.list_node_tokens(created.node.id) == []
        with pytest.raises(NotFound):
            started.node_manager.revoke_node_token(created.node.id, token.id)
