# meshgate/wireguard/service.py
"""
WireGuard Service (VPN Engine)

Owns the managed tunnel interfaces:
- Keypair generation and tunnel address allocation for new nodes
- Full-state reconciliation of every interface from the node registry
- Client config rendering for downloads
- Live per-peer status
"""

import logging
import os
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from meshgate.config import Settings
from meshgate.core.coalesce import CoalescingRunner
from meshgate.core.errors import CommandError, InvalidNode, ReconciliationFailed, ValidationFailed
from meshgate.core.shell import CommandRunner, run_command
from meshgate.core.validators import subnet_strings
from meshgate.database.repositories import NodeRepository
from meshgate.network.forwarding import ForwardingManager

from .config_builder import WireGuardConfigBuilder
from .ipam import IPAMService
from .keys import generate_keypair, public_key_from_private
from .manager import WireGuardManager
from .peer_stats import PeerStats, parse_dump

logger = logging.getLogger(__name__)

LOCAL_NODE_NAME = "local"


@dataclass
class NodeDraft:
    """Node fields ready to persist"""
    name: str
    address: str
    wg_interface: str
    public_key: Optional[str] = None
    private_key: Optional[str] = None
    is_gateway: bool = False
    is_local: bool = False
    allow_internet: bool = False
    enabled: bool = True
    gateway_networks: List[str] = field(default_factory=list)

    def to_fields(self) -> Dict[str, Any]:
        fields = asdict(self)
        fields.pop("gateway_networks")
        return fields


@dataclass
class NodeInfo:
    """Runtime view of a node, recomputed on every query"""
    node: Any
    connected: bool = False
    last_handshake: Optional[datetime] = None
    rx_bytes: int = 0
    tx_bytes: int = 0
    latency_ms: Optional[float] = None
    endpoint: Optional[str] = None


class WireGuardService:
    """
    VPN engine over one or more WireGuard interfaces
    """

    def __init__(
        self,
        settings: Settings,
        node_repository: NodeRepository,
        runner: CommandRunner = run_command,
        forwarding: Optional[ForwardingManager] = None,
    ):
        self.settings = settings
        self.nodes = node_repository
        self.ipam = IPAMService(settings.VPN_INTERFACES)
        self.builder = WireGuardConfigBuilder()
        self.forwarding = forwarding
        self.managers: Dict[str, WireGuardManager] = {
            iface.name: WireGuardManager(
                interface=iface.name,
                config_dir=settings.VPN_CONFIG_DIR,
                runner=runner,
                timeout=settings.COMMAND_TIMEOUT,
            )
            for iface in settings.VPN_INTERFACES
        }
        self.peer_stats = PeerStats(
            runner=runner,
            timeout=settings.PROBE_TIMEOUT,
            concurrency=settings.PROBE_CONCURRENCY,
        )
        self._apply_runner = CoalescingRunner(self._apply_configuration, name="wireguard-apply")
        self._server_keys: Dict[str, str] = {}

    # === Keys ===

    @staticmethod
    def generate_keypair() -> Tuple[str, str]:
        """Fresh (public_key, private_key) pair"""
        return generate_keypair()

    def _server_private_key(self, wg_interface: str) -> str:
        """Host identity for an interface, created on first use"""
        if wg_interface in self._server_keys:
            return self._server_keys[wg_interface]

        key_file = self.managers[wg_interface].key_file
        if key_file.exists():
            private_key = key_file.read_text().strip()
        else:
            _, private_key = generate_keypair()
            key_file.parent.mkdir(parents=True, exist_ok=True)
            key_file.write_text(private_key + "\n")
            os.chmod(key_file, 0o600)
            logger.info(f"Generated server key for {wg_interface} at {key_file}")

        self._server_keys[wg_interface] = private_key
        return private_key

    def server_public_key(self, wg_interface: str) -> str:
        return public_key_from_private(self._server_private_key(wg_interface))

    def _resolve_interface(self, wg_interface: Optional[str]) -> str:
        name = wg_interface or self.settings.VPN_DEFAULT_INTERFACE
        if name not in self.managers:
            raise ValidationFailed.single("wg_interface", f"Unknown tunnel interface: {name}")
        return name

    # === Allocation ===

    def allocate_client_params(self, request: Any, wg_interface: Optional[str] = None) -> NodeDraft:
        """
        Derive a persistable node from a create request

        A requested address is honoured if it is free; otherwise the lowest
        free address on the interface is taken.

        Raises:
            ValidationFailed: Requested address unusable, or unknown interface
            AllocationExhausted: Interface has no free address
        """
        name = self._resolve_interface(wg_interface or getattr(request, "wg_interface", None))
        is_local = bool(getattr(request, "is_local", False))
        used = self.nodes.used_addresses(name)

        requested = getattr(request, "address", None)
        if requested:
            valid, result = self.ipam.validate_ip(name, requested)
            if not valid:
                raise ValidationFailed.single("address", result)
            address = result
            if address in {ip.split("/")[0] for ip in used}:
                raise ValidationFailed.single("address", f"IP {address} is already in use on {name}")
        else:
            address = self.ipam.allocate(name, used)

        public_key, private_key = (None, None) if is_local else generate_keypair()
        is_gateway = bool(getattr(request, "is_gateway", False))

        return NodeDraft(
            name=request.name,
            address=address,
            wg_interface=name,
            public_key=public_key,
            private_key=private_key,
            is_gateway=is_gateway,
            is_local=is_local,
            allow_internet=bool(getattr(request, "allow_internet", False)),
            enabled=bool(getattr(request, "enabled", True)),
            gateway_networks=(subnet_strings(getattr(request, "gateway_networks", None)) or []) if is_gateway else [],
        )

    # === Reconciliation ===

    async def initialize(self) -> None:
        """
        Startup: host keys, the local node, forwarding, then one apply
        """
        for name in self.managers:
            self._server_private_key(name)

        if self.nodes.get_local() is None:
            default = self._resolve_interface(None)
            local = self.nodes.add(NodeDraft(
                name=LOCAL_NODE_NAME,
                address=self.ipam.server_address(default),
                wg_interface=default,
                is_local=True,
            ).to_fields())
            logger.info(f"Created local node {local.address} on {default}")

        if self.forwarding and self.settings.VPN_ENABLE_FORWARDING:
            try:
                self.forwarding.enable_ip_forward()
            except OSError as e:
                logger.warning(f"Could not enable IP forwarding: {e}")

        await self.apply_configuration()

    async def apply_configuration(self) -> None:
        """
        Rebuild and apply every interface from the registry

        Concurrent callers collapse onto at most one in-flight apply plus one
        follow-up that reads the latest registry state.

        Raises:
            ReconciliationFailed: One or more interfaces could not be applied
        """
        await self._apply_runner.run()

    async def _apply_configuration(self) -> None:
        failures = []

        for name, manager in self.managers.items():
            iface = self.settings.get_interface(name)
            network = self.ipam.network(name)

            try:
                config = self.builder.build_server_config(
                    address=f"{self.ipam.server_address(name)}/{network.prefixlen}",
                    private_key=self._server_private_key(name),
                    listen_port=iface.listen_port,
                    nodes=self.nodes.list_by_interface(name),
                    mtu=self.settings.VPN_MTU,
                )
                self.builder.write_config(config, manager.config_file)
                await manager.sync_config()
            except (CommandError, OSError) as e:
                logger.error(f"WireGuard apply failed on {name}: {e}")
                failures.append(f"{name}: {e}")

        if failures:
            raise ReconciliationFailed("WireGuard apply failed: " + "; ".join(failures))

    # === Client config ===

    def get_client_config(self, node: Any) -> str:
        """
        wg-quick file for a remote node

        Raises:
            InvalidNode: For the local node
        """
        if node.is_local or not node.private_key:
            raise InvalidNode("Local node doesn't have wireguard config")

        name = self._resolve_interface(node.wg_interface)
        iface = self.settings.get_interface(name)

        allowed_ips = [str(self.ipam.network(name))]
        for other in self.nodes.list_by_interface(name):
            if other.id != node.id and other.is_gateway and other.enabled:
                allowed_ips.extend(n.subnet for n in other.gateway_networks)
        if node.allow_internet:
            allowed_ips.append("0.0.0.0/0")

        return self.builder.build_client_config(
            node=node,
            server_public_key=self.server_public_key(name),
            endpoint=f"{self.settings.VPN_PUBLIC_HOST}:{iface.listen_port}",
            allowed_ips=allowed_ips,
            dns=self.settings.VPN_DNS or None,
            mtu=self.settings.VPN_MTU,
            keepalive=self.settings.VPN_KEEPALIVE,
        )

    # === Runtime ===

    async def get_runtime_info(
        self,
        nodes: List[Any],
        wg_interface: Optional[str] = None,
        probe: bool = False,
    ) -> List[NodeInfo]:
        """
        Live status for the given nodes

        Args:
            nodes: Registry records
            wg_interface: Only report nodes on this interface
            probe: Also ping each remote node (bounded concurrency)
        """
        if wg_interface:
            nodes = [n for n in nodes if n.wg_interface == wg_interface]

        stats: Dict[str, dict] = {}
        up_interfaces = set()
        for name in sorted({n.wg_interface for n in nodes}):
            manager = self.managers.get(name)
            if manager is None:
                continue
            output = await manager.dump()
            if output is not None:
                up_interfaces.add(name)
                stats.update(parse_dump(output))

        probes = {}
        if probe:
            probes = await self.peer_stats.probe_many(
                [n.address for n in nodes if not n.is_local and n.enabled]
            )

        infos = []
        for node in nodes:
            if node.is_local:
                infos.append(NodeInfo(node=node, connected=node.wg_interface in up_interfaces))
                continue

            peer = stats.get(node.public_key) if node.public_key else None
            info = NodeInfo(node=node)
            if peer:
                info.rx_bytes = peer["transfer_rx"]
                info.tx_bytes = peer["transfer_tx"]
                info.endpoint = peer["endpoint"]
                info.connected = peer["is_connected"]
                if peer["latest_handshake"]:
                    info.last_handshake = datetime.fromtimestamp(peer["latest_handshake"], timezone.utc).replace(tzinfo=None)

            if probe:
                info.connected, info.latency_ms = probes.get(node.address, (False, None))

            infos.append(info)

        return infos

    async def get_node_runtime_info(self, node: Any, probe: bool = False) -> NodeInfo:
        infos = await self.get_runtime_info([node], probe=probe)
        return infos[0]
