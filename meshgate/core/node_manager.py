# meshgate/core/node_manager.py
"""
Node Manager (Orchestrator)

Every node mutation follows the same order:
    registry write -> VPN apply -> gateway routes -> service registry rebuild

Updates apply the tunnel once more after the routes so peers and routes
agree on the final network set.

The registry write is authoritative. Reconciliation steps that fail after it
do not undo it; they are reported back as warnings and repaired by the next
successful apply.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

from meshgate.database.models import AccessToken, Node
from meshgate.database.repositories import NodeRepository
from meshgate.network.routes import RouteManager
from meshgate.wireguard.service import NodeInfo, WireGuardService

from .errors import (
    Immutable, NotFound, ReconciliationFailed, RouteSyncFailed, ValidationFailed,
)
from .http_services import HttpServicesService
from .tcp_services import TcpServicesService
from .tokens import TokenIssuer
from .validators import normalize_subnet, subnet_strings, validate_node_fields

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "is_gateway", "allow_internet", "enabled")


@dataclass
class NodeResult:
    """Outcome of a node mutation"""
    node: Node
    token: Optional[str] = None  # plain token, only when one was issued
    warnings: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


def _normalize_networks(networks: Optional[List[str]]) -> List[str]:
    result = []
    for network in networks or []:
        subnet = normalize_subnet(network)
        if subnet not in result:
            result.append(subnet)
    return result


class NodeManager:
    """
    Coordinates the node registry with the VPN, routing and proxy layers
    """

    def __init__(
        self,
        nodes: NodeRepository,
        vpn: WireGuardService,
        routes: RouteManager,
        tokens: TokenIssuer,
        http_services: HttpServicesService,
        tcp_services: TcpServicesService,
    ):
        self.nodes = nodes
        self.vpn = vpn
        self.routes = routes
        self.tokens = tokens
        self.http_services = http_services
        self.tcp_services = tcp_services
        self._lock = asyncio.Lock()

    # ==================== Reads ====================

    def get_node(self, node_id: int) -> Node:
        node = self.nodes.get(node_id)
        if node is None:
            raise NotFound(f"Node {node_id} not found")
        return node

    def list_nodes(
        self,
        is_gateway: Optional[bool] = None,
        enabled: Optional[bool] = None,
        wg_interface: Optional[str] = None,
        name: Optional[str] = None,
        limit: Optional[int] = None,
        page: int = 1,
    ) -> Tuple[List[Node], int]:
        """
        Filtered, paginated listing

        Returns:
            Tuple of (nodes on the page, total matching)
        """
        offset = (max(page, 1) - 1) * limit if limit else 0
        return self.nodes.find(
            is_gateway=is_gateway,
            enabled=enabled,
            wg_interface=wg_interface,
            name=name,
            limit=limit,
            offset=offset,
        )

    async def get_nodes_runtime(
        self,
        nodes: Optional[List[Node]] = None,
        wg_interface: Optional[str] = None,
        probe: bool = False,
    ) -> List[NodeInfo]:
        if nodes is None:
            nodes = self.nodes.get_all()
        return await self.vpn.get_runtime_info(nodes, wg_interface=wg_interface, probe=probe)

    async def get_node_info(self, node_id: int, probe: bool = False) -> NodeInfo:
        return await self.vpn.get_node_runtime_info(self.get_node(node_id), probe=probe)

    def get_node_config(self, node_id: int) -> str:
        """
        Raises:
            NotFound: Unknown node
            InvalidNode: Local node has no client config
        """
        return self.vpn.get_client_config(self.get_node(node_id))

    # ==================== Reconciliation helpers ====================

    async def _apply_vpn(self, warnings: List[str]) -> None:
        try:
            await self.vpn.apply_configuration()
        except ReconciliationFailed as e:
            logger.warning(f"VPN apply failed, registry kept: {e.message}")
            warnings.append(e.message)

    async def _add_routes(self, node: Node, warnings: List[str]) -> None:
        for network in node.gateway_networks:
            try:
                await self.routes.add_route(network.subnet, node.address, node.wg_interface)
            except RouteSyncFailed as e:
                warnings.append(e.message)

    async def _remove_routes(self, node: Node, warnings: List[str]) -> None:
        for network in node.gateway_networks:
            try:
                await self.routes.del_route(network.subnet, node.address)
            except RouteSyncFailed as e:
                warnings.append(e.message)

    async def _refresh_services(self, warnings: List[str]) -> None:
        for registry in (self.http_services, self.tcp_services):
            try:
                await registry.initialize()
            except ReconciliationFailed as e:
                logger.warning(f"{registry.kind} service rebuild failed: {e.message}")
                warnings.append(e.message)

    def _get_mutable(self, node_id: int) -> Node:
        node = self.get_node(node_id)
        if node.is_local:
            raise Immutable("Local node can't be modified")
        return node

    # ==================== Mutations ====================

    async def create_node(self, request: Any) -> NodeResult:
        """
        Register a node, bring it into the tunnel and issue its first token

        Args:
            request: Object with name and optional address, wg_interface,
                is_gateway, allow_internet, enabled, gateway_networks

        Raises:
            ValidationFailed: Bad payload or requested address unusable
            AllocationExhausted: No free address on the interface
        """
        if getattr(request, "is_local", False):
            raise ValidationFailed.single("is_local", "The local node is managed by the controller")

        networks = subnet_strings(getattr(request, "gateway_networks", None))
        errors = validate_node_fields({
            "name": request.name,
            "is_gateway": getattr(request, "is_gateway", False),
            "gateway_networks": networks,
        })
        if errors:
            raise ValidationFailed(errors)

        async with self._lock:
            draft = self.vpn.allocate_client_params(request)
            node = self.nodes.add(
                draft.to_fields(),
                _normalize_networks(networks) if draft.is_gateway else [],
            )
            logger.info(f"Created node {node.id} ({node.name}) at {node.address} on {node.wg_interface}")

            warnings: List[str] = []
            await self._apply_vpn(warnings)

            if node.is_gateway and node.enabled:
                await self._add_routes(node, warnings)

            _, token = self.tokens.issue(node.id)

        return NodeResult(node=node, token=token, warnings=warnings)

    async def update_node(self, node_id: int, changes: Dict[str, Any]) -> NodeResult:
        """
        Update flags, name or gateway networks

        Existing routes are withdrawn before the write and re-added from the
        new state after it. The tunnel is reconciled on both sides of the
        route change.

        Raises:
            NotFound: Unknown node
            Immutable: Local node
            ValidationFailed: Networks on a non-gateway or invalid CIDR
        """
        async with self._lock:
            node = self._get_mutable(node_id)

            is_gateway = changes.get("is_gateway", node.is_gateway)
            networks = subnet_strings(changes.get("gateway_networks"))
            errors = validate_node_fields({
                **{k: v for k, v in changes.items() if k == "name"},
                "is_gateway": is_gateway,
                "gateway_networks": networks,
            })
            if errors:
                raise ValidationFailed(errors)

            fields = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS and v is not None}
            if not is_gateway:
                new_networks = []
            elif networks is not None:
                new_networks = _normalize_networks(networks)
            else:
                new_networks = None

            warnings: List[str] = []
            if node.is_gateway:
                await self._remove_routes(node, warnings)

            updated = self.nodes.update(node_id, fields, new_networks)
            logger.info(f"Updated node {node_id}: {sorted(fields)}")

            await self._apply_vpn(warnings)

            if updated.is_gateway and updated.enabled:
                await self._add_routes(updated, warnings)

            # peers re-synced once routes match the new network set
            await self._apply_vpn(warnings)

            if updated.enabled != node.enabled:
                await self._refresh_services(warnings)

        return NodeResult(node=updated, warnings=warnings)

    async def enable_node(self, node_id: int) -> NodeResult:
        return await self.update_node(node_id, {"enabled": True})

    async def disable_node(self, node_id: int) -> NodeResult:
        return await self.update_node(node_id, {"enabled": False})

    async def delete_node(self, node_id: int) -> List[str]:
        """
        Remove a node together with its routes, tokens, networks and services

        Returns:
            Warnings from reconciliation steps that failed after the delete

        Raises:
            NotFound: Unknown node
            Immutable: Local node
        """
        async with self._lock:
            node = self._get_mutable(node_id)

            warnings: List[str] = []
            if node.is_gateway:
                await self._remove_routes(node, warnings)

            self.tokens.revoke_all(node_id)
            self.nodes.delete(node_id)
            logger.info(f"Deleted node {node_id} ({node.name})")

            await self._apply_vpn(warnings)
            await self._refresh_services(warnings)

        return warnings

    async def regenerate_node_keys(self, node_id: int) -> NodeResult:
        """
        Rotate keypair and tunnel address, keeping the node id

        All existing tokens are revoked and one new default token is issued.
        Gateway routes move to the new address.

        Raises:
            NotFound: Unknown node
            Immutable: Local node
            AllocationExhausted: No other free address on the interface
        """
        async with self._lock:
            node = self._get_mutable(node_id)

            draft = self.vpn.allocate_client_params(SimpleNamespace(
                name=node.name,
                wg_interface=node.wg_interface,
                is_gateway=node.is_gateway,
                allow_internet=node.allow_internet,
                enabled=node.enabled,
            ))

            warnings: List[str] = []
            if node.is_gateway:
                await self._remove_routes(node, warnings)

            updated = self.nodes.update(node_id, {
                "address": draft.address,
                "public_key": draft.public_key,
                "private_key": draft.private_key,
            })
            logger.info(f"Regenerated keys for node {node_id}: {node.address} -> {updated.address}")

            self.tokens.revoke_all(node_id)
            _, token = self.tokens.issue(node_id)

            await self._apply_vpn(warnings)

            if updated.is_gateway and updated.enabled:
                await self._add_routes(updated, warnings)

            # services without backend_host point at the old address
            await self._refresh_services(warnings)

        return NodeResult(node=updated, token=token, warnings=warnings)

    # ==================== Tokens ====================

    def create_node_token(self, node_id: int, name: str = "default") -> Tuple[AccessToken, str]:
        self.get_node(node_id)
        return self.tokens.issue(node_id, name)

    def list_node_tokens(self, node_id: int) -> List[AccessToken]:
        self.get_node(node_id)
        return self.tokens.list(node_id)

    def revoke_node_token(self, node_id: int, token_id: int) -> None:
        self.get_node(node_id)
        self.tokens.revoke(node_id, token_id)

    # ==================== Startup ====================

    async def initialize(self) -> None:
        """
        Restore routes for every enabled gateway

        Raises:
            RouteSyncFailed: One or more routes could not be added
        """
        failures: List[str] = []
        gateways = [n for n in self.nodes.list_gateways() if n.enabled]

        for node in gateways:
            await self._add_routes(node, failures)

        logger.info(f"Restored routes for {len(gateways)} gateway nodes")
        if failures:
            raise RouteSyncFailed("; ".join(failures))
