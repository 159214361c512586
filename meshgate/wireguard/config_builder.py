# meshgate/wireguard/config_builder.py
"""
WireGuard Configuration Builder
Renders wg-quick files for the server interfaces and for node downloads
"""

import os
import logging
from pathlib import Path
from typing import List, Dict, Any, Optional

logger = logging.getLogger(__name__)


class WireGuardConfigBuilder:
    """
    Builds WireGuard configuration files

    Output is INI-style text for wg-quick, with `\\n` line endings and a
    trailing newline so downloads are byte-stable.
    """

    def build_config(
        self,
        address: str,
        private_key: str,
        listen_port: Optional[int] = None,
        dns: Optional[List[str]] = None,
        mtu: Optional[int] = None,
        peers: Optional[List[Dict[str, Any]]] = None,
        post_up: Optional[List[str]] = None,
        post_down: Optional[List[str]] = None,
    ) -> str:
        """
        Build WireGuard configuration string

        Args:
            address: Interface address with CIDR (e.g., "10.8.0.1/24")
            private_key: Base64 private key
            listen_port: UDP port to listen on (server side only)
            dns: List of DNS servers
            mtu: MTU for interface
            peers: List of peer dicts (public_key, allowed_ips, endpoint,
                   persistent_keepalive)
            post_up: Commands to run after interface up
            post_down: Commands to run after interface down

        Returns:
            Configuration string
        """
        lines = ["[Interface]"]
        lines.append(f"PrivateKey = {private_key}")
        lines.append(f"Address = {address}")

        if listen_port:
            lines.append(f"ListenPort = {listen_port}")

        if dns:
            lines.append(f"DNS = {', '.join(dns)}")

        if mtu:
            lines.append(f"MTU = {mtu}")

        for cmd in post_up or []:
            lines.append(f"PostUp = {cmd}")

        for cmd in post_down or []:
            lines.append(f"PostDown = {cmd}")

        for peer in peers or []:
            lines.append("")
            lines.append("[Peer]")
            lines.append(f"PublicKey = {peer['public_key']}")

            allowed_ips = peer.get("allowed_ips", "")
            if isinstance(allowed_ips, list):
                allowed_ips = ", ".join(allowed_ips)
            lines.append(f"AllowedIPs = {allowed_ips}")

            if peer.get("endpoint"):
                lines.append(f"Endpoint = {peer['endpoint']}")

            if peer.get("persistent_keepalive"):
                lines.append(f"PersistentKeepalive = {peer['persistent_keepalive']}")

        return "\n".join(lines) + "\n"

    def build_server_config(
        self,
        address: str,
        private_key: str,
        listen_port: int,
        nodes: List[Any],
        mtu: Optional[int] = None,
    ) -> str:
        """
        Server side of one interface: one [Peer] per enabled remote node

        A gateway peer also owns its subnets, so traffic routed to them
        through the tunnel reaches it.
        """
        peers = []
        for node in nodes:
            if node.is_local or not node.enabled or not node.public_key:
                continue

            allowed_ips = [f"{node.address}/32"]
            if node.is_gateway:
                allowed_ips.extend(n.subnet for n in node.gateway_networks)

            peers.append({
                "public_key": node.public_key,
                "allowed_ips": allowed_ips,
            })

        return self.build_config(
            address=address,
            private_key=private_key,
            listen_port=listen_port,
            mtu=mtu,
            peers=peers,
        )

    def build_client_config(
        self,
        node: Any,
        server_public_key: str,
        endpoint: str,
        allowed_ips: List[str],
        dns: Optional[List[str]] = None,
        mtu: Optional[int] = None,
        keepalive: int = 25,
    ) -> str:
        """Downloadable config for a remote node"""
        return self.build_config(
            address=f"{node.address}/32",
            private_key=node.private_key,
            dns=dns,
            mtu=mtu,
            peers=[{
                "public_key": server_public_key,
                "allowed_ips": allowed_ips,
                "endpoint": endpoint,
                "persistent_keepalive": keepalive,
            }],
        )

    def write_config(self, config: str, path: Path, backup: bool = True) -> None:
        """
        Write configuration to file, atomically and mode 0600

        Args:
            config: Configuration string
            path: Path to write to
            backup: Whether to keep the previous file as .conf.bak
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        if backup and path.exists():
            backup_path = path.with_suffix(".conf.bak")
            backup_path.write_text(path.read_text())
            os.chmod(backup_path, 0o600)

        tmp = path.with_suffix(".conf.tmp")
        tmp.write_text(config)
        os.chmod(tmp, 0o600)
        tmp.replace(path)

        logger.info(f"Wrote WireGuard config to {path}")
