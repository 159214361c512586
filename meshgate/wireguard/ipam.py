# meshgate/wireguard/ipam.py
"""
IP Address Management (IPAM) for tunnel interfaces
"""

import ipaddress
import logging
from typing import Dict, Iterable, Tuple

from meshgate.config import TunnelInterfaceSettings
from meshgate.core.errors import AllocationExhausted

logger = logging.getLogger(__name__)


class IPAMService:
    """
    Allocates tunnel addresses per interface

    Reserved addresses: network, broadcast and the server address (first host).
    """

    def __init__(self, interfaces: Iterable[TunnelInterfaceSettings]):
        self._networks: Dict[str, ipaddress.IPv4Network] = {}
        for iface in interfaces:
            self._networks[iface.name] = ipaddress.IPv4Network(iface.subnet, strict=False)
            logger.info(f"IPAM initialized for {iface.name} with network {iface.subnet}")

    def network(self, wg_interface: str) -> ipaddress.IPv4Network:
        try:
            return self._networks[wg_interface]
        except KeyError:
            raise ValueError(f"Unknown tunnel interface: {wg_interface}")

    def server_address(self, wg_interface: str) -> str:
        """First usable host, held by the local node"""
        return str(next(self.network(wg_interface).hosts()))

    def reserved(self, wg_interface: str) -> set:
        network = self.network(wg_interface)
        return {
            str(network.network_address),
            str(network.broadcast_address),
            self.server_address(wg_interface),
        }

    def allocate(self, wg_interface: str, used: Iterable[str]) -> str:
        """
        Lowest free host address on the interface

        Raises:
            AllocationExhausted: If no address is free
        """
        used_ips = {ip.split("/")[0] for ip in used}
        reserved = self.reserved(wg_interface)

        for ip in self.network(wg_interface).hosts():
            ip_str = str(ip)
            if ip_str not in used_ips and ip_str not in reserved:
                logger.debug(f"Allocated {ip_str} on {wg_interface}")
                return ip_str

        logger.error(f"IP pool exhausted on {wg_interface}")
        raise AllocationExhausted(f"No free tunnel address on {wg_interface}")

    @staticmethod
    def normalize_address(ip: str) -> str:
        """
        '10.8.0.2' or '10.8.0.2/32' -> '10.8.0.2'

        Raises:
            ValueError: Not an IPv4 address, or a prefix other than /32
        """
        iface = ipaddress.IPv4Interface(str(ip).strip())
        if iface.network.prefixlen != 32:
            raise ValueError(f"Tunnel address must be a single host (/32): {ip}")
        return str(iface.ip)

    def validate_ip(self, wg_interface: str, ip: str) -> Tuple[bool, str]:
        """
        Validate a requested address for the interface

        Returns:
            Tuple of (is_valid, normalized address or error message)
        """
        try:
            address = self.normalize_address(ip)
        except ValueError as e:
            return False, f"Invalid IP format: {e}"

        if ipaddress.IPv4Address(address) not in self.network(wg_interface):
            return False, f"IP {address} is not in network {self.network(wg_interface)}"

        if address in self.reserved(wg_interface):
            return False, f"IP {address} is reserved"

        return True, address
