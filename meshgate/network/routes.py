"""
Routing Synchronizer

Thin wrapper over the host route table (`ip route`). No cache, no batching:
every call is one synchronous kernel mutation issued as an async subprocess.
"""

import ipaddress
import logging
from typing import List

from meshgate.core.errors import CommandError, RouteSyncFailed
from meshgate.core.shell import CommandRunner, run_command

logger = logging.getLogger(__name__)

# iproute2 messages meaning "already in the desired state"
_ALREADY_PRESENT = "File exists"
_ALREADY_ABSENT = "No such process"


class RouteManager:
    """
    Adds and removes routes for gateway subnets
    """

    def __init__(self, runner: CommandRunner = run_command, timeout: float = 10):
        self._run = runner
        self.timeout = timeout

    @staticmethod
    def _normalize(subnet: str) -> str:
        try:
            return str(ipaddress.ip_network(subnet, strict=False))
        except ValueError as e:
            raise RouteSyncFailed(f"Invalid subnet {subnet!r}: {e}")

    async def add_route(self, subnet: str, next_hop: str, iface: str) -> None:
        """
        ip route add <subnet> via <next_hop> dev <iface>

        Adding a route that already exists is a no-op.
        """
        subnet = self._normalize(subnet)
        try:
            await self._run(
                ["ip", "route", "add", subnet, "via", next_hop, "dev", iface],
                timeout=self.timeout,
            )
        except CommandError as e:
            if _ALREADY_PRESENT in e.stderr:
                logger.debug(f"Route {subnet} via {next_hop} already present")
                return
            logger.error(f"Failed to add route {subnet} via {next_hop} dev {iface}: {e.stderr.strip()}")
            raise RouteSyncFailed(f"Unable to add route {subnet} via {next_hop}: {e.stderr.strip()}")

        logger.info(f"Added route {subnet} via {next_hop} dev {iface}")

    async def del_route(self, subnet: str, next_hop: str) -> None:
        """
        ip route del <subnet> via <next_hop>

        Deleting a route that is not present is a no-op.
        """
        subnet = self._normalize(subnet)
        try:
            await self._run(
                ["ip", "route", "del", subnet, "via", next_hop],
                timeout=self.timeout,
            )
        except CommandError as e:
            if _ALREADY_ABSENT in e.stderr:
                logger.debug(f"Route {subnet} via {next_hop} already absent")
                return
            logger.error(f"Failed to delete route {subnet} via {next_hop}: {e.stderr.strip()}")
            raise RouteSyncFailed(f"Unable to delete route {subnet} via {next_hop}: {e.stderr.strip()}")

        logger.info(f"Removed route {subnet} via {next_hop}")

    async def list_routes(self, iface: str) -> List[dict]:
        """
        Routes bound to an interface

        Returns:
            List of dicts with subnet and next_hop (None for direct routes)
        """
        try:
            result = await self._run(["ip", "route", "show", "dev", iface], timeout=self.timeout)
        except CommandError as e:
            raise RouteSyncFailed(f"Unable to list routes on {iface}: {e.stderr.strip()}")

        routes = []
        for line in result.stdout.strip().split("\n"):
            parts = line.split()
            if not parts:
                continue
            next_hop = parts[parts.index("via") + 1] if "via" in parts else None
            routes.append({"subnet": parts[0], "next_hop": next_hop})

        return routes
