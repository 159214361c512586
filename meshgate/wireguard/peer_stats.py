"""
Peer Statistics

- Handshake times and transfer counters from `wg show <iface> dump`
- Optional reachability probe (one ICMP echo per node)
"""

import asyncio
import logging
import re
from datetime import datetime
from typing import Dict, Optional, Tuple

from meshgate.core.errors import CommandError
from meshgate.core.shell import CommandRunner, run_command

logger = logging.getLogger(__name__)

# Connected if handshake within last 3 minutes
HANDSHAKE_TIMEOUT = 180

_PING_TIME_RE = re.compile(r"time[=<]([\d.]+)\s*ms")


def parse_dump(output: str, now: Optional[int] = None) -> Dict[str, dict]:
    """
    Parse `wg show <iface> dump`

    The first line describes the interface; every other line is a peer:
    public-key, preshared-key, endpoint, allowed-ips, latest-handshake,
    transfer-rx, transfer-tx, persistent-keepalive.

    Returns:
        Dict of peer stats keyed by public key
    """
    now = now if now is not None else int(datetime.utcnow().timestamp())
    peers = {}

    for line in output.strip().split("\n")[1:]:
        parts = line.split("\t")
        if len(parts) < 5:
            continue

        latest_handshake = int(parts[4]) if parts[4] and parts[4] != "0" else 0
        handshake_ago = now - latest_handshake if latest_handshake else None

        peers[parts[0]] = {
            "public_key": parts[0],
            "endpoint": parts[2] if parts[2] != "(none)" else None,
            "allowed_ips": parts[3],
            "latest_handshake": latest_handshake or None,
            "handshake_ago_seconds": handshake_ago,
            "transfer_rx": int(parts[5]) if len(parts) > 5 else 0,
            "transfer_tx": int(parts[6]) if len(parts) > 6 else 0,
            "is_connected": handshake_ago is not None and handshake_ago < HANDSHAKE_TIMEOUT,
        }

    return peers


class PeerStats:
    """
    Reachability probing for tunnel addresses
    """

    def __init__(self, runner: CommandRunner = run_command, timeout: int = 1, concurrency: int = 8):
        """
        Args:
            runner: Async command runner
            timeout: Seconds to wait for the echo reply
            concurrency: Max probes in flight at once
        """
        self._run = runner
        self.timeout = timeout
        self.concurrency = max(1, concurrency)

    async def probe(self, address: str) -> Tuple[bool, Optional[float]]:
        """
        Send one ICMP echo

        Returns:
            Tuple of (reachable, latency in ms or None)
        """
        try:
            result = await self._run(
                ["ping", "-c", "1", "-W", str(self.timeout), address],
                timeout=self.timeout + 2,
                check=False,
            )
        except CommandError as e:
            logger.debug(f"Probe of {address} failed: {e}")
            return False, None

        if not result.ok:
            return False, None

        match = _PING_TIME_RE.search(result.stdout)
        return True, float(match.group(1)) if match else None

    async def probe_many(self, addresses: list) -> Dict[str, Tuple[bool, Optional[float]]]:
        """Probe addresses with bounded concurrency"""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(address):
            async with semaphore:
                return address, await self.probe(address)

        results = await asyncio.gather(*(_one(a) for a in addresses))
        return dict(results)
