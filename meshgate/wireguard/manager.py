"""
WireGuard Interface Manager

Manages one server-mode WireGuard interface:
- Interface up via wg-quick
- Atomic replace of the running peer set (wg syncconf)
- Raw peer dump
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from meshgate.core.shell import CommandRunner, run_command

logger = logging.getLogger(__name__)


class WireGuardManager:
    """
    Manages a WireGuard interface for the controller (server mode)
    """

    def __init__(
        self,
        interface: str = "wg0",
        config_dir: str = "/etc/wireguard",
        runner: CommandRunner = run_command,
        timeout: float = 10,
    ):
        """
        Initialize WireGuard manager

        Args:
            interface: WireGuard interface name
            config_dir: Config directory path
            runner: Async command runner
            timeout: Per-command timeout in seconds
        """
        self.interface = interface
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / f"{interface}.conf"
        self.key_file = self.config_dir / f"{interface}.key"
        self._run = runner
        self.timeout = timeout

    async def is_interface_up(self) -> bool:
        """Check if interface is up"""
        result = await self._run(["wg", "show", self.interface], timeout=self.timeout, check=False)
        return result.ok

    async def bring_up_interface(self) -> None:
        """Bring up WireGuard interface using wg-quick"""
        logger.info(f"Bringing up {self.interface}")
        await self._run(["wg-quick", "up", str(self.config_file)], timeout=self.timeout)
        logger.info(f"{self.interface} is now up")

    async def sync_config(self) -> None:
        """
        Replace the running state with the config file in one step

        Brings the interface up when it is down; otherwise strips the wg-quick
        only keys and hands the result to `wg syncconf`, which swaps the whole
        peer set without tearing the interface down.
        """
        if not await self.is_interface_up():
            await self.bring_up_interface()
            return

        stripped = await self._run(["wg-quick", "strip", str(self.config_file)], timeout=self.timeout)

        fd, temp_path = tempfile.mkstemp(prefix=f"{self.interface}-", suffix=".conf")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(stripped.stdout)
            await self._run(["wg", "syncconf", self.interface, temp_path], timeout=self.timeout)
        finally:
            os.unlink(temp_path)

        logger.info(f"Synced running configuration of {self.interface}")

    async def dump(self) -> Optional[str]:
        """
        Raw `wg show <iface> dump` output, None if the interface is down
        """
        result = await self._run(["wg", "show", self.interface, "dump"], timeout=self.timeout, check=False)
        if not result.ok:
            logger.debug(f"Cannot dump {self.interface}: {result.stderr.strip()}")
            return None
        return result.stdout
