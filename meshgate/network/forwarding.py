"""
IP Forwarding Manager

Gateway routes only carry traffic when the kernel forwards packets between
the tunnel and the rest of the host, so the VPN engine enables IPv4
forwarding when it starts.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class ForwardingManager:
    """
    Manages IP forwarding settings
    """

    IPV4_FORWARD = "/proc/sys/net/ipv4/ip_forward"

    def __init__(self, sysctl_path: str = IPV4_FORWARD):
        self.sysctl_path = Path(sysctl_path)

    def is_forwarding_enabled(self) -> bool:
        """Check if IPv4 forwarding is enabled"""
        try:
            return self.sysctl_path.read_text().strip() == "1"
        except OSError:
            return False

    def enable_ip_forward(self) -> bool:
        """
        Enable IPv4 forwarding

        Returns:
            True if forwarding is on afterwards
        """
        if self.is_forwarding_enabled():
            logger.debug("IPv4 forwarding already enabled")
            return True

        try:
            self.sysctl_path.write_text("1")
        except PermissionError:
            logger.error(f"Permission denied writing to {self.sysctl_path}")
            raise

        logger.info("IPv4 forwarding enabled")
        return True
