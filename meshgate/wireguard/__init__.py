"""
WireGuard module

VPN engine for the controller:
- Server mode interfaces (ListenPort, peers from the registry)
- Address allocation and keypairs for nodes
- Client config rendering and live peer status
"""

from .manager import WireGuardManager
from .service import WireGuardService, NodeDraft, NodeInfo

__all__ = ["WireGuardManager", "WireGuardService", "NodeDraft", "NodeInfo"]
