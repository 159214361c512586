"""
Host networking: route table and kernel forwarding
"""

from .forwarding import ForwardingManager
from .routes import RouteManager

__all__ = ["ForwardingManager", "RouteManager"]
