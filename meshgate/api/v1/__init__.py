"""
Admin API v1
"""

from . import nodes, services

__all__ = ["nodes", "services"]
