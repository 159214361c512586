"""
MeshGate Control Plane

Gateway controller for a WireGuard mesh with nginx-published services.
"""

__version__ = "1.0.0"
