"""
Reverse proxy (nginx) configuration
"""

from .config_builder import NginxConfigBuilder, ProxyConfig
from .nginx import NginxManager

__all__ = ["NginxConfigBuilder", "ProxyConfig", "NginxManager"]
