# meshgate/config.py
"""
Application Configuration
Uses pydantic-settings for environment variable management
"""

from typing import List, Optional
from functools import lru_cache

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class TunnelInterfaceSettings(BaseModel):
    """One managed WireGuard interface"""
    name: str
    subnet: str
    listen_port: int = 51820


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables
    Create a .env file for local development
    """

    # === Application ===
    APP_NAME: str = "MeshGate Control Plane"
    APP_VERSION: str = "1.0.0"
    ENV: str = "development"  # development, staging, production
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # === API ===
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_PREFIX: str = "/api/v1"

    # CORS
    CORS_ORIGINS: List[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True

    # === Database ===
    DATABASE_URL: str = "sqlite:///./meshgate.db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # === Security ===
    ADMIN_SECRET: str = "change-me-admin-secret"

    # === WireGuard ===
    VPN_INTERFACES: List[TunnelInterfaceSettings] = [
        TunnelInterfaceSettings(name="wg0", subnet="10.8.0.0/24", listen_port=51820)
    ]
    VPN_DEFAULT_INTERFACE: str = "wg0"
    VPN_CONFIG_DIR: str = "/etc/wireguard"
    VPN_PUBLIC_HOST: str = "vpn.example.com"
    VPN_DNS: List[str] = []
    VPN_MTU: Optional[int] = None
    VPN_KEEPALIVE: int = 25
    VPN_ENABLE_FORWARDING: bool = True

    # Reachability probe
    PROBE_TIMEOUT: int = 1  # seconds, per ping
    PROBE_CONCURRENCY: int = 8

    # === Reverse proxy (nginx) ===
    NGINX_BIN: str = "nginx"
    NGINX_CONFIG_DIR: str = "/etc/nginx/meshgate"
    CERTS_DIR: str = "/etc/ssl/meshgate"
    TCP_PORT_RANGE: str = "32000-32999"

    # === Domains ===
    ALLOWED_DOMAIN_SUFFIXES: List[str] = []

    # === Shell commands ===
    COMMAND_TIMEOUT: int = 10  # seconds

    # === Service expiry ===
    SERVICE_EXPIRY_CHECK_INTERVAL: int = 60  # seconds

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.ENV.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.ENV.lower() == "development"

    @property
    def tcp_port_bounds(self) -> tuple:
        """TCP_PORT_RANGE as (low, high); a single port means low == high"""
        parts = self.TCP_PORT_RANGE.split("-")
        low = int(parts[0])
        high = int(parts[1]) if len(parts) > 1 and parts[1] else low
        return low, high

    def get_interface(self, name: Optional[str] = None) -> Optional[TunnelInterfaceSettings]:
        """Look up a managed interface, the default one when name is None"""
        name = name or self.VPN_DEFAULT_INTERFACE
        for iface in self.VPN_INTERFACES:
            if iface.name == name:
                return iface
        return None


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance
    Use this to get settings throughout the application
    """
    return Settings()
