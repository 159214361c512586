# meshgate/proxy/config_builder.py
"""
nginx Configuration Builder

Renders two include files:
- http.conf: virtual hosts for HTTP services (include inside `http {}`)
- stream.conf: listeners for TCP/UDP services (include inside `stream {}`)
"""

import ipaddress
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from meshgate.database.models import HttpService, TcpService

logger = logging.getLogger(__name__)

HEADER = "# Managed by meshgate. Local changes are overwritten on reload."
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")

UPGRADE_MAP = [
    "map $http_upgrade $meshgate_connection_upgrade {",
    "    default upgrade;",
    "    '' close;",
    "}",
]


@dataclass
class ProxyConfig:
    """Rendered include files"""
    http: str
    stream: str


def _is_ipv6(host: str) -> bool:
    try:
        return ipaddress.ip_address(host).version == 6
    except ValueError:
        return False


def backend_address(service: Any) -> str:
    """backend_host, or the owning node's tunnel address when absent. IPv6 is bracketed."""
    host = service.backend_host or service.node.address
    return f"[{host}]" if _is_ipv6(host) else host


def comment_text(text: Any) -> str:
    """Single-line, control-character-free text for a config comment"""
    return CONTROL_CHARS.sub(" ", str(text))


class NginxConfigBuilder:
    """
    Builds nginx server blocks from published services
    """

    def __init__(self, certs_dir: str = "/etc/ssl/meshgate"):
        self.certs_dir = Path(certs_dir)

    def certificate_paths(self, domain: Optional[str]) -> tuple:
        base = self.certs_dir / (domain or "default")
        return str(base / "fullchain.pem"), str(base / "privkey.pem")

    @staticmethod
    def _access_rules(service: Any, indent: str) -> List[str]:
        """Blocked first, then allowed, then deny the rest if an allow list exists"""
        lines = [f"{indent}deny {ip};" for ip in service.blocked_ips or []]
        allowed = service.allowed_ips or []
        lines.extend(f"{indent}allow {ip};" for ip in allowed)
        if allowed:
            lines.append(f"{indent}deny all;")
        return lines

    def build_http_server(self, service: Any) -> List[str]:
        """One virtual host, plus the port 80 redirect when SSL is on"""
        lines = []
        location = service.path_location or "/"
        upstream = f"{service.backend_proto}://{backend_address(service)}:{service.backend_port}"

        if service.ssl:
            cert, key = self.certificate_paths(service.domain)
            lines.extend([
                "server {",
                "    listen 80;",
                f"    server_name {service.domain};",
                "    return 301 https://$host$request_uri;",
                "}",
                "",
                "server {",
                "    listen 443 ssl;",
                f"    server_name {service.domain};",
                f"    ssl_certificate {cert};",
                f"    ssl_certificate_key {key};",
            ])
        else:
            lines.extend([
                "server {",
                "    listen 80;",
                f"    server_name {service.domain};",
            ])

        lines.append("")
        lines.append(f"    # service {service.id}: {comment_text(service.name)} (node {service.node_id})")
        lines.append(f"    location {location} {{")
        lines.extend(self._access_rules(service, "        "))
        lines.extend([
            f"        proxy_pass {upstream};",
            "        proxy_http_version 1.1;",
            "        proxy_set_header Host $host;",
            "        proxy_set_header X-Real-IP $remote_addr;",
            "        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;",
            "        proxy_set_header X-Forwarded-Proto $scheme;",
            "        proxy_set_header Upgrade $http_upgrade;",
            "        proxy_set_header Connection $meshgate_connection_upgrade;",
            "    }",
            "}",
        ])
        return lines

    def build_stream_server(self, service: Any) -> List[str]:
        """One TCP or UDP listener"""
        listen = f"    listen {service.port}"
        if service.proto == "udp":
            listen += " udp"
        elif service.ssl:
            listen += " ssl"

        lines = [
            f"# service {service.id}: {comment_text(service.name)} (node {service.node_id})",
            "server {",
            listen + ";",
        ]

        if service.ssl and service.proto != "udp":
            cert, key = self.certificate_paths(service.domain)
            lines.append(f"    ssl_certificate {cert};")
            lines.append(f"    ssl_certificate_key {key};")

        lines.extend(self._access_rules(service, "    "))
        lines.append(f"    proxy_pass {backend_address(service)}:{service.backend_port};")
        lines.append("}")
        return lines

    def build(self, services: List[Any]) -> ProxyConfig:
        """
        Render both include files

        An empty service list yields files with no listeners at all.
        """
        http_services = sorted(
            (s for s in services if isinstance(s, HttpService)), key=lambda s: s.id
        )
        tcp_services = sorted(
            (s for s in services if isinstance(s, TcpService)), key=lambda s: s.id
        )

        http_lines = [HEADER]
        if http_services:
            http_lines.append("")
            http_lines.extend(UPGRADE_MAP)
        for service in http_services:
            http_lines.append("")
            http_lines.extend(self.build_http_server(service))

        stream_lines = [HEADER]
        for service in tcp_services:
            stream_lines.append("")
            stream_lines.extend(self.build_stream_server(service))

        return ProxyConfig(
            http="\n".join(http_lines) + "\n",
            stream="\n".join(stream_lines) + "\n",
        )
