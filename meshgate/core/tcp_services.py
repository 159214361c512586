# meshgate/core/tcp_services.py
"""
TCP Service Registry

Services published as nginx stream listeners. The public port is unique
among enabled TCP services and allocated from TCP_PORT_RANGE when omitted.
"""

import logging
from typing import Any, Dict, List, Tuple

from meshgate.database.repositories import NodeRepository, ServiceRepository
from meshgate.proxy.nginx import NginxManager

from .domains import DomainRegistrar
from .errors import AllocationExhausted, FieldError
from .service_registry import ServiceRegistry
from .validators import validate_tcp_service

logger = logging.getLogger(__name__)


class TcpServicesService(ServiceRegistry):
    kind = "tcp"
    unique_field = "port"
    nullable = ("domain", "backend_host", "allowed_ips", "blocked_ips")
    fields = (
        "name", "domain", "proto", "backend_host", "backend_port", "port",
        "ssl", "allowed_ips", "blocked_ips", "enabled", "node_id",
    )

    def __init__(
        self,
        repository: ServiceRepository,
        nodes: NodeRepository,
        domains: DomainRegistrar,
        proxy: NginxManager,
        port_bounds: Tuple[int, int] = (32000, 32999),
    ):
        super().__init__(repository, nodes, domains, proxy)
        self.port_bounds = port_bounds

    def validate(self, data: Dict[str, Any], partial: bool = False) -> List[FieldError]:
        return validate_tcp_service(data, self.port_bounds, partial=partial)

    def allocate_port(self) -> int:
        """
        Lowest port of the range not held by any service, enabled or not

        Raises:
            AllocationExhausted: Every port in the range is taken
        """
        used = self.services.used_ports()
        low, high = self.port_bounds
        for port in range(low, high + 1):
            if port not in used:
                return port
        raise AllocationExhausted(f"No free TCP port in range {low}-{high}")

    def prepare(self, fields: Dict[str, Any], existing: Any = None) -> Dict[str, Any]:
        if existing is None and fields.get("port") is None:
            fields["port"] = self.allocate_port()
            logger.debug(f"Allocated public port {fields['port']}")
        return fields
