# meshgate/core/http_services.py
"""
HTTP Service Registry

Services published as nginx virtual hosts. The domain is unique among enabled
HTTP services and must be accepted by the Domain Registrar first.
"""

import logging
from typing import Any, Dict, List

from .errors import FieldError
from .service_registry import ServiceRegistry
from .validators import validate_http_service

logger = logging.getLogger(__name__)


class HttpServicesService(ServiceRegistry):
    kind = "http"
    unique_field = "domain"
    fields = (
        "name", "domain", "path_location", "backend_proto", "backend_host",
        "backend_port", "ssl", "allowed_ips", "blocked_ips", "enabled", "node_id",
    )

    def validate(self, data: Dict[str, Any], partial: bool = False) -> List[FieldError]:
        return validate_http_service(data, partial=partial)
