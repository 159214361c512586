# meshgate/core/service_registry.py
"""
Shared behaviour of the HTTP and TCP service registries

Every mutation validates, persists, then rebuilds the proxy from the full set
of active services. Mutations of one registry are serialized so uniqueness
checks and writes never interleave.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from meshgate.database.repositories import NodeRepository, ServiceRepository
from meshgate.proxy.nginx import NginxManager

from .domains import DomainRegistrar
from .errors import FieldError, NotFound, ReconciliationFailed, ValidationFailed
from .validators import expires_at_from_ttl

logger = logging.getLogger(__name__)


@dataclass
class ServiceResult:
    """A committed service plus any reconciliation problems that followed"""
    service: Any
    warnings: List[str] = field(default_factory=list)


class ServiceRegistry:
    """
    Base registry. Subclasses set `kind`, `fields`, `unique_field` and
    implement `validate`.
    """

    kind = "service"
    fields: Tuple[str, ...] = ()
    nullable: Tuple[str, ...] = ("backend_host", "allowed_ips", "blocked_ips")
    unique_field = ""

    def __init__(
        self,
        repository: ServiceRepository,
        nodes: NodeRepository,
        domains: DomainRegistrar,
        proxy: NginxManager,
    ):
        self.services = repository
        self.nodes = nodes
        self.domains = domains
        self.proxy = proxy
        self._lock = asyncio.Lock()

    # === Hooks ===

    def validate(self, data: Dict[str, Any], partial: bool = False) -> List[FieldError]:
        raise NotImplementedError

    def prepare(self, fields: Dict[str, Any], existing: Any = None) -> Dict[str, Any]:
        """Fill derived fields before persisting"""
        return fields

    # === Reads ===

    def get(self, service_id: int):
        service = self.services.get(service_id)
        if service is None:
            raise NotFound(f"{self.kind} service {service_id} not found")
        return service

    def list(self, node_id: Optional[int] = None, domain: Optional[str] = None) -> List:
        return self.services.find(node_id=node_id, domain=domain)

    def list_active(self) -> List:
        return self.services.list_active()

    # === Rebuild ===

    async def initialize(self) -> None:
        """
        Rebuild the proxy from the active services

        Raises:
            ReconciliationFailed: nginx rejected the config or did not reload
        """
        active = self.services.list_active()
        logger.info(f"Loaded {len(active)} active {self.kind} services")
        await self.proxy.reload()

    async def _refresh(self) -> List[str]:
        try:
            await self.initialize()
        except ReconciliationFailed as e:
            logger.warning(f"{self.kind} services saved but proxy not updated: {e.message}")
            return [e.message]
        return []

    # === Mutations ===

    def _clean(self, data: Dict[str, Any]) -> Dict[str, Any]:
        fields = {
            k: v for k, v in data.items()
            if k in self.fields and (v is not None or k in self.nullable)
        }
        if fields.get("domain"):
            fields["domain"] = fields["domain"].strip().lower()
        if "ttl" in data and data["ttl"] is not None:
            fields["expires_at"] = expires_at_from_ttl(data["ttl"])
        return fields

    def _check_node(self, node_id: int) -> None:
        if self.nodes.get(node_id) is None:
            raise ValidationFailed.single("node_id", f"Node {node_id} not found")

    def _check_unique(self, value: Any, exclude_id: Optional[int] = None) -> None:
        if value is None:
            return
        conflict = self.services.find_enabled_conflict(self.unique_field, value, exclude_id)
        if conflict:
            raise ValidationFailed.single(
                self.unique_field,
                f"{self.unique_field} {value} is already used by enabled service {conflict.id}",
            )

    def _register_domain(self, fields: Dict[str, Any], existing: Any = None) -> None:
        domain = fields.get("domain")
        if domain and (existing is None or domain != existing.domain):
            ssl = fields.get("ssl", existing.ssl if existing is not None else True)
            self.domains.register(domain, ssl=bool(ssl))

    async def create(self, data: Dict[str, Any]) -> ServiceResult:
        """
        Raises:
            ValidationFailed: Bad payload, unknown node or uniqueness conflict
            DomainUnavailable: Domain rejected by the registrar
        """
        async with self._lock:
            errors = self.validate(data)
            if errors:
                raise ValidationFailed(errors)

            fields = self._clean(data)
            self._check_node(fields["node_id"])
            fields = self.prepare(fields)
            if fields.get("enabled", True):
                self._check_unique(fields.get(self.unique_field))
            self._register_domain(fields)

            service = self.services.add(fields)
            logger.info(f"Created {self.kind} service {service.id} ({service.name})")

        return ServiceResult(service, await self._refresh())

    async def update(self, service_id: int, data: Dict[str, Any]) -> ServiceResult:
        async with self._lock:
            existing = self.get(service_id)

            errors = self.validate(data, partial=True)
            if errors:
                raise ValidationFailed(errors)

            fields = self._clean(data)
            if "node_id" in fields:
                self._check_node(fields["node_id"])
            fields = self.prepare(fields, existing)

            enabled = fields.get("enabled", existing.enabled)
            if enabled:
                self._check_unique(
                    fields.get(self.unique_field, getattr(existing, self.unique_field)),
                    exclude_id=service_id,
                )
            self._register_domain(fields, existing)

            service = self.services.update(service_id, fields)
            logger.info(f"Updated {self.kind} service {service_id}")

        return ServiceResult(service, await self._refresh())

    async def delete(self, service_id: int) -> List[str]:
        async with self._lock:
            if not self.services.delete(service_id):
                raise NotFound(f"{self.kind} service {service_id} not found")
            logger.info(f"Deleted {self.kind} service {service_id}")

        return await self._refresh()

    async def enable(self, service_id: int) -> ServiceResult:
        async with self._lock:
            existing = self.get(service_id)
            self._check_unique(getattr(existing, self.unique_field), exclude_id=service_id)
            service = self.services.update(service_id, {"enabled": True})

        return ServiceResult(service, await self._refresh())

    async def disable(self, service_id: int) -> ServiceResult:
        async with self._lock:
            self.get(service_id)
            service = self.services.update(service_id, {"enabled": False})

        return ServiceResult(service, await self._refresh())

    async def disable_expired(self, now: Optional[datetime] = None) -> int:
        """
        Disable services past expires_at and rebuild when any changed

        Returns:
            Number of services disabled
        """
        async with self._lock:
            expired = self.services.list_expired(now)
            count = self.services.set_enabled([s.id for s in expired], False)

        if count:
            logger.info(f"Disabled {count} expired {self.kind} services")
            await self._refresh()
        return count
