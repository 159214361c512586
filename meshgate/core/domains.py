# meshgate/core/domains.py
"""
Domain Registrar

A service may only bind to a domain the registrar accepted. Registration is
idempotent: registering a known domain returns the existing record.
"""

import logging
from pathlib import Path
from typing import List

from meshgate.config import Settings
from meshgate.database.models import Domain
from meshgate.database.repositories import DomainRepository

from .errors import DomainUnavailable
from .validators import is_valid_domain

logger = logging.getLogger(__name__)


class DomainRegistrar:
    def __init__(self, settings: Settings, repository: DomainRepository):
        self.domains = repository
        self.allowed_suffixes = [s.lower().lstrip(".") for s in settings.ALLOWED_DOMAIN_SUFFIXES]
        self.certs_dir = Path(settings.CERTS_DIR)

    def is_allowed(self, domain: str) -> bool:
        if not self.allowed_suffixes:
            return True
        return any(domain == s or domain.endswith("." + s) for s in self.allowed_suffixes)

    def register(self, domain: str, ssl: bool = True) -> Domain:
        """
        Make a domain usable by services

        Raises:
            DomainUnavailable: Malformed, or outside the allowed suffixes
        """
        domain = (domain or "").strip().lower()

        if not is_valid_domain(domain):
            raise DomainUnavailable(f"Invalid domain name: {domain!r}")
        if not self.is_allowed(domain):
            raise DomainUnavailable(
                f"Domain {domain} is not under an allowed suffix",
                {"allowed_suffixes": self.allowed_suffixes},
            )

        existing = self.domains.get(domain)
        if existing:
            return existing

        record = self.domains.add(domain, ssl=ssl)
        logger.info(f"Registered domain {domain} (ssl={ssl})")
        return record

    def list(self) -> List[Domain]:
        return self.domains.get_all()

    def missing_certificates(self) -> List[str]:
        """SSL domains without a certificate under CERTS_DIR"""
        return [
            d.domain for d in self.domains.get_all()
            if d.ssl and not (self.certs_dir / d.domain / "fullchain.pem").exists()
        ]

    async def initialize(self) -> None:
        domains = self.domains.get_all()
        logger.info(f"Domain registrar loaded {len(domains)} domains")

        for domain in self.missing_certificates():
            logger.warning(f"No certificate found for {domain} under {self.certs_dir}")
