# meshgate/bootstrap.py
"""
Composition root

Builds every component once, wiring explicit dependencies. There are no
module-level singletons; the FastAPI app keeps the Components on app.state.
"""

import logging
from dataclasses import dataclass
from typing import List

from sqlalchemy.orm import sessionmaker

from meshgate.config import Settings
from meshgate.core.domains import DomainRegistrar
from meshgate.core.http_services import HttpServicesService
from meshgate.core.initializer import Initializer
from meshgate.core.node_manager import NodeManager
from meshgate.core.shell import CommandRunner, run_command
from meshgate.core.tcp_services import TcpServicesService
from meshgate.core.tokens import TokenIssuer
from meshgate.database.models import HttpService, TcpService
from meshgate.database.repositories import (
    DomainRepository, NodeRepository, ServiceRepository, TokenRepository,
)
from meshgate.network.forwarding import ForwardingManager
from meshgate.network.routes import RouteManager
from meshgate.proxy.nginx import NginxManager
from meshgate.wireguard.service import WireGuardService

logger = logging.getLogger(__name__)


@dataclass
class Components:
    settings: Settings
    nodes: NodeRepository
    vpn: WireGuardService
    routes: RouteManager
    proxy: NginxManager
    domains: DomainRegistrar
    tokens: TokenIssuer
    http_services: HttpServicesService
    tcp_services: TcpServicesService
    node_manager: NodeManager
    initializer: Initializer


def build_components(
    settings: Settings,
    session_factory: sessionmaker,
    runner: CommandRunner = run_command,
    forwarding: ForwardingManager = None,
) -> Components:
    """
    Wire the controller

    Args:
        settings: Application settings
        session_factory: SQLAlchemy session factory
        runner: Async command runner shared by every host-facing component
        forwarding: IP forwarding helper (a real one when omitted)
    """
    nodes = NodeRepository(session_factory)
    http_repository = ServiceRepository(session_factory, HttpService)
    tcp_repository = ServiceRepository(session_factory, TcpService)

    def load_active_services() -> List:
        return http_repository.list_active() + tcp_repository.list_active()

    vpn = WireGuardService(
        settings,
        nodes,
        runner=runner,
        forwarding=forwarding or ForwardingManager(),
    )
    routes = RouteManager(runner=runner, timeout=settings.COMMAND_TIMEOUT)
    proxy = NginxManager(settings, load_active_services, runner=runner)
    domains = DomainRegistrar(settings, DomainRepository(session_factory))
    tokens = TokenIssuer(TokenRepository(session_factory))

    http_services = HttpServicesService(http_repository, nodes, domains, proxy)
    tcp_services = TcpServicesService(
        tcp_repository, nodes, domains, proxy, port_bounds=settings.tcp_port_bounds
    )

    node_manager = NodeManager(nodes, vpn, routes, tokens, http_services, tcp_services)
    initializer = Initializer(vpn, node_manager, domains, http_services, tcp_services, proxy)

    logger.debug("Components wired")

    return Components(
        settings=settings,
        nodes=nodes,
        vpn=vpn,
        routes=routes,
        proxy=proxy,
        domains=domains,
        tokens=tokens,
        http_services=http_services,
        tcp_services=tcp_services,
        node_manager=node_manager,
        initializer=initializer,
    )
