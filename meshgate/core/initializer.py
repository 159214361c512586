# meshgate/core/initializer.py
"""
Startup Sequencer

Brings every subsystem up in dependency order. Each step is isolated: a
failure is logged and the remaining steps still run, so the API comes up even
on a host where nginx or WireGuard is broken.
"""

import logging
from typing import Awaitable, Callable, Dict, List, Tuple

from meshgate.proxy.nginx import NginxManager
from meshgate.wireguard.service import WireGuardService

from .domains import DomainRegistrar
from .http_services import HttpServicesService
from .node_manager import NodeManager
from .tcp_services import TcpServicesService

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_FAILED = "failed"


class Initializer:
    def __init__(
        self,
        vpn: WireGuardService,
        node_manager: NodeManager,
        domains: DomainRegistrar,
        http_services: HttpServicesService,
        tcp_services: TcpServicesService,
        proxy: NginxManager,
    ):
        self.vpn = vpn
        self.node_manager = node_manager
        self.domains = domains
        self.http_services = http_services
        self.tcp_services = tcp_services
        self.proxy = proxy

    def _steps(self) -> List[Tuple[str, Callable[[], Awaitable[None]]]]:
        return [
            ("wireguard", self.vpn.initialize),
            ("routes", self.node_manager.initialize),
            ("domains", self.domains.initialize),
            ("http_services", self.http_services.initialize),
            ("tcp_services", self.tcp_services.initialize),
        ]

    async def run(self) -> Dict[str, str]:
        """
        Run every startup step, then reload nginx once

        Returns:
            Map of subsystem name -> "ok" or "failed"
        """
        status: Dict[str, str] = {}

        for name, step in self._steps():
            try:
                await step()
                status[name] = STATUS_OK
            except Exception as e:
                logger.error(f"Startup step '{name}' failed: {e}")
                status[name] = STATUS_FAILED

        try:
            await self.proxy.reload()
            status["nginx"] = STATUS_OK
        except Exception as e:
            logger.error(f"nginx reload at startup failed: {e}")
            status["nginx"] = STATUS_FAILED

        failed = [name for name, result in status.items() if result == STATUS_FAILED]
        if failed:
            logger.warning(f"Startup finished with failures: {', '.join(failed)}")
        else:
            logger.info("Startup finished, all subsystems ready")

        return status
