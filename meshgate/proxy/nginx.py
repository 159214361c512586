# meshgate/proxy/nginx.py
"""
nginx Manager (Proxy Configurator)

Writes the include files rendered from the active services, validates them
with `nginx -t` and signals a graceful reload. The running nginx is never
restarted, so established connections survive.
"""

import logging
import os
from pathlib import Path
from typing import Any, Callable, List

from meshgate.config import Settings
from meshgate.core.coalesce import CoalescingRunner
from meshgate.core.errors import CommandError, ReconciliationFailed
from meshgate.core.shell import CommandRunner, run_command

from .config_builder import NginxConfigBuilder, ProxyConfig

logger = logging.getLogger(__name__)


class NginxManager:
    """
    Renders and reloads the reverse proxy configuration
    """

    def __init__(
        self,
        settings: Settings,
        load_services: Callable[[], List[Any]],
        runner: CommandRunner = run_command,
    ):
        """
        Args:
            settings: Application settings
            load_services: Returns the active HTTP and TCP services at call time
            runner: Async command runner
        """
        self.nginx_bin = settings.NGINX_BIN
        self.config_dir = Path(settings.NGINX_CONFIG_DIR)
        self.http_file = self.config_dir / "http.conf"
        self.stream_file = self.config_dir / "stream.conf"
        self.timeout = settings.COMMAND_TIMEOUT
        self.builder = NginxConfigBuilder(certs_dir=settings.CERTS_DIR)
        self._load_services = load_services
        self._run = runner
        self._reload_runner = CoalescingRunner(self._reload, name="nginx-reload")

    def render(self, services: List[Any]) -> ProxyConfig:
        """Pure rendering of the given services"""
        return self.builder.build(services)

    async def reload(self) -> None:
        """
        Apply the current registry state and reload nginx gracefully

        Overlapping calls collapse: at most one reload runs, and callers that
        arrive meanwhile share one follow-up that renders the latest state.

        Raises:
            ReconciliationFailed: Config could not be written, was rejected by
                `nginx -t`, or the reload signal failed
        """
        await self._reload_runner.run()

    async def _reload(self) -> None:
        services = self._load_services()
        config = self.render(services)

        backups: dict = {}
        try:
            self._write(config, backups)
        except OSError as e:
            logger.error(f"Could not write nginx config to {self.config_dir}: {e}")
            self._restore(backups)
            raise ReconciliationFailed(f"nginx config write failed: {e}")

        try:
            await self._run([self.nginx_bin, "-t"], timeout=self.timeout)
        except CommandError as e:
            logger.error(f"nginx rejected generated config: {e.stderr.strip()}")
            self._restore(backups)
            raise ReconciliationFailed(f"nginx config test failed: {e.stderr.strip()}")

        try:
            await self._run([self.nginx_bin, "-s", "reload"], timeout=self.timeout)
        except CommandError as e:
            logger.error(f"nginx reload failed: {e.stderr.strip()}")
            raise ReconciliationFailed(f"nginx reload failed: {e.stderr.strip()}")

        logger.info(f"nginx reloaded with {len(services)} services")

    def _write(self, config: ProxyConfig, backups: dict) -> None:
        """
        Write both files atomically

        Args:
            backups: Filled with path -> previous content (None if the file
                did not exist) for every file about to be replaced
        """
        self.config_dir.mkdir(parents=True, exist_ok=True)

        for path, content in ((self.http_file, config.http), (self.stream_file, config.stream)):
            previous = path.read_text() if path.exists() else None
            if previous is not None:
                path.with_suffix(".conf.bak").write_text(previous)
            backups[path] = previous

            tmp = path.with_suffix(".conf.tmp")
            tmp.write_text(content)
            tmp.replace(path)

    def _restore(self, backups: dict) -> None:
        for path, content in backups.items():
            try:
                if content is None:
                    if path.exists():
                        os.remove(path)
                else:
                    path.write_text(content)
            except OSError as e:
                logger.error(f"Could not restore {path}: {e}")
        if backups:
            logger.info("Restored previous nginx config")
