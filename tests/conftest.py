# tests/conftest.py
"""
Pytest fixtures for MeshGate tests
Shared configuration, an in-memory registry and a fake host
"""

import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest

from meshgate.bootstrap import build_components
from meshgate.config import Settings, TunnelInterfaceSettings
from meshgate.core.errors import CommandError
from meshgate.core.shell import CommandResult
from meshgate.database.session import create_db_engine, create_session_factory, init_db
from meshgate.network.forwarding import ForwardingManager


class FakeHost:
    """
    Stands in for `ip`, `wg`, `wg-quick`, `nginx` and `ping`

    Keeps a route table and the set of interfaces that are up, and records
    every command it was asked to run.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.routes: Set[Tuple[str, str, str]] = set()  # (subnet, via, dev)
        self.up: Set[str] = set()
        self.dumps: Dict[str, str] = {}
        self.reachable: Dict[str, float] = {}
        self.nginx_test_error: Optional[str] = None
        self.fail: Dict[str, str] = {}  # first word of command -> stderr
        self.nginx_reloads = 0
        self.syncs = 0

    def commands(self, prefix: str) -> List[List[str]]:
        words = prefix.split()
        return [c for c in self.calls if c[:len(words)] == words]

    def route_table(self) -> Set[Tuple[str, str]]:
        return {(subnet, via) for subnet, via, _ in self.routes}

    def _handle(self, cmd: List[str]) -> CommandResult:
        if cmd[0] in self.fail:
            return CommandResult(1, "", self.fail[cmd[0]])

        if cmd[:3] == ["ip", "route", "add"]:
            subnet, via, dev = cmd[3], cmd[5], cmd[7]
            if any(r[0] == subnet and r[1] == via for r in self.routes):
                return CommandResult(2, "", "RTNETLINK answers: File exists\n")
            self.routes.add((subnet, via, dev))
            return CommandResult(0, "", "")

        if cmd[:3] == ["ip", "route", "del"]:
            subnet, via = cmd[3], cmd[5]
            match = [r for r in self.routes if r[0] == subnet and r[1] == via]
            if not match:
                return CommandResult(2, "", "RTNETLINK answers: No such process\n")
            self.routes.discard(match[0])
            return CommandResult(0, "", "")

        if cmd[:3] == ["ip", "route", "show"]:
            lines = [f"{s} via {v} dev {d}" for s, v, d in sorted(self.routes) if d == cmd[4]]
            return CommandResult(0, "\n".join(lines), "")

        if cmd[:2] == ["wg-quick", "up"]:
            self.up.add(Path(cmd[2]).stem)
            return CommandResult(0, "", "")

        if cmd[:2] == ["wg-quick", "strip"]:
            return CommandResult(0, Path(cmd[2]).read_text(), "")

        if cmd[:2] == ["wg", "syncconf"]:
            self.syncs += 1
            return CommandResult(0, "", "")

        if cmd[:2] == ["wg", "show"]:
            iface = cmd[2]
            if iface not in self.up:
                return CommandResult(1, "", "Unable to access interface: No such device\n")
            if cmd[3:] == ["dump"]:
                return CommandResult(0, self.dumps.get(iface, "privkey\tpubkey\t51820\toff\n"), "")
            return CommandResult(0, f"interface: {iface}\n", "")

        if cmd[0] == "nginx":
            if cmd[1] == "-t":
                if self.nginx_test_error:
                    return CommandResult(1, "", self.nginx_test_error)
                return CommandResult(0, "", "nginx: configuration file test is successful\n")
            if cmd[1:] == ["-s", "reload"]:
                self.nginx_reloads += 1
                return CommandResult(0, "", "")

        if cmd[0] == "ping":
            address = cmd[-1]
            if address in self.reachable:
                return CommandResult(0, f"64 bytes from {address}: icmp_seq=1 ttl=64 time={self.reachable[address]} ms\n", "")
            return CommandResult(1, "", "")

        return CommandResult(0, "", "")

    async def __call__(self, cmd, input=None, timeout=10, check=True) -> CommandResult:
        cmd = list(cmd)
        self.calls.append(cmd)
        await asyncio.sleep(0)
        result = self._handle(cmd)
        if check and not result.ok:
            raise CommandError(cmd, result.returncode, result.stderr)
        return result


def run(coro):
    """Run a coroutine to completion in a fresh event loop"""
    return asyncio.run(coro)


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def settings(tmp_path):
    """Settings pointing every path into a temporary directory"""
    return Settings(
        DATABASE_URL="sqlite://",
        VPN_INTERFACES=[TunnelInterfaceSettings(name="wg0", subnet="10.8.0.0/24", listen_port=51820)],
        VPN_DEFAULT_INTERFACE="wg0",
        VPN_CONFIG_DIR=str(tmp_path / "wireguard"),
        VPN_PUBLIC_HOST="vpn.example.com",
        VPN_DNS=["1.1.1.1"],
        NGINX_CONFIG_DIR=str(tmp_path / "nginx"),
        CERTS_DIR=str(tmp_path / "certs"),
        TCP_PORT_RANGE="32000-32002",
        ADMIN_SECRET="test-admin-token",
    )


@pytest.fixture
def session_factory():
    """Fresh in-memory registry"""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def forwarding(tmp_path):
    sysctl = tmp_path / "ip_forward"
    sysctl.write_text("0\n")
    return ForwardingManager(sysctl_path=str(sysctl))


@pytest.fixture
def components(settings, session_factory, host, forwarding):
    """Fully wired controller on the fake host"""
    return build_components(settings, session_factory, runner=host, forwarding=forwarding)


@pytest.fixture
def started(components):
    """Controller after the startup sequence ran"""
    run(components.initializer.run())
    return components
