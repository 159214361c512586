# tests/test_routes_and_coalesce.py
"""
Unit Tests for the routing synchronizer and collapse-to-latest runner

Run with:
    pytest tests/test_routes_and_coalesce.py -v
"""

import asyncio

import pytest

from conftest import FakeHost, run
from meshgate.core.coalesce import CoalescingRunner
from meshgate.core.errors import RouteSyncFailed
from meshgate.network.routes import RouteManager


class TestRouteManager:
    """Tests for ip route add/del"""

    def test_add_route(self):
        host = FakeHost()
        routes = RouteManager(runner=host)

        run(routes.add_route("192.168.1.0/24", "10.8.0.2", "wg0"))

        assert host.route_table() == {("192.168.1.0/24", "10.8.0.2")}
        assert host.calls[-1] == ["ip", "route", "add", "192.168.1.0/24", "via", "10.8.0.2", "dev", "wg0"]

    def test_add_existing_route_is_noop(self):
        host = FakeHost()
        routes = RouteManager(runner=host)

        run(routes.add_route("192.168.1.0/24", "10.8.0.2", "wg0"))
        run(routes.add_route("192.168.1.0/24", "10.8.0.2", "wg0"))

        assert len(host.routes) == 1

    def test_delete_missing_route_is_noop(self):
        routes = RouteManager(runner=FakeHost())
        run(routes.del_route("192.168.1.0/24", "10.8.0.2"))

    def test_subnet_is_normalized(self):
        host = FakeHost()
        run(RouteManager(runner=host).add_route("192.168.1.7/24", "10.8.0.2", "wg0"))
        assert host.route_table() == {("192.168.1.0/24", "10.8.0.2")}

    def test_invalid_subnet(self):
        with pytest.raises(RouteSyncFailed):
            run(RouteManager(runner=FakeHost()).add_route("not-a-subnet", "10.8.0.2", "wg0"))

    def test_kernel_rejection(self):
        host = FakeHost()
        host.fail["ip"] = "Error: Nexthop has invalid gateway.\n"

        with pytest.raises(RouteSyncFailed):
            run(RouteManager(runner=host).add_route("192.168.1.0/24", "10.9.9.9", "wg0"))

    def test_list_routes(self):
        host = FakeHost()
        routes = RouteManager(runner=host)
        run(routes.add_route("192.168.1.0/24", "10.8.0.2", "wg0"))

        assert run(routes.list_routes("wg0")) == [{"subnet": "192.168.1.0/24", "next_hop": "10.8.0.2"}]


class TestCoalescingRunner:
    """Tests for collapse-to-latest execution"""

    def test_concurrent_callers_share_follow_up(self):
        started = []

        async def work():
            started.append(len(started))
            await asyncio.sleep(0.01)
            return len(started)

        async def scenario():
            runner = CoalescingRunner(work, name="test")
            first = asyncio.ensure_future(runner.run())
            await asyncio.sleep(0)
            rest = [asyncio.ensure_future(runner.run()) for _ in range(5)]
            results = await asyncio.gather(first, *rest)
            return runner, results

        runner, results = run(scenario())

        assert runner.runs == 2
        assert results[0] == 1
        assert set(results[1:]) == {2}

    def test_sequential_calls_each_run(self):
        calls = []

        async def work():
            calls.append(1)

        async def scenario():
            runner = CoalescingRunner(work)
            await runner.run()
            await runner.run()
            return runner

        assert run(scenario()).runs == 2

    def test_failure_reaches_every_waiter_of_the_run(self):
        async def work():
            await asyncio.sleep(0)
            raise RuntimeError("boom")

        async def scenario():
            runner = CoalescingRunner(work)
            return await asyncio.gather(runner.run(), runner.run(), return_exceptions=True)

        results = run(scenario())

        assert all(isinstance(r, RuntimeError) for r in results)
