"""
Shared fakes for the bus side of the dashboard.
"""

import asyncio
from types import SimpleNamespace

import pytest


class FakeSubscription:
    """Yields scripted items; exceptions are raised from recv(). When the script runs out it
    either reports end of stream or blocks like an idle feed."""

    def __init__(self, items, end=False):
        self.items = list(items)
        self.end = end
        self.closed = False

    async def recv(self):
        await asyncio.sleep(0)
        if self.items:
            item = self.items.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        if self.end:
            return None
        await asyncio.Event().wait()

    async def close(self):
        self.closed = True


class ScriptedSubscribe:
    """subscribe() callable returning scripted subscriptions, raising scripted exceptions,
    and blocking idle subscriptions once the script is used up."""

    def __init__(self, *script):
        self.script = list(script)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        return FakeSubscription([])


def fake_stubs():
    """Stand-in for bus.Stubs: identity calls answer 1, every stream stays idle."""

    async def value():
        return 1

    async def subscribe():
        return FakeSubscription([])

    return SimpleNamespace(
        identity_manager=SimpleNamespace(farm_id=value, farm=value),
        registrar=SimpleNamespace(node_id=value),
        version_monitor=SimpleNamespace(version=subscribe),
        statistics=SimpleNamespace(reserved=subscribe),
        sys_monitor=SimpleNamespace(cpu=subscribe, memory=subscribe),
        network=SimpleNamespace(
            zos_addresses=subscribe, ygg_addresses=subscribe, dmz_addresses=subscribe,
            public_addresses=subscribe, get_public_exit_device=value,
        ),
    )


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
