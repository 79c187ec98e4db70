# zui/poller.py
"""
Feed pollers.

One StreamPoller per streaming feed:

  DISCONNECTED -> SUBSCRIBING -> STREAMING -> (end of stream / transport loss) DISCONNECTED

Subscribe failures are retried forever with bounded backoff. An error item inside an
open stream is logged and skipped. Pollers never talk to each other; each one owns a
single DashboardState field.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, List, Optional

from zui.bus import ItemError, Stubs
from zui.config import Config, RetryConfig
from zui.state import DashboardState

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class PollerState(enum.Enum):
    DISCONNECTED = "disconnected"
    SUBSCRIBING = "subscribing"
    STREAMING = "streaming"


class StreamPoller:
    def __init__(self, name: str, field: str, subscribe: Callable[[], Awaitable[Any]],
                 dashboard: DashboardState, retry: Optional[RetryConfig] = None,
                 sleep: Sleep = asyncio.sleep):
        self.name = name
        self.field = field
        self.subscribe = subscribe
        self.dashboard = dashboard
        self.retry = retry or RetryConfig()
        self._sleep = sleep
        self.state = PollerState.DISCONNECTED
        self.failures = 0
        self.received = 0
        self.errors = 0
        self.subscriptions = 0
        dashboard.claim(field, name)

    async def _backoff(self, reason: str) -> None:
        self.failures += 1
        delay = self.retry.delay(self.failures)
        logger.warning("%s: %s; retrying in %.1fs (attempt %d)", self.name, reason, delay, self.failures)
        await self._sleep(delay)

    async def run(self) -> None:
        while True:
            self.state = PollerState.SUBSCRIBING
            try:
                sub = await self.subscribe()
            except Exception as e:
                self.state = PollerState.DISCONNECTED
                await self._backoff(f"subscribe failed: {e}")
                continue

            self.subscriptions += 1
            self.state = PollerState.STREAMING
            logger.info("%s: streaming", self.name)
            productive = await self._consume(sub)
            self.state = PollerState.DISCONNECTED
            if not productive:
                await self._backoff("stream closed without items")

    async def _consume(self, sub: Any) -> bool:
        """Read until end of stream or transport loss. Returns whether any item arrived."""
        productive = False
        try:
            while True:
                try:
                    value = await sub.recv()
                except ItemError as e:
                    self.errors += 1
                    logger.warning("%s: error in stream: %s", self.name, e)
                    continue
                if value is None:
                    logger.info("%s: end of stream, resubscribing", self.name)
                    return productive
                self.dashboard.publish(self.field, value)
                self.received += 1
                self.failures = 0
                productive = True
        except Exception as e:
            logger.warning("%s: stream lost: %s", self.name, e)
            return productive
        finally:
            try:
                await sub.close()
            except Exception as e:
                logger.debug("%s: close failed: %s", self.name, e)


class UnaryPoller:
    """Fetch a one-shot value until it succeeds; with refresh set, fetch it again every refresh seconds."""

    def __init__(self, name: str, field: str, fetch: Callable[[], Awaitable[Any]],
                 dashboard: DashboardState, retry: Optional[RetryConfig] = None,
                 refresh: Optional[float] = None, sleep: Sleep = asyncio.sleep):
        self.name = name
        self.field = field
        self.fetch = fetch
        self.dashboard = dashboard
        self.retry = retry or RetryConfig()
        self.refresh = refresh
        self._sleep = sleep
        self.failures = 0
        self.received = 0
        dashboard.claim(field, name)

    async def run(self) -> None:
        while True:
            try:
                value = await self.fetch()
            except Exception as e:
                self.failures += 1
                delay = self.retry.delay(self.failures)
                logger.warning("%s: call failed: %s; retrying in %.1fs", self.name, e, delay)
                await self._sleep(delay)
                continue
            self.dashboard.publish(self.field, value)
            self.received += 1
            self.failures = 0
            if self.refresh is None:
                return
            await self._sleep(self.refresh)


# -------------------------
# Wiring
# -------------------------

def build_pollers(stubs: Stubs, dashboard: DashboardState, cfg: Config) -> List[Any]:
    retry = cfg.retry
    net = stubs.network
    return [
        UnaryPoller("farm-id", "farm_id", stubs.identity_manager.farm_id, dashboard, retry),
        UnaryPoller("farm", "farm", stubs.identity_manager.farm, dashboard, retry),
        UnaryPoller("node-id", "node_id", stubs.registrar.node_id, dashboard, retry),
        UnaryPoller("exit-device", "exit_device", net.get_public_exit_device, dashboard, retry,
                    refresh=cfg.exit_device_refresh_secs),
        StreamPoller("version", "version", stubs.version_monitor.version, dashboard, retry),
        StreamPoller("capacity", "capacity", stubs.statistics.reserved, dashboard, retry),
        StreamPoller("cpu", "cpu", stubs.sys_monitor.cpu, dashboard, retry),
        StreamPoller("memory", "memory", stubs.sys_monitor.memory, dashboard, retry),
        StreamPoller("zos", "zos_addresses", net.zos_addresses, dashboard, retry),
        StreamPoller("ygg", "ygg_addresses", net.ygg_addresses, dashboard, retry),
        StreamPoller("dmz", "dmz_addresses", net.dmz_addresses, dashboard, retry),
        StreamPoller("public", "public_config", net.public_addresses, dashboard, retry),
    ]


def run_pollers(pollers: List[Any]) -> List[asyncio.Task]:
    return [asyncio.create_task(p.run(), name=f"poller-{p.name}") for p in pollers]


async def cancel_pollers(tasks: List[asyncio.Task]) -> None:
    for t in tasks:
        t.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
