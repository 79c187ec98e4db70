# zui/tui.py
"""
ZUI: live terminal dashboard for a single node.

Features:
- One poller task per node feed (version, capacity, cpu, memory, the three address
  planes, public config) plus the identity values and exit device
- Redraw every 250ms from whatever each feed last delivered
- Two views: overview and network detail ('v' to switch, '1'/'2' to pick)
- Press 'q' to quit; the terminal mode is restored on the way out

Requirements:
  rich
  typer
  redis, msgpack (via bus.py)

Usage:
  zui run --config ./zui.yaml
  zui run --redis redis://10.0.0.5:6379 --log-file /var/log/zui.log
"""
from __future__ import annotations

import asyncio
import logging
import os
import sys
import termios
import time
import tty
from typing import Any, Callable, List, Optional, Sequence

from rich import box
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from zui.bus import BusClient, Stubs
from zui.config import Config
from zui.environment import LIMITED_CACHE_FLAG, check_flag, kernel_params, running_mode
from zui.netcodec import IPNet
from zui.poller import PollerState, StreamPoller, build_pollers, cancel_pollers, run_pollers
from zui.state import QUIT_KEY, DashboardState

logger = logging.getLogger(__name__)

TICK_RATE = 0.25  # seconds

GIB = 1024 ** 3


# --------------------
# Formatting
# --------------------

def missing() -> Text:
    return Text("--", style="dim")


def fmt_percent(val: Optional[float]) -> Text:
    if val is None:
        return missing()
    val = max(0.0, min(100.0, val))
    if val <= 50.0:
        style = "bold green"
    elif val <= 80.0:
        style = "yellow"
    elif val <= 95.0:
        style = "red"
    else:
        style = "bold red"
    return Text(f"{val:.1f}%", style=style)


def fmt_bytes(n: Optional[int]) -> str:
    if n is None:
        return "--"
    if n >= GIB:
        return f"{n / GIB:.1f} GiB"
    if n >= 1024 ** 2:
        return f"{n / 1024 ** 2:.1f} MiB"
    return f"{n} B"


def fmt_value(val: Any) -> Text:
    if val is None:
        return missing()
    return Text(str(val))


def fmt_prefixes(prefixes: Sequence[IPNet], limit: Optional[int] = None) -> Text:
    if not prefixes:
        return missing()
    shown = list(prefixes) if limit is None else list(prefixes)[:limit]
    t = Text("\n".join(str(p) for p in shown))
    hidden = len(prefixes) - len(shown)
    if hidden > 0:
        t.append(f" (+{hidden})", style="dim")
    return t


# --------------------
# Rendering
# --------------------

def build_header(state: DashboardState) -> Text:
    t = Text(" Node ", style="bold")
    t.append_text(fmt_value(state.node_id))
    t.append("  Farm ", style="bold")
    if state.farm is None and state.farm_id is None:
        t.append_text(missing())
    else:
        t.append(f"{state.farm or '--'} ({state.farm_id if state.farm_id is not None else '--'})")
    t.append("  Version ", style="bold")
    t.append_text(fmt_value(state.version))
    t.append("  Mode ", style="bold")
    t.append(state.running_mode)
    if state.limited_cache:
        t.append("  limited cache", style="yellow")
    return t


def build_capacity_table(state: DashboardState) -> Table:
    tbl = Table(box=box.SIMPLE_HEAVY, padding=(0, 1), title="Reserved")
    tbl.add_column("Resource", no_wrap=True)
    tbl.add_column("Value", justify="right", no_wrap=True)
    cap = state.capacity
    rows = [
        ("CRU", fmt_value(cap.cru if cap else None)),
        ("MRU", Text(fmt_bytes(cap.mru)) if cap else missing()),
        ("SRU", Text(fmt_bytes(cap.sru)) if cap else missing()),
        ("HRU", Text(fmt_bytes(cap.hru)) if cap else missing()),
        ("Public IPs", fmt_value(cap.ipv4u if cap else None)),
    ]
    for label, val in rows:
        tbl.add_row(Text(label, style="bold"), val)
    return tbl


def build_usage_table(state: DashboardState) -> Table:
    tbl = Table(box=box.SIMPLE_HEAVY, padding=(0, 1), title="Usage")
    tbl.add_column("Metric", no_wrap=True)
    tbl.add_column("Value", justify="right", no_wrap=True)
    tbl.add_row(Text("CPU", style="bold"), fmt_percent(state.cpu.percent if state.cpu else None))
    mem = state.memory
    tbl.add_row(Text("Memory", style="bold"), fmt_percent(mem.used_percent if mem else None))
    tbl.add_row(Text("Used / Total", style="bold"),
                Text(f"{fmt_bytes(mem.used)} / {fmt_bytes(mem.total)}") if mem else missing())
    tbl.add_row(Text("Available", style="bold"), Text(fmt_bytes(mem.available)) if mem else missing())
    return tbl


def build_network_table(state: DashboardState, full: bool = False) -> Table:
    limit = None if full else 1
    tbl = Table(box=box.SIMPLE_HEAVY, padding=(0, 1), title="Network")
    tbl.add_column("Plane", no_wrap=True)
    tbl.add_column("Addresses")
    tbl.add_row(Text("ZOS", style="bold"), fmt_prefixes(state.zos_addresses, limit))
    tbl.add_row(Text("Yggdrasil", style="bold"), fmt_prefixes(state.ygg_addresses, limit))
    tbl.add_row(Text("DMZ", style="bold"), fmt_prefixes(state.dmz_addresses, limit))

    pub = state.public_config
    if pub is None:
        tbl.add_row(Text("Public", style="bold"), missing())
    elif not pub.has_public_config:
        tbl.add_row(Text("Public", style="bold"), Text("no public config", style="dim"))
    else:
        tbl.add_row(Text("Public IPv4", style="bold"), fmt_value(pub.ipv4 if not pub.ipv4.is_empty else None))
        tbl.add_row(Text("Public IPv6", style="bold"), fmt_value(pub.ipv6 if not pub.ipv6.is_empty else None))
    tbl.add_row(Text("Exit device", style="bold"), fmt_value(state.exit_device))
    return tbl


def build_footer(pollers: Sequence[Any]) -> Text:
    styles = {
        PollerState.STREAMING: "green",
        PollerState.SUBSCRIBING: "yellow",
        PollerState.DISCONNECTED: "red",
    }
    t = Text(" Feeds: ")
    for p in pollers:
        if not isinstance(p, StreamPoller):
            continue
        t.append(p.name, style=styles[p.state])
        t.append(" ")
    t.append(f"  [{QUIT_KEY}] quit  [v] switch view", style="dim")
    return t


def build_view(state: DashboardState, pollers: Sequence[Any] = ()) -> Panel:
    if state.view == "network":
        body = Group(build_header(state), build_network_table(state, full=True))
    else:
        grid = Table.grid(expand=True, padding=(0, 2))
        grid.add_column()
        grid.add_column()
        grid.add_row(build_capacity_table(state), build_usage_table(state))
        body = Group(build_header(state), grid, build_network_table(state))
    return Panel(Group(body, build_footer(pollers)), title=f"ZUI ({state.view})", box=box.SQUARE)


# --------------------
# Keyboard
# --------------------

def is_char_key(key: str) -> bool:
    return len(key) == 1 and key.isprintable()


class TerminalKeys:
    """Keystrokes from stdin in cbreak mode. Escape sequences arrive as one non-character key."""

    def __init__(self, stream: Any = None):
        self.stream = stream or sys.stdin
        self._queue: asyncio.Queue = asyncio.Queue()
        self._fd: Optional[int] = None
        self._original: Optional[List[Any]] = None

    def __enter__(self) -> "TerminalKeys":
        if not self.stream.isatty():
            return self
        self._fd = self.stream.fileno()
        self._original = termios.tcgetattr(self._fd)
        tty.setcbreak(self._fd)
        asyncio.get_running_loop().add_reader(self._fd, self._on_readable)
        return self

    def __exit__(self, *exc: Any) -> None:
        if self._fd is None:
            return
        asyncio.get_running_loop().remove_reader(self._fd)
        if self._original is not None:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._original)
        self._fd = None

    def _on_readable(self) -> None:
        data = os.read(self._fd, 64).decode(errors="ignore")
        for key in split_keys(data):
            self.push(key)

    def push(self, key: str) -> None:
        self._queue.put_nowait(key)

    async def read(self, timeout: float) -> Optional[str]:
        if timeout <= 0 or not self._queue.empty():
            # always suspend once: the stdin reader and the pollers share this thread
            await asyncio.sleep(0)
            if not self._queue.empty():
                return self._queue.get_nowait()
            return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


def split_keys(data: str) -> List[str]:
    keys: List[str] = []
    i = 0
    while i < len(data):
        if data[i] == "\x1b":
            # the rest of the read belongs to the escape sequence
            keys.append(data[i:])
            break
        keys.append(data[i])
        i += 1
    return keys


# --------------------
# Main loop
# --------------------

class RenderLoop:
    def __init__(self, state: DashboardState, draw: Callable[[DashboardState], None], keys: Any,
                 tick_rate: float = TICK_RATE, clock: Callable[[], float] = time.monotonic):
        self.state = state
        self.draw = draw
        self.keys = keys
        self.tick_rate = tick_rate
        self.clock = clock
        self.frames = 0

    async def run(self) -> None:
        last_tick = self.clock()
        while True:
            self.draw(self.state)
            self.frames += 1

            timeout = max(0.0, self.tick_rate - (self.clock() - last_tick))
            if timeout <= 0:
                # a frame took a whole tick; let the other tasks run before reading keys
                await asyncio.sleep(0)
            key = await self.keys.read(timeout)
            if key is not None and is_char_key(key):
                self.state.on_key(key)

            if self.clock() - last_tick >= self.tick_rate:
                self.state.on_tick()
                last_tick = self.clock()
            if self.state.should_quit:
                return


def load_environment(state: DashboardState) -> None:
    mode = running_mode(kernel_params())
    state.running_mode = mode.label if mode else "unknown"
    state.limited_cache = check_flag(LIMITED_CACHE_FLAG)


async def run_dashboard(cfg: Config, console: Optional[Console] = None) -> None:
    client = BusClient(cfg.redis_url, call_timeout=cfg.call_timeout_secs)
    stubs = Stubs.connect(client, cfg.modules)
    state = DashboardState()
    load_environment(state)
    pollers = build_pollers(stubs, state, cfg)
    tasks = run_pollers(pollers)
    logger.info("dashboard starting against %s with %d pollers", cfg.redis_url, len(pollers))
    try:
        with Live(build_view(state, pollers), console=console, screen=True, auto_refresh=False) as live, \
                TerminalKeys() as keys:
            def draw(s: DashboardState) -> None:
                live.update(build_view(s, pollers), refresh=True)

            await RenderLoop(state, draw, keys).run()
    finally:
        await cancel_pollers(tasks)
        await client.close()
    logger.info("dashboard stopped")
