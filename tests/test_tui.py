import asyncio
import io
import os
import pty
import termios
import time
from types import SimpleNamespace

import pytest
from rich.console import Console

from conftest import fake_stubs
from zui import tui
from zui.config import Config
from zui.models import Capacity, ExitDevice, OptionPublicConfig, TimesStat, Version, VirtualMemory
from zui.netcodec import IPNet
from zui.poller import PollerState, StreamPoller
from zui.state import DashboardState
from zui.tui import RenderLoop, TerminalKeys, build_view, fmt_bytes, fmt_percent, split_keys


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class FakeKeys:
    """Key source driven by a fake clock. script maps read number -> (fraction of the wait, key)."""

    def __init__(self, clock, script=None, limit=1000):
        self.clock = clock
        self.script = script or {}
        self.reads = 0
        self.limit = limit

    async def read(self, timeout):
        self.reads += 1
        if self.reads in self.script:
            fraction, key = self.script[self.reads]
            self.clock.now += timeout * fraction
            return key
        if self.reads >= self.limit:
            return "q"
        self.clock.now += timeout
        return None


def _render(state, pollers=()):
    console = Console(record=True, width=140)
    console.print(build_view(state, pollers))
    return console.export_text()


class TestRenderLoop:
    @pytest.mark.asyncio
    async def test_one_frame_per_tick_without_input(self):
        clock = FakeClock()
        state = DashboardState()
        frames = []
        keys = FakeKeys(clock, script={5: (0.5, "q")})
        loop = RenderLoop(state, lambda s: frames.append(clock.now), keys, tick_rate=0.25, clock=clock)
        await loop.run()

        assert frames == [0.0, 0.25, 0.5, 0.75, 1.0]
        assert state.ticks == 4
        assert loop.frames == 5

    @pytest.mark.asyncio
    async def test_quit_exits_on_same_iteration(self):
        clock = FakeClock()
        state = DashboardState()
        keys = FakeKeys(clock, script={1: (0.1, "q")})
        loop = RenderLoop(state, lambda s: None, keys, tick_rate=0.25, clock=clock)
        await loop.run()

        assert loop.frames == 1
        assert state.ticks == 0
        assert clock.now == pytest.approx(0.025)

    @pytest.mark.asyncio
    async def test_non_character_keys_ignored(self):
        clock = FakeClock()
        state = DashboardState()
        keys = FakeKeys(clock, script={1: (0.0, "\x1b[A"), 2: (0.0, "\n"), 3: (0.0, "v")}, limit=4)
        await RenderLoop(state, lambda s: None, keys, clock=clock).run()

        assert state.view == "network"
        assert state.should_quit

    @pytest.mark.asyncio
    async def test_render_error_propagates(self):
        clock = FakeClock()

        def draw(_state):
            raise RuntimeError("terminal gone")

        with pytest.raises(RuntimeError, match="terminal gone"):
            await RenderLoop(DashboardState(), draw, FakeKeys(clock), clock=clock).run()

    @pytest.mark.asyncio
    async def test_slow_frames_still_let_other_tasks_run(self):
        state = DashboardState()
        spins = 0

        async def spin():
            nonlocal spins
            while True:
                spins += 1
                await asyncio.sleep(0)

        with TerminalKeys(NotATerminal()) as keys:
            loop = None

            def draw(s):
                time.sleep(0.02)  # longer than a tick
                if loop.frames >= 20:
                    s.should_quit = True

            async def press():
                await asyncio.sleep(0)
                keys.push("q")

            loop = RenderLoop(state, draw, keys, tick_rate=0.01)
            spinner = asyncio.create_task(spin())
            presser = asyncio.create_task(press())
            try:
                await loop.run()
            finally:
                spinner.cancel()
                presser.cancel()

        assert spins > 0
        assert loop.frames < 20
        assert state.should_quit


class NotATerminal:
    def isatty(self):
        return False


class PtyStream:
    def __init__(self, fd):
        self.fd = fd

    def fileno(self):
        return self.fd

    def isatty(self):
        return os.isatty(self.fd)


class TestTerminalKeys:
    @pytest.mark.asyncio
    async def test_keys_from_a_terminal(self):
        master, slave = pty.openpty()
        try:
            saved = termios.tcgetattr(slave)
            with TerminalKeys(PtyStream(slave)) as keys:
                assert not termios.tcgetattr(slave)[3] & termios.ICANON
                os.write(master, b"q")
                assert await keys.read(1.0) == "q"
                os.write(master, b"\x1b[A")
                assert await keys.read(1.0) == "\x1b[A"
            assert termios.tcgetattr(slave) == saved
        finally:
            os.close(master)
            os.close(slave)

    @pytest.mark.asyncio
    async def test_idle_read_times_out(self):
        with TerminalKeys(NotATerminal()) as keys:
            assert await keys.read(0.01) is None
            assert await keys.read(0) is None
            keys.push("v")
            assert await keys.read(0) == "v"


class RecordingKeys:
    def __init__(self):
        self.exc = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.exc = exc[1]

    async def read(self, timeout):
        await asyncio.sleep(0)
        return None


class ClosingBusClient:
    def __init__(self, url, call_timeout=5.0):
        self.url = url
        self.closed = False

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_dashboard_restores_terminal_and_closes_bus_on_error(monkeypatch):
    clients = []
    keys = RecordingKeys()
    views = []

    def client(url, call_timeout=5.0):
        clients.append(ClosingBusClient(url, call_timeout))
        return clients[-1]

    def view(state, pollers=()):
        views.append(state)
        if len(views) > 1:
            raise RuntimeError("terminal gone")
        return build_view(state, pollers)

    monkeypatch.setattr(tui, "BusClient", client)
    monkeypatch.setattr(tui, "Stubs", SimpleNamespace(connect=lambda c, modules: fake_stubs()))
    monkeypatch.setattr(tui, "load_environment", lambda state: None)
    monkeypatch.setattr(tui, "TerminalKeys", lambda: keys)
    monkeypatch.setattr(tui, "build_view", view)

    with pytest.raises(RuntimeError, match="terminal gone"):
        await tui.run_dashboard(Config(), console=Console(file=io.StringIO()))

    assert isinstance(keys.exc, RuntimeError)
    assert clients[0].closed


def test_split_keys():
    assert split_keys("qv") == ["q", "v"]
    assert split_keys("a\x1b[A") == ["a", "\x1b[A"]
    assert split_keys("") == []


def test_formatting():
    assert fmt_percent(None).plain == "--"
    assert fmt_percent(12.34).plain == "12.3%"
    assert fmt_percent(150).plain == "100.0%"
    assert fmt_bytes(2 * 1024 ** 3) == "2.0 GiB"
    assert fmt_bytes(None) == "--"


class TestViews:
    def _state(self):
        state = DashboardState()
        state.publish("node_id", 17)
        state.publish("farm_id", 1)
        state.publish("farm", "freefarm")
        state.publish("version", Version(3, 0, 1))
        state.publish("capacity", Capacity(cru=4, sru=0, hru=0, mru=8 * 1024 ** 3, ipv4u=1))
        state.publish("cpu", TimesStat(percent=42.0))
        state.publish("memory", VirtualMemory(total=16 * 1024 ** 3, available=0, used=0, used_percent=55.5))
        state.publish("zos_addresses", [IPNet.from_cidr("192.168.1.20/24", mapped=True), IPNet.from_cidr("10.1.0.2/16")])
        state.publish("public_config", OptionPublicConfig(
            ipv4=IPNet.from_cidr("185.69.166.10/24"), ipv6=IPNet(), has_public_config=True))
        state.publish("exit_device", ExitDevice(is_dual=True, as_dual_interface="eth1"))
        return state

    def test_empty_state_renders_placeholders(self):
        text = _render(DashboardState())
        assert "ZUI (overview)" in text
        assert "--" in text

    def test_overview(self):
        text = _render(self._state())
        assert "17" in text
        assert "freefarm (1)" in text
        assert "3.0.1" in text
        assert "42.0%" in text
        assert "192.168.1.20/24" in text
        assert "10.1.0.2/16" not in text
        assert "(+1)" in text
        assert "185.69.166.10/24" in text
        assert "Dual eth1" in text

    def test_network_view_lists_everything(self):
        state = self._state()
        state.on_key("v")
        text = _render(state)
        assert "ZUI (network)" in text
        assert "10.1.0.2/16" in text

    def test_footer_lists_stream_feeds(self):
        state = DashboardState()

        async def subscribe():
            return None

        poller = StreamPoller("cpu", "cpu", subscribe, state)
        poller.state = PollerState.STREAMING
        text = _render(state, [poller])
        assert "Feeds: cpu" in text
