# zui/state.py
"""
Aggregate dashboard state.

Every telemetry field has exactly one writer (its poller), registered with claim();
the render loop is the only reader and the only writer of the UI flags. Fields are
replaced wholesale, never merged, so a frame may mix values of different ages.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from zui.models import Capacity, ExitDevice, OptionPublicConfig, TimesStat, Version, VirtualMemory
from zui.netcodec import IPNet

VIEWS = ("overview", "network")
QUIT_KEY = "q"
TELEMETRY_FIELDS = (
    "farm_id",
    "farm",
    "node_id",
    "version",
    "capacity",
    "cpu",
    "memory",
    "zos_addresses",
    "ygg_addresses",
    "dmz_addresses",
    "public_config",
    "exit_device",
)


class FieldOwnershipError(RuntimeError):
    pass


@dataclass
class DashboardState:
    farm_id: Optional[int] = None
    farm: Optional[str] = None
    node_id: Optional[int] = None
    version: Optional[Version] = None
    capacity: Optional[Capacity] = None
    cpu: Optional[TimesStat] = None
    memory: Optional[VirtualMemory] = None
    zos_addresses: List[IPNet] = field(default_factory=list)
    ygg_addresses: List[IPNet] = field(default_factory=list)
    dmz_addresses: List[IPNet] = field(default_factory=list)
    public_config: Optional[OptionPublicConfig] = None
    exit_device: Optional[ExitDevice] = None

    # environment (set once at startup)
    running_mode: str = "unknown"
    limited_cache: bool = False

    # UI-local, owned by the render loop
    should_quit: bool = False
    view: str = VIEWS[0]
    ticks: int = 0

    updated_at: Dict[str, float] = field(default_factory=dict)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    _owners: Dict[str, str] = field(default_factory=dict, repr=False)

    # --------------------
    # Writers
    # --------------------

    def claim(self, name: str, owner: str) -> None:
        if name not in TELEMETRY_FIELDS:
            raise KeyError(f"Unknown dashboard field: {name}")
        current = self._owners.get(name)
        if current is not None and current != owner:
            raise FieldOwnershipError(f"{name} is already written by {current}, refusing {owner}")
        self._owners[name] = owner

    def owner(self, name: str) -> Optional[str]:
        return self._owners.get(name)

    def publish(self, name: str, value: Any) -> None:
        if name not in TELEMETRY_FIELDS:
            raise KeyError(f"Unknown dashboard field: {name}")
        setattr(self, name, value)
        self.updated_at[name] = self.clock()

    def age(self, name: str) -> Optional[float]:
        ts = self.updated_at.get(name)
        if ts is None:
            return None
        return self.clock() - ts

    # --------------------
    # Render-loop handlers
    # --------------------

    def on_key(self, ch: str) -> None:
        if ch == QUIT_KEY:
            self.should_quit = True
        elif ch == "v":
            self.view = VIEWS[(VIEWS.index(self.view) + 1) % len(VIEWS)]
        elif ch in ("1", "2"):
            self.view = VIEWS[int(ch) - 1]

    def on_tick(self) -> None:
        # No time-driven state yet beyond the counter.
        self.ticks += 1
