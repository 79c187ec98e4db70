# zui/models.py
"""Wire records published by the node services. Field names on the wire are PascalCase and fixed."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from zui.netcodec import IPNet


# --------------------
# Identity / version
# --------------------

@dataclass(frozen=True)
class PRVersion:
    version_str: str = ""
    version_num: int = 0
    is_num: bool = False

    @classmethod
    def from_wire(cls, raw: Dict[str, Any]) -> "PRVersion":
        return cls(
            version_str=str(raw.get("VersionStr", "")),
            version_num=int(raw.get("VersionNum", 0)),
            is_num=bool(raw.get("IsNum", False)),
        )

    def __str__(self) -> str:
        return str(self.version_num) if self.is_num else self.version_str


@dataclass(frozen=True)
class Version:
    major: int
    minor: int
    patch: int
    pre: Optional[List[PRVersion]] = None
    build: Optional[List[str]] = None  # no precedence, display only

    @classmethod
    def from_wire(cls, raw: Dict[str, Any]) -> "Version":
        pre = raw.get("Pre")
        build = raw.get("Build")
        return cls(
            major=int(raw.get("Major", 0)),
            minor=int(raw.get("Minor", 0)),
            patch=int(raw.get("Patch", 0)),
            pre=[PRVersion.from_wire(p) for p in pre] if pre else None,
            build=[str(b) for b in build] if build else None,
        )

    def __str__(self) -> str:
        s = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre:
            s += "_" + ".".join(str(p) for p in self.pre)
        if self.build:
            s += "+" + ".".join(self.build)
        return s


# --------------------
# Resources
# --------------------

@dataclass(frozen=True)
class Capacity:
    cru: int = 0
    sru: int = 0  # bytes
    hru: int = 0  # bytes
    mru: int = 0  # bytes
    ipv4u: int = 0

    @classmethod
    def from_wire(cls, raw: Dict[str, Any]) -> "Capacity":
        return cls(
            cru=int(raw.get("CRU", 0)),
            sru=int(raw.get("SRU", 0)),
            hru=int(raw.get("HRU", 0)),
            mru=int(raw.get("MRU", 0)),
            ipv4u=int(raw.get("IPV4U", 0)),
        )


@dataclass(frozen=True)
class VirtualMemory:
    total: int = 0
    available: int = 0
    used: int = 0
    used_percent: float = 0.0

    @classmethod
    def from_wire(cls, raw: Dict[str, Any]) -> "VirtualMemory":
        return cls(
            total=int(raw.get("Total", 0)),
            available=int(raw.get("Available", 0)),
            used=int(raw.get("Used", 0)),
            used_percent=float(raw.get("UsedPercent", 0.0)),
        )


@dataclass(frozen=True)
class TimesStat:
    percent: float = 0.0

    @classmethod
    def from_wire(cls, raw: Dict[str, Any]) -> "TimesStat":
        return cls(percent=float(raw.get("Percent", 0.0)))


# --------------------
# Network
# --------------------

def decode_prefixes(raw: Optional[List[Dict[str, Any]]]) -> List[IPNet]:
    return [IPNet.from_wire(r) for r in (raw or [])]


@dataclass(frozen=True)
class OptionPublicConfig:
    ipv4: IPNet = field(default_factory=IPNet)
    ipv6: IPNet = field(default_factory=IPNet)
    has_public_config: bool = False

    @classmethod
    def from_wire(cls, raw: Dict[str, Any]) -> "OptionPublicConfig":
        return cls(
            ipv4=IPNet.from_wire(raw.get("IPv4")),
            ipv6=IPNet.from_wire(raw.get("IPv6")),
            has_public_config=bool(raw.get("HasPublicConfig", False)),
        )


@dataclass(frozen=True)
class ExitDevice:
    # is_single: br-pub is attached to the zos bridge
    # is_dual: br-pub is attached to a physical nic named by as_dual_interface
    is_single: bool = False
    is_dual: bool = False
    as_dual_interface: str = ""

    @classmethod
    def from_wire(cls, raw: Dict[str, Any]) -> "ExitDevice":
        return cls(
            is_single=bool(raw.get("IsSingle", False)),
            is_dual=bool(raw.get("IsDual", False)),
            as_dual_interface=str(raw.get("AsDualInterface", "")),
        )

    @property
    def kind(self) -> str:
        if self.is_single:
            return "single"
        if self.is_dual:
            return "dual"
        return "unknown"

    def __str__(self) -> str:
        kind = self.kind
        if kind == "single":
            return "Single"
        if kind == "dual":
            return f"Dual {self.as_dual_interface}"
        return "Unknown"
