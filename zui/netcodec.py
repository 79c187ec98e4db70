# zui/netcodec.py
"""
Address codec for the node's network feeds.

The node services run on a runtime whose IP type is a plain byte slice:
- a 4-byte slice is always IPv4
- a 16-byte slice may still hold IPv4 in the IPv4-mapped form (::ffff:a.b.c.d),
  which is in fact how that runtime stores most IPv4 addresses
- masks are byte slices with a left-justified run of 1 bits

Everything here is pure and never touches the bus.
"""
from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

IPV4_LEN = 4
IPV6_LEN = 16
_V4_IN_V6_PREFIX = bytes(10) + b"\xff\xff"


# --------------------
# Addresses
# --------------------

def decode_address(buf: bytes) -> Address:
    """Interpret a raw IP byte slice. Never fails: short input is zero-padded, long input truncated.

    Only the ::ffff:a.b.c.d mapped form is folded to IPv4. The deprecated IPv4-compatible
    form (::a.b.c.d) stays IPv6, so an empty slice reads as "::" rather than "0.0.0.0".
    """
    buf = bytes(buf or b"")
    if len(buf) == IPV4_LEN:
        return ipaddress.IPv4Address(buf)
    raw = buf[:IPV6_LEN].ljust(IPV6_LEN, b"\x00")
    addr = ipaddress.IPv6Address(raw)
    if addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def encode_address(addr: Union[Address, str], mapped: bool = False) -> bytes:
    if isinstance(addr, str):
        addr = ipaddress.ip_address(addr)
    if addr.version == 4:
        if mapped:
            return _V4_IN_V6_PREFIX + addr.packed
        return addr.packed
    return addr.packed


# --------------------
# Masks
# --------------------

def mask_bits(mask: bytes) -> int:
    # Each byte contributes the number of left shifts it takes to empty it,
    # which is its run of ones for any left-justified byte.
    size = 0
    for v in bytes(mask or b""):
        x = v
        while x:
            x = (x << 1) & 0xFF
            size += 1
    return size


def mask_from_bits(n: int) -> bytes:
    """Build a mask one bit at a time, opening a new byte only when the current
    one is full and bits remain. The peer builds masks the same way, so a /24
    is three bytes long, not four."""
    if n < 0:
        raise ValueError(f"Invalid prefix length: {n}")
    if n == 0:
        return b""
    v = [0]
    index = 0
    for i in range(n):
        v[index] = (v[index] >> 1) | 0x80
        if v[index] == 0xFF and i < n - 1:
            v.append(0)
            index += 1
    return bytes(v)


def format_prefix(addr: Union[Address, bytes], mask: bytes) -> str:
    if isinstance(addr, (bytes, bytearray)):
        addr = decode_address(addr)
    return f"{addr}/{mask_bits(mask)}"


# --------------------
# Composite records
# --------------------

@dataclass(frozen=True)
class IPNet:
    ip: bytes = b""
    mask: bytes = b""

    @classmethod
    def from_wire(cls, raw: Optional[Dict[str, Any]]) -> "IPNet":
        raw = raw or {}
        return cls(ip=bytes(raw.get("IP") or b""), mask=bytes(raw.get("Mask") or b""))

    @classmethod
    def from_cidr(cls, cidr: str, mapped: bool = False) -> "IPNet":
        iface = ipaddress.ip_interface(cidr)
        return cls(ip=encode_address(iface.ip, mapped=mapped), mask=mask_from_bits(iface.network.prefixlen))

    def to_wire(self) -> Dict[str, bytes]:
        return {"IP": self.ip, "Mask": self.mask}

    @property
    def address(self) -> Address:
        return decode_address(self.ip)

    @property
    def prefixlen(self) -> int:
        return mask_bits(self.mask)

    @property
    def is_empty(self) -> bool:
        return not self.ip

    def __str__(self) -> str:
        return format_prefix(self.address, self.mask)
