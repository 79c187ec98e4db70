# zui/bus.py
"""
Message-bus client for the node services.

Transport is a single redis connection shared by every stub:
- unary calls: a msgpack request is RPUSHed onto "<module>.<object>@<version>"
  and the answer is BLPOPed from the request's ReplyTo queue
- streams: pub/sub channel "<module>.<object>@<version>.<Method>", one msgpack
  {Data, Error} envelope per published item
"""
from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

import msgpack
import redis.asyncio as redis

from zui.models import (
    Capacity,
    ExitDevice,
    OptionPublicConfig,
    TimesStat,
    Version,
    VirtualMemory,
    decode_prefixes,
)
from zui.netcodec import IPNet

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BusError(Exception):
    """Base class for bus failures."""


class BusTimeout(BusError):
    pass


class ItemError(BusError):
    """A single call result or stream item was an error; a stream stays usable after it."""


class RemoteError(ItemError):
    pass


class DecodeError(ItemError):
    pass


# --------------------
# Framing
# --------------------

@dataclass(frozen=True)
class ObjectID:
    name: str
    version: str = "0.0.1"

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


def object_queue(module: str, obj: ObjectID) -> str:
    return f"{module}.{obj}"


def stream_channel(module: str, obj: ObjectID, method: str) -> str:
    return f"{object_queue(module, obj)}.{method}"


def encode_request(request_id: str, obj: ObjectID, method: str, args: List[Any], reply_to: str) -> bytes:
    return msgpack.packb(
        {
            "ID": request_id,
            "Inputs": [msgpack.packb(a, use_bin_type=True) for a in args],
            "Object": {"Name": obj.name, "Version": obj.version},
            "Method": method,
            "ReplyTo": reply_to,
        },
        use_bin_type=True,
    )


def _error_message(err: Any) -> str:
    if isinstance(err, dict):
        return str(err.get("Message") or err)
    if isinstance(err, (bytes, bytearray)):
        return err.decode(errors="replace")
    return str(err)


def decode_output(output: Optional[Dict[str, Any]]) -> Any:
    """Unwrap a {Data, Error} envelope. Data is itself msgpack when it arrives as bytes."""
    output = output or {}
    err = output.get("Error")
    if err:
        raise RemoteError(_error_message(err))
    data = output.get("Data")
    if isinstance(data, (bytes, bytearray)):
        try:
            return msgpack.unpackb(data, raw=False)
        except ValueError as e:
            raise DecodeError(f"invalid payload: {e}") from e
    return data


def unpack(payload: bytes) -> Dict[str, Any]:
    try:
        envelope = msgpack.unpackb(payload, raw=False)
    except ValueError as e:
        raise DecodeError(f"invalid envelope: {e}") from e
    if not isinstance(envelope, dict):
        raise DecodeError(f"unexpected envelope type {type(envelope).__name__}")
    return envelope


# --------------------
# Client
# --------------------

class Subscription(Generic[T]):
    """One open stream. recv() returns the next item, None at end of stream, and raises ItemError
    for an error item without closing the stream."""

    def __init__(self, channel: str, pubsub: Any, decode: Callable[[Any], T]):
        self.channel = channel
        self._pubsub = pubsub
        self._decode = decode
        self._messages = pubsub.listen()
        self._closed = False

    async def recv(self) -> Optional[T]:
        while not self._closed:
            try:
                message = await self._messages.__anext__()
            except StopAsyncIteration:
                self._closed = True
                return None
            if message.get("type") != "message":
                continue
            value = decode_output(unpack(message["data"]))
            try:
                return self._decode(value)
            except (TypeError, ValueError, AttributeError, KeyError) as e:
                raise DecodeError(f"{self.channel}: {e}") from e
        return None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe(self.channel)
        finally:
            await self._pubsub.aclose()


class BusClient:
    def __init__(self, url: str, call_timeout: float = 5.0, connection: Any = None):
        self.url = url
        self.call_timeout = call_timeout
        self._redis = connection if connection is not None else redis.Redis.from_url(url, decode_responses=False)

    async def call(self, module: str, obj: ObjectID, method: str, *args: Any) -> Any:
        request_id = uuid.uuid4().hex
        queue = object_queue(module, obj)
        await self._redis.rpush(queue, encode_request(request_id, obj, method, list(args), request_id))
        result = await self._redis.blpop([request_id], timeout=max(1, math.ceil(self.call_timeout)))
        if result is None:
            raise BusTimeout(f"{queue}.{method}: no response within {self.call_timeout}s")
        _key, payload = result
        response = unpack(payload)
        if response.get("ID") != request_id:
            logger.warning("%s.%s: reply %r does not match request %s", queue, method, response.get("ID"), request_id)
            raise DecodeError(f"{queue}.{method}: reply for {response.get('ID')!r}, expected {request_id}")
        return decode_output(response.get("Output"))

    async def stream(self, module: str, obj: ObjectID, method: str, decode: Callable[[Any], T]) -> Subscription[T]:
        channel = stream_channel(module, obj, method)
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        logger.debug("subscribed to %s", channel)
        return Subscription(channel, pubsub, decode)

    async def close(self) -> None:
        await self._redis.aclose()


# --------------------
# Service stubs
# --------------------

class _Stub:
    OBJECT: ObjectID

    def __init__(self, module: str, client: BusClient):
        self.module = module
        self.client = client

    async def _call(self, method: str, *args: Any) -> Any:
        return await self.client.call(self.module, self.OBJECT, method, *args)

    async def _stream(self, method: str, decode: Callable[[Any], T]) -> Subscription[T]:
        return await self.client.stream(self.module, self.OBJECT, method, decode)


class IdentityManagerStub(_Stub):
    OBJECT = ObjectID("manager")

    async def farm_id(self) -> int:
        return int(await self._call("FarmID"))

    async def farm(self) -> str:
        return str(await self._call("Farm"))


class RegistrarStub(_Stub):
    OBJECT = ObjectID("registrar")

    async def node_id(self) -> int:
        return int(await self._call("NodeID"))


class VersionMonitorStub(_Stub):
    OBJECT = ObjectID("monitor")

    async def version(self) -> Subscription[Version]:
        return await self._stream("Version", Version.from_wire)


class StatisticsStub(_Stub):
    OBJECT = ObjectID("statistics")

    async def reserved(self) -> Subscription[Capacity]:
        return await self._stream("ReservedStream", Capacity.from_wire)


class SystemMonitorStub(_Stub):
    OBJECT = ObjectID("system")

    async def cpu(self) -> Subscription[TimesStat]:
        return await self._stream("CPU", TimesStat.from_wire)

    async def memory(self) -> Subscription[VirtualMemory]:
        return await self._stream("Memory", VirtualMemory.from_wire)


class NetworkerStub(_Stub):
    OBJECT = ObjectID("network")

    async def zos_addresses(self) -> Subscription[List[IPNet]]:
        return await self._stream("ZOSAddresses", decode_prefixes)

    async def ygg_addresses(self) -> Subscription[List[IPNet]]:
        return await self._stream("YggAddresses", decode_prefixes)

    async def dmz_addresses(self) -> Subscription[List[IPNet]]:
        return await self._stream("DMZAddresses", decode_prefixes)

    async def public_addresses(self) -> Subscription[OptionPublicConfig]:
        return await self._stream("PublicAddresses", OptionPublicConfig.from_wire)

    async def get_public_exit_device(self) -> ExitDevice:
        raw = await self._call("GetPublicExitDevice")
        try:
            return ExitDevice.from_wire(raw)
        except (TypeError, ValueError, AttributeError) as e:
            raise DecodeError(f"GetPublicExitDevice: {e}") from e


@dataclass
class Stubs:
    identity_manager: Any
    registrar: Any
    version_monitor: Any
    statistics: Any
    sys_monitor: Any
    network: Any

    @classmethod
    def connect(cls, client: BusClient, modules: Any) -> "Stubs":
        return cls(
            identity_manager=IdentityManagerStub(modules.identity, client),
            registrar=RegistrarStub(modules.registrar, client),
            version_monitor=VersionMonitorStub(modules.identity, client),
            statistics=StatisticsStub(modules.provision, client),
            sys_monitor=SystemMonitorStub(modules.node, client),
            network=NetworkerStub(modules.network, client),
        )
