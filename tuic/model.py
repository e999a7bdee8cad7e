"""A TUIC connection model: task negotiation, counting and packet reassembly.

Nothing here performs I/O. A :class:`Connection` turns the commands it sends
and receives into task objects, keeps count of live ``Connect`` tasks and UDP
sessions, and buffers packet fragments until they can be reassembled.
"""

from __future__ import annotations

import abc
import hmac
import time
import uuid as _uuid
import weakref
from datetime import timedelta
from typing import Callable, Optional, Union

from tuic.assembly import (
    IncomingPacket,
    OutgoingPacket,
    Registration,
    TaskCounter,
    UdpSessions,
)
from tuic.protocol import (
    Address,
    Authenticate,
    Connect,
    Dissociate,
    Header,
    Heartbeat,
    Packet,
)

__all__ = [
    "KeyingMaterialExporter",
    "AuthenticateTx",
    "AuthenticateRx",
    "ConnectTx",
    "ConnectRx",
    "DissociateTx",
    "DissociateRx",
    "HeartbeatTx",
    "HeartbeatRx",
    "Connection",
]

Password = Union[str, bytes, bytearray, memoryview]


def _password_bytes(password: Password) -> bytes:
    if isinstance(password, str):
        return password.encode("utf-8")
    return bytes(password)


def _export(exporter: "KeyingMaterialExporter", uuid: _uuid.UUID, password: Password) -> bytes:
    token = bytes(exporter.export_keying_material(uuid.bytes, _password_bytes(password)))
    if len(token) != 32:
        raise ValueError(f"keying material must be 32 bytes, got {len(token)}")
    return token


def _unwrap(header, expected: type):
    command = header.command if isinstance(header, Header) else header
    if not isinstance(command, expected):
        raise TypeError(f"expected a {expected.__name__} command, got {type(command).__name__}")
    return command


class KeyingMaterialExporter(abc.ABC):
    """Source of TLS keying material used to derive authentication tokens."""

    @abc.abstractmethod
    def export_keying_material(self, label: bytes, context: bytes) -> bytes:
        """Return 32 bytes of keying material for ``label`` and ``context``."""


class AuthenticateTx:
    """An ``Authenticate`` command about to be sent."""

    def __init__(self, uuid: _uuid.UUID, password: Password, exporter: KeyingMaterialExporter) -> None:
        self.header = Header(Authenticate(uuid, _export(exporter, uuid, password)))

    def __repr__(self) -> str:
        return f"AuthenticateTx(header={self.header!r})"


class AuthenticateRx:
    """A received ``Authenticate`` command."""

    def __init__(self, uuid: _uuid.UUID, token: bytes) -> None:
        self.uuid = uuid
        self.token = bytes(token)

    def is_valid(self, password: Password, exporter: KeyingMaterialExporter) -> bool:
        """Return whether the token matches the one derived from ``password``."""
        expected = _export(exporter, self.uuid, password)
        return hmac.compare_digest(self.token, expected)

    def __repr__(self) -> str:
        return f"AuthenticateRx(uuid={self.uuid!r}, token={self.token!r})"


class _CountedTask:
    """A task that holds a registration in a counter until released."""

    def __init__(self, registration: Registration) -> None:
        self._registration = registration
        self._finalizer = weakref.finalize(self, registration.release)

    @property
    def released(self) -> bool:
        return self._registration.released

    def _release(self) -> None:
        self._finalizer()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self._release()


class ConnectTx(_CountedTask):
    """A ``Connect`` command about to be sent; counted until released."""

    def __init__(self, registration: Registration, addr: Address) -> None:
        super().__init__(registration)
        self.header = Header(Connect(addr))

    def release(self) -> None:
        """Stop counting this task. Further calls do nothing."""
        self._release()

    def __repr__(self) -> str:
        return f"ConnectTx(header={self.header!r})"


class ConnectRx(_CountedTask):
    """A received ``Connect`` command; counted until released."""

    def __init__(self, registration: Registration, addr: Address) -> None:
        super().__init__(registration)
        self.addr = addr

    def release(self) -> None:
        """Stop counting this task. Further calls do nothing."""
        self._release()

    def __repr__(self) -> str:
        return f"ConnectRx(addr={self.addr!r})"


class DissociateTx:
    """A ``Dissociate`` command about to be sent."""

    def __init__(self, assoc_id: int) -> None:
        self.header = Header(Dissociate(assoc_id))

    def __repr__(self) -> str:
        return f"DissociateTx(header={self.header!r})"


class DissociateRx:
    """A received ``Dissociate`` command."""

    def __init__(self, assoc_id: int) -> None:
        self.assoc_id = assoc_id

    def __repr__(self) -> str:
        return f"DissociateRx(assoc_id={self.assoc_id!r})"


class HeartbeatTx:
    """A ``Heartbeat`` command about to be sent."""

    def __init__(self) -> None:
        self.header = Header(Heartbeat())

    def __repr__(self) -> str:
        return f"HeartbeatTx(header={self.header!r})"


class HeartbeatRx:
    """A received ``Heartbeat`` command."""

    def __repr__(self) -> str:
        return "HeartbeatRx()"


class Connection:
    """Task bookkeeping for one TUIC connection."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._connect_counter = TaskCounter()
        self._associate_counter = TaskCounter()
        self._udp_sessions = UdpSessions(self._associate_counter, clock=clock)

    def send_authenticate(
        self, uuid: _uuid.UUID, password: Password, exporter: KeyingMaterialExporter
    ) -> AuthenticateTx:
        return AuthenticateTx(uuid, password, exporter)

    def recv_authenticate(self, header) -> AuthenticateRx:
        command = _unwrap(header, Authenticate)
        return AuthenticateRx(command.uuid, command.token)

    def send_connect(self, addr: Address) -> ConnectTx:
        return ConnectTx(self._connect_counter.register(), addr)

    def recv_connect(self, header) -> ConnectRx:
        command = _unwrap(header, Connect)
        return ConnectRx(self._connect_counter.register(), command.addr)

    def send_packet(self, assoc_id: int, addr: Address, max_pkt_size: int) -> OutgoingPacket:
        return self._udp_sessions.send_packet(assoc_id, addr, max_pkt_size)

    def recv_packet(self, header) -> Optional[IncomingPacket]:
        """Accept a packet header; return ``None`` if its session is unknown."""
        p = _unwrap(header, Packet)
        return self._udp_sessions.recv_packet(
            p.assoc_id, p.pkt_id, p.frag_total, p.frag_id, p.size, p.addr
        )

    def recv_packet_unrestricted(self, header) -> IncomingPacket:
        """Accept a packet header, opening its session if needed."""
        p = _unwrap(header, Packet)
        return self._udp_sessions.recv_packet_unrestricted(
            p.assoc_id, p.pkt_id, p.frag_total, p.frag_id, p.size, p.addr
        )

    def send_dissociate(self, assoc_id: int) -> DissociateTx:
        self._udp_sessions.dissociate(assoc_id)
        return DissociateTx(assoc_id)

    def recv_dissociate(self, header) -> DissociateRx:
        command = _unwrap(header, Dissociate)
        self._udp_sessions.dissociate(command.assoc_id)
        return DissociateRx(command.assoc_id)

    def send_heartbeat(self) -> HeartbeatTx:
        return HeartbeatTx()

    def recv_heartbeat(self, header) -> HeartbeatRx:
        _unwrap(header, Heartbeat)
        return HeartbeatRx()

    def task_connect_count(self) -> int:
        """Return the number of live ``Connect`` tasks."""
        return self._connect_counter.count()

    def task_associate_count(self) -> int:
        """Return the number of active UDP sessions."""
        return self._associate_counter.count()

    def collect_garbage(self, timeout: Union[float, timedelta]) -> None:
        """Drop fragments that could not be reassembled within ``timeout``."""
        self._udp_sessions.collect_garbage(timeout)

    def __repr__(self) -> str:
        return (
            f"Connection(task_connect_count={self.task_connect_count()}, "
            f"task_associate_count={self.task_associate_count()})"
        )