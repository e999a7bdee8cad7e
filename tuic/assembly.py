"""UDP packet fragmentation and reassembly, with task counting.

No I/O happens here: outgoing payloads are split into header/chunk pairs and
incoming fragments are buffered per association until a packet is complete.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

from tuic.protocol import Address, Header, NoneAddress, Packet

__all__ = [
    "TaskCounter",
    "Registration",
    "AssembleError",
    "InvalidFragmentId",
    "InvalidFragmentAddress",
    "DuplicatedFragment",
    "Assemblable",
    "Fragments",
    "OutgoingPacket",
    "IncomingPacket",
    "UdpSessions",
]

_U16_MASK = 0xFFFF
_U8_MAX = 0xFF


class TaskCounter:
    """Counts live registrations handed out by :meth:`register`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._count = 0

    def register(self) -> "Registration":
        """Create a new registration, increasing the count by one."""
        with self._lock:
            self._count += 1
        return Registration(self)

    def count(self) -> int:
        """Return the number of registrations not yet released."""
        with self._lock:
            return self._count

    def _release_one(self) -> None:
        with self._lock:
            self._count -= 1


class Registration:
    """A live entry in a :class:`TaskCounter`; released at most once."""

    def __init__(self, counter: TaskCounter) -> None:
        self._counter = counter
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Remove this registration from its counter. Further calls do nothing."""
        with self._lock:
            if self._released:
                return
            self._released = True
        self._counter._release_one()

    def __enter__(self) -> "Registration":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


class AssembleError(Exception):
    """Raised when a fragment cannot be added to a packet."""


class InvalidFragmentId(AssembleError):
    """The fragment ID is not below the total number of fragments."""

    def __init__(self, frag_total: int, frag_id: int) -> None:
        super().__init__(f"invalid fragment id {frag_id} in total {frag_total} fragments")
        self.frag_total = frag_total
        self.frag_id = frag_id


class InvalidFragmentAddress(AssembleError):
    """The first fragment lacks an address, or a later one carries one."""


class DuplicatedFragment(AssembleError):
    """A fragment with this ID was already received."""

    def __init__(self, frag_id: int) -> None:
        super().__init__(f"duplicated fragment: {frag_id}")
        self.frag_id = frag_id


@dataclass
class Assemblable:
    """All fragments of one packet, ready to be joined."""

    fragments: List[bytes]
    addr: Address
    assoc_id: int

    def assemble(self) -> Tuple[bytes, Address, int]:
        """Return the joined payload, its address and association ID."""
        return b"".join(self.fragments), self.addr, self.assoc_id


def _packet_header_len(addr: Address) -> int:
    return Header(Packet(0, 0, 0, 0, 0, addr)).encoded_len()


class Fragments:
    """Iterator over ``(Header, chunk)`` pairs that make up one packet."""

    def __init__(
        self,
        assoc_id: int,
        pkt_id: int,
        addr: Address,
        max_pkt_size: int,
        payload: bytes,
    ) -> None:
        payload = bytes(payload)
        first_frag_size = max_pkt_size - _packet_header_len(addr)
        frag_size = max_pkt_size - _packet_header_len(NoneAddress())
        if first_frag_size <= 0 or frag_size <= 0:
            raise ValueError(f"max_pkt_size {max_pkt_size} leaves no room for payload")

        if first_frag_size < len(payload):
            remaining = len(payload) - first_frag_size
            frag_total = 1 + -(-remaining // frag_size)
        else:
            frag_total = 1
        if frag_total > _U8_MAX:
            raise ValueError(f"payload needs {frag_total} fragments, at most {_U8_MAX} allowed")

        self._assoc_id = assoc_id
        self._pkt_id = pkt_id
        self._addr = addr
        self._max_pkt_size = max_pkt_size
        self._frag_total = frag_total
        self._next_frag_id = 0
        self._next_frag_start = 0
        self._payload = payload

    def __iter__(self) -> Iterator[Tuple[Header, bytes]]:
        return self

    def __next__(self) -> Tuple[Header, bytes]:
        if self._next_frag_id >= self._frag_total:
            raise StopIteration
        addr = self._addr if self._next_frag_id == 0 else NoneAddress()
        room = self._max_pkt_size - _packet_header_len(addr)
        start = self._next_frag_start
        end = min(start + room, len(self._payload))
        chunk = self._payload[start:end]
        header = Header(
            Packet(
                self._assoc_id,
                self._pkt_id,
                self._frag_total,
                self._next_frag_id,
                len(chunk),
                addr,
            )
        )
        self._next_frag_id += 1
        self._next_frag_start = end
        return header, chunk

    def __len__(self) -> int:
        """Return the total number of fragments of the packet."""
        return self._frag_total


@dataclass(frozen=True)
class OutgoingPacket:
    """A packet about to be sent, not yet split into fragments."""

    assoc_id: int
    pkt_id: int
    addr: Address
    max_pkt_size: int

    def into_fragments(self, payload: bytes) -> Fragments:
        """Split ``payload`` into fragments no larger than ``max_pkt_size``."""
        return Fragments(self.assoc_id, self.pkt_id, self.addr, self.max_pkt_size, payload)


@dataclass(frozen=True)
class IncomingPacket:
    """A received fragment header waiting for its payload."""

    sessions: "UdpSessions" = field(repr=False, compare=False)
    assoc_id: int
    pkt_id: int
    frag_total: int
    frag_id: int
    size: int
    addr: Address

    def assemble(self, data: bytes) -> Optional[Assemblable]:
        """Add this fragment's payload; return the packet once it is complete."""
        return self.sessions.insert(
            self.assoc_id,
            self.pkt_id,
            self.frag_total,
            self.frag_id,
            self.size,
            self.addr,
            data,
        )


class _PacketBuffer:
    def __init__(self, frag_total: int, created: float) -> None:
        self.buf: List[Optional[bytes]] = [None] * frag_total
        self.frag_total = frag_total
        self.frag_received = 0
        self.addr: Address = NoneAddress()
        self.created = created

    def insert(
        self,
        assoc_id: int,
        frag_total: int,
        frag_id: int,
        size: int,
        addr: Address,
        data: bytes,
    ) -> Optional[Assemblable]:
        if len(data) != size:
            raise ValueError(f"fragment data is {len(data)} bytes, header says {size}")
        if frag_id >= frag_total or frag_id >= len(self.buf):
            raise InvalidFragmentId(frag_total, frag_id)
        if frag_id == 0 and addr.is_none():
            raise InvalidFragmentAddress("no address in first fragment")
        if frag_id != 0 and not addr.is_none():
            raise InvalidFragmentAddress("address in non-first fragment")
        if self.buf[frag_id] is not None:
            raise DuplicatedFragment(frag_id)

        self.buf[frag_id] = data
        self.frag_received += 1
        if frag_id == 0:
            self.addr = addr

        if self.frag_received == self.frag_total:
            fragments = [chunk for chunk in self.buf if chunk is not None]
            self.buf = []
            addr, self.addr = self.addr, NoneAddress()
            return Assemblable(fragments, addr, assoc_id)
        return None


class _UdpSession:
    def __init__(self, registration: Registration) -> None:
        self.pkt_buf: Dict[int, _PacketBuffer] = {}
        self.next_pkt_id = 0
        self.registration = registration

    def take_pkt_id(self) -> int:
        pkt_id = self.next_pkt_id
        self.next_pkt_id = (pkt_id + 1) & _U16_MASK
        return pkt_id


class UdpSessions:
    """UDP relay sessions of one connection, keyed by association ID."""

    def __init__(
        self,
        counter: Optional[TaskCounter] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.counter = counter if counter is not None else TaskCounter()
        self._clock = clock
        self._sessions: Dict[int, _UdpSession] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, assoc_id: object) -> bool:
        with self._lock:
            return assoc_id in self._sessions

    def _session(self, assoc_id: int) -> _UdpSession:
        session = self._sessions.get(assoc_id)
        if session is None:
            session = _UdpSession(self.counter.register())
            self._sessions[assoc_id] = session
        return session

    def send_packet(self, assoc_id: int, addr: Address, max_pkt_size: int) -> OutgoingPacket:
        """Prepare an outgoing packet, opening the session if needed."""
        with self._lock:
            pkt_id = self._session(assoc_id).take_pkt_id()
        return OutgoingPacket(assoc_id, pkt_id, addr, max_pkt_size)

    def recv_packet(
        self,
        assoc_id: int,
        pkt_id: int,
        frag_total: int,
        frag_id: int,
        size: int,
        addr: Address,
    ) -> Optional[IncomingPacket]:
        """Accept a fragment header for a known session, or return ``None``."""
        with self._lock:
            if assoc_id not in self._sessions:
                return None
        return IncomingPacket(self, assoc_id, pkt_id, frag_total, frag_id, size, addr)

    def recv_packet_unrestricted(
        self,
        assoc_id: int,
        pkt_id: int,
        frag_total: int,
        frag_id: int,
        size: int,
        addr: Address,
    ) -> IncomingPacket:
        """Accept a fragment header, opening the session if needed."""
        with self._lock:
            self._session(assoc_id)
        return IncomingPacket(self, assoc_id, pkt_id, frag_total, frag_id, size, addr)

    def dissociate(self, assoc_id: int) -> bool:
        """Close a session and drop its buffers; return whether it existed."""
        with self._lock:
            session = self._sessions.pop(assoc_id, None)
        if session is None:
            return False
        session.registration.release()
        return True

    def insert(
        self,
        assoc_id: int,
        pkt_id: int,
        frag_total: int,
        frag_id: int,
        size: int,
        addr: Address,
        data: bytes,
    ) -> Optional[Assemblable]:
        """Buffer one fragment; return the packet once all fragments arrived."""
        data = bytes(data)
        with self._lock:
            session = self._session(assoc_id)
            buffer = session.pkt_buf.get(pkt_id)
            if buffer is None:
                buffer = _PacketBuffer(frag_total, self._clock())
                session.pkt_buf[pkt_id] = buffer
            result = buffer.insert(assoc_id, frag_total, frag_id, size, addr, data)
            if result is not None:
                del session.pkt_buf[pkt_id]
            return result

    def collect_garbage(self, timeout: Union[float, timedelta]) -> None:
        """Drop partial packets older than ``timeout`` seconds."""
        if isinstance(timeout, timedelta):
            timeout = timeout.total_seconds()
        with self._lock:
            now = self._clock()
            for session in self._sessions.values():
                session.pkt_buf = {
                    pkt_id: buffer
                    for pkt_id, buffer in session.pkt_buf.items()
                    if now - buffer.created < timeout
                }