"""Binary encoding and decoding of TUIC command headers.

Decoding is written once as a generator that yields how many bytes it needs
next and receives them; thin drivers feed it from bytes, from blocking
file-like streams and from asyncio stream readers.
"""

from __future__ import annotations

import io
import ipaddress
import struct
import uuid as _uuid
from typing import BinaryIO, Callable, Generator

from tuic.protocol import (
    VERSION,
    Address,
    Authenticate,
    Connect,
    Dissociate,
    DomainAddress,
    Header,
    Heartbeat,
    NoneAddress,
    Packet,
    SocketAddress,
)

__all__ = [
    "UnmarshalError",
    "TruncatedInput",
    "InvalidVersion",
    "InvalidCommand",
    "InvalidAddressType",
    "AddressParseError",
    "encode_header",
    "decode_header",
    "write_header",
    "read_header",
    "write_header_async",
    "read_header_async",
]


class UnmarshalError(Exception):
    """Raised when a header cannot be decoded."""


class TruncatedInput(UnmarshalError, EOFError):
    """The input ended before a complete header was read."""

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(
            f"unexpected end of input: expected {expected} bytes, got {received}"
        )
        self.expected = expected
        self.received = received


class InvalidVersion(UnmarshalError):
    """The header carries an unsupported protocol version."""

    def __init__(self, version: int) -> None:
        super().__init__(f"invalid version: {version}")
        self.version = version


class InvalidCommand(UnmarshalError):
    """The header carries an unknown command type."""

    def __init__(self, command: int) -> None:
        super().__init__(f"invalid command: {command}")
        self.command = command


class InvalidAddressType(UnmarshalError):
    """The address field carries an unknown type code."""

    def __init__(self, type_code: int) -> None:
        super().__init__(f"invalid address type: {type_code}")
        self.type_code = type_code


class AddressParseError(UnmarshalError):
    """A domain name in the address field is not valid UTF-8."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"address parsing error: {reason}")


# Encoding


def _encode_address(addr: Address) -> bytes:
    code = bytes([addr.type_code()])
    if isinstance(addr, NoneAddress):
        return code
    if isinstance(addr, DomainAddress):
        domain = addr.domain.encode("utf-8")
        return code + bytes([len(domain)]) + domain + struct.pack(">H", addr.port)
    if isinstance(addr, SocketAddress):
        return code + addr.ip.packed + struct.pack(">H", addr.port)
    raise TypeError(f"unsupported address: {type(addr).__name__}")


def _encode_command(command) -> bytes:
    if isinstance(command, Authenticate):
        return command.uuid.bytes + command.token
    if isinstance(command, Connect):
        return _encode_address(command.addr)
    if isinstance(command, Packet):
        return struct.pack(
            ">HHBBH",
            command.assoc_id,
            command.pkt_id,
            command.frag_total,
            command.frag_id,
            command.size,
        ) + _encode_address(command.addr)
    if isinstance(command, Dissociate):
        return struct.pack(">H", command.assoc_id)
    if isinstance(command, Heartbeat):
        return b""
    raise TypeError(f"unsupported command: {type(command).__name__}")


def encode_header(header: Header) -> bytes:
    """Serialize a header to bytes."""
    return bytes([VERSION, header.type_code()]) + _encode_command(header.command)


def write_header(header: Header, stream: BinaryIO) -> None:
    """Write a serialized header to a binary stream."""
    data = encode_header(header)
    view = memoryview(data)
    while view:
        written = stream.write(view)
        if written is None:
            written = len(view)
        view = view[written:]


async def write_header_async(header: Header, writer) -> None:
    """Write a serialized header to an asyncio stream writer and drain it."""
    writer.write(encode_header(header))
    await writer.drain()


# Decoding

_Parser = Generator[int, bytes, Header]


def _parse_address() -> Generator[int, bytes, Address]:
    type_code = (yield 1)[0]
    if type_code == Address.TYPE_CODE_NONE:
        return NoneAddress()
    if type_code == Address.TYPE_CODE_DOMAIN:
        length = (yield 1)[0]
        rest = yield length + 2
        try:
            domain = rest[:length].decode("utf-8")
        except UnicodeDecodeError as exc:
            raise AddressParseError(str(exc)) from exc
        (port,) = struct.unpack(">H", rest[length:])
        return DomainAddress(domain, port)
    if type_code == Address.TYPE_CODE_IPV4:
        raw = yield 6
        (port,) = struct.unpack(">H", raw[4:])
        return SocketAddress(ipaddress.IPv4Address(raw[:4]), port)
    if type_code == Address.TYPE_CODE_IPV6:
        raw = yield 18
        (port,) = struct.unpack(">H", raw[16:])
        return SocketAddress(ipaddress.IPv6Address(raw[:16]), port)
    raise InvalidAddressType(type_code)


def _parse_header() -> _Parser:
    version = (yield 1)[0]
    if version != VERSION:
        raise InvalidVersion(version)
    command = (yield 1)[0]

    if command == Header.TYPE_CODE_AUTHENTICATE:
        raw = yield 48
        return Header(Authenticate(_uuid.UUID(bytes=raw[:16]), raw[16:]))
    if command == Header.TYPE_CODE_CONNECT:
        addr = yield from _parse_address()
        return Header(Connect(addr))
    if command == Header.TYPE_CODE_PACKET:
        raw = yield 8
        assoc_id, pkt_id, frag_total, frag_id, size = struct.unpack(">HHBBH", raw)
        addr = yield from _parse_address()
        return Header(Packet(assoc_id, pkt_id, frag_total, frag_id, size, addr))
    if command == Header.TYPE_CODE_DISSOCIATE:
        raw = yield 2
        (assoc_id,) = struct.unpack(">H", raw)
        return Header(Dissociate(assoc_id))
    if command == Header.TYPE_CODE_HEARTBEAT:
        return Header(Heartbeat())
    raise InvalidCommand(command)


def _run(read_exact: Callable[[int], bytes]) -> Header:
    parser = _parse_header()
    needed = next(parser)
    while True:
        try:
            needed = parser.send(read_exact(needed))
        except StopIteration as done:
            return done.value


def _stream_reader(stream: BinaryIO) -> Callable[[int], bytes]:
    def read_exact(n: int) -> bytes:
        chunks = []
        remaining = n
        while remaining:
            chunk = stream.read(remaining)
            if not chunk:
                raise TruncatedInput(n, n - remaining)
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    return read_exact


def read_header(stream: BinaryIO) -> Header:
    """Read exactly one header from a binary stream.

    Bytes after the header are left unread in the stream.
    """
    return _run(_stream_reader(stream))


def decode_header(data: bytes) -> Header:
    """Decode the header at the start of ``data``.

    Trailing bytes, such as a packet payload, are ignored; the header's
    ``encoded_len()`` gives the offset at which they start.
    """
    return read_header(io.BytesIO(bytes(data)))


async def read_header_async(reader) -> Header:
    """Read exactly one header from an asyncio stream reader."""
    import asyncio

    parser = _parse_header()
    needed = next(parser)
    while True:
        try:
            chunk = await reader.readexactly(needed)
        except asyncio.IncompleteReadError as exc:
            raise TruncatedInput(needed, len(exc.partial)) from exc
        try:
            needed = parser.send(chunk)
        except StopIteration as done:
            return done.value