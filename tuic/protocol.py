"""Wire-level data types of the TUIC protocol: addresses, commands and headers."""

from __future__ import annotations

import ipaddress
import uuid as _uuid
from dataclasses import dataclass
from typing import ClassVar, Union

VERSION = 0x05
"""The TUIC protocol version."""

_U8_MAX = 0xFF
_U16_MAX = 0xFFFF


def _check_range(name: str, value: int, maximum: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an integer")
    if not 0 <= value <= maximum:
        raise ValueError(f"{name} must be between 0 and {maximum}, got {value}")


class Address:
    """A variable-length network address field.

    Layout: ``TYPE (1) | ADDR (variable) | PORT (2)``. Type ``0xff`` carries
    no address or port and marks non-first fragments of a UDP packet.
    """

    TYPE_CODE_NONE: ClassVar[int] = 0xFF
    TYPE_CODE_DOMAIN: ClassVar[int] = 0x00
    TYPE_CODE_IPV4: ClassVar[int] = 0x01
    TYPE_CODE_IPV6: ClassVar[int] = 0x02

    __slots__ = ()

    def type_code(self) -> int:
        """Return the address type code."""
        raise NotImplementedError

    def encoded_len(self) -> int:
        """Return the serialized length of the address in bytes."""
        raise NotImplementedError

    def is_none(self) -> bool:
        return isinstance(self, NoneAddress)

    def is_domain(self) -> bool:
        return isinstance(self, DomainAddress)

    def is_ipv4(self) -> bool:
        return isinstance(self, SocketAddress) and self.ip.version == 4

    def is_ipv6(self) -> bool:
        return isinstance(self, SocketAddress) and self.ip.version == 6


@dataclass(frozen=True)
class NoneAddress(Address):
    """The absence of an address."""

    def type_code(self) -> int:
        return self.TYPE_CODE_NONE

    def encoded_len(self) -> int:
        return 1

    def __str__(self) -> str:
        return "none"


@dataclass(frozen=True)
class DomainAddress(Address):
    """A fully-qualified domain name with a port."""

    domain: str
    port: int

    def __post_init__(self) -> None:
        if not isinstance(self.domain, str):
            raise TypeError("domain must be a string")
        if len(self.domain.encode("utf-8")) > _U8_MAX:
            raise ValueError("domain must be at most 255 bytes long")
        _check_range("port", self.port, _U16_MAX)

    def type_code(self) -> int:
        return self.TYPE_CODE_DOMAIN

    def encoded_len(self) -> int:
        return 1 + 1 + len(self.domain.encode("utf-8")) + 2

    def __str__(self) -> str:
        return f"{self.domain}:{self.port}"


@dataclass(frozen=True)
class SocketAddress(Address):
    """An IPv4 or IPv6 address with a port."""

    ip: Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
    port: int

    def __post_init__(self) -> None:
        if not isinstance(self.ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
            object.__setattr__(self, "ip", ipaddress.ip_address(self.ip))
        _check_range("port", self.port, _U16_MAX)

    def type_code(self) -> int:
        return self.TYPE_CODE_IPV4 if self.ip.version == 4 else self.TYPE_CODE_IPV6

    def encoded_len(self) -> int:
        return 1 + (4 if self.ip.version == 4 else 16) + 2

    def __str__(self) -> str:
        if self.ip.version == 6:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


@dataclass(frozen=True)
class Authenticate:
    """Command ``Authenticate``: ``UUID (16) | TOKEN (32)``."""

    TYPE_CODE: ClassVar[int] = 0x00

    uuid: _uuid.UUID
    token: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.uuid, _uuid.UUID):
            raise TypeError("uuid must be a uuid.UUID")
        token = bytes(self.token)
        if len(token) != 32:
            raise ValueError("token must be exactly 32 bytes")
        object.__setattr__(self, "token", token)

    def encoded_len(self) -> int:
        return 16 + 32


@dataclass(frozen=True)
class Connect:
    """Command ``Connect``: ``ADDR (variable)``."""

    TYPE_CODE: ClassVar[int] = 0x01

    addr: Address

    def __post_init__(self) -> None:
        if not isinstance(self.addr, Address):
            raise TypeError("addr must be an Address")

    def encoded_len(self) -> int:
        return self.addr.encoded_len()


@dataclass(frozen=True)
class Packet:
    """Command ``Packet``.

    Layout: ``ASSOC_ID (2) | PKT_ID (2) | FRAG_TOTAL (1) | FRAG_ID (1) | SIZE (2) | ADDR``.
    """

    TYPE_CODE: ClassVar[int] = 0x02

    assoc_id: int
    pkt_id: int
    frag_total: int
    frag_id: int
    size: int
    addr: Address

    def __post_init__(self) -> None:
        _check_range("assoc_id", self.assoc_id, _U16_MAX)
        _check_range("pkt_id", self.pkt_id, _U16_MAX)
        _check_range("frag_total", self.frag_total, _U8_MAX)
        _check_range("frag_id", self.frag_id, _U8_MAX)
        _check_range("size", self.size, _U16_MAX)
        if not isinstance(self.addr, Address):
            raise TypeError("addr must be an Address")

    def encoded_len(self) -> int:
        return 2 + 2 + 1 + 1 + 2 + self.addr.encoded_len()


@dataclass(frozen=True)
class Dissociate:
    """Command ``Dissociate``: ``ASSOC_ID (2)``."""

    TYPE_CODE: ClassVar[int] = 0x03

    assoc_id: int

    def __post_init__(self) -> None:
        _check_range("assoc_id", self.assoc_id, _U16_MAX)

    def encoded_len(self) -> int:
        return 2


@dataclass(frozen=True)
class Heartbeat:
    """Command ``Heartbeat``, which carries no data."""

    TYPE_CODE: ClassVar[int] = 0x04

    def encoded_len(self) -> int:
        return 0


Command = Union[Authenticate, Connect, Packet, Dissociate, Heartbeat]
_COMMAND_TYPES = (Authenticate, Connect, Packet, Dissociate, Heartbeat)


@dataclass(frozen=True)
class Header:
    """A command header: ``VER (1) | TYPE (1) | OPT (variable)``."""

    TYPE_CODE_AUTHENTICATE: ClassVar[int] = Authenticate.TYPE_CODE
    TYPE_CODE_CONNECT: ClassVar[int] = Connect.TYPE_CODE
    TYPE_CODE_PACKET: ClassVar[int] = Packet.TYPE_CODE
    TYPE_CODE_DISSOCIATE: ClassVar[int] = Dissociate.TYPE_CODE
    TYPE_CODE_HEARTBEAT: ClassVar[int] = Heartbeat.TYPE_CODE

    command: Command

    def __post_init__(self) -> None:
        if not isinstance(self.command, _COMMAND_TYPES):
            raise TypeError(f"unsupported command: {type(self.command).__name__}")

    def type_code(self) -> int:
        """Return the command type code."""
        return self.command.TYPE_CODE

    def encoded_len(self) -> int:
        """Return the serialized length of the header in bytes."""
        return 2 + self.command.encoded_len()