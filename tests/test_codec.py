import asyncio
import io
import ipaddress
import uuid

import pytest

from tuic.codec import (
    AddressParseError,
    InvalidAddressType,
    InvalidCommand,
    InvalidVersion,
    TruncatedInput,
    UnmarshalError,
    decode_header,
    encode_header,
    read_header,
    read_header_async,
    write_header,
    write_header_async,
)
from tuic.protocol import (
    VERSION,
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

SAMPLE_UUID = uuid.UUID("00000000-0000-4000-8000-000000000001")

HEADERS = [
    Header(Authenticate(SAMPLE_UUID, bytes(range(32)))),
    Header(Connect(DomainAddress("example.com", 443))),
    Header(Connect(SocketAddress(ipaddress.ip_address("127.0.0.1"), 8080))),
    Header(Connect(SocketAddress(ipaddress.ip_address("::1"), 53))),
    Header(Packet(1, 2, 3, 0, 100, DomainAddress("example.com", 53))),
    Header(Packet(0xFFFF, 0xFFFF, 3, 2, 0, NoneAddress())),
    Header(Dissociate(0xABCD)),
    Header(Heartbeat()),
]


class _Writer:
    def __init__(self):
        self.buffer = bytearray()
        self.drained = False

    def write(self, data):
        self.buffer += data

    async def drain(self):
        self.drained = True


@pytest.mark.parametrize("header", HEADERS)
def test_round_trip_bytes(header):
    assert decode_header(encode_header(header)) == header


@pytest.mark.parametrize("header", HEADERS)
def test_encoded_length_matches(header):
    assert len(encode_header(header)) == header.encoded_len()


@pytest.mark.parametrize("header", HEADERS)
def test_round_trip_stream(header):
    stream = io.BytesIO()
    write_header(header, stream)
    stream.seek(0)
    assert read_header(stream) == header
    assert stream.read() == b""


def test_heartbeat_wire_bytes():
    assert encode_header(Header(Heartbeat())) == bytes([VERSION, Heartbeat.TYPE_CODE])


def test_dissociate_wire_bytes():
    assert encode_header(Header(Dissociate(0x1234))) == b"\x05\x03\x12\x34"


def test_connect_domain_wire_bytes():
    data = encode_header(Header(Connect(DomainAddress("example.com", 443))))
    assert data == b"\x05\x01\x00\x0bexample.com\x01\xbb"


def test_authenticate_wire_layout():
    token = bytes(range(32))
    data = encode_header(Header(Authenticate(SAMPLE_UUID, token)))
    assert data[:2] == b"\x05\x00"
    assert data[2:18] == SAMPLE_UUID.bytes
    assert data[18:] == token


def test_none_address_packet_ends_with_type_code():
    data = encode_header(Header(Packet(1, 1, 2, 1, 10, NoneAddress())))
    assert data[-1] == NoneAddress.TYPE_CODE_NONE


def test_trailing_payload_left_in_stream():
    header = Header(Packet(7, 8, 1, 0, 5, SocketAddress(ipaddress.ip_address("10.0.0.1"), 9)))
    stream = io.BytesIO(encode_header(header) + b"hello")
    assert read_header(stream) == header
    assert stream.read() == b"hello"


def test_decode_ignores_trailing_bytes():
    header = Header(Dissociate(5))
    assert decode_header(encode_header(header) + b"extra") == header


def test_invalid_version():
    with pytest.raises(InvalidVersion) as info:
        decode_header(b"\x04\x04")
    assert info.value.version == 4


def test_invalid_command():
    with pytest.raises(InvalidCommand) as info:
        decode_header(b"\x05\x09")
    assert info.value.command == 9


def test_invalid_address_type():
    with pytest.raises(InvalidAddressType) as info:
        decode_header(b"\x05\x01\x07")
    assert info.value.type_code == 7


def test_invalid_utf8_domain():
    with pytest.raises(AddressParseError):
        decode_header(b"\x05\x01\x00\x02\xff\xfe\x00\x50")


@pytest.mark.parametrize("header", HEADERS)
def test_truncated_input(header):
    data = encode_header(header)
    with pytest.raises(TruncatedInput):
        decode_header(data[:-1])


def test_empty_input_is_truncated():
    with pytest.raises(TruncatedInput) as info:
        decode_header(b"")
    assert isinstance(info.value, UnmarshalError)
    assert info.value.received == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("header", HEADERS)
async def test_async_round_trip(header):
    writer = _Writer()
    await write_header_async(header, writer)
    assert writer.drained is True
    reader = asyncio.StreamReader()
    reader.feed_data(bytes(writer.buffer))
    reader.feed_eof()
    assert await read_header_async(reader) == header


@pytest.mark.asyncio
async def test_async_truncated():
    reader = asyncio.StreamReader()
    reader.feed_data(b"\x05\x03\x12")
    reader.feed_eof()
    with pytest.raises(TruncatedInput):
        await read_header_async(reader)


@pytest.mark.asyncio
async def test_async_invalid_version():
    reader = asyncio.StreamReader()
    reader.feed_data(b"\x01\x04")
    reader.feed_eof()
    with pytest.raises(InvalidVersion):
        await read_header_async(reader)