import ipaddress
import uuid

import pytest

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

SAMPLE_UUID = uuid.UUID("00000000-0000-0000-0000-000000000001")


def test_version_and_type_codes():
    assert VERSION == 0x05
    commands = [
        (Authenticate(SAMPLE_UUID, bytes(32)), Header.TYPE_CODE_AUTHENTICATE, 0x00),
        (Connect(NoneAddress()), Header.TYPE_CODE_CONNECT, 0x01),
        (Packet(0, 0, 1, 0, 0, NoneAddress()), Header.TYPE_CODE_PACKET, 0x02),
        (Dissociate(0), Header.TYPE_CODE_DISSOCIATE, 0x03),
        (Heartbeat(), Header.TYPE_CODE_HEARTBEAT, 0x04),
    ]
    for command, constant, expected in commands:
        assert Header(command).type_code() == constant == expected


def test_address_type_codes():
    assert NoneAddress().type_code() == 0xFF
    assert DomainAddress("example.com", 443).type_code() == 0x00
    assert SocketAddress("127.0.0.1", 80).type_code() == 0x01
    assert SocketAddress("::1", 80).type_code() == 0x02


def test_address_lengths():
    assert NoneAddress().encoded_len() == 1
    assert SocketAddress("10.0.0.1", 53).encoded_len() == 1 + 4 + 2
    assert SocketAddress("::1", 53).encoded_len() == 1 + 16 + 2
    domain = "example.com"
    assert DomainAddress(domain, 443).encoded_len() == 1 + 1 + len(domain) + 2


def test_domain_length_counts_bytes():
    ascii_addr = DomainAddress("ab", 1)
    wide_addr = DomainAddress("éé", 1)
    assert wide_addr.encoded_len() - ascii_addr.encoded_len() == 2


def test_address_predicates():
    none = NoneAddress()
    dom = DomainAddress("example.com", 1)
    v4 = SocketAddress("1.2.3.4", 1)
    v6 = SocketAddress("::1", 1)
    assert (none.is_none(), dom.is_none(), v4.is_none()) == (True, False, False)
    assert (dom.is_domain(), v4.is_domain()) == (True, False)
    assert (v4.is_ipv4(), v6.is_ipv4(), dom.is_ipv4()) == (True, False, False)
    assert (v6.is_ipv6(), v4.is_ipv6(), none.is_ipv6()) == (True, False, False)


def test_address_display():
    assert str(NoneAddress()) == "none"
    assert str(DomainAddress("example.com", 443)) == "example.com:443"
    assert str(SocketAddress("127.0.0.1", 8080)) == "127.0.0.1:8080"
    assert str(SocketAddress("::1", 443)) == "[::1]:443"


def test_socket_address_converts_ip():
    addr = SocketAddress("192.168.0.1", 1)
    assert addr.ip == ipaddress.IPv4Address("192.168.0.1")
    assert addr == SocketAddress(ipaddress.ip_address("192.168.0.1"), 1)
    assert isinstance(addr, Address)


def test_addresses_hashable_and_equal():
    assert NoneAddress() == NoneAddress()
    assert len({DomainAddress("a", 1), DomainAddress("a", 1), DomainAddress("a", 2)}) == 2


@pytest.mark.parametrize("port", [-1, 65536])
def test_invalid_port(port):
    with pytest.raises(ValueError):
        DomainAddress("example.com", port)
    with pytest.raises(ValueError):
        SocketAddress("1.1.1.1", port)


def test_domain_too_long():
    with pytest.raises(ValueError):
        DomainAddress("a" * 256, 1)
    assert DomainAddress("a" * 255, 1).encoded_len() == 1 + 1 + 255 + 2


def test_invalid_ip():
    with pytest.raises(ValueError):
        SocketAddress("not-an-ip", 1)


def test_authenticate():
    auth = Authenticate(SAMPLE_UUID, bytes(32))
    assert auth.encoded_len() == 48
    assert auth.uuid == SAMPLE_UUID
    assert auth.token == bytes(32)
    header = Header(auth)
    assert header.type_code() == 0x00
    assert header.encoded_len() == 50


def test_authenticate_token_length():
    with pytest.raises(ValueError):
        Authenticate(SAMPLE_UUID, bytes(31))
    with pytest.raises(TypeError):
        Authenticate("not-a-uuid", bytes(32))


def test_connect_length_follows_address():
    addr = SocketAddress("1.2.3.4", 80)
    conn = Connect(addr)
    assert conn.encoded_len() == addr.encoded_len()
    assert Header(conn).encoded_len() == 2 + addr.encoded_len()
    assert Header(conn).type_code() == Header.TYPE_CODE_CONNECT


def test_packet():
    pkt = Packet(1, 2, 3, 0, 100, NoneAddress())
    assert pkt.encoded_len() == 8 + NoneAddress().encoded_len()
    assert (pkt.assoc_id, pkt.pkt_id, pkt.frag_total, pkt.frag_id, pkt.size) == (1, 2, 3, 0, 100)
    assert Header(pkt).type_code() == Header.TYPE_CODE_PACKET


@pytest.mark.parametrize(
    "args",
    [
        (65536, 0, 1, 0, 0),
        (0, -1, 1, 0, 0),
        (0, 0, 256, 0, 0),
        (0, 0, 1, 256, 0),
        (0, 0, 1, 0, 65536),
    ],
)
def test_packet_field_ranges(args):
    with pytest.raises(ValueError):
        Packet(*args, NoneAddress())


def test_dissociate_and_heartbeat():
    assert Dissociate(7).encoded_len() == 2
    assert Header(Dissociate(7)).type_code() == Header.TYPE_CODE_DISSOCIATE
    assert Heartbeat().encoded_len() == 0
    assert Header(Heartbeat()).encoded_len() == 2
    assert Header(Heartbeat()).type_code() == Header.TYPE_CODE_HEARTBEAT


def test_header_rejects_unknown_command():
    with pytest.raises(TypeError):
        Header("nope")
    with pytest.raises(TypeError):
        Connect("1.2.3.4:80")