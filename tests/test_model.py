import hashlib
import ipaddress
import uuid

import pytest

from tuic.assembly import DuplicatedFragment, IncomingPacket
from tuic.model import Connection, KeyingMaterialExporter
from tuic.protocol import (
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

USER_ID = uuid.UUID("00000000-0000-4000-8000-000000000001")


class HashExporter(KeyingMaterialExporter):
    def export_keying_material(self, label, context):
        return hashlib.sha256(label + b"|" + context).digest()


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_send_authenticate_builds_header_with_exported_token():
    conn = Connection()
    exporter = HashExporter()
    task = conn.send_authenticate(USER_ID, "password", exporter)
    assert task.header.type_code() == Header.TYPE_CODE_AUTHENTICATE
    assert task.header.command.uuid == USER_ID
    assert task.header.command.token == exporter.export_keying_material(USER_ID.bytes, b"password")


def test_recv_authenticate_validates_password():
    exporter = HashExporter()
    sender = Connection()
    receiver = Connection()
    sent = sender.send_authenticate(USER_ID, "password", exporter)
    received = receiver.recv_authenticate(sent.header)
    assert received.uuid == USER_ID
    assert received.is_valid("password", exporter) is True
    assert received.is_valid(b"password", exporter) is True
    assert received.is_valid("secret", exporter) is False


def test_recv_authenticate_rejects_other_command():
    with pytest.raises(TypeError):
        Connection().recv_authenticate(Heartbeat())


def test_connect_tasks_are_counted_until_released():
    conn = Connection()
    addr = DomainAddress("example.com", 443)
    first = conn.send_connect(addr)
    second = conn.recv_connect(Connect(addr))
    assert conn.task_connect_count() == 2
    assert first.header.command.addr == addr
    assert second.addr == addr
    first.release()
    first.release()
    assert conn.task_connect_count() == 1
    with second:
        pass
    assert conn.task_connect_count() == 0
    assert second.released is True


def test_send_packet_assigns_increasing_ids_and_opens_session():
    conn = Connection()
    addr = SocketAddress(ipaddress.ip_address("127.0.0.1"), 53)
    a = conn.send_packet(7, addr, 1500)
    b = conn.send_packet(7, addr, 1500)
    assert (a.pkt_id, b.pkt_id) == (0, 1)
    assert conn.task_associate_count() == 1
    conn.send_packet(8, addr, 1500)
    assert conn.task_associate_count() == 2


def test_recv_packet_unknown_session_returns_none():
    conn = Connection()
    header = Packet(9, 0, 1, 0, 3, DomainAddress("example.com", 53))
    assert conn.recv_packet(header) is None
    assert conn.task_associate_count() == 0


def test_recv_packet_known_session():
    conn = Connection()
    conn.send_packet(9, DomainAddress("example.com", 53), 1500)
    pkt = conn.recv_packet(Header(Packet(9, 4, 1, 0, 3, DomainAddress("example.com", 53))))
    assert isinstance(pkt, IncomingPacket)
    assert (pkt.assoc_id, pkt.pkt_id, pkt.size) == (9, 4, 3)


def test_fragment_round_trip_between_connections():
    sender = Connection()
    receiver = Connection()
    addr = DomainAddress("example.com", 5353)
    payload = bytes(range(256)) * 3
    fragments = list(sender.send_packet(1, addr, 100).into_fragments(payload))
    assert len(fragments) > 1
    result = None
    for header, chunk in fragments:
        incoming = receiver.recv_packet_unrestricted(header)
        result = incoming.assemble(chunk)
    assert result is not None
    data, got_addr, assoc_id = result.assemble()
    assert data == payload
    assert got_addr == addr
    assert assoc_id == 1
    assert receiver.task_associate_count() == 1


def test_dissociate_closes_session():
    conn = Connection()
    conn.send_packet(3, DomainAddress("example.com", 80), 1500)
    conn.send_packet(4, DomainAddress("example.com", 80), 1500)
    tx = conn.send_dissociate(3)
    assert tx.header.command == Dissociate(3)
    assert conn.task_associate_count() == 1
    rx = conn.recv_dissociate(Header(Dissociate(4)))
    assert rx.assoc_id == 4
    assert conn.task_associate_count() == 0


def test_heartbeat():
    conn = Connection()
    tx = conn.send_heartbeat()
    assert tx.header.type_code() == Header.TYPE_CODE_HEARTBEAT
    assert tx.header.encoded_len() == 2
    assert repr(conn.recv_heartbeat(tx.header)) == "HeartbeatRx()"


def test_collect_garbage_drops_stale_fragments():
    clock = FakeClock()
    conn = Connection(clock=clock)
    addr = DomainAddress("example.com", 53)
    header = Packet(2, 0, 2, 0, 3, addr)
    conn.recv_packet_unrestricted(header).assemble(b"abc")
    with pytest.raises(DuplicatedFragment):
        conn.recv_packet_unrestricted(header).assemble(b"abc")
    clock.now = 5.0
    conn.collect_garbage(10)
    with pytest.raises(DuplicatedFragment):
        conn.recv_packet_unrestricted(header).assemble(b"abc")
    clock.now = 20.0
    conn.collect_garbage(10)
    assert conn.recv_packet_unrestricted(header).assemble(b"abc") is None
    tail = Packet(2, 0, 2, 1, 2, NoneAddress())
    done = conn.recv_packet_unrestricted(tail).assemble(b"de")
    assert done.assemble() == (b"abcde", addr, 2)