from __future__ import annotations

import threading

import pytest

from tftpsim.client import Client
from tftpsim.config import TransferConfig
from tftpsim.errors import RemoteError
from tftpsim.faults import FaultMode, FaultPlan
from tftpsim.net import Transport
from tftpsim.packet import AckPacket, ErrorCode, ErrorPacket, PacketKind, RequestPacket
from tftpsim.scenario import run_scenario
from tftpsim.server import Server
from tftpsim.storage import FileStore

CONFIG = TransferConfig(timeout_ms=300, max_attempts=5)


@pytest.fixture
def server(tmp_path):
    srv = Server("127.0.0.1", 0, FileStore(tmp_path / "server"), CONFIG)
    (tmp_path / "server").mkdir()
    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    yield srv
    srv.shutdown()
    t.join(timeout=5.0)


@pytest.fixture
def client(tmp_path, server):
    (tmp_path / "client").mkdir()
    return Client(server.endpoint, FileStore(tmp_path / "client"), CONFIG, host="127.0.0.1")


def test_read_1000_bytes(tmp_path, server, client):
    payload = bytes(range(256)) * 3 + b"x" * 232
    (tmp_path / "server" / "f.bin").write_bytes(payload)

    result = client.read("f.bin")
    server.join_workers(timeout=5.0)

    assert result.ok
    assert result.blocks == 2
    assert (tmp_path / "client" / "f.bin").read_bytes() == payload
    assert [r.ok for r in server.results] == [True]


def test_write_exact_block_multiple(tmp_path, server, client):
    payload = b"w" * 1024
    (tmp_path / "client" / "up.bin").write_bytes(payload)

    result = client.write("up.bin", "stored.bin")
    server.join_workers(timeout=5.0)

    assert result.ok
    assert result.blocks == 3
    assert (tmp_path / "server" / "stored.bin").read_bytes() == payload


def test_read_missing_file(server, client):
    result = client.read("missing.bin")

    assert isinstance(result.error, RemoteError)
    assert result.error.code == ErrorCode.FILE_NOT_FOUND


def test_write_existing_file(tmp_path, server, client):
    (tmp_path / "server" / "taken.bin").write_bytes(b"old")
    (tmp_path / "client" / "taken.bin").write_bytes(b"new")

    result = client.write("taken.bin")

    assert isinstance(result.error, RemoteError)
    assert result.error.code == ErrorCode.FILE_ALREADY_EXISTS
    assert (tmp_path / "server" / "taken.bin").read_bytes() == b"old"


def _ask_main_port(server, raw: bytes):
    probe = Transport.ephemeral("127.0.0.1")
    try:
        probe.sendto(raw, server.endpoint)
        return probe.receive(2.0)
    finally:
        probe.close()


def test_main_port_rejects_non_requests(server):
    reply = _ask_main_port(server, AckPacket(1).to_bytes())
    assert isinstance(reply.packet, ErrorPacket)
    assert reply.packet.code == ErrorCode.ILLEGAL_OPERATION
    assert reply.source == server.endpoint


def test_main_port_rejects_garbage(server):
    reply = _ask_main_port(server, b"\x00\x09junk")
    assert reply.packet.code == ErrorCode.ILLEGAL_OPERATION


def test_main_port_rejects_mail_mode(server):
    reply = _ask_main_port(server, RequestPacket(PacketKind.RRQ, "f.bin", "mail").to_bytes())
    assert reply.packet.code == ErrorCode.ILLEGAL_OPERATION
    assert len(server.results) == 0


@pytest.mark.parametrize("direction", ["read", "write"])
@pytest.mark.parametrize("size", [0, 700, 1024])
def test_clean_scenario(direction, size):
    r = run_scenario(direction=direction, size_bytes=size)
    assert r.ok and r.intact
    assert r.server_ok is True
    assert r.bytes_transferred == size
    assert r.faults_fired == 0


@pytest.mark.parametrize(
    "direction, plan",
    [
        ("read", FaultPlan(FaultMode.DROP, PacketKind.DATA, block=2)),
        ("read", FaultPlan(FaultMode.DROP, PacketKind.ACK, block=2)),
        ("write", FaultPlan(FaultMode.DROP, PacketKind.DATA, block=2)),
        ("write", FaultPlan(FaultMode.DROP, PacketKind.ACK, block=2)),
    ],
)
def test_lost_packet_is_retransmitted(direction, plan):
    r = run_scenario(direction=direction, size_bytes=2000, plan=plan)
    assert r.ok and r.intact
    assert r.faults_fired == 1


@pytest.mark.parametrize(
    "direction, plan",
    [
        ("read", FaultPlan(FaultMode.DELAY, PacketKind.DATA, block=2, delay_ms=100)),
        ("write", FaultPlan(FaultMode.DELAY, PacketKind.ACK, block=2, delay_ms=100)),
        ("read", FaultPlan(FaultMode.DUPLICATE, PacketKind.DATA, block=2, delay_ms=20)),
        ("write", FaultPlan(FaultMode.DUPLICATE, PacketKind.ACK, block=2, delay_ms=20)),
        ("read", FaultPlan(FaultMode.WRONG_ENDPOINT, PacketKind.DATA, block=2)),
        ("write", FaultPlan(FaultMode.WRONG_ENDPOINT, PacketKind.ACK, block=2)),
        ("read", FaultPlan(FaultMode.CORRUPT_OPCODE, PacketKind.DATA, block=2)),
        ("write", FaultPlan(FaultMode.CORRUPT_OPCODE, PacketKind.ACK, block=2)),
    ],
)
def test_transfer_survives_fault(direction, plan):
    r = run_scenario(direction=direction, size_bytes=2000, plan=plan)
    assert r.ok and r.intact
    assert r.server_ok is True
    assert r.faults_fired == 1


def test_delay_past_timeout_recovers():
    plan = FaultPlan(FaultMode.DELAY, PacketKind.DATA, block=2, delay_ms=450)
    r = run_scenario(direction="read", size_bytes=2000, plan=plan)
    assert r.ok and r.intact
    assert r.timeouts >= 1


def test_corrupt_request_opcode_fails():
    r = run_scenario(
        direction="write",
        size_bytes=700,
        plan=FaultPlan(FaultMode.CORRUPT_OPCODE, PacketKind.WRQ),
    )
    assert not r.ok
    assert not r.intact
    assert "error 4" in r.error
    assert r.server_ok is None


def test_corrupt_request_mode_fails():
    class Mail:
        def choice(self, seq):
            return "mail"

    r = run_scenario(
        direction="read",
        size_bytes=700,
        plan=FaultPlan(FaultMode.CORRUPT_MODE, PacketKind.RRQ),
        rng=Mail(),
    )
    assert not r.ok
    assert "error 4" in r.error
    assert r.server_ok is None
    assert r.faults_fired == 1


def test_result_history_is_bounded(tmp_path):
    (tmp_path / "server").mkdir()
    (tmp_path / "client").mkdir()
    srv = Server("127.0.0.1", 0, FileStore(tmp_path / "server"), CONFIG, history=2)
    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    try:
        client = Client(srv.endpoint, FileStore(tmp_path / "client"), CONFIG, host="127.0.0.1")
        for name in ("a.bin", "b.bin", "c.bin"):
            assert not client.read(name).ok
            srv.join_workers(timeout=5.0)
    finally:
        srv.shutdown()
        t.join(timeout=5.0)

    assert len(srv.results) == 2
    assert [r.filename for r in srv.results] == ["b.bin", "c.bin"]
