from __future__ import annotations

import pytest

from tftpsim.faults import FaultMode, FaultPlan
from tftpsim.net import Datagram
from tftpsim.packet import AckPacket, DataPacket, ErrorPacket, InvalidPacket, PacketKind, RequestPacket
from tftpsim.relay import FaultInjector, FlowState

MAIN = ("127.0.0.1", 6969)
CLIENT = ("127.0.0.1", 40001)
OTHER_CLIENT = ("127.0.0.1", 40002)
WORKER = ("127.0.0.1", 51000)


def _dgram(packet, source):
    return Datagram.from_raw(packet.to_bytes(), source)


RRQ = RequestPacket(PacketKind.RRQ, "f.bin", "octet")


def test_flow_pins_responder_on_first_reply():
    flow = FlowState(server_main=MAIN)
    assert flow.route(_dgram(AckPacket(1), CLIENT)) is None

    assert flow.route(_dgram(RRQ, CLIENT)) == MAIN
    assert flow.route(_dgram(RRQ, CLIENT)) == MAIN
    assert flow.route(_dgram(DataPacket(1, b"x"), WORKER)) == CLIENT
    assert flow.server == WORKER
    assert flow.route(_dgram(AckPacket(1), CLIENT)) == WORKER
    assert flow.route(_dgram(DataPacket(2, b""), WORKER)) == CLIENT


def test_new_request_resets_flow():
    flow = FlowState(server_main=MAIN)
    flow.route(_dgram(RRQ, CLIENT))
    flow.route(_dgram(DataPacket(1, b"x"), WORKER))

    wrq = RequestPacket(PacketKind.WRQ, "g.bin", "octet")
    assert flow.route(_dgram(wrq, OTHER_CLIENT)) == MAIN
    assert flow.client == OTHER_CLIENT
    assert flow.server is None


@pytest.fixture
def injector(transport):
    relay = FaultInjector("127.0.0.1", 0, MAIN)
    relay.transport.close()
    relay.transport = transport
    relay.relay(_dgram(RRQ, CLIENT))
    relay.relay(_dgram(DataPacket(1, b"a" * 512), WORKER))
    transport.sent.clear()
    return relay


def test_fault_fires_once(injector, transport):
    injector.arm(FaultPlan(FaultMode.DROP, PacketKind.ACK, block=1))

    injector.relay(_dgram(AckPacket(1), CLIENT))
    injector.relay(_dgram(AckPacket(1), CLIENT))

    assert transport.sent == [(AckPacket(1), WORKER)]
    assert len(injector.fired) == 1
    assert injector.plan is None


def test_unmatched_packets_pass_through(injector, transport):
    injector.arm(FaultPlan(FaultMode.DROP, PacketKind.DATA, block=5))

    injector.relay(_dgram(AckPacket(1), CLIENT))

    assert transport.sent == [(AckPacket(1), WORKER)]
    assert injector.fired == []
    assert injector.plan is not None


def test_duplicate_sends_twice(injector, transport):
    injector.arm(FaultPlan(FaultMode.DUPLICATE, PacketKind.DATA))

    injector.relay(_dgram(DataPacket(2, b"b"), WORKER))

    assert transport.sent == [(DataPacket(2, b"b"), CLIENT)] * 2


def test_corrupt_opcode_forwards_garbage(injector, transport):
    injector.arm(FaultPlan(FaultMode.CORRUPT_OPCODE, PacketKind.ACK))

    injector.relay(_dgram(AckPacket(1), CLIENT))

    packet, dest = transport.sent[0]
    assert dest == WORKER
    assert isinstance(packet, InvalidPacket)
    assert packet.raw == b"\xff\xff\x00\x01"


def test_none_plan_is_not_armed():
    relay = FaultInjector("127.0.0.1", 0, MAIN, FaultPlan(FaultMode.NONE))
    relay.transport.close()
    assert relay.plan is None


def test_second_responder_is_routed_to_pinned_worker():
    flow = FlowState(server_main=MAIN)
    flow.route(_dgram(RequestPacket(PacketKind.WRQ, "f.bin", "octet"), CLIENT))
    flow.route(_dgram(AckPacket(0), WORKER))

    second_worker = ("127.0.0.1", 51001)
    assert flow.route(_dgram(ErrorPacket(6, "f.bin: exists"), second_worker)) == WORKER
    assert flow.server == WORKER
