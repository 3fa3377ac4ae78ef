"""Fault plans for the relay.

A plan names one fault and a filter (packet kind, optional block number).
The relay applies it to the first matching packet and then forgets it.
"""
from __future__ import annotations

import enum
import random
import struct
from dataclasses import dataclass
from typing import Optional, Sequence

from .constants import INVALID_OPCODE, MODES, OPCODE_FORMAT
from .packet import AckPacket, DataPacket, InvalidPacket, Packet, PacketKind, RequestPacket


class FaultMode(enum.Enum):
    NONE = "none"
    CORRUPT_OPCODE = "corrupt-opcode"
    CORRUPT_MODE = "corrupt-mode"
    DROP = "drop"
    DELAY = "delay"
    DUPLICATE = "duplicate"
    WRONG_ENDPOINT = "wrong-endpoint"


@dataclass(frozen=True, slots=True)
class FaultPlan:
    mode: FaultMode
    kind: Optional[PacketKind] = None
    block: Optional[int] = None
    delay_ms: int = 0

    def __post_init__(self) -> None:
        if self.kind is PacketKind.ERROR:
            raise ValueError("ERROR packets cannot be targeted")
        if self.mode is FaultMode.CORRUPT_MODE and (self.kind is None or not self.kind.is_request):
            raise ValueError("corrupt-mode needs an RRQ or WRQ target")
        if self.block is not None:
            if self.kind not in (PacketKind.DATA, PacketKind.ACK):
                raise ValueError("a block number only applies to DATA or ACK targets")
            if not 0 <= self.block <= 0xFFFF:
                raise ValueError(f"block out of range: {self.block}")
        if self.delay_ms < 0:
            raise ValueError(f"delay_ms must not be negative, got {self.delay_ms}")

    @property
    def delay_s(self) -> float:
        return self.delay_ms / 1000.0

    def matches(self, packet: Packet) -> bool:
        if self.mode is FaultMode.NONE or isinstance(packet, InvalidPacket):
            return False
        if packet.kind is PacketKind.ERROR:
            return False
        if self.kind is not None and packet.kind is not self.kind:
            return False
        if self.block is not None:
            assert isinstance(packet, (DataPacket, AckPacket))
            return packet.block == self.block
        return True

    def describe(self) -> str:
        target = self.kind.name if self.kind is not None else "any"
        if self.block is not None:
            target += f" {self.block}"
        return f"{self.mode.value} on {target}"


def corrupt_opcode(raw: bytes) -> bytes:
    return struct.pack(OPCODE_FORMAT, INVALID_OPCODE) + raw[2:]


def alternate_mode(mode: str, rng: random.Random | None = None) -> str:
    choices: Sequence[str] = [m for m in MODES if m != mode.lower()]
    return (rng or random).choice(choices)


def corrupt_mode(packet: RequestPacket, rng: random.Random | None = None) -> bytes:
    return RequestPacket(packet.kind, packet.filename, alternate_mode(packet.mode, rng)).to_bytes()
