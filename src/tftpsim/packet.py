from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import ClassVar, Iterator, Optional, Union

from .constants import (
    ACK,
    BLOCK_HEADER_FORMAT,
    BLOCK_SIZE,
    DATA,
    ERROR,
    MAX_BLOCK,
    OPCODE_FORMAT,
    RRQ,
    TEXT_ENCODING,
    WRQ,
)

_OPCODE = struct.Struct(OPCODE_FORMAT)
_BLOCK_HEADER = struct.Struct(BLOCK_HEADER_FORMAT)


class PacketKind(enum.IntEnum):
    RRQ = RRQ
    WRQ = WRQ
    DATA = DATA
    ACK = ACK
    ERROR = ERROR

    @property
    def is_request(self) -> bool:
        return self in (PacketKind.RRQ, PacketKind.WRQ)


class ErrorCode(enum.IntEnum):
    NOT_DEFINED = 0
    FILE_NOT_FOUND = 1
    ACCESS_VIOLATION = 2
    DISK_FULL = 3
    ILLEGAL_OPERATION = 4
    UNKNOWN_TRANSFER_ID = 5
    FILE_ALREADY_EXISTS = 6


def _check_u16(name: str, value: int) -> None:
    if not 0 <= value <= MAX_BLOCK:
        raise ValueError(f"{name} out of range: {value}")


def _encode_text(name: str, value: str, allow_empty: bool = False) -> bytes:
    if not value and not allow_empty:
        raise ValueError(f"{name} must not be empty")
    if "\x00" in value:
        raise ValueError(f"{name} must not contain NUL")
    return value.encode(TEXT_ENCODING)


@dataclass(frozen=True, slots=True)
class RequestPacket:
    kind: PacketKind
    filename: str
    mode: str

    def __post_init__(self) -> None:
        kind = PacketKind(self.kind)
        if not kind.is_request:
            raise ValueError(f"not a request kind: {kind.name}")
        object.__setattr__(self, "kind", kind)
        _encode_text("filename", self.filename)
        _encode_text("mode", self.mode)

    def to_bytes(self) -> bytes:
        return b"".join(
            (
                _OPCODE.pack(int(self.kind)),
                _encode_text("filename", self.filename),
                b"\x00",
                _encode_text("mode", self.mode),
                b"\x00",
            )
        )


@dataclass(frozen=True, slots=True)
class DataPacket:
    kind: ClassVar[PacketKind] = PacketKind.DATA

    block: int
    payload: bytes = b""

    def __post_init__(self) -> None:
        _check_u16("block", self.block)
        if len(self.payload) > BLOCK_SIZE:
            raise ValueError(f"payload too large: {len(self.payload)}")

    @property
    def final(self) -> bool:
        return len(self.payload) < BLOCK_SIZE

    def to_bytes(self) -> bytes:
        return _BLOCK_HEADER.pack(DATA, self.block) + self.payload


@dataclass(frozen=True, slots=True)
class AckPacket:
    kind: ClassVar[PacketKind] = PacketKind.ACK

    block: int

    def __post_init__(self) -> None:
        _check_u16("block", self.block)

    def to_bytes(self) -> bytes:
        return _BLOCK_HEADER.pack(ACK, self.block)


@dataclass(frozen=True, slots=True)
class ErrorPacket:
    kind: ClassVar[PacketKind] = PacketKind.ERROR

    code: int
    message: str = ""

    def __post_init__(self) -> None:
        _check_u16("code", self.code)
        _encode_text("message", self.message, allow_empty=True)

    def to_bytes(self) -> bytes:
        return (
            _BLOCK_HEADER.pack(ERROR, self.code)
            + _encode_text("message", self.message, allow_empty=True)
            + b"\x00"
        )


@dataclass(frozen=True, slots=True)
class InvalidPacket:
    """Bytes that did not decode to any packet; ``reason`` says why."""

    kind: ClassVar[Optional[PacketKind]] = None

    raw: bytes
    reason: str

    def to_bytes(self) -> bytes:
        return self.raw


Packet = Union[RequestPacket, DataPacket, AckPacket, ErrorPacket, InvalidPacket]


def _split_text(raw: bytes, start: int) -> tuple[str, int] | None:
    end = raw.find(b"\x00", start)
    if end <= start:
        return None
    return raw[start:end].decode(TEXT_ENCODING), end + 1


def _decode_request(raw: bytes, kind: PacketKind) -> Packet:
    field = _split_text(raw, 2)
    if field is None:
        return InvalidPacket(raw, "missing or empty filename")
    filename, offset = field
    field = _split_text(raw, offset)
    if field is None:
        return InvalidPacket(raw, "missing or empty mode")
    mode, offset = field
    if offset != len(raw):
        return InvalidPacket(raw, "trailing bytes after mode")
    return RequestPacket(kind, filename, mode)


def _decode_data(raw: bytes) -> Packet:
    if len(raw) < _BLOCK_HEADER.size:
        return InvalidPacket(raw, "DATA shorter than 4 bytes")
    _, block = _BLOCK_HEADER.unpack_from(raw)
    payload = raw[_BLOCK_HEADER.size :]
    if len(payload) > BLOCK_SIZE:
        return InvalidPacket(raw, f"DATA payload of {len(payload)} bytes exceeds {BLOCK_SIZE}")
    return DataPacket(block, payload)


def _decode_ack(raw: bytes) -> Packet:
    if len(raw) != _BLOCK_HEADER.size:
        return InvalidPacket(raw, f"ACK must be 4 bytes, got {len(raw)}")
    _, block = _BLOCK_HEADER.unpack(raw)
    return AckPacket(block)


def _decode_error(raw: bytes) -> Packet:
    if len(raw) < _BLOCK_HEADER.size + 1:
        return InvalidPacket(raw, "ERROR shorter than 5 bytes")
    _, code = _BLOCK_HEADER.unpack_from(raw)
    end = raw.find(b"\x00", _BLOCK_HEADER.size)
    if end != len(raw) - 1:
        return InvalidPacket(raw, "ERROR message not NUL-terminated")
    return ErrorPacket(code, raw[_BLOCK_HEADER.size : end].decode(TEXT_ENCODING))


def decode(raw: bytes) -> Packet:
    """Parse one datagram. Never raises: bad input becomes ``InvalidPacket``."""
    raw = bytes(raw)
    if len(raw) < _OPCODE.size:
        return InvalidPacket(raw, "datagram too small to hold an opcode")

    (opcode,) = _OPCODE.unpack_from(raw)
    try:
        kind = PacketKind(opcode)
    except ValueError:
        return InvalidPacket(raw, f"unknown opcode {opcode}")

    if kind.is_request:
        return _decode_request(raw, kind)
    if kind is PacketKind.DATA:
        return _decode_data(raw)
    if kind is PacketKind.ACK:
        return _decode_ack(raw)
    return _decode_error(raw)


def encode(packet: Packet) -> bytes:
    return packet.to_bytes()


def request(kind: PacketKind, filename: str, mode: str) -> RequestPacket:
    return RequestPacket(PacketKind(kind), filename, mode)


def data(block: int, payload: bytes) -> DataPacket:
    return DataPacket(block, bytes(payload))


def ack(block: int) -> AckPacket:
    return AckPacket(block)


def error(code: int, message: str = "") -> ErrorPacket:
    return ErrorPacket(int(code), message)


def next_block(block: int) -> int:
    return (block + 1) & MAX_BLOCK


def block_distance(received: int, expected: int) -> int:
    """Signed distance from ``expected`` to ``received`` modulo 2**16.

    Negative means ``received`` is older than expected, positive means newer.
    """
    diff = (received - expected) & MAX_BLOCK
    return diff - (MAX_BLOCK + 1) if diff > MAX_BLOCK // 2 else diff


def split_blocks(payload: bytes) -> Iterator[bytes]:
    """Yield BLOCK_SIZE chunks, ending with a short (possibly empty) one."""
    for offset in range(0, len(payload), BLOCK_SIZE):
        yield payload[offset : offset + BLOCK_SIZE]
    if len(payload) % BLOCK_SIZE == 0:
        yield b""
