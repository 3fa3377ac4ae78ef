"""Stop-and-wait transfer engine.

One ``TransferSession`` drives one read or write to completion, from either
end of the connection. The sending role pushes DATA and waits for matching
ACKs; the receiving role waits for DATA and acknowledges each block once.
Both share the same reply screening: foreign endpoints get UnknownTransferID,
stale blocks are dropped silently, unexpected packets get IllegalOperation,
and timeouts retransmit the last outgoing packet until the attempt ceiling.
"""
from __future__ import annotations

import enum
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from .config import TransferConfig
from .errors import ErrorSignaler, RemoteError, RetriesExhausted, StorageError, TransferError
from .net import Datagram, Endpoint, Transport
from .packet import (
    AckPacket,
    DataPacket,
    ErrorCode,
    ErrorPacket,
    InvalidPacket,
    Packet,
    PacketKind,
    RequestPacket,
    block_distance,
    next_block,
    split_blocks,
)
from .storage import Storage

logger = logging.getLogger(__name__)


class Role(enum.Enum):
    SENDER = "sender"
    RECEIVER = "receiver"


class State(enum.Enum):
    START = "start"
    AWAITING_PEER = "awaiting-peer"
    EXCHANGING = "exchanging"
    DONE = "done"


@dataclass(slots=True)
class TransferResult:
    filename: str
    role: Role
    ok: bool = False
    blocks: int = 0
    bytes_transferred: int = 0
    packets_sent: int = 0
    retransmits: int = 0
    timeouts: int = 0
    error: Optional[TransferError] = None
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_mbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.bytes_transferred * 8 / 1_000_000) / self.duration_s


class TransferSession:
    def __init__(
        self,
        transport: Transport,
        storage: Storage,
        filename: str,
        role: Role,
        peer: Endpoint,
        config: TransferConfig,
        *,
        request: RequestPacket | None = None,
    ):
        self.transport = transport
        self.storage = storage
        self.filename = filename
        self.role = role
        self.peer = peer
        self.config = config
        self.request = request
        # the requester does not know the responder's TID until it replies
        self.pinned = request is None
        self.state = State.START
        self.signaler = ErrorSignaler(transport)
        self.result = TransferResult(filename=filename, role=role)
        self.pending: deque[bytes] = deque()
        self._last: Packet | None = None

    @classmethod
    def respond(
        cls,
        transport: Transport,
        storage: Storage,
        request: RequestPacket,
        peer: Endpoint,
        config: TransferConfig,
    ) -> "TransferSession":
        role = Role.SENDER if request.kind is PacketKind.RRQ else Role.RECEIVER
        return cls(transport, storage, request.filename, role, peer, config)

    @classmethod
    def initiate(
        cls,
        transport: Transport,
        storage: Storage,
        request: RequestPacket,
        server: Endpoint,
        config: TransferConfig,
        local_name: str | None = None,
    ) -> "TransferSession":
        role = Role.RECEIVER if request.kind is PacketKind.RRQ else Role.SENDER
        return cls(
            transport,
            storage,
            local_name or request.filename,
            role,
            server,
            config,
            request=request,
        )

    def run(self) -> TransferResult:
        logger.info("%s %s with %s:%d started", self.role.value, self.filename, *self.peer)
        try:
            self._start()
            if self.role is Role.SENDER:
                self._send_blocks()
            else:
                self._receive_blocks()
            self.result.ok = True
        except TransferError as exc:
            self.result.error = exc
            logger.error("%s %s failed: %s", self.role.value, self.filename, exc)
        finally:
            self.state = State.DONE
            self.result.end_ts = time.monotonic()

        if self.result.ok:
            logger.info(
                "%s %s done; blocks=%d bytes=%d retransmits=%d",
                self.role.value,
                self.filename,
                self.result.blocks,
                self.result.bytes_transferred,
                self.result.retransmits,
            )
        return self.result

    def _start(self) -> None:
        try:
            if self.role is Role.SENDER:
                self.pending.extend(split_blocks(self.storage.read_all(self.filename)))
            else:
                self.storage.create(self.filename)
        except StorageError as exc:
            # before the request goes out there is nobody to tell
            if self.pinned:
                self.signaler.signal_failure(exc, self.peer)
            raise

        if self.request is not None:
            self.state = State.AWAITING_PEER
            self._transmit(self.request)
            return

        self.state = State.EXCHANGING
        if self.role is Role.RECEIVER:
            self._transmit(AckPacket(0))

    def _send_blocks(self) -> None:
        if not self.pinned:
            self._await(PacketKind.ACK, 0)

        block = 1
        while self.pending:
            chunk = self.pending[0]
            self._transmit(DataPacket(block, chunk))
            self._await(PacketKind.ACK, block)
            self.pending.popleft()
            self.result.blocks += 1
            self.result.bytes_transferred += len(chunk)
            block = next_block(block)

    def _receive_blocks(self) -> None:
        expected = 1
        while True:
            packet = self._await(PacketKind.DATA, expected)
            assert isinstance(packet, DataPacket)
            try:
                self.storage.append(self.filename, packet.payload)
            except StorageError as exc:
                self.signaler.signal_failure(exc, self.peer)
                raise
            self.result.blocks += 1
            self.result.bytes_transferred += len(packet.payload)
            self._transmit(AckPacket(expected))
            if packet.final:
                return
            expected = next_block(expected)

    def _transmit(self, packet: Packet) -> None:
        logger.debug("-> %s:%d %s", self.peer[0], self.peer[1], packet)
        self.transport.send(packet, self.peer)
        self._last = packet
        self.result.packets_sent += 1

    def _retransmit(self) -> None:
        if self._last is None:
            return
        logger.debug("retransmit -> %s:%d %s", self.peer[0], self.peer[1], self._last)
        self.transport.send(self._last, self.peer)
        self.result.packets_sent += 1
        self.result.retransmits += 1

    def _await(self, kind: PacketKind, block: int) -> Packet:
        """Wait for ``kind`` carrying ``block``, retransmitting on timeout."""
        attempts = 1
        deadline = time.monotonic() + self.config.timeout_s
        while True:
            try:
                datagram = self.transport.receive(deadline - time.monotonic())
            except TimeoutError:
                self.result.timeouts += 1
                if attempts >= self.config.max_attempts:
                    raise RetriesExhausted(
                        f"no {kind.name} {block} after {attempts} attempts"
                    ) from None
                attempts += 1
                logger.debug("timeout waiting for %s %d; attempt %d", kind.name, block, attempts)
                self._retransmit()
                deadline = time.monotonic() + self.config.timeout_s
                continue

            packet = self._screen(datagram, kind, block)
            if packet is not None:
                return packet

    def _screen(self, datagram: Datagram, kind: PacketKind, block: int) -> Packet | None:
        source = datagram.source
        packet = datagram.packet

        if self.pinned and source != self.peer:
            self.signaler.signal(
                ErrorCode.UNKNOWN_TRANSFER_ID,
                f"unknown transfer ID {source[0]}:{source[1]}",
                source,
            )
            return None

        if isinstance(packet, ErrorPacket):
            logger.warning(
                "received ERROR %d from %s:%d: %s", packet.code, source[0], source[1], packet.message
            )
            if self.state is State.EXCHANGING and packet.code == ErrorCode.ILLEGAL_OPERATION:
                self._retransmit()
                return None
            raise RemoteError(packet.code, packet.message)

        if isinstance(packet, InvalidPacket):
            self.signaler.signal(ErrorCode.ILLEGAL_OPERATION, packet.reason, source)
            return None

        if packet.kind is not kind:
            self.signaler.signal(
                ErrorCode.ILLEGAL_OPERATION,
                f"expected {kind.name}, got {packet.kind.name}",
                source,
            )
            return None

        assert isinstance(packet, (DataPacket, AckPacket))
        distance = block_distance(packet.block, block)
        if distance < 0:
            logger.debug("discarding stale %s %d (expected %d)", kind.name, packet.block, block)
            return None
        if distance > 0:
            self.signaler.signal(
                ErrorCode.ILLEGAL_OPERATION,
                f"unexpected {kind.name} block {packet.block}, expected {block}",
                source,
            )
            return None

        if not self.pinned:
            self.peer = source
            self.pinned = True
            self.state = State.EXCHANGING
            logger.debug("pinned peer %s:%d", *source)
        return packet
