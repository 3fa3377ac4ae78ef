from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .constants import MAX_DATAGRAM
from .packet import InvalidPacket, Packet, decode

Endpoint = Tuple[str, int]

logger = logging.getLogger(__name__)


def resolve(host: str, port: int) -> Endpoint:
    """Numeric (ip, port) pair, comparable with recvfrom source addresses."""
    return socket.gethostbyname(host), port


@dataclass(frozen=True, slots=True)
class Datagram:
    raw: bytes
    source: Endpoint
    packet: Packet

    @property
    def malformed(self) -> bool:
        return isinstance(self.packet, InvalidPacket)

    @classmethod
    def from_raw(cls, raw: bytes, source: Endpoint) -> "Datagram":
        return cls(raw=raw, source=(source[0], source[1]), packet=decode(raw))


class Transport:
    """One UDP socket. Never retries; all retry policy lives in the session."""

    def __init__(self, sock: socket.socket):
        self.sock = sock

    @classmethod
    def bind(cls, host: str, port: int) -> "Transport":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind((host, port))
        return cls(sock)

    @classmethod
    def ephemeral(cls, host: str = "") -> "Transport":
        return cls.bind(host, 0)

    @property
    def endpoint(self) -> Endpoint:
        host, port = self.sock.getsockname()[:2]
        return host, port

    def sendto(self, data: bytes, addr: Endpoint) -> None:
        self.sock.sendto(data, addr)

    def send(self, packet: Union[Packet, bytes], addr: Endpoint) -> None:
        raw = packet if isinstance(packet, (bytes, bytearray)) else packet.to_bytes()
        self.sendto(bytes(raw), addr)

    def receive(self, timeout_s: Optional[float] = None) -> Datagram:
        """Wait for one datagram; raises ``TimeoutError`` when none arrives.

        One byte past the protocol maximum is read so that oversized
        datagrams decode as invalid instead of being silently truncated.
        """
        if timeout_s is not None and timeout_s <= 0:
            raise TimeoutError("receive deadline already passed")
        self.sock.settimeout(timeout_s)
        raw, addr = self.sock.recvfrom(MAX_DATAGRAM + 1)
        datagram = Datagram.from_raw(raw, addr)
        if datagram.malformed:
            logger.debug("malformed datagram from %s:%d: %s", addr[0], addr[1], datagram.packet.reason)
        return datagram

    def close(self) -> None:
        self.sock.close()
