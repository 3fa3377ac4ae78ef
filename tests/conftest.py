from __future__ import annotations

from collections import deque

import pytest

from tftpsim.errors import DiskFull, FileAlreadyExists, FileNotFound
from tftpsim.net import Datagram
from tftpsim.packet import decode


class FakeTransport:
    """Scripted stand-in for a UDP socket: replies are queued up front."""

    def __init__(self, endpoint=("127.0.0.1", 40000)):
        self.endpoint = endpoint
        self.inbox: deque[Datagram] = deque()
        self.sent: list[tuple[object, tuple[str, int]]] = []

    def queue(self, packet, source) -> None:
        raw = packet if isinstance(packet, bytes) else packet.to_bytes()
        self.inbox.append(Datagram.from_raw(raw, source))

    def send(self, packet, addr) -> None:
        if isinstance(packet, bytes):
            packet = decode(packet)
        self.sent.append((packet, addr))

    def sendto(self, data, addr) -> None:
        self.send(bytes(data), addr)

    def receive(self, timeout_s=None) -> Datagram:
        if not self.inbox:
            raise TimeoutError("nothing queued")
        return self.inbox.popleft()

    def close(self) -> None:
        pass

    @property
    def packets(self) -> list:
        return [p for p, _ in self.sent]


class MemoryStorage:
    def __init__(self, files=None, full: bool = False):
        self.files: dict[str, bytes] = dict(files or {})
        self.full = full

    def read_all(self, name: str) -> bytes:
        if name not in self.files:
            raise FileNotFound(f"{name}: not found")
        return self.files[name]

    def create(self, name: str) -> None:
        if name in self.files:
            raise FileAlreadyExists(f"{name}: exists")
        self.files[name] = b""

    def append(self, name: str, data: bytes) -> None:
        if self.full:
            raise DiskFull(f"{name}: no space left")
        self.files[name] += data


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def storage():
    return MemoryStorage()
