from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Deque, List, Optional

from .config import TransferConfig
from .constants import POLL_INTERVAL_MS, RESULT_HISTORY, SUPPORTED_MODES
from .errors import ErrorSignaler
from .net import Datagram, Endpoint, Transport
from .packet import ErrorCode, ErrorPacket, InvalidPacket, RequestPacket
from .session import TransferResult, TransferSession
from .storage import Storage

logger = logging.getLogger(__name__)


class Server:
    """Accepts requests on a well-known port; one worker thread per transfer."""

    def __init__(
        self,
        host: str,
        port: int,
        storage: Storage,
        config: Optional[TransferConfig] = None,
        history: int = RESULT_HISTORY,
    ):
        self.host = host
        self.storage = storage
        self.config = config or TransferConfig()
        self.transport = Transport.bind(host, port)
        self.signaler = ErrorSignaler(self.transport)
        # bounded; the oldest results fall off
        self.results: Deque[TransferResult] = deque(maxlen=history)
        self._workers: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()

    @property
    def endpoint(self) -> Endpoint:
        return self.transport.endpoint

    def serve_forever(self) -> None:
        logger.info("server listening on %s:%d", *self.endpoint)
        try:
            while not self._stop.is_set():
                try:
                    datagram = self.transport.receive(POLL_INTERVAL_MS / 1000.0)
                except TimeoutError:
                    continue
                except OSError:
                    if self._stop.is_set():
                        break
                    raise
                self.handle(datagram)
        finally:
            self.transport.close()
            logger.info("server stopped")

    def shutdown(self) -> None:
        self._stop.set()

    def handle(self, datagram: Datagram) -> None:
        packet = datagram.packet
        source = datagram.source

        if isinstance(packet, InvalidPacket):
            self.signaler.signal(ErrorCode.ILLEGAL_OPERATION, packet.reason, source)
            return
        if isinstance(packet, ErrorPacket):
            logger.warning("ignoring ERROR %d from %s:%d on the request port", packet.code, *source)
            return
        if not isinstance(packet, RequestPacket):
            self.signaler.signal(
                ErrorCode.ILLEGAL_OPERATION,
                f"expected a read or write request, got {packet.kind.name}",
                source,
            )
            return
        if packet.mode.lower() not in SUPPORTED_MODES:
            self.signaler.signal(
                ErrorCode.ILLEGAL_OPERATION, f"unsupported transfer mode {packet.mode!r}", source
            )
            return

        logger.info("%s %s (%s) from %s:%d", packet.kind.name, packet.filename, packet.mode, *source)
        worker = threading.Thread(
            target=self._serve_request,
            args=(packet, source),
            name=f"tftp-{packet.kind.name.lower()}-{source[1]}",
            daemon=True,
        )
        with self._lock:
            self._workers = [t for t in self._workers if t.is_alive()]
            self._workers.append(worker)
        worker.start()

    def _serve_request(self, request: RequestPacket, peer: Endpoint) -> None:
        transport = Transport.ephemeral(self.host)
        try:
            session = TransferSession.respond(transport, self.storage, request, peer, self.config)
            result = session.run()
        finally:
            transport.close()
        with self._lock:
            self.results.append(result)

    def join_workers(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            workers = list(self._workers)
        for worker in workers:
            worker.join(timeout)
