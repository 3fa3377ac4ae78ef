from __future__ import annotations

import logging
from typing import Optional

from .config import TransferConfig
from .constants import DEFAULT_MODE
from .net import Endpoint, Transport
from .packet import PacketKind, RequestPacket
from .session import TransferResult, TransferSession
from .storage import Storage

logger = logging.getLogger(__name__)


class Client:
    """Runs transfers synchronously against one server (or relay) endpoint."""

    def __init__(
        self,
        server: Endpoint,
        storage: Storage,
        config: Optional[TransferConfig] = None,
        host: str = "",
    ):
        self.server = server
        self.storage = storage
        self.config = config or TransferConfig()
        self.host = host

    def read(self, remote_name: str, local_name: str | None = None, mode: str = DEFAULT_MODE) -> TransferResult:
        """Fetch ``remote_name`` into local storage as ``local_name``."""
        request = RequestPacket(PacketKind.RRQ, remote_name, mode)
        return self._run(request, local_name or remote_name)

    def write(self, local_name: str, remote_name: str | None = None, mode: str = DEFAULT_MODE) -> TransferResult:
        """Upload ``local_name`` from local storage as ``remote_name``."""
        request = RequestPacket(PacketKind.WRQ, remote_name or local_name, mode)
        return self._run(request, local_name)

    def _run(self, request: RequestPacket, local_name: str) -> TransferResult:
        transport = Transport.ephemeral(self.host)
        logger.debug("%s from local port %d", request.kind.name, transport.endpoint[1])
        try:
            session = TransferSession.initiate(
                transport,
                self.storage,
                request,
                self.server,
                self.config,
                local_name=local_name,
            )
            return session.run()
        finally:
            transport.close()
