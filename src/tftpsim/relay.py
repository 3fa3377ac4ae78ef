"""Fault-injecting relay between one requester and one responder.

The relay listens on a single well-known port. Requests go to the
responder's well-known endpoint; the responder answers from a fresh
per-transfer endpoint, which the relay pins on first sight and uses for the
rest of the transfer. Replies are sent back to the requester that issued the
most recent request.

Only one flow is tracked at a time: a new RRQ/WRQ starts a new tracking cycle.
"""
from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Optional

from .constants import POLL_INTERVAL_MS
from .faults import FaultMode, FaultPlan, corrupt_mode, corrupt_opcode
from .net import Datagram, Endpoint, Transport
from .packet import RequestPacket

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FlowState:
    server_main: Endpoint
    client: Optional[Endpoint] = None
    server: Optional[Endpoint] = None

    def route(self, datagram: Datagram) -> Optional[Endpoint]:
        """Destination for ``datagram``, or None when it cannot be routed."""
        source = datagram.source
        if isinstance(datagram.packet, RequestPacket):
            self.client = source
            self.server = None
            return self.server_main

        if self.server is None:
            if self.client is None:
                return None
            if source == self.client:
                return self.server_main
            self.server = source
            logger.debug("pinned responder %s:%d", *source)
            return self.client

        if source == self.server:
            return self.client
        # anything else, including a second responder worker spawned by a
        # duplicated request, is delivered to the pinned worker
        return self.server


class FaultInjector:
    def __init__(
        self,
        host: str,
        port: int,
        server: Endpoint,
        plan: Optional[FaultPlan] = None,
        rng: Optional[random.Random] = None,
    ):
        self.host = host
        self.transport = Transport.bind(host, port)
        self.flow = FlowState(server_main=server)
        self.rng = rng
        self.fired: list[FaultPlan] = []
        self._plan = plan if plan is not None and plan.mode is not FaultMode.NONE else None
        self._lock = threading.Lock()
        self._stop = threading.Event()

    @property
    def endpoint(self) -> Endpoint:
        return self.transport.endpoint

    @property
    def plan(self) -> Optional[FaultPlan]:
        with self._lock:
            return self._plan

    def arm(self, plan: Optional[FaultPlan]) -> None:
        with self._lock:
            self._plan = plan if plan is not None and plan.mode is not FaultMode.NONE else None
        if plan is not None:
            logger.info("armed %s", plan.describe())

    def serve_forever(self) -> None:
        logger.info(
            "relay listening on %s:%d, forwarding to %s:%d",
            *self.endpoint,
            *self.flow.server_main,
        )
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
                self.relay(datagram)
        finally:
            self.transport.close()
            logger.info("relay stopped")

    def shutdown(self) -> None:
        self._stop.set()

    def relay(self, datagram: Datagram) -> None:
        dest = self.flow.route(datagram)
        if dest is None:
            logger.debug("no flow for %s:%d; dropping", *datagram.source)
            return

        logger.debug("%s:%d -> %s:%d %s", *datagram.source, *dest, datagram.packet)
        plan = self._take_plan(datagram)
        if plan is None:
            self.transport.sendto(datagram.raw, dest)
            return
        self._inject(plan, datagram, dest)

    def _take_plan(self, datagram: Datagram) -> Optional[FaultPlan]:
        with self._lock:
            plan = self._plan
            if plan is None or not plan.matches(datagram.packet):
                return None
            self._plan = None
        self.fired.append(plan)
        logger.warning("injecting %s", plan.describe())
        return plan

    def _inject(self, plan: FaultPlan, datagram: Datagram, dest: Endpoint) -> None:
        raw = datagram.raw
        if plan.mode is FaultMode.DROP:
            return
        if plan.mode is FaultMode.CORRUPT_OPCODE:
            raw = corrupt_opcode(raw)
        elif plan.mode is FaultMode.CORRUPT_MODE:
            assert isinstance(datagram.packet, RequestPacket)
            raw = corrupt_mode(datagram.packet, self.rng)
        elif plan.mode is FaultMode.DELAY:
            time.sleep(plan.delay_s)
        elif plan.mode is FaultMode.DUPLICATE:
            self.transport.sendto(raw, dest)
            time.sleep(plan.delay_s)
        elif plan.mode is FaultMode.WRONG_ENDPOINT:
            stranger = Transport.ephemeral(self.host)
            try:
                stranger.sendto(raw, dest)
            finally:
                stranger.close()
            return

        self.transport.sendto(raw, dest)
