from __future__ import annotations

import os
import random
import tempfile
import threading
from dataclasses import dataclass
from typing import Literal, Optional

from .client import Client
from .config import TransferConfig
from .constants import DEFAULT_MODE
from .faults import FaultPlan
from .relay import FaultInjector
from .server import Server
from .storage import FileStore


@dataclass(frozen=True, slots=True)
class ScenarioResult:
    direction: str
    fault: str
    ok: bool
    intact: bool
    bytes_transferred: int
    duration_s: float
    retransmits: int
    timeouts: int
    error: Optional[str]
    server_ok: Optional[bool]
    faults_fired: int


def run_scenario(
    *,
    direction: Literal["read", "write"],
    size_bytes: int,
    plan: Optional[FaultPlan] = None,
    config: Optional[TransferConfig] = None,
    mode: str = DEFAULT_MODE,
    rng: Optional[random.Random] = None,
    filename: str = "scenario.bin",
) -> ScenarioResult:
    """Run server, relay and client on loopback and transfer one file."""
    config = config or TransferConfig(timeout_ms=300, max_attempts=5)
    payload = os.urandom(size_bytes)

    with tempfile.TemporaryDirectory() as server_dir, tempfile.TemporaryDirectory() as client_dir:
        server_store = FileStore(server_dir)
        client_store = FileStore(client_dir)
        source_dir = server_dir if direction == "read" else client_dir
        with open(os.path.join(source_dir, filename), "wb") as f:
            f.write(payload)

        server = Server("127.0.0.1", 0, server_store, config)
        relay = FaultInjector("127.0.0.1", 0, server.endpoint, plan, rng=rng)
        threads = [
            threading.Thread(target=server.serve_forever, daemon=True),
            threading.Thread(target=relay.serve_forever, daemon=True),
        ]
        for t in threads:
            t.start()

        client = Client(relay.endpoint, client_store, config, host="127.0.0.1")
        try:
            if direction == "read":
                result = client.read(filename, mode=mode)
            else:
                result = client.write(filename, mode=mode)
            server.join_workers(timeout=config.timeout_s * config.max_attempts + 1.0)
        finally:
            relay.shutdown()
            server.shutdown()
            for t in threads:
                t.join(timeout=5.0)

        target_dir = client_dir if direction == "read" else server_dir
        target = os.path.join(target_dir, filename)
        intact = False
        if result.ok and os.path.exists(target):
            with open(target, "rb") as f:
                intact = f.read() == payload

        server_ok = None
        if server.results:
            server_ok = any(r.ok for r in server.results)

    return ScenarioResult(
        direction=direction,
        fault=plan.describe() if plan is not None else "none",
        ok=result.ok,
        intact=intact,
        bytes_transferred=result.bytes_transferred,
        duration_s=result.duration_s,
        retransmits=result.retransmits,
        timeouts=result.timeouts,
        error=str(result.error) if result.error is not None else None,
        server_ok=server_ok,
        faults_fired=len(relay.fired),
    )
