from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict
from typing import Any, Optional

from .client import Client
from .config import TransferConfig
from .constants import (
    DEFAULT_HOST,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MODE,
    DEFAULT_RELAY_PORT,
    DEFAULT_SERVER_PORT,
    DEFAULT_TIMEOUT_MS,
    MODES,
)
from .faults import FaultMode, FaultPlan
from .net import resolve
from .packet import PacketKind
from .relay import FaultInjector
from .scenario import run_scenario
from .server import Server
from .session import TransferResult
from .storage import FileStore

PACKET_CHOICES = {
    "any": None,
    "rrq": PacketKind.RRQ,
    "wrq": PacketKind.WRQ,
    "data": PacketKind.DATA,
    "ack": PacketKind.ACK,
}


def _config(args: argparse.Namespace) -> TransferConfig:
    return TransferConfig(timeout_ms=args.timeout_ms, max_attempts=args.max_attempts)


def _plan(args: argparse.Namespace) -> Optional[FaultPlan]:
    mode = FaultMode(args.fault)
    if mode is FaultMode.NONE:
        return None
    return FaultPlan(
        mode=mode,
        kind=PACKET_CHOICES[args.packet],
        block=args.block,
        delay_ms=args.delay_ms,
    )


def _emit(payload: dict[str, Any], as_json: bool) -> None:
    print(json.dumps(payload, indent=2) if as_json else payload)


def _transfer_payload(role: str, result: TransferResult) -> dict[str, Any]:
    return {
        "role": role,
        "file": result.filename,
        "ok": result.ok,
        "bytes": result.bytes_transferred,
        "blocks": result.blocks,
        "seconds": result.duration_s,
        "mbps": result.throughput_mbps,
        "timeouts": result.timeouts,
        "retransmits": result.retransmits,
        "error": str(result.error) if result.error is not None else None,
    }


def cmd_server(args: argparse.Namespace) -> int:
    server = Server(args.host, args.port, FileStore(args.root), args.config)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        server.shutdown()
    return 0


def cmd_relay(args: argparse.Namespace) -> int:
    relay = FaultInjector(
        args.listen_host,
        args.listen_port,
        resolve(args.server_host, args.server_port),
        args.plan,
    )
    try:
        relay.serve_forever()
    except KeyboardInterrupt:
        relay.shutdown()
    return 0


def cmd_read(args: argparse.Namespace) -> int:
    client = Client(resolve(args.server_host, args.server_port), FileStore(args.root), args.config)
    result = client.read(args.remote, args.local, mode=args.mode)
    _emit(_transfer_payload("reader", result), args.json)
    return 0 if result.ok else 1


def cmd_write(args: argparse.Namespace) -> int:
    client = Client(resolve(args.server_host, args.server_port), FileStore(args.root), args.config)
    result = client.write(args.local, args.remote, mode=args.mode)
    _emit(_transfer_payload("writer", result), args.json)
    return 0 if result.ok else 1


def cmd_scenario(args: argparse.Namespace) -> int:
    r = run_scenario(
        direction=args.direction,
        size_bytes=args.size_bytes,
        plan=args.plan,
        config=args.config,
        mode=args.mode,
    )
    _emit({"role": "scenario", **asdict(r)}, args.json)
    return 0 if r.ok and r.intact else 1


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="tftpsim", description="TFTP over UDP with a fault-injecting relay.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_retry(x: argparse.ArgumentParser, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        x.add_argument("--timeout-ms", type=int, default=timeout_ms)
        x.add_argument("--max-attempts", type=int, default=DEFAULT_MAX_ATTEMPTS)

    def add_client(x: argparse.ArgumentParser) -> None:
        add_retry(x)
        x.add_argument("--server-host", default=DEFAULT_HOST)
        x.add_argument("--server-port", type=int, default=DEFAULT_SERVER_PORT)
        x.add_argument("--mode", default=DEFAULT_MODE, choices=list(MODES))
        x.add_argument("--root", default=".", help="local directory for transferred files")
        x.add_argument("--json", action="store_true")

    def add_fault(x: argparse.ArgumentParser) -> None:
        x.add_argument("--fault", default="none", choices=[m.value for m in FaultMode])
        x.add_argument("--packet", default="any", choices=list(PACKET_CHOICES))
        x.add_argument("--block", type=int, default=None, help="DATA/ACK block number to target")
        x.add_argument("--delay-ms", type=int, default=0, help="delay for delay/duplicate faults")

    server = sub.add_parser("server", help="serve files from a directory")
    add_retry(server)
    server.add_argument("--host", default="0.0.0.0")
    server.add_argument("--port", type=int, default=DEFAULT_SERVER_PORT)
    server.add_argument("--root", default=".")
    server.set_defaults(func=cmd_server)

    relay = sub.add_parser("relay", help="relay traffic and inject one fault")
    add_fault(relay)
    relay.add_argument("--listen-host", default="0.0.0.0")
    relay.add_argument("--listen-port", type=int, default=DEFAULT_RELAY_PORT)
    relay.add_argument("--server-host", default=DEFAULT_HOST)
    relay.add_argument("--server-port", type=int, default=DEFAULT_SERVER_PORT)
    relay.set_defaults(func=cmd_relay)

    read = sub.add_parser("read", help="read a file from the server")
    add_client(read)
    read.add_argument("remote")
    read.add_argument("local", nargs="?", default=None)
    read.set_defaults(func=cmd_read)

    write = sub.add_parser("write", help="write a file to the server")
    add_client(write)
    write.add_argument("local")
    write.add_argument("remote", nargs="?", default=None)
    write.set_defaults(func=cmd_write)

    scenario = sub.add_parser("scenario", help="loopback transfer through the relay")
    add_retry(scenario, timeout_ms=300)
    add_fault(scenario)
    scenario.add_argument("--direction", choices=["read", "write"], default="read")
    scenario.add_argument("--size-bytes", type=int, default=100_000)
    scenario.add_argument("--mode", default=DEFAULT_MODE, choices=list(MODES))
    scenario.add_argument("--json", action="store_true")
    scenario.set_defaults(func=cmd_scenario)

    args = p.parse_args(argv)
    try:
        args.config = _config(args) if hasattr(args, "timeout_ms") else None
        args.plan = _plan(args) if hasattr(args, "fault") else None
    except ValueError as exc:
        p.error(str(exc))

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
