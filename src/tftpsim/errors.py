from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .constants import TEXT_ENCODING
from .packet import ErrorCode, ErrorPacket

if TYPE_CHECKING:
    from .net import Endpoint, Transport

logger = logging.getLogger(__name__)


class TransferError(Exception):
    """A transfer reached a terminal failure. ``code`` is its ERROR code."""

    code: ErrorCode = ErrorCode.NOT_DEFINED

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        if code is not None:
            self.code = _as_code(code)


class StorageError(TransferError):
    pass


class FileNotFound(StorageError):
    code = ErrorCode.FILE_NOT_FOUND


class AccessViolation(StorageError):
    code = ErrorCode.ACCESS_VIOLATION


class DiskFull(StorageError):
    code = ErrorCode.DISK_FULL


class FileAlreadyExists(StorageError):
    code = ErrorCode.FILE_ALREADY_EXISTS


class RemoteError(TransferError):
    """The peer sent an ERROR packet that ends the transfer."""

    def __init__(self, code: int, message: str):
        super().__init__(f"peer reported error {code}: {message}", code)
        self.remote_message = message


class RetriesExhausted(TransferError):
    pass


def _as_code(code: int) -> ErrorCode | int:
    try:
        return ErrorCode(code)
    except ValueError:
        return code


class ErrorSignaler:
    """Builds and sends ERROR packets. Fire-and-forget: never waits for a reply."""

    def __init__(self, transport: "Transport"):
        self.transport = transport

    def signal(self, code: int, message: str, dest: "Endpoint") -> ErrorPacket:
        packet = ErrorPacket(int(code), _wire_text(message))
        logger.warning(
            "sending ERROR %s to %s:%d: %s",
            _describe(packet.code),
            dest[0],
            dest[1],
            message,
        )
        self.transport.send(packet, dest)
        return packet

    def signal_failure(self, exc: TransferError, dest: "Endpoint") -> ErrorPacket:
        return self.signal(exc.code, str(exc), dest)


def _wire_text(message: str) -> str:
    """Coerce ``message`` to text an ERROR packet can carry."""
    return message.replace("\x00", "").encode(TEXT_ENCODING, "replace").decode(TEXT_ENCODING)


def _describe(code: int) -> str:
    named = _as_code(code)
    if isinstance(named, ErrorCode):
        return f"{named.name} ({int(named)})"
    return str(code)
