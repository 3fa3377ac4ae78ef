from __future__ import annotations

import errno
import logging
import os
from pathlib import Path
from typing import Protocol, Type, Union

from .errors import AccessViolation, DiskFull, FileAlreadyExists, FileNotFound, StorageError

logger = logging.getLogger(__name__)


class Storage(Protocol):
    def read_all(self, name: str) -> bytes: ...

    def create(self, name: str) -> None: ...

    def append(self, name: str, data: bytes) -> None: ...


_ERRNO_MAP: dict[int, Type[StorageError]] = {
    errno.ENOENT: FileNotFound,
    errno.EACCES: AccessViolation,
    errno.EPERM: AccessViolation,
    errno.EISDIR: AccessViolation,
    errno.ENOSPC: DiskFull,
    errno.EFBIG: DiskFull,
    errno.EEXIST: FileAlreadyExists,
}
if hasattr(errno, "EDQUOT"):
    _ERRNO_MAP[errno.EDQUOT] = DiskFull


def classify(exc: OSError, name: str) -> StorageError:
    kind = _ERRNO_MAP.get(exc.errno or 0, StorageError)
    reason = exc.strerror or exc.__class__.__name__
    return kind(f"{name}: {reason}")


class FileStore:
    """Files under one root directory; names may not escape it."""

    def __init__(self, root: Union[str, os.PathLike[str]] = "."):
        self.root = Path(root).resolve()

    def path_for(self, name: str) -> Path:
        path = (self.root / name).resolve()
        if path == self.root or self.root not in path.parents:
            raise AccessViolation(f"{name}: outside of {self.root}")
        return path

    def read_all(self, name: str) -> bytes:
        path = self.path_for(name)
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as exc:
            raise classify(exc, name) from exc

    def create(self, name: str) -> None:
        path = self.path_for(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "xb"):
                pass
        except OSError as exc:
            raise classify(exc, name) from exc
        logger.debug("created %s", path)

    def append(self, name: str, data: bytes) -> None:
        path = self.path_for(name)
        try:
            fd = os.open(path, os.O_WRONLY | os.O_APPEND)
        except OSError as exc:
            raise classify(exc, name) from exc
        try:
            with os.fdopen(fd, "ab") as f:
                f.write(data)
        except OSError as exc:
            raise classify(exc, name) from exc
