from __future__ import annotations

from dataclasses import dataclass

from .constants import DEFAULT_MAX_ATTEMPTS, DEFAULT_TIMEOUT_MS


@dataclass(frozen=True, slots=True)
class TransferConfig:
    """Retry policy shared by every transfer a process runs.

    ``max_attempts`` counts transmissions of one outgoing packet: the first
    send plus its retransmissions. A session gives up after that many
    consecutive timeouts.
    """

    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if self.max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive, got {self.max_attempts}")

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0
