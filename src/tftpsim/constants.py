from __future__ import annotations

RRQ = 1
WRQ = 2
DATA = 3
ACK = 4
ERROR = 5

OPCODE_FORMAT = "!H"
BLOCK_HEADER_FORMAT = "!HH"  # opcode, block or error code

BLOCK_SIZE = 512
MAX_DATAGRAM = 4 + BLOCK_SIZE
MAX_BLOCK = 0xFFFF
INVALID_OPCODE = 0xFFFF

MODES = ("netascii", "octet", "mail")
SUPPORTED_MODES = ("netascii", "octet")
DEFAULT_MODE = "octet"
TEXT_ENCODING = "latin-1"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 6969
DEFAULT_RELAY_PORT = 6923
DEFAULT_TIMEOUT_MS = 2000
DEFAULT_MAX_ATTEMPTS = 5
POLL_INTERVAL_MS = 200
RESULT_HISTORY = 256
