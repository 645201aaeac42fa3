"""Host command framing, checksums and request/response exchange."""

from __future__ import annotations

import abc
import enum
import struct
import sys
from typing import IO, Optional

HTOOL_ERROR_HOST_COMMAND_START = 537200

HOTH_CMD_BOARD_SPECIFIC_BASE = 0x3E00
HOTH_CMD_BOARD_SPECIFIC_LAST = 0x3FFF

HOTH_HOST_REQUEST_VERSION = 3
HOTH_HOST_RESPONSE_VERSION = 3

MAILBOX_SIZE = 1024
RESPONSE_TIMEOUT_MS = 180000

_REQUEST_HEADER = struct.Struct("<BBHBBH")
_RESPONSE_HEADER = struct.Struct("<BBHHH")

REQUEST_HEADER_SIZE = _REQUEST_HEADER.size
RESPONSE_HEADER_SIZE = _RESPONSE_HEADER.size
MAX_REQUEST_PAYLOAD = MAILBOX_SIZE - REQUEST_HEADER_SIZE

_BYTES_PER_LINE = 16


class HostStatus(enum.IntEnum):
    """Result codes carried in a host command response."""

    SUCCESS = 0
    INVALID_COMMAND = 1
    ERROR = 2
    INVALID_PARAM = 3
    ACCESS_DENIED = 4
    INVALID_RESPONSE = 5
    INVALID_VERSION = 6
    INVALID_CHECKSUM = 7
    IN_PROGRESS = 8
    UNAVAILABLE = 9
    TIMEOUT = 10
    OVERFLOW = 11
    INVALID_HEADER = 12
    REQUEST_TRUNCATED = 13
    RESPONSE_TOO_BIG = 14
    BUS_ERROR = 15
    BUSY = 16
    INVALID_HEADER_VERSION = 17
    INVALID_HEADER_CRC = 18
    INVALID_DATA_CRC = 19
    DUP_UNAVAILABLE = 20
    MAX = 0xFFFF


class HothError(Exception):
    """Base error for failures talking to a Hoth device."""


class TransportError(HothError):
    """The underlying transport failed to send or receive."""


class HostCommandError(HothError):
    """The device answered with a non-success result code."""

    def __init__(self, result: int) -> None:
        self.result = result
        self.code = HTOOL_ERROR_HOST_COMMAND_START + result
        try:
            name = HostStatus(result).name
        except ValueError:
            name = "UNKNOWN"
        super().__init__(f"EC response contained error: {result} ({name})")


class Device(abc.ABC):
    """A transport able to exchange raw mailbox messages with a device."""

    @abc.abstractmethod
    def send(self, request: bytes) -> None:
        """Send a full request; raise TransportError on failure."""

    @abc.abstractmethod
    def receive(self, max_size: int, timeout_ms: int) -> bytes:
        """Return a full response; raise TransportError on failure."""


def calculate_checksum(header: bytes, data: Optional[bytes] = None) -> int:
    """Return the byte that makes header plus data sum to zero modulo 256."""
    total = sum(header)
    if data is not None:
        total += sum(data)
    return (-total) & 0xFF


def hex_dump(buffer: bytes, out: Optional[IO[str]] = None) -> str:
    """Format bytes as a hex and ASCII dump, writing it to ``out`` if given."""
    if not buffer:
        sys.stderr.write("hex_dump with null or empty buffer.\n")
        return ""
    data = bytes(buffer)
    lines = []
    for offset in range(0, len(data), _BYTES_PER_LINE):
        chunk = data[offset : offset + _BYTES_PER_LINE]
        parts = [f"0x{offset:04x}: "]
        ascii_chars = []
        for i in range(_BYTES_PER_LINE):
            if i > 0 and i % 8 == 0:
                parts.append(" ")
            if i < len(chunk):
                byte = chunk[i]
                parts.append(f"{byte:02x} ")
                ascii_chars.append(chr(byte) if 0x21 <= byte <= 0x7E else ".")
            else:
                parts.append("   ")
                ascii_chars.append(" ")
        parts.append(f"|{''.join(ascii_chars)}|\n")
        lines.append("".join(parts))
    text = "".join(lines)
    if out is not None:
        out.write(text)
    return text


def build_request(command: int, version: int = 0, payload: bytes = b"") -> bytes:
    """Build a request header with checksum followed by the payload."""
    payload = bytes(payload)
    if not 0 <= command <= 0xFFFF:
        raise ValueError(f"command out of range: {command}")
    if not 0 <= version <= 0xFF:
        raise ValueError(f"command version out of range: {version}")
    if len(payload) > 0xFFFF:
        raise ValueError(f"request_size ({len(payload)}) > max ({0xFFFF})")
    fields = [HOTH_HOST_REQUEST_VERSION, 0, command, version, 0, len(payload)]
    fields[1] = calculate_checksum(_REQUEST_HEADER.pack(*fields), payload)
    return _REQUEST_HEADER.pack(*fields) + payload


def build_response(payload: bytes = b"", result: int = HostStatus.SUCCESS) -> bytes:
    """Build a response header with checksum followed by the payload."""
    payload = bytes(payload)
    if len(payload) > 0xFFFF:
        raise ValueError(f"response size ({len(payload)}) > max ({0xFFFF})")
    fields = [HOTH_HOST_RESPONSE_VERSION, 0, int(result), len(payload), 0]
    fields[1] = calculate_checksum(_RESPONSE_HEADER.pack(*fields), payload)
    return _RESPONSE_HEADER.pack(*fields) + payload


def validate_response(response: bytes) -> tuple[int, bytes]:
    """Check a response's header and checksum; return (result, payload)."""
    response = bytes(response)
    if len(response) < RESPONSE_HEADER_SIZE:
        raise HothError(
            f"response too short: {len(response)} < {RESPONSE_HEADER_SIZE}"
        )
    struct_version, _, result, data_len, _ = _RESPONSE_HEADER.unpack_from(response)
    if struct_version != HOTH_HOST_RESPONSE_VERSION:
        raise HothError(
            f"unexpected struct_version. Got {struct_version}, "
            f"expected {HOTH_HOST_RESPONSE_VERSION}"
        )
    available = len(response) - RESPONSE_HEADER_SIZE
    if data_len > available:
        raise HothError(
            f"insufficient response buffer size. Have {available}, need {data_len}"
        )
    header = response[:RESPONSE_HEADER_SIZE]
    body = response[RESPONSE_HEADER_SIZE : RESPONSE_HEADER_SIZE + data_len]
    checksum = calculate_checksum(header, body)
    if checksum != 0:
        message = (
            f"response checksum ({checksum}) != 0\n"
            f"Response header:\n{hex_dump(header)}"
        )
        if body:
            message += f"Response body:\n{hex_dump(body)}"
        raise HothError(message)
    return result, response[RESPONSE_HEADER_SIZE:]


def hostcmd_exec(
    dev: Device,
    command: int,
    version: int = 0,
    payload: bytes = b"",
    resp_size: int = 0,
    exact: bool = True,
) -> bytes:
    """Send a host command and return the response payload.

    With ``exact`` the payload must be exactly ``resp_size`` bytes; otherwise
    it may be at most ``resp_size`` bytes.
    """
    payload = bytes(payload)
    if len(payload) > MAX_REQUEST_PAYLOAD:
        raise HothError(
            f"req_payload_size too large: {len(payload)} > {MAX_REQUEST_PAYLOAD}"
        )
    dev.send(build_request(command, version, payload))
    response = dev.receive(MAILBOX_SIZE, RESPONSE_TIMEOUT_MS)
    result, body = validate_response(response)
    if result != HostStatus.SUCCESS:
        raise HostCommandError(result)
    if exact:
        if len(body) != resp_size:
            raise HothError(
                f"Unexpected response payload size: got {len(body)} "
                f"expected {resp_size}"
            )
    elif len(body) > resp_size:
        raise HothError(
            f"Response payload too large to fit in supplied buffer: "
            f"{len(body)} > {resp_size}"
        )
    return body