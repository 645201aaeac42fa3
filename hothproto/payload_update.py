"""Payload flashing through the payload update host command."""

from __future__ import annotations

import enum
import struct
import sys
from dataclasses import dataclass
from typing import ClassVar

from .host_cmd import (
    HOTH_CMD_BOARD_SPECIFIC_BASE,
    MAILBOX_SIZE,
    REQUEST_HEADER_SIZE,
    Device,
    HothError,
    hostcmd_exec,
)
from .payload_info import find_image_descriptor

HOTH_PRV_CMD_HOTH_PAYLOAD_UPDATE = 0x0005

PAYLOAD_UPDATE_INITIATE = 0
PAYLOAD_UPDATE_CONTINUE = 1
PAYLOAD_UPDATE_FINALIZE = 2
PAYLOAD_UPDATE_AUX_DATA = 3
PAYLOAD_UPDATE_VERIFY = 4
PAYLOAD_UPDATE_ACTIVATE = 5
PAYLOAD_UPDATE_READ = 6
PAYLOAD_UPDATE_GET_STATUS = 7
PAYLOAD_UPDATE_ERASE = 8
PAYLOAD_UPDATE_VERIFY_CHUNK = 9
PAYLOAD_UPDATE_CONFIRM = 10
PAYLOAD_UPDATE_VERIFY_DESCRIPTOR = 11

_COMMAND = HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_PAYLOAD_UPDATE
_PACKET = struct.Struct("<IIB")
PACKET_HEADER_SIZE = _PACKET.size
MAX_CHUNK_SIZE = MAILBOX_SIZE - REQUEST_HEADER_SIZE - PACKET_HEADER_SIZE


class PayloadUpdateFailure(enum.IntEnum):
    """Stage at which a payload update failed."""

    OK = 0
    BAD_IMG = 1
    INITIATE_FAIL = 2
    FLASH_FAIL = 3
    FINALIZE_FAIL = 4


class PayloadUpdateError(HothError):
    """A payload update failed; ``failure`` names the stage."""

    def __init__(self, failure: PayloadUpdateFailure, message: str) -> None:
        self.failure = failure
        super().__init__(message)


@dataclass
class PayloadUpdateStatus:
    """Validity of both halves and which half is active, next and persistent."""

    a_valid: int = 0
    b_valid: int = 0
    active_half: int = 0
    next_half: int = 0
    persistent_half: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<BBBBB")
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> "PayloadUpdateStatus":
        return cls(*cls._FORMAT.unpack_from(data))

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            self.a_valid,
            self.b_valid,
            self.active_half,
            self.next_half,
            self.persistent_half,
        )


def _send_command(dev: Device, command: int, failure: PayloadUpdateFailure) -> None:
    try:
        hostcmd_exec(dev, _COMMAND, 0, _PACKET.pack(0, 0, command), 0)
    except HothError as exc:
        raise PayloadUpdateError(failure, f"Error from hoth: {exc}") from exc


def payload_update(dev: Device, image: bytes) -> None:
    """Flash ``image`` to the device, skipping runs of erased (0xFF) bytes."""
    data = bytes(image)
    if find_image_descriptor(data) is None:
        raise PayloadUpdateError(
            PayloadUpdateFailure.BAD_IMG, "image has no valid image descriptor"
        )

    sys.stderr.write("Initiating payload update protocol with libhoth.\n")
    _send_command(dev, PAYLOAD_UPDATE_INITIATE, PayloadUpdateFailure.INITIATE_FAIL)

    sys.stderr.write("Flashing the image to hoth.\n")
    size = len(data)
    offset = 0
    while offset < size:
        if data[offset] == 0xFF:
            offset += 1
            continue
        chunk = data[offset : min(offset + MAX_CHUNK_SIZE, size)].rstrip(b"\xff")
        packet = _PACKET.pack(offset, len(chunk), PAYLOAD_UPDATE_CONTINUE) + chunk
        try:
            hostcmd_exec(dev, _COMMAND, 0, packet, 0)
        except HothError as exc:
            raise PayloadUpdateError(
                PayloadUpdateFailure.FLASH_FAIL,
                f"Error from hoth at offset {offset}: {exc}",
            ) from exc
        offset += len(chunk)

    sys.stderr.write("Finalizing payload update.\n")
    _send_command(dev, PAYLOAD_UPDATE_FINALIZE, PayloadUpdateFailure.FINALIZE_FAIL)


def payload_update_getstatus(dev: Device) -> PayloadUpdateStatus:
    """Query the payload update status."""
    body = hostcmd_exec(
        dev,
        _COMMAND,
        0,
        _PACKET.pack(0, 0, PAYLOAD_UPDATE_GET_STATUS),
        PayloadUpdateStatus.SIZE,
        exact=False,
    )
    if len(body) != PayloadUpdateStatus.SIZE:
        raise HothError(
            "HOTH_PAYLOAD_UPDATE_GET_STATUS expected exactly "
            f"{PayloadUpdateStatus.SIZE} response bytes, got {len(body)}"
        )
    return PayloadUpdateStatus.unpack(body)