"""Controlled storage slot read, write and delete."""

from __future__ import annotations

import enum
import struct

from .host_cmd import HOTH_CMD_BOARD_SPECIFIC_BASE, Device, hostcmd_exec

HOTH_PRV_CMD_HOTH_CONTROLLED_STORAGE = 0x0015
CONTROLLED_STORAGE_SIZE_MAX = 128
CONTROLLED_STORAGE_SIZE = 64

_REQUEST_HEADER = struct.Struct("<II")
_COMMAND = HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_CONTROLLED_STORAGE


class ControlledStorageOp(enum.IntEnum):
    READ = 0
    WRITE = 1
    DELETE = 2


def controlled_storage_read(dev: Device, slot: int) -> bytes:
    """Return the contents of ``slot``."""
    request = _REQUEST_HEADER.pack(ControlledStorageOp.READ, slot) + bytes(
        CONTROLLED_STORAGE_SIZE
    )
    return hostcmd_exec(
        dev, _COMMAND, 0, request, CONTROLLED_STORAGE_SIZE, exact=False
    )


def controlled_storage_write(dev: Device, slot: int, data: bytes) -> None:
    """Write ``data`` (at most 64 bytes) to ``slot``."""
    data = bytes(data)
    if len(data) > CONTROLLED_STORAGE_SIZE:
        raise ValueError(
            f"data too large: {len(data)} > {CONTROLLED_STORAGE_SIZE}"
        )
    request = _REQUEST_HEADER.pack(ControlledStorageOp.WRITE, slot) + data
    hostcmd_exec(dev, _COMMAND, 0, request, 0)


def controlled_storage_delete(dev: Device, slot: int) -> None:
    """Delete the contents of ``slot``."""
    request = _REQUEST_HEADER.pack(ControlledStorageOp.DELETE, slot)
    hostcmd_exec(dev, _COMMAND, 0, request, 0)