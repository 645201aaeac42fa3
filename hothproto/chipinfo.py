"""Chip identity query."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar

from .host_cmd import HOTH_CMD_BOARD_SPECIFIC_BASE, Device, hostcmd_exec

HOTH_PRV_CMD_HOTH_CHIP_INFO = 0x0010


@dataclass
class ChipInfo:
    """Hardware identity reported by the chip."""

    hardware_identity: int = 0
    hardware_category: int = 0
    reserved0: int = 0
    info_variant: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<QHHI")
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> "ChipInfo":
        return cls(*cls._FORMAT.unpack_from(data))

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            self.hardware_identity,
            self.hardware_category,
            self.reserved0,
            self.info_variant,
        )


def chipinfo(dev: Device) -> ChipInfo:
    """Query the chip's hardware identity."""
    body = hostcmd_exec(
        dev,
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_CHIP_INFO,
        0,
        b"",
        ChipInfo.SIZE,
    )
    return ChipInfo.unpack(body)