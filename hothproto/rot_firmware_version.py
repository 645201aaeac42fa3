"""Root-of-trust firmware version query."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import ClassVar

from .host_cmd import Device, hostcmd_exec

HOTH_CMD_GET_VERSION = 0x0002

_STRING_SIZE = 32


def _decode(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("latin-1")


def _encode(text: str, name: str) -> bytes:
    raw = text.encode("latin-1")
    if len(raw) >= _STRING_SIZE:
        raise ValueError(f"{name} must be shorter than {_STRING_SIZE} bytes")
    return raw


@dataclass
class FirmwareVersion:
    """RO and RW version strings and the currently running image."""

    version_string_ro: str = ""
    version_string_rw: str = ""
    current_image: int = 0
    reserved: bytes = field(default=bytes(_STRING_SIZE), repr=False)

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<32s32s32sI")
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> "FirmwareVersion":
        ro, rw, reserved, current = cls._FORMAT.unpack_from(data)
        return cls(_decode(ro), _decode(rw), current, reserved)

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            _encode(self.version_string_ro, "version_string_ro"),
            _encode(self.version_string_rw, "version_string_rw"),
            bytes(self.reserved),
            self.current_image,
        )


def get_rot_fw_version(dev: Device) -> FirmwareVersion:
    """Query the firmware version strings."""
    body = hostcmd_exec(dev, HOTH_CMD_GET_VERSION, 0, b"", FirmwareVersion.SIZE)
    return FirmwareVersion.unpack(body)