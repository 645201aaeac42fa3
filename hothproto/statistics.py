"""Device statistics query."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import ClassVar

from .host_cmd import HOTH_CMD_BOARD_SPECIFIC_BASE, Device, hostcmd_exec

HOTH_PRV_CMD_HOTH_GET_STATISTICS = 0x000F

_RESERVED_WORDS = 42


@dataclass
class BootTiming:
    """Start and end time of a boot phase, in microseconds."""

    start_us: int = 0
    end_us: int = 0


@dataclass
class Statistics:
    """Counters and timings reported by the device."""

    valid_words: int = 0
    hoth_reset_flags: int = 0
    time_since_hoth_boot_us: int = 0
    hoth_temperature: int = 0
    ro_info_strikes: int = 0
    rw_info_strikes: int = 0
    scratch_value: int = 0
    payload_update_failure_reason: int = 0
    firmware_update_failure_reason: int = 0
    failed_firmware_minor_version: int = 0
    boot_timing_total: BootTiming = field(default_factory=BootTiming)
    boot_timing_firmware_update: BootTiming = field(default_factory=BootTiming)
    boot_timing_firmware_mirroring: BootTiming = field(default_factory=BootTiming)
    boot_timing_payload_validation: BootTiming = field(default_factory=BootTiming)
    payload_update_confirmation_cookie_failure_reason: int = 0
    payload_update_confirmation_cookie: int = 0
    bootloader_update_error: int = 0
    reserved: tuple = (0,) * _RESERVED_WORDS

    _FORMAT: ClassVar[struct.Struct] = struct.Struct(
        f"<IIQIIIIHHI8IIQI{_RESERVED_WORDS}I"
    )
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> "Statistics":
        v = cls._FORMAT.unpack_from(data)
        return cls(
            valid_words=v[0],
            hoth_reset_flags=v[1],
            time_since_hoth_boot_us=v[2],
            hoth_temperature=v[3],
            ro_info_strikes=v[4],
            rw_info_strikes=v[5],
            scratch_value=v[6],
            payload_update_failure_reason=v[7],
            firmware_update_failure_reason=v[8],
            failed_firmware_minor_version=v[9],
            boot_timing_total=BootTiming(v[10], v[11]),
            boot_timing_firmware_update=BootTiming(v[12], v[13]),
            boot_timing_firmware_mirroring=BootTiming(v[14], v[15]),
            boot_timing_payload_validation=BootTiming(v[16], v[17]),
            payload_update_confirmation_cookie_failure_reason=v[18],
            payload_update_confirmation_cookie=v[19],
            bootloader_update_error=v[20],
            reserved=tuple(v[21:]),
        )

    def pack(self) -> bytes:
        if len(self.reserved) != _RESERVED_WORDS:
            raise ValueError(f"reserved must hold {_RESERVED_WORDS} words")
        timings = (
            self.boot_timing_total,
            self.boot_timing_firmware_update,
            self.boot_timing_firmware_mirroring,
            self.boot_timing_payload_validation,
        )
        return self._FORMAT.pack(
            self.valid_words,
            self.hoth_reset_flags,
            self.time_since_hoth_boot_us,
            self.hoth_temperature,
            self.ro_info_strikes,
            self.rw_info_strikes,
            self.scratch_value,
            self.payload_update_failure_reason,
            self.firmware_update_failure_reason,
            self.failed_firmware_minor_version,
            *(value for t in timings for value in (t.start_us, t.end_us)),
            self.payload_update_confirmation_cookie_failure_reason,
            self.payload_update_confirmation_cookie,
            self.bootloader_update_error,
            *self.reserved,
        )


def get_statistics(dev: Device) -> Statistics:
    """Query device statistics; fields the device omits read as zero."""
    body = hostcmd_exec(
        dev,
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_GET_STATISTICS,
        0,
        b"",
        Statistics.SIZE,
        exact=False,
    )
    return Statistics.unpack(body.ljust(Statistics.SIZE, b"\0"))