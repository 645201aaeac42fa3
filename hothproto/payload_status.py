"""Payload status query and descriptions of its codes."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from typing import ClassVar

from .host_cmd import HOTH_CMD_BOARD_SPECIFIC_BASE, Device, HothError, hostcmd_exec

HOTH_PRV_CMD_HOTH_PAYLOAD_STATUS = 0x0006

_HEADER = struct.Struct("<BBBB")
_REGION_SLOTS = 2


class PayloadValidationState(enum.IntEnum):
    IMAGE_INVALID = 0
    IMAGE_UNVERIFIED = 1
    IMAGE_VALID = 2
    DESCRIPTOR_VALID = 3


@dataclass
class PayloadRegionState:
    """Validation state of one payload half."""

    validation_state: int = 0
    failure_reason: int = 0
    image_type: int = 0
    key_index: int = 0
    image_family: int = 0
    version_major: int = 0
    version_minor: int = 0
    version_point: int = 0
    version_subpoint: int = 0
    descriptor_offset: int = 0
    reserved_0: int = field(default=0, repr=False)
    reserved_1: int = field(default=0, repr=False)

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<BBBBHHIIIIII")
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> "PayloadRegionState":
        v = cls._FORMAT.unpack_from(data)
        return cls(
            validation_state=v[0],
            failure_reason=v[1],
            reserved_0=v[2],
            image_type=v[3],
            key_index=v[4],
            reserved_1=v[5],
            image_family=v[6],
            version_major=v[7],
            version_minor=v[8],
            version_point=v[9],
            version_subpoint=v[10],
            descriptor_offset=v[11],
        )

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            self.validation_state,
            self.failure_reason,
            self.reserved_0,
            self.image_type,
            self.key_index,
            self.reserved_1,
            self.image_family,
            self.version_major,
            self.version_minor,
            self.version_point,
            self.version_subpoint,
            self.descriptor_offset,
        )


def _default_regions() -> list[PayloadRegionState]:
    return [PayloadRegionState() for _ in range(_REGION_SLOTS)]


@dataclass
class PayloadStatus:
    """Lockdown state, active half and per-half validation state."""

    version: int = 0
    lockdown_state: int = 0
    active_half: int = 0
    region_count: int = 0
    region_state: list[PayloadRegionState] = field(default_factory=_default_regions)

    SIZE: ClassVar[int] = _HEADER.size + _REGION_SLOTS * PayloadRegionState.SIZE

    @classmethod
    def unpack(cls, data: bytes) -> "PayloadStatus":
        data = bytes(data)
        if len(data) < cls.SIZE:
            raise ValueError(f"payload status needs {cls.SIZE} bytes, got {len(data)}")
        version, lockdown, active, count = _HEADER.unpack_from(data)
        regions = [
            PayloadRegionState.unpack(
                data[_HEADER.size + i * PayloadRegionState.SIZE :]
            )
            for i in range(_REGION_SLOTS)
        ]
        return cls(version, lockdown, active, count, regions)

    def pack(self) -> bytes:
        if len(self.region_state) != _REGION_SLOTS:
            raise ValueError(f"region_state must hold {_REGION_SLOTS} entries")
        return _HEADER.pack(
            self.version, self.lockdown_state, self.active_half, self.region_count
        ) + b"".join(region.pack() for region in self.region_state)


def payload_status(dev: Device) -> PayloadStatus:
    """Query the payload status; the reply must match its region count."""
    body = hostcmd_exec(
        dev,
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_PAYLOAD_STATUS,
        0,
        b"",
        PayloadStatus.SIZE,
        exact=False,
    )
    status = PayloadStatus.unpack(body.ljust(PayloadStatus.SIZE, b"\0"))
    expected = _HEADER.size + status.region_count * PayloadRegionState.SIZE
    if len(body) != expected:
        raise HothError(
            f"payload status length {len(body)} does not match "
            f"{status.region_count} regions (expected {expected})"
        )
    return status


_LOCKDOWN = {0: "Failsafe", 1: "Ready", 2: "Immutable", 3: "Enabled"}

_VALIDATION_STATE = {
    PayloadValidationState.IMAGE_INVALID: "Invalid",
    PayloadValidationState.IMAGE_UNVERIFIED: "Unverified",
    PayloadValidationState.IMAGE_VALID: "Valid",
    PayloadValidationState.DESCRIPTOR_VALID: "Descriptor Valid",
}

_FAILURE_REASON = {
    0: "Success",
    1: "Runtime Failure",
    2: "Unsupported Descriptor",
    3: "Invalid Descriptor",
    4: "Invalid Image Family",
    5: "Image Type Disallowed",
    6: "Denylisted Version",
    7: "Untrusted Key",
    8: "Invalid Signature",
    9: "Invalid Hash",
}

_IMAGE_TYPE = {
    0: "Dev",
    1: "Prod",
    2: "Breakout",
    3: "Test",
    4: "UnsignedIntegrity",
    255: "Unspecified",
}


def lockdown_status_string(status: int) -> str:
    return _LOCKDOWN.get(status, "(unknown sps_eeprom_lockdown_status)")


def validation_state_string(state: int) -> str:
    return _VALIDATION_STATE.get(state, "(unknown payload_validation_state)")


def validation_failure_reason_string(reason: int) -> str:
    return _FAILURE_REASON.get(reason, "(unknown payload_validation_failure_reason)")


def image_type_string(image_type: int) -> str:
    return _IMAGE_TYPE.get(image_type, "(unknown image_type)")