"""I2C bus scanning and transfers through the device."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar

from .host_cmd import HOTH_CMD_BOARD_SPECIFIC_BASE, Device, hostcmd_exec

HOTH_PRV_CMD_HOTH_I2C_DETECT = 0x0045
I2C_DETECT_DATA_MAX_SIZE_BYTES = 16
I2C_DETECT_MAX_DEVICES = 128

HOTH_PRV_CMD_HOTH_I2C_TRANSFER = 0x0046
I2C_TRANSFER_DATA_MAX_SIZE_BYTES = 256

I2C_BITS_WRITE = 1 << 0
I2C_BITS_NO_STOP = 1 << 1
I2C_BITS_NO_START = 1 << 2
I2C_BITS_REPEATED_START = 1 << 3


def _fixed_bytes(value: bytes, size: int, name: str) -> bytes:
    raw = bytes(value)
    if len(raw) > size:
        raise ValueError(f"{name} longer than {size} bytes: {len(raw)}")
    return raw


@dataclass
class I2cDetectRequest:
    """Scan a bus for devices between two 7-bit addresses."""

    bus_number: int = 0
    start_address: int = 0
    end_address: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<BBBx")
    SIZE: ClassVar[int] = _FORMAT.size

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            self.bus_number, self.start_address, self.end_address
        )


@dataclass
class I2cDetectResponse:
    """Result of a bus scan: a bit mask of the addresses that answered."""

    bus_response: int = 0
    devices_count: int = 0
    devices_mask: bytes = bytes(I2C_DETECT_DATA_MAX_SIZE_BYTES)

    _FORMAT: ClassVar[struct.Struct] = struct.Struct(
        f"<BB{I2C_DETECT_DATA_MAX_SIZE_BYTES}s2x"
    )
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> "I2cDetectResponse":
        return cls(*cls._FORMAT.unpack_from(data))

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            self.bus_response,
            self.devices_count,
            _fixed_bytes(
                self.devices_mask, I2C_DETECT_DATA_MAX_SIZE_BYTES, "devices_mask"
            ),
        )

    def devices(self) -> list[int]:
        """Return the detected addresses in ascending order."""
        return i2c_device_list(self.devices_mask, self.devices_count)


@dataclass
class I2cTransferRequest:
    """A single I2C transaction to run on the device's bus."""

    bus_number: int = 0
    speed_khz: int = 0
    dev_address: int = 0
    flags: int = 0
    size_write: int = 0
    size_read: int = 0
    arg_bytes: bytes = b""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct(
        f"<BHBIHH{I2C_TRANSFER_DATA_MAX_SIZE_BYTES}s"
    )
    SIZE: ClassVar[int] = _FORMAT.size

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            self.bus_number,
            self.speed_khz,
            self.dev_address,
            self.flags,
            self.size_write,
            self.size_read,
            _fixed_bytes(
                self.arg_bytes, I2C_TRANSFER_DATA_MAX_SIZE_BYTES, "arg_bytes"
            ),
        )


@dataclass
class I2cTransferResponse:
    """Outcome of an I2C transaction and the bytes read."""

    bus_response: int = 0
    read_bytes: int = 0
    resp_bytes: bytes = bytes(I2C_TRANSFER_DATA_MAX_SIZE_BYTES)

    _FORMAT: ClassVar[struct.Struct] = struct.Struct(
        f"<BH{I2C_TRANSFER_DATA_MAX_SIZE_BYTES}sx"
    )
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> "I2cTransferResponse":
        return cls(*cls._FORMAT.unpack_from(data))

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            self.bus_response,
            self.read_bytes,
            _fixed_bytes(
                self.resp_bytes, I2C_TRANSFER_DATA_MAX_SIZE_BYTES, "resp_bytes"
            ),
        )


def i2c_detect(dev: Device, request: I2cDetectRequest) -> I2cDetectResponse:
    """Scan an I2C bus for devices."""
    body = hostcmd_exec(
        dev,
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_I2C_DETECT,
        0,
        request.pack(),
        I2cDetectResponse.SIZE,
    )
    return I2cDetectResponse.unpack(body)


def i2c_device_list(devices_mask: bytes, devices_count: int) -> list[int]:
    """Turn a detection bit mask into at most ``devices_count`` addresses."""
    found: list[int] = []
    if devices_count <= 0:
        return found
    for index, byte in enumerate(bytes(devices_mask)[:I2C_DETECT_DATA_MAX_SIZE_BYTES]):
        for bit in range(8):
            if byte & (1 << bit):
                found.append(index * 8 + bit)
                if len(found) == devices_count:
                    return found
    return found


def i2c_transfer(dev: Device, request: I2cTransferRequest) -> I2cTransferResponse:
    """Run an I2C transaction on the device's bus."""
    body = hostcmd_exec(
        dev,
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_I2C_TRANSFER,
        0,
        request.pack(),
        I2cTransferResponse.SIZE,
    )
    return I2cTransferResponse.unpack(body)