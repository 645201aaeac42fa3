"""Authorization record programming and retrieval."""

from __future__ import annotations

import string
import struct
from dataclasses import dataclass, field
from typing import ClassVar

from .chipinfo import chipinfo
from .host_cmd import HOTH_CMD_BOARD_SPECIFIC_BASE, Device, HothError, hostcmd_exec

AUTHORIZATION_RECORD_MAGIC = b"AUTHZREC"
AUTHORIZATION_RECORD_MAGIC_SIZE = 8
AUTHORIZATION_RECORD_SIGNATURE_SIZE = 96 * 4
AUTHORIZATION_RECORD_VERSION = 1
AUTHORIZATION_RECORD_FAUX_FUSES_SIZE = 4
AUTHORIZATION_RECORD_CAPABILITIES_SIZE = 8
AUTHORIZATION_RECORD_NONCE_SIZE = 32

HOTH_PRV_CMD_HOTH_SET_AUTHZ_RECORD = 0x0017
HOTH_PRV_CMD_HOTH_GET_AUTHZ_RECORD = 0x0018
HOTH_PRV_CMD_HOTH_GET_AUTHZ_RECORD_NONCE = 0x0019

_HEXDIGITS = frozenset(string.hexdigits)


@dataclass
class AuthorizationRecord:
    """An authorization record; all multi-byte fields are little endian."""

    magic: bytes = bytes(AUTHORIZATION_RECORD_MAGIC_SIZE)
    signature: bytes = field(
        default=bytes(AUTHORIZATION_RECORD_SIGNATURE_SIZE), repr=False
    )
    version: int = 0
    reserved_0: int = 0
    size: int = 0
    key_id: int = 0
    flags: int = 0
    faux_fuses: bytes = bytes(AUTHORIZATION_RECORD_FAUX_FUSES_SIZE)
    capabilities: int = 0
    dev_id_0: int = 0
    dev_id_1: int = 0
    authorization_nonce: bytes = bytes(AUTHORIZATION_RECORD_NONCE_SIZE)

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<8s384sIIIII4sQII32s")
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> "AuthorizationRecord":
        return cls(*cls._FORMAT.unpack_from(data))

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            bytes(self.magic),
            bytes(self.signature),
            self.version,
            self.reserved_0,
            self.size,
            self.key_id,
            self.flags,
            bytes(self.faux_fuses),
            self.capabilities,
            self.dev_id_0,
            self.dev_id_1,
            bytes(self.authorization_nonce),
        )

    def to_hex(self) -> str:
        """Return the packed record as lower-case hex."""
        return self.pack().hex()

    @classmethod
    def from_hex(cls, text: str) -> "AuthorizationRecord":
        """Parse a record from exactly ``2 * SIZE`` hex digits."""
        if len(text) != 2 * cls.SIZE:
            raise ValueError(
                f"expected {2 * cls.SIZE} hex digits, got {len(text)}"
            )
        raw = bytearray()
        for pos in range(0, len(text), 2):
            pair = text[pos : pos + 2]
            if not set(pair) <= _HEXDIGITS:
                raise ValueError(f"Invalid byte: {pair}")
            raw.append(int(pair, 16))
        return cls.unpack(bytes(raw))


@dataclass
class AuthzRecordResponse:
    """Reply to a get-authorization-record request."""

    index: int = 0
    valid: int = 0
    record: AuthorizationRecord = field(default_factory=AuthorizationRecord)
    reserved: bytes = field(default=bytes(2), repr=False)

    _FORMAT: ClassVar[struct.Struct] = struct.Struct(
        f"<BB2s{AuthorizationRecord.SIZE}s"
    )
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> "AuthzRecordResponse":
        index, valid, reserved, record = cls._FORMAT.unpack_from(data)
        return cls(index, valid, AuthorizationRecord.unpack(record), reserved)

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            self.index, self.valid, bytes(self.reserved), self.record.pack()
        )


@dataclass
class AuthzNonceResponse:
    """Nonce and key ids the device accepts for a new record."""

    authorization_nonce: bytes = bytes(AUTHORIZATION_RECORD_NONCE_SIZE)
    ro_supported_key_id: int = 0
    rw_supported_key_id: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<32sII")
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> "AuthzNonceResponse":
        return cls(*cls._FORMAT.unpack_from(data))

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            bytes(self.authorization_nonce),
            self.ro_supported_key_id,
            self.rw_supported_key_id,
        )


_SET_REQUEST = struct.Struct(f"<BB2s{AuthorizationRecord.SIZE}s")
_GET_REQUEST = struct.Struct("<B3s")


def _set_request(erase: bool, record: AuthorizationRecord) -> bytes:
    return _SET_REQUEST.pack(0, 1 if erase else 0, bytes(2), record.pack())


def authz_record_erase(dev: Device) -> None:
    """Erase the authorization record at index 0."""
    hostcmd_exec(
        dev,
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_SET_AUTHZ_RECORD,
        0,
        _set_request(True, AuthorizationRecord()),
        0,
    )


def authz_record_read(dev: Device) -> AuthzRecordResponse:
    """Read the authorization record at index 0."""
    body = hostcmd_exec(
        dev,
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_GET_AUTHZ_RECORD,
        0,
        _GET_REQUEST.pack(0, bytes(3)),
        AuthzRecordResponse.SIZE,
    )
    return AuthzRecordResponse.unpack(body)


def authz_record_build(dev: Device, capabilities: int) -> AuthorizationRecord:
    """Build an unsigned record for this device with the given capabilities."""
    info = chipinfo(dev)
    body = hostcmd_exec(
        dev,
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_GET_AUTHZ_RECORD_NONCE,
        0,
        b"",
        AuthzNonceResponse.SIZE,
    )
    nonce = AuthzNonceResponse.unpack(body)
    if nonce.ro_supported_key_id == 0:
        raise HothError("ro_supported_key_id = 0. Please reset the chip and retry")
    if nonce.ro_supported_key_id != nonce.rw_supported_key_id:
        raise HothError(
            "RO and RW supported key_ids do not match: "
            f"(RO) 0x{nonce.ro_supported_key_id:x} != "
            f"(RW) 0x{nonce.rw_supported_key_id:x}"
        )
    return AuthorizationRecord(
        magic=AUTHORIZATION_RECORD_MAGIC,
        version=AUTHORIZATION_RECORD_VERSION,
        size=AuthorizationRecord.SIZE,
        flags=0,
        key_id=nonce.ro_supported_key_id,
        capabilities=capabilities & 0xFFFFFFFF,
        dev_id_0=info.hardware_identity & 0xFFFFFFFF,
        dev_id_1=(info.hardware_identity >> 32) & 0xFFFFFFFF,
        authorization_nonce=nonce.authorization_nonce,
    )


def authz_record_set(dev: Device, record: AuthorizationRecord) -> None:
    """Program ``record`` at index 0."""
    hostcmd_exec(
        dev,
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_SET_AUTHZ_RECORD,
        0,
        _set_request(False, record),
        0,
    )