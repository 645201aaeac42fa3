import struct

import pytest

from hothproto.authz_record import (
    HOTH_PRV_CMD_HOTH_GET_AUTHZ_RECORD,
    HOTH_PRV_CMD_HOTH_GET_AUTHZ_RECORD_NONCE,
    HOTH_PRV_CMD_HOTH_SET_AUTHZ_RECORD,
    AuthorizationRecord,
    AuthzNonceResponse,
    AuthzRecordResponse,
    authz_record_build,
    authz_record_erase,
    authz_record_read,
    authz_record_set,
)
from hothproto.chipinfo import HOTH_PRV_CMD_HOTH_CHIP_INFO, ChipInfo
from hothproto.host_cmd import (
    HOTH_CMD_BOARD_SPECIFIC_BASE,
    Device,
    HothError,
    TransportError,
    build_response,
)


class FakeDevice(Device):
    def __init__(self, responses):
        self.responses = list(responses)
        self.sent = []

    def send(self, request):
        self.sent.append(bytes(request))

    def receive(self, max_size, timeout_ms):
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def sent_command(request):
    return struct.unpack_from("<H", request, 2)[0]


def test_record_size():
    assert AuthorizationRecord.SIZE == 464
    assert AuthzRecordResponse.SIZE == 468
    assert AuthzNonceResponse.SIZE == 40
    assert AuthorizationRecord.unpack(bytes(464)).pack() == bytes(464)
    assert AuthzRecordResponse.unpack(bytes(468)).pack() == bytes(468)
    assert AuthzNonceResponse.unpack(bytes(40)).pack() == bytes(40)


def test_authz_erase():
    dev = FakeDevice([build_response(b""), TransportError("receive failed")])
    authz_record_erase(dev)
    request = dev.sent[0]
    assert sent_command(request) == (
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_SET_AUTHZ_RECORD
    )
    assert request[8:10] == b"\x00\x01"
    assert len(request) == 8 + 468

    with pytest.raises(TransportError):
        authz_record_erase(dev)


def test_authz_read():
    payload = bytes([0, 1, 0, 0]) + b"\xab" * 464
    dev = FakeDevice([build_response(payload)])

    resp = authz_record_read(dev)

    assert sent_command(dev.sent[0]) == (
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_GET_AUTHZ_RECORD
    )
    assert resp.index == 0
    assert resp.valid == 1
    assert resp.record.pack() == b"\xab" * 464


def _chip(identity):
    return build_response(ChipInfo(hardware_identity=identity).pack())


def test_authz_build():
    identity = 0xABCD | (0x1234 << 32)
    nonce = AuthzNonceResponse(
        authorization_nonce=bytes(range(32)),
        ro_supported_key_id=1,
        rw_supported_key_id=1,
    )
    dev = FakeDevice([_chip(identity), build_response(nonce.pack())])

    record = authz_record_build(dev, 123)

    assert [sent_command(r) for r in dev.sent] == [
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_CHIP_INFO,
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_GET_AUTHZ_RECORD_NONCE,
    ]
    assert record.version == 1
    assert record.flags == 0
    assert record.capabilities == 123
    assert record.dev_id_0 == 0xABCD
    assert record.dev_id_1 == 0x1234
    assert record.key_id == 1
    assert record.magic == b"AUTHZREC"
    assert record.size == 464
    assert record.authorization_nonce == bytes(range(32))


def test_authz_nonce_fail():
    nonce = AuthzNonceResponse(ro_supported_key_id=0, rw_supported_key_id=1)
    dev = FakeDevice([_chip(0xABCD | (0x1234 << 32)), build_response(nonce.pack())])
    with pytest.raises(HothError):
        authz_record_build(dev, 123)


def test_authz_key_id_mismatch():
    nonce = AuthzNonceResponse(ro_supported_key_id=1, rw_supported_key_id=2)
    dev = FakeDevice([_chip(1), build_response(nonce.pack())])
    with pytest.raises(HothError, match="do not match"):
        authz_record_build(dev, 1)


def test_authz_set():
    dev = FakeDevice([build_response(b"")])
    record = AuthorizationRecord(key_id=7)
    authz_record_set(dev, record)
    request = dev.sent[0]
    assert sent_command(request) == (
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_SET_AUTHZ_RECORD
    )
    assert request[8:10] == b"\x00\x00"
    assert request[12:] == record.pack()


def test_hex_round_trip():
    record = AuthorizationRecord(
        magic=b"AUTHZREC",
        signature=bytes(i % 256 for i in range(384)),
        version=1,
        size=464,
        key_id=3,
        capabilities=0xFF,
        dev_id_0=0x11,
        dev_id_1=0x22,
        authorization_nonce=b"\x5a" * 32,
    )
    text = record.to_hex()
    assert len(text) == 928
    assert text.startswith("415554485a524543")
    assert AuthorizationRecord.from_hex(text) == record


def test_from_hex_wrong_length():
    with pytest.raises(ValueError):
        AuthorizationRecord.from_hex("00" * 10)


def test_from_hex_invalid_digit():
    with pytest.raises(ValueError, match="Invalid byte"):
        AuthorizationRecord.from_hex("zz" + "00" * 463)