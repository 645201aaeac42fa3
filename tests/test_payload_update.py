import struct

import pytest

from hothproto.host_cmd import (
    HOTH_CMD_BOARD_SPECIFIC_BASE,
    Device,
    TransportError,
    build_response,
)
from hothproto.payload_update import (
    HOTH_PRV_CMD_HOTH_PAYLOAD_UPDATE,
    PAYLOAD_UPDATE_CONTINUE,
    PAYLOAD_UPDATE_FINALIZE,
    PAYLOAD_UPDATE_GET_STATUS,
    PAYLOAD_UPDATE_INITIATE,
    PayloadUpdateError,
    PayloadUpdateFailure,
    PayloadUpdateStatus,
    payload_update,
    payload_update_getstatus,
)
from hothproto.host_cmd import HothError

CMD = HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_PAYLOAD_UPDATE
MAGIC = struct.pack("<Q", 0x5F435344474D495F)
ALIGN = 1 << 16


class FakeDevice(Device):
    def __init__(self, responses=(), default=None):
        self.responses = list(responses)
        self.default = default
        self.sent = []

    def send(self, request):
        self.sent.append(bytes(request))

    def receive(self, max_size, timeout_ms):
        item = self.responses.pop(0) if self.responses else self.default
        if item is None or isinstance(item, Exception):
            raise item or TransportError("no response")
        return item


def command_of(request):
    return struct.unpack_from("<H", request, 2)[0]


def packet_of(request):
    offset, length, kind = struct.unpack_from("<IIB", request, 8)
    return offset, length, kind, request[17:]


def small_image():
    buf = bytearray(100)
    buf[0:8] = MAGIC
    return bytes(buf)


def test_bad_image():
    dev = FakeDevice(default=build_response())
    with pytest.raises(PayloadUpdateError) as info:
        payload_update(dev, bytes(100))
    assert info.value.failure == PayloadUpdateFailure.BAD_IMG
    assert dev.sent == []


def test_update_ok():
    dev = FakeDevice(default=build_response())
    buf = bytearray(2 * ALIGN)
    buf[ALIGN : ALIGN + 8] = MAGIC
    payload_update(dev, bytes(buf))
    assert all(command_of(r) == CMD for r in dev.sent)
    kinds = [packet_of(r)[2] for r in dev.sent]
    assert kinds[0] == PAYLOAD_UPDATE_INITIATE
    assert kinds[-1] == PAYLOAD_UPDATE_FINALIZE
    total = sum(packet_of(r)[1] for r in dev.sent[1:-1])
    assert total == 2 * ALIGN


def test_initiate_fail():
    dev = FakeDevice([TransportError("fail")])
    with pytest.raises(PayloadUpdateError) as info:
        payload_update(dev, small_image())
    assert info.value.failure == PayloadUpdateFailure.INITIATE_FAIL


def test_flash_fail():
    dev = FakeDevice([build_response(), TransportError("fail")])
    with pytest.raises(PayloadUpdateError) as info:
        payload_update(dev, small_image())
    assert info.value.failure == PayloadUpdateFailure.FLASH_FAIL


def test_finalize_fail():
    dev = FakeDevice([build_response(), build_response(), TransportError("fail")])
    with pytest.raises(PayloadUpdateError) as info:
        payload_update(dev, small_image())
    assert info.value.failure == PayloadUpdateFailure.FINALIZE_FAIL


def test_getstatus():
    expected = PayloadUpdateStatus(a_valid=1, active_half=1)
    dev = FakeDevice([build_response(expected.pack())])
    status = payload_update_getstatus(dev)
    assert status.a_valid == 1
    assert status.active_half == 1
    assert status == expected
    assert packet_of(dev.sent[0])[2] == PAYLOAD_UPDATE_GET_STATUS


def test_getstatus_short_response():
    dev = FakeDevice([build_response(b"\x01\x02")])
    with pytest.raises(HothError):
        payload_update_getstatus(dev)


def test_status_round_trip():
    status = PayloadUpdateStatus(2, 3, 1, 0, 1)
    assert PayloadUpdateStatus.unpack(status.pack()) == status
    assert len(status.pack()) == 5