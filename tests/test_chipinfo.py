import struct

import pytest

from hothproto.chipinfo import ChipInfo, chipinfo
from hothproto.host_cmd import (
    Device,
    HostCommandError,
    HostStatus,
    HothError,
    build_response,
)


class FakeDevice(Device):
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def send(self, request):
        self.requests.append(bytes(request))

    def receive(self, max_size, timeout_ms):
        return self.responses.pop(0)


def test_chipinfo():
    expected = ChipInfo(hardware_identity=0xABCD1234, hardware_category=1234, info_variant=2)
    dev = FakeDevice([build_response(expected.pack())])
    info = chipinfo(dev)
    assert info.hardware_identity == 0xABCD1234
    assert info.hardware_category == 1234
    assert info.info_variant == 2
    assert struct.unpack_from("<H", dev.requests[0], 2)[0] == 0x3E00 + 0x0010


def test_pack_layout():
    packed = ChipInfo(0x0102030405060708, 0x0A0B, 0, 0x11223344).pack()
    assert packed == bytes.fromhex("0807060504030201" "0b0a" "0000" "44332211")
    assert ChipInfo.SIZE == 16


def test_round_trip():
    info = ChipInfo(0x1234_0000_ABCD, 7, 0, 9)
    assert ChipInfo.unpack(info.pack()) == info


def test_wrong_size_rejected():
    dev = FakeDevice([build_response(bytes(8))])
    with pytest.raises(HothError):
        chipinfo(dev)


def test_error_result():
    dev = FakeDevice([build_response(b"", HostStatus.ACCESS_DENIED)])
    with pytest.raises(HostCommandError) as info:
        chipinfo(dev)
    assert info.value.result == 4