import struct

import pytest

from hothproto.host_cmd import (
    HOTH_CMD_BOARD_SPECIFIC_BASE,
    Device,
    HothError,
    build_response,
)
from hothproto.statistics import (
    HOTH_PRV_CMD_HOTH_GET_STATISTICS,
    BootTiming,
    Statistics,
    get_statistics,
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


def test_statistics_size():
    assert Statistics.SIZE == 256
    assert len(Statistics().pack()) == 256


def test_statistics_query():
    expected = Statistics(valid_words=0, time_since_hoth_boot_us=100, scratch_value=1)
    dev = FakeDevice([build_response(expected.pack())])

    stats = get_statistics(dev)

    assert sent_command(dev.sent[0]) == (
        HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_GET_STATISTICS
    )
    assert stats.valid_words == expected.valid_words
    assert stats.time_since_hoth_boot_us == expected.time_since_hoth_boot_us
    assert stats.scratch_value == expected.scratch_value


def test_round_trip():
    original = Statistics(
        valid_words=5,
        hoth_reset_flags=0x10,
        time_since_hoth_boot_us=1 << 40,
        payload_update_failure_reason=7,
        boot_timing_total=BootTiming(1, 2),
        boot_timing_payload_validation=BootTiming(30, 40),
        payload_update_confirmation_cookie=0xDEADBEEF00,
        bootloader_update_error=9,
        reserved=tuple(range(42)),
    )
    assert Statistics.unpack(original.pack()) == original


def test_short_response_is_zero_filled():
    partial = struct.pack("<II", 2, 0x55)
    stats = get_statistics(FakeDevice([build_response(partial)]))
    assert stats.valid_words == 2
    assert stats.hoth_reset_flags == 0x55
    assert stats.time_since_hoth_boot_us == 0


def test_oversized_response_rejected():
    with pytest.raises(HothError):
        get_statistics(FakeDevice([build_response(bytes(257))]))


def test_pack_rejects_bad_reserved():
    with pytest.raises(ValueError):
        Statistics(reserved=(0,) * 3).pack()