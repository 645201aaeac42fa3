import io
import struct

import pytest

from hothproto.host_cmd import (
    HOTH_CMD_BOARD_SPECIFIC_BASE,
    Device,
    HothError,
    TransportError,
    build_response,
)
from hothproto.panic import (
    HOTH_PERSISTENT_PANIC_INFO_CHUNK_SIZE,
    HOTH_PRV_CMD_HOTH_PERSISTENT_PANIC_INFO,
    PANIC_DATA_MAGIC,
    PanicArch,
    PanicData,
    PanicInfo,
    clear_persistent_panic_info,
    format_panic_info,
    get_panic,
    get_panic_console_log,
    print_panic_info,
)

CMD = HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_PERSISTENT_PANIC_INFO


class FakeDevice(Device):
    def __init__(self, responses):
        self.responses = list(responses)
        self.sent = []

    def send(self, request):
        self.sent.append(bytes(request))

    def receive(self, max_size, timeout_ms):
        if not self.responses:
            raise TransportError("no response")
        return self.responses.pop(0)


def riscv_data():
    words = list(range(31)) + [0xDEAD, 0x7]
    return PanicData(
        arch=PanicArch.RISCV_RV32I,
        struct_version=2,
        flags=0x5,
        core=struct.pack("<33I", *words),
        struct_size=PanicData.SIZE,
        magic=PANIC_DATA_MAGIC,
    )


def cortex_data(exc_return):
    regs = [0x100 + i for i in range(12)]
    regs[1] = 0x23
    regs[11] = exc_return
    frame = [0x200 + i for i in range(8)]
    frame[7] = 0x01000000
    extra = [0x3, 0xB1, 0xB2, 0xB3, 0xB4, 0xB5]
    core = struct.pack("<26I", *regs, *frame, *extra)
    return PanicData(
        arch=PanicArch.CORTEX_M,
        struct_version=2,
        core=core,
        struct_size=PanicData.SIZE,
        magic=PANIC_DATA_MAGIC,
    )


def test_sizes():
    assert PanicData.SIZE == 144
    assert PanicInfo.SIZE == 6144
    assert len(PanicData().pack()) == 144
    assert len(PanicInfo().pack()) == 6144


def test_panic_data_round_trip():
    data = PanicData.unpack(riscv_data().pack())
    assert data.struct_version == 2
    assert data.arch == PanicArch.RISCV_RV32I
    assert data.magic == PANIC_DATA_MAGIC
    assert data.struct_size == PanicData.SIZE


def test_get_panic():
    expected = PanicInfo(
        panic_record=riscv_data().pack(),
        uart_head=0xFFFFFFFF,
        uart_tail=0xFFFFFFFF,
        rw_epoch=6,
        rw_major=5,
        rw_minor=4,
        persistent_panic_record_version=0,
    )
    raw = expected.pack()
    size = HOTH_PERSISTENT_PANIC_INFO_CHUNK_SIZE
    responses = [build_response(raw[i : i + size]) for i in range(0, len(raw), size)]
    dev = FakeDevice(responses)
    record = get_panic(dev)
    assert (record.rw_epoch, record.rw_major, record.rw_minor) == (6, 5, 4)
    assert record == expected
    assert len(dev.sent) == 12
    indexes = [struct.unpack_from("<II", r, 8)[1] for r in dev.sent]
    assert indexes == list(range(12))
    assert all(struct.unpack_from("<H", r, 2)[0] == CMD for r in dev.sent)


def test_get_panic_short_chunk():
    dev = FakeDevice([build_response(bytes(100))])
    with pytest.raises(HothError):
        get_panic(dev)


def test_clear_panic():
    dev = FakeDevice([build_response()])
    clear_persistent_panic_info(dev)
    assert struct.unpack_from("<H", dev.sent[0], 2)[0] == CMD
    assert struct.unpack_from("<II", dev.sent[0], 8) == (1, 0)


def test_clear_panic_transport_failure():
    with pytest.raises(TransportError):
        clear_persistent_panic_info(FakeDevice([]))


def test_format_invalid_magic():
    info = PanicInfo(panic_record=PanicData(magic=0x1234).pack())
    assert format_panic_info(info) == (
        "Invalid panic record (magic is 00001234, expected 21636e50).\n"
    )


def test_format_riscv():
    text = format_panic_info(PanicInfo(panic_record=riscv_data().pack()))
    assert text.startswith("arch: ARCH_RISCV_RV32I (4)\nversion: 2\n")
    assert "flags: FRAME_VALID,OLD_HOSTCMD, (0x05)\n" in text
    assert "=== EXCEPTION: MCAUSE=7 ===\n" in text
    assert "s11: 00000000 s10: 00000001  s9: 00000002  s8:   00000003\n" in text
    assert "gp:  0000001c ra:  0000001d  sp: 0000001e  mepc: 0000dead\n" in text
    assert text.endswith("struct_size: 144\nmagic: Pnc! (0x21636e50)\n")


def test_format_cortex_handler():
    text = format_panic_info(PanicInfo(panic_record=cortex_data(9).pack()))
    assert "=== HANDLER EXCEPTION: 23 ====== xPSR: 01000000 ===\n" in text
    assert " r0: 00000200  r1: 00000201  r2: 00000202  r3: 00000203\n" in text
    assert " sp: 00000102" in text
    assert "Reason: Instruction access violation, Data access violation\n" in text
    assert "dfsr = 000000b5\n" in text


def test_format_cortex_process():
    text = format_panic_info(PanicInfo(panic_record=cortex_data(0xD).pack()))
    assert "=== PROCESS EXCEPTION" in text
    assert " sp: 00000100" in text


def test_format_unknown_arch():
    data = riscv_data()
    data.arch = 7
    text = format_panic_info(PanicInfo(panic_record=data.pack()))
    assert "arch: arch-unknown (7)\n" in text
    assert "Unknown Architecture.  Hexdump Follows:\n0x0000: 07 02 05 00" in text


def test_print_panic_info():
    out = io.StringIO()
    info = PanicInfo(panic_record=riscv_data().pack())
    print_panic_info(info, out)
    assert out.getvalue() == format_panic_info(info)


def test_console_log_wrapped():
    buf = bytearray(4096)
    buf[0:3] = b"DEF"
    buf[4093:4096] = b"ABC"
    info = PanicInfo(uart_head=4096 + 4093, uart_buf=bytes(buf))
    assert get_panic_console_log(info) == "ABCDEF"


def test_console_log_erased():
    info = PanicInfo(uart_head=0xFFFFFFFF, uart_buf=b"x" * 4096)
    assert get_panic_console_log(info) == ""