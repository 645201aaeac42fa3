"""Persistent panic record retrieval and formatting."""

from __future__ import annotations

import enum
import struct
import sys
from dataclasses import dataclass, field
from typing import ClassVar, IO, Optional

from .host_cmd import (
    HOTH_CMD_BOARD_SPECIFIC_BASE,
    Device,
    HothError,
    hex_dump,
    hostcmd_exec,
)

HOTH_PRV_CMD_HOTH_PERSISTENT_PANIC_INFO = 0x0014
HOTH_PERSISTENT_PANIC_INFO_CHUNK_SIZE = 512

PERSISTENT_PANIC_INFO_GET = 0
PERSISTENT_PANIC_INFO_ERASE = 1

PANIC_DATA_MAGIC = 0x21636E50  # "Pnc!"

PANIC_DATA_FLAG_FRAME_VALID = 1 << 0
PANIC_DATA_FLAG_OLD_CONSOLE = 1 << 1
PANIC_DATA_FLAG_OLD_HOSTCMD = 1 << 2
PANIC_DATA_FLAG_OLD_HOSTEVENT = 1 << 3

_COMMAND = HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_PERSISTENT_PANIC_INFO
_REQUEST = struct.Struct("<II")
_CORE_SIZE = 132
_UART_BUF_SIZE = 4096


class PanicArch(enum.IntEnum):
    CORTEX_M = 1
    RISCV_RV32I = 4


@dataclass
class PanicData:
    """The architecture-independent panic record with its raw core registers."""

    arch: int = 0
    struct_version: int = 0
    flags: int = 0
    reserved: int = 0
    core: bytes = bytes(_CORE_SIZE)
    struct_size: int = 0
    magic: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct(f"<BBBB{_CORE_SIZE}sII")
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> "PanicData":
        return cls(*cls._FORMAT.unpack_from(data))

    def pack(self) -> bytes:
        core = bytes(self.core)
        if len(core) > _CORE_SIZE:
            raise ValueError(f"core longer than {_CORE_SIZE} bytes")
        return self._FORMAT.pack(
            self.arch,
            self.struct_version,
            self.flags,
            self.reserved,
            core,
            self.struct_size,
            self.magic,
        )


@dataclass
class PanicInfo:
    """The 6 KiB persistent panic record with console history."""

    panic_record: bytes = bytes(PanicData.SIZE)
    uart_head: int = 0
    uart_tail: int = 0
    uart_buf: bytes = field(default=bytes(_UART_BUF_SIZE), repr=False)
    reserved0: bytes = field(default=bytes(1880), repr=False)
    rw_epoch: int = 0
    rw_major: int = 0
    rw_minor: int = 0
    persistent_panic_record_version: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct(
        f"<{PanicData.SIZE}sII{_UART_BUF_SIZE}s1880sIIIi"
    )
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes) -> "PanicInfo":
        return cls(*cls._FORMAT.unpack_from(data))

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            bytes(self.panic_record),
            self.uart_head,
            self.uart_tail,
            bytes(self.uart_buf),
            bytes(self.reserved0),
            self.rw_epoch,
            self.rw_major,
            self.rw_minor,
            self.persistent_panic_record_version,
        )

    def panic_data(self) -> PanicData:
        return PanicData.unpack(self.panic_record)


def get_panic(dev: Device) -> PanicInfo:
    """Fetch the persistent panic record in 512-byte chunks."""
    chunk_size = HOTH_PERSISTENT_PANIC_INFO_CHUNK_SIZE
    chunks = []
    for index in range(PanicInfo.SIZE // chunk_size):
        body = hostcmd_exec(
            dev,
            _COMMAND,
            0,
            _REQUEST.pack(PERSISTENT_PANIC_INFO_GET, index),
            chunk_size,
            exact=False,
        )
        if len(body) != chunk_size:
            raise HothError(
                f"Bad response length {len(body)} (expected {chunk_size})"
            )
        chunks.append(body)
    return PanicInfo.unpack(b"".join(chunks))


def clear_persistent_panic_info(dev: Device) -> None:
    """Erase the persistent panic record."""
    body = hostcmd_exec(
        dev, _COMMAND, 0, _REQUEST.pack(PERSISTENT_PANIC_INFO_ERASE, 0), 0,
        exact=False,
    )
    if body:
        raise HothError(f"Bad response length {len(body)} (expected 0)")


def _arch_string(arch: int) -> str:
    if arch == PanicArch.CORTEX_M:
        return "ARCH_CORTEX_M"
    if arch == PanicArch.RISCV_RV32I:
        return "ARCH_RISCV_RV32I"
    return "arch-unknown"


_FLAG_NAMES = (
    (PANIC_DATA_FLAG_FRAME_VALID, "FRAME_VALID"),
    (PANIC_DATA_FLAG_OLD_CONSOLE, "OLD_CONSOLE"),
    (PANIC_DATA_FLAG_OLD_HOSTCMD, "OLD_HOSTCMD"),
    (PANIC_DATA_FLAG_OLD_HOSTEVENT, "OLD_HOSTEVENT"),
)

_ARM_NAMES = (
    "r0", "r1", "r2", "r3", "r4", "r5", "r6", "r7",
    "r8", "r9", "r10", "r11", "r12", "sp", "lr", "pc",
)

_MMFS_NAMES = {
    0: "Instruction access violation",
    1: "Data access violation",
    3: "Unstack from exception violation",
    4: "Stack from exception violation",
    8: "Instruction bus error",
    9: "Precise data bus error",
    10: "Imprecise data bus error",
    11: "Unstack from exception bus fault",
    12: "Stack from exception bus fault",
    16: "Undefined instructions",
    17: "Invalid state",
    18: "Invalid PC",
    19: "No coprocessor",
    24: "Unaligned",
    25: "Divide by 0",
}


def _words(core: bytes) -> tuple[int, ...]:
    return struct.unpack(f"<{_CORE_SIZE // 4}I", bytes(core).ljust(_CORE_SIZE, b"\0"))


def _arm_register(r: int, value: int) -> str:
    return f"{_ARM_NAMES[r]:>3}: {value:08x}" + ("\n" if r % 4 == 3 else " ")


def _format_cortex_m(core: bytes) -> str:
    w = _words(core)
    lregs, sregs = w[0:12], w[12:20]
    mmfs, bfar, mfar, shcsr, hfsr, dfsr = w[20:26]
    in_handler = (lregs[11] & 0xF) in (1, 9)
    out = [
        f"=== {'HANDLER' if in_handler else 'PROCESS'} EXCEPTION: "
        f"{lregs[1] & 0xFF:02x} ====== xPSR: {sregs[7]:08x} ===\n"
    ]
    out += [_arm_register(i, sregs[i]) for i in range(4)]
    out += [_arm_register(i, lregs[i - 1]) for i in range(4, 10)]
    out.append(_arm_register(10, lregs[9]))
    out.append(_arm_register(11, lregs[10]))
    out.append(_arm_register(12, sregs[4]))
    out.append(_arm_register(13, lregs[2 if in_handler else 0]))
    out.append(_arm_register(14, sregs[5]))
    out.append(_arm_register(15, sregs[6]))
    reasons = [name for bit, name in sorted(_MMFS_NAMES.items()) if mmfs & (1 << bit)]
    out.append("Reason: " + ", ".join(reasons) + "\n")
    out.append("Extra:\n")
    out.append(f"mmfs = {mmfs:08x}\n")
    out.append(f"bfar = {bfar:08x}\n")
    out.append(f"mfar = {mfar:08x}\n")
    out.append(f"shcsr = {shcsr:08x}\n")
    out.append(f"hfsr = {hfsr:08x}\n")
    out.append(f"dfsr = {dfsr:08x}\n")
    return "".join(out)


def _format_riscv(core: bytes) -> str:
    w = _words(core)
    r, mepc, mcause = w[0:31], w[31], w[32]
    return (
        f"=== EXCEPTION: MCAUSE={mcause:x} ===\n"
        f"s11: {r[0]:08x} s10: {r[1]:08x}  s9: {r[2]:08x}  s8:   {r[3]:08x}\n"
        f"s7:  {r[4]:08x} s6:  {r[5]:08x}  s5: {r[6]:08x}  s4:   {r[7]:08x}\n"
        f"s3:  {r[8]:08x} s2:  {r[9]:08x}  s1: {r[10]:08x}  s0:   {r[11]:08x}\n"
        f"t6:  {r[12]:08x} t5:  {r[13]:08x}  t4: {r[14]:08x}  t3:   {r[15]:08x}\n"
        f"t2:  {r[16]:08x} t1:  {r[17]:08x}  t0: {r[18]:08x}  a7:   {r[19]:08x}\n"
        f"a6:  {r[20]:08x} a5:  {r[21]:08x}  a4: {r[22]:08x}  a3:   {r[23]:08x}\n"
        f"a2:  {r[24]:08x} a1:  {r[25]:08x}  a0: {r[26]:08x}  tp:   {r[27]:08x}\n"
        f"gp:  {r[28]:08x} ra:  {r[29]:08x}  sp: {r[30]:08x}  mepc: {mepc:08x}\n"
    )


def format_panic_info(panic: PanicInfo) -> str:
    """Return a human-readable description of the panic record."""
    data = panic.panic_data()
    if data.magic != PANIC_DATA_MAGIC:
        return (
            f"Invalid panic record (magic is {data.magic:08x}, "
            f"expected {PANIC_DATA_MAGIC:08x}).\n"
        )
    out = [
        f"arch: {_arch_string(data.arch)} ({data.arch})\n",
        f"version: {data.struct_version}\n",
        "flags: "
        + "".join(f"{name}," for bit, name in _FLAG_NAMES if data.flags & bit)
        + f" (0x{data.flags:02x})\n",
    ]
    if data.arch == PanicArch.CORTEX_M:
        out.append(_format_cortex_m(data.core))
    elif data.arch == PanicArch.RISCV_RV32I:
        out.append(_format_riscv(data.core))
    else:
        out.append("Unknown Architecture.  Hexdump Follows:\n")
        out.append(hex_dump(data.pack()))
    magic_text = struct.pack("<I", data.magic).split(b"\0", 1)[0].decode("latin-1")
    out.append(f"struct_size: {data.struct_size}\n")
    out.append(f"magic: {magic_text} (0x{data.magic:08x})\n")
    return "".join(out)


def print_panic_info(panic: PanicInfo, out: Optional[IO[str]] = None) -> None:
    """Write the description of the panic record to ``out`` (stdout by default)."""
    (out or sys.stdout).write(format_panic_info(panic))


def get_panic_console_log(panic: PanicInfo) -> str:
    """Reconstruct the console output, oldest character first."""
    if panic.uart_head == 0xFFFFFFFF:
        return ""
    buf = bytes(panic.uart_buf)
    if not buf:
        return ""
    head = panic.uart_head % len(buf)
    ordered = buf[head:] + buf[:head]
    return ordered.replace(b"\0", b"").decode("latin-1")