"""SPI flash access proxied through the device's SPI operation command."""

from __future__ import annotations

import struct
import sys
from dataclasses import dataclass
from typing import Callable, Optional

from .host_cmd import (
    HOTH_CMD_BOARD_SPECIFIC_BASE,
    Device,
    HostCommandError,
    HostStatus,
    HothError,
    hostcmd_exec,
)

HOTH_PRV_CMD_HOTH_SPI_OPERATION = 0x0020

SPI_OP_PAGE_PROGRAM = 0x02
SPI_OP_READ = 0x03
SPI_OP_ERASE_4K = 0x20
SPI_OP_ERASE_64K = 0xD8
SPI_OP_WRITE_ENABLE = 0x06
SPI_OP_ENTER_4B = 0xB7
SPI_OP_READ_STATUS = 0x05

MAX_TRANSACTIONS = 12
MAX_SPI_OP_PAYLOAD_BYTES = 1016
OPCODE_AND_ADDRESS_MAX_SIZE = 5

_REQUEST = struct.Struct("<HH")
SPI_OPERATION_REQUEST_SIZE = _REQUEST.size
READ_CHUNK_SIZE = (
    MAX_SPI_OP_PAYLOAD_BYTES - SPI_OPERATION_REQUEST_SIZE - OPCODE_AND_ADDRESS_MAX_SIZE
)

SPI_PAGE_SIZE = 256
MAX_PAGES_PER_OP = 3
_PROGRESS_STEP = 65536
_ERASE_64K = 65536
_ERASE_4K = 4096

_COMMAND = HOTH_CMD_BOARD_SPECIFIC_BASE + HOTH_PRV_CMD_HOTH_SPI_OPERATION

_BUS_ERROR_HINT = (
    "This is likely because the target device is not in reset, and thus it "
    "is not safe to use the SPI bus through a non-SPI transport. Try using "
    "'htool target reset on' to put the target in reset first.\n"
)

Progress = Callable[[int, int], None]


@dataclass
class _Transaction:
    header_offset: int
    skip_miso: int = 0
    miso_len: int = 0


class _SpiOperation:
    """A batch of SPI transactions sent as one host command."""

    def __init__(self) -> None:
        self.buf = bytearray()
        self.transactions: list[_Transaction] = []
        self._open: Optional[_Transaction] = None

    def begin(self) -> None:
        if len(self.transactions) >= MAX_TRANSACTIONS:
            raise ValueError("too many SPI transactions in one operation")
        if len(self.buf) + SPI_OPERATION_REQUEST_SIZE >= MAX_SPI_OP_PAYLOAD_BYTES:
            raise ValueError("SPI operation buffer overflow")
        self._open = _Transaction(header_offset=len(self.buf))
        self.buf += bytes(SPI_OPERATION_REQUEST_SIZE)

    def write_mosi(self, data: bytes) -> None:
        if len(self.buf) + len(data) >= MAX_SPI_OP_PAYLOAD_BYTES:
            raise ValueError("SPI operation buffer overflow")
        self.buf += data

    def write_address(self, is_4_byte: bool, addr: int) -> None:
        raw = (addr & 0xFFFFFFFF).to_bytes(4, "big")
        self.write_mosi(raw if is_4_byte else raw[1:])

    def end(self, miso_len: int = 0) -> None:
        transaction = self._open
        if transaction is None:
            raise ValueError("no SPI transaction in progress")
        mosi_len = len(self.buf) - transaction.header_offset - SPI_OPERATION_REQUEST_SIZE
        transaction.skip_miso = mosi_len
        transaction.miso_len = miso_len
        _REQUEST.pack_into(
            self.buf,
            transaction.header_offset,
            mosi_len,
            mosi_len + miso_len if miso_len > 0 else 0,
        )
        self.transactions.append(transaction)
        self._open = None

    def execute(self, dev: Device) -> list[bytes]:
        """Send the batch; return the MISO data requested by each transaction."""
        response = hostcmd_exec(
            dev, _COMMAND, 0, bytes(self.buf), MAX_SPI_OP_PAYLOAD_BYTES, exact=False
        )
        results = []
        pos = 0
        for transaction in self.transactions:
            start = pos + transaction.skip_miso
            if transaction.miso_len > 0:
                end = start + transaction.miso_len
                if end > len(response):
                    raise HothError(
                        "returned SPI operation payload is smaller than expected"
                    )
                results.append(response[start:end])
            else:
                results.append(b"")
            pos = start + transaction.miso_len
        return results


class SpiProxy:
    """Reads, verifies and programs the target's SPI flash through the device."""

    def __init__(
        self, dev: Device, is_4_byte: bool = False, enter_exit_4b: bool = False
    ) -> None:
        self.dev = dev
        self.is_4_byte = is_4_byte

        op = _SpiOperation()
        op.begin()
        # Without entering 4-byte mode, a status read checks the bus is usable.
        op.write_mosi(bytes([SPI_OP_ENTER_4B if enter_exit_4b else SPI_OP_READ_STATUS]))
        op.end()
        try:
            op.execute(dev)
        except HostCommandError as exc:
            if exc.result == HostStatus.BUS_ERROR:
                sys.stderr.write(_BUS_ERROR_HINT)
            raise

    def _read_chunk(self, addr: int, length: int) -> bytes:
        op = _SpiOperation()
        op.begin()
        op.write_mosi(bytes([SPI_OP_READ]))
        op.write_address(self.is_4_byte, addr)
        op.end(length)
        return op.execute(self.dev)[0]

    def _chunks(self, addr: int, length: int):
        offset = 0
        while offset < length:
            size = min(length - offset, READ_CHUNK_SIZE)
            yield offset, self._read_chunk(addr + offset, size)
            offset += size

    def read(self, addr: int, length: int) -> bytes:
        """Read ``length`` bytes of flash starting at ``addr``."""
        return b"".join(chunk for _, chunk in self._chunks(addr, length))

    def verify(
        self, addr: int, data: bytes, progress: Optional[Progress] = None
    ) -> None:
        """Check flash at ``addr`` holds ``data``; raise HothError on a mismatch."""
        data = bytes(data)
        total = len(data)
        last_progress_addr = addr
        for offset, chunk in self._chunks(addr, total):
            expected = data[offset : offset + len(chunk)]
            for i, (want, got) in enumerate(zip(expected, chunk)):
                if want != got:
                    raise HothError(
                        f"Verification failed at address "
                        f"0x{(addr + offset + i) & 0xFFFFFFFF:08x}: expected "
                        f"0x{want:02x} but was 0x{got:02x}"
                    )
            done = offset + len(chunk)
            current = addr + done
            if progress is not None and (
                done == total or current >= last_progress_addr + _PROGRESS_STEP
            ):
                last_progress_addr = current
                progress(done, total)

    def _erase(self, op: _SpiOperation, addr: int, opcode: int) -> None:
        op.begin()
        op.write_mosi(bytes([SPI_OP_WRITE_ENABLE]))
        op.end()
        op.begin()
        op.write_mosi(bytes([opcode]))
        op.write_address(self.is_4_byte, addr)
        op.end()

    def _write_page(self, op: _SpiOperation, addr: int, data: bytes) -> None:
        op.begin()
        op.write_mosi(bytes([SPI_OP_WRITE_ENABLE]))
        op.end()
        op.begin()
        op.write_mosi(bytes([SPI_OP_PAGE_PROGRAM]))
        op.write_address(self.is_4_byte, addr)
        op.write_mosi(data)
        op.end()

    def update(
        self, addr: int, data: bytes, progress: Optional[Progress] = None
    ) -> None:
        """Erase and program flash at ``addr`` with ``data``."""
        data = bytes(data)
        total = len(data)
        remaining = total
        pos = 0
        pages_in_op = 0
        need_erase_addr = addr
        last_progress_addr = addr
        op = _SpiOperation()

        while remaining > 0:
            page_end = ((addr + SPI_PAGE_SIZE) // SPI_PAGE_SIZE) * SPI_PAGE_SIZE

            if page_end > need_erase_addr:
                start_64k = (addr // _ERASE_64K) * _ERASE_64K
                start_4k = (addr // _ERASE_4K) * _ERASE_4K
                end_64k = start_64k + _ERASE_64K
                end_4k = start_4k + _ERASE_4K
                if (start_64k >= addr or start_64k == start_4k) and (
                    end_64k <= addr + remaining or end_64k == end_4k
                ):
                    need_erase_addr = end_64k
                    self._erase(op, start_64k, SPI_OP_ERASE_64K)
                else:
                    need_erase_addr = end_4k
                    self._erase(op, start_4k, SPI_OP_ERASE_4K)

            write_len = min(page_end - addr, remaining)
            self._write_page(op, addr, data[pos : pos + write_len])
            remaining -= write_len
            addr += write_len
            pos += write_len
            pages_in_op += 1

            if pages_in_op >= MAX_PAGES_PER_OP or remaining == 0:
                pages_in_op = 0
                op.execute(self.dev)
                if progress is not None and (
                    remaining == 0 or addr >= last_progress_addr + _PROGRESS_STEP
                ):
                    last_progress_addr = addr
                    progress(total - remaining, total)
                op = _SpiOperation()