# hothproto

A library for the Hoth host command protocol. It handles request and
response framing and checksums, and it has helpers for the device's
commands. You supply a `Device` that moves raw bytes to and from the chip.
The library builds the request packets, checks each response, and unpacks
the results into dataclasses.

## Installation

```
pip install hothproto
```

To run the tests, install the `test` extra and run `pytest`:

```
pip install "hothproto[test]"
pytest
```

## What this package does not do

- It has no transport. It cannot open a USB, SPI or any other connection
  to a device. You write that part as a `Device` subclass.
- It has no command-line tool. Everything is used from Python code.

## Providing a transport

Subclass `hothproto.host_cmd.Device` and implement two methods:

- `send(request)` sends the complete request packet, header and payload together.
- `receive(max_size, timeout_ms)` returns the complete response packet.

When the transport fails, raise `hothproto.host_cmd.TransportError`. It is a
subclass of `HothError`.

```python
from hothproto.host_cmd import Device

class MyTransport(Device):
    def send(self, request: bytes) -> None:
        ...

    def receive(self, max_size: int, timeout_ms: int) -> bytes:
        ...
```

## Running commands

```python
from hothproto.chipinfo import chipinfo
from hothproto.rot_firmware_version import get_rot_fw_version
from hothproto.statistics import get_statistics
from hothproto.reboot import reboot

dev = MyTransport()
info = chipinfo(dev)
print(hex(info.hardware_identity))

version = get_rot_fw_version(dev)
print(version.version_string_ro, version.version_string_rw)

stats = get_statistics(dev)
print(stats.time_since_hoth_boot_us)

reboot(dev)
```

### The general entry point

The general entry point is:

```python
hostcmd_exec(dev, command, version=0, payload=b"", resp_size=0, exact=True)
```

It frames the command, sends it, and checks the response's struct version
and checksum. It returns the response payload.

- With `exact=True`, the payload must be exactly `resp_size` bytes long.
- With `exact=False`, the payload may be at most `resp_size` bytes long.

Errors are reported as exceptions:

- A non-success result from the device raises `HostCommandError`. Its
  `result` attribute holds the raw result code, which `HostStatus` names.
  Its `code` attribute holds that result offset by
  `HTOOL_ERROR_HOST_COMMAND_START`.
- Malformed responses, bad checksums and size mismatches raise `HothError`.

### Lower-level helpers

`host_cmd` also exposes these functions:

| Function | What it does |
| --- | --- |
| `build_request` | Builds a request packet. |
| `build_response` | Builds a response packet. This is useful for fake devices in tests. |
| `validate_response` | Checks a response and returns `(result, payload)`. |
| `calculate_checksum` | Computes the packet checksum. |
| `hex_dump` | Returns a hex and ASCII dump as a string. If you pass a stream as `out`, it also writes the dump there. |

## Modules

| Module | Purpose |
| --- | --- |
| `host_cmd` | Packet framing, checksums, `hex_dump`, `hostcmd_exec`, the `Device` base class and errors |
| `chipinfo` | Hardware identity (`chipinfo`, `ChipInfo`) |
| `reboot` | Cold reboot (`reboot`) |
| `rot_firmware_version` | RO/RW firmware version strings (`get_rot_fw_version`, `FirmwareVersion`) |
| `statistics` | Runtime statistics and boot timings (`get_statistics`, `Statistics`, `BootTiming`) |
| `authz_record` | Read, build, program and erase authorization records; `AuthorizationRecord.to_hex` / `from_hex` |
| `controlled_storage` | Read, write (at most 64 bytes) and delete controlled storage slots |
| `i2c` | I2C bus scan (`i2c_detect`, `i2c_device_list`) and transfers (`i2c_transfer`) |
| `payload_info` | Find and decode the image descriptor in a payload image (`find_image_descriptor`, `payload_info`) |
| `payload_status` | Payload region status and readable names for its codes |
| `payload_update` | Flash a payload image (`payload_update`) and query update status (`payload_update_getstatus`) |
| `panic` | Fetch, clear and format persistent panic records, and extract their console log |
| `progress` | `StderrProgress`, a progress callback that redraws a status line while its stream is a terminal |
| `spi_proxy` | `SpiProxy`: read, verify and program SPI flash through the device |

Most dataclasses that mirror wire structures have `pack()` and `unpack()`
methods. These convert them to and from their little-endian byte layout.

## Examples

Flash a payload image:

```python
from hothproto.payload_update import payload_update, PayloadUpdateError

with open("image.bin", "rb") as f:
    image = f.read()
try:
    payload_update(dev, image)
except PayloadUpdateError as exc:
    print("update failed:", exc.failure)
```

`exc.failure` is a `PayloadUpdateFailure`. It tells you which stage failed:
`BAD_IMG`, `INITIATE_FAIL`, `FLASH_FAIL` or `FINALIZE_FAIL`. While the image
is written, runs of `0xFF` bytes are skipped.

Read SPI flash, then write it back and verify it, with progress shown on
stderr:

```python
from hothproto.spi_proxy import SpiProxy
from hothproto.progress import StderrProgress

spi = SpiProxy(dev, is_4_byte=False, enter_exit_4b=False)
data = spi.read(0x0, 4096)
spi.update(0x0, data, StderrProgress("Programming"))
spi.verify(0x0, data, StderrProgress("Verifying"))
```

`verify` raises `HothError` at the first byte that differs. A progress
callback can be any callable that takes `(done, total)`.

Inspect a panic record:

```python
from hothproto.panic import get_panic, print_panic_info, get_panic_console_log

panic = get_panic(dev)
print_panic_info(panic)
print(get_panic_console_log(panic))
```

`format_panic_info(panic)` returns the same text that `print_panic_info`
prints, as a string.