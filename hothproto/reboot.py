"""Cold reboot command."""

from __future__ import annotations

import enum

from .host_cmd import Device, hostcmd_exec

HOTH_CMD_REBOOT_EC = 0x00D2


class RebootCommand(enum.IntEnum):
    COLD = 4


def reboot(dev: Device) -> None:
    """Ask the device to perform a cold reboot."""
    hostcmd_exec(dev, HOTH_CMD_REBOOT_EC, 0, bytes([RebootCommand.COLD, 0]), 0)