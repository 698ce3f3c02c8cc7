"""
BlueZ adapter queries via the ``bluetoothctl`` command-line tool.

Used on Linux to list bonded devices and check whether the adapter is
powered. Pairing itself happens out-of-band (system settings or
bluetoothctl); this module only reads the result.
"""

import logging
import re
import shutil
import subprocess

from discovery.models import RemoteEndpoint

logger = logging.getLogger(__name__)

BLUETOOTHCTL = "bluetoothctl"
COMMAND_TIMEOUT = 5  # seconds

_DEVICE_LINE = re.compile(r"^Device\s+([0-9A-Fa-f]{2}(?::[0-9A-Fa-f]{2}){5})\s*(.*)$")


def run_bluetoothctl(*args: str) -> str | None:
    """Run bluetoothctl non-interactively. Returns stdout, or None on failure."""
    if shutil.which(BLUETOOTHCTL) is None:
        logger.warning("bluetoothctl not found; is BlueZ installed?")
        return None

    try:
        result = subprocess.run(
            [BLUETOOTHCTL, *args],
            capture_output=True,
            text=True,
            timeout=COMMAND_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"bluetoothctl {' '.join(args)} failed: {e}")
        return None

    if result.returncode != 0:
        logger.warning(
            f"bluetoothctl {' '.join(args)} exited with {result.returncode}: "
            f"{result.stderr.strip()}"
        )
        return None
    return result.stdout


def parse_device_lines(output: str) -> tuple[RemoteEndpoint, ...]:
    """Parse ``Device <addr> <name>`` lines, keeping their order."""
    endpoints = []
    seen = set()
    for line in output.splitlines():
        match = _DEVICE_LINE.match(line.strip())
        if not match:
            continue
        address = match.group(1).upper()
        if address in seen:
            continue
        seen.add(address)
        name = match.group(2).strip() or address
        endpoints.append(RemoteEndpoint(name=name, address=address))
    return tuple(endpoints)


def parse_powered(output: str) -> bool:
    """Read the ``Powered: yes|no`` field from ``bluetoothctl show``."""
    for line in output.splitlines():
        key, _, value = line.strip().partition(":")
        if key == "Powered":
            return value.strip().lower() == "yes"
    return False


class BluetoothctlDirectory:
    """Device directory backed by the adapter's bonded-device list."""

    def list_paired_endpoints(self) -> tuple[RemoteEndpoint, ...]:
        output = run_bluetoothctl("devices", "Paired")
        if output is None:
            return ()
        return parse_device_lines(output)


def adapter_powered() -> bool:
    """Whether the default adapter exists and is powered on."""
    output = run_bluetoothctl("show")
    if output is None:
        return False
    return parse_powered(output)
