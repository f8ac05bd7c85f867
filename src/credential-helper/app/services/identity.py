"""Device and user identity.

Records are owned by the device and user that added them. Both values are
looked up once per process.
"""

from __future__ import annotations

import getpass
import platform
import re
import socket
import subprocess
import uuid
from functools import lru_cache
from pathlib import Path

from clusterkit.models import DeviceIdentity
from clusterkit.observability import get_logger

logger = get_logger(__name__)

MACHINE_ID_FILES = (Path("/etc/machine-id"), Path("/var/lib/dbus/machine-id"))
IOREG_UUID_PATTERN = re.compile(r'"IOPlatformUUID"\s*=\s*"([0-9A-Fa-f-]+)"')


def _machine_id_from_files() -> str | None:
    for path in MACHINE_ID_FILES:
        try:
            value = path.read_text().strip()
        except OSError:
            continue
        if value:
            return value
    return None


def _machine_id_from_ioreg() -> str | None:
    try:
        output = subprocess.run(
            ["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        ).stdout
    except (OSError, subprocess.TimeoutExpired):
        return None
    match = IOREG_UUID_PATTERN.search(output)
    return match.group(1).upper() if match else None


def lookup_device_id() -> str:
    """Platform device identifier, or a host name derived UUID."""
    device_id = _machine_id_from_ioreg() if platform.system() == "Darwin" else None
    device_id = device_id or _machine_id_from_files()
    if device_id is None:
        device_id = str(uuid.uuid5(uuid.NAMESPACE_DNS, socket.gethostname()))
        logger.warning("No platform device identifier, using host name", device_id=device_id)
    return device_id


def lookup_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


@lru_cache
def get_device_identity(
    device_id: str | None = None,
    user: str | None = None,
) -> DeviceIdentity:
    """Get the cached identity of this device and user.

    Args:
        device_id: Override the platform device identifier
        user: Override the login name
    """
    return DeviceIdentity(
        device_id=device_id or lookup_device_id(),
        user=user or lookup_user(),
    )
