"""Capability probe for collaborator tools.

``ToolSet.probe()`` resolves every binary the pipeline may call to an
absolute path, or ``None`` when it is not installed. Stages only ever call a
tool through its handle, so a missing tool is a skipped step rather than a
failed command.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Callable, Optional

from disk_wipefs.logging import LoggerFactory

from .exceptions import ToolsMissingError


log = LoggerFactory.for_system()

OS_RELEASE_PATH = Path("/etc/os-release")

# Field name -> executable name where they differ.
BINARY_NAMES = {"ceph_volume": "ceph-volume"}

ESSENTIAL_TOOLS = ("lsblk", "wipefs", "sgdisk", "partprobe", "blockdev")

INSTALL_COMMANDS = {
    "debian": "apt-get install -y gdisk kpartx lvm2 mdadm parted util-linux",
    "rhel": "dnf install -y gdisk kpartx lvm2 mdadm parted util-linux",
    "suse": "zypper install -y gptfdisk kpartx lvm2 mdadm parted util-linux",
    "arch": "pacman -Sy --noconfirm gptfdisk multipath-tools lvm2 mdadm parted util-linux",
    "alpine": "apk add sgdisk lvm2 mdadm parted util-linux",
}

OS_FAMILIES = {
    "debian": "debian",
    "ubuntu": "debian",
    "rhel": "rhel",
    "centos": "rhel",
    "rocky": "rhel",
    "almalinux": "rhel",
    "fedora": "rhel",
    "sles": "suse",
    "opensuse": "suse",
    "opensuse-leap": "suse",
    "suse": "suse",
    "arch": "arch",
    "alpine": "alpine",
}


@dataclass(frozen=True)
class ToolSet:
    lsblk: Optional[str] = None
    wipefs: Optional[str] = None
    sgdisk: Optional[str] = None
    partprobe: Optional[str] = None
    blockdev: Optional[str] = None
    mdadm: Optional[str] = None
    pvs: Optional[str] = None
    lvs: Optional[str] = None
    vgchange: Optional[str] = None
    lvremove: Optional[str] = None
    vgremove: Optional[str] = None
    pvremove: Optional[str] = None
    dmsetup: Optional[str] = None
    kpartx: Optional[str] = None
    multipath: Optional[str] = None
    udevadm: Optional[str] = None
    dd: Optional[str] = None
    blkdiscard: Optional[str] = None
    ceph_volume: Optional[str] = None
    zpool: Optional[str] = None
    umount: Optional[str] = None
    swapoff: Optional[str] = None

    @classmethod
    def probe(cls, which: Callable[[str], Optional[str]] = shutil.which) -> ToolSet:
        found = {}
        for tool_field in fields(cls):
            binary = BINARY_NAMES.get(tool_field.name, tool_field.name)
            found[tool_field.name] = which(binary)
        return cls(**found)

    @classmethod
    def names(cls) -> list[str]:
        return [tool_field.name for tool_field in fields(cls)]

    def missing(self, names=None) -> list[str]:
        names = self.names() if names is None else names
        return [BINARY_NAMES.get(name, name) for name in names if getattr(self, name) is None]


def detect_os_id(path: Path = OS_RELEASE_PATH) -> Optional[str]:
    """Return the distribution family from os-release, if known."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return None
    values: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip().strip('"').strip("'")
    candidates = [values.get("ID", "")] + values.get("ID_LIKE", "").split()
    for candidate in candidates:
        family = OS_FAMILIES.get(candidate.lower())
        if family:
            return family
    return None


def install_hint(os_id: Optional[str]) -> Optional[str]:
    if os_id is None:
        return None
    return INSTALL_COMMANDS.get(os_id)


def check_tools(tools: ToolSet, os_release: Path = OS_RELEASE_PATH) -> list[str]:
    """Abort on missing essential tools; warn about missing optional ones.

    Returns:
        Names of missing optional tools

    Raises:
        ToolsMissingError: If an essential tool is not installed
    """
    missing_essential = tools.missing(ESSENTIAL_TOOLS)
    if missing_essential:
        raise ToolsMissingError(missing_essential, install_hint(detect_os_id(os_release)))
    optional = [name for name in tools.names() if name not in ESSENTIAL_TOOLS]
    missing_optional = tools.missing(optional)
    if missing_optional:
        log.warning(
            f"Optional tools not found, related steps will be skipped: {', '.join(missing_optional)}"
        )
    else:
        log.success("All tools present.")
    return missing_optional
