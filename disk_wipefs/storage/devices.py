"""Block device enumeration using lsblk.

This module answers every read-only question the pipeline asks about block
devices: which whole disks exist, what type a node is, which partitions,
mountpoints and swap areas hang below a disk, and which disks hold the
running system.

Device Detection:
    Uses ``lsblk -J -b`` JSON output. lsblk prints a tree: whole disks at the
    top level, partitions and device-mapper nodes as ``children``. A
    device-mapper node built on several disks appears below each of them.

Failure Handling:
    When lsblk is missing, fails, or prints invalid JSON, a warning is logged
    and an empty listing is returned (or the previous cached listing, unless
    ``force_refresh`` was requested). An empty listing means "no matches",
    never an exception.

Caching:
    Results are cached for ``LSBLK_CACHE_TTL_SECONDS`` so that resolving a
    long argument list does not run lsblk once per argument. Race
    re-verification always passes ``force_refresh=True``.

Example:
    >>> from disk_wipefs.storage.devices import list_whole_disks
    >>> list_whole_disks()
    ['/dev/sda', '/dev/sdb', '/dev/nvme0n1']
"""

from __future__ import annotations

import json
import re
import subprocess
import time
from typing import Iterator, Optional

from disk_wipefs.logging import LoggerFactory


log = LoggerFactory.for_devices()

ROOT_MOUNTPOINTS = {"/", "/boot", "/boot/efi", "/boot/firmware"}
LSBLK_CACHE_TTL_SECONDS = 1.0
LSBLK_COLUMNS = "NAME,KNAME,PATH,TYPE,SIZE,MODEL,VENDOR,TRAN,RM,FSTYPE,MOUNTPOINT,PKNAME"
WHOLE_DISK_TYPES = {"disk"}
DM_TYPES = {"dm", "mpath", "lvm", "crypt"}

_last_lsblk_names: Optional[tuple[str, ...]] = None
_lsblk_cache: Optional[list[dict]] = None
_lsblk_cache_time: Optional[float] = None


def run_command(command, check=True, log_output=True):
    log.debug(f"Running command: {' '.join(command)}")
    result = subprocess.run(command, check=check, text=True, capture_output=True)
    if result.stderr and (log_output or result.returncode != 0):
        log.trace(f"stderr: {result.stderr.strip()}")
    return result


def human_size(size_bytes):
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


def format_device_label(device):
    if isinstance(device, dict):
        name = node_path(device)
        size_label = human_size(device.get("size"))
        model = (device.get("model") or "").strip()
    else:
        name = str(device or "")
        size_label = ""
        model = ""
    if size_label:
        size_label = re.sub(r"\.0([A-Z])", r"\1", size_label)
        return " ".join(part for part in [name, model, f"({size_label})"] if part)
    return name


def clear_cache() -> None:
    global _last_lsblk_names, _lsblk_cache, _lsblk_cache_time
    _last_lsblk_names = None
    _lsblk_cache = None
    _lsblk_cache_time = None


def get_block_devices(force_refresh: bool = False) -> list[dict]:
    """Return the top-level lsblk nodes, using a short-lived cache.

    When lsblk fails or returns invalid JSON, the previous cache remains intact
    and is returned if available; otherwise an empty list is returned. When
    force_refresh=True, errors return an empty list so callers do not receive
    stale data.
    """
    global _last_lsblk_names, _lsblk_cache, _lsblk_cache_time
    now = time.monotonic()
    if (
        not force_refresh
        and _lsblk_cache is not None
        and _lsblk_cache_time is not None
        and now - _lsblk_cache_time <= LSBLK_CACHE_TTL_SECONDS
    ):
        log.trace("lsblk cache hit")
        return _lsblk_cache
    try:
        result = run_command(["lsblk", "-J", "-b", "-o", LSBLK_COLUMNS], log_output=False)
        data = json.loads(result.stdout or "{}")
        devices = data.get("blockdevices") or []
        device_names = tuple(device.get("name") for device in devices if device.get("name"))
        if device_names != _last_lsblk_names:
            if device_names:
                log.debug(f"lsblk found {len(device_names)} devices: {', '.join(device_names)}")
            else:
                log.debug("lsblk found no block devices")
            _last_lsblk_names = device_names
        _lsblk_cache = devices
        _lsblk_cache_time = now
        return devices
    except (OSError, subprocess.CalledProcessError, json.JSONDecodeError) as error:
        log.warning(f"lsblk failed: {error}")
        if _lsblk_cache is not None and not force_refresh:
            return _lsblk_cache
        return []


def get_children(device: dict) -> list[dict]:
    return device.get("children", []) or []


def node_path(node: dict) -> str:
    path = node.get("path")
    if path:
        return path
    return f"/dev/{node.get('name') or ''}"


def node_mountpoints(node: dict) -> list[str]:
    """Mountpoints of one node; handles both MOUNTPOINT and MOUNTPOINTS output."""
    mountpoints = node.get("mountpoints")
    if mountpoints is None:
        mountpoints = [node.get("mountpoint")]
    return [mountpoint for mountpoint in mountpoints if mountpoint]


def iter_nodes(devices: Optional[list[dict]] = None) -> Iterator[dict]:
    """Walk every node of the lsblk tree, parents before children."""
    stack = list(reversed(devices if devices is not None else get_block_devices()))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(get_children(node)))


def descendants(device: dict) -> list[dict]:
    return list(iter_nodes(get_children(device)))


def get_device(identifier: str, force_refresh: bool = False) -> Optional[dict]:
    """Look up a node by name, kernel name (dm-0) or either as a /dev path."""
    if not identifier:
        return None
    for node in iter_nodes(get_block_devices(force_refresh=force_refresh)):
        kname = node.get("kname")
        aliases = (node.get("path"), node.get("name"), node_path(node), kname)
        if identifier in aliases or (kname and identifier == f"/dev/{kname}"):
            return node
    return None


def get_device_type(identifier: str, force_refresh: bool = False) -> Optional[str]:
    node = get_device(identifier, force_refresh=force_refresh)
    if node is None:
        return None
    return node.get("type")


def is_whole_disk(identifier: str, include_dm: bool = False, force_refresh: bool = True) -> bool:
    """True if the device is currently attached and is a whole disk.

    With ``include_dm`` device-mapper nodes also count; they are what
    ``--include-dm`` targets.
    """
    device_type = get_device_type(identifier, force_refresh=force_refresh)
    if device_type in WHOLE_DISK_TYPES:
        return True
    return include_dm and device_type in DM_TYPES


def list_whole_disks(force_refresh: bool = False) -> list[str]:
    """Paths of every whole disk, in lsblk order."""
    disks: list[str] = []
    for node in iter_nodes(get_block_devices(force_refresh=force_refresh)):
        if node.get("type") in WHOLE_DISK_TYPES:
            path = node_path(node)
            if path not in disks:
                disks.append(path)
    return disks


def list_partitions(device: str, force_refresh: bool = True) -> list[str]:
    node = get_device(device, force_refresh=force_refresh)
    if node is None:
        return []
    return [node_path(child) for child in descendants(node) if child.get("type") == "part"]


def list_mounted(device: str, force_refresh: bool = True) -> list[tuple[str, str]]:
    """(node path, mountpoint) pairs for the device and everything below it."""
    node = get_device(device, force_refresh=force_refresh)
    if node is None:
        return []
    mounted: list[tuple[str, str]] = []
    for child in [node, *descendants(node)]:
        for mountpoint in node_mountpoints(child):
            if mountpoint == "[SWAP]":
                continue
            mounted.append((node_path(child), mountpoint))
    return mounted


def list_swap(device: str, force_refresh: bool = True) -> list[str]:
    node = get_device(device, force_refresh=force_refresh)
    if node is None:
        return []
    swaps: list[str] = []
    for child in [node, *descendants(node)]:
        if child.get("fstype") == "swap" or "[SWAP]" in node_mountpoints(child):
            path = node_path(child)
            if path not in swaps:
                swaps.append(path)
    return swaps


def has_root_mountpoint(device: dict) -> bool:
    if any(mountpoint in ROOT_MOUNTPOINTS for mountpoint in node_mountpoints(device)):
        return True
    for child in get_children(device):
        if has_root_mountpoint(child):
            return True
    return False


def is_root_device(device: dict) -> bool:
    if device.get("type") not in WHOLE_DISK_TYPES:
        return False
    return has_root_mountpoint(device)


def list_root_disks(force_refresh: bool = False) -> list[str]:
    """Whole disks that hold /, /boot or the EFI partition."""
    return [
        node_path(node)
        for node in iter_nodes(get_block_devices(force_refresh=force_refresh))
        if is_root_device(node)
    ]
