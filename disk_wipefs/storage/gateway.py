"""Narrow interface to shared operating-system state.

Mount tables, swap, the LVM volume-group table, the device-mapper table and
the sysfs rescan triggers are global to the host rather than per device.
Every stage reads and changes that state only through ``SystemGateway``,
and every mutating call runs inside ``gateway_operation`` so concurrent
callers cannot interleave changes to the shared tables.

Usage:
    gateway = SystemGateway(runner, tools)
    for pv, vg in gateway.list_physical_volumes_on("/dev/sdb"):
        gateway.deactivate_volume_group(vg)
"""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from disk_wipefs.domain.models import StepResult, belongs_to_device, device_basename
from disk_wipefs.logging import LoggerFactory

from . import devices
from .commands import CommandResult, CommandRunner
from .tools import ToolSet


log = LoggerFactory.for_gateway()

_lock = threading.RLock()


@contextmanager
def gateway_operation(description: str) -> Generator[None, None, None]:
    """Serialize a change to shared LVM, device-mapper or rescan state."""
    with _lock:
        log.trace(f"Gateway operation started: {description}")
        try:
            yield
        finally:
            log.trace(f"Gateway operation completed: {description}")


def _step(name: str, result: CommandResult) -> StepResult:
    if result.ok:
        return StepResult.ok(name, "dry-run" if result.dry_run else "")
    return StepResult.warn(name, result.error_message)


class SystemGateway:
    def __init__(self, runner: CommandRunner, tools: ToolSet, sysfs_root: Path = Path("/sys")):
        self.runner = runner
        self.tools = tools
        self.sysfs_root = Path(sysfs_root)

    @property
    def dry_run(self) -> bool:
        return self.runner.dry_run

    # ------------------------------------------------------------------
    # Block device queries
    # ------------------------------------------------------------------

    def is_whole_disk(self, device: str, include_dm: bool = False) -> bool:
        return devices.is_whole_disk(device, include_dm=include_dm, force_refresh=True)

    def describe(self, device: str) -> str:
        node = devices.get_device(device)
        return devices.format_device_label(node) if node else device

    def list_partitions(self, device: str) -> list[str]:
        return devices.list_partitions(device)

    def list_mounts(self, device: str) -> list[tuple[str, str]]:
        return devices.list_mounted(device)

    def list_swap(self, device: str) -> list[str]:
        return devices.list_swap(device)

    # ------------------------------------------------------------------
    # Mounts and swap
    # ------------------------------------------------------------------

    def unmount(self, node: str, mountpoint: str) -> StepResult:
        """Lazy unmount, falling back to a forced unmount."""
        name = f"umount {mountpoint}"
        if not self.tools.umount:
            return StepResult.skip(name, "umount not available")
        lazy = self.runner.run([self.tools.umount, "-l", mountpoint])
        if lazy.ok:
            log.info(f"Unmounted {node} from {mountpoint}")
            return _step(name, lazy)
        log.debug(f"Lazy unmount of {mountpoint} failed: {lazy.error_message}")
        forced = self.runner.run([self.tools.umount, "-f", mountpoint])
        if forced.ok:
            log.info(f"Force-unmounted {node} from {mountpoint}")
        else:
            log.warning(f"Could not unmount {node} from {mountpoint}: {forced.error_message}")
        return _step(name, forced)

    def swapoff(self, node: str) -> StepResult:
        name = f"swapoff {node}"
        if not self.tools.swapoff:
            return StepResult.skip(name, "swapoff not available")
        result = self.runner.run([self.tools.swapoff, node])
        if not result.ok:
            log.warning(f"swapoff failed for {node}: {result.error_message}")
        return _step(name, result)

    # ------------------------------------------------------------------
    # LVM
    # ------------------------------------------------------------------

    def list_physical_volumes(self) -> list[tuple[str, str]]:
        """All (pv_name, vg_name) pairs known to LVM."""
        if not self.tools.pvs:
            return []
        result = self.runner.query([self.tools.pvs, "--noheadings", "-o", "pv_name,vg_name"])
        if not result.ok:
            log.debug(f"pvs failed: {result.error_message}")
            return []
        volumes = []
        for line in result.stdout.splitlines():
            parts = line.split()
            if not parts:
                continue
            volumes.append((parts[0], parts[1] if len(parts) > 1 else ""))
        return volumes

    def list_physical_volumes_on(self, device: str) -> list[tuple[str, str]]:
        return [
            (pv, vg)
            for pv, vg in self.list_physical_volumes()
            if belongs_to_device(pv, device)
        ]

    def list_logical_volumes(self, vg: str) -> list[str]:
        if not self.tools.lvs or not vg:
            return []
        result = self.runner.query([self.tools.lvs, "--noheadings", "-o", "lv_path", vg])
        if not result.ok:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def deactivate_volume_group(self, vg: str) -> StepResult:
        name = f"vgchange -an {vg}"
        if not self.tools.vgchange:
            return StepResult.skip(name, "vgchange not available")
        with gateway_operation(name):
            return _step(name, self.runner.run([self.tools.vgchange, "-an", vg]))

    def remove_logical_volume(self, lv: str) -> StepResult:
        name = f"lvremove {lv}"
        if not self.tools.lvremove:
            return StepResult.skip(name, "lvremove not available")
        with gateway_operation(name):
            return _step(name, self.runner.run([self.tools.lvremove, "-ff", "-y", lv]))

    def remove_volume_group(self, vg: str) -> StepResult:
        name = f"vgremove {vg}"
        if not self.tools.vgremove:
            return StepResult.skip(name, "vgremove not available")
        with gateway_operation(name):
            return _step(name, self.runner.run([self.tools.vgremove, "-ff", "-y", vg]))

    def remove_physical_volume(self, pv: str) -> StepResult:
        name = f"pvremove {pv}"
        if not self.tools.pvremove:
            return StepResult.skip(name, "pvremove not available")
        with gateway_operation(name):
            return _step(name, self.runner.run([self.tools.pvremove, "-ff", "-y", pv]))

    # ------------------------------------------------------------------
    # Device mapper
    # ------------------------------------------------------------------

    def _dm_slaves(self) -> dict[str, tuple[str, list[str]]]:
        """dm kernel name -> (mapper name, slave kernel names)."""
        table: dict[str, tuple[str, list[str]]] = {}
        block = self.sysfs_root / "block"
        if not block.is_dir():
            return table
        for entry in sorted(block.glob("dm-*")):
            try:
                mapper_name = (entry / "dm" / "name").read_text(encoding="utf-8").strip()
            except OSError:
                mapper_name = ""
            slaves_dir = entry / "slaves"
            slaves = sorted(os.listdir(slaves_dir)) if slaves_dir.is_dir() else []
            table[entry.name] = (mapper_name, slaves)
        return table

    def list_dm_holders(self, device: str) -> list[str]:
        """Mapper names stacked on the device, outermost first.

        Follows stacks such as LV on dm-crypt on a partition.
        """
        base = device_basename(device)
        table = self._dm_slaves()
        found: list[str] = []
        backing = {base}
        changed = True
        while changed:
            changed = False
            for dm_name, (_mapper, slaves) in table.items():
                if dm_name in found:
                    continue
                for slave in slaves:
                    if slave in backing or belongs_to_device(f"/dev/{slave}", f"/dev/{base}"):
                        found.append(dm_name)
                        backing.add(dm_name)
                        changed = True
                        break
        return [table[dm_name][0] or dm_name for dm_name in reversed(found)]

    def remove_dm_node(self, mapper_name: str) -> StepResult:
        name = f"dmsetup remove {mapper_name}"
        if not self.tools.dmsetup:
            return StepResult.skip(name, "dmsetup not available")
        with gateway_operation(name):
            result = self.runner.run([self.tools.dmsetup, "remove", "--force", mapper_name])
        if not result.ok:
            log.warning(f"Could not remove dm node {mapper_name}: {result.error_message}")
        return _step(name, result)

    def reload_partition_mappings(self, device: str, delay: float = 1.0) -> list[StepResult]:
        """Drop and re-add kpartx partition mappings for the device."""
        if not self.tools.kpartx:
            return [StepResult.skip("kpartx", "kpartx not available")]
        with gateway_operation(f"kpartx {device}"):
            removed = _step(f"kpartx -d {device}", self.runner.run([self.tools.kpartx, "-d", device]))
            self.runner.pause(delay)
            added = _step(f"kpartx -a {device}", self.runner.run([self.tools.kpartx, "-a", device]))
        return [removed, added]

    def refresh_multipath(self) -> StepResult:
        if not self.tools.multipath:
            return StepResult.skip("multipath -r", "multipath not available")
        with gateway_operation("multipath -r"):
            return _step("multipath -r", self.runner.run([self.tools.multipath, "-r"]))

    # ------------------------------------------------------------------
    # sysfs
    # ------------------------------------------------------------------

    def rescan_device(self, device: str) -> StepResult:
        control = self.sysfs_root / "block" / device_basename(device) / "device" / "rescan"
        name = f"rescan {device}"
        if not control.exists():
            return StepResult.skip(name, "no per-device rescan interface")
        with gateway_operation(name):
            return _step(name, self.runner.write(str(control), "1"))

    def rescan_scsi_hosts(self) -> list[StepResult]:
        hosts = sorted((self.sysfs_root / "class" / "scsi_host").glob("host*"))
        steps = []
        for host in hosts:
            control = host / "scan"
            if not control.exists():
                continue
            name = f"scan {host.name}"
            with gateway_operation(name):
                steps.append(_step(name, self.runner.write(str(control), "- - -\n")))
        if not steps:
            steps.append(StepResult.skip("scsi host rescan", "no SCSI hosts"))
        return steps

    def supports_discard(self, device: str) -> bool:
        control = self.sysfs_root / "block" / device_basename(device) / "queue" / "discard_max_bytes"
        try:
            return int(control.read_text(encoding="utf-8").strip() or "0") > 0
        except (OSError, ValueError):
            return False
