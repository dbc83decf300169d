"""Remove on-disk metadata from a target.

Sub-steps, each independent and best-effort:
    - ``mdadm --zero-superblock`` on the device and each remaining partition
    - ``ceph-volume lvm zap --destroy`` (only with ``--zap-ceph``)
    - ``zpool labelclear -f`` (only with ``--zap-zfs``)
    - ``wipefs -a`` on each partition, then on the device
    - ``sgdisk --zap-all``
    - zero-fill of the first and last N MiB (GPT backup header included)
    - ``blkdiscard -f`` (only with ``--discard`` and when the device supports it)
"""

from __future__ import annotations

from typing import Optional

from disk_wipefs.domain.models import StageResult, StepResult
from disk_wipefs.storage.commands import CommandResult

from .context import PipelineContext


STAGE = "erase"
MIB = 1024 * 1024
SECTOR_SIZE = 512


def _step(name: str, result: CommandResult, log) -> StepResult:
    if result.ok:
        return StepResult.ok(name, "dry-run" if result.dry_run else "")
    log.warning(f"{name} failed: {result.error_message}")
    return StepResult.warn(name, result.error_message)


def device_size_bytes(device: str, ctx: PipelineContext) -> Optional[int]:
    """Device size from ``blockdev --getsz`` (512-byte sectors)."""
    if not ctx.tools.blockdev:
        return None
    result = ctx.runner.query([ctx.tools.blockdev, "--getsz", device])
    if not result.ok:
        return None
    try:
        return int(result.stdout.strip()) * SECTOR_SIZE
    except ValueError:
        return None


def residual_regions(size_bytes: Optional[int], wipe_mib: int) -> list[tuple[int, int]]:
    """(offset, length) byte ranges to zero at the head and tail of a device.

    Devices not larger than the wipe length get a single head region clamped
    to the device size. An unknown size gets only the head region.
    """
    length = wipe_mib * MIB
    if length <= 0:
        return []
    if size_bytes is None:
        return [(0, length)]
    if size_bytes <= length:
        return [(0, size_bytes)] if size_bytes > 0 else []
    return [(0, length), (size_bytes - length, length)]


def _zero_region(device: str, offset: int, length: int, ctx: PipelineContext, log) -> StepResult:
    where = "head" if offset == 0 else "tail"
    name = f"zero {where} of {device}"
    command = [
        ctx.tools.dd,
        "if=/dev/zero",
        f"of={device}",
        "bs=1M",
        f"count={length}",
        "iflag=count_bytes",
        "conv=fsync",
        "status=none",
    ]
    if offset:
        command[-1:-1] = [f"seek={offset}", "oflag=seek_bytes"]
    return _step(name, ctx.runner.run(command), log)


def _zero_superblocks(device: str, ctx: PipelineContext, log) -> list[StepResult]:
    if not ctx.tools.mdadm:
        return [StepResult.skip("mdadm --zero-superblock", "mdadm not available")]
    steps = []
    for node in [device, *ctx.gateway.list_partitions(device)]:
        result = ctx.runner.run([ctx.tools.mdadm, "--zero-superblock", "--force", node])
        # mdadm exits non-zero when there is no superblock to zero.
        if result.ok:
            steps.append(StepResult.ok(f"mdadm --zero-superblock {node}"))
        else:
            log.debug(f"No RAID superblock cleared on {node}: {result.error_message}")
            steps.append(StepResult.skip(f"mdadm --zero-superblock {node}", result.error_message))
    return steps


def _zap_ceph(device: str, ctx: PipelineContext, log) -> StepResult:
    name = f"ceph-volume lvm zap {device}"
    if not ctx.tools.ceph_volume:
        return StepResult.skip(name, "ceph-volume not available")
    log.info(f"Zapping Ceph metadata on {device}")
    return _step(name, ctx.runner.run([ctx.tools.ceph_volume, "lvm", "zap", "--destroy", device]), log)


def _clear_zfs_labels(device: str, ctx: PipelineContext, log) -> StepResult:
    name = f"zpool labelclear {device}"
    if not ctx.tools.zpool:
        return StepResult.skip(name, "zpool not available")
    return _step(name, ctx.runner.run([ctx.tools.zpool, "labelclear", "-f", device]), log)


def _wipe_signatures(device: str, ctx: PipelineContext, log) -> list[StepResult]:
    steps = []
    for node in [*ctx.gateway.list_partitions(device), device]:
        steps.append(_step(f"wipefs -a {node}", ctx.runner.run([ctx.tools.wipefs, "-a", node]), log))
    return steps


def _zap_partition_table(device: str, ctx: PipelineContext, log) -> StepResult:
    name = f"sgdisk --zap-all {device}"
    return _step(name, ctx.runner.run([ctx.tools.sgdisk, "--zap-all", device]), log)


def _zero_residual(device: str, ctx: PipelineContext, log) -> list[StepResult]:
    if not ctx.tools.dd:
        return [StepResult.skip("zero residual metadata", "dd not available")]
    size = device_size_bytes(device, ctx)
    if size is None:
        log.warning(f"Could not determine size of {device}; zeroing only the head")
    regions = residual_regions(size, ctx.options.residual_wipe_mib)
    return [_zero_region(device, offset, length, ctx, log) for offset, length in regions]


def _discard(device: str, ctx: PipelineContext, log) -> StepResult:
    name = f"blkdiscard {device}"
    if not ctx.tools.blkdiscard:
        return StepResult.skip(name, "blkdiscard not available")
    if not ctx.gateway.supports_discard(device):
        log.info(f"{device} does not advertise discard support; skipping blkdiscard")
        return StepResult.skip(name, "discard not supported")
    return _step(name, ctx.runner.run([ctx.tools.blkdiscard, "-f", device]), log)


def run_erase(device: str, ctx: PipelineContext, log) -> StageResult:
    options = ctx.options
    steps: list[StepResult] = []
    steps.extend(_zero_superblocks(device, ctx, log))
    if options.zap_ceph:
        steps.append(_zap_ceph(device, ctx, log))
    if options.zap_zfs:
        steps.append(_clear_zfs_labels(device, ctx, log))
    log.info(f"Wiping signatures and partition table on {device}")
    steps.extend(_wipe_signatures(device, ctx, log))
    steps.append(_zap_partition_table(device, ctx, log))
    steps.extend(_zero_residual(device, ctx, log))
    if options.discard:
        steps.append(_discard(device, ctx, log))
    return StageResult.from_steps(STAGE, device, steps)
