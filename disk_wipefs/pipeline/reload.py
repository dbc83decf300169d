"""Make the kernel, udev and multipath re-read a target's layout."""

from __future__ import annotations

from disk_wipefs.domain.models import StageResult, StageStatus, StepResult

from .context import PipelineContext


STAGE = "reload"


def _optional(name: str, binary, command: list[str], ctx: PipelineContext, log) -> StepResult:
    if not binary:
        return StepResult.skip(name, f"{name.split()[0]} not available")
    result = ctx.runner.run([binary, *command])
    if result.ok:
        return StepResult.ok(name, "dry-run" if result.dry_run else "")
    log.warning(f"{name} failed: {result.error_message}")
    return StepResult.warn(name, result.error_message)


def run_reload(device: str, ctx: PipelineContext, log) -> StageResult:
    tools = ctx.tools
    gateway = ctx.gateway
    options = ctx.options

    log.info(f"Reloading partition table and mappings for {device}")
    steps = [
        _optional(f"partprobe {device}", tools.partprobe, [device], ctx, log),
        _optional(f"blockdev --rereadpt {device}", tools.blockdev, ["--rereadpt", device], ctx, log),
    ]
    steps.extend(gateway.reload_partition_mappings(device, delay=options.kpartx_delay))
    steps.append(gateway.rescan_device(device))
    steps.extend(gateway.rescan_scsi_hosts())
    steps.append(gateway.refresh_multipath())
    steps.append(
        _optional(
            "udevadm settle",
            tools.udevadm,
            ["settle", f"--timeout={options.udev_timeout}"],
            ctx,
            log,
        )
    )
    for step in steps:
        if step.status is StageStatus.SKIPPED:
            log.debug(f"Skipped {step.name}: {step.message}")
    return StageResult.from_steps(STAGE, device, steps)
