"""Report what is left on a target after the destructive stages."""

from __future__ import annotations

from disk_wipefs.domain.models import (
    DEFAULT_SUGGESTIONS,
    StageResult,
    StageStatus,
    VerificationReport,
)

from .context import PipelineContext


STAGE = "verify"


def inspect_device(device: str, ctx: PipelineContext) -> VerificationReport:
    partitions = tuple(ctx.gateway.list_partitions(device))
    physical_volumes = tuple(pv for pv, _vg in ctx.gateway.list_physical_volumes_on(device))
    suggestions = () if not (partitions or physical_volumes) else DEFAULT_SUGGESTIONS
    return VerificationReport(
        device=device,
        partitions=partitions,
        physical_volumes=physical_volumes,
        suggestions=suggestions,
    )


def run_verify(device: str, ctx: PipelineContext, log) -> tuple[StageResult, VerificationReport]:
    """Settle, then re-inspect the device. Findings are informational only."""
    ctx.runner.pause(ctx.options.settle_delay)
    report = inspect_device(device, ctx)
    if report.partitions:
        log.info(f"Remaining partitions on {device}: {' '.join(report.partitions)}")
    if report.physical_volumes:
        log.info(f"Remaining LVM PVs on {device}: {' '.join(report.physical_volumes)}")
    if not report.is_clean:
        log.info("Possible reasons and next steps:")
        for suggestion in report.suggestions:
            log.info(f"  - {suggestion}")
    message = "clean" if report.is_clean else "residual state"
    result = StageResult(stage=STAGE, device=device, status=StageStatus.SUCCEEDED, message=message)
    return result, report
