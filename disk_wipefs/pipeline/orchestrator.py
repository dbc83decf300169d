"""Per-invocation workflow.

Sequence:
    resolve targets -> for each target:
        confirm (interactive only) -> validate -> pre-clean -> erase
        -> reload -> verify
    -> summarize

Targets are processed strictly one after another. A failed validation ends
that target's pipeline only; stage errors become warnings. A pending
interrupt stops processing before the next stage starts, and every target
not yet finished is reported as interrupted.
"""

from __future__ import annotations

from typing import Callable, Optional, Sequence

from disk_wipefs.domain.models import (
    ExecutionMode,
    InvocationSummary,
    ProtectionRule,
    StageResult,
    StageStatus,
    TargetOutcome,
    TargetState,
)
from disk_wipefs.logging import EventLogger, LoggerFactory
from disk_wipefs.storage.resolver import resolve_targets

from .context import PipelineContext
from .erase import run_erase
from .interrupts import InterruptFlag
from .preclean import run_preclean
from .reload import run_reload
from .verify import run_verify


VALIDATE_STAGE = "validate"

STAGES = (
    ("pre-clean", run_preclean),
    ("erase", run_erase),
    ("reload", run_reload),
)


class Orchestrator:
    def __init__(
        self,
        ctx: PipelineContext,
        rules: Sequence[ProtectionRule],
        confirm: Optional[Callable[[str], bool]] = None,
        interrupt: Optional[InterruptFlag] = None,
    ):
        self.ctx = ctx
        self.rules = list(rules)
        self.confirm = confirm
        self.interrupt = interrupt or InterruptFlag()
        self.log = LoggerFactory.for_system()

    @property
    def mode(self) -> ExecutionMode:
        return self.ctx.options.mode

    def run(self, arguments: Sequence[str]) -> InvocationSummary:
        """Resolve targets and run the pipeline on each.

        Raises:
            NoTargetsError: If no argument resolves to an eligible disk
        """
        resolved = resolve_targets(arguments, self.rules, include_dm=self.ctx.options.include_dm)
        if self.mode.is_preview:
            self.log.info(f"[DRY-RUN] Preview of {len(resolved)} target(s); nothing will be changed")

        summary = InvocationSummary()
        for device in resolved:
            if self.interrupt.is_set:
                summary.outcomes.append(TargetOutcome(device, interrupted=True))
                continue
            summary.outcomes.append(self.process_target(device))
        summary.interrupted = self.interrupt.is_set
        self.log_summary(summary)
        return summary

    def process_target(self, device: str) -> TargetOutcome:
        log = LoggerFactory.for_target(device)
        EventLogger.log_target_started(log, device, self.mode.value)
        outcome = TargetOutcome(device, preview=self.mode.is_preview)

        if self.mode is ExecutionMode.INTERACTIVE and self.confirm is not None:
            if not self.confirm(device):
                if self.interrupt.is_set:
                    outcome.interrupted = True
                    return outcome
                log.info(f"Skipping {device} (not confirmed)")
                outcome.confirmed = False
                return outcome
        if self.mode.is_preview:
            log.info(f"[DRY-RUN] Would process {device}")

        validation = self._validate(device)
        outcome.stages.append(validation)
        if validation.is_fatal:
            EventLogger.log_stage_result(log, validation)
            return outcome

        for name, stage in STAGES:
            if self.interrupt.is_set:
                log.warning(f"Interrupted before {name} on {device}")
                outcome.interrupted = True
                return outcome
            result = self._run_stage(name, stage, device, log)
            outcome.stages.append(result)
            EventLogger.log_stage_result(log, result)

        if self.interrupt.is_set:
            outcome.interrupted = True
            return outcome
        result, report = run_verify(device, self.ctx, log)
        outcome.stages.append(result)
        outcome.report = report
        EventLogger.log_verification(log, report)
        return outcome

    def _validate(self, device: str) -> StageResult:
        if self.ctx.gateway.is_whole_disk(device, include_dm=self.ctx.options.include_dm):
            return StageResult(VALIDATE_STAGE, device, StageStatus.SUCCEEDED)
        return StageResult.failed(
            VALIDATE_STAGE, device, f"{device} is no longer present or not a whole disk"
        )

    def _run_stage(self, name: str, stage, device: str, log) -> StageResult:
        try:
            return stage(device, self.ctx, log)
        except Exception as error:
            log.error(f"Stage {name} raised on {device}: {error}")
            return StageResult(name, device, StageStatus.WARNED, message=str(error))

    def log_summary(self, summary: InvocationSummary) -> None:
        self.log.info("Summary:")
        for outcome, text in zip(summary.outcomes, summary.lines()):
            line = f"  {text}"
            if outcome.state is TargetState.CLEAN:
                self.log.success(line)
            elif outcome.state in (TargetState.RESIDUAL, TargetState.FAILED, TargetState.INTERRUPTED):
                self.log.warning(line)
            else:
                self.log.info(line)
        if summary.interrupted:
            self.log.warning("Interrupted by user; remaining targets were not processed")
