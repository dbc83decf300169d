"""Domain model for disk metadata cleanup.

Type-safe objects passed between the resolver, the pipeline stages and the
orchestrator. Device identifiers themselves stay plain ``str`` paths
(``/dev/sdb``) and are never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional


# ==============================================================================
# Device identifiers
# ==============================================================================


def normalize_device(name: str) -> str:
    """Return the canonical ``/dev`` path for a bare name or path."""
    name = name.strip()
    if name.startswith("/dev/"):
        return name
    return f"/dev/{name}"


def device_basename(device: str) -> str:
    """Kernel name of a device (``/dev/sdb`` -> ``sdb``)."""
    return device.rstrip("/").rsplit("/", 1)[-1]


def belongs_to_device(path: str, device: str) -> bool:
    """True if ``path`` is ``device`` itself or one of its partitions.

    ``/dev/sdb1`` and ``/dev/nvme0n1p2`` belong to ``/dev/sdb`` and
    ``/dev/nvme0n1``; ``/dev/sdba`` does not belong to ``/dev/sdb`` and
    ``/dev/nvme0n10`` does not belong to ``/dev/nvme0n1``.
    """
    if path == device:
        return True
    if not path.startswith(device):
        return False
    suffix = path[len(device):]
    # Names ending in a digit separate the partition number with "p".
    if device[-1:].isdigit():
        if not suffix.startswith("p"):
            return False
        suffix = suffix[1:]
    return suffix.isdigit()


# ==============================================================================
# Modes and results
# ==============================================================================


class ExecutionMode(Enum):
    """How destructive stages are gated for an invocation."""

    INTERACTIVE = "interactive"
    AUTOMATIC = "automatic"
    PREVIEW = "preview"

    @property
    def is_preview(self) -> bool:
        return self is ExecutionMode.PREVIEW


class StageStatus(Enum):
    SUCCEEDED = "succeeded"
    WARNED = "warned"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one best-effort sub-step (one command or one sysfs write)."""

    name: str
    status: StageStatus
    message: str = ""

    @classmethod
    def ok(cls, name: str, message: str = "") -> StepResult:
        return cls(name, StageStatus.SUCCEEDED, message)

    @classmethod
    def warn(cls, name: str, message: str) -> StepResult:
        return cls(name, StageStatus.WARNED, message)

    @classmethod
    def skip(cls, name: str, message: str = "") -> StepResult:
        return cls(name, StageStatus.SKIPPED, message)


@dataclass(frozen=True)
class StageResult:
    """Outcome of one pipeline stage for one target."""

    stage: str
    device: str
    status: StageStatus
    steps: tuple[StepResult, ...] = ()
    message: str = ""

    @property
    def warnings(self) -> list[StepResult]:
        return [step for step in self.steps if step.status is StageStatus.WARNED]

    @property
    def is_fatal(self) -> bool:
        return self.status is StageStatus.FAILED

    @classmethod
    def from_steps(cls, stage: str, device: str, steps: Iterable[StepResult]) -> StageResult:
        """Aggregate sub-step results.

        Any warned step makes the stage warned; a stage whose steps were all
        skipped (or that had no steps) is skipped.
        """
        steps = tuple(steps)
        if any(step.status in (StageStatus.WARNED, StageStatus.FAILED) for step in steps):
            status = StageStatus.WARNED
        elif steps and any(step.status is StageStatus.SUCCEEDED for step in steps):
            status = StageStatus.SUCCEEDED
        else:
            status = StageStatus.SKIPPED
        return cls(stage=stage, device=device, status=status, steps=steps)

    @classmethod
    def failed(cls, stage: str, device: str, message: str) -> StageResult:
        return cls(stage=stage, device=device, status=StageStatus.FAILED, message=message)


# ==============================================================================
# Protection rules
# ==============================================================================


@dataclass(frozen=True)
class ProtectionRule:
    """A named predicate that keeps a device out of the target set.

    ``overridden`` disables only this rule; rules with ``overridable=False``
    ignore it.
    """

    name: str
    predicate: Callable[[str], bool]
    overridable: bool = True
    overridden: bool = False

    @property
    def active(self) -> bool:
        return not (self.overridable and self.overridden)

    def protects(self, device: str) -> bool:
        return self.active and self.predicate(device)


@dataclass(frozen=True)
class ResolvedTargets:
    targets: tuple[str, ...]
    rejected: tuple[tuple[str, str], ...] = ()

    def __iter__(self):
        return iter(self.targets)

    def __len__(self) -> int:
        return len(self.targets)


# ==============================================================================
# Verification and summary
# ==============================================================================


DEFAULT_SUGGESTIONS = (
    "A process/service still holds the device (use lsof/fuser to find it); stop it then retry.",
    "Multipath/device-mapper is still active; consider stopping multipathd and removing maps.",
    "Ceph may be re-creating OSD mappings; ensure the cluster is stopped for this disk.",
    "As a last resort: reboot to flush kernel mappings.",
    "Inspect with: lsblk, lsof /dev/<node>, pvs, vgs, lvs, mdadm --examine.",
    "Use --include-dm, --zap-ceph, --zap-zfs as appropriate and re-run.",
)


@dataclass(frozen=True)
class VerificationReport:
    device: str
    partitions: tuple[str, ...] = ()
    physical_volumes: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()

    @property
    def is_clean(self) -> bool:
        return not self.partitions and not self.physical_volumes


class TargetState(Enum):
    CLEAN = "clean"
    RESIDUAL = "residual state"
    SKIPPED = "skipped"
    FAILED = "failed validation"
    INTERRUPTED = "interrupted"
    PREVIEWED = "previewed"


@dataclass
class TargetOutcome:
    """Everything the orchestrator learned about one target."""

    device: str
    stages: list[StageResult] = field(default_factory=list)
    report: Optional[VerificationReport] = None
    confirmed: bool = True
    interrupted: bool = False
    preview: bool = False

    @property
    def warnings(self) -> list[StepResult]:
        return [warning for stage in self.stages for warning in stage.warnings]

    @property
    def state(self) -> TargetState:
        if self.interrupted:
            return TargetState.INTERRUPTED
        if not self.confirmed:
            return TargetState.SKIPPED
        if any(stage.is_fatal for stage in self.stages):
            return TargetState.FAILED
        if self.preview:
            return TargetState.PREVIEWED
        if self.report is None:
            return TargetState.SKIPPED
        return TargetState.CLEAN if self.report.is_clean else TargetState.RESIDUAL


@dataclass
class InvocationSummary:
    outcomes: list[TargetOutcome] = field(default_factory=list)
    interrupted: bool = False

    def lines(self) -> list[str]:
        return [f"{outcome.device}: {outcome.state.value}" for outcome in self.outcomes]
