"""Domain models for disk metadata cleanup.

This package contains the type-safe objects shared by the resolver, the
pipeline stages and the orchestrator.
"""

from __future__ import annotations

from .models import (
    DEFAULT_SUGGESTIONS,
    ExecutionMode,
    InvocationSummary,
    ProtectionRule,
    ResolvedTargets,
    StageResult,
    StageStatus,
    StepResult,
    TargetOutcome,
    TargetState,
    VerificationReport,
    belongs_to_device,
    device_basename,
    normalize_device,
)


__all__ = [
    "DEFAULT_SUGGESTIONS",
    "ExecutionMode",
    "InvocationSummary",
    "ProtectionRule",
    "ResolvedTargets",
    "StageResult",
    "StageStatus",
    "StepResult",
    "TargetOutcome",
    "TargetState",
    "VerificationReport",
    "belongs_to_device",
    "device_basename",
    "normalize_device",
]
