"""Per-invocation options and collaborators shared by every stage."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from disk_wipefs.config import settings
from disk_wipefs.domain.models import ExecutionMode
from disk_wipefs.storage.commands import CommandRunner
from disk_wipefs.storage.gateway import SystemGateway
from disk_wipefs.storage.tools import ToolSet


@dataclass(frozen=True)
class WipeOptions:
    mode: ExecutionMode = ExecutionMode.INTERACTIVE
    zap_ceph: bool = False
    zap_zfs: bool = False
    discard: bool = False
    include_dm: bool = False
    force: bool = False
    exclusions: tuple[str, ...] = ()
    residual_wipe_mib: int = settings.DEFAULT_RESIDUAL_WIPE_MIB
    settle_delay: float = settings.DEFAULT_SETTLE_DELAY_SECONDS
    udev_timeout: int = settings.DEFAULT_UDEV_SETTLE_TIMEOUT_SECONDS
    kpartx_delay: float = settings.DEFAULT_KPARTX_DELAY_SECONDS
    prompt_timeout: float = settings.DEFAULT_PROMPT_TIMEOUT_SECONDS

    @classmethod
    def from_settings(cls, **overrides) -> WipeOptions:
        """Options seeded from the settings file, then command-line overrides."""
        values = dict(
            residual_wipe_mib=settings.get_int(
                "residual_wipe_mib", settings.DEFAULT_RESIDUAL_WIPE_MIB
            ),
            settle_delay=settings.get_float(
                "settle_delay_seconds", settings.DEFAULT_SETTLE_DELAY_SECONDS
            ),
            udev_timeout=settings.get_int(
                "udev_settle_timeout_seconds", settings.DEFAULT_UDEV_SETTLE_TIMEOUT_SECONDS
            ),
            kpartx_delay=settings.get_float(
                "kpartx_delay_seconds", settings.DEFAULT_KPARTX_DELAY_SECONDS
            ),
            prompt_timeout=settings.get_float(
                "prompt_timeout_seconds", settings.DEFAULT_PROMPT_TIMEOUT_SECONDS
            ),
        )
        values.update(overrides)
        return cls(**values)

    @property
    def is_preview(self) -> bool:
        return self.mode.is_preview


@dataclass
class PipelineContext:
    runner: CommandRunner
    gateway: SystemGateway
    tools: ToolSet
    options: WipeOptions = field(default_factory=WipeOptions)

    @classmethod
    def create(
        cls,
        options: WipeOptions,
        tools: ToolSet,
        runner: Optional[CommandRunner] = None,
    ) -> PipelineContext:
        runner = runner or CommandRunner(dry_run=options.is_preview)
        return cls(runner=runner, gateway=SystemGateway(runner, tools), tools=tools, options=options)
