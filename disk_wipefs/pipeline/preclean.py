"""Release every hold the running system has on a target.

Steps, in order:
    1. Unmount every mounted node on the device (lazy, then forced).
    2. ``swapoff`` every swap area on the device.
    3. Tear down LVM: deactivate each volume group with a PV on the device,
       remove its logical volumes, the group and the PV registration.
    4. Remove device-mapper nodes stacked on the device or its partitions.

Each step is best-effort; a failure is recorded as a warned step and the
stage carries on.
"""

from __future__ import annotations

from disk_wipefs.domain.models import StageResult, StepResult

from .context import PipelineContext


STAGE = "pre-clean"


def _unmount_all(device: str, ctx: PipelineContext) -> list[StepResult]:
    steps = []
    # Deepest mountpoints first so nested mounts come off before their parents.
    mounts = sorted(ctx.gateway.list_mounts(device), key=lambda item: item[1], reverse=True)
    for node, mountpoint in mounts:
        steps.append(ctx.gateway.unmount(node, mountpoint))
    return steps


def _swapoff_all(device: str, ctx: PipelineContext) -> list[StepResult]:
    return [ctx.gateway.swapoff(node) for node in ctx.gateway.list_swap(device)]


def _teardown_lvm(device: str, ctx: PipelineContext, log) -> list[StepResult]:
    gateway = ctx.gateway
    steps: list[StepResult] = []
    volumes = gateway.list_physical_volumes_on(device)
    if not volumes:
        return steps

    log.info(f"Cleaning LVM metadata on {device}")
    handled_groups: list[str] = []
    for pv, vg in volumes:
        if vg and vg not in handled_groups:
            handled_groups.append(vg)
            steps.append(gateway.deactivate_volume_group(vg))
            for lv in gateway.list_logical_volumes(vg):
                steps.append(gateway.remove_logical_volume(lv))
            steps.append(gateway.remove_volume_group(vg))
        steps.append(gateway.remove_physical_volume(pv))
    return steps


def _remove_dm_holders(device: str, ctx: PipelineContext, log) -> list[StepResult]:
    holders = ctx.gateway.list_dm_holders(device)
    if holders:
        log.info(f"Removing device-mapper nodes on {device}: {', '.join(holders)}")
    return [ctx.gateway.remove_dm_node(name) for name in holders]


def run_preclean(device: str, ctx: PipelineContext, log) -> StageResult:
    steps: list[StepResult] = []
    steps.extend(_unmount_all(device, ctx))
    steps.extend(_swapoff_all(device, ctx))
    steps.extend(_teardown_lvm(device, ctx, log))
    steps.extend(_remove_dm_holders(device, ctx, log))
    return StageResult.from_steps(STAGE, device, steps)
