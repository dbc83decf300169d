"""Terminal confirmation prompts for interactive mode."""

from __future__ import annotations

import select
import sys
import time
from typing import Callable, Optional, TextIO

from disk_wipefs.logging import LoggerFactory
from disk_wipefs.pipeline.interrupts import InterruptFlag
from disk_wipefs.storage.gateway import SystemGateway


log = LoggerFactory.for_system()

YES_ANSWERS = {"y", "yes"}
POLL_INTERVAL = 0.2


def _wait_for_answer(
    stream: TextIO,
    timeout: Optional[float],
    cancelled: Optional[Callable[[], bool]],
) -> bool:
    """Wait until a line can be read. False on timeout or cancellation.

    With ``cancelled`` the wait is sliced into short polls, since a signal
    handler that only sets a flag does not end a restarted ``select``.
    """
    deadline = time.monotonic() + timeout if timeout and timeout > 0 else None
    while cancelled is None or not cancelled():
        remaining = None if deadline is None else deadline - time.monotonic()
        if remaining is not None and remaining <= 0:
            break
        wait = remaining if cancelled is None else min(POLL_INTERVAL, remaining or POLL_INTERVAL)
        ready, _, _ = select.select([stream], [], [], wait)
        if ready:
            return True
        if cancelled is None:
            break
    else:
        log.warning("Interrupted; treating confirmation as declined")
        return False
    log.warning(f"No answer within {timeout:g}s; treating as declined")
    return False


def ask_yes_no(
    question: str,
    timeout: Optional[float] = None,
    stream: Optional[TextIO] = None,
    output: Optional[TextIO] = None,
    cancelled: Optional[Callable[[], bool]] = None,
) -> bool:
    """Ask a yes/no question; anything but an explicit yes means no.

    End of input, a non-interactive stdin, an elapsed timeout and a true
    ``cancelled()`` all count as "no".
    """
    stream = stream or sys.stdin
    output = output or sys.stderr
    if not stream.isatty():
        log.warning("stdin is not a terminal; treating confirmation as declined")
        return False

    output.write(f"{question} [y/N]: ")
    output.flush()
    if cancelled is not None or (timeout is not None and timeout > 0):
        if not _wait_for_answer(stream, timeout, cancelled):
            output.write("\n")
            return False
    answer = stream.readline()
    if not answer:
        return False
    return answer.strip().lower() in YES_ANSWERS


def describe_target(device: str, gateway: SystemGateway) -> str:
    lines = [f"About to wipe ALL metadata on {gateway.describe(device)}"]
    mounts = gateway.list_mounts(device)
    if mounts:
        lines.append("Mounted partitions that will be unmounted:")
        lines.extend(f"  {node} on {mountpoint}" for node, mountpoint in mounts)
    return "\n".join(lines)


def target_confirmer(
    gateway: SystemGateway,
    timeout: Optional[float] = None,
    ask: Callable[..., bool] = ask_yes_no,
    interrupt: Optional[InterruptFlag] = None,
) -> Callable[[str], bool]:
    """Build the per-target confirmation callback used by the orchestrator.

    A pending interrupt declines at once, including one that arrives while
    the question is waiting for an answer.
    """
    cancelled = None if interrupt is None else (lambda: interrupt.is_set)

    def confirm(device: str) -> bool:
        if cancelled is not None and cancelled():
            return False
        print(describe_target(device, gateway), file=sys.stderr)
        return ask(f"Proceed with {device}?", timeout=timeout, cancelled=cancelled)

    return confirm
