"""External command execution with dry-run support.

Every collaborator binary (lsblk, wipefs, sgdisk, dd, pvs, ...) is executed
through a ``CommandRunner``. Commands are either read-only queries, which run
in every mode, or mutating commands, which a dry-run runner only logs.

Example:
    >>> runner = CommandRunner(dry_run=True)
    >>> runner.run(["wipefs", "-a", "/dev/sdb"]).dry_run
    True
"""

from __future__ import annotations

import shlex
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from disk_wipefs.logging import LoggerFactory

@dataclass(frozen=True)
class CommandResult:
    command: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    mutating: bool = True
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def error_message(self) -> str:
        message = self.stderr.strip() or self.stdout.strip()
        if message:
            return message.splitlines()[-1]
        return f"exit code {self.returncode}"


class CommandRunner:
    """Run external commands, logging each one.

    No timeout is applied: destructive commands run for as long as the
    hardware needs.
    """

    def __init__(
        self,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.dry_run = dry_run
        self.history: list[CommandResult] = []
        self._sleep = sleep
        self.log = LoggerFactory.for_commands()
        self._output_log = self.log.bind(tags=["command", "output"])

    @property
    def mutations(self) -> list[CommandResult]:
        """Mutating commands seen so far (executed or dry-run)."""
        return [result for result in self.history if result.mutating]

    def run(
        self,
        command: Sequence[str],
        *,
        mutating: bool = True,
    ) -> CommandResult:
        command = tuple(str(part) for part in command)
        printable = shlex.join(command)
        if mutating and self.dry_run:
            self.log.info(f"[DRY-RUN] {printable}")
            result = CommandResult(command, 0, mutating=True, dry_run=True)
            self.history.append(result)
            return result

        self.log.debug(f"Running command: {printable}")
        try:
            returncode, stdout, stderr = self._execute(command)
        except OSError as error:
            self.log.debug(f"Command could not start: {printable}: {error}")
            result = CommandResult(command, 127, stderr=str(error), mutating=mutating)
        else:
            result = CommandResult(
                command,
                returncode,
                stdout=stdout or "",
                stderr=stderr or "",
                mutating=mutating,
            )
            if result.stdout.strip():
                self._output_log.trace(f"stdout: {result.stdout.strip()}")
            if result.stderr.strip():
                self._output_log.trace(f"stderr: {result.stderr.strip()}")
            self.log.debug(f"Command completed with return code {result.returncode}")
        self.history.append(result)
        return result

    def _execute(self, command: tuple[str, ...]) -> tuple[int, str, str]:
        # Children get their own session so a terminal Ctrl+C reaches only
        # this process, which finishes the running command before stopping.
        completed = subprocess.run(
            command,
            text=True,
            capture_output=True,
            start_new_session=True,
        )
        return completed.returncode, completed.stdout, completed.stderr

    def query(self, command: Sequence[str]) -> CommandResult:
        """Run a read-only command; it executes even in dry-run mode."""
        return self.run(command, mutating=False)

    def write(self, path: str, value: str) -> CommandResult:
        """Write ``value`` to a sysfs control file."""
        command = ("write", path, value.strip())
        if self.dry_run:
            self.log.info(f"[DRY-RUN] echo {shlex.quote(value.strip())} > {path}")
            result = CommandResult(command, 0, dry_run=True)
            self.history.append(result)
            return result
        self.log.debug(f"Writing {value.strip()!r} to {path}")
        try:
            with open(path, "w", encoding="utf-8") as control_file:
                control_file.write(value)
        except OSError as error:
            result = CommandResult(command, 1, stderr=str(error))
        else:
            result = CommandResult(command, 0)
        self.history.append(result)
        return result

    def pause(self, seconds: float) -> None:
        """Sleep between dependent steps; skipped in dry-run mode."""
        if seconds > 0 and not self.dry_run:
            self._sleep(seconds)
