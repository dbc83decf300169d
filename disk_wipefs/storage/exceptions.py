"""Custom exceptions for disk metadata cleanup.

This module defines the exception hierarchy used by disk-wipefs. Only the
fatal conditions of an invocation (and target validation) are exceptions;
best-effort sub-steps report failure through ``StepResult`` instead.

Exception Hierarchy:
    WipeError (base)
        ├── PrivilegeError
        ├── NoTargetsError
        └── ToolsMissingError

Usage:
    from disk_wipefs.storage.exceptions import NoTargetsError

    if not targets:
        raise NoTargetsError(requested)
"""

from __future__ import annotations

from typing import Sequence


class WipeError(Exception):
    """Base exception for all disk-wipefs errors."""

    exit_code = 1


class PrivilegeError(WipeError):
    """The invocation is not running with root privilege."""

    def __init__(self, euid: int):
        self.euid = euid
        super().__init__("This tool must be run as root.")


class NoTargetsError(WipeError):
    """Target resolution produced an empty target set."""

    def __init__(self, requested: Sequence[str], rejected: Sequence[tuple[str, str]] = ()):
        self.requested = list(requested)
        self.rejected = list(rejected)
        msg = "No valid target disks"
        if self.requested:
            msg += f" (requested: {' '.join(self.requested)})"
        super().__init__(msg)


class ToolsMissingError(WipeError):
    """Required collaborator tools are not installed."""

    def __init__(self, tools: Sequence[str], install_hint: str | None = None):
        self.tools = list(tools)
        self.install_hint = install_hint
        msg = f"Missing required tools: {', '.join(self.tools)}. Please install them manually"
        if install_hint:
            msg += f" (e.g. {install_hint})"
        super().__init__(msg + " and re-run.")
