"""Deferred handling of SIGINT.

The first Ctrl+C only sets a flag; the command that is running finishes and
the orchestrator stops before the next stage. A second Ctrl+C raises
``KeyboardInterrupt`` as usual.
"""

from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from typing import Generator

from disk_wipefs.logging import LoggerFactory


log = LoggerFactory.for_system()


class InterruptFlag:
    def __init__(self):
        self._event = threading.Event()

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    def set(self) -> None:
        self._event.set()

    def _handle(self, signum, frame) -> None:
        if self._event.is_set():
            raise KeyboardInterrupt
        self._event.set()
        log.warning("Interrupt received; stopping after the current step (Ctrl+C again to abort now)")

    @contextmanager
    def installed(self) -> Generator[InterruptFlag, None, None]:
        """Install the SIGINT handler for the duration of the block."""
        if threading.current_thread() is not threading.main_thread():
            yield self
            return
        previous = signal.signal(signal.SIGINT, self._handle)
        try:
            yield self
        finally:
            signal.signal(signal.SIGINT, previous)
