# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/status/board.py

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, List, Optional

log = logging.getLogger("hpcpanel.status")

IDLE = "idle"
CHECKING = "checking"
FINISHED = "finished"
FAILED = "failed"
TERMINAL_PHASES = frozenset({FINISHED, FAILED})


@dataclass
class DeploymentState:
    phase: str = IDLE
    progress: int = 0
    message: str = ""
    error_message: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def as_dict(self) -> dict:
        return {
            "phase": self.phase,
            "progress": self.progress,
            "message": self.message,
            "error_message": self.error_message,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }


class StatusBoard:
    """
    Deployment status plus an append-only log.

    Written by the single pipeline thread, read by any number of
    observers. Readers only ever get copies.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._lock = threading.Lock()
        self._clock = clock
        self._state = DeploymentState()
        self._logs: List[str] = []

    # ------------------ writers ------------------

    def begin(self, message: str = "Checking nodes") -> None:
        """Start a new run: overwrites the previous state, keeps the log."""
        with self._lock:
            self._state = DeploymentState(
                phase=CHECKING,
                progress=0,
                message=message,
                start_time=self._clock(),
            )

    def set_phase(self, phase: str, progress: int, message: str = "") -> None:
        with self._lock:
            self._state.phase = phase
            self._state.progress = max(0, min(100, progress))
            if message:
                self._state.message = message

    def set_message(self, message: str) -> None:
        with self._lock:
            self._state.message = message

    def append_log(self, line: str) -> None:
        stamped = f"[{self._clock().strftime('%Y-%m-%d %H:%M:%S')}] {line}"
        with self._lock:
            self._logs.append(stamped)
        log.info(line)

    def fail(self, error: str) -> None:
        with self._lock:
            self._state.phase = FAILED
            self._state.error_message = error
            self._state.message = error
            self._state.end_time = self._clock()
        self.append_log(f"ERROR: {error}")

    def finish(self, message: str = "Deployment completed") -> None:
        with self._lock:
            self._state.phase = FINISHED
            self._state.progress = 100
            self._state.message = message
            self._state.end_time = self._clock()
        self.append_log(message)

    # ------------------ readers ------------------

    def snapshot(self) -> DeploymentState:
        with self._lock:
            return replace(self._state)

    def logs(self) -> List[str]:
        with self._lock:
            return list(self._logs)
