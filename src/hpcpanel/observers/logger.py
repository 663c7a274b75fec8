# src/hpcpanel/observers/logger.py
from __future__ import annotations
import logging
from .events import BaseEvent, DeploySummary, StageFailed

_CONTEXT = ("ts", "run_id", "cluster")


class LoggerObserver:
    """
    Writes lifecycle events to a logger.

    Failures are logged at ERROR, everything else at INFO. The run id and
    cluster are left out: the run-scoped log file already carries them.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    @staticmethod
    def level_for(event: BaseEvent) -> int:
        if isinstance(event, StageFailed):
            return logging.ERROR
        if isinstance(event, DeploySummary) and event.status != "finished":
            return logging.ERROR
        return logging.INFO

    def notify(self, event: BaseEvent) -> None:
        fields = ", ".join(f"{k}={v}" for k, v in event.dict().items() if k not in _CONTEXT and v is not None)
        self.logger.log(self.level_for(event), f"[EVENT] {event.__class__.__name__}: {fields}")
