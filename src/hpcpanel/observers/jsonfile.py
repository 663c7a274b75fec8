from __future__ import annotations
import json
import threading
from pathlib import Path
from .events import BaseEvent


class JsonFileObserver:
    """
    Event journal for one deployment run, one JSON object per line.

    Each record carries a ``type`` key with the event class name. Lines
    are flushed per event so a crashed run still leaves its trail.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def notify(self, event: BaseEvent) -> None:
        line = json.dumps({"type": event.__class__.__name__, **event.dict()}, default=str)
        with self._lock, self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
