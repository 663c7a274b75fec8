# src/hpcpanel/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single deploy invocation
    cluster: str      # scheduler cluster name

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(cluster: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "cluster": cluster,
    }


# ---------------------------------------------------------------------
# Deployment lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class DeployStarted(BaseEvent):
    nodes: List[str]
    primary: str


@dataclass(frozen=True)
class StageStarted(BaseEvent):
    stage: str
    index: int
    total: int


@dataclass(frozen=True)
class StageSucceeded(BaseEvent):
    stage: str
    duration_ms: int


@dataclass(frozen=True)
class StageFailed(BaseEvent):
    stage: str
    error: str


@dataclass(frozen=True)
class DeploySummary(BaseEvent):
    status: str       # "finished" | "failed"
    completed: int    # stages that succeeded
    error: Optional[str] = None
