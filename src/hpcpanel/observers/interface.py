# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/observers/interface.py

from __future__ import annotations
from typing import Protocol
from .events import BaseEvent


class Observer(Protocol):
    """
    Receiver of deployment lifecycle events emitted by the EventBus:
    DeployStarted, StageStarted, StageSucceeded, StageFailed and a final
    DeploySummary. Implementations should not raise; the bus drops
    their errors.
    """

    def notify(self, event: BaseEvent) -> None: ...
