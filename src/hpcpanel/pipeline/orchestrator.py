# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/pipeline/orchestrator.py

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, List, Optional, Sequence

from hpcpanel.config.models import PanelSettings
from hpcpanel.errors import StageError, TopologyValidationError
from hpcpanel.observers.dispatcher import EventBus
from hpcpanel.observers.events import (
    DeployStarted,
    DeploySummary,
    StageFailed,
    StageStarted,
    StageSucceeded,
    new_ctx,
)
from hpcpanel.slurm.config import synthesize
from hpcpanel.status.board import DeploymentState, StatusBoard
from hpcpanel.topology.models import ClusterTopology
from hpcpanel.transport.interface import Transport

from .context import StageContext, Synthesizer
from .stages import Stage, default_stages

log = logging.getLogger("hpcpanel.pipeline")


class DeploymentPipeline:
    """
    Runs the stages strictly in order against the configured nodes.

    The first failing stage stops the run and moves the board to
    ``failed``; nothing already applied is rolled back. A rerun relies
    on every stage skipping work that is already done.
    """

    def __init__(
        self,
        transport: Transport,
        settings: Optional[PanelSettings] = None,
        board: Optional[StatusBoard] = None,
        *,
        bus: Optional[EventBus] = None,
        stages: Optional[Sequence[Stage]] = None,
        synthesizer: Synthesizer = synthesize,
        sleep: Callable[[float], None] = time.sleep,
        run_id: Optional[str] = None,
    ):
        self.transport = transport
        self.settings = settings or PanelSettings()
        self.board = board or StatusBoard()
        self.bus = bus or EventBus()
        self.stages: List[Stage] = list(stages) if stages is not None else default_stages()
        self.synthesizer = synthesizer
        self.sleep = sleep
        self.run_id = run_id or str(uuid.uuid4())

    def _ctx(self) -> dict:
        return new_ctx(self.settings.scheduler.cluster_name, self.run_id)

    def _failed(self, message: str, completed: int) -> DeploymentState:
        self.board.fail(message)
        self.bus.emit(DeploySummary(**self._ctx(), status="failed", completed=completed, error=message))
        return self.board.snapshot()

    def run(self, topology: ClusterTopology) -> DeploymentState:
        self.board.begin()
        self.board.append_log("Starting Slurm cluster deployment")
        try:
            return self._run(topology)
        finally:
            self.transport.close()

    def _run(self, topology: ClusterTopology) -> DeploymentState:
        try:
            nodes = topology.configured_nodes()
        except TopologyValidationError as e:
            return self._failed(str(e), 0)

        names = [n.name for n in nodes]
        self.board.append_log(f"Found {len(nodes)} configured node(s): {', '.join(names)}")
        self.bus.emit(DeployStarted(**self._ctx(), nodes=names, primary=topology.primary))

        ctx = StageContext(
            transport=self.transport,
            settings=self.settings,
            topology=topology,
            nodes=nodes,
            board=self.board,
            synthesizer=self.synthesizer,
            sleep=self.sleep,
        )

        total = len(self.stages)
        for index, stage in enumerate(self.stages):
            self.board.set_phase(stage.name, index * 100 // total, f"{stage.title}...")
            self.board.append_log(f"=== {stage.title} ===")
            self.bus.emit(StageStarted(**self._ctx(), stage=stage.name, index=index + 1, total=total))

            started = time.monotonic()
            try:
                stage.execute(ctx)
            except Exception as e:
                err = StageError(stage.name, stage.title, e)
                log.debug(f"stage {stage.name} failed", exc_info=True)
                self.bus.emit(StageFailed(**self._ctx(), stage=stage.name, error=str(e)))
                return self._failed(str(err), index)

            duration_ms = int((time.monotonic() - started) * 1000)
            self.bus.emit(StageSucceeded(**self._ctx(), stage=stage.name, duration_ms=duration_ms))

        self.board.finish("Slurm cluster deployment completed")
        self.bus.emit(DeploySummary(**self._ctx(), status="finished", completed=total))
        return self.board.snapshot()
