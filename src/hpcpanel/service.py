# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/service.py

from __future__ import annotations

import logging
import shlex
import threading
import time
from typing import Callable, List, Mapping, Optional, Union

from hpcpanel.config.models import PanelSettings
from hpcpanel.errors import AlreadyRunningError, TopologyValidationError
from hpcpanel.observers.dispatcher import EventBus
from hpcpanel.pipeline.orchestrator import DeploymentPipeline
from hpcpanel.slurm.jobs import SQUEUE_COMMAND, JobRecord, parse_squeue
from hpcpanel.status.board import IDLE, DeploymentState, StatusBoard
from hpcpanel.topology.models import ClusterTopology, NodeSpec
from hpcpanel.topology.registry import TopologyRegistry
from hpcpanel.transport.interface import Transport
from hpcpanel.transport.ssh_runner import SSHTransport

log = logging.getLogger("hpcpanel.service")

SCHEDULER_ACTIONS = ("start", "stop", "restart")


class DeploymentService:
    """
    Entry point for callers outside the pipeline (HTTP layer, CLI).

    Owns the single StatusBoard. At most one deployment runs at a time;
    a second start_deploy while one is in flight raises
    AlreadyRunningError.
    """

    def __init__(
        self,
        settings: Optional[PanelSettings] = None,
        *,
        registry: Optional[TopologyRegistry] = None,
        transport_factory: Optional[Callable[[], Transport]] = None,
        board: Optional[StatusBoard] = None,
        bus: Optional[EventBus] = None,
        pipeline_factory: Optional[Callable[..., DeploymentPipeline]] = None,
        sleep: Callable[[float], None] = time.sleep,
        run_id: Optional[str] = None,
    ):
        self.settings = settings or PanelSettings()
        self.registry = registry or TopologyRegistry(self.settings.paths.topology_file)
        self.transport_factory = transport_factory or (lambda: SSHTransport(self.settings.ssh))
        self.board = board or StatusBoard()
        self.bus = bus or EventBus()
        self.pipeline_factory = pipeline_factory or DeploymentPipeline
        self.sleep = sleep
        self.run_id = run_id
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    # ------------------ topology ------------------

    def get_topology(self) -> ClusterTopology:
        return self.registry.load()

    def save_topology(self, topology: Union[ClusterTopology, Mapping]) -> ClusterTopology:
        if not isinstance(topology, ClusterTopology):
            topology = ClusterTopology.from_payload(topology)
        self.registry.save(topology)
        return topology

    # ------------------ deployment ------------------

    def start_deploy(self) -> None:
        """Launch a deployment in the background and return at once."""
        with self._lock:
            state = self.board.snapshot()
            if state.phase != IDLE and not state.is_terminal:
                raise AlreadyRunningError(f"a deployment is already running (phase: {state.phase})")

            topology = self.get_topology()
            pipeline = self.pipeline_factory(
                self.transport_factory(),
                self.settings,
                self.board,
                bus=self.bus,
                sleep=self.sleep,
                run_id=self.run_id,
            )
            # busy from here on, before the thread starts
            self.board.begin()
            self._thread = threading.Thread(
                target=self._run, args=(pipeline, topology), name="hpcpanel-deploy", daemon=True
            )
            self._thread.start()

    def _run(self, pipeline: DeploymentPipeline, topology: ClusterTopology) -> None:
        try:
            state = pipeline.run(topology)
        except Exception as e:
            # stage failures never get here, pipeline.run records them
            log.exception("deployment crashed")
            self.board.fail(f"deployment crashed: {e}")
            return
        log.info(f"deployment ended in phase {state.phase}")

    def wait(self, timeout: Optional[float] = None) -> DeploymentState:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return self.board.snapshot()

    def get_status(self) -> DeploymentState:
        return self.board.snapshot()

    def get_logs(self) -> List[str]:
        return self.board.logs()

    # ------------------ scheduler control ------------------

    def _on_primary(self, fn: Callable[[Transport, NodeSpec], object]):
        topology = self.get_topology()
        topology.configured_nodes()
        transport = self.transport_factory()
        try:
            return fn(transport, topology.primary_node)
        finally:
            transport.close()

    def scheduler_status(self) -> str:
        """``not_installed``, ``stopped`` or ``running`` for the controller."""
        return self._on_primary(self._controller_state)

    def _controller_state(self, transport: Transport, node: NodeSpec) -> str:
        s = self.settings.scheduler
        if not transport.run(node, f"test -x {shlex.quote(s.controller_binary)}", check=False).ok:
            return "not_installed"
        if transport.run(node, f"systemctl is-active --quiet {shlex.quote(s.controller_unit)}", check=False).ok:
            return "running"
        return "stopped"

    def control_scheduler(self, action: str) -> None:
        if action not in SCHEDULER_ACTIONS:
            raise TopologyValidationError(
                f"unknown scheduler action {action!r}, expected one of {', '.join(SCHEDULER_ACTIONS)}"
            )
        unit = self.settings.scheduler.controller_unit
        self._on_primary(lambda t, node: t.run(node, f"systemctl {action} {shlex.quote(unit)}"))
        log.info(f"{action} {unit} on primary")

    def list_jobs(self) -> List[JobRecord]:
        """Current queue on the primary; empty when the controller is not running."""

        def query(transport: Transport, node: NodeSpec) -> List[JobRecord]:
            if self._controller_state(transport, node) != "running":
                return []
            res = transport.run(node, SQUEUE_COMMAND, check=False)
            if not res.ok:
                log.warning(f"squeue failed on {node.name}: {res.stderr.strip()}")
                return []
            return parse_squeue(res.stdout)

        return self._on_primary(query)
