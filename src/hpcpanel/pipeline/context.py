# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/pipeline/context.py

from __future__ import annotations

import hashlib
import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Set

from hpcpanel.config.models import PanelSettings
from hpcpanel.status.board import StatusBoard
from hpcpanel.slurm.accounting import AccountingCredentials
from hpcpanel.topology.models import ClusterTopology, HardwareFacts, NodeSpec
from hpcpanel.transport.interface import CommandResult, Transport

log = logging.getLogger("hpcpanel.pipeline")

Synthesizer = Callable[..., str]


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class StageContext:
    """
    Everything a stage may touch during one run.

    ``nodes`` is already filtered to configured nodes, in topology order.
    ``facts`` and ``credentials`` are filled in by the stages that
    produce them.
    """

    transport: Transport
    settings: PanelSettings
    topology: ClusterTopology
    nodes: List[NodeSpec]
    board: StatusBoard
    synthesizer: Synthesizer
    sleep: Callable[[float], None]
    facts: Optional[HardwareFacts] = None
    credentials: Optional[AccountingCredentials] = None
    config_changed: Set[str] = field(default_factory=set)

    @property
    def primary(self) -> NodeSpec:
        return self.topology.primary_node

    @property
    def followers(self) -> List[NodeSpec]:
        return [n for n in self.nodes if n.name != self.primary.name]

    @property
    def staging_dir(self) -> Path:
        return Path(self.settings.paths.staging_dir).expanduser()

    def log(self, line: str) -> None:
        self.board.append_log(line)

    # ------------------ command helpers ------------------

    def run(self, node: NodeSpec, command: str) -> CommandResult:
        """Fatal: a non-zero exit raises."""
        return self.transport.run(node, command)

    def probe(self, node: NodeSpec, command: str) -> bool:
        """Read-only check; True when the command exits 0."""
        return self.transport.run(node, command, check=False).ok

    def run_soft(self, node: NodeSpec, command: str, what: str) -> bool:
        """Non-zero exit is logged as a warning and the stage continues."""
        res = self.transport.run(node, command, check=False)
        if not res.ok:
            detail = (res.stderr or res.stdout).strip().splitlines()[-1:] or [f"exit {res.exit_status}"]
            self.log(f"Warning: {what} on {node.name}: {detail[0]}")
        return res.ok

    def ensure_packages(self, node: NodeSpec, packages: Sequence[str]) -> bool:
        """Install ``packages`` unless rpm already knows all of them."""
        if not packages:
            return False
        names = " ".join(shlex.quote(p) for p in packages)
        if self.probe(node, f"rpm -q {names}"):
            return False
        self.log(f"Installing {', '.join(packages)} on {node.name}")
        self.run(node, f"dnf install -y {names}")
        return True

    def remote_digest(self, node: NodeSpec, path: str) -> str:
        res = self.transport.run(node, f"sha256sum {shlex.quote(path)}", check=False)
        if not res.ok:
            return ""
        return (res.stdout.split() or [""])[0]

    def ensure_mode(self, node: NodeSpec, path: str, owner: str, mode: str) -> bool:
        q = shlex.quote(path)
        res = self.transport.run(node, f"stat -c '%U:%G %a' {q}", check=False)
        if res.ok and res.stdout.strip() == f"{owner} {mode}":
            return False
        self.run(node, f"chown {shlex.quote(owner)} {q} && chmod {mode} {q}")
        return True
