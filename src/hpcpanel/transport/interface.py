# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/transport/interface.py

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from hpcpanel.topology.models import NodeSpec


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class Transport(Protocol):
    """
    Remote command execution against a single node.

    run/run_script raise NodeUnreachableError when the node cannot be
    reached and, with check=True, NonZeroExitError on a failed command.
    Calls block until the remote side finishes.
    """

    def run(self, node: NodeSpec, command: str, *, check: bool = True) -> CommandResult: ...

    def run_script(self, node: NodeSpec, script: str, *, check: bool = True) -> CommandResult: ...

    def fetch(self, node: NodeSpec, remote_path: str, local_path: Path) -> None: ...

    def push(self, node: NodeSpec, local_path: Path, remote_path: str) -> None: ...

    def put_text(self, node: NodeSpec, content: str, remote_path: str) -> None: ...

    def close(self) -> None: ...
