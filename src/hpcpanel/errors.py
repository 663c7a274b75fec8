# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/errors.py
from __future__ import annotations


class DeploymentError(RuntimeError):
    """Base class for cluster bootstrap failures."""


class NodeUnreachableError(DeploymentError, ConnectionError):
    """Raised when a node cannot be reached or refuses our credentials."""

    def __init__(self, node: str, address: str, reason: str):
        self.node = node
        self.address = address
        self.reason = reason
        super().__init__(f"cannot reach {node} ({address}): {reason}")


class NonZeroExitError(DeploymentError):
    """Raised when a remote command ran but reported failure."""

    def __init__(self, node: str, command: str, exit_status: int, stdout: str = "", stderr: str = ""):
        self.node = node
        self.command = command
        self.exit_status = exit_status
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout).strip()
        msg = f"command on {node} exited with status {exit_status}"
        if detail:
            msg += f": {detail.splitlines()[-1]}"
        super().__init__(msg)


class TopologyValidationError(DeploymentError, ValueError):
    """Raised for topology or configuration input we refuse to act on."""


class NoNodesConfiguredError(TopologyValidationError):
    """Raised when no node in the topology has an address."""

    def __init__(self, message: str = "no nodes configured"):
        super().__init__(message)


class InventoryError(DeploymentError):
    """Raised when hardware facts cannot be read from a node."""


class VerificationError(DeploymentError):
    """Raised when the post-deployment smoke test fails."""


class AlreadyRunningError(DeploymentError):
    """Raised when a deployment is requested while one is in flight."""


class StageError(DeploymentError):
    """Wraps the first fatal failure of a pipeline stage."""

    def __init__(self, stage: str, title: str, cause: BaseException):
        self.stage = stage
        self.title = title
        self.cause = cause
        super().__init__(f"{title} failed: {cause}")
