# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/transport/ssh_runner.py

from __future__ import annotations

import logging
import socket
import time
from pathlib import Path
from typing import Callable, Dict

import paramiko

from hpcpanel.config.models import SSHSettings
from hpcpanel.errors import NodeUnreachableError, NonZeroExitError
from hpcpanel.topology.models import NodeSpec
from hpcpanel.utils.retry import RetryError, retry

from .interface import CommandResult

log = logging.getLogger("hpcpanel.transport")

# connection-level failures worth another attempt; auth errors are not
_TRANSIENT = (
    socket.timeout,
    ConnectionRefusedError,
    ConnectionResetError,
    paramiko.ssh_exception.NoValidConnectionsError,
)


class SSHTransport:
    """
    paramiko-backed transport, one cached client per node.

    The first connection to a node authenticates with the orchestrator
    key when it exists and falls back to the node's initial password;
    once the key is authorized the password is no longer needed.
    """

    def __init__(self, settings: SSHSettings | None = None, *, sleep: Callable[[float], None] = time.sleep):
        self.settings = settings or SSHSettings()
        self._sleep = sleep
        self._clients: Dict[str, paramiko.SSHClient] = {}

    # ------------------ connection ------------------

    def _open(self, node: NodeSpec) -> paramiko.SSHClient:
        key_path = Path(self.settings.key_path).expanduser()
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=node.address,
                port=self.settings.port,
                username=self.settings.user,
                key_filename=str(key_path) if key_path.exists() else None,
                password=node.credential or None,
                timeout=self.settings.connect_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except Exception:
            client.close()
            raise
        return client

    def _client(self, node: NodeSpec) -> paramiko.SSHClient:
        client = self._clients.get(node.name)
        if client is not None:
            return client

        def _on_retry(attempt: int, exc: Exception) -> None:
            log.warning(f"[{node.name}] connect attempt {attempt} failed: {exc}")

        connect = retry(
            retries=self.settings.connect_retries,
            delay=self.settings.retry_delay,
            retry_on=_TRANSIENT,
            on_retry=_on_retry,
            sleep=self._sleep,
        )(self._open)

        try:
            client = connect(node)
        except RetryError as e:
            raise NodeUnreachableError(node.name, node.address, str(e.__cause__ or e)) from e
        except (paramiko.SSHException, OSError) as e:
            raise NodeUnreachableError(node.name, node.address, str(e)) from e

        log.debug(f"[{node.name}] connected to {node.address}:{self.settings.port} as {self.settings.user}")
        self._clients[node.name] = client
        return client

    # ------------------ commands ------------------

    def _collect(self, node: NodeSpec, command: str, stdout, stderr, check: bool) -> CommandResult:
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        rc = stdout.channel.recv_exit_status()
        log.debug(f"[{node.name}] rc={rc} $ {command}")
        if err.strip():
            log.debug(f"[{node.name}] stderr: {err.strip()}")

        if check and rc != 0:
            raise NonZeroExitError(node.name, command, rc, out, err)
        return CommandResult(stdout=out, stderr=err, exit_status=rc)

    def run(self, node: NodeSpec, command: str, *, check: bool = True) -> CommandResult:
        client = self._client(node)
        try:
            _, stdout, stderr = client.exec_command(command)
        except (paramiko.SSHException, OSError) as e:
            self._drop(node)
            raise NodeUnreachableError(node.name, node.address, str(e)) from e
        return self._collect(node, command, stdout, stderr, check)

    def run_script(self, node: NodeSpec, script: str, *, check: bool = True) -> CommandResult:
        """Feed ``script`` to ``bash -s`` on the node."""
        client = self._client(node)
        try:
            stdin, stdout, stderr = client.exec_command("bash -s")
            stdin.write(script)
            stdin.flush()
            stdin.channel.shutdown_write()
        except (paramiko.SSHException, OSError) as e:
            self._drop(node)
            raise NodeUnreachableError(node.name, node.address, str(e)) from e
        first = script.strip().splitlines()[0] if script.strip() else ""
        return self._collect(node, f"bash -s: {first}", stdout, stderr, check)

    # ------------------ files ------------------

    def _sftp(self, node: NodeSpec) -> paramiko.SFTPClient:
        try:
            return self._client(node).open_sftp()
        except (paramiko.SSHException, OSError) as e:
            raise NodeUnreachableError(node.name, node.address, f"sftp: {e}") from e

    def fetch(self, node: NodeSpec, remote_path: str, local_path: Path) -> None:
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        sftp = self._sftp(node)
        try:
            sftp.get(remote_path, str(local_path))
        finally:
            sftp.close()
        log.debug(f"[{node.name}] fetched {remote_path} -> {local_path}")

    def push(self, node: NodeSpec, local_path: Path, remote_path: str) -> None:
        sftp = self._sftp(node)
        try:
            sftp.put(str(local_path), remote_path)
        finally:
            sftp.close()
        log.debug(f"[{node.name}] pushed {local_path} -> {remote_path}")

    def put_text(self, node: NodeSpec, content: str, remote_path: str) -> None:
        sftp = self._sftp(node)
        try:
            with sftp.open(remote_path, "w") as f:
                f.write(content)
        finally:
            sftp.close()
        log.debug(f"[{node.name}] wrote {len(content)} bytes to {remote_path}")

    # ------------------ lifecycle ------------------

    def _drop(self, node: NodeSpec) -> None:
        client = self._clients.pop(node.name, None)
        if client is not None:
            client.close()

    def close(self) -> None:
        for name in list(self._clients):
            self._clients.pop(name).close()
