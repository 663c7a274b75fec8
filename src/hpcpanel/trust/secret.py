# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/trust/secret.py

from __future__ import annotations

import hashlib
import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from hpcpanel.config.models import MungeSettings
from hpcpanel.topology.models import NodeSpec
from hpcpanel.transport.interface import Transport

log = logging.getLogger("hpcpanel.trust")


@dataclass
class SecretDistribution:
    minted: bool = False
    pushed: List[str] = field(default_factory=list)
    repaired: List[str] = field(default_factory=list)   # owner/mode fixed
    started: List[str] = field(default_factory=list)    # service (re)started


class SharedSecretDistributor:
    """
    Mints the cluster authentication key on the primary (only when
    absent) and copies it byte-for-byte to every other node.

    Order: mint or detect, fetch to staging, push to followers, fix
    ownership and mode everywhere, then start the service on all nodes.
    Every step probes first, so a rerun against a healthy cluster makes
    no changes.
    """

    def __init__(
        self,
        transport: Transport,
        settings: MungeSettings | None = None,
        staging_dir: Path = Path("~/.hpcpanel/staging"),
        progress: Optional[Callable[[str], None]] = None,
    ):
        self.transport = transport
        self.settings = settings or MungeSettings()
        self.staging_dir = Path(staging_dir).expanduser()
        self._say = progress or log.info

    @property
    def staged_key(self) -> Path:
        return self.staging_dir / Path(self.settings.key_path).name

    # ------------------ steps ------------------

    def _mint(self, primary: NodeSpec) -> bool:
        key = shlex.quote(self.settings.key_path)
        if self.transport.run(primary, f"test -f {key}", check=False).ok:
            self._say(f"Munge key already present on {primary.name}")
            return False
        self._say(f"Creating munge key on {primary.name}")
        self.transport.run(primary, self.settings.create_key_command)
        return True

    def _stage(self, primary: NodeSpec) -> str:
        self.staging_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        os.chmod(self.staging_dir, 0o700)
        # pre-create the file so the fetched secret is never group/world readable
        self.staged_key.touch(mode=0o600, exist_ok=True)
        os.chmod(self.staged_key, 0o600)
        self.transport.fetch(primary, self.settings.key_path, self.staged_key)
        return hashlib.sha256(self.staged_key.read_bytes()).hexdigest()

    def _push(self, node: NodeSpec, digest: str) -> bool:
        key = shlex.quote(self.settings.key_path)
        res = self.transport.run(node, f"sha256sum {key}", check=False)
        if res.ok and res.stdout.split()[:1] == [digest]:
            self._say(f"Munge key on {node.name} is current")
            return False
        self._say(f"Copying munge key to {node.name}")
        self.transport.push(node, self.staged_key, self.settings.key_path)
        return True

    def _ensure_account(self, node: NodeSpec) -> None:
        user = shlex.quote(self.settings.service_user)
        if self.transport.run(node, f"id -u {user}", check=False).ok:
            return
        self._say(f"Creating {self.settings.service_user} account on {node.name}")
        self.transport.run(node, f"useradd -r -s /sbin/nologin {user}")

    def _fix_permissions(self, node: NodeSpec) -> bool:
        key = shlex.quote(self.settings.key_path)
        wanted = f"{self.settings.owner} {self.settings.mode}"
        res = self.transport.run(node, f"stat -c '%U:%G %a' {key}", check=False)
        if res.ok and res.stdout.strip() == wanted:
            return False
        self.transport.run(
            node,
            f"chown {shlex.quote(self.settings.owner)} {key} && chmod {self.settings.mode} {key}",
        )
        return True

    def _start(self, node: NodeSpec, key_changed: bool) -> bool:
        unit = shlex.quote(self.settings.unit)
        if key_changed:
            self._say(f"Restarting {self.settings.unit} on {node.name}")
            self.transport.run(node, f"systemctl enable {unit} && systemctl restart {unit}")
            return True
        if self.transport.run(node, f"systemctl is-active --quiet {unit}", check=False).ok:
            return False
        self._say(f"Starting {self.settings.unit} on {node.name}")
        self.transport.run(node, f"systemctl enable --now {unit}")
        return True

    # ------------------ entry point ------------------

    def distribute(self, nodes: Sequence[NodeSpec], primary: NodeSpec) -> SecretDistribution:
        report = SecretDistribution()
        report.minted = self._mint(primary)
        digest = self._stage(primary)

        changed = {primary.name: report.minted}
        for node in nodes:
            if node.name == primary.name:
                continue
            pushed = self._push(node, digest)
            changed[node.name] = pushed
            if pushed:
                report.pushed.append(node.name)

        for node in nodes:
            self._ensure_account(node)
            if self._fix_permissions(node):
                report.repaired.append(node.name)

        # only once every node holds the key
        for node in nodes:
            if self._start(node, changed.get(node.name, False) or report.minted):
                report.started.append(node.name)

        return report
