# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/trust/keys.py

from __future__ import annotations

import logging
import os
import shlex
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import paramiko

from hpcpanel.config.models import SSHSettings
from hpcpanel.topology.models import NodeSpec
from hpcpanel.transport.interface import Transport

log = logging.getLogger("hpcpanel.trust")

_KEY_TYPES = (paramiko.RSAKey, paramiko.Ed25519Key, paramiko.ECDSAKey)
AUTHORIZED_KEYS = "~/.ssh/authorized_keys"


class KeyAccessBootstrapper:
    """
    Grants the orchestrator key-based root access to every node.

    The local keypair is generated once and reused across runs. A node
    whose authorized_keys already holds the public key is left alone.
    """

    def __init__(
        self,
        transport: Transport,
        settings: SSHSettings | None = None,
        progress: Optional[Callable[[str], None]] = None,
    ):
        self.transport = transport
        self.settings = settings or SSHSettings()
        self._say = progress or log.info

    @property
    def key_path(self) -> Path:
        return Path(self.settings.key_path).expanduser()

    @property
    def public_key_path(self) -> Path:
        return self.key_path.with_name(self.key_path.name + ".pub")

    def _load_private_key(self) -> paramiko.PKey:
        for key_cls in _KEY_TYPES:
            try:
                return key_cls.from_private_key_file(str(self.key_path))
            except paramiko.SSHException:
                continue
        raise paramiko.SSHException(f"unsupported private key format: {self.key_path}")

    def ensure_keypair(self) -> str:
        """
        Return the public key line, generating the keypair if missing.
        """
        if self.public_key_path.exists() and self.key_path.exists():
            self._say(f"Reusing SSH key {self.key_path}")
            return self.public_key_path.read_text().strip()

        if self.key_path.exists():
            key = self._load_private_key()
        else:
            self._say(f"Generating {self.settings.key_bits}-bit RSA key at {self.key_path}")
            self.key_path.parent.mkdir(parents=True, exist_ok=True)
            os.chmod(self.key_path.parent, 0o700)
            key = paramiko.RSAKey.generate(self.settings.key_bits)
            key.write_private_key_file(str(self.key_path))
            os.chmod(self.key_path, 0o600)

        public = f"{key.get_name()} {key.get_base64()} hpcpanel"
        self.public_key_path.write_text(public + "\n")
        return public

    def authorize(self, nodes: Iterable[NodeSpec]) -> List[str]:
        """
        Push the public key to each node that has an initial credential.

        Returns the names of nodes that were changed. Any failure
        propagates: a partially trusted cluster is not usable.
        """
        public = self.ensure_keypair()
        quoted = shlex.quote(public)
        changed: List[str] = []

        for node in nodes:
            if not node.credential:
                log.warning(f"[{node.name}] no initial credential, assuming key access is already granted")
                continue

            probe = self.transport.run(node, f"grep -qxF {quoted} {AUTHORIZED_KEYS}", check=False)
            if probe.ok:
                self._say(f"SSH key already authorized on {node.name}")
                continue

            self._say(f"Authorizing SSH key on {node.name} ({node.address})")
            self.transport.run(node, self.append_command(quoted))
            changed.append(node.name)

        return changed

    @staticmethod
    def append_command(quoted_key: str) -> str:
        """Shell command appending the key on its own line, keeping existing entries intact."""
        f = AUTHORIZED_KEYS
        return (
            f"install -d -m 700 ~/.ssh && touch {f} && "
            f'{{ [ ! -s {f} ] || [ -z "$(tail -c1 {f})" ] || echo >> {f}; }} && '
            f"echo {quoted_key} >> {f} && chmod 600 {f}"
        )
