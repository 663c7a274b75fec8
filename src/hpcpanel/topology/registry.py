# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/topology/registry.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List

from .models import ClusterTopology, NodeSpec, placeholder_topology

log = logging.getLogger("hpcpanel.topology")

_KEYS = {"ip": "address", "password": "credential", "hostname": "hostname"}


class TopologyRegistry:
    """
    Persists the topology as a sectioned key=value file:

        [master]
        ip = 10.0.0.1
        password = secret
        hostname = master
        role = primary

    One section per node, in topology order. Only nodes with an address
    are written. ``role = primary`` marks the control node; without it
    the first section is the primary.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def load(self) -> ClusterTopology:
        if not self.path.exists():
            log.debug(f"no topology file at {self.path}, using placeholders")
            return placeholder_topology()

        sections: List[Dict[str, str]] = []
        current: Dict[str, str] | None = None
        for raw in self.path.read_text(encoding="utf-8").splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("[") and line.endswith("]"):
                current = {"name": line[1:-1].strip()}
                sections.append(current)
                continue
            if current is None or "=" not in line:
                continue
            key, value = line.split("=", 1)
            current[key.strip()] = value.strip()

        if not sections:
            return placeholder_topology()

        nodes = [
            NodeSpec(name=s["name"], **{field: s.get(key, "") for key, field in _KEYS.items()})
            for s in sections
        ]
        primary = next((s["name"] for s in sections if s.get("role") == "primary"), "")
        return ClusterTopology.from_payload({"nodes": nodes, "primary": primary})

    def render(self, topology: ClusterTopology) -> str:
        blocks = []
        for node in topology.nodes:
            if not node.configured:
                continue
            lines = [
                f"[{node.name}]",
                f"ip = {node.address}",
                f"password = {node.credential}",
                f"hostname = {node.hostname}",
            ]
            if node.name == topology.primary:
                lines.append("role = primary")
            blocks.append("\n".join(lines) + "\n")
        return "\n".join(blocks)

    def save(self, topology: ClusterTopology) -> None:
        content = self.render(topology)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_name(self.path.name + ".tmp")
            tmp.write_text(content, encoding="utf-8")
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        except OSError as e:
            log.error(f"failed to write topology file {self.path}: {e}")
            raise
        log.info(f"saved topology with {sum(1 for n in topology.nodes if n.configured)} node(s) to {self.path}")
