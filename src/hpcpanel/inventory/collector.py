# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/inventory/collector.py

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Optional

from hpcpanel.errors import InventoryError
from hpcpanel.topology.models import HardwareFacts, NodeFacts, NodeSpec
from hpcpanel.transport.interface import Transport

log = logging.getLogger("hpcpanel.inventory")

CPU_QUERY = "nproc"
MEMORY_QUERY = "free -m | awk '/^Mem:/{print $2}'"


def _parse_positive_int(node: NodeSpec, what: str, raw: str) -> int:
    text = raw.strip()
    try:
        value = int(text)
    except ValueError:
        raise InventoryError(f"{node.name}: cannot parse {what} from {text!r}") from None
    if value <= 0:
        raise InventoryError(f"{node.name}: {what} must be positive, got {value}")
    return value


class HardwareInventoryCollector:
    """
    Reads logical CPU count and total memory (MiB) from every node.

    Facts are collected fresh on every run. Any node failing aborts the
    whole collection: partial facts would yield an invalid slurm.conf.
    """

    def __init__(self, transport: Transport, progress: Optional[Callable[[str], None]] = None):
        self.transport = transport
        self._say = progress or log.info

    def collect_node(self, node: NodeSpec) -> NodeFacts:
        cpus = self.transport.run(node, CPU_QUERY).stdout
        mem = self.transport.run(node, MEMORY_QUERY).stdout
        facts = NodeFacts(
            cpu_count=_parse_positive_int(node, "CPU count", cpus),
            memory_mib=_parse_positive_int(node, "memory", mem),
        )
        self._say(f"Node {node.name}: CPUs={facts.cpu_count}, Memory={facts.memory_mib}MB")
        return facts

    def collect(self, nodes: Iterable[NodeSpec]) -> HardwareFacts:
        facts: Dict[str, NodeFacts] = {}
        for node in nodes:
            facts[node.name] = self.collect_node(node)
        return HardwareFacts(facts)
