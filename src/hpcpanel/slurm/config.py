# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/slurm/config.py

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from hpcpanel.config.models import AccountingSettings, SchedulerSettings
from hpcpanel.errors import InventoryError
from hpcpanel.topology.models import ClusterTopology, HardwareFacts

from .accounting import AccountingCredentials
from .template_renderer import TemplateRenderer

# share of physical memory advertised to the scheduler
MEMORY_RESERVE_PERCENT = 90

_renderer = TemplateRenderer()


@dataclass(frozen=True)
class NodeEntry:
    hostname: str
    cpus: int
    real_memory: int


def reserved_memory(memory_mib: int) -> int:
    return memory_mib * MEMORY_RESERVE_PERCENT // 100


def node_entries(topology: ClusterTopology, facts: HardwareFacts) -> List[NodeEntry]:
    """One entry per configured node, in topology order."""
    entries = []
    for node in topology.configured_nodes():
        if node.name not in facts:
            raise InventoryError(f"no hardware facts collected for {node.name}")
        f = facts[node.name]
        entries.append(
            NodeEntry(
                hostname=node.effective_hostname,
                cpus=f.cpu_count,
                real_memory=reserved_memory(f.memory_mib),
            )
        )
    return entries


def synthesize(
    topology: ClusterTopology,
    facts: HardwareFacts,
    scheduler: Optional[SchedulerSettings] = None,
) -> str:
    """
    Render slurm.conf from topology and hardware facts.

    Pure: no clock, no environment, no I/O beyond the packaged
    template, so identical inputs give byte-identical output.
    """
    s = scheduler or SchedulerSettings()
    entries = node_entries(topology, facts)
    return _renderer.render(
        "slurm.conf.j2",
        {
            "s": s,
            "control_host": topology.primary_node.effective_hostname,
            "nodes": entries,
            "partition_nodes": ",".join(e.hostname for e in entries),
        },
    )


def synthesize_slurmdbd(
    credentials: AccountingCredentials,
    scheduler: Optional[SchedulerSettings] = None,
    accounting: Optional[AccountingSettings] = None,
) -> str:
    return _renderer.render(
        "slurmdbd.conf.j2",
        {
            "s": scheduler or SchedulerSettings(),
            "db": accounting or AccountingSettings(),
            "password": credentials.slurmdb_password,
        },
    )


def synthesize_cgroup() -> str:
    return _renderer.render("cgroup.conf.j2", {})
