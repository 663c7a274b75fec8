# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/topology/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from hpcpanel.errors import NoNodesConfiguredError, TopologyValidationError


class NodeSpec(BaseModel):
    """
    One machine of the cluster as entered by the operator.
    """

    model_config = ConfigDict(frozen=True)

    name: str                                         # identifier, unique within a topology
    address: str = ""                                 # IP or DNS; empty means unconfigured
    credential: str = Field(default="", repr=False)   # initial root password, used once for key push
    hostname: str = ""                                # hostname to assign; falls back to name

    @property
    def configured(self) -> bool:
        return bool(self.address.strip())

    @property
    def effective_hostname(self) -> str:
        return self.hostname.strip() or self.name


class ClusterTopology(BaseModel):
    """
    Ordered node list plus an explicit primary (control) node.

    Order matters: it is the partition member order and the order
    every stage walks the nodes in.
    """

    model_config = ConfigDict(frozen=True)

    nodes: Tuple[NodeSpec, ...]
    primary: str = ""

    @model_validator(mode="before")
    @classmethod
    def _default_primary(cls, data):
        # without an explicit primary the first node is the control node
        if isinstance(data, dict) and not data.get("primary") and data.get("nodes"):
            first = list(data["nodes"])[0]
            name = first.get("name") if isinstance(first, dict) else getattr(first, "name", "")
            data = {**data, "primary": name}
        return data

    @model_validator(mode="after")
    def _check(self) -> "ClusterTopology":
        if not self.nodes:
            raise ValueError("topology must contain at least one node")

        seen = set()
        for node in self.nodes:
            if not node.name.strip():
                raise ValueError("node name must not be empty")
            if node.name in seen:
                raise ValueError(f"duplicate node name: {node.name}")
            seen.add(node.name)

        if self.primary not in seen:
            raise ValueError(f"primary node {self.primary!r} is not part of the topology")
        return self

    @classmethod
    def from_payload(cls, data: Mapping) -> "ClusterTopology":
        """
        Build a topology from untrusted input (API body, CLI edits).
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise TopologyValidationError(str(e)) from e

    def with_node(self, node: NodeSpec, *, make_primary: bool = False) -> "ClusterTopology":
        """Return a copy with ``node`` added, or replacing the node of the same name."""
        nodes = list(self.nodes)
        for i, existing in enumerate(nodes):
            if existing.name == node.name:
                nodes[i] = node
                break
        else:
            nodes.append(node)
        primary = node.name if make_primary else self.primary
        return ClusterTopology.from_payload({"nodes": nodes, "primary": primary})

    def without_node(self, name: str) -> "ClusterTopology":
        nodes = [n for n in self.nodes if n.name != name]
        if len(nodes) == len(self.nodes):
            raise TopologyValidationError(f"unknown node: {name}")
        primary = "" if name == self.primary else self.primary
        return ClusterTopology.from_payload({"nodes": nodes, "primary": primary})

    def by_name(self) -> Dict[str, NodeSpec]:
        return {n.name: n for n in self.nodes}

    @property
    def primary_node(self) -> NodeSpec:
        return self.by_name()[self.primary]

    def configured_nodes(self) -> List[NodeSpec]:
        """
        Nodes that take part in a deployment, in topology order.

        Raises NoNodesConfiguredError when no node has an address and
        TopologyValidationError when the primary itself has none.
        """
        nodes = [n for n in self.nodes if n.configured]
        if not nodes:
            raise NoNodesConfiguredError()
        if not self.primary_node.configured:
            raise TopologyValidationError(f"primary node {self.primary} has no address")
        return nodes


def placeholder_topology() -> ClusterTopology:
    names = ["master", "node1", "node2", "node3", "node4"]
    return ClusterTopology(nodes=tuple(NodeSpec(name=n) for n in names))


@dataclass(frozen=True)
class NodeFacts:
    cpu_count: int
    memory_mib: int


@dataclass(frozen=True)
class HardwareFacts:
    """
    Read-only node name -> NodeFacts mapping, collected once per run.
    """

    _facts: Mapping[str, NodeFacts] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "_facts", MappingProxyType(dict(self._facts)))

    def __getitem__(self, name: str) -> NodeFacts:
        return self._facts[name]

    def __contains__(self, name: object) -> bool:
        return name in self._facts

    def __iter__(self) -> Iterator[str]:
        return iter(self._facts)

    def __len__(self) -> int:
        return len(self._facts)

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        return {k: {"cpu_count": v.cpu_count, "memory_mib": v.memory_mib} for k, v in self._facts.items()}
