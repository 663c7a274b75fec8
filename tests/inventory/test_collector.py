import pytest

from hpcpanel.errors import InventoryError, NonZeroExitError
from hpcpanel.inventory.collector import HardwareInventoryCollector
from hpcpanel.topology.models import NodeSpec

NODES = [NodeSpec(name="master", address="10.0.0.1"), NodeSpec(name="node1", address="10.0.0.2")]


def test_collects_every_node(make_transport, hardware_rules):
    t = make_transport(rules=hardware_rules({"master": (8, 16000), "node1": (4, 8000)}))
    lines = []
    facts = HardwareInventoryCollector(t, progress=lines.append).collect(NODES)

    assert facts.as_dict() == {
        "master": {"cpu_count": 8, "memory_mib": 16000},
        "node1": {"cpu_count": 4, "memory_mib": 8000},
    }
    assert "Node node1: CPUs=4, Memory=8000MB" in lines


@pytest.mark.parametrize("cpus, mem", [("eight", "16000"), ("8", ""), ("8", "0")])
def test_unparseable_output_is_fatal(make_transport, cpus, mem):
    t = make_transport(rules=[(r"^nproc$", (cpus + "\n", "", 0)), (r"^free -m", (mem + "\n", "", 0))])
    with pytest.raises(InventoryError):
        HardwareInventoryCollector(t).collect(NODES)


def test_query_failure_on_one_node_is_fatal(make_transport, hardware_rules):
    rules = [(r"^nproc$", lambda node, cmd: ("", "nproc: not found", 127) if node == "node1" else ("8\n", "", 0))]
    t = make_transport(rules=rules + hardware_rules({"master": (8, 16000), "node1": (4, 8000)}))
    with pytest.raises(NonZeroExitError):
        HardwareInventoryCollector(t).collect(NODES)
