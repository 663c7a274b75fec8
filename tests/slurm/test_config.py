import pytest

from hpcpanel.config.models import AccountingSettings, SchedulerSettings
from hpcpanel.errors import InventoryError
from hpcpanel.slurm.accounting import AccountingCredentials
from hpcpanel.slurm.config import (
    reserved_memory,
    synthesize,
    synthesize_cgroup,
    synthesize_slurmdbd,
)
from hpcpanel.topology.models import ClusterTopology, HardwareFacts, NodeFacts, NodeSpec


def _facts(**kw):
    return HardwareFacts({k: NodeFacts(cpu_count=c, memory_mib=m) for k, (c, m) in kw.items()})


def test_end_to_end_two_node_config():
    topo = ClusterTopology(
        nodes=(NodeSpec(name="master", address="10.0.0.1"), NodeSpec(name="node1", address="10.0.0.2"))
    )
    text = synthesize(topo, _facts(master=(8, 16000), node1=(4, 8000)))

    assert "NodeName=master CPUs=8 RealMemory=14400 State=UNKNOWN" in text
    assert "NodeName=node1 CPUs=4 RealMemory=7200 State=UNKNOWN" in text
    assert "PartitionName=compute Nodes=master,node1 Default=YES MaxTime=INFINITE State=UP" in text
    assert "ControlMachine=master\n" in text
    assert "ControlAddr=master\n" in text


def test_synthesize_is_deterministic():
    topo = ClusterTopology(nodes=(NodeSpec(name="m", address="1.1.1.1", hostname="head"),))
    facts = _facts(m=(2, 3999))
    assert synthesize(topo, facts) == synthesize(topo, facts)


@pytest.mark.parametrize("mem, expected", [(16000, 14400), (8000, 7200), (1023, 920), (1, 0), (7, 6)])
def test_reserved_memory_truncates(mem, expected):
    assert reserved_memory(mem) == expected


def test_partition_order_follows_topology_not_name():
    topo = ClusterTopology(
        nodes=(
            NodeSpec(name="x", address="10.0.0.1", hostname="b"),
            NodeSpec(name="y", address="10.0.0.2", hostname="a"),
            NodeSpec(name="z", address="10.0.0.3", hostname="c"),
        )
    )
    text = synthesize(topo, _facts(x=(1, 1000), y=(1, 1000), z=(1, 1000)))
    assert " Nodes=b,a,c " in text
    assert text.index("NodeName=b") < text.index("NodeName=a") < text.index("NodeName=c")
    assert "ControlMachine=b\n" in text


def test_explicit_primary_controls_and_unconfigured_nodes_are_skipped():
    topo = ClusterTopology(
        nodes=(
            NodeSpec(name="c1", address="10.0.0.2"),
            NodeSpec(name="spare"),
            NodeSpec(name="head", address="10.0.0.1"),
        ),
        primary="head",
    )
    text = synthesize(topo, _facts(c1=(4, 2000), head=(8, 4000)))
    assert "ControlAddr=head" in text
    assert "spare" not in text
    assert " Nodes=c1,head " in text


def test_missing_facts_raise():
    topo = ClusterTopology(nodes=(NodeSpec(name="m", address="1.1.1.1"), NodeSpec(name="n", address="1.1.1.2")))
    with pytest.raises(InventoryError):
        synthesize(topo, _facts(m=(1, 1000)))


def test_scheduler_settings_flow_into_header():
    topo = ClusterTopology(nodes=(NodeSpec(name="m", address="1.1.1.1"),))
    text = synthesize(topo, _facts(m=(1, 1000)), SchedulerSettings(cluster_name="lab", partition_name="batch"))
    assert text.startswith("# slurm.conf generated by hpcpanel\nClusterName=lab\n")
    assert "PartitionName=batch Nodes=m " in text
    assert "SlurmctldPidFile=/var/run/slurm/slurmctld.pid" in text


def test_slurmdbd_and_cgroup():
    creds = AccountingCredentials(root_password="r", slurmdb_password="db-pass")
    dbd = synthesize_slurmdbd(creds, accounting=AccountingSettings(database="acct"))
    assert "StoragePass=db-pass\n" in dbd
    assert "StorageLoc=acct\n" in dbd
    assert "StorageType=accounting_storage/mysql" in dbd

    cg = synthesize_cgroup()
    assert "ConstrainCores=yes" in cg and "ConstrainRAMSpace=yes" in cg
