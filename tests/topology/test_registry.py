import stat
import textwrap
from pathlib import Path

import pytest

from hpcpanel.topology.models import ClusterTopology, NodeSpec
from hpcpanel.topology.registry import TopologyRegistry


def test_missing_file_yields_placeholders(tmp_path: Path):
    topo = TopologyRegistry(tmp_path / "deploy.conf").load()
    assert [n.name for n in topo.nodes] == ["master", "node1", "node2", "node3", "node4"]
    assert not any(n.configured for n in topo.nodes)
    assert topo.primary == "master"


def test_load_sections_comments_and_role(tmp_path: Path):
    path = tmp_path / "deploy.conf"
    path.write_text(textwrap.dedent("""
        # cluster nodes
        [node1]
        ip = 10.0.0.2
        password = pw2

        [head]
        ip = 10.0.0.1
        password = pw1
        hostname = head01
        role = primary
    """))
    topo = TopologyRegistry(path).load()
    assert [n.name for n in topo.nodes] == ["node1", "head"]
    assert topo.primary == "head"
    assert topo.primary_node.effective_hostname == "head01"
    assert topo.by_name()["node1"].credential == "pw2"


def test_save_writes_only_configured_nodes(tmp_path: Path):
    path = tmp_path / "conf" / "deploy.conf"
    topo = ClusterTopology(
        nodes=(
            NodeSpec(name="master", address="10.0.0.1", credential="pw", hostname="master"),
            NodeSpec(name="node1"),
            NodeSpec(name="node2", address="10.0.0.3"),
        )
    )
    reg = TopologyRegistry(path)
    reg.save(topo)

    text = path.read_text()
    assert "[master]" in text and "[node2]" in text
    assert "[node1]" not in text
    assert text.count("role = primary") == 1
    assert stat.S_IMODE(path.stat().st_mode) == 0o600

    again = reg.load()
    assert [n.name for n in again.nodes] == ["master", "node2"]
    assert again.primary == "master"


def test_save_failure_raises_oserror(tmp_path: Path):
    blocker = tmp_path / "file"
    blocker.write_text("not a dir")
    topo = ClusterTopology(nodes=(NodeSpec(name="master", address="10.0.0.1"),))
    with pytest.raises(OSError):
        TopologyRegistry(blocker / "deploy.conf").save(topo)
