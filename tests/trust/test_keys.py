import os
import shutil
import subprocess
from pathlib import Path

import pytest

from hpcpanel.config.models import SSHSettings
from hpcpanel.errors import NonZeroExitError
from hpcpanel.topology.models import NodeSpec
from hpcpanel.transport.interface import CommandResult
from hpcpanel.trust.keys import KeyAccessBootstrapper

NODES = [
    NodeSpec(name="master", address="10.0.0.1", credential="pw1"),
    NodeSpec(name="node1", address="10.0.0.2", credential="pw2"),
    NodeSpec(name="node2", address="10.0.0.3"),
]


def test_keypair_generated_once(tmp_path: Path, fake_transport):
    settings = SSHSettings(key_path=tmp_path / ".ssh" / "id_rsa", key_bits=2048)
    boot = KeyAccessBootstrapper(fake_transport, settings)

    first = boot.ensure_keypair()
    assert first.startswith("ssh-rsa ")
    assert (tmp_path / ".ssh" / "id_rsa").exists()
    assert (tmp_path / ".ssh" / "id_rsa.pub").read_text().strip() == first

    assert boot.ensure_keypair() == first


def test_authorize_pushes_to_nodes_with_credentials(settings, fake_transport):
    changed = KeyAccessBootstrapper(fake_transport, settings.ssh).authorize(NODES)

    assert changed == ["master", "node1"]
    assert fake_transport.read("master", "~/.ssh/authorized_keys") == b"ssh-rsa AAAAB3Nzafake hpcpanel\n"
    # no credential, no contact
    assert fake_transport.commands("node2") == []


def test_authorize_twice_makes_no_further_changes(settings, fake_transport):
    boot = KeyAccessBootstrapper(fake_transport, settings.ssh)
    boot.authorize(NODES)
    before = len(fake_transport.mutations)

    assert boot.authorize(NODES) == []
    assert len(fake_transport.mutations) == before


def test_single_node_failure_is_fatal(settings, make_transport):
    transport = make_transport(rules=[(r"^install -d -m 700", ("", "read-only file system", 1))])
    with pytest.raises(NonZeroExitError):
        KeyAccessBootstrapper(transport, settings.ssh).authorize(NODES)


class LocalShell:
    """Runs commands in a local bash with HOME pointed at a scratch dir."""

    def __init__(self, home: Path):
        self.home = home

    def run(self, node, command, *, check=True):
        proc = subprocess.run(
            ["bash", "-c", command],
            env={**os.environ, "HOME": str(self.home)},
            capture_output=True,
            text=True,
        )
        if check and proc.returncode != 0:
            raise NonZeroExitError(node.name, command, proc.returncode, proc.stdout, proc.stderr)
        return CommandResult(proc.stdout, proc.stderr, proc.returncode)


@pytest.mark.skipif(shutil.which("bash") is None, reason="needs bash")
@pytest.mark.parametrize("existing", ["", "ssh-ed25519 AAAAoperator operator@laptop", "ssh-ed25519 AAAAoperator operator@laptop\n"])
def test_key_appended_on_its_own_line(settings, tmp_path: Path, existing):
    home = tmp_path / "home"
    (home / ".ssh").mkdir(parents=True)
    keys = home / ".ssh" / "authorized_keys"
    keys.write_text(existing)
    boot = KeyAccessBootstrapper(LocalShell(home), settings.ssh)

    assert boot.authorize(NODES[:1]) == ["master"]
    expected = [l for l in existing.splitlines() if l] + ["ssh-rsa AAAAB3Nzafake hpcpanel"]
    assert keys.read_text().splitlines() == expected
    assert keys.read_text().endswith("\n")

    # already present, nothing appended
    assert boot.authorize(NODES[:1]) == []
    assert keys.read_text().splitlines() == expected


def test_fake_keeps_existing_key_separate(settings, fake_transport):
    fake_transport.seed("master", "~/.ssh/authorized_keys", b"ssh-ed25519 AAAAoperator operator@laptop")
    KeyAccessBootstrapper(fake_transport, settings.ssh).authorize(NODES[:1])
    assert fake_transport.read("master", "~/.ssh/authorized_keys").decode().splitlines() == [
        "ssh-ed25519 AAAAoperator operator@laptop",
        "ssh-rsa AAAAB3Nzafake hpcpanel",
    ]
