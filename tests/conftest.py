import hashlib
import re
import shlex
from pathlib import Path

import pytest

from hpcpanel.config.models import PanelSettings
from hpcpanel.errors import NonZeroExitError
from hpcpanel.topology.models import ClusterTopology, NodeSpec
from hpcpanel.transport.interface import CommandResult

# commands that only read remote state
READ_ONLY = (
    "grep -q",
    "test ",
    "sha256sum",
    "stat ",
    "id -u",
    "systemctl is-active",
    "rpm -q",
    "nproc",
    "free -m",
    "sed -n",
    "command -v",
    "dnf repolist",
    "squeue",
    "mysql -u root -e 'SELECT 1'",
)


class FakeTransport:
    """
    Scripted stand-in for SSHTransport.

    Keeps a per-node file table so key, secret and config probes answer
    truthfully. ``rules`` are (regex, answer) pairs checked first; an
    answer is a (stdout, stderr, rc) tuple or a callable(node, command)
    returning one. Anything unmatched succeeds with empty output.
    """

    def __init__(self, rules=None):
        self.rules = list(rules or [])
        self.files = {}     # node -> {path: bytes}
        self.modes = {}     # node -> {path: "owner:group mode"}
        self.calls = []     # (kind, node, payload)
        self.closed = 0

    # ------------------ helpers for tests ------------------

    def seed(self, node, path, data=b"", mode=None):
        self.files.setdefault(node, {})[path] = data
        if mode:
            self.modes.setdefault(node, {})[path] = mode

    def read(self, node, path):
        return self.files.get(node, {}).get(path)

    def commands(self, node=None):
        return [p for k, n, p in self.calls if k in ("run", "script") and (node is None or n == node)]

    @property
    def mutations(self):
        out = []
        for kind, node, payload in self.calls:
            if kind in ("put_text", "push"):
                out.append((kind, node, payload))
            elif kind == "run" and not (payload == "hostname" or payload.startswith(READ_ONLY)):
                out.append((kind, node, payload))
            elif kind == "script" and not payload.startswith("# hpcpanel: check"):
                out.append((kind, node, payload))
        return out

    # ------------------ command interpreter ------------------

    def _builtin(self, node, command):
        files = self.files.setdefault(node, {})
        modes = self.modes.setdefault(node, {})

        if " && " in command and command.startswith("chown "):
            parts = [shlex.split(p) for p in command.split(" && ")]
            owner, path = parts[0][1], parts[0][2]
            mode = parts[1][1]
            modes[path] = f"{owner} {mode}"
            return "", "", 0

        if ">> ~/.ssh/authorized_keys" in command:
            key = shlex.split(re.findall(r"echo ('[^']*'|\S+) >> ~/\.ssh/authorized_keys", command)[-1])[0]
            current = files.get("~/.ssh/authorized_keys", b"").decode()
            if current and not current.endswith("\n"):
                current += "\n"
            files["~/.ssh/authorized_keys"] = (current + key + "\n").encode()
            return "", "", 0

        args = shlex.split(command)
        if args[:2] == ["grep", "-qxF"]:
            lines = files.get(args[3], b"").decode().splitlines()
            return "", "", 0 if args[2] in lines else 1
        if args[:2] == ["test", "-f"]:
            return "", "", 0 if args[2] in files else 1
        if args[0] == "sha256sum":
            if args[1] not in files:
                return "", f"sha256sum: {args[1]}: No such file or directory", 1
            return f"{hashlib.sha256(files[args[1]]).hexdigest()}  {args[1]}\n", "", 0
        if args[0] == "stat":
            path = args[-1]
            if path not in files:
                return "", "stat: cannot stat", 1
            return modes.get(path, "root:root 644") + "\n", "", 0
        if args[0] == "/usr/sbin/create-munge-key":
            files["/etc/munge/munge.key"] = b"minted-" + node.encode()
            return "", "", 0
        return "", "", 0

    def _answer(self, node, command):
        for pattern, answer in self.rules:
            if re.search(pattern, command):
                return answer(node, command) if callable(answer) else answer
        return self._builtin(node, command)

    # ------------------ Transport ------------------

    def run(self, node, command, *, check=True):
        self.calls.append(("run", node.name, command))
        out, err, rc = self._answer(node.name, command)
        if check and rc != 0:
            raise NonZeroExitError(node.name, command, rc, out, err)
        return CommandResult(out, err, rc)

    def run_script(self, node, script, *, check=True):
        self.calls.append(("script", node.name, script))
        out, err, rc = "", "", 0
        for pattern, answer in self.rules:
            if re.search(pattern, script):
                out, err, rc = answer(node.name, script) if callable(answer) else answer
                break
        if check and rc != 0:
            raise NonZeroExitError(node.name, "bash -s", rc, out, err)
        return CommandResult(out, err, rc)

    def fetch(self, node, remote_path, local_path):
        self.calls.append(("fetch", node.name, remote_path))
        data = self.read(node.name, remote_path)
        if data is None:
            raise FileNotFoundError(remote_path)
        Path(local_path).parent.mkdir(parents=True, exist_ok=True)
        Path(local_path).write_bytes(data)

    def push(self, node, local_path, remote_path):
        self.calls.append(("push", node.name, remote_path))
        self.seed(node.name, remote_path, Path(local_path).read_bytes())

    def put_text(self, node, content, remote_path):
        self.calls.append(("put_text", node.name, remote_path))
        self.seed(node.name, remote_path, content.encode())

    def close(self):
        self.closed += 1


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in tmp_path with a pre-made orchestrator keypair."""
    s = PanelSettings()
    key = tmp_path / "ssh" / "id_rsa"
    key.parent.mkdir()
    key.write_text("dummy private key\n")
    key.with_name("id_rsa.pub").write_text("ssh-rsa AAAAB3Nzafake hpcpanel\n")
    s.ssh.key_path = key
    s.paths.staging_dir = tmp_path / "staging"
    s.paths.log_dir = tmp_path / "logs"
    s.paths.topology_file = tmp_path / "deploy.conf"
    return s


@pytest.fixture
def two_nodes():
    return ClusterTopology(
        nodes=(
            NodeSpec(name="master", address="10.0.0.1", credential="pw1"),
            NodeSpec(name="node1", address="10.0.0.2", credential="pw2"),
        )
    )


def _hardware_rules(facts):
    return [
        (r"^nproc$", lambda node, cmd: (f"{facts[node][0]}\n", "", 0)),
        (r"^free -m", lambda node, cmd: (f"{facts[node][1]}\n", "", 0)),
    ]


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def hardware_rules():
    """Builds rules answering nproc / free -m from a {node: (cpus, mem)} mapping."""
    return _hardware_rules
