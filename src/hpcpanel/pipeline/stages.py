# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/pipeline/stages.py

from __future__ import annotations

import re
import shlex
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List

from hpcpanel.errors import VerificationError
from hpcpanel.inventory.collector import HardwareInventoryCollector
from hpcpanel.slurm.accounting import load_or_create_credentials
from hpcpanel.slurm.config import synthesize_cgroup, synthesize_slurmdbd
from hpcpanel.slurm.jobs import job_state_command
from hpcpanel.topology.models import NodeSpec
from hpcpanel.trust.keys import KeyAccessBootstrapper
from hpcpanel.trust.secret import SharedSecretDistributor

from .context import StageContext, sha256_text

HOSTS_BEGIN = "# BEGIN hpcpanel"
HOSTS_END = "# END hpcpanel"
_SUBMITTED = re.compile(r"Submitted batch job (\d+)")


class Stage(ABC):
    """
    One named step of the deployment.

    ``execute`` raises on the first fatal failure; soft failures are
    logged through the context and do not interrupt the stage.
    """

    name: str = ""
    title: str = ""

    @abstractmethod
    def execute(self, ctx: StageContext) -> None: ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"


# ---------------------------------------------------------------------
# Trust and host identity
# ---------------------------------------------------------------------
class TrustBootstrapStage(Stage):
    name = "trust-bootstrap"
    title = "SSH key setup"

    def execute(self, ctx: StageContext) -> None:
        changed = KeyAccessBootstrapper(ctx.transport, ctx.settings.ssh, progress=ctx.log).authorize(ctx.nodes)
        ctx.log(f"SSH key authorized on {len(changed)} new node(s)")


class HostsFileStage(Stage):
    name = "hosts-file"
    title = "Hosts file configuration"

    @staticmethod
    def block(nodes: List[NodeSpec]) -> str:
        lines = [HOSTS_BEGIN]
        lines += [f"{n.address} {n.effective_hostname}" for n in nodes]
        lines.append(HOSTS_END)
        return "\n".join(lines) + "\n"

    def execute(self, ctx: StageContext) -> None:
        block = self.block(ctx.nodes)
        read_block = f"sed -n '/^{HOSTS_BEGIN}$/,/^{HOSTS_END}$/p' /etc/hosts"
        script = "\n".join(
            [
                "# hpcpanel: update managed /etc/hosts block",
                "set -e",
                "cp -p /etc/hosts /etc/hosts.hpcpanel.bak",
                f"sed -i '/^{HOSTS_BEGIN}$/,/^{HOSTS_END}$/d' /etc/hosts",
                "cat >> /etc/hosts <<'HPCPANEL_EOF'",
                block.rstrip("\n"),
                "HPCPANEL_EOF",
                "",
            ]
        )
        for node in ctx.nodes:
            current = ctx.transport.run(node, read_block, check=False)
            if current.ok and current.stdout == block:
                continue
            ctx.log(f"Updating /etc/hosts on {node.name}")
            ctx.transport.run_script(node, script)


class HostnameStage(Stage):
    name = "hostname"
    title = "Hostname setup"

    def execute(self, ctx: StageContext) -> None:
        for node in ctx.nodes:
            wanted = node.effective_hostname
            if ctx.run(node, "hostname").stdout.strip() == wanted:
                continue
            ctx.log(f"Setting hostname of {node.name} to {wanted}")
            ctx.run(node, f"hostnamectl set-hostname {shlex.quote(wanted)}")


# ---------------------------------------------------------------------
# Packages and authentication
# ---------------------------------------------------------------------
class BasePackagesStage(Stage):
    name = "base-packages"
    title = "Base package installation"

    def execute(self, ctx: StageContext) -> None:
        pkgs = ctx.settings.packages
        for node in ctx.nodes:
            if not ctx.probe(node, "rpm -q epel-release"):
                ctx.log(f"Installing EPEL on {node.name}")
                ctx.run(
                    node,
                    f"rpm --import {shlex.quote(pkgs.epel_gpg_key_url)} && "
                    f"dnf install -y {shlex.quote(pkgs.epel_release_url)}",
                )
            if not ctx.probe(node, "dnf repolist --enabled | grep -qiw crb"):
                ctx.run_soft(node, "dnf config-manager --set-enabled crb", "enabling crb repository")
            ctx.ensure_packages(node, pkgs.base)


class AuthServiceStage(Stage):
    name = "auth-service"
    title = "Munge setup"

    def execute(self, ctx: StageContext) -> None:
        munge = ctx.settings.munge
        user = shlex.quote(munge.service_user)
        for node in ctx.nodes:
            ctx.ensure_packages(node, ctx.settings.packages.munge)
            if not ctx.probe(node, f"id -u {user}"):
                ctx.run_soft(node, f"useradd -r -s /sbin/nologin {user}", f"creating {munge.service_user} user")

        report = SharedSecretDistributor(
            ctx.transport, munge, staging_dir=ctx.staging_dir, progress=ctx.log
        ).distribute(ctx.nodes, ctx.primary)
        if report.minted:
            ctx.log(f"New munge key created on {ctx.primary.name}")
        ctx.log(f"Munge key in place on {len(ctx.nodes)} node(s), copied to {len(report.pushed)}")


class AccountingDatabaseStage(Stage):
    name = "accounting-database"
    title = "MariaDB setup"

    @staticmethod
    def _literal(value: str) -> str:
        return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"

    def execute(self, ctx: StageContext) -> None:
        node = ctx.primary
        acct = ctx.settings.accounting
        ctx.ensure_packages(node, ctx.settings.packages.database)

        if not ctx.probe(node, "systemctl is-active --quiet mariadb"):
            ctx.log(f"Starting MariaDB on {node.name}")
            ctx.run(node, "systemctl enable --now mariadb")
            ctx.sleep(ctx.settings.timing.database_settle)

        creds = load_or_create_credentials(acct, ctx.staging_dir)
        ctx.credentials = creds
        root_pw = self._literal(creds.root_password)
        db_pw = self._literal(creds.slurmdb_password)
        db_user = f"{self._literal(acct.user)}@'localhost'"

        if ctx.probe(node, "mysql -u root -e 'SELECT 1'"):
            ctx.log("Securing MariaDB root account")
            ctx.transport.run_script(
                node,
                "# hpcpanel: secure mariadb root\n"
                "mysql -u root <<'SQL'\n"
                f"ALTER USER 'root'@'localhost' IDENTIFIED BY {root_pw};\n"
                "DELETE FROM mysql.user WHERE User='';\n"
                "DELETE FROM mysql.user WHERE User='root' AND Host NOT IN ('localhost', '127.0.0.1', '::1');\n"
                "DROP DATABASE IF EXISTS test;\n"
                "DELETE FROM mysql.db WHERE Db='test' OR Db='test\\\\_%';\n"
                "FLUSH PRIVILEGES;\n"
                "SQL\n",
            )

        db_probe = (
            "# hpcpanel: check accounting database access\n"
            f"MYSQL_PWD={shlex.quote(creds.slurmdb_password)} "
            f"mysql -u {shlex.quote(acct.user)} -e {shlex.quote('USE ' + acct.database)}\n"
        )
        if ctx.transport.run_script(node, db_probe, check=False).ok:
            ctx.log(f"Accounting database {acct.database} already provisioned")
            return

        ctx.log(f"Creating accounting database {acct.database}")
        ctx.transport.run_script(
            node,
            "# hpcpanel: provision accounting database\n"
            f"export MYSQL_PWD={shlex.quote(creds.root_password)}\n"
            "mysql -u root <<'SQL'\n"
            f"CREATE DATABASE IF NOT EXISTS {acct.database};\n"
            f"CREATE USER IF NOT EXISTS {db_user} IDENTIFIED BY {db_pw};\n"
            f"ALTER USER {db_user} IDENTIFIED BY {db_pw};\n"
            f"GRANT ALL PRIVILEGES ON {acct.database}.* TO {db_user};\n"
            "FLUSH PRIVILEGES;\n"
            "SQL\n",
        )


class SchedulerPackagesStage(Stage):
    name = "scheduler-packages"
    title = "Slurm installation"

    def execute(self, ctx: StageContext) -> None:
        pkgs = ctx.settings.packages
        for node in ctx.nodes:
            if not ctx.probe(node, "rpm -q libjwt"):
                ctx.run_soft(node, "dnf install -y libjwt", "installing libjwt")
            if not ctx.probe(node, f"test -f {shlex.quote(pkgs.openhpc_repo_file)}"):
                ctx.log(f"Adding OpenHPC repository on {node.name}")
                ctx.run(node, f"dnf install -y {shlex.quote(pkgs.openhpc_release_url)}")
            role = pkgs.controller if node.name == ctx.primary.name else pkgs.worker
            ctx.ensure_packages(node, role)


# ---------------------------------------------------------------------
# Scheduler configuration and activation
# ---------------------------------------------------------------------
class SchedulerConfigStage(Stage):
    name = "scheduler-config"
    title = "Slurm configuration"

    def _prepare(self, ctx: StageContext, node: NodeSpec) -> None:
        s = ctx.settings.scheduler
        user = shlex.quote(s.slurm_user)
        if not ctx.probe(node, f"id -u {user}"):
            ctx.log(f"Creating {s.slurm_user} user on {node.name}")
            ctx.run(node, f"useradd -r -s /sbin/nologin {user}")

        conf_dir = str(Path(s.config_path).parent)
        owned = [s.state_save_location, s.slurmd_spool_dir, s.log_dir, s.pid_dir]
        checks = " && ".join(f"test -d {shlex.quote(d)}" for d in [conf_dir] + owned)
        if not ctx.probe(node, checks):
            ctx.run(
                node,
                f"mkdir -p {shlex.quote(conf_dir)} && "
                f"install -d -o {user} -g {user} -m 755 {' '.join(shlex.quote(d) for d in owned)}",
            )

    def _distribute(self, ctx: StageContext, text: str, remote_path: str, label: str) -> None:
        """Write to the primary, then copy that exact file to every other node."""
        primary = ctx.primary
        if ctx.remote_digest(primary, remote_path) != sha256_text(text):
            ctx.log(f"Writing {remote_path} on {primary.name}")
            ctx.transport.put_text(primary, text, remote_path)
            ctx.config_changed.add(primary.name)

        local = ctx.staging_dir / label
        ctx.transport.fetch(primary, remote_path, local)
        digest = sha256_text(local.read_text(encoding="utf-8"))
        for node in ctx.followers:
            if ctx.remote_digest(node, remote_path) == digest:
                continue
            ctx.log(f"Copying {label} to {node.name}")
            ctx.transport.push(node, local, remote_path)
            ctx.config_changed.add(node.name)

    def execute(self, ctx: StageContext) -> None:
        s = ctx.settings.scheduler
        for node in ctx.nodes:
            self._prepare(ctx, node)

        ctx.log("Collecting node hardware information")
        ctx.facts = HardwareInventoryCollector(ctx.transport, progress=ctx.log).collect(ctx.nodes)

        slurm_conf = ctx.synthesizer(ctx.topology, ctx.facts, s)
        self._distribute(ctx, slurm_conf, s.config_path, "slurm.conf")
        self._distribute(ctx, synthesize_cgroup(), s.cgroup_config_path, "cgroup.conf")

        creds = ctx.credentials or load_or_create_credentials(ctx.settings.accounting, ctx.staging_dir)
        dbd_conf = synthesize_slurmdbd(creds, s, ctx.settings.accounting)
        primary = ctx.primary
        if ctx.remote_digest(primary, s.slurmdbd_config_path) != sha256_text(dbd_conf):
            ctx.log(f"Writing {s.slurmdbd_config_path} on {primary.name}")
            ctx.transport.put_text(primary, dbd_conf, s.slurmdbd_config_path)
            ctx.config_changed.add(primary.name)
        ctx.ensure_mode(primary, s.slurmdbd_config_path, f"{s.slurm_user}:{s.slurm_user}", "600")


class ServiceActivationStage(Stage):
    name = "service-activation"
    title = "Service startup"

    def _activate(self, ctx: StageContext, node: NodeSpec, unit: str) -> bool:
        q = shlex.quote(unit)
        if ctx.probe(node, f"systemctl is-active --quiet {q}"):
            if node.name not in ctx.config_changed:
                return False
            ctx.log(f"Restarting {unit} on {node.name}")
            ctx.run(node, f"systemctl restart {q}")
            return True
        ctx.log(f"Starting {unit} on {node.name}")
        ctx.run(node, f"systemctl enable --now {q}")
        return True

    def execute(self, ctx: StageContext) -> None:
        s = ctx.settings.scheduler
        if self._activate(ctx, ctx.primary, s.accounting_unit):
            ctx.sleep(ctx.settings.timing.daemon_settle)
        self._activate(ctx, ctx.primary, s.controller_unit)
        for node in ctx.nodes:
            self._activate(ctx, node, s.node_unit)


class VerificationStage(Stage):
    name = "verification"
    title = "Installation verification"

    def _missing_commands(self, ctx: StageContext) -> List[str]:
        return [
            c for c in ctx.settings.scheduler.client_commands
            if not ctx.probe(ctx.primary, f"command -v {shlex.quote(c)}")
        ]

    def execute(self, ctx: StageContext) -> None:
        s = ctx.settings.scheduler
        node = ctx.primary

        missing = self._missing_commands(ctx)
        if missing:
            ctx.log(f"Missing Slurm commands: {', '.join(missing)}; attempting repair")
            ctx.run_soft(
                node,
                f"dnf install -y {' '.join(shlex.quote(p) for p in s.repair_packages)}",
                "repair install",
            )
            missing = self._missing_commands(ctx)
            if missing:
                raise VerificationError(f"Slurm commands not found: {', '.join(missing)}")

        for unit in (s.controller_unit, s.accounting_unit):
            if not ctx.probe(node, f"systemctl is-active --quiet {shlex.quote(unit)}"):
                raise VerificationError(f"{unit} is not active on {node.name}")

        ctx.sleep(ctx.settings.timing.verification_settle)
        out = ctx.run(node, "sbatch -J hpcpanel-test -o /tmp/hpcpanel-test-%j.out --wrap hostname").stdout
        match = _SUBMITTED.search(out)
        if not match:
            raise VerificationError(f"test job submission returned no job id: {out.strip()!r}")
        job_id = match.group(1)
        ctx.log(f"Test job {job_id} submitted")

        ctx.sleep(ctx.settings.timing.job_settle)
        state = ctx.transport.run(node, job_state_command(job_id), check=False).stdout.strip()
        ctx.log(f"Test job {job_id} state: {state or 'COMPLETED'}")


def default_stages() -> List[Stage]:
    return [
        TrustBootstrapStage(),
        HostsFileStage(),
        HostnameStage(),
        BasePackagesStage(),
        AuthServiceStage(),
        AccountingDatabaseStage(),
        SchedulerPackagesStage(),
        SchedulerConfigStage(),
        ServiceActivationStage(),
        VerificationStage(),
    ]
