# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/config/models.py

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field


class SSHSettings(BaseModel):
    user: str = "root"
    port: int = 22
    key_path: Path = Path("~/.ssh/id_rsa")
    key_bits: int = 4096
    connect_timeout: float = 20.0
    connect_retries: int = 3
    retry_delay: int = 5


class PathSettings(BaseModel):
    topology_file: Path = Path("deploy.conf")
    staging_dir: Path = Path("~/.hpcpanel/staging")
    log_dir: Path = Path("~/.hpcpanel/logs")


class SchedulerSettings(BaseModel):
    """Fixed slurm.conf fields; node and partition lines are derived."""

    cluster_name: str = "cluster"
    slurm_user: str = "slurm"
    slurmd_user: str = "root"
    slurmctld_port: int = 6817
    slurmd_port: int = 6818
    auth_type: str = "auth/munge"
    state_save_location: str = "/var/spool/slurm/ctld"
    slurmd_spool_dir: str = "/var/spool/slurm/d"
    log_dir: str = "/var/log/slurm"
    pid_dir: str = "/var/run/slurm"
    switch_type: str = "switch/none"
    mpi_default: str = "none"
    proctrack_type: str = "proctrack/pgid"
    return_to_service: int = 1
    partition_name: str = "compute"
    max_time: str = "INFINITE"

    config_path: str = "/etc/slurm/slurm.conf"
    slurmdbd_config_path: str = "/etc/slurm/slurmdbd.conf"
    cgroup_config_path: str = "/etc/slurm/cgroup.conf"

    controller_unit: str = "slurmctld"
    accounting_unit: str = "slurmdbd"
    node_unit: str = "slurmd"
    controller_binary: str = "/usr/sbin/slurmctld"
    client_commands: List[str] = Field(default_factory=lambda: ["sinfo", "sbatch", "squeue", "scontrol"])
    repair_packages: List[str] = Field(default_factory=lambda: ["slurm-ohpc"])


class MungeSettings(BaseModel):
    key_path: str = "/etc/munge/munge.key"
    owner: str = "munge:munge"
    mode: str = "400"
    service_user: str = "munge"
    unit: str = "munge"
    create_key_command: str = "/usr/sbin/create-munge-key -r"


class AccountingSettings(BaseModel):
    database: str = "slurm_acct_db"
    user: str = "slurm"
    root_password: Optional[str] = None
    slurmdb_password: Optional[str] = None


class PackageSettings(BaseModel):
    epel_gpg_key_url: str = "https://dl.fedoraproject.org/pub/epel/RPM-GPG-KEY-EPEL-9"
    epel_release_url: str = "https://dl.fedoraproject.org/pub/epel/epel-release-latest-9.noarch.rpm"
    base: List[str] = Field(default_factory=lambda: ["libjwt", "libjwt-devel"])
    munge: List[str] = Field(default_factory=lambda: ["munge", "munge-libs", "munge-devel"])
    openhpc_release_url: str = (
        "http://repos.openhpc.community/OpenHPC/3/EL_9/x86_64/ohpc-release-3-1.el9.x86_64.rpm"
    )
    openhpc_repo_file: str = "/etc/yum.repos.d/OpenHPC.repo"
    database: List[str] = Field(default_factory=lambda: ["mariadb-server", "mariadb"])
    controller: List[str] = Field(
        default_factory=lambda: [
            "ohpc-slurm-server",
            "slurm-ohpc",
            "slurm-devel-ohpc",
            "slurm-example-configs-ohpc",
            "slurm-slurmctld-ohpc",
            "slurm-slurmdbd-ohpc",
            "slurm-slurmd-ohpc",
        ]
    )
    worker: List[str] = Field(default_factory=lambda: ["ohpc-slurm-client", "slurm-ohpc", "slurm-slurmd-ohpc"])


class TimingSettings(BaseModel):
    database_settle: float = 5.0
    daemon_settle: float = 5.0
    verification_settle: float = 15.0
    job_settle: float = 10.0


class PanelSettings(BaseModel):
    ssh: SSHSettings = Field(default_factory=SSHSettings)
    paths: PathSettings = Field(default_factory=PathSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    munge: MungeSettings = Field(default_factory=MungeSettings)
    accounting: AccountingSettings = Field(default_factory=AccountingSettings)
    packages: PackageSettings = Field(default_factory=PackageSettings)
    timing: TimingSettings = Field(default_factory=TimingSettings)
