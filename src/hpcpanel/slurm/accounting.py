# src/hpcpanel/slurm/accounting.py

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import asdict, dataclass
from pathlib import Path

import yaml

from hpcpanel.config.models import AccountingSettings

log = logging.getLogger("hpcpanel.slurm")

CREDENTIALS_FILE = "accounting.yaml"


@dataclass(frozen=True)
class AccountingCredentials:
    root_password: str
    slurmdb_password: str

    def __repr__(self) -> str:
        return "AccountingCredentials(root_password=***, slurmdb_password=***)"


def _generate() -> str:
    return secrets.token_urlsafe(18)


def load_or_create_credentials(settings: AccountingSettings, staging_dir: Path) -> AccountingCredentials:
    """
    Database passwords, generated on first use and reused afterwards.

    Passwords pinned in the settings win over stored ones. The store is
    rewritten only when something new had to be generated.
    """
    path = Path(staging_dir).expanduser() / CREDENTIALS_FILE
    stored = {}
    if path.exists():
        stored = yaml.safe_load(path.read_text()) or {}

    root = settings.root_password or stored.get("root_password")
    slurmdb = settings.slurmdb_password or stored.get("slurmdb_password")
    if root and slurmdb:
        return AccountingCredentials(root_password=root, slurmdb_password=slurmdb)

    creds = AccountingCredentials(root_password=root or _generate(), slurmdb_password=slurmdb or _generate())
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    path.touch(mode=0o600, exist_ok=True)
    os.chmod(path, 0o600)
    path.write_text(yaml.safe_dump(asdict(creds), default_flow_style=False))
    log.info(f"stored accounting credentials in {path}")
    return creds
