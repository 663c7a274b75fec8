# src/hpcpanel/slurm/jobs.py

from __future__ import annotations

from dataclasses import dataclass
from typing import List

SQUEUE_FORMAT = "%i|%j|%u|%t|%V|%S|%M"
SQUEUE_COMMAND = f"squeue -h -o '{SQUEUE_FORMAT}'"

_STATES = {
    "PD": "pending",
    "R": "running",
    "CG": "completing",
    "CD": "completed",
    "F": "failed",
    "CA": "cancelled",
    "TO": "timeout",
}


@dataclass(frozen=True)
class JobRecord:
    job_id: str
    name: str
    user: str
    state: str
    submit_time: str
    start_time: str
    elapsed: str


def normalize_state(code: str) -> str:
    code = code.strip()
    return _STATES.get(code.upper(), code.lower())


def parse_squeue(output: str) -> List[JobRecord]:
    """
    Parse ``squeue -h -o '%i|%j|%u|%t|%V|%S|%M'`` output.

    Lines without exactly seven fields are skipped.
    """
    jobs = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split("|")
        if len(parts) != 7:
            continue
        job_id, name, user, state, submit, start, elapsed = (p.strip() for p in parts)
        if not job_id:
            continue
        jobs.append(JobRecord(job_id, name, user, normalize_state(state), submit, start, elapsed))
    return jobs


def job_state_command(job_id: str) -> str:
    return f"squeue -j {job_id} -h -o %T"
