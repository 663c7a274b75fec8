# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hpcpanel/config/loader.py

import logging
import os
from pathlib import Path
from typing import Optional

import yaml

from .models import PanelSettings

log = logging.getLogger("hpcpanel.config")

DEFAULT_CONFIG_PATH = Path("~/.hpcpanel/config.yaml")


def default_config_path() -> Path:
    return Path(os.environ.get("HPCPANEL_CONFIG", str(DEFAULT_CONFIG_PATH))).expanduser()


def load_settings(path: Optional[str | Path] = None) -> PanelSettings:
    """
    Load panel settings from YAML.

    ${VAR} references are expanded from the environment before parsing.
    A missing file is not an error: every setting has a default.
    """
    cfg_path = Path(path).expanduser() if path else default_config_path()
    if not cfg_path.exists():
        log.debug(f"no settings file at {cfg_path}, using defaults")
        return PanelSettings()

    raw = cfg_path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    return PanelSettings.model_validate(data)
