# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/config/loader.py

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from .models import DesiredConfig
from ..errors import InputError

log = logging.getLogger("ispstack")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate secrets.yaml using this priority:

    1. ISPSTACK_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the config file
    """
    env = os.environ.get("ISPSTACK_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("ISPSTACK_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise InputError(f"{path}: top level must be a mapping")
    return data


def validate_config(data: Dict[str, Any]) -> DesiredConfig:
    try:
        return DesiredConfig.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise InputError(f"Invalid configuration: {problems}") from e


def load_config(
    path: Optional[str | Path] = None,
    *,
    overrides: Optional[Dict[str, Any]] = None,
) -> DesiredConfig:
    """
    Load and validate the desired configuration.

    The YAML file is optional; without it every value must come from
    *overrides* (the CLI flags). Secrets are merged from a secrets.yaml found
    next to the config file or named by ISPSTACK_SECRETS_FILE.
    ``${ENV_VAR}`` placeholders are expanded in both files.
    """
    data: Dict[str, Any] = {}

    if path is not None:
        path = Path(path)
        if not path.is_file():
            raise InputError(f"Config file not found: {path}")
        data = _load_yaml(path)

        secrets_path = _find_secrets_file(path)
        if secrets_path:
            log.debug("Merging secrets from %s", secrets_path)
            _deep_merge(data, _load_yaml(secrets_path))
        else:
            log.debug("No secrets.yaml found, proceeding without secrets merge")

    if overrides:
        _deep_merge(data, overrides)

    return validate_config(data)
