# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/state/detector.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

from .credentials import parse_credentials
from .models import Credentials, HostState
from ..config.models import HostPaths

log = logging.getLogger("ispstack")


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text()
    except (OSError, UnicodeDecodeError) as e:
        log.debug("Treating %s as absent: %s", path, e)
        return None


def _exists(path: Path) -> bool:
    try:
        return path.exists()
    except OSError:
        return False


def read_os_codename(os_release: Path) -> str:
    """
    VERSION_CODENAME (or UBUNTU_CODENAME) from os-release, "" when unknown.
    """
    text = _read_text(os_release)
    if not text:
        return ""
    values = {}
    for line in text.splitlines():
        if "=" not in line:
            continue
        k, v = line.split("=", 1)
        values[k.strip()] = v.strip().strip('"').strip("'")
    return (values.get("VERSION_CODENAME") or values.get("UBUNTU_CODENAME") or "").lower()


def _read_credentials(path: Path) -> Optional[Credentials]:
    text = _read_text(path)
    if text is None:
        return None
    creds = parse_credentials(text)
    if creds is None:
        log.debug("Credential file %s is incomplete", path)
    return creds


def _list_certificates(live_dir: Path) -> Tuple[str, ...]:
    try:
        return tuple(sorted(p.name for p in live_dir.iterdir() if p.is_dir()))
    except OSError:
        return ()


class StateDetector:
    """
    Reads marker files, the credential file and OS facts.
    Never mutates anything and never raises for missing or unreadable files.
    """

    def __init__(self, paths: HostPaths):
        self.paths = paths

    def detect(self) -> HostState:
        p = self.paths

        marker_text = _read_text(p.cleanup_marker) if _exists(p.cleanup_marker) else None
        cleaned_up = _exists(p.cleanup_marker)

        state = HostState(
            installed=_exists(p.cleanup_script),
            cleaned_up=cleaned_up,
            cleanup_marker_text=(marker_text or "").strip() or None,
            existing_credentials=_read_credentials(p.credential_file),
            os_codename=read_os_codename(p.os_release),
            certificates=_list_certificates(p.letsencrypt_live),
        )
        log.debug(
            "Detected host state: installed=%s cleaned_up=%s credentials=%s codename=%s",
            state.installed,
            state.cleaned_up,
            "present" if state.existing_credentials else "absent",
            state.os_codename or "<unknown>",
        )
        return state


def detect(paths: HostPaths) -> HostState:
    return StateDetector(paths).detect()
