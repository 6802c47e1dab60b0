# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/state/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class Credentials:
    """
    Database credentials shared by the DB grant, the RADIUS SQL module and the
    application .env. Must stay stable across runs for the same host.
    """
    db_user: str
    db_password: str
    db_name: str
    db_host: str = "localhost"
    db_port: int = 3306
    app_key: Optional[str] = None

    def is_complete(self) -> bool:
        return bool(self.db_user and self.db_password and self.db_name)

    def __repr__(self) -> str:
        return (
            f"Credentials(db_user={self.db_user!r}, db_name={self.db_name!r}, "
            f"db_host={self.db_host!r}, db_port={self.db_port}, "
            f"app_key={'set' if self.app_key else None})"
        )

    __str__ = __repr__


@dataclass(frozen=True)
class HostState:
    """
    Snapshot of the host at the start of a run. Derived every time, never persisted.
    """
    installed: bool = False
    cleaned_up: bool = False
    cleanup_marker_text: Optional[str] = None
    existing_credentials: Optional[Credentials] = None
    os_codename: str = ""
    certificates: Tuple[str, ...] = field(default_factory=tuple)

    def has_certificate(self, domain: str) -> bool:
        return domain in self.certificates
