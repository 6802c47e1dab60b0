# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/state/credentials.py

from __future__ import annotations

import base64
import logging
import os
import secrets
from pathlib import Path
from typing import Dict, Optional

from .models import Credentials, HostState

log = logging.getLogger("ispstack")

CREDENTIALS_HEADER = "MySQL Credentials:"

_REQUIRED_KEYS = ("DB_DATABASE", "DB_USERNAME", "DB_PASSWORD")


def _parse_lines(text: str) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        # split on the first '=' only, base64 passwords may contain '='
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return values


def parse_credentials(text: str) -> Optional[Credentials]:
    """
    Parse the key=value credential layout.
    Returns None unless DB_DATABASE, DB_USERNAME and DB_PASSWORD are all non-empty.
    """
    values = _parse_lines(text)
    if not all(values.get(k) for k in _REQUIRED_KEYS):
        return None

    try:
        port = int(values.get("DB_PORT") or 3306)
    except ValueError:
        port = 3306

    creds = Credentials(
        db_user=values["DB_USERNAME"],
        db_password=values["DB_PASSWORD"],
        db_name=values["DB_DATABASE"],
        db_host=values.get("DB_HOST") or "localhost",
        db_port=port,
        app_key=values.get("APP_KEY") or None,
    )
    return creds if creds.is_complete() else None


def format_credentials(creds: Credentials) -> str:
    lines = [
        CREDENTIALS_HEADER,
        f"DB_HOST={creds.db_host}",
        f"DB_PORT={creds.db_port}",
        f"DB_DATABASE={creds.db_name}",
        f"DB_USERNAME={creds.db_user}",
        f"DB_PASSWORD={creds.db_password}",
    ]
    if creds.app_key:
        lines.append(f"APP_KEY={creds.app_key}")
    return "\n".join(lines) + "\n"


def generate_credentials(db_name: str = "radius") -> Credentials:
    return Credentials(
        db_user=f"user_{secrets.token_hex(3)}",
        # 18 bytes -> 24 url-safe chars, no padding and nothing sed or SQL would choke on
        db_password=secrets.token_urlsafe(18),
        db_name=db_name,
        app_key="base64:" + base64.b64encode(secrets.token_bytes(32)).decode("ascii"),
    )


class CredentialVault:
    """
    Generates or reuses the stack's database credentials.

    obtain() must be called once per reconciliation; its result is threaded
    through every step that embeds credentials.
    """

    def __init__(self, path: Path, *, db_name: str = "radius"):
        self.path = Path(path)
        self.db_name = db_name
        self.last_obtain_reused: Optional[bool] = None

    def obtain(self, host_state: HostState) -> Credentials:
        existing = host_state.existing_credentials
        if existing is not None and existing.is_complete():
            log.info("Reusing database credentials for user=%s db=%s", existing.db_user, existing.db_name)
            self.last_obtain_reused = True
            return existing

        if self.path.exists():
            log.info("Credential file %s is incomplete, generating new credentials", self.path)
        else:
            log.info("No credential file found, generating new credentials")

        creds = generate_credentials(self.db_name)
        self.persist(creds)
        self.last_obtain_reused = False
        return creds

    def persist(self, creds: Credentials) -> bool:
        """
        Write the credential file (mode 0600). Returns False if it already
        holds exactly this content.
        """
        content = format_credentials(creds)
        try:
            if self.path.read_text() == content:
                return False
        except OSError:
            pass

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f".{self.path.name}.tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.replace(tmp, self.path)
        log.debug("Credentials written to %s", self.path)
        return True

    def load(self) -> Optional[Credentials]:
        try:
            return parse_credentials(self.path.read_text())
        except OSError:
            return None
