# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/host/interface.py

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Sequence

from ..config.variants import RepositorySpec


class PackageManager(Protocol):
    """
    Installs distribution packages. Implementations must be idempotent:
    ensure_installed() returns False when nothing had to change.
    """

    def refresh_index(self) -> None: ...

    def is_installed(self, name: str) -> bool: ...

    def ensure_installed(self, names: Sequence[str], *, force_reconfigure: bool = False) -> bool: ...


class ServiceManager(Protocol):
    def enable(self, name: str) -> bool: ...

    def start(self, name: str) -> bool: ...

    def stop(self, name: str) -> bool: ...

    def restart(self, name: str) -> None: ...

    def reload(self, name: str) -> None: ...

    def is_active(self, name: str) -> bool: ...

    def is_enabled(self, name: str) -> bool: ...


class TemplateRenderer(Protocol):
    def render(self, template_id: str, variables: Dict[str, Any]) -> str: ...

    def write(
        self,
        template_id: str,
        variables: Dict[str, Any],
        target: Path,
        *,
        mode: Optional[int] = None,
    ) -> bool: ...


class RepositoryConfigurer(Protocol):
    def add(self, spec: RepositorySpec) -> bool: ...


class Runner(Protocol):
    def run(
        self,
        cmd: Sequence[str],
        *,
        label: Optional[str] = None,
        check: bool = True,
        **kwargs: Any,
    ) -> subprocess.CompletedProcess: ...
