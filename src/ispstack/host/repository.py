# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/host/repository.py

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Optional

import requests

from .files import write_if_changed
from .interface import Runner
from ..config.variants import RepositorySpec
from ..errors import IspStackError, TransientExternalError

log = logging.getLogger("ispstack")


class AptRepositoryConfigurer:
    """
    Adds signed apt sources:
      - PPAs through add-apt-repository (skipped when a source file for it exists)
      - plain sources: download the signing key, write the source and pin files
    """

    def __init__(
        self,
        runner: Runner,
        *,
        sources_dir: Path = Path("/etc/apt/sources.list.d"),
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.runner = runner
        self.sources_dir = Path(sources_dir)
        self.session = session or requests.Session()
        self.timeout = timeout

    def add(self, spec: RepositorySpec) -> bool:
        if spec.kind == "ppa":
            return self._add_ppa(spec)
        if spec.kind == "source":
            return self._add_source(spec)
        raise IspStackError(f"unknown repository kind '{spec.kind}' for {spec.name}")

    # -----------------------
    # PPA
    # -----------------------
    def _ppa_present(self, ppa: str) -> bool:
        # ppa:ondrej/php -> ondrej-ubuntu-php-<codename>.list|.sources
        owner, _, name = ppa.removeprefix("ppa:").partition("/")
        pattern = f"{owner}-ubuntu-{name}-*"
        return any(self.sources_dir.glob(pattern))

    def _add_ppa(self, spec: RepositorySpec) -> bool:
        if not spec.ppa:
            raise IspStackError(f"repository {spec.name}: ppa not set")
        if self._ppa_present(spec.ppa):
            return False
        self.runner.run(
            ["add-apt-repository", "-y", spec.ppa],
            label=f"repo-{spec.name}",
            env={"LC_ALL": "C.UTF-8"},
        )
        return True

    # -----------------------
    # Key + source file
    # -----------------------
    def _download(self, url: str) -> bytes:
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransientExternalError(f"failed to download {url}: {e}") from e
        if r.status_code >= 500:
            raise TransientExternalError(f"failed to download {url}: HTTP {r.status_code}")
        if r.status_code != 200:
            raise IspStackError(f"failed to download {url}: HTTP {r.status_code}")
        return r.content

    def _install_key(self, spec: RepositorySpec) -> bool:
        key_path = Path(spec.key_path)
        if key_path.exists() and key_path.stat().st_size > 0:
            return False

        data = self._download(spec.key_url)
        key_path.parent.mkdir(parents=True, exist_ok=True)
        if spec.dearmor:
            with tempfile.NamedTemporaryFile(suffix=".asc") as tmp:
                tmp.write(data)
                tmp.flush()
                self.runner.run(
                    ["gpg", "--batch", "--yes", "--dearmor", "-o", str(key_path), tmp.name],
                    label=f"repo-{spec.name}-key",
                )
        else:
            key_path.write_bytes(data)
        key_path.chmod(0o644)
        log.debug("Installed signing key for %s at %s", spec.name, key_path)
        return True

    def _add_source(self, spec: RepositorySpec) -> bool:
        changed = False
        if spec.key_url and spec.key_path:
            changed |= self._install_key(spec)
        if spec.source_path and spec.source_text is not None:
            changed |= write_if_changed(Path(spec.source_path), spec.source_text, mode=0o644)
        if spec.pin_path and spec.pin_text is not None:
            changed |= write_if_changed(Path(spec.pin_path), spec.pin_text, mode=0o644)
        return changed
