# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/host/apt.py

from __future__ import annotations

import logging
from typing import List, Sequence

from .interface import Runner

log = logging.getLogger("ispstack")

_APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class AptPackageManager:
    """
    apt-get / dpkg-query backed PackageManager.

    force_reconfigure reinstalls with --force-confmiss so configuration files
    removed by a previous cleanup are restored by the package.
    """

    def __init__(self, runner: Runner):
        self.runner = runner

    def refresh_index(self) -> None:
        self.runner.run(["apt-get", "update"], label="apt-update", env=_APT_ENV)

    def is_installed(self, name: str) -> bool:
        r = self.runner.run(
            ["dpkg-query", "-W", "-f=${Status}", name],
            label="dpkg-query",
            check=False,
        )
        return r.returncode == 0 and "install ok installed" in (r.stdout or "")

    def missing(self, names: Sequence[str]) -> List[str]:
        return [n for n in names if not self.is_installed(n)]

    def ensure_installed(self, names: Sequence[str], *, force_reconfigure: bool = False) -> bool:
        names = list(names)
        if not names:
            return False

        if force_reconfigure:
            log.info("Reinstalling %d package(s), restoring missing configuration files", len(names))
            self.runner.run(
                [
                    "apt-get", "install", "--reinstall", "-y",
                    "-o", "Dpkg::Options::=--force-confmiss",
                    *names,
                ],
                label="apt-reinstall",
                env=_APT_ENV,
            )
            return True

        todo = self.missing(names)
        if not todo:
            return False

        log.info("Installing %s", " ".join(todo))
        self.runner.run(
            [
                "apt-get", "install", "-y",
                "-o", "Dpkg::Options::=--force-confdef",
                "-o", "Dpkg::Options::=--force-confold",
                *todo,
            ],
            label="apt-install",
            env=_APT_ENV,
        )
        return True
