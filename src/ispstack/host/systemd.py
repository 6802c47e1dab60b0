# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/host/systemd.py

from __future__ import annotations

from .interface import Runner


class SystemdServiceManager:
    """
    systemctl backed ServiceManager. enable/start/stop report whether they
    changed anything.
    """

    def __init__(self, runner: Runner):
        self.runner = runner

    def _systemctl(self, *args: str, check: bool = True):
        return self.runner.run(["systemctl", *args], label=f"systemctl-{args[0]}", check=check)

    def is_active(self, name: str) -> bool:
        return self._systemctl("is-active", "--quiet", name, check=False).returncode == 0

    def is_enabled(self, name: str) -> bool:
        return self._systemctl("is-enabled", "--quiet", name, check=False).returncode == 0

    def enable(self, name: str) -> bool:
        if self.is_enabled(name):
            return False
        self._systemctl("enable", name)
        return True

    def start(self, name: str) -> bool:
        if self.is_active(name):
            return False
        self._systemctl("start", name)
        return True

    def stop(self, name: str) -> bool:
        if not self.is_active(name):
            return False
        self._systemctl("stop", name)
        return True

    def restart(self, name: str) -> None:
        self._systemctl("restart", name)

    def reload(self, name: str) -> None:
        self._systemctl("reload", name)
