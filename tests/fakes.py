"""
Hand-written stand-ins for the host collaborators.

FakeRunner answers commands by label the way the real host would after the
command ran once: a "<step>:check" probe is satisfied as soon as "<step>"
itself has been executed.
"""
from __future__ import annotations

import grp
import os
import pwd
import subprocess
from pathlib import Path

from ispstack.config.models import DesiredConfig, HostPaths
from ispstack.deploy.handlers import Toolkit
from ispstack.deploy.models import StepKind
from ispstack.errors import ExternalCommandError
from ispstack.host.templates import JinjaTemplateRenderer
from ispstack.observers.interface import Observer
from ispstack.state.credentials import CredentialVault


CURRENT_USER = pwd.getpwuid(os.getuid()).pw_name
CURRENT_GROUP = grp.getgrgid(os.getgid()).gr_name


class Capture(Observer):
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)

    def of(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


class FakeRunner:
    def __init__(self):
        self.calls = []
        self.done = set()
        self.expects = {}
        self.creates = {}
        self.fail = {}
        self.migrated = False
        self.ufw_rules = set()
        self.ufw_active = False

    def register_plan(self, plan):
        for step in plan:
            if step.kind is StepKind.DATABASE and "expect" in step.params:
                self.expects[step.id] = step.params["expect"]
            if step.params.get("creates"):
                self.creates[step.id] = (Path(step.params["creates"]), step.kind is StepKind.ISSUE_CERTIFICATE)

    def labels(self):
        return [label for label, _, _ in self.calls]

    def run(self, cmd, *, label=None, check=True, **kwargs):
        cmd = [str(c) for c in cmd]
        self.calls.append((label, cmd, kwargs))

        failures = self.fail.get(label)
        if failures:
            exc = failures.pop(0) if isinstance(failures, list) else failures
            if exc is not None:
                raise exc

        out, rc = self._answer(cmd, label or "")
        if check and rc != 0:
            raise ExternalCommandError(cmd, rc, stdout=out)
        return subprocess.CompletedProcess(cmd, rc, out, "")

    def _answer(self, cmd, label):
        base, _, suffix = label.partition(":")

        if cmd[0] == "ufw":
            if cmd[1] == "allow":
                if cmd[2] in self.ufw_rules:
                    return "Skipping adding existing rule\nSkipping adding existing rule (v6)\n", 0
                self.ufw_rules.add(cmd[2])
                return "Rule added\nRule added (v6)\n", 0
            if cmd[1] == "status":
                return ("Status: active\n" if self.ufw_active else "Status: inactive\n"), 0
            self.ufw_active = True
            return "Firewall is active and enabled on system startup\n", 0

        if cmd[0] == "freeradius":
            return "Configuration appears to be OK\n", 0

        if "migrate" in cmd:
            out = "Nothing to migrate.\n" if self.migrated else "Migrated:  2024_01_01_000000_create_nas_table\n"
            self.migrated = True
            return out, 0

        if suffix == "check":
            if cmd[0] == "mysql":
                return (self.expects.get(base, "") + "\n" if base in self.done else "0\n"), 0
            return "", 0 if base in self.done else 1

        self.done.add(base)
        created = self.creates.get(base)
        if created:
            path, is_dir = created
            if is_dir:
                path.mkdir(parents=True, exist_ok=True)
            else:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.touch()
        return "", 0


class FakePackageManager:
    def __init__(self, installed=()):
        self.installed = set(installed)
        self.calls = []
        self.refreshes = 0
        self.fail = []

    def refresh_index(self):
        self.refreshes += 1

    def is_installed(self, name):
        return name in self.installed

    def ensure_installed(self, names, *, force_reconfigure=False):
        self.calls.append((list(names), force_reconfigure))
        if self.fail:
            raise self.fail.pop(0)
        missing = [n for n in names if n not in self.installed]
        self.installed.update(names)
        return bool(missing) or force_reconfigure


class FakeServiceManager:
    def __init__(self, active=()):
        self.active = set(active)
        self.enabled = set()
        self.restarts = []
        self.reloads = []
        self.stops = []

    def enable(self, name):
        if name in self.enabled:
            return False
        self.enabled.add(name)
        return True

    def start(self, name):
        if name in self.active:
            return False
        self.active.add(name)
        return True

    def stop(self, name):
        if name not in self.active:
            return False
        self.active.discard(name)
        self.stops.append(name)
        return True

    def restart(self, name):
        self.active.add(name)
        self.restarts.append(name)

    def reload(self, name):
        self.reloads.append(name)

    def is_active(self, name):
        return name in self.active

    def is_enabled(self, name):
        return name in self.enabled


class FakeRepositoryConfigurer:
    def __init__(self):
        self.added = []

    def add(self, spec):
        if spec.name in self.added:
            return False
        self.added.append(spec.name)
        return True


def desired_for(root: Path, **overrides) -> DesiredConfig:
    values = dict(
        domain="example.test",
        codename="jammy",
        email="ops@example.test",
        web_user=CURRENT_USER,
        web_group=CURRENT_GROUP,
        radius_group=CURRENT_GROUP,
        paths=HostPaths().under(root),
    )
    values.update(overrides)
    return DesiredConfig(**values)


def prepare_host(paths: HostPaths, codename: str = "jammy") -> None:
    """What a fresh Ubuntu host (plus the freeradius package) already has."""
    paths.os_release.parent.mkdir(parents=True, exist_ok=True)
    paths.os_release.write_text(f'NAME="Ubuntu"\nVERSION_CODENAME={codename}\nID=ubuntu\n')
    paths.radius_buffered_site.parent.mkdir(parents=True, exist_ok=True)
    paths.radius_buffered_site.write_text("server buffered-sql {\n}\n")


def make_toolkit(desired: DesiredConfig, runner=None, **kw) -> Toolkit:
    return Toolkit(
        packages=kw.pop("packages", None) or FakePackageManager(),
        services=kw.pop("services", None) or FakeServiceManager(),
        renderer=JinjaTemplateRenderer(),
        repositories=kw.pop("repositories", None) or FakeRepositoryConfigurer(),
        runner=runner or FakeRunner(),
        vault=CredentialVault(desired.paths.credential_file, db_name=desired.db_name),
        **kw,
    )
