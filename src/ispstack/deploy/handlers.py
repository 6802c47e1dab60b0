# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/deploy/handlers.py
#
# One handler per StepKind. A handler performs its step and returns True when
# it changed the host, False when the step was already satisfied.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .models import RunContext, Step, StepKind
from ..errors import IspStackError, PreconditionWarning
from ..host import files
from ..host.interface import (
    PackageManager,
    RepositoryConfigurer,
    Runner,
    ServiceManager,
    TemplateRenderer,
)
from ..observers.dispatcher import EventBus
from ..observers.events import CredentialsObtained, MarkerConsumed, stamp
from ..state.credentials import CredentialVault
from ..state.models import Credentials

log = logging.getLogger("ispstack")

Handler = Callable[[Step, RunContext, "Toolkit"], bool]

_HANDLERS: Dict[StepKind, Handler] = {}


def register(kind: StepKind):
    """Decorator to register the handler for a step kind."""
    def _wrap(fn: Handler) -> Handler:
        _HANDLERS[kind] = fn
        return fn
    return _wrap


def get(kind: StepKind) -> Handler:
    """Fetch a handler by kind. Raises KeyError if not found."""
    return _HANDLERS[kind]


def has(kind: StepKind) -> bool:
    return kind in _HANDLERS


@dataclass
class Toolkit:
    """The collaborators handlers are allowed to touch."""
    packages: PackageManager
    services: ServiceManager
    renderer: TemplateRenderer
    repositories: RepositoryConfigurer
    runner: Runner
    vault: CredentialVault
    bus: Optional[EventBus] = None
    event_ctx: Dict[str, Any] = field(default_factory=dict)

    def emit(self, event_cls, **fields: Any) -> None:
        if self.bus and self.event_ctx:
            self.bus.emit(event_cls(**fields, **stamp(self.event_ctx)))


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _credential_values(creds: Credentials) -> Dict[str, Any]:
    return {
        "db_host": creds.db_host,
        "db_port": creds.db_port,
        "db_name": creds.db_name,
        "db_user": creds.db_user,
        "db_password": creds.db_password,
        "app_key": creds.app_key,
    }


def _skipped_by_triggers(step: Step, ctx: RunContext) -> bool:
    return "only_if_changed" in step.params and not ctx.triggered(step)


def _read_env_value(path: Path, key: str) -> Optional[str]:
    try:
        text = path.read_text()
    except OSError:
        return None
    for line in text.splitlines():
        if line.startswith(f"{key}="):
            return line.split("=", 1)[1].strip() or None
    return None


def _mysql(kit: Toolkit, sql: str, *, label: str, secret: bool = False):
    return kit.runner.run(["mysql", "-N", "-B"], label=label, input=sql, secret=secret)


# ---------------------------------------------------------------------
# Packages & repositories
# ---------------------------------------------------------------------
@register(StepKind.CONFIGURE_REPOSITORY)
def configure_repository(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    return kit.repositories.add(step.params["spec"])


@register(StepKind.REFRESH_INDEX)
def refresh_index(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    kit.packages.refresh_index()
    # the index is a cache, refreshing it changes no configured state
    return False


@register(StepKind.INSTALL_PACKAGE)
def install_package(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    return kit.packages.ensure_installed(
        step.params["names"],
        force_reconfigure=bool(step.params.get("force_reconfigure")),
    )


# ---------------------------------------------------------------------
# Credentials & database
# ---------------------------------------------------------------------
@register(StepKind.OBTAIN_CREDENTIALS)
def obtain_credentials(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    if ctx.credentials is not None:
        raise IspStackError("credentials were already obtained in this run")
    ctx.credentials = kit.vault.obtain(ctx.host_state)
    reused = bool(kit.vault.last_obtain_reused)
    kit.emit(CredentialsObtained, db_user=ctx.credentials.db_user, reused=reused)
    return not reused


@register(StepKind.PERSIST_CREDENTIALS)
def persist_credentials(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    return kit.vault.persist(ctx.require_credentials(step))


@register(StepKind.DATABASE)
def database(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    """
    Run `statements` unless `probe` already returns `expect`.
    Statements and probe may reference {db_name}, {db_user} and {db_password}.
    """
    values: Dict[str, Any] = {}
    if step.params.get("credentials"):
        if ctx.credentials is None and step.params.get("optional"):
            raise PreconditionWarning("no database credentials known, nothing to do")
        values = _credential_values(ctx.require_credentials(step))

    probe = step.params.get("probe")
    if probe:
        r = _mysql(kit, probe.format(**values), label=f"{step.id}:check")
        if (r.stdout or "").strip() == str(step.params.get("expect", "")):
            return False

    sql = ";\n".join(s.format(**values) for s in step.params["statements"]) + ";\n"
    _mysql(kit, sql, label=step.id, secret=bool(values))
    return True


# ---------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------
@register(StepKind.RENDER_TEMPLATE)
@register(StepKind.WRITE_CLEANUP_SCRIPT)
def render_template(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    target = Path(step.target)
    variables = dict(step.params.get("variables") or {})
    if step.params.get("credentials"):
        variables.update(_credential_values(ctx.require_credentials(step)))
    for key in step.params.get("keep_existing") or []:
        name = key.lower()
        if not variables.get(name):
            variables[name] = _read_env_value(target, key)

    changed = kit.renderer.write(step.params["template"], variables, target, mode=step.params.get("mode"))
    if step.params.get("owner") or step.params.get("group"):
        changed |= files.ensure_owner(target, step.params.get("owner"), step.params.get("group"))
    return changed


@register(StepKind.ENABLE_MODULE)
def enable_module(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    source = Path(step.params["source"])
    if not source.exists():
        raise IspStackError(f"cannot enable {step.target}: {source} does not exist")
    changed = False
    for link in step.params["links"]:
        changed |= files.ensure_symlink(source, Path(link))
    return changed


@register(StepKind.SET_PERMISSION)
def set_permission(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    changed = files.ensure_ownership(Path(step.target), step.params["user"], step.params["group"])
    mode = step.params.get("mode")
    if mode is not None:
        for path in step.params.get("writable") or []:
            changed |= files.ensure_mode(Path(path), mode)
    return changed


@register(StepKind.REMOVE_PATH)
def remove_path(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    return files.remove_path(Path(step.target))


@register(StepKind.CONSUME_MARKER)
def consume_marker(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    removed = files.remove_path(Path(step.target))
    if removed:
        log.info("Cleanup marker consumed (%s)", ctx.host_state.cleanup_marker_text or "no timestamp")
        kit.emit(MarkerConsumed, path=step.target, marker_text=ctx.host_state.cleanup_marker_text)
    return removed


@register(StepKind.WRITE_MARKER)
def write_marker(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    stamp_line = datetime.now().strftime("%Y-%m-%d %H:%M:%S") + "\n"
    return files.write_if_changed(Path(step.target), stamp_line)


# ---------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------
def _already_done(step: Step, kit: Toolkit) -> bool:
    creates = step.params.get("creates")
    if creates and Path(creates).exists():
        return True
    unless: Optional[List[str]] = step.params.get("unless")
    if unless:
        r = kit.runner.run(unless, label=f"{step.id}:check", check=False)
        return r.returncode == 0
    return False


def _run(step: Step, kit: Toolkit):
    return kit.runner.run(
        step.params["command"],
        label=step.id,
        cwd=step.params.get("cwd"),
        env=step.params.get("env"),
    )


@register(StepKind.RUN_COMMAND)
def run_command(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    if _skipped_by_triggers(step, ctx) or _already_done(step, kit):
        return False
    _run(step, kit)
    return True


@register(StepKind.RUN_MIGRATION)
def run_migration(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    r = _run(step, kit)
    return "Nothing to migrate" not in (r.stdout or "")


@register(StepKind.SELF_TEST)
def self_test(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    r = kit.runner.run(step.params["command"], label=step.id, check=False)
    output = f"{r.stdout or ''}\n{r.stderr or ''}"
    expect = step.params.get("expect")
    if r.returncode != 0 or (expect and expect not in output):
        lines = [ln for ln in output.strip().splitlines() if ln.strip()]
        detail = lines[-1] if lines else f"exit {r.returncode}"
        raise IspStackError(f"{step.target} self-test failed: {detail}")
    return False


@register(StepKind.ISSUE_CERTIFICATE)
def issue_certificate(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    if ctx.host_state.has_certificate(step.target) or _already_done(step, kit):
        log.info("Reusing existing certificate for %s", step.target)
        return False
    _run(step, kit)
    return True


@register(StepKind.FIREWALL)
def firewall(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    changed = False
    for rule in step.params["rules"]:
        r = kit.runner.run(["ufw", "allow", rule], label=f"{step.id}:{rule}")
        changed |= "Skipping" not in (r.stdout or "")

    status = kit.runner.run(["ufw", "status"], label=f"{step.id}:status", check=False)
    if "Status: active" not in (status.stdout or ""):
        kit.runner.run(["ufw", "--force", "enable"], label=f"{step.id}:enable")
        changed = True
    return changed


# ---------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------
@register(StepKind.ENABLE_SERVICE)
def enable_service(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    return kit.services.enable(step.target)


@register(StepKind.START_SERVICE)
def start_service(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    return kit.services.start(step.target)


@register(StepKind.RESTART_SERVICE)
def restart_service(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    """
    Restart (or reload) only when a trigger changed in this run, or the
    service is down.
    """
    name = step.target
    if not kit.services.is_active(name):
        kit.services.start(name)
        return True
    if _skipped_by_triggers(step, ctx):
        return False
    if step.params.get("action") == "reload":
        kit.services.reload(name)
    else:
        kit.services.restart(name)
    return True


@register(StepKind.STOP_SERVICE)
def stop_service(step: Step, ctx: RunContext, kit: Toolkit) -> bool:
    if not kit.services.stop(step.target):
        raise PreconditionWarning(f"{step.target} is not running")
    return True
