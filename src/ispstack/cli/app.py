# src/ispstack/cli/app.py
from __future__ import annotations

import socket
from pathlib import Path
from typing import List, Optional

import typer

from ispstack.config.loader import load_config
from ispstack.config.models import DesiredConfig, HostPaths
from ispstack.deploy.cleanup import render_cleanup_script
from ispstack.deploy.executor import ExecutorOptions
from ispstack.deploy.models import Plan, RunResult
from ispstack.deploy.planner import PlanBuilder
from ispstack.deploy.reconciler import Reconciler, default_toolkit
from ispstack.errors import ConcurrentRunError, FatalStepError, InputError
from ispstack.execution.runner import CommandRunner
from ispstack.host.files import write_if_changed
from ispstack.host.templates import JinjaTemplateRenderer
from ispstack.logging.log import init_logging
from ispstack.observers.console import ConsoleObserver
from ispstack.observers.dispatcher import EventBus
from ispstack.observers.jsonfile import JsonFileObserver
from ispstack.observers.logger import LoggerObserver
from ispstack.observers.events import new_ctx
from ispstack.state.detector import StateDetector


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="ispstack: provision the ISP/hotspot billing stack on an Ubuntu host")

EXIT_FATAL = 1
EXIT_INPUT = 2
EXIT_INTERRUPTED = 130

ConfigOpt = typer.Option(None, "--config", "-c", help="Desired configuration (YAML)")
DomainOpt = typer.Option(None, "--domain", help="Public host name of the billing site")
CodenameOpt = typer.Option(None, "--codename", help="Ubuntu codename, detected when omitted")
EmailOpt = typer.Option(None, "--email", help="Contact address for TLS registration")
FlavorOpt = typer.Option(None, "--flavor", help="simpleisp or simplespot")
RootOpt = typer.Option(None, "--root", help="Re-root every host path below this directory")


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _desired(
    config: Optional[Path],
    domain: Optional[str],
    codename: Optional[str],
    email: Optional[str],
    flavor: Optional[str],
    root: Optional[Path],
) -> DesiredConfig:
    overrides = {"domain": domain, "codename": codename, "email": email, "flavor": flavor}
    desired = load_config(config, overrides={k: v for k, v in overrides.items() if v})
    if root is not None:
        desired = desired.model_copy(update={"paths": desired.paths.under(root)})
    return desired


def _session(desired: DesiredConfig, *, verbose: bool, log_dir: Optional[Path]) -> Reconciler:
    logger, run_id, log_path = init_logging(base_dir=log_dir, verbose=verbose)
    observers = [
        ConsoleObserver(),
        LoggerObserver(logger),
        JsonFileObserver(log_path.parent / f"{run_id}.jsonl"),
    ]
    bus = EventBus(observers=observers)
    run_ctx = new_ctx(host=socket.gethostname(), codename=desired.codename, run_id=run_id)
    runner = CommandRunner(logger=logger)
    toolkit = default_toolkit(desired, runner, bus=bus, event_ctx=run_ctx)
    return Reconciler(desired, toolkit, bus=bus, run_ctx=run_ctx, options=ExecutorOptions())


def _print_plan(plan: Plan) -> None:
    width = max((len(s.id) for s in plan), default=0)
    for i, step in enumerate(plan, start=1):
        deps = f"  (after {', '.join(step.depends_on)})" if step.depends_on else ""
        typer.echo(f"{i:3d}. {step.id:<{width}}  {step.kind.value:<20}  {step.label()}{deps}")
    forced = " (force reconfigure)" if plan.force_reconfigure else ""
    typer.echo(f"{len(plan)} steps for {plan.codename}{forced}")


def _print_completed(completed: List[str]) -> None:
    typer.echo("Completed steps:", err=True)
    for sid in completed:
        typer.echo(f"  - {sid}", err=True)
    if not completed:
        typer.echo("  (none)", err=True)


def _finish(result: RunResult) -> None:
    typer.echo(result.summary())
    for w in result.warnings:
        typer.echo(f"warning: {w}")
    if result.aborted:
        typer.echo(f"Aborted. Last completed step: {result.last_completed or '<none>'}", err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED)


def _fail_step(e: FatalStepError) -> None:
    _print_completed(e.completed_steps)
    typer.echo(f"Failed step: {e.step_id}", err=True)
    typer.echo(f"Error: {e.cause}", err=True)
    raise typer.Exit(code=EXIT_FATAL)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def install(
    config: Optional[Path] = ConfigOpt,
    domain: Optional[str] = DomainOpt,
    codename: Optional[str] = CodenameOpt,
    email: Optional[str] = EmailOpt,
    flavor: Optional[str] = FlavorOpt,
    root: Optional[Path] = RootOpt,
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the plan and exit"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Directory for run logs"),
):
    """
    Detect host state, build the plan and execute it.
    """
    try:
        desired = _desired(config, domain, codename, email, flavor, root)
        if dry_run:
            host_state = StateDetector(desired.paths).detect()
            _print_plan(PlanBuilder(desired.paths, desired.cleanup).build(desired, host_state))
            return
        reconciler = _session(desired, verbose=verbose, log_dir=log_dir)
        result = reconciler.reconcile()
    except InputError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_INPUT)
    except ConcurrentRunError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_FATAL)
    except FatalStepError as e:
        _fail_step(e)
    except KeyboardInterrupt:
        typer.echo("Interrupted.", err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED)
    else:
        _finish(result)


@app.command()
def plan(
    config: Optional[Path] = ConfigOpt,
    domain: Optional[str] = DomainOpt,
    codename: Optional[str] = CodenameOpt,
    email: Optional[str] = EmailOpt,
    flavor: Optional[str] = FlavorOpt,
    root: Optional[Path] = RootOpt,
):
    """
    Print the ordered plan for this host without executing anything.
    """
    try:
        desired = _desired(config, domain, codename, email, flavor, root)
        host_state = StateDetector(desired.paths).detect()
        _print_plan(PlanBuilder(desired.paths, desired.cleanup).build(desired, host_state))
    except InputError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_INPUT)


@app.command()
def status(
    config: Optional[Path] = ConfigOpt,
    root: Optional[Path] = RootOpt,
):
    """
    Print the detected host state. The database password is never shown.
    """
    if config is not None:
        try:
            paths = _desired(config, None, None, None, None, root).paths
        except InputError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(code=EXIT_INPUT)
    else:
        paths = HostPaths()
        if root is not None:
            paths = paths.under(root)
    state = StateDetector(paths).detect()
    creds = state.existing_credentials

    typer.echo(f"codename:     {state.os_codename or '<unknown>'}")
    typer.echo(f"installed:    {'yes' if state.installed else 'no'}")
    marker = f" ({state.cleanup_marker_text})" if state.cleanup_marker_text else ""
    typer.echo(f"cleaned up:   {'yes' if state.cleaned_up else 'no'}{marker}")
    if creds is not None:
        typer.echo(f"credentials:  user={creds.db_user} database={creds.db_name} host={creds.db_host}:{creds.db_port}")
    else:
        typer.echo("credentials:  none")
    typer.echo(f"certificates: {', '.join(state.certificates) or 'none'}")


@app.command()
def cleanup(
    config: Optional[Path] = ConfigOpt,
    domain: Optional[str] = DomainOpt,
    flavor: Optional[str] = FlavorOpt,
    root: Optional[Path] = RootOpt,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Directory for run logs"),
):
    """
    Reverse the installation and leave a cleanup marker for the next install.
    """
    try:
        desired = _desired(config, domain, None, None, flavor, root)
    except InputError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_INPUT)

    if not yes:
        typer.confirm(
            f"This removes the {desired.domain} installation and drops its database. Continue?",
            abort=True,
        )

    try:
        result = _session(desired, verbose=verbose, log_dir=log_dir).cleanup()
    except ConcurrentRunError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_FATAL)
    except FatalStepError as e:
        _fail_step(e)
    except KeyboardInterrupt:
        typer.echo("Interrupted.", err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED)
    else:
        _finish(result)


@app.command("render-cleanup")
def render_cleanup(
    config: Optional[Path] = ConfigOpt,
    domain: Optional[str] = DomainOpt,
    flavor: Optional[str] = FlavorOpt,
    root: Optional[Path] = RootOpt,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Defaults to the host's cleanup script path"),
):
    """
    Write the cleanup script without touching anything else.
    """
    try:
        desired = _desired(config, domain, None, None, flavor, root)
    except InputError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_INPUT)

    target = output or desired.paths.cleanup_script
    script = render_cleanup_script(desired, JinjaTemplateRenderer())
    changed = write_if_changed(target, script, mode=0o700)
    typer.echo(f"{target}: {'written' if changed else 'unchanged'}")


if __name__ == "__main__":
    app()
