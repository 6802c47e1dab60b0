# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/deploy/reconciler.py

from __future__ import annotations

import logging
import socket
from typing import Callable, Optional

from .cleanup import build_cleanup_plan
from .executor import ExecutorOptions, StepExecutor
from .handlers import Toolkit
from .lock import RunLock
from .models import Plan, RunContext, RunResult
from .planner import PlanBuilder
from ..config.models import DesiredConfig
from ..errors import FatalStepError
from ..execution.runner import CommandRunner
from ..host.apt import AptPackageManager
from ..host.repository import AptRepositoryConfigurer
from ..host.systemd import SystemdServiceManager
from ..host.templates import JinjaTemplateRenderer
from ..state.credentials import CredentialVault
from ..state.detector import StateDetector
from ..state.models import HostState

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import HostStateDetected, new_ctx, stamp

log = logging.getLogger("ispstack")


def default_toolkit(
    desired: DesiredConfig,
    runner: Optional[CommandRunner] = None,
    *,
    bus: Optional[EventBus] = None,
    event_ctx: Optional[dict] = None,
) -> Toolkit:
    """Toolkit wired to apt, systemd, jinja2 and the real credential file."""
    runner = runner or CommandRunner()
    paths = desired.paths
    return Toolkit(
        packages=AptPackageManager(runner),
        services=SystemdServiceManager(runner),
        renderer=JinjaTemplateRenderer(),
        repositories=AptRepositoryConfigurer(runner, sources_dir=paths.apt_sources),
        runner=runner,
        vault=CredentialVault(paths.credential_file, db_name=desired.db_name),
        bus=bus,
        event_ctx=event_ctx or {},
    )


class Reconciler:
    """
    lock -> detect -> plan -> execute, for one host.

    InputError surfaces from plan() before anything is touched. A failed
    step surfaces as FatalStepError carrying the RunResult.
    """

    def __init__(
        self,
        desired: DesiredConfig,
        toolkit: Toolkit,
        *,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
        options: Optional[ExecutorOptions] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.desired = desired
        self.paths = desired.paths
        self.toolkit = toolkit
        self.bus = bus
        self.run_ctx = run_ctx or new_ctx(host=socket.gethostname(), codename=desired.codename)
        if not toolkit.event_ctx:
            toolkit.event_ctx = self.run_ctx
        if toolkit.bus is None:
            toolkit.bus = bus
        extra = {"sleep": sleep} if sleep is not None else {}
        self.executor = StepExecutor(toolkit, options=options, bus=bus, run_ctx=self.run_ctx, **extra)
        self.builder = PlanBuilder(self.paths, desired.cleanup, bus=bus, run_ctx=self.run_ctx)

    def detect(self) -> HostState:
        state = StateDetector(self.paths).detect()
        if self.bus:
            self.bus.emit(HostStateDetected(
                installed=state.installed,
                cleaned_up=state.cleaned_up,
                credentials_present=state.existing_credentials is not None,
                **stamp({**self.run_ctx, "codename": self.desired.codename or state.os_codename or None}),
            ))
        return state

    def plan(self, host_state: Optional[HostState] = None) -> Plan:
        return self.builder.build(self.desired, host_state or self.detect())

    def _execute(self, plan: Plan, context: RunContext, abort) -> RunResult:
        host_state = context.host_state
        if plan.force_reconfigure:
            log.info("Cleanup marker found (%s): packages will be reinstalled with missing config restored",
                     host_state.cleanup_marker_text or "no timestamp")
        result = self.executor.run(plan, context, abort=abort)
        if result.failed_step:
            raise FatalStepError(result.failed_step, result.error or "unknown error", result.completed_steps, result)
        return result

    def reconcile(self, *, abort: Optional[Callable[[], bool]] = None) -> RunResult:
        with RunLock(self.paths.lock_file):
            host_state = self.detect()
            plan = self.plan(host_state)
            return self._execute(plan, RunContext(host_state=host_state, paths=self.paths), abort)

    def cleanup(self, *, abort: Optional[Callable[[], bool]] = None) -> RunResult:
        """Execute the inverse plan. The credential file is read, never regenerated."""
        with RunLock(self.paths.lock_file):
            host_state = self.detect()
            plan = build_cleanup_plan(self.desired)
            context = RunContext(
                host_state=host_state,
                paths=self.paths,
                credentials=host_state.existing_credentials,
            )
            return self._execute(plan, context, abort)
