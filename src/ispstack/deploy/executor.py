# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/deploy/executor.py

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Set

from .handlers import Toolkit
from .handlers import get as get_handler
from .handlers import has as has_handler
from .models import Plan, RunContext, RunResult, Step, StepKind, StepOutcome, StepRecord, StepStatus
from ..errors import IspStackError, PreconditionWarning, RetryError, TransientExternalError
from ..utils.retry import call_with_retry

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import (
    RunAborted,
    RunSummary,
    StepAttempt,
    StepFailed,
    StepStarted,
    StepSucceeded,
    StepWarning,
    stamp,
)

log = logging.getLogger("ispstack")

# Network-bound kinds. Anything that overwrites state gets a single attempt.
RETRYABLE_KINDS = frozenset({
    StepKind.CONFIGURE_REPOSITORY,
    StepKind.REFRESH_INDEX,
    StepKind.INSTALL_PACKAGE,
    StepKind.ISSUE_CERTIFICATE,
})


@dataclass
class ExecutorOptions:
    retries: int = 3
    delay_seconds: float = 5.0


class StepExecutor:
    """
    Runs a plan strictly in order. The first failing step ends the run;
    nothing is rolled back.
    """

    def __init__(
        self,
        toolkit: Toolkit,
        *,
        options: Optional[ExecutorOptions] = None,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.toolkit = toolkit
        self.options = options or ExecutorOptions()
        self.bus = bus
        self.run_ctx = run_ctx or {}
        self.sleep = sleep

    def _emit(self, event_cls, **fields) -> None:
        if self.bus and self.run_ctx:
            self.bus.emit(event_cls(**fields, **stamp(self.run_ctx)))

    def attempts_for(self, step: Step) -> int:
        if step.kind in RETRYABLE_KINDS:
            return self.options.retries
        if step.kind is StepKind.RUN_COMMAND and step.params.get("network"):
            return self.options.retries
        return 1

    def _execute(self, step: Step, context: RunContext, record: StepRecord) -> bool:
        if not has_handler(step.kind):
            raise IspStackError(f"no handler registered for step kind '{step.kind.value}'")
        handler = get_handler(step.kind)

        def _attempt() -> bool:
            record.attempts += 1
            self._emit(StepAttempt, step_id=step.id, attempt=record.attempts)
            return handler(step, context, self.toolkit)

        def _on_retry(attempt: int, exc: BaseException) -> None:
            log.warning("%s: attempt %d failed, retrying: %s", step.id, attempt, exc)

        try:
            return call_with_retry(
                _attempt,
                retries=self.attempts_for(step),
                delay=self.options.delay_seconds,
                retry_on=(TransientExternalError,),
                on_retry=_on_retry,
                sleep=self.sleep,
            )
        except RetryError as e:
            # surface the last underlying error, not the wrapper
            raise (e.__cause__ or e) from None

    def run(
        self,
        plan: Plan,
        context: RunContext,
        *,
        abort: Optional[Callable[[], bool]] = None,
    ) -> RunResult:
        result = RunResult(records={s.id: StepRecord(s.id) for s in plan})
        succeeded: Set[str] = set()
        current: Optional[Step] = None

        try:
            for step in plan:
                if abort is not None and abort():
                    result.aborted = True
                    self._emit(RunAborted, last_completed=result.last_completed, reason="abort requested")
                    log.warning("Run aborted before %s", step.id)
                    break

                current = step
                record = result.records[step.id]
                missing = [d for d in step.depends_on if d not in succeeded]

                record.transition(StepStatus.RUNNING)
                self._emit(StepStarted, step_id=step.id, kind=step.kind.value, target=step.target)
                log.info("==> %s", step.label())
                t0 = time.time()

                try:
                    if missing:
                        raise IspStackError(f"dependencies not satisfied: {', '.join(missing)}")
                    changed = self._execute(step, context, record)
                except PreconditionWarning as w:
                    record.warnings.append(str(w))
                    self._emit(StepWarning, step_id=step.id, message=str(w))
                    log.warning("%s: %s", step.id, w)
                    changed = False
                except Exception as e:
                    record.transition(StepStatus.FAILED)
                    record.error = str(e)
                    record.duration_ms = int((time.time() - t0) * 1000)
                    result.failed_step = step.id
                    result.error = str(e)
                    self._emit(StepFailed, step_id=step.id, attempts=record.attempts, error=str(e))
                    log.error("%s failed: %s", step.id, e)
                    log.debug("%s failure detail", step.id, exc_info=True)
                    break

                record.transition(StepStatus.SUCCEEDED)
                record.outcome = StepOutcome.CHANGED if changed else StepOutcome.UNCHANGED
                record.duration_ms = int((time.time() - t0) * 1000)
                if changed:
                    context.changed.add(step.id)
                succeeded.add(step.id)
                result.completed_steps.append(step.id)
                current = None
                self._emit(
                    StepSucceeded,
                    step_id=step.id,
                    outcome=record.outcome.value,
                    attempts=record.attempts,
                    duration_ms=record.duration_ms,
                )

        except KeyboardInterrupt:
            result.aborted = True
            if current is not None:
                record = result.records[current.id]
                if record.status is StepStatus.RUNNING:
                    record.transition(StepStatus.FAILED)
                    record.error = "interrupted"
            self._emit(RunAborted, last_completed=result.last_completed, reason="interrupted")
            log.warning("Interrupted, last completed step: %s", result.last_completed or "<none>")

        self._emit(
            RunSummary,
            completed=len(result.completed_steps),
            changed=len(result.changed_steps),
            failed_step=result.failed_step,
            error=result.error,
        )
        log.info(result.summary())
        return result
