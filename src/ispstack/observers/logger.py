from __future__ import annotations
import logging
from .events import BaseEvent, PlanFailed, RunAborted, StepFailed, StepWarning

# Events that belong in the console log, not only in the trace file
_NOTABLE = (StepFailed, StepWarning, PlanFailed, RunAborted)


class LoggerObserver:
    """Mirrors lifecycle events into the run log, one line per event."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        etype = event.__class__.__name__
        msg = ", ".join(f"{k}={v}" for k, v in d.items() if k != "ts" and v is not None)

        level = logging.WARNING if isinstance(event, _NOTABLE) else logging.DEBUG
        self.logger.log(level, "[EVENT] %s: %s", etype, msg)
