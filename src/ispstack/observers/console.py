# src/ispstack/observers/console.py
from .events import BaseEvent, StepFailed, StepSucceeded, StepWarning

_HIDDEN = ("ts", "run_id", "host", "codename")


class ConsoleObserver:
    """
    One line per event. Step results are condensed, everything else shows its fields.
    """

    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        k = event.__class__.__name__
        if isinstance(event, StepSucceeded):
            print(f"[{d['ts']}] {event.step_id}: {event.outcome.lower()} ({event.duration_ms}ms)")
            return
        if isinstance(event, StepWarning):
            print(f"[{d['ts']}] {event.step_id}: warning: {event.message}")
            return
        if isinstance(event, StepFailed):
            print(f"[{d['ts']}] {event.step_id}: FAILED after {event.attempts} attempt(s): {event.error}")
            return
        print(f"[{d['ts']}] {k} host={d['host']} codename={d['codename']} data={{"
              + ", ".join(f"{x}={y}" for x, y in d.items() if x not in _HIDDEN) + "}")
