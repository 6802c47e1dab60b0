from __future__ import annotations
import json
from pathlib import Path
from .interface import Observer
from .events import BaseEvent


class JsonFileObserver(Observer):
    """
    Run journal: one JSON object per event in <run_id>.jsonl, next to the run log.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def notify(self, event: BaseEvent) -> None:
        record = {"type": event.__class__.__name__, **event.dict()}
        with self.path.open("a") as f:
            f.write(json.dumps(record, default=str, sort_keys=True) + "\n")
