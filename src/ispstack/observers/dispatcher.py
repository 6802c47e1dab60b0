# src/ispstack/observers/dispatcher.py
from __future__ import annotations
import logging
from typing import List, Optional
from .events import BaseEvent
from .interface import Observer

log = logging.getLogger("ispstack")


class EventBus:
    def __init__(self, observers: Optional[List[Observer]] = None):
        self._observers = list(observers or [])

    def add(self, observer: Observer) -> None:
        self._observers.append(observer)

    def emit(self, event: BaseEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception as e:
                # a broken observer never stops the run
                log.debug("observer %s dropped %s: %s", type(ob).__name__, type(event).__name__, e)
