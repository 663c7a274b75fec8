# src/hpcpanel/observers/dispatcher.py
from __future__ import annotations
import logging
from typing import List, Optional
from .events import BaseEvent
from .interface import Observer

log = logging.getLogger("hpcpanel.observers")


class EventBus:
    def __init__(self, observers: Optional[List[Observer]] = None):
        self._observers = list(observers or [])

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def emit(self, event: BaseEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception as e:
                # observers must not break deploys
                log.debug(f"observer {ob.__class__.__name__} failed on {event.__class__.__name__}: {e}")
