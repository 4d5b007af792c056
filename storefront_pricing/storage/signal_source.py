"""
Demand signal sources.

A signal is a number (views or purchase velocity) per root entity id.
"""

import logging
import threading
from typing import Mapping, Optional

logger = logging.getLogger(__name__)


class StaticSignalSource:
    """Signal source backed by a mutable mapping of entity id -> signal."""

    def __init__(self, signals: Optional[Mapping[str, float]] = None):
        self._lock = threading.Lock()
        self._signals = dict(signals or {})

    def signal(self, entity_id: str) -> Optional[float]:
        with self._lock:
            return self._signals.get(entity_id)

    def set_signal(self, entity_id: str, value: Optional[float]) -> None:
        with self._lock:
            if value is None:
                self._signals.pop(entity_id, None)
            else:
                self._signals[entity_id] = value

    def snapshot(self) -> dict:
        with self._lock:
            return dict(self._signals)
