"""Bounded per-user store of difficulty adjustments."""

from __future__ import annotations

from collections import deque
from threading import RLock
from typing import Deque, Dict, List, Optional

from .quest_models import DifficultyAdjustmentResult

DEFAULT_HISTORY_LIMIT = 20


def _normalize_user_id(user_id: str) -> str:
    normalized = user_id.strip().lower()
    if not normalized:
        raise ValueError("User id cannot be empty when recording adjustments.")
    return normalized


class AdjustmentHistory:
    """Process-local ring buffer of adjustments per user; the oldest entry is evicted first."""

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._limit = max(limit, 1)
        self._entries: Dict[str, Deque[DifficultyAdjustmentResult]] = {}
        self._lock = RLock()

    @property
    def limit(self) -> int:
        return self._limit

    def append(self, user_id: str, adjustment: DifficultyAdjustmentResult) -> None:
        key = _normalize_user_id(user_id)
        with self._lock:
            buffer = self._entries.setdefault(key, deque(maxlen=self._limit))
            buffer.append(adjustment.model_copy(deep=True))

    def extend(self, user_id: str, adjustments: List[DifficultyAdjustmentResult]) -> None:
        for adjustment in adjustments:
            self.append(user_id, adjustment)

    def list(self, user_id: str) -> List[DifficultyAdjustmentResult]:
        """Entries oldest first, as copies."""
        key = _normalize_user_id(user_id)
        with self._lock:
            buffer = self._entries.get(key)
            if not buffer:
                return []
            return [entry.model_copy(deep=True) for entry in buffer]

    def recent(self, user_id: str, count: int) -> List[DifficultyAdjustmentResult]:
        if count <= 0:
            return []
        return self.list(user_id)[-count:]

    def mark_rolled_back(self, user_id: str, adjustment_id: str) -> Optional[DifficultyAdjustmentResult]:
        key = _normalize_user_id(user_id)
        with self._lock:
            buffer = self._entries.get(key)
            if not buffer:
                return None
            for index, entry in enumerate(buffer):
                if entry.adjustment_id == adjustment_id:
                    updated = entry.model_copy(update={"rolled_back": True})
                    buffer[index] = updated
                    return updated.model_copy(deep=True)
        return None

    def clear(self, user_id: Optional[str] = None) -> None:
        with self._lock:
            if user_id is None:
                self._entries.clear()
            else:
                self._entries.pop(_normalize_user_id(user_id), None)


__all__ = ["AdjustmentHistory", "DEFAULT_HISTORY_LIMIT"]
