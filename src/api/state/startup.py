"""Capture and expose startup diagnostic events (restores, auto-starts, bootstrap failures)."""
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List

_startup_events: Deque[Dict] = deque(maxlen=500)


def record_startup_event(kind: str, message: str, **extra):
    _startup_events.append({
        "ts": datetime.now(timezone.utc).isoformat(),
        "kind": kind,
        "message": message,
        **extra,
    })


def get_startup_events(limit: int = 100) -> List[Dict]:
    return list(_startup_events)[-limit:]

__all__ = ["record_startup_event", "get_startup_events"]
