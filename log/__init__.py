"""Audit event recording and replay."""

from .record import ActionRecorder, EventSink, MemoryRecorder
from .replay import history, replay

__all__ = ["ActionRecorder", "EventSink", "MemoryRecorder", "history", "replay"]
