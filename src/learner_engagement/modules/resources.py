"""
Per-tick transient buffer accounting.

Every tensor or frame-sized array created while analysing a frame is
registered with a BufferScope. The scope drops its references when the tick
leaves the ``with`` block, on success or on error, and the owning
ResourceTracker keeps counts that tests and service stats can inspect.
"""

import threading
from contextlib import contextmanager
from typing import Any, Iterator, List

import torch


class BufferScope:
    """Holds references to the transient buffers of a single tick."""

    def __init__(self, tracker: 'ResourceTracker', label: str):
        self.tracker = tracker
        self.label = label
        self._buffers: List[Any] = []
        self._lock = threading.Lock()
        self.closed = False

    def track(self, buffer: Any) -> Any:
        """Register a buffer and return it unchanged."""
        if buffer is None:
            return buffer
        with self._lock:
            if self.closed:
                raise RuntimeError(f"Buffer scope '{self.label}' already released")
            self._buffers.append(buffer)
        self.tracker._on_acquire(1)
        return buffer

    def tensor(self, data: Any, dtype: torch.dtype = torch.float32) -> torch.Tensor:
        """Build a tensor from array data and track it."""
        return self.track(torch.as_tensor(data, dtype=dtype))

    def __len__(self) -> int:
        return len(self._buffers)

    def release(self):
        with self._lock:
            count = len(self._buffers)
            self._buffers.clear()
            self.closed = True
        self.tracker._on_release(count)


class ResourceTracker:
    """Counts live per-tick buffers across all scopes of a session."""

    def __init__(self):
        self._lock = threading.Lock()
        self.live_buffers = 0
        self.acquired_total = 0
        self.released_total = 0
        self.open_scopes = 0

    @contextmanager
    def scope(self, label: str = 'tick') -> Iterator[BufferScope]:
        buffer_scope = BufferScope(self, label)
        with self._lock:
            self.open_scopes += 1
        try:
            yield buffer_scope
        finally:
            buffer_scope.release()
            with self._lock:
                self.open_scopes -= 1

    def _on_acquire(self, count: int):
        with self._lock:
            self.live_buffers += count
            self.acquired_total += count

    def _on_release(self, count: int):
        with self._lock:
            self.live_buffers -= count
            self.released_total += count

    def stats(self) -> dict:
        with self._lock:
            return {
                'live_buffers': self.live_buffers,
                'open_scopes': self.open_scopes,
                'acquired_total': self.acquired_total,
                'released_total': self.released_total
            }
