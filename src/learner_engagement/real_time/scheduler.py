"""
Continuous Analysis Scheduler

Runs a tick function at a fixed cadence on a dedicated thread. Ticks never
overlap: the next tick is scheduled only after the current one returns, and
a tick that overruns the interval defers the next one instead of queuing
extra work.
"""

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..exceptions import CaptureError

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    STOPPED = 'stopped'
    RUNNING = 'running'


class AnalysisScheduler:
    """
    Fixed-interval tick loop with cooperative cancellation.

    ``stop()`` may be called from any thread at any time. It sets the stop
    flag, then blocks until the in-flight tick (if any) has finished.
    A CaptureError raised by the tick ends the loop and is handed to
    ``on_fatal``; any other exception is logged and the loop continues.
    """

    def __init__(self, tick: Callable[[], Any], interval_ms: int = 100,
                 on_fatal: Optional[Callable[[Exception], None]] = None,
                 name: str = 'analysis-scheduler'):
        """
        Initialize the scheduler.

        Args:
            tick: Function run once per tick
            interval_ms: Target interval between tick starts
            on_fatal: Called with the CaptureError that ended the loop
            name: Thread name
        """
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.tick = tick
        self.interval_s = interval_ms / 1000.0
        self.on_fatal = on_fatal
        self.name = name

        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

        # Statistics
        self.ticks_completed = 0
        self.ticks_failed = 0
        self.ticks_deferred = 0
        self.last_tick_ms = 0.0

    @property
    def state(self) -> SchedulerState:
        thread = self._thread
        if thread is not None and thread.is_alive() and not self._stop_event.is_set():
            return SchedulerState.RUNNING
        return SchedulerState.STOPPED

    @property
    def running(self) -> bool:
        return self.state == SchedulerState.RUNNING

    def start(self):
        with self._state_lock:
            if self._thread is not None and self._thread.is_alive():
                logger.warning("Scheduler already running")
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        logger.info(f"Scheduler started ({self.interval_s * 1000:.0f} ms interval)")

    def on_tick_thread(self) -> bool:
        """Whether the caller is running inside a tick."""
        return self._thread is threading.current_thread()

    def stop(self, timeout: Optional[float] = None):
        """
        Stop the loop. Idempotent.

        Blocks until the in-flight tick completes, except when called from
        inside a tick, where it only sets the stop flag.
        """
        self._stop_event.set()
        with self._state_lock:
            thread = self._thread
        if thread is None:
            return
        if thread is threading.current_thread():
            return
        thread.join(timeout)
        with self._state_lock:
            if self._thread is thread and not thread.is_alive():
                self._thread = None
                logger.info("Scheduler stopped")

    def _run(self):
        while not self._stop_event.is_set():
            started = time.monotonic()
            with self._tick_lock:
                if self._stop_event.is_set():
                    break
                try:
                    self.tick()
                    self.ticks_completed += 1
                except CaptureError as e:
                    logger.error(f"Frame source lost, stopping analysis: {e}")
                    self._stop_event.set()
                    if self.on_fatal is not None:
                        self.on_fatal(e)
                    break
                except Exception as e:
                    self.ticks_failed += 1
                    logger.error(f"Analysis tick failed: {e}", exc_info=True)

            elapsed = time.monotonic() - started
            self.last_tick_ms = elapsed * 1000.0
            if elapsed >= self.interval_s:
                # Overran the interval; run the next tick right away
                self.ticks_deferred += 1
                continue
            self._stop_event.wait(self.interval_s - elapsed)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'interval_ms': self.interval_s * 1000.0,
            'ticks_completed': self.ticks_completed,
            'ticks_failed': self.ticks_failed,
            'ticks_deferred': self.ticks_deferred,
            'last_tick_ms': self.last_tick_ms
        }
