"""
Engagement Tracking Sessions

``EngagementService`` owns the loaded inference modules and hands out
``TrackingSession`` objects, one per learner and frame source. Each session
owns its feature store, calibration, event detector and scheduler; nothing
is shared between sessions except the read-only modules and the cultural
profile table.
"""

import logging
import threading
import time
import uuid
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import get_default_config, merge_config
from .exceptions import CaptureError, SessionClosedError
from .integration.calibration import (
    CalibrationCoefficients, CalibrationSession, cultural_context, get_cultural_profiles
)
from .integration.engagement_analyzer import EngagementAnalyzer
from .integration.events import CriticalEventDetector
from .integration.feature_store import TemporalFeatureStore
from .integration.heatmap import AttentionHeatmapGenerator
from .modules.model_store import ModelStore
from .modules.resources import ResourceTracker
from .modules.suite import InferenceSuite, create_inference_suite
from .real_time.frame_source import FrameSource
from .real_time.scheduler import AnalysisScheduler
from .types import AttentionHeatmap, CriticalEvent, EngagementSample

logger = logging.getLogger(__name__)

EngagementCallback = Callable[[EngagementSample], None]
CriticalEventCallback = Callable[[CriticalEvent], None]


class SessionState(str, Enum):
    CREATED = 'created'
    CALIBRATING = 'calibrating'
    ACTIVE = 'active'
    STOPPED = 'stopped'
    FAILED = 'failed'


class TrackingSession:
    """
    One learner tracked from one frame source.

    The scheduler thread is the only writer of the session buffers. Callers
    read snapshots through ``current_sample`` and ``history``.
    """

    def __init__(
        self,
        suite: InferenceSuite,
        frame_source: FrameSource,
        subject_id: str,
        cultural_tag: Optional[str],
        config: Dict[str, Any],
        on_engagement_update: Optional[EngagementCallback] = None,
        on_critical_event: Optional[CriticalEventCallback] = None
    ):
        """
        Initialize the session.

        Args:
            suite: Loaded inference modules
            frame_source: Source of frames; opened by ``start``
            subject_id: Learner identifier stamped on every sample
            cultural_tag: Cultural background used for calibration
            config: Full configuration dictionary
            on_engagement_update: Called with every published sample
            on_critical_event: Called with every critical event
        """
        self.session_id = uuid.uuid4().hex
        self.subject_id = subject_id
        self.requested_cultural_tag = cultural_tag
        self.frame_source = frame_source
        self.config = config
        self.on_engagement_update = on_engagement_update
        self.on_critical_event = on_critical_event

        analysis = config.get('analysis', {})
        history = config.get('history', {})
        calibration = config.get('calibration', {})

        self.max_missed_frames = analysis.get('max_missed_frames', 50)
        self.frame_timeout = analysis.get('frame_timeout_s', 0.05)

        self.tracker = ResourceTracker()
        self.store = TemporalFeatureStore(
            capacity=history.get('capacity', 1000),
            gaze_trail_limit=history.get('gaze_trail_limit', 100)
        )
        self.calibration = CalibrationSession(
            duration_ms=calibration.get('duration_ms', 30000),
            profiles=get_cultural_profiles(calibration.get('profiles_path'))
        )
        self.detector = CriticalEventDetector.from_config(config)
        self.analyzer = EngagementAnalyzer(
            suite,
            self.store,
            tracker=self.tracker,
            max_workers=analysis.get('max_workers', 5),
            coefficients=CalibrationCoefficients.from_config(calibration.get('coefficients'))
        )
        self.scheduler = AnalysisScheduler(
            self.tick,
            interval_ms=analysis.get('interval_ms', 100),
            on_fatal=self._on_capture_error,
            name=f'engagement-{subject_id}'
        )

        self.state = SessionState.CREATED
        self.error: Optional[Exception] = None
        self.context = None
        self.disposed = False
        self.sequence = 0
        self.missed_frames = 0
        self.events_emitted = 0
        self._stop_requested = False
        self.started_at: Optional[float] = None
        self._lock = threading.RLock()

    def start(self):
        """
        Open the frame source, begin calibration and start the scheduler.

        Raises:
            CaptureError: If the frame source cannot be opened
        """
        self._check_open()
        try:
            self.frame_source.open()
        except CaptureError as e:
            self.state = SessionState.FAILED
            self.error = e
            raise

        self.calibration.begin(self.requested_cultural_tag)
        self.context = cultural_context(self.calibration.cultural_tag, self.calibration.profile)
        self.state = SessionState.CALIBRATING
        self.started_at = time.time()
        self.scheduler.start()
        logger.info(
            f"Tracking started for '{self.subject_id}' "
            f"(session {self.session_id}, culture '{self.calibration.cultural_tag}')"
        )

    def tick(self):
        """
        Analyze the next frame. Run by the scheduler.

        A ``stop`` requested from a subscriber during the tick takes effect
        once the tick returns.

        Raises:
            CaptureError: If the frame source is closed or keeps returning
                no frames
        """
        try:
            self._analyze_next_frame()
        finally:
            if self._stop_requested:
                self._teardown()

    def _analyze_next_frame(self):
        self._maybe_complete_calibration()

        frame = self.frame_source.read(timeout=self.frame_timeout)
        if frame is None:
            self.missed_frames += 1
            if self.frame_source.closed:
                raise CaptureError(f"Frame source for '{self.subject_id}' closed")
            if self.missed_frames >= self.max_missed_frames:
                raise CaptureError(
                    f"No frame from source for '{self.subject_id}' in {self.missed_frames} ticks"
                )
            logger.debug(f"No frame this tick ({self.missed_frames} missed)")
            return
        self.missed_frames = 0

        self.sequence += 1
        analysis = self.analyzer.analyze(
            frame, self.subject_id, self.sequence, self.context, self.calibration.calibration
        )
        sample = analysis.sample

        if self.calibration.calibrating:
            self.calibration.add_sample(sample)
            self.store.record(sample, analysis.distribution, publish=False)
            self._maybe_complete_calibration()
            return

        self.store.record(sample, analysis.distribution)
        self._publish(sample)

    def _maybe_complete_calibration(self):
        if self.calibration.is_due():
            self.calibration.complete()
            self.state = SessionState.ACTIVE

    def _publish(self, sample: EngagementSample):
        if self.on_engagement_update is not None:
            try:
                self.on_engagement_update(sample)
            except Exception as e:
                logger.error(f"Engagement subscriber failed at sample {sample.sequence}: {e}", exc_info=True)

        # Nothing is delivered once a subscriber has stopped the session
        if self._stop_requested:
            return

        for event in self.detector.evaluate(sample):
            self.events_emitted += 1
            if self.on_critical_event is None:
                continue
            try:
                self.on_critical_event(event)
            except Exception as e:
                logger.error(f"Critical event subscriber failed for {event.kind.value}: {e}", exc_info=True)
            if self._stop_requested:
                return

    def _on_capture_error(self, error: Exception):
        with self._lock:
            self.error = error
            self.state = SessionState.FAILED
            self.frame_source.release()
        logger.error(f"Tracking for '{self.subject_id}' failed: {error}")

    def stop_analysis(self):
        """
        Stop producing samples but keep History readable.

        The frame source stays open until ``stop`` or ``dispose``.
        """
        self.scheduler.stop()

    def stop(self):
        """
        Stop tracking. Idempotent and safe to call from a subscriber.

        Blocks until the in-flight tick completes, then releases the frame
        source and clears the session buffers. Called from inside a tick, the
        teardown runs as soon as that tick returns.
        """
        if self.scheduler.on_tick_thread():
            self._stop_requested = True
            self.scheduler.stop()
            return
        self.scheduler.stop()
        self._teardown()

    def _teardown(self):
        with self._lock:
            self._stop_requested = False
            if self.state in (SessionState.STOPPED, SessionState.CREATED):
                return
            self.frame_source.release()
            self.store.clear()
            self.detector.reset()
            if self.state != SessionState.FAILED:
                self.state = SessionState.STOPPED
        logger.info(f"Tracking stopped for '{self.subject_id}' after {self.sequence} samples")

    def dispose(self):
        """Stop tracking and release the session's worker threads."""
        with self._lock:
            if self.disposed:
                return
            self.disposed = True
        self.stop()
        self.frame_source.release()
        self.analyzer.close()
        logger.info(f"Session {self.session_id} disposed")

    def _check_open(self):
        if self.disposed:
            raise SessionClosedError(f"Session {self.session_id} has been disposed")

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def current_sample(self) -> Optional[EngagementSample]:
        self._check_open()
        return self.store.latest()

    def history(self) -> Tuple[EngagementSample, ...]:
        self._check_open()
        return self.store.history()

    def get_statistics(self) -> Dict[str, Any]:
        calibration = self.calibration.calibration
        return {
            'session_id': self.session_id,
            'subject_id': self.subject_id,
            'state': self.state.value,
            'calibration_state': self.calibration.state.value,
            'calibration_samples': calibration.baseline.sample_count if calibration and calibration.baseline else 0,
            'history_size': len(self.store),
            'samples_produced': self.sequence,
            'critical_events': self.events_emitted,
            'error': str(self.error) if self.error else None,
            'scheduler': self.scheduler.get_statistics(),
            'analyzer': self.analyzer.get_statistics(),
            'resources': self.tracker.stats(),
            'frame_source': self.frame_source.get_statistics()
        }


class EngagementService:
    """
    Entry point of the tracking core.

    Models are loaded on the first ``start_tracking`` call and shared by all
    sessions of the service.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, store: Optional[ModelStore] = None):
        """
        Initialize the service.

        Args:
            config: Configuration dictionary, merged over the defaults
            store: Model store (built from ``config`` if None)
        """
        self.config = merge_config(get_default_config(), config)
        self.model_store = store
        self.suite: Optional[InferenceSuite] = None
        self.heatmap_generator = AttentionHeatmapGenerator.from_config(self.config)
        self.sessions: List[TrackingSession] = []
        self._lock = threading.Lock()

    def _ensure_suite(self) -> InferenceSuite:
        with self._lock:
            if self.suite is None:
                self.suite = create_inference_suite(self.config, self.model_store)
            return self.suite

    def start_tracking(
        self,
        frame_source: FrameSource,
        subject_id: str,
        cultural_tag: Optional[str] = None,
        on_engagement_update: Optional[EngagementCallback] = None,
        on_critical_event: Optional[CriticalEventCallback] = None
    ) -> TrackingSession:
        """
        Start tracking a learner.

        Args:
            frame_source: Frame source to read from
            subject_id: Learner identifier
            cultural_tag: Cultural background (falls back to 'general')
            on_engagement_update: Called with every published sample
            on_critical_event: Called with every critical event

        Returns:
            Running TrackingSession

        Raises:
            InitializationError: If a module cannot be loaded even via its fallback
            CaptureError: If the frame source cannot be opened
        """
        suite = self._ensure_suite()
        session = TrackingSession(
            suite, frame_source, subject_id, cultural_tag, self.config,
            on_engagement_update=on_engagement_update,
            on_critical_event=on_critical_event
        )
        try:
            session.start()
        except CaptureError:
            session.dispose()
            raise

        with self._lock:
            self.sessions.append(session)
        return session

    def stop_tracking(self, session: TrackingSession):
        session.stop()

    def get_current_sample(self, session: TrackingSession) -> Optional[EngagementSample]:
        return session.current_sample()

    def get_history(self, session: TrackingSession) -> Tuple[EngagementSample, ...]:
        return session.history()

    def generate_attention_heatmap(self, session: TrackingSession,
                                   duration_ms: Optional[int] = None) -> AttentionHeatmap:
        """
        Attention heatmap over the session History.

        Args:
            session: Tracking session
            duration_ms: Window length (defaults to ``heatmap.default_duration_ms``)

        Returns:
            AttentionHeatmap
        """
        if duration_ms is None:
            duration_ms = self.config['heatmap'].get('default_duration_ms', 60000)
        return self.heatmap_generator.generate(session.history(), duration_ms)

    def get_service_stats(self, session: Optional[TrackingSession] = None) -> Dict[str, Any]:
        """
        Service statistics.

        Returns:
            Dictionary with ``models_loaded`` (module name to 'primary' or
            'fallback'), ``calibration_state``, ``history_size`` and, when a
            session is given, its detailed statistics under ``session``
        """
        with self._lock:
            sessions = list(self.sessions)
        stats = {
            'models_loaded': self.suite.models_loaded() if self.suite else {},
            'active_sessions': sum(1 for s in sessions if s.running),
            'calibration_state': None,
            'history_size': 0
        }
        if session is not None:
            details = session.get_statistics()
            stats['calibration_state'] = details['calibration_state']
            stats['history_size'] = details['history_size']
            stats['session'] = details
        return stats

    def dispose(self, session: TrackingSession):
        """Full teardown of a session; later calls on it raise SessionClosedError."""
        session.dispose()
        with self._lock:
            if session in self.sessions:
                self.sessions.remove(session)

    def close(self):
        """Dispose every session and release the inference modules."""
        with self._lock:
            sessions = list(self.sessions)
        for session in sessions:
            self.dispose(session)
        with self._lock:
            if self.suite is not None:
                self.suite.close()
                self.suite = None
        logger.info("Engagement service closed")


def create_engagement_service(config: Optional[Dict[str, Any]] = None,
                              store: Optional[ModelStore] = None) -> EngagementService:
    """
    Factory function to create an engagement service.

    Args:
        config: Configuration dictionary
        store: Model store to load artifacts from

    Returns:
        EngagementService
    """
    return EngagementService(config, store)
