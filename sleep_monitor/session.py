"""
Sleep Session
=============

Owns the session lifecycle: feeds the state machine, accumulates sleep
and wake metrics, and hands a finalized record to the storage
collaborator when the session stops.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from sleep_monitor.sleep_state import SleepState, SleepStateMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionMetrics:
    """Inputs of the quality score"""
    total_sleep_seconds: float
    deep_sleep_seconds: float
    light_sleep_seconds: float
    wake_ups: int
    spasms: int
    duration_seconds: float


@dataclass(frozen=True)
class SleepSession:
    """Finalized record of one monitoring session"""
    session_id: str
    start_time: float
    end_time: float
    total_sleep_seconds: float
    wake_up_count: int
    quality_score: int
    deep_sleep_seconds: float = 0.0
    light_sleep_seconds: float = 0.0
    spasm_count: int = 0
    avg_breathing_bpm: float = 0.0
    state_timeline: Tuple[Tuple[float, str], ...] = ()

    @property
    def duration_seconds(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class SleepStats:
    """Read-only snapshot of the running session"""
    current_state: SleepState
    breathing_detected: bool
    breathing_rate_bpm: float
    sleep_quality_score: int
    total_sleep_seconds: float
    wake_ups: int
    sleep_phase: str
    session_duration_seconds: float
    deep_sleep_seconds: float = 0.0
    light_sleep_seconds: float = 0.0
    spasm_count: int = 0
    avg_breathing_bpm: float = 0.0
    breathing_variability: float = 0.0
    breaths_detected: int = 0
    pending_transition: Optional[SleepState] = None
    state_duration_seconds: float = 0.0
    last_motion_score: float = 0.0
    motion_mean: float = 0.0


QualityScorer = Callable[[SessionMetrics], int]


def default_quality_score(metrics: SessionMetrics) -> int:
    """
    Sleep quality from 0 to 100.

    Deep sleep ratio (40 pts), wake-ups (30 pts), spasms (15 pts) and
    sleep efficiency (15 pts).
    """
    total = metrics.total_sleep_seconds
    if total <= 0 or metrics.duration_seconds <= 0:
        return 0

    deep_ratio = metrics.deep_sleep_seconds / total
    if 0.30 <= deep_ratio <= 0.50:
        deep_score = 40.0
    elif 0.20 <= deep_ratio <= 0.30:
        deep_score = 30.0
    elif 0.50 <= deep_ratio <= 0.60:
        deep_score = 35.0
    elif 0.10 <= deep_ratio <= 0.20:
        deep_score = 20.0
    elif deep_ratio > 0.60:
        deep_score = 25.0
    else:
        deep_score = 10.0

    wake_score = max(0.0, 30.0 - metrics.wake_ups * 8.0)
    spasm_score = max(0.0, 15.0 - metrics.spasms * 3.0)
    efficiency_score = min(15.0, total / metrics.duration_seconds * 15.0)

    score = int(deep_score + wake_score + spasm_score + efficiency_score)
    return max(0, min(100, score))


class SleepSessionManager:
    """Session lifecycle and metric accumulation around the state machine"""

    def __init__(self,
                 store=None,
                 time_provider: Callable[[], float] = time.time,
                 state_machine: Optional[SleepStateMachine] = None,
                 quality_scorer: QualityScorer = default_quality_score):
        """
        Args:
            store: Storage collaborator with save_session(session), optional
            time_provider: Returns the current time in seconds
            state_machine: State machine sharing the same time provider
            quality_scorer: Maps SessionMetrics to a 0-100 score
        """
        self.store = store
        self.time_provider = time_provider
        self.state_machine = state_machine or SleepStateMachine(time_provider=time_provider)
        self.quality_scorer = quality_scorer

        self.session_id: Optional[str] = None
        self.start_time: Optional[float] = None
        self._reset_metrics()

    def _reset_metrics(self):
        self.total_sleep_seconds = 0.0
        self.deep_sleep_seconds = 0.0
        self.light_sleep_seconds = 0.0
        self.last_motion_score = 0.0
        self._last_update_time: Optional[float] = None
        self._bpm_sum = 0.0
        self._bpm_samples = 0

    @property
    def is_active(self) -> bool:
        return self.start_time is not None

    @property
    def current_state(self) -> SleepState:
        return self.state_machine.current_state

    def start_session(self) -> str:
        """Resets all state and starts a new session"""
        if self.is_active:
            logger.info("Session %s still running, discarding it", self.session_id)

        self._reset_metrics()
        self.state_machine.start()
        self.session_id = uuid.uuid4().hex
        self.start_time = self.time_provider()
        logger.info("Session %s started", self.session_id)
        return self.session_id

    def update(self, score: float) -> SleepState:
        """
        Feeds one rescaled motion score.

        Returns:
            The confirmed sleep state
        """
        now = self.time_provider()
        state = self.state_machine.update(score)
        self.last_motion_score = float(score)

        if not self.is_active:
            return state

        if self._last_update_time is not None:
            delta = max(0.0, now - self._last_update_time)
            if state == SleepState.DEEP_SLEEP:
                self.total_sleep_seconds += delta
                self.deep_sleep_seconds += delta
            elif state.is_sleeping:
                self.total_sleep_seconds += delta
                self.light_sleep_seconds += delta
        self._last_update_time = now

        bpm = self.state_machine.breathing.get_breathing_rate(now)
        if bpm > 0:
            self._bpm_sum += bpm
            self._bpm_samples += 1

        return state

    def _avg_bpm(self) -> float:
        return self._bpm_sum / self._bpm_samples if self._bpm_samples else 0.0

    def _metrics(self, duration: float) -> SessionMetrics:
        return SessionMetrics(
            total_sleep_seconds=self.total_sleep_seconds,
            deep_sleep_seconds=self.deep_sleep_seconds,
            light_sleep_seconds=self.light_sleep_seconds,
            wake_ups=self.state_machine.wake_up_count,
            spasms=self.state_machine.spasm_count,
            duration_seconds=duration,
        )

    def stop_session(self) -> Optional[SleepSession]:
        """
        Finalizes the session and hands it to the store.

        Returns:
            The SleepSession, or None if no session was running
        """
        if not self.is_active:
            logger.warning("stop_session() called but no session is running")
            return None

        end_time = self.time_provider()
        duration = end_time - self.start_time
        quality = int(self.quality_scorer(self._metrics(duration)))

        session = SleepSession(
            session_id=self.session_id,
            start_time=self.start_time,
            end_time=end_time,
            total_sleep_seconds=self.total_sleep_seconds,
            wake_up_count=self.state_machine.wake_up_count,
            quality_score=quality,
            deep_sleep_seconds=self.deep_sleep_seconds,
            light_sleep_seconds=self.light_sleep_seconds,
            spasm_count=self.state_machine.spasm_count,
            avg_breathing_bpm=self._avg_bpm(),
            state_timeline=tuple((t.timestamp, t.new_state.value)
                                 for t in self.state_machine.transitions),
        )

        logger.info("Session %s stopped after %.0fs (sleep %.0fs, deep %.0fs, wake-ups %d, "
                    "spasms %d, quality %d)", session.session_id, duration,
                    session.total_sleep_seconds, session.deep_sleep_seconds,
                    session.wake_up_count, session.spasm_count, quality)

        # Closed before persisting so a second stop cannot save twice
        self.session_id = None
        self.start_time = None
        self.state_machine.stop()

        if self.store is not None:
            try:
                self.store.save_session(session)
            except Exception:
                logger.exception("Failed to save session %s", session.session_id)

        return session

    def get_stats(self) -> SleepStats:
        """Snapshot of the current session, valid at any time"""
        now = self.time_provider()
        machine = self.state_machine
        breathing = machine.breathing

        duration = now - self.start_time if self.is_active else 0.0
        quality = int(self.quality_scorer(self._metrics(duration)))
        state = machine.current_state
        analysis = machine.last_analysis

        return SleepStats(
            current_state=state,
            breathing_detected=state.is_sleeping,
            breathing_rate_bpm=breathing.get_breathing_rate(now),
            sleep_quality_score=quality,
            total_sleep_seconds=self.total_sleep_seconds,
            wake_ups=machine.wake_up_count,
            sleep_phase=breathing.get_sleep_phase(now),
            session_duration_seconds=duration,
            deep_sleep_seconds=self.deep_sleep_seconds,
            light_sleep_seconds=self.light_sleep_seconds,
            spasm_count=machine.spasm_count,
            avg_breathing_bpm=self._avg_bpm(),
            breathing_variability=breathing.get_variability(now),
            breaths_detected=breathing.get_breath_count(),
            pending_transition=machine.pending_state,
            state_duration_seconds=now - machine.state_start_time if machine.state_start_time else 0.0,
            last_motion_score=self.last_motion_score,
            motion_mean=analysis.mean if analysis is not None else 0.0,
        )
