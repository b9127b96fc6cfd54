"""
Sleep State Machine
===================

Classifies the sleep state from rolling motion statistics and breathing
metrics. Every state change has to be observed for a confirmation time
before it becomes current (hysteresis), so single noisy frames cannot
flap the state.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from sleep_monitor.breathing import BreathingAnalyzer

logger = logging.getLogger(__name__)


class SleepState(Enum):
    """Possible states of the monitored subject"""
    UNKNOWN = "unknown"
    CALIBRATING = "calibrating"
    NO_BREATHING = "no_breathing"   # ALERT
    DEEP_SLEEP = "deep_sleep"
    LIGHT_SLEEP = "light_sleep"
    REM_SLEEP = "rem_sleep"
    SPASM = "spasm"                 # Short burst of movement
    AWAKE = "awake"                 # Sustained movement

    @property
    def is_sleeping(self) -> bool:
        return self in SLEEP_STATES


SLEEP_STATES = frozenset({SleepState.DEEP_SLEEP, SleepState.LIGHT_SLEEP, SleepState.REM_SLEEP})


@dataclass
class SleepThresholds:
    """Motion score and breathing thresholds (scores at 1920x1080)"""
    no_motion: float = 10_000.0
    high_motion: float = 3_000_000.0
    deep_motion_low: float = 100_000.0
    deep_motion_high: float = 800_000.0
    rem_motion_low: float = 800_000.0
    rem_motion_high: float = 2_000_000.0
    quiet_ceiling: float = 800_000.0
    deep_bpm_low: float = 25.0
    deep_bpm_high: float = 35.0
    rem_bpm_low: float = 35.0
    rem_bpm_high: float = 50.0
    low_variability: float = 0.10
    high_variability: float = 0.20


@dataclass(frozen=True)
class MotionAnalysis:
    """Statistics over the rolling motion buffer at one instant"""
    mean: float
    recent_mean: float
    recent_max: float
    max30: float
    bpm: float
    variability: float
    sleep_phase: str


@dataclass(frozen=True)
class StateTransition:
    """A confirmed state change"""
    timestamp: float
    old_state: SleepState
    new_state: SleepState


class SleepStateMachine:
    """Hysteresis-driven classifier over a rolling motion buffer"""

    def __init__(self,
                 breathing: Optional[BreathingAnalyzer] = None,
                 thresholds: Optional[SleepThresholds] = None,
                 time_provider: Callable[[], float] = time.time,
                 buffer_seconds: float = 60.0,
                 analysis_window: float = 10.0,
                 spike_window: float = 2.0,
                 quiet_window: float = 30.0,
                 warmup_seconds: float = 10.0,
                 confirm_no_breathing: float = 20.0,
                 confirm_awake: float = 5.0,
                 confirm_spasm: float = 0.5,
                 confirm_default: float = 3.0):
        """
        Args:
            breathing: Breathing analyzer fed with every buffered sample
            thresholds: Classification thresholds
            time_provider: Returns the current time in seconds
            buffer_seconds: Length of the rolling motion buffer
            analysis_window: Window for the mean motion
            spike_window: Window for the spike detector
            quiet_window: Window for the quiet detector
            warmup_seconds: Calibration time after start()
            confirm_no_breathing: Confirmation time for NO_BREATHING
            confirm_awake: Confirmation time for AWAKE (and SPASM promotion)
            confirm_spasm: Confirmation time for SPASM
            confirm_default: Confirmation time for all other states
        """
        self.breathing = breathing or BreathingAnalyzer()
        self.thresholds = thresholds or SleepThresholds()
        self.time_provider = time_provider

        self.buffer_seconds = buffer_seconds
        self.analysis_window = analysis_window
        self.spike_window = spike_window
        self.quiet_window = quiet_window
        self.warmup_seconds = warmup_seconds

        self.confirm_no_breathing = confirm_no_breathing
        self.confirm_awake = confirm_awake
        self.confirm_spasm = confirm_spasm
        self.confirm_default = confirm_default

        # (timestamp, score)
        self.motion_buffer: deque = deque()
        self.transitions: List[StateTransition] = []

        self.current_state = SleepState.UNKNOWN
        self.state_start_time: float = 0.0
        self.start_time: Optional[float] = None
        self.pending_state: Optional[SleepState] = None
        self.pending_state_time: Optional[float] = None
        self.last_analysis: Optional[MotionAnalysis] = None

        self.wake_up_count = 0
        self.spasm_count = 0
        self._was_sleeping = False

    def reset(self):
        """Back to UNKNOWN with empty buffers"""
        self.breathing.reset()
        self.motion_buffer.clear()
        self.transitions.clear()
        self.current_state = SleepState.UNKNOWN
        self.state_start_time = 0.0
        self.start_time = None
        self.pending_state = None
        self.pending_state_time = None
        self.last_analysis = None
        self.wake_up_count = 0
        self.spasm_count = 0
        self._was_sleeping = False

    def start(self):
        """Resets and enters the CALIBRATING warm-up"""
        self.reset()
        now = self.time_provider()
        self.start_time = now
        self._execute_transition(SleepState.CALIBRATING, now)

    def stop(self):
        """Leaves the session state; counters stay readable until the next start()"""
        self.start_time = None
        self.current_state = SleepState.UNKNOWN
        self.pending_state = None
        self.pending_state_time = None

    def update(self, score: float) -> SleepState:
        """
        Feeds one (rescaled) motion score and returns the current state.
        Outside a session (before start() or after stop()) the score is
        ignored.
        """
        now = self.time_provider()

        if self.start_time is None:
            return self.current_state

        if (now - self.start_time) < self.warmup_seconds:
            if self.current_state != SleepState.CALIBRATING:
                self._execute_transition(SleepState.CALIBRATING, now)
            return self.current_state

        self.motion_buffer.append((now, float(score)))
        self._clean_buffer(now)

        self.breathing.process_motion(score, now)

        analysis = self.analyze(now)
        if analysis is None:
            return self.current_state
        self.last_analysis = analysis
        logger.debug("Analysis: %s", analysis)

        target = self._determine_state(analysis)
        self._handle_transition(target, now)
        return self.current_state

    def _clean_buffer(self, now: float):
        cutoff = now - self.buffer_seconds
        while self.motion_buffer and self.motion_buffer[0][0] < cutoff:
            self.motion_buffer.popleft()

    def _window(self, now: float, seconds: float) -> List[float]:
        start = now - seconds
        return [s for t, s in self.motion_buffer if t >= start]

    def analyze(self, now: Optional[float] = None) -> Optional[MotionAnalysis]:
        """
        Computes the rolling statistics.

        Returns:
            MotionAnalysis, or None if the analysis window is empty
        """
        if now is None:
            now = self.time_provider()

        window_scores = self._window(now, self.analysis_window)
        if not window_scores:
            return None

        recent_scores = self._window(now, self.spike_window)
        quiet_scores = self._window(now, self.quiet_window)

        return MotionAnalysis(
            mean=sum(window_scores) / len(window_scores),
            recent_mean=sum(recent_scores) / len(recent_scores) if recent_scores else 0.0,
            recent_max=max(recent_scores) if recent_scores else 0.0,
            max30=max(quiet_scores) if quiet_scores else 0.0,
            bpm=self.breathing.get_breathing_rate(now),
            variability=self.breathing.get_variability(now),
            sleep_phase=self.breathing.get_sleep_phase(now),
        )

    def _determine_state(self, analysis: MotionAnalysis) -> SleepState:
        """Target state, first matching rule wins"""
        th = self.thresholds
        mean = analysis.mean
        bpm = analysis.bpm
        variability = analysis.variability

        # 1. High motion: treated as a spasm first, promoted to awake if it lasts
        if analysis.recent_max > th.high_motion:
            if self.current_state == SleepState.AWAKE:
                return SleepState.AWAKE
            return SleepState.SPASM

        # 2. No motion and no breathing
        if mean < th.no_motion and bpm == 0.0:
            return SleepState.NO_BREATHING

        # 3. REM: moderate motion or fast irregular breathing
        is_rem_motion = th.rem_motion_low <= mean <= th.rem_motion_high
        is_rem_bpm = (th.rem_bpm_low <= bpm <= th.rem_bpm_high
                      and variability > th.high_variability)
        if is_rem_motion or is_rem_bpm:
            return SleepState.REM_SLEEP

        # 4. Deep: low motion or slow regular breathing, and quiet for 30 s
        is_deep_motion = th.deep_motion_low <= mean <= th.deep_motion_high
        is_deep_bpm = (th.deep_bpm_low <= bpm <= th.deep_bpm_high
                       and variability < th.low_variability)
        is_quiet = analysis.max30 < th.quiet_ceiling
        if (is_deep_motion or is_deep_bpm) and is_quiet:
            return SleepState.DEEP_SLEEP

        if self.current_state.is_sleeping:
            return self.current_state

        logger.debug("Fallback to light sleep (mean=%.0f, bpm=%.1f, recent_max=%.0f, max30=%.0f)",
                     mean, bpm, analysis.recent_max, analysis.max30)
        return SleepState.LIGHT_SLEEP

    def _confirmation_time(self, target: SleepState) -> float:
        if self.current_state == SleepState.CALIBRATING:
            return 0.0
        if target == SleepState.NO_BREATHING:
            return self.confirm_no_breathing
        if target == SleepState.AWAKE:
            return self.confirm_awake
        if target == SleepState.SPASM:
            return self.confirm_spasm
        return self.confirm_default

    def _handle_transition(self, target: SleepState, now: float):
        if target == self.current_state:
            # Sustained spasm becomes awake
            if (self.current_state == SleepState.SPASM
                    and now - self.state_start_time > self.confirm_awake):
                self._execute_transition(SleepState.AWAKE, now)
            self.pending_state = None
            self.pending_state_time = None
            return

        confirm_time = self._confirmation_time(target)

        if self.pending_state != target:
            self.pending_state = target
            self.pending_state_time = now
            logger.debug("Pending transition %s -> %s (need %.1fs)",
                         self.current_state.value, target.value, confirm_time)

        if now - self.pending_state_time >= confirm_time:
            self._execute_transition(target, now)

    def _execute_transition(self, new_state: SleepState, now: float):
        old_state = self.current_state
        self.current_state = new_state
        self.state_start_time = now
        self.pending_state = None
        self.pending_state_time = None
        self.transitions.append(StateTransition(now, old_state, new_state))

        if new_state == SleepState.SPASM:
            self.spasm_count += 1

        # A wake-up is counted once per sleep episode, also via SPASM
        if new_state == SleepState.AWAKE:
            if self._was_sleeping:
                self.wake_up_count += 1
                logger.info("Wake up detected, count: %d", self.wake_up_count)
            self._was_sleeping = False
        elif new_state.is_sleeping:
            self._was_sleeping = True

        logger.info("State transition: %s -> %s", old_state.value, new_state.value)
