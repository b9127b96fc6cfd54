"""
Breathing Analysis
==================

Estimates breathing rate and variability from the motion score series
using threshold-crossing peak detection.
"""

import logging
import numpy as np
from collections import deque
from typing import Optional

logger = logging.getLogger(__name__)


class BreathingAnalyzer:
    """Turns periodic motion spikes into a respiration rate"""

    LOW_VARIABILITY_THRESHOLD = 0.10
    HIGH_VARIABILITY_THRESHOLD = 0.20

    def __init__(self,
                 peak_threshold: float = 50_000.0,
                 min_interval: float = 1.0,
                 max_interval: float = 5.0,
                 decay_timeout: float = 15.0,
                 interval_history: int = 50,
                 peak_history: int = 100,
                 rate_window: int = 10,
                 variability_window: int = 20):
        """
        Args:
            peak_threshold: Motion score a peak has to cross
            min_interval: Shortest plausible breathing period (s)
            max_interval: Longest plausible breathing period (s)
            decay_timeout: Seconds without an accepted peak before rate decays to 0
            interval_history: Accepted intervals kept
            peak_history: Peak timestamps kept
            rate_window: Intervals averaged for the rate
            variability_window: Intervals used for the variability
        """
        self.peak_threshold = peak_threshold
        self.min_interval = min_interval
        self.max_interval = max_interval
        self.decay_timeout = decay_timeout
        self.rate_window = rate_window
        self.variability_window = variability_window

        self.breath_timestamps: deque = deque(maxlen=peak_history)
        self.breath_intervals: deque = deque(maxlen=interval_history)
        self.last_peak_time: Optional[float] = None
        self.last_breath_time: Optional[float] = None
        self._in_peak = False

    def reset(self):
        """Resets all history and peak tracking"""
        self.breath_timestamps.clear()
        self.breath_intervals.clear()
        self.last_peak_time = None
        self.last_breath_time = None
        self._in_peak = False

    def process_motion(self, score: float, timestamp: float) -> Optional[float]:
        """
        Feeds one motion sample.

        Args:
            score: Motion score
            timestamp: Sample time in seconds

        Returns:
            The accepted breathing interval, or None
        """
        if score <= self.peak_threshold:
            self._in_peak = False
            return None

        if self._in_peak:
            return None
        self._in_peak = True

        if self.last_peak_time is None:
            self.last_peak_time = timestamp
            self.breath_timestamps.append(timestamp)
            self.last_breath_time = timestamp
            return None

        interval = timestamp - self.last_peak_time
        # Rejected peaks still move the reference so double triggers don't compound
        self.last_peak_time = timestamp

        if self.min_interval <= interval <= self.max_interval:
            self.breath_timestamps.append(timestamp)
            self.breath_intervals.append(interval)
            self.last_breath_time = timestamp
            logger.debug("Breath interval %.2fs accepted", interval)
            return interval

        if interval > self.max_interval:
            self.breath_timestamps.append(timestamp)
        return None

    def is_stale(self, now: float) -> bool:
        """True if no breath was accepted within the decay timeout"""
        if self.last_breath_time is None:
            return True
        return (now - self.last_breath_time) > self.decay_timeout

    def get_breathing_rate(self, now: Optional[float] = None) -> float:
        """
        Breaths per minute over the recent intervals.

        Args:
            now: Current time; without it no staleness decay is applied
        """
        if len(self.breath_intervals) < 3:
            return 0.0
        if now is not None and self.is_stale(now):
            return 0.0

        recent = list(self.breath_intervals)[-self.rate_window:]
        mean = float(np.mean(recent))
        return 60.0 / mean if mean > 0 else 0.0

    def get_variability(self, now: Optional[float] = None) -> float:
        """Coefficient of variation of the recent intervals"""
        if len(self.breath_intervals) < 5:
            return 0.0
        if now is not None and self.is_stale(now):
            return 0.0

        recent = np.array(list(self.breath_intervals)[-self.variability_window:])
        mean = float(np.mean(recent))
        if mean <= 0:
            return 0.0
        return float(np.std(recent, ddof=1)) / mean

    def get_sleep_phase(self, now: Optional[float] = None) -> str:
        """Sleep phase guessed from breathing regularity"""
        variability = self.get_variability(now)
        if variability == 0.0:
            return "unknown"
        if variability < self.LOW_VARIABILITY_THRESHOLD:
            return "deep"
        if variability > self.HIGH_VARIABILITY_THRESHOLD:
            return "light"
        return "transitional"

    def get_breath_count(self) -> int:
        """Returns the number of peak timestamps kept"""
        return len(self.breath_timestamps)
