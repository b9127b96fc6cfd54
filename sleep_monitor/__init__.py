"""
Sleep Monitor
=============
Camera-based infant sleep state inference without learned models.
Frame differencing with overlay calibration produces a motion score,
a peak detector estimates breathing, and a hysteresis state machine
classifies sleep and aggregates session metrics.
"""

from sleep_monitor.breathing import BreathingAnalyzer
from sleep_monitor.clock import ManualClock
from sleep_monitor.config import Config
from sleep_monitor.data_recorder import DataRecorder
from sleep_monitor.frame_filter import DuplicateFrameFilter, scale_motion_score
from sleep_monitor.motion_detector import MotionDetector, MotionResult
from sleep_monitor.pipeline import FrameWorker, SleepMonitor
from sleep_monitor.session import (
    SessionMetrics,
    SleepSession,
    SleepSessionManager,
    SleepStats,
    default_quality_score,
)
from sleep_monitor.sleep_state import SleepState, SleepStateMachine, SleepThresholds
from sleep_monitor.storage import BackgroundSessionStore, CsvSessionStore, SessionStore

__version__ = "1.0.0"
__all__ = [
    "BreathingAnalyzer",
    "ManualClock",
    "Config",
    "DataRecorder",
    "DuplicateFrameFilter",
    "scale_motion_score",
    "MotionDetector",
    "MotionResult",
    "FrameWorker",
    "SleepMonitor",
    "SessionMetrics",
    "SleepSession",
    "SleepSessionManager",
    "SleepStats",
    "default_quality_score",
    "SleepState",
    "SleepStateMachine",
    "SleepThresholds",
    "BackgroundSessionStore",
    "CsvSessionStore",
    "SessionStore",
]
