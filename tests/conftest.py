"""
Shared pytest fixtures for sleep monitor tests.
"""
import matplotlib

matplotlib.use("Agg")

import pytest

from frames import blank_frame, overlay_frame
from sleep_monitor.clock import ManualClock


@pytest.fixture
def clock():
    """Manual clock starting at an arbitrary epoch"""
    return ManualClock(100_000.0)


@pytest.fixture
def static_frames():
    """Enough identical frames to finish calibration"""
    return [blank_frame() for _ in range(30)]


@pytest.fixture
def overlay_sequence():
    """26 frames (25 diffs) with a flipping overlay"""
    return [overlay_frame(i) for i in range(26)]
