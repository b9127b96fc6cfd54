"""
Motion Score Pre-processing
===========================

Rescaling to the reference resolution and suppression of false zero
scores caused by decoders that emit the same frame twice.
"""

import logging

logger = logging.getLogger(__name__)

REFERENCE_WIDTH = 1920
REFERENCE_HEIGHT = 1080
REFERENCE_AREA = REFERENCE_WIDTH * REFERENCE_HEIGHT


def scale_motion_score(score: float, width: int, height: int,
                       reference_area: int = REFERENCE_AREA) -> float:
    """
    Rescales a motion score measured at width x height to the reference area.

    The score is a pixel sum, so it grows with frame area. All state
    thresholds are expressed at the reference resolution.
    """
    frame_area = width * height
    if frame_area <= 0:
        return score
    return score * (reference_area / frame_area)


class DuplicateFrameFilter:
    """
    Drops zero scores that come from duplicated frames.

    Some decoders output the same decoded image twice. The diff of two
    identical frames is zero even during violent movement, producing a
    pattern like 0, 1.7M, 0, 650k, 0 ... A zero is dropped if a non-zero
    score was seen within the window and the zero streak is still short.
    """

    def __init__(self, window_seconds: float = 1.0, max_zero_streak: int = 5):
        """
        Args:
            window_seconds: How long a non-zero score vouches for motion
            max_zero_streak: Consecutive zeros after which zeros are real
        """
        self.window_seconds = window_seconds
        self.max_zero_streak = max_zero_streak

        self.last_nonzero_score = 0.0
        self.last_nonzero_time = 0.0
        self.zero_streak = 0
        self.skipped_count = 0

    def reset(self):
        self.last_nonzero_score = 0.0
        self.last_nonzero_time = 0.0
        self.zero_streak = 0
        self.skipped_count = 0

    def accept(self, score: float, timestamp: float) -> bool:
        """
        Returns False if the score should not be fed to the state machine.
        """
        if score != 0.0:
            self.last_nonzero_score = score
            self.last_nonzero_time = timestamp
            self.zero_streak = 0
            return True

        self.zero_streak += 1
        if (self.last_nonzero_score > 0.0
                and (timestamp - self.last_nonzero_time) < self.window_seconds
                and self.zero_streak < self.max_zero_streak):
            self.skipped_count += 1
            logger.debug("Skipped duplicate frame (last non-zero=%.0f, zero streak=%d)",
                         self.last_nonzero_score, self.zero_streak)
            return False
        return True
