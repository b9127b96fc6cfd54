"""
Time Sources
============

The state machine and session manager read time through a callable so
that replayed video and tests can drive it explicitly.
"""


class ManualClock:
    """A clock that only moves when told to"""

    def __init__(self, start: float = 0.0):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def set(self, timestamp: float):
        """Moves the clock to an absolute time (never backwards)"""
        self.now = max(self.now, float(timestamp))

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now
