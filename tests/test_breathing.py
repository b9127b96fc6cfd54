"""
Tests for threshold-crossing breathing analysis.
"""
import pytest

from sleep_monitor.breathing import BreathingAnalyzer

PEAK = 100_000.0


def feed_peaks(analyzer, peak_times, start=0.0):
    """Feeds one above-threshold sample at each time with a quiet sample in between"""
    for t in peak_times:
        analyzer.process_motion(0.0, start + t - 0.5)
        analyzer.process_motion(PEAK, start + t)


class TestPeakDetection:
    def test_first_peak_only_sets_reference(self):
        analyzer = BreathingAnalyzer()
        assert analyzer.process_motion(PEAK, 10.0) is None
        assert analyzer.last_peak_time == 10.0
        assert analyzer.get_breath_count() == 1
        assert len(analyzer.breath_intervals) == 0

    def test_interval_is_returned(self):
        analyzer = BreathingAnalyzer()
        analyzer.process_motion(PEAK, 10.0)
        analyzer.process_motion(0.0, 11.0)
        assert analyzer.process_motion(PEAK, 12.0) == pytest.approx(2.0)

    def test_samples_above_threshold_form_one_peak(self):
        analyzer = BreathingAnalyzer()
        for t in (10.0, 10.2, 10.4, 10.6):
            analyzer.process_motion(PEAK, t)
        assert analyzer.get_breath_count() == 1
        assert analyzer.last_peak_time == 10.0

    def test_threshold_is_exclusive(self):
        analyzer = BreathingAnalyzer(peak_threshold=50_000.0)
        analyzer.process_motion(50_000.0, 1.0)
        assert analyzer.last_peak_time is None

    def test_too_short_interval_is_rejected_but_moves_reference(self):
        analyzer = BreathingAnalyzer()
        feed_peaks(analyzer, [1.0, 1.6, 3.6])

        assert list(analyzer.breath_intervals) == [pytest.approx(2.0)]
        assert analyzer.last_peak_time == 3.6

    def test_too_long_interval_is_rejected(self):
        analyzer = BreathingAnalyzer()
        feed_peaks(analyzer, [1.0, 8.0])

        assert len(analyzer.breath_intervals) == 0
        # The peak is still kept as a timestamp
        assert analyzer.get_breath_count() == 2
        assert analyzer.last_breath_time == 1.0


class TestRate:
    def test_needs_three_intervals(self):
        analyzer = BreathingAnalyzer()
        feed_peaks(analyzer, [2.0, 4.0, 6.0])
        assert analyzer.get_breathing_rate() == 0.0

        feed_peaks(analyzer, [8.0])
        assert analyzer.get_breathing_rate() == pytest.approx(30.0)

    def test_rate_uses_recent_intervals(self):
        analyzer = BreathingAnalyzer(rate_window=3)
        # Four slow breaths, then three fast ones
        feed_peaks(analyzer, [3.0, 6.0, 9.0, 12.0, 13.5, 15.0, 16.5])
        assert analyzer.get_breathing_rate() == pytest.approx(40.0)

    def test_rate_decays_after_timeout(self):
        analyzer = BreathingAnalyzer()
        feed_peaks(analyzer, [2.0, 4.0, 6.0, 8.0])

        assert analyzer.get_breathing_rate(now=8.0 + 15.0) == pytest.approx(30.0)
        assert analyzer.get_breathing_rate(now=8.0 + 15.1) == 0.0
        assert not analyzer.is_stale(23.0)
        assert analyzer.is_stale(23.1)

    def test_no_breaths_is_stale(self):
        assert BreathingAnalyzer().is_stale(0.0)


class TestVariability:
    def test_needs_five_intervals(self):
        analyzer = BreathingAnalyzer()
        feed_peaks(analyzer, [2.0, 4.0, 6.0, 8.0, 10.0])
        assert analyzer.get_variability() == 0.0

    def test_coefficient_of_variation(self):
        analyzer = BreathingAnalyzer()
        # Intervals 2.0, 2.5, 2.0, 2.5, 2.0
        feed_peaks(analyzer, [0.0, 2.0, 4.5, 6.5, 9.0, 11.0], start=100.0)

        # Sample std 0.27386 / mean 2.2
        assert analyzer.get_variability() == pytest.approx(0.124482, rel=1e-4)
        assert analyzer.get_sleep_phase() == "transitional"

    def test_regular_breathing_is_deep_phase(self):
        analyzer = BreathingAnalyzer()
        # Intervals 2.0, 2.1, 2.0, 2.1, 2.0, 2.1
        feed_peaks(analyzer, [0.0, 2.0, 4.1, 6.1, 8.2, 10.2, 12.3], start=100.0)
        assert 0.0 < analyzer.get_variability() < 0.10
        assert analyzer.get_sleep_phase() == "deep"

    def test_irregular_breathing_is_light_phase(self):
        analyzer = BreathingAnalyzer()
        # Intervals 1.5, 3.0, 1.5, 3.0, 1.5
        feed_peaks(analyzer, [0.0, 1.5, 4.5, 6.0, 9.0, 10.5], start=100.0)
        assert analyzer.get_variability() > 0.20
        assert analyzer.get_sleep_phase() == "light"

    def test_variability_decays_after_timeout(self):
        analyzer = BreathingAnalyzer()
        feed_peaks(analyzer, [0.0, 2.0, 4.5, 6.5, 9.0, 11.0], start=100.0)
        assert analyzer.get_variability(now=111.0 + 16.0) == 0.0
        assert analyzer.get_sleep_phase(now=111.0 + 16.0) == "unknown"


class TestReset:
    def test_reset_clears_history(self):
        analyzer = BreathingAnalyzer()
        feed_peaks(analyzer, [2.0, 4.0, 6.0, 8.0])
        analyzer.reset()

        assert analyzer.get_breathing_rate() == 0.0
        assert analyzer.get_breath_count() == 0
        assert analyzer.last_peak_time is None
        assert analyzer.is_stale(8.0)
