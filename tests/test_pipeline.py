"""
Tests for the frame pipeline and its worker thread.
"""
import logging
from unittest.mock import MagicMock

import pytest

from frames import blank_frame, overlay_frame
from sleep_monitor.config import Config
from sleep_monitor.data_recorder import DataRecorder
from sleep_monitor.motion_detector import MotionResult
from sleep_monitor.pipeline import FrameWorker, SleepMonitor
from sleep_monitor.sleep_state import SleepState


@pytest.fixture
def store():
    return MagicMock()


@pytest.fixture
def monitor(clock, store):
    return SleepMonitor(store=store, clock=clock)


def feed_static(monitor, origin, seconds, fps=4):
    results = []
    for i in range(seconds * fps):
        results.append(monitor.process_frame(blank_frame(), origin + i / fps))
    return results


class TestSleepMonitor:
    def test_result_fields(self, monitor, clock):
        monitor.start_session()
        result = monitor.process_frame(blank_frame(), clock() + 0.25)

        assert set(result) == {
            "timestamp", "raw_score", "scaled_score", "width", "height", "skipped", "state",
        }
        assert result["raw_score"] == 0.0
        assert (result["width"], result["height"]) == (480, 270)
        assert result["state"] == SleepState.CALIBRATING
        assert not result["skipped"]

    def test_frame_timestamps_drive_the_clock(self, monitor, clock):
        origin = clock()
        monitor.start_session()
        monitor.process_frame(blank_frame(), origin + 3.5)
        assert clock() == origin + 3.5

    def test_wall_clock_is_the_only_time_source(self, store):
        recorder = MagicMock()
        monitor = SleepMonitor(store=store, clock=lambda: 500.0, recorder=recorder)
        monitor.start_session()

        result = monitor.process_frame(blank_frame(), 123.0)

        assert result["timestamp"] == 500.0
        assert recorder.add_sample.call_args.kwargs["timestamp"] == 500.0
        assert monitor.session.state_machine.start_time == 500.0

    def test_detection_zone_reaches_detector(self, clock):
        monitor = SleepMonitor(config=Config(roi=(0.1, 0.2, 0.5, 0.5)), clock=clock)
        assert monitor.detector.roi == (0.1, 0.2, 0.5, 0.5)

    def test_static_scene_reports_no_breathing_after_warmup(self, monitor, clock):
        origin = clock()
        monitor.start_session()
        results = feed_static(monitor, origin, 12)

        assert all(r["state"] == SleepState.CALIBRATING for r in results[:40])
        assert results[40]["state"] == SleepState.NO_BREATHING
        assert monitor.frame_count == 48
        assert monitor.detector.is_calibrated

    def test_overlay_does_not_count_as_motion(self, monitor, clock):
        origin = clock()
        monitor.start_session()
        results = [monitor.process_frame(overlay_frame(i), origin + i / 4) for i in range(48)]

        # Overlay diffs are learned during the first 25 frame pairs
        assert all(r["raw_score"] == 0.0 for r in results[26:])
        assert results[-1]["state"] == SleepState.NO_BREATHING

    def test_scores_are_rescaled(self, monitor, clock):
        monitor.detector = MagicMock()
        monitor.detector.process_frame.return_value = MotionResult(50_000.0, 480, 270)
        monitor.start_session()

        result = monitor.process_frame(blank_frame(), clock() + 1)
        assert result["scaled_score"] == pytest.approx(800_000.0)

    def test_duplicate_zero_is_skipped(self, monitor, clock):
        origin = clock()
        monitor.detector = MagicMock()
        monitor.detector.process_frame.side_effect = [
            MotionResult(0.0, 480, 270),
            MotionResult(50_000.0, 480, 270),
            MotionResult(0.0, 480, 270),
        ]
        monitor.start_session()

        results = [monitor.process_frame(blank_frame(), origin + 0.25 * (i + 1))
                   for i in range(3)]
        assert [r["skipped"] for r in results] == [False, False, True]
        assert monitor.frame_filter.skipped_count == 1

    def test_duplicate_filter_can_be_disabled(self, clock):
        monitor = SleepMonitor(config=Config(suppress_duplicates=False), clock=clock)
        monitor.detector = MagicMock()
        monitor.detector.process_frame.side_effect = [
            MotionResult(50_000.0, 480, 270),
            MotionResult(0.0, 480, 270),
        ]
        monitor.start_session()

        results = [monitor.process_frame(blank_frame(), clock() + 0.25) for _ in range(2)]
        assert not any(r["skipped"] for r in results)

    def test_stop_session_saves_and_records(self, clock, store, tmp_path):
        recorder = DataRecorder(str(tmp_path))
        monitor = SleepMonitor(store=store, clock=clock, recorder=recorder)
        origin = clock()

        session_id = monitor.start_session()
        feed_static(monitor, origin, 12)
        stats = monitor.get_stats()
        session = monitor.stop_session()

        assert stats.current_state == SleepState.NO_BREATHING
        assert session.session_id == session_id
        assert session.duration_seconds == pytest.approx(11.75)
        store.save_session.assert_called_once_with(session)

        lines = (tmp_path / f"{session_id}_raw.csv").read_text().splitlines()
        assert len(lines) == 49
        assert not recorder.is_recording()

    def test_start_session_resets_detector(self, monitor, clock):
        origin = clock()
        monitor.start_session()
        feed_static(monitor, origin, 10)
        assert monitor.detector.is_calibrated

        monitor.start_session()
        assert not monitor.detector.is_calibrated
        assert monitor.frame_count == 0


class TestFrameWorker:
    def test_processes_all_frames_in_order(self, monitor, clock):
        origin = clock()
        results = []
        worker = FrameWorker(monitor, max_queue=100, on_result=results.append)
        monitor.start_session()
        worker.start()
        assert worker.is_running()

        for i in range(48):
            worker.submit(blank_frame(), origin + i / 4)
        session = worker.stop()

        assert not worker.is_running()
        assert len(results) == 48
        assert [r["timestamp"] for r in results] == [origin + i / 4 for i in range(48)]
        assert results[-1]["state"] == SleepState.NO_BREATHING
        assert session is not None
        assert monitor.frame_count == 48

    def test_full_queue_drops_oldest(self, monitor):
        worker = FrameWorker(monitor, max_queue=2)
        for i in range(3):
            worker.submit(blank_frame(), float(i))

        assert worker.dropped_frames == 1
        assert [worker.queue.get_nowait()[1] for _ in range(2)] == [1.0, 2.0]

    def test_blocking_submit_never_drops(self, monitor, clock):
        origin = clock()
        results = []
        worker = FrameWorker(monitor, max_queue=1, on_result=results.append)
        monitor.start_session()
        worker.start()

        for i in range(30):
            worker.submit(blank_frame(), origin + i / 4, block=True)
        worker.stop()

        assert worker.dropped_frames == 0
        assert [r["timestamp"] for r in results] == [origin + i / 4 for i in range(30)]

    def test_processing_error_does_not_stop_worker(self, monitor, clock, caplog):
        results = []
        worker = FrameWorker(monitor, on_result=results.append)
        monitor.start_session()
        worker.start()

        with caplog.at_level(logging.ERROR, logger="sleep_monitor.pipeline"):
            worker.submit(None, clock() + 0.25)
            worker.submit(blank_frame(), clock() + 0.5)
            worker.stop()

        assert len(results) == 1
        assert "Frame processing failed" in caplog.text

    def test_stop_without_session(self, monitor):
        worker = FrameWorker(monitor)
        worker.start()
        assert worker.stop() is None
