"""
Tests for per-frame recording and offline analysis.
"""
from unittest.mock import patch

import numpy as np
import pandas as pd
import pytest

from sleep_monitor import analyze
from sleep_monitor.data_recorder import DataRecorder
from sleep_monitor.session import SleepSession


def record(recorder, samples):
    for t, raw, state, rate, skipped in samples:
        recorder.add_sample(t, raw, raw * 4.0, state, rate, skipped)


@pytest.fixture
def samples():
    rows = []
    for i in range(60):
        t = 1_000.0 + i * 0.5
        raw = 30_000.0 if i % 4 == 0 else 0.0
        state = "calibrating" if i < 20 else "light_sleep"
        rows.append((t, raw, state, 30.0 if i >= 40 else 0.0, i % 10 == 5))
    return rows


@pytest.fixture
def recording(tmp_path, samples):
    recorder = DataRecorder(str(tmp_path))
    recorder.start_recording("night1")
    record(recorder, samples)
    return recorder.stop_recording()


class TestDataRecorder:
    def test_not_recording_ignores_samples(self, tmp_path):
        recorder = DataRecorder(str(tmp_path))
        recorder.add_sample(1.0, 10.0, 40.0, "awake", 0.0)

        assert not recorder.is_recording()
        assert recorder.timestamps == []
        assert recorder.stop_recording() == ""

    def test_duration(self, tmp_path, samples):
        recorder = DataRecorder(str(tmp_path))
        recorder.start_recording("night1")
        assert recorder.get_duration() == 0.0

        record(recorder, samples)
        assert recorder.is_recording()
        assert recorder.get_duration() == pytest.approx(29.5)

    def test_writes_all_files(self, recording, tmp_path):
        assert recording == str(tmp_path / "night1")
        for suffix in ("_raw.csv", "_signals.npz", "_summary.txt"):
            assert (tmp_path / f"night1{suffix}").exists()

    def test_raw_csv_contents(self, recording):
        df = pd.read_csv(f"{recording}_raw.csv")

        assert list(df.columns) == [
            "timestamp", "raw_score", "scaled_score", "state", "breathing_rate", "skipped",
        ]
        assert len(df) == 60
        assert df["scaled_score"].iloc[0] == pytest.approx(120_000.0)
        assert df["skipped"].sum() == 6

    def test_npz_contents(self, recording):
        data = np.load(f"{recording}_signals.npz")
        assert data["timestamps"].shape == (60,)
        assert float(data["duration"]) == pytest.approx(29.5)
        assert str(data["recording_id"]) == "night1"

    def test_summary_includes_session(self, tmp_path, samples):
        recorder = DataRecorder(str(tmp_path))
        recorder.start_recording("night2")
        record(recorder, samples)
        session = SleepSession(
            session_id="night2", start_time=1_000.0, end_time=1_030.0,
            total_sleep_seconds=20.0, wake_up_count=1, quality_score=55,
        )
        base_path = recorder.stop_recording(session)

        summary = (tmp_path / "night2_summary.txt").read_text()
        assert base_path.endswith("night2")
        assert "Wake-ups: 1" in summary
        assert "Quality score: 55" in summary
        assert "Frames: 60 (6 skipped)" in summary

    def test_duration_uses_sample_timestamps_only(self, tmp_path, samples):
        recorder = DataRecorder(str(tmp_path))
        with patch("time.time", return_value=5_000_000.0):
            recorder.start_recording("replay")
            record(recorder, samples)
            recorder.stop_recording()

        assert not hasattr(recorder, "start_time")
        summary = (tmp_path / "replay_summary.txt").read_text()
        assert "Duration: 29.5 seconds" in summary

    def test_default_recording_id(self, tmp_path):
        recorder = DataRecorder(str(tmp_path / "out"))
        recorder.start_recording()
        assert recorder.recording_id
        assert (tmp_path / "out").is_dir()


class TestAnalyze:
    def test_load_recording(self, recording):
        df = analyze.load_recording(recording)
        assert df["skipped"].dtype == bool
        assert len(df) == 60

    def test_state_durations(self, recording):
        durations = analyze.state_durations(analyze.load_recording(recording))

        # 20 calibrating samples and 40 light sleep samples, 0.5 s apart;
        # the last sample has no successor
        assert durations["calibrating"] == pytest.approx(10.0)
        assert durations["light_sleep"] == pytest.approx(19.5)
        assert durations.index[0] == "light_sleep"

    def test_state_durations_needs_two_samples(self):
        df = pd.DataFrame({"timestamp": [1.0], "state": ["awake"]})
        assert analyze.state_durations(df).empty

    def test_plot_recording(self, recording, capsys):
        plot_path = analyze.plot_recording(recording, show=False)

        assert plot_path == f"{recording}_analysis.png"
        with open(plot_path, "rb") as f:
            assert f.read(8) == b"\x89PNG\r\n\x1a\n"
        assert "Frames: 60 (6 skipped)" in capsys.readouterr().out
