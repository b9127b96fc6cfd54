"""
Data Recording
==============

Records per-frame motion scores and states for later analysis.
Stores raw samples as CSV, arrays as NPZ and a readable summary.
"""

import logging
import os
import numpy as np
from typing import List, Optional
from datetime import datetime

from sleep_monitor.session import SleepSession

logger = logging.getLogger(__name__)


class DataRecorder:
    """Records all measurements for later analysis"""

    def __init__(self, output_dir: str = "recordings"):
        """
        Args:
            output_dir: Directory for recordings
        """
        self.output_dir = output_dir
        self.recording = False
        self.recording_id: Optional[str] = None

        self.timestamps: List[float] = []
        self.raw_scores: List[float] = []
        self.scaled_scores: List[float] = []
        self.states: List[str] = []
        self.breathing_rates: List[float] = []
        self.skipped: List[bool] = []

    def start_recording(self, recording_id: Optional[str] = None):
        """Starts a new recording"""
        os.makedirs(self.output_dir, exist_ok=True)

        self.recording_id = recording_id or datetime.now().strftime("%Y%m%d_%H%M%S")
        self.recording = True
        self._clear_buffers()

        logger.info("Recording started: %s", self.recording_id)

    def _clear_buffers(self):
        self.timestamps.clear()
        self.raw_scores.clear()
        self.scaled_scores.clear()
        self.states.clear()
        self.breathing_rates.clear()
        self.skipped.clear()

    def stop_recording(self, session: Optional[SleepSession] = None) -> str:
        """
        Stops the recording and saves all data.

        Args:
            session: Finalized session to include in the summary

        Returns:
            Base path of the saved recording
        """
        if not self.recording:
            return ""

        self.recording = False
        base_path = self._save_data(session)
        logger.info("Recording saved: %s", base_path)
        return base_path

    def add_sample(self, timestamp: float, raw_score: float, scaled_score: float,
                   state: str, breathing_rate: float, skipped: bool = False):
        """Adds one processed frame"""
        if not self.recording:
            return

        self.timestamps.append(timestamp)
        self.raw_scores.append(raw_score)
        self.scaled_scores.append(scaled_score)
        self.states.append(state)
        self.breathing_rates.append(breathing_rate)
        self.skipped.append(skipped)

    def _save_data(self, session: Optional[SleepSession]) -> str:
        """Saves all data to CSV, NPZ and summary files"""
        base_path = os.path.join(self.output_dir, self.recording_id)

        # 1. Raw samples as CSV
        raw_csv_path = f"{base_path}_raw.csv"
        with open(raw_csv_path, 'w') as f:
            f.write("timestamp,raw_score,scaled_score,state,breathing_rate,skipped\n")
            for i in range(len(self.timestamps)):
                f.write(f"{self.timestamps[i]:.4f},"
                        f"{self.raw_scores[i]:.1f},"
                        f"{self.scaled_scores[i]:.1f},"
                        f"{self.states[i]},"
                        f"{self.breathing_rates[i]:.2f},"
                        f"{int(self.skipped[i])}\n")

        # 2. Arrays as NPZ
        npz_path = f"{base_path}_signals.npz"
        duration = self.timestamps[-1] - self.timestamps[0] if self.timestamps else 0
        np.savez_compressed(
            npz_path,
            timestamps=np.array(self.timestamps),
            raw_scores=np.array(self.raw_scores),
            scaled_scores=np.array(self.scaled_scores),
            breathing_rates=np.array(self.breathing_rates),
            states=np.array(self.states),
            recording_id=self.recording_id,
            duration=duration
        )

        # 3. Summary
        summary_path = f"{base_path}_summary.txt"
        with open(summary_path, 'w') as f:
            rates = [r for r in self.breathing_rates if r > 0]
            avg_rate = np.mean(rates) if rates else 0
            std_rate = np.std(rates) if rates else 0

            f.write(f"Recording: {self.recording_id}\n")
            f.write(f"Duration: {duration:.1f} seconds\n")
            f.write(f"Frames: {len(self.timestamps)} ({sum(self.skipped)} skipped)\n")
            f.write(f"Breathing rate: {avg_rate:.1f} ± {std_rate:.1f} /min\n")

            if session is not None:
                f.write(f"\nSession: {session.session_id}\n")
                f.write(f"Session duration: {session.duration_seconds:.0f} seconds\n")
                f.write(f"Total sleep: {session.total_sleep_seconds:.0f} seconds "
                        f"(deep {session.deep_sleep_seconds:.0f}, "
                        f"light {session.light_sleep_seconds:.0f})\n")
                f.write(f"Wake-ups: {session.wake_up_count}\n")
                f.write(f"Spasms: {session.spasm_count}\n")
                f.write(f"Quality score: {session.quality_score}\n")

            f.write(f"\nFiles:\n")
            f.write(f"  - {raw_csv_path}\n")
            f.write(f"  - {npz_path}\n")

        return base_path

    def is_recording(self) -> bool:
        """Returns whether recording is in progress"""
        return self.recording

    def get_duration(self) -> float:
        """Returns the current recording duration"""
        if not self.recording or not self.timestamps:
            return 0.0
        return self.timestamps[-1] - self.timestamps[0]
