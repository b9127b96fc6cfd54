"""
Sleep Monitor Pipeline
======================

Frame -> motion score -> rescaled score -> state machine -> session.

The pipeline is single-writer: frames must be processed in arrival order
by exactly one worker. FrameWorker is that worker; acquisition threads
only submit frames to its queue.
"""

import logging
import queue
import threading
import time
import numpy as np
from typing import Callable, Optional

from sleep_monitor.breathing import BreathingAnalyzer
from sleep_monitor.clock import ManualClock
from sleep_monitor.config import Config
from sleep_monitor.data_recorder import DataRecorder
from sleep_monitor.frame_filter import DuplicateFrameFilter, scale_motion_score
from sleep_monitor.motion_detector import MotionDetector
from sleep_monitor.session import SleepSession, SleepSessionManager, SleepStats
from sleep_monitor.sleep_state import SleepStateMachine

logger = logging.getLogger(__name__)


class SleepMonitor:
    """Main class for sleep state monitoring"""

    STATUS_LOG_INTERVAL = 50  # frames

    def __init__(self, config: Optional[Config] = None,
                 store=None,
                 clock: Optional[Callable[[], float]] = None,
                 recorder: Optional[DataRecorder] = None):
        """
        Args:
            config: Configuration parameters (or default)
            store: Storage collaborator for finalized sessions
            clock: Time source; a ManualClock is advanced by frame timestamps
            recorder: Optional per-frame data recorder
        """
        self.config = config or Config()
        self.clock = clock or time.time
        self.recorder = recorder

        self.detector = MotionDetector(
            clahe_clip_limit=self.config.clahe_clip_limit,
            clahe_tile_grid=self.config.clahe_tile_grid,
            blur_kernel=self.config.blur_kernel,
            diff_threshold=self.config.diff_threshold,
            dilate_iterations=self.config.dilate_iterations,
            grid_cols=self.config.grid_cols,
            grid_rows=self.config.grid_rows,
            calibration_frames=self.config.calibration_frames,
            persistent_threshold=self.config.persistent_threshold,
            min_contour_area_ratio=self.config.min_contour_area_ratio,
            max_aspect_ratio=self.config.max_aspect_ratio,
            edge_band_ratio=self.config.edge_band_ratio,
            edge_small_area_ratio=self.config.edge_small_area_ratio,
            roi=self.config.roi
        )

        self.frame_filter = DuplicateFrameFilter(
            window_seconds=self.config.duplicate_window_seconds,
            max_zero_streak=self.config.duplicate_max_zero_streak
        )

        breathing = BreathingAnalyzer(
            peak_threshold=self.config.breath_peak_threshold,
            min_interval=self.config.min_breath_interval,
            max_interval=self.config.max_breath_interval,
            decay_timeout=self.config.bpm_decay_timeout
        )

        state_machine = SleepStateMachine(
            breathing=breathing,
            thresholds=self.config.thresholds,
            time_provider=self.clock,
            buffer_seconds=self.config.buffer_seconds,
            analysis_window=self.config.analysis_window,
            spike_window=self.config.spike_window,
            quiet_window=self.config.quiet_window,
            warmup_seconds=self.config.warmup_seconds,
            confirm_no_breathing=self.config.confirm_no_breathing,
            confirm_awake=self.config.confirm_awake,
            confirm_spasm=self.config.confirm_spasm,
            confirm_default=self.config.confirm_default
        )

        self.session = SleepSessionManager(
            store=store,
            time_provider=self.clock,
            state_machine=state_machine
        )

        self.frame_count = 0

    def start_session(self) -> str:
        """Resets detector, filter and session and starts monitoring"""
        self.detector.reset()
        self.frame_filter.reset()
        self.frame_count = 0
        session_id = self.session.start_session()

        if self.recorder is not None:
            self.recorder.start_recording(session_id)
        return session_id

    def stop_session(self) -> Optional[SleepSession]:
        """Finalizes the session (and the recording, if any)"""
        session = self.session.stop_session()
        if self.recorder is not None and self.recorder.is_recording():
            self.recorder.stop_recording(session)
        return session

    def get_stats(self) -> SleepStats:
        return self.session.get_stats()

    def process_frame(self, frame: np.ndarray, timestamp: Optional[float] = None) -> dict:
        """
        Processes a single frame.

        Args:
            frame: BGR image from camera
            timestamp: Video position in seconds. It only advances a ManualClock;
                a wall clock is read once per frame instead.

        Returns:
            dict with all results
        """
        if timestamp is not None and isinstance(self.clock, ManualClock):
            self.clock.set(timestamp)
        now = self.clock()

        motion = self.detector.process_frame(frame)
        scaled = scale_motion_score(motion.score, motion.width, motion.height,
                                    self.config.reference_area)

        skipped = (self.config.suppress_duplicates
                   and not self.frame_filter.accept(motion.score, now))
        if skipped:
            state = self.session.current_state
        else:
            state = self.session.update(scaled)

        self.frame_count += 1

        result = {
            "timestamp": now,
            "raw_score": motion.score,
            "scaled_score": scaled,
            "width": motion.width,
            "height": motion.height,
            "skipped": skipped,
            "state": state,
        }

        if self.recorder is not None:
            self.recorder.add_sample(
                timestamp=now,
                raw_score=motion.score,
                scaled_score=scaled,
                state=state.value,
                breathing_rate=self.session.state_machine.breathing.get_breathing_rate(now),
                skipped=skipped
            )

        if self.frame_count % self.STATUS_LOG_INTERVAL == 0:
            logger.info("Frame #%d: raw=%.0f scaled=%.0f res=%dx%d state=%s",
                        self.frame_count, motion.score, scaled,
                        motion.width, motion.height, state.value)

        return result


class FrameWorker:
    """Single processing thread pulling frames from a queue"""

    def __init__(self, monitor: SleepMonitor, max_queue: int = 10,
                 on_result: Optional[Callable[[dict], None]] = None):
        """
        Args:
            monitor: Pipeline driven exclusively by this worker
            max_queue: Frames buffered before the oldest is dropped
            on_result: Called with every process_frame() result
        """
        self.monitor = monitor
        self.on_result = on_result
        self.queue: queue.Queue = queue.Queue(maxsize=max_queue)
        self.dropped_frames = 0

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        """Starts the processing thread"""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="sleep-monitor-worker",
                                        daemon=True)
        self._thread.start()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def submit(self, frame: np.ndarray, timestamp: Optional[float] = None,
               block: bool = False):
        """
        Queues a frame.

        Args:
            frame: BGR image
            timestamp: Video position in seconds (replay only)
            block: Wait for a free slot instead of dropping the oldest frame
        """
        if block:
            self.queue.put((frame, timestamp))
            return

        while True:
            try:
                self.queue.put_nowait((frame, timestamp))
                return
            except queue.Full:
                try:
                    self.queue.get_nowait()
                    self.dropped_frames += 1
                except queue.Empty:
                    pass

    def _run(self):
        while not self._stop_event.is_set() or not self.queue.empty():
            try:
                frame, timestamp = self.queue.get(timeout=0.1)
            except queue.Empty:
                continue

            try:
                result = self.monitor.process_frame(frame, timestamp)
            except Exception:
                logger.exception("Frame processing failed")
                continue

            if self.on_result is not None:
                self.on_result(result)

    def stop(self) -> Optional[SleepSession]:
        """
        Drains the queue, stops the thread and finalizes the session.

        Returns:
            The finalized session, or None if none was running
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

        if self.dropped_frames:
            logger.info("Dropped %d frames because processing fell behind",
                        self.dropped_frames)
        return self.monitor.stop_session()

