#!/usr/bin/env python3
"""
Sleep Monitor - Main Program
============================

Infers sleep/breathing state from a camera or video with classical
frame differencing.

Usage:
    python -m sleep_monitor.main                      # Default camera
    python -m sleep_monitor.main --source 1           # Different camera
    python -m sleep_monitor.main --source crib.mp4    # Video file
    python -m sleep_monitor.main --record             # Save per-frame data
"""

import argparse
import logging
import cv2
from typing import Optional, Tuple, Union

from sleep_monitor.clock import ManualClock
from sleep_monitor.config import Config
from sleep_monitor.data_recorder import DataRecorder
from sleep_monitor.pipeline import FrameWorker, SleepMonitor
from sleep_monitor.session import SleepSession
from sleep_monitor.sleep_state import SleepState
from sleep_monitor.storage import BackgroundSessionStore, CsvSessionStore

logger = logging.getLogger(__name__)


class StateLogger:
    """Logs every state the monitor reports for the first time in a row"""

    def __init__(self):
        self.last_state: Optional[SleepState] = None

    def __call__(self, result: dict):
        state = result["state"]
        if state != self.last_state:
            logger.info("State: %s (score %.0f)", state.value, result["scaled_score"])
            if state == SleepState.NO_BREATHING:
                logger.warning("ALARM: no breathing detected")
            self.last_state = state


def run(monitor: SleepMonitor, video_source: Union[int, str], target_fps: int,
        replay: bool) -> Optional[SleepSession]:
    """
    Feeds frames from a video source until it ends or Ctrl-C.

    Args:
        monitor: Configured pipeline
        video_source: Camera ID (int) or video file path (str)
        target_fps: Processing rate
        replay: Use video timestamps instead of the wall clock and never
            drop frames

    Returns:
        The finalized session
    """
    cap = cv2.VideoCapture(video_source)

    if not cap.isOpened():
        print(f"Error: Could not open video source '{video_source}'")
        return None

    camera_fps = cap.get(cv2.CAP_PROP_FPS) or 30
    frame_width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
    frame_height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
    frame_skip = max(1, int(camera_fps / target_fps))

    print(f"Video: {frame_width}x{frame_height} @ {camera_fps} FPS")
    print(f"Target FPS: {target_fps} (frame skip: {frame_skip})")
    print("Press Ctrl-C to stop.\n")

    worker = FrameWorker(monitor, on_result=StateLogger())
    monitor.start_session()
    worker.start()

    frame_idx = 0
    try:
        while True:
            ret, frame = cap.read()
            if not ret:
                break

            frame_idx += 1
            if frame_idx % frame_skip != 0:
                continue

            if replay:
                # Files are read faster than they are processed; wait so
                # every frame is diffed against its predecessor
                timestamp = cap.get(cv2.CAP_PROP_POS_MSEC) / 1000.0
                worker.submit(frame, timestamp, block=True)
            else:
                worker.submit(frame)
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        cap.release()

    return worker.stop()


def print_summary(session: Optional[SleepSession]):
    """Prints the finalized session"""
    if session is None:
        print("No session recorded.")
        return

    print("\nSession summary")
    print(f"  Duration:      {session.duration_seconds:.0f}s")
    print(f"  Total sleep:   {session.total_sleep_seconds:.0f}s "
          f"(deep {session.deep_sleep_seconds:.0f}s, light {session.light_sleep_seconds:.0f}s)")
    print(f"  Wake-ups:      {session.wake_up_count}")
    print(f"  Spasms:        {session.spasm_count}")
    print(f"  Breathing:     {session.avg_breathing_bpm:.1f} /min average")
    print(f"  Quality score: {session.quality_score}")


def parse_roi(text: str) -> Tuple[float, float, float, float]:
    """Parses "x,y,w,h" (fractions of the frame) for --roi"""
    try:
        values = tuple(float(v) for v in text.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected x,y,w,h as numbers, got '{text}'")

    if len(values) != 4:
        raise argparse.ArgumentTypeError(f"expected four values x,y,w,h, got '{text}'")
    x, y, w, h = values
    if not (0.0 <= x < 1.0 and 0.0 <= y < 1.0) or w <= 0 or h <= 0:
        raise argparse.ArgumentTypeError(
            f"x and y must be in [0, 1) and w, h positive, got '{text}'")
    return values


def parse_args(argv=None):
    """Parses command line arguments"""
    parser = argparse.ArgumentParser(
        description="Sleep state monitoring with classical frame differencing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m sleep_monitor.main                    # Default camera
  python -m sleep_monitor.main --source 1         # Different camera
  python -m sleep_monitor.main --source crib.mp4  # Video file
  python -m sleep_monitor.main --roi 0.25,0.2,0.5,0.6  # Watch the crib only
        """
    )

    parser.add_argument('--source', type=str, default='0',
                        help='Video source: camera ID or file path (default: 0)')

    parser.add_argument('--fps', type=int, default=5,
                        help='Target FPS for processing (default: 5)')

    parser.add_argument('--record', action='store_true',
                        help='Record per-frame data for sleep_monitor.analyze')

    parser.add_argument('--output-dir', type=str, default='recordings',
                        help='Directory for recordings (default: recordings)')

    parser.add_argument('--sessions-csv', type=str, default='recordings/sessions.csv',
                        help='CSV file finalized sessions are appended to')

    parser.add_argument('--roi', type=parse_roi, default=None,
                        help='Detection zone x,y,w,h as fractions of the frame (default: whole frame)')

    parser.add_argument('--no-duplicate-filter', action='store_true',
                        help='Feed zero scores from duplicated frames to the state machine')

    parser.add_argument('--verbose', action='store_true',
                        help='Debug logging')

    return parser.parse_args(argv)


def main(argv=None):
    """Main function"""
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )

    config = Config(
        target_fps=args.fps,
        suppress_duplicates=not args.no_duplicate_filter,
        roi=args.roi,
        recording_dir=args.output_dir
    )

    # Parse video source
    try:
        source = int(args.source)
    except ValueError:
        source = args.source
    replay = isinstance(source, str)

    store = BackgroundSessionStore(CsvSessionStore(args.sessions_csv))
    recorder = DataRecorder(config.recording_dir) if args.record else None
    clock = ManualClock() if replay else None

    monitor = SleepMonitor(config=config, store=store, clock=clock, recorder=recorder)
    try:
        session = run(monitor, source, config.target_fps, replay)
    finally:
        store.close()

    print_summary(session)


if __name__ == "__main__":
    main()
