"""
Configuration
=============
Central configuration parameters for sleep monitoring.
"""
from dataclasses import dataclass, field
from typing import Optional, Tuple

from sleep_monitor.sleep_state import SleepThresholds


@dataclass
class Config:
    """Configuration parameters for the pipeline"""

    # Capture
    camera_id: int = 0
    target_fps: int = 5
    reference_width: int = 1920   # thresholds are calibrated at 1080p
    reference_height: int = 1080

    # Motion detection
    clahe_clip_limit: float = 2.0
    clahe_tile_grid: int = 8
    blur_kernel: int = 21
    diff_threshold: int = 5
    dilate_iterations: int = 2
    grid_cols: int = 48
    grid_rows: int = 27
    calibration_frames: int = 25       # ~5 s at 5 FPS
    persistent_threshold: float = 0.70
    min_contour_area_ratio: float = 0.0005
    max_aspect_ratio: float = 4.0
    edge_band_ratio: float = 0.15
    edge_small_area_ratio: float = 0.01
    roi: Optional[Tuple[float, float, float, float]] = None  # normalized x, y, w, h

    # Duplicate frame suppression
    suppress_duplicates: bool = True
    duplicate_window_seconds: float = 1.0
    duplicate_max_zero_streak: int = 5

    # Breathing
    breath_peak_threshold: float = 50_000.0
    min_breath_interval: float = 1.0
    max_breath_interval: float = 5.0
    bpm_decay_timeout: float = 15.0

    # Sleep state machine
    buffer_seconds: float = 60.0
    analysis_window: float = 10.0
    spike_window: float = 2.0
    quiet_window: float = 30.0
    warmup_seconds: float = 10.0
    confirm_no_breathing: float = 20.0
    confirm_awake: float = 5.0
    confirm_spasm: float = 0.5
    confirm_default: float = 3.0
    thresholds: SleepThresholds = field(default_factory=SleepThresholds)

    # Recording
    recording_dir: str = "recordings"

    @property
    def reference_area(self) -> int:
        return self.reference_width * self.reference_height
