"""
Motion Score Extractor
======================

Turns consecutive camera frames into a single "amount of meaningful
motion" scalar using classical frame differencing.

Camera overlays (timestamps, OSD text) change every second and would
otherwise look like constant breathing. They are learned during a short
calibration phase:

  CALIBRATION (first N frame diffs):
    - The frame is divided into a grid of cells (48x27 by default).
    - Every cell containing foreground in a diff gets its hit counter
      incremented.
    - Cells hit in more than 70% of the calibration diffs are painted
      black (plus a half-cell margin) into the exclusion mask.

  DETECTION ZONE (optional):
    - A normalized (x, y, w, h) rectangle. Foreground outside it is
      zeroed before calibration and scoring, so it never reaches the
      heat map or the score.

  RUNTIME:
    - The foreground mask is ANDed with the exclusion mask.
    - Connected components are filtered by area, aspect ratio and
      position (small blobs in the top/bottom band are overlay residue).
    - The remaining component areas are summed into the motion score.
"""

import logging
import cv2
import numpy as np
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MotionResult:
    """Motion score of one frame plus the frame size it was measured at"""
    score: float
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height


class MotionDetector:
    """Background-noise-aware frame differencing with overlay calibration"""

    def __init__(self,
                 clahe_clip_limit: float = 2.0,
                 clahe_tile_grid: int = 8,
                 blur_kernel: int = 21,
                 diff_threshold: int = 5,
                 dilate_iterations: int = 2,
                 grid_cols: int = 48,
                 grid_rows: int = 27,
                 calibration_frames: int = 25,
                 persistent_threshold: float = 0.70,
                 min_contour_area_ratio: float = 0.0005,
                 max_aspect_ratio: float = 4.0,
                 edge_band_ratio: float = 0.15,
                 edge_small_area_ratio: float = 0.01,
                 roi: Optional[Tuple[float, float, float, float]] = None):
        """
        Args:
            clahe_clip_limit: Contrast limit for adaptive histogram equalization
            clahe_tile_grid: CLAHE tiles per axis
            blur_kernel: Gaussian blur kernel size (odd)
            diff_threshold: Binarization threshold for the frame difference
            dilate_iterations: Dilation passes on the foreground mask
            grid_cols: Heat map columns
            grid_rows: Heat map rows
            calibration_frames: Frame diffs used to learn persistent zones
            persistent_threshold: Fraction of calibration diffs a cell must exceed
            min_contour_area_ratio: Minimum component area (fraction of frame)
            max_aspect_ratio: Components wider/taller than this are text-like
            edge_band_ratio: Height of the top/bottom overlay band (fraction)
            edge_small_area_ratio: Components below this area are "small"
            roi: Detection zone as fractions of the frame (x, y, w, h), or None
                for the whole frame
        """
        self.clahe = cv2.createCLAHE(clipLimit=clahe_clip_limit,
                                     tileGridSize=(clahe_tile_grid, clahe_tile_grid))
        self.blur_kernel = blur_kernel
        self.diff_threshold = diff_threshold
        self.dilate_iterations = dilate_iterations

        self.grid_cols = grid_cols
        self.grid_rows = grid_rows
        self.calibration_frames = calibration_frames
        self.persistent_threshold = persistent_threshold

        self.min_contour_area_ratio = min_contour_area_ratio
        self.max_aspect_ratio = max_aspect_ratio
        self.edge_band_ratio = edge_band_ratio
        self.edge_small_area_ratio = edge_small_area_ratio

        if roi is not None:
            x, y, w, h = roi
            if w <= 0 or h <= 0 or not (0.0 <= x < 1.0 and 0.0 <= y < 1.0):
                raise ValueError(f"Invalid detection zone {roi}: expected x, y in [0, 1) "
                                 f"and positive w, h")
        self.roi = roi
        self._roi_mask: Optional[np.ndarray] = None

        # heat_map[row, col] = number of calibration diffs with motion in that cell
        self._heat_map = np.zeros((grid_rows, grid_cols), dtype=np.int32)
        self._prev_frame: Optional[np.ndarray] = None
        self._exclusion_mask: Optional[np.ndarray] = None
        self.calibration_frame_count = 0
        self.is_calibrated = False
        self.masked_cell_count = 0

    def reset(self):
        """Clears the retained frame, heat map and exclusion mask"""
        self._prev_frame = None
        self._exclusion_mask = None
        self._heat_map[:] = 0
        self.calibration_frame_count = 0
        self.is_calibrated = False
        self.masked_cell_count = 0

    @property
    def heat_map(self) -> np.ndarray:
        return self._heat_map.copy()

    @property
    def exclusion_mask(self) -> Optional[np.ndarray]:
        """White (255) = allowed, black (0) = excluded. None until calibrated."""
        if self._exclusion_mask is None:
            return None
        return self._exclusion_mask.copy()

    def process_frame(self, frame: np.ndarray) -> MotionResult:
        """
        Computes the motion score between this frame and the previous one.

        Args:
            frame: BGR, BGRA or grayscale image

        Returns:
            MotionResult with the score and the frame dimensions
        """
        if frame is None or frame.size == 0:
            raise ValueError("process_frame() needs a non-empty image")

        height, width = frame.shape[:2]
        gray = self._preprocess(frame)

        if self._prev_frame is not None and self._prev_frame.shape != gray.shape:
            prev_h, prev_w = self._prev_frame.shape
            logger.warning("Frame size changed from %dx%d to %dx%d, restarting calibration",
                           prev_w, prev_h, width, height)
            self.reset()

        if self._prev_frame is None:
            self._prev_frame = gray
            return MotionResult(0.0, width, height)

        # Foreground mask
        diff = cv2.absdiff(self._prev_frame, gray)
        _, thresh = cv2.threshold(diff, self.diff_threshold, 255, cv2.THRESH_BINARY)
        thresh = cv2.dilate(thresh, None, iterations=self.dilate_iterations)
        if self.roi is not None:
            thresh = cv2.bitwise_and(thresh, self._get_roi_mask(width, height))

        # The retained frame is replaced here, the old buffer is dropped
        self._prev_frame = gray

        if not self.is_calibrated:
            self._update_heat_map(thresh)
            self.calibration_frame_count += 1

            if self.calibration_frame_count >= self.calibration_frames:
                self._build_exclusion_mask(width, height)
                self.is_calibrated = True
                logger.info("Overlay calibration complete after %d frames",
                            self.calibration_frame_count)
            else:
                # No mask yet, only contour filtering
                return MotionResult(self._compute_score(thresh, apply_mask=False),
                                    width, height)

        return MotionResult(self._compute_score(thresh, apply_mask=True), width, height)

    @property
    def roi_rect(self) -> Optional[Tuple[int, int, int, int]]:
        """Detection zone in pixels (x, y, w, h) for the current frame size"""
        if self.roi is None or self._roi_mask is None:
            return None
        height, width = self._roi_mask.shape
        return self._roi_pixels(width, height)

    def _roi_pixels(self, width: int, height: int) -> Tuple[int, int, int, int]:
        """Detection zone clamped to the frame"""
        nx, ny, nw, nh = self.roi
        x = min(int(nx * width), width - 1)
        y = min(int(ny * height), height - 1)
        w = max(min(int(nw * width), width - x), 1)
        h = max(min(int(nh * height), height - y), 1)
        return x, y, w, h

    def _get_roi_mask(self, width: int, height: int) -> np.ndarray:
        """White inside the detection zone, rebuilt when the frame size changes"""
        if self._roi_mask is None or self._roi_mask.shape != (height, width):
            x, y, w, h = self._roi_pixels(width, height)
            mask = np.zeros((height, width), dtype=np.uint8)
            cv2.rectangle(mask, (x, y), (x + w - 1, y + h - 1), 255, -1)
            self._roi_mask = mask
            logger.info("Detection zone: %dx%d at (%d, %d) of %dx%d", w, h, x, y,
                        width, height)
        return self._roi_mask

    def _preprocess(self, frame: np.ndarray) -> np.ndarray:
        """Grayscale, CLAHE and blur"""
        if frame.ndim == 2:
            gray = frame
        elif frame.shape[2] == 4:
            gray = cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
        else:
            gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)

        if gray.dtype != np.uint8:
            gray = np.clip(gray, 0, 255).astype(np.uint8)

        gray = self.clahe.apply(gray)
        return cv2.GaussianBlur(gray, (self.blur_kernel, self.blur_kernel), 0)

    def _cell_rect(self, row: int, col: int, width: int, height: int):
        """Pixel rectangle (x, y, w, h) of a grid cell"""
        cell_w = width / self.grid_cols
        cell_h = height / self.grid_rows

        x = min(int(col * cell_w), width - 1)
        y = min(int(row * cell_h), height - 1)
        w = min(int(cell_w), width - x)
        h = min(int(cell_h), height - y)
        return x, y, w, h

    def _update_heat_map(self, thresh: np.ndarray):
        """Records which grid cells contain motion in this diff"""
        height, width = thresh.shape[:2]

        for row in range(self.grid_rows):
            for col in range(self.grid_cols):
                x, y, w, h = self._cell_rect(row, col, width, height)
                if w <= 0 or h <= 0:
                    continue
                if np.any(thresh[y:y + h, x:x + w]):
                    self._heat_map[row, col] += 1

    def _build_exclusion_mask(self, width: int, height: int):
        """Paints persistent-motion cells black into an all-white mask"""
        mask = np.full((height, width), 255, dtype=np.uint8)

        threshold = self.calibration_frame_count * self.persistent_threshold
        margin = int((width / self.grid_cols) * 0.5)

        masked_regions = []
        for row in range(self.grid_rows):
            for col in range(self.grid_cols):
                hits = int(self._heat_map[row, col])
                if hits <= threshold:
                    continue

                x, y, w, h = self._cell_rect(row, col, width, height)
                if w <= 0 or h <= 0:
                    continue

                # Margin absorbs blur and ghosting around the overlay
                mx = max(x - margin, 0)
                my = max(y - margin, 0)
                mw = min(w + margin * 2, width - mx)
                mh = min(h + margin * 2, height - my)
                cv2.rectangle(mask, (mx, my), (mx + mw - 1, my + mh - 1), 0, -1)

                masked_regions.append((col, row, hits))

        self._exclusion_mask = mask
        self.masked_cell_count = len(masked_regions)

        logger.info("Exclusion mask: %d of %d cells masked (threshold > %.1f hits in %d frames)",
                    self.masked_cell_count, self.grid_rows * self.grid_cols,
                    threshold, self.calibration_frame_count)
        if masked_regions:
            logger.debug("Masked cells (first 10): %s", masked_regions[:10])
        else:
            logger.info("No persistent motion zones found, mask stays fully permissive")

    def _compute_score(self, thresh: np.ndarray, apply_mask: bool) -> float:
        """
        Filters connected components and sums what survives.

        The score is the sum of the 255-valued mask pixels, the unit all
        state machine thresholds are expressed in.
        """
        height, width = thresh.shape[:2]
        frame_area = width * height

        if apply_mask and self._exclusion_mask is not None:
            masked = cv2.bitwise_and(thresh, self._exclusion_mask)
        else:
            masked = thresh

        contours, _ = cv2.findContours(masked, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        filtered = np.zeros_like(thresh)
        min_area = frame_area * self.min_contour_area_ratio
        small_area = frame_area * self.edge_small_area_ratio
        top_band = height * self.edge_band_ratio
        bottom_band = height * (1.0 - self.edge_band_ratio)

        for contour in contours:
            area = cv2.contourArea(contour)
            if area <= min_area:
                continue

            x, y, w, h = cv2.boundingRect(contour)

            # Text-like shapes
            aspect_ratio = w / max(h, 1)
            if aspect_ratio > self.max_aspect_ratio or aspect_ratio < 1.0 / self.max_aspect_ratio:
                continue

            # Small blobs in the top/bottom band are overlay fragments
            is_at_edge = y < top_band or (y + h) > bottom_band
            if is_at_edge and area < small_area:
                continue

            cv2.drawContours(filtered, [contour], -1, 255, -1)

        return float(np.sum(filtered, dtype=np.float64))
