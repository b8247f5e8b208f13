"""Template matching of a screen region against the stored death template."""

import logging
import time
from typing import Callable, Optional

import cv2
import numpy as np

from ..core.entities import MatchResult, RegionOfInterest, Template
from ..core.exceptions import SizeMismatch, ValidationError

logger = logging.getLogger(__name__)


def to_gray(frame: np.ndarray) -> np.ndarray:
    """Convert a gray, BGR or BGRA uint8 frame to single-channel gray."""
    if frame.ndim == 2:
        return frame
    if frame.ndim == 3 and frame.shape[2] == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
    if frame.ndim == 3 and frame.shape[2] == 3:
        return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    if frame.ndim == 3 and frame.shape[2] == 1:
        return frame[:, :, 0]
    raise ValidationError(f"Unsupported frame shape {frame.shape}")


def capture_template(frame: np.ndarray, roi: RegionOfInterest) -> Template:
    """Crop ``roi`` out of ``frame`` and return it as a grayscale template.

    Raises:
        SizeMismatch: If the ROI does not fit inside the frame
    """
    height, width = frame.shape[:2]
    if not roi.fits_in(width, height):
        raise SizeMismatch(
            f"ROI {roi.width}x{roi.height} at ({roi.x}, {roi.y}) exceeds frame {width}x{height}",
            frame_size=(width, height),
        )
    crop = frame[roi.y:roi.bottom, roi.x:roi.right]
    return Template(to_gray(crop))


def load_template_file(path: str) -> Template:
    """Read an image file as a grayscale template.

    Raises:
        ValidationError: If the file cannot be decoded
    """
    image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
    if image is None:
        raise ValidationError(f"Template image could not be read: {path}")
    return Template(image)


class MatchScorer:
    """Normalized cross-correlation of the ROI search window against a template.

    The search window is the ROI grown by ``search_margin`` pixels on each
    side and clipped to the frame, so the template may be found slightly off
    its captured position. The score is the best ``TM_CCOEFF_NORMED`` value
    in the window, clipped to [0, 1].
    """

    method_name = "template"

    def __init__(self, search_margin: int = 0, clock: Callable[[], float] = time.monotonic):
        self.search_margin = max(0, int(search_margin))
        self._clock = clock

    def score(self, frame: np.ndarray, template: Template, roi: RegionOfInterest,
              timestamp: Optional[float] = None) -> MatchResult:
        """Score one frame.

        Args:
            frame: Captured frame (gray, BGR or BGRA)
            template: Active death template
            roi: Region of the frame the template was captured from
            timestamp: Sample time; defaults to the scorer clock

        Returns:
            MatchResult with the best similarity in [0, 1]

        Raises:
            SizeMismatch: If the frame cannot contain the ROI or the template
        """
        window = self._search_window(frame, template, roi)
        result = cv2.matchTemplate(window, template.pixels, cv2.TM_CCOEFF_NORMED)
        # A flat window or template has zero variance and yields NaN/inf
        result = np.nan_to_num(result, nan=0.0, posinf=0.0, neginf=0.0)
        best = float(result.max()) if result.size else 0.0
        return MatchResult(
            score=min(1.0, max(0.0, best)),
            timestamp=self._clock() if timestamp is None else timestamp,
        )

    def _search_window(self, frame: np.ndarray, template: Template,
                       roi: RegionOfInterest) -> np.ndarray:
        height, width = frame.shape[:2]
        if template.width > width or template.height > height:
            raise SizeMismatch(
                f"Template {template.width}x{template.height} larger than frame {width}x{height}",
                frame_size=(width, height),
                template_size=(template.width, template.height),
            )
        if not roi.fits_in(width, height):
            raise SizeMismatch(
                f"ROI {roi.width}x{roi.height} at ({roi.x}, {roi.y}) exceeds frame {width}x{height}",
                frame_size=(width, height),
                template_size=(template.width, template.height),
            )
        area = roi.expanded(self.search_margin, width, height)
        if template.width > area.width or template.height > area.height:
            raise SizeMismatch(
                f"Template {template.width}x{template.height} larger than search window "
                f"{area.width}x{area.height}",
                frame_size=(width, height),
                template_size=(template.width, template.height),
            )
        return np.ascontiguousarray(to_gray(frame[area.y:area.bottom, area.x:area.right]))


class DiffScorer(MatchScorer):
    """Screen-diff fallback: similarity from the mean absolute pixel difference.

    Compares the template against the frame region of the same size anchored
    at the ROI origin; no search, no normalisation for brightness.
    """

    method_name = "diff"

    def score(self, frame: np.ndarray, template: Template, roi: RegionOfInterest,
              timestamp: Optional[float] = None) -> MatchResult:
        height, width = frame.shape[:2]
        if template.width > width or template.height > height:
            raise SizeMismatch(
                f"Template {template.width}x{template.height} larger than frame {width}x{height}",
                frame_size=(width, height),
                template_size=(template.width, template.height),
            )
        x2 = roi.x + template.width
        y2 = roi.y + template.height
        if x2 > width or y2 > height:
            raise SizeMismatch(
                f"Template at ROI origin ({roi.x}, {roi.y}) exceeds frame {width}x{height}",
                frame_size=(width, height),
                template_size=(template.width, template.height),
            )
        region = np.ascontiguousarray(to_gray(frame[roi.y:y2, roi.x:x2]))
        diff = cv2.absdiff(region, template.pixels)
        similarity = 1.0 - float(np.mean(diff)) / 255.0
        return MatchResult(
            score=min(1.0, max(0.0, similarity)),
            timestamp=self._clock() if timestamp is None else timestamp,
        )


def create_scorer(backend: str, search_margin: int = 0) -> MatchScorer:
    """Build the scorer for the configured detection backend."""
    if backend == "diff":
        return DiffScorer(search_margin)
    if backend != "template":
        logger.warning(f"Unknown detection backend '{backend}', using template matching")
    return MatchScorer(search_margin)
