"""Pluggable template matching algorithms.

Every algorithm scores how well a template appears inside a frame and
reports the best location. Failures never raise across ``detect``: they
come back as a ``DetectionResult`` with ``error`` set.
"""

import threading
import time
from typing import Optional

import cv2
import numpy as np

from .constants import ALPHA_MASK_CUTOFF, DEFAULT_ALGORITHM_ID, MASKED_ALGORITHM_ID
from .model import DetectionResult, Point, Size


class DetectionCancelled(Exception):
    """Raised internally when the cancel event is set mid-detection."""

    pass


def ensure_bgr(image: np.ndarray) -> np.ndarray:
    """Convert a gray/BGR/BGRA image to 3-channel BGR.

    mss frames are BGRA; templates may be gray, BGR or BGRA.
    """
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    channels = image.shape[2]
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    if channels == 3:
        return image
    if channels == 1:
        return cv2.cvtColor(image[:, :, 0], cv2.COLOR_GRAY2BGR)
    raise ValueError(f"Unsupported channel count: {channels}")


def _validate_inputs(frame: Optional[np.ndarray], template: Optional[np.ndarray]) -> Optional[str]:
    """Return an error message when the inputs cannot be matched."""
    if frame is None or frame.size == 0:
        return "Frame is empty"
    if template is None or template.size == 0:
        return "Template image is empty"
    th, tw = template.shape[:2]
    fh, fw = frame.shape[:2]
    if tw > fw or th > fh:
        return f"Template ({tw}x{th}) is larger than frame ({fw}x{fh})"
    return None


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise DetectionCancelled()


class MatchAlgorithm:
    """Base class for detection algorithms.

    Subclasses implement ``_score`` which returns the correlation map;
    ``detect`` handles validation, cancellation, timing and thresholding.
    """

    id: str = ""
    name: str = ""
    description: str = ""
    supports_fuzzy_matching: bool = False

    def detect(
        self,
        frame: np.ndarray,
        template: np.ndarray,
        threshold: float,
        cancel: Optional[threading.Event] = None,
    ) -> DetectionResult:
        """Find ``template`` in ``frame``.

        Args:
            frame: Frame to search (gray, BGR or BGRA uint8)
            template: Reference image (gray, BGR or BGRA uint8)
            threshold: Minimum score in [0, 1] counted as found
            cancel: Optional event; when set the detection is abandoned

        Returns:
            DetectionResult; ``found`` iff best score >= threshold
        """
        started = time.perf_counter()

        error = _validate_inputs(frame, template)
        if error is not None:
            result = DetectionResult.failed(error, threshold)
            result.algorithm_id = self.id
            return result

        try:
            _check_cancel(cancel)
            scores = self._score(frame, template)
            _check_cancel(cancel)
        except DetectionCancelled:
            result = DetectionResult.failed("Detection was cancelled", threshold)
            result.algorithm_id = self.id
            return result
        except Exception as e:
            result = DetectionResult.failed(f"{self.name} failed: {e}", threshold)
            result.algorithm_id = self.id
            result.elapsed_seconds = time.perf_counter() - started
            return result

        # Flat regions make normalized scores undefined
        scores = np.nan_to_num(scores, nan=0.0, posinf=0.0, neginf=0.0)
        _, max_val, _, max_loc = cv2.minMaxLoc(scores)
        confidence = float(max_val)

        th, tw = template.shape[:2]
        if confidence >= threshold:
            result = DetectionResult.success(
                confidence=confidence,
                threshold=threshold,
                location=Point(int(max_loc[0]), int(max_loc[1])),
                size=Size(tw, th),
                algorithm_id=self.id,
            )
        else:
            result = DetectionResult.not_found(confidence, threshold, self.id)

        result.elapsed_seconds = time.perf_counter() - started
        return result

    def _score(self, frame: np.ndarray, template: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def is_available(self) -> bool:
        """Whether the algorithm can run in this environment."""
        return True

    def unavailable_reason(self) -> Optional[str]:
        """Human-readable reason when ``is_available()`` is False."""
        return None


class TemplateMatcher(MatchAlgorithm):
    """Normalized correlation coefficient matching on BGR images."""

    id = DEFAULT_ALGORITHM_ID
    name = "Template Matching"
    description = (
        "Fast exact image matching. Best for UI elements, icons and static "
        "images that don't change size or rotation."
    )

    def _score(self, frame: np.ndarray, template: np.ndarray) -> np.ndarray:
        return cv2.matchTemplate(ensure_bgr(frame), ensure_bgr(template), cv2.TM_CCOEFF_NORMED)


class MaskedTemplateMatcher(MatchAlgorithm):
    """Template matching that ignores transparent template pixels.

    The mask comes from the template alpha channel; templates without
    alpha are matched unmasked.
    """

    id = MASKED_ALGORITHM_ID
    name = "Template Matching (Masked)"
    description = (
        "Template matching that respects transparent regions in the template. "
        "Use for irregularly shaped icons saved with transparency."
    )

    def _score(self, frame: np.ndarray, template: np.ndarray) -> np.ndarray:
        frame_bgr = ensure_bgr(frame)
        mask = alpha_mask(template)
        template_bgr = ensure_bgr(template)
        if mask is None:
            return cv2.matchTemplate(frame_bgr, template_bgr, cv2.TM_CCOEFF_NORMED)
        if not mask.any():
            raise ValueError("Template is fully transparent")
        mask_bgr = cv2.merge([mask, mask, mask])
        return cv2.matchTemplate(frame_bgr, template_bgr, cv2.TM_CCOEFF_NORMED, mask=mask_bgr)


def alpha_mask(template: np.ndarray) -> Optional[np.ndarray]:
    """Binary uint8 mask (0/255) of opaque template pixels, or None without alpha."""
    if template.ndim != 3 or template.shape[2] != 4:
        return None
    alpha = template[:, :, 3]
    return np.where(alpha > ALPHA_MASK_CUTOFF, 255, 0).astype(np.uint8)


class AlgorithmRegistry:
    """Case-insensitive name -> algorithm map."""

    def __init__(self) -> None:
        self._algorithms: dict[str, MatchAlgorithm] = {}
        self._lock = threading.Lock()

    def register(self, algorithm: MatchAlgorithm) -> None:
        with self._lock:
            self._algorithms[algorithm.id.lower()] = algorithm

    def get(self, algorithm_id: Optional[str]) -> Optional[MatchAlgorithm]:
        if not algorithm_id:
            return None
        with self._lock:
            return self._algorithms.get(algorithm_id.lower())

    def get_all(self) -> list[MatchAlgorithm]:
        with self._lock:
            return list(self._algorithms.values())

    def get_available(self) -> list[MatchAlgorithm]:
        return [a for a in self.get_all() if a.is_available()]

    def get_default(self) -> Optional[MatchAlgorithm]:
        return self.get(DEFAULT_ALGORITHM_ID)


def create_default_registry() -> AlgorithmRegistry:
    """Registry with the plain and masked template matchers."""
    registry = AlgorithmRegistry()
    registry.register(TemplateMatcher())
    registry.register(MaskedTemplateMatcher())
    return registry
