"""Meter (health/progress bar) fill measurement.

All functions here are stateless. ``compute_fill_percent`` returns a
value in [0, 100], or -1 when the region cannot be measured.

The bar is first turned into a binary mask (colour hint or automatic
contrast), the mask is reduced to a 1-D occupancy projection along the
fill axis, and the fill level is read from that projection.
"""

from typing import Optional

import cv2
import numpy as np

from .capture import to_grayscale
from .constants import (
    CALIB_HUE_MARGIN,
    CALIB_MIN_COLORFUL_FRACTION,
    CALIB_MIN_SATURATION,
    CALIB_MIN_VALUE,
    CALIB_SV_MARGIN,
    CALIB_WRAP_FRACTION,
    CALIB_WRAP_HIGH_HUE,
    CALIB_WRAP_LOW_HUE,
    CALIB_WRAP_MARGIN,
    FILL_OCCUPANCY_THRESHOLD,
    FRAGMENT_RATIO_THRESHOLD,
    GAP_TOLERANCE_DIVISOR,
    HUE_MAX,
    MIN_GAP_TOLERANCE,
    MIN_METER_REGION_PX,
)
from .matching import ensure_bgr
from .model import FillDirection, HsvRange, MeterConfig

FILL_FAILED = -1.0


def _is_measurable(region: Optional[np.ndarray]) -> bool:
    if region is None or region.size == 0:
        return False
    height, width = region.shape[:2]
    return width >= MIN_METER_REGION_PX and height >= MIN_METER_REGION_PX


def color_mask(region: np.ndarray, hsv_range: HsvRange) -> np.ndarray:
    """Binary mask (0/255) of pixels inside ``hsv_range``.

    Wrapping ranges (``hue_min > hue_max``) are the union of
    [0, hue_max] and [hue_min, HUE_MAX].
    """
    hsv = cv2.cvtColor(ensure_bgr(region), cv2.COLOR_BGR2HSV)

    if not hsv_range.wraps:
        lower = np.array([hsv_range.hue_min, hsv_range.sat_min, hsv_range.val_min], dtype=np.uint8)
        upper = np.array([hsv_range.hue_max, hsv_range.sat_max, hsv_range.val_max], dtype=np.uint8)
        return cv2.inRange(hsv, lower, upper)

    low_part = cv2.inRange(
        hsv,
        np.array([0, hsv_range.sat_min, hsv_range.val_min], dtype=np.uint8),
        np.array([hsv_range.hue_max, hsv_range.sat_max, hsv_range.val_max], dtype=np.uint8),
    )
    high_part = cv2.inRange(
        hsv,
        np.array([hsv_range.hue_min, hsv_range.sat_min, hsv_range.val_min], dtype=np.uint8),
        np.array([HUE_MAX, hsv_range.sat_max, hsv_range.val_max], dtype=np.uint8),
    )
    return cv2.bitwise_or(low_part, high_part)


def contrast_mask(region: np.ndarray) -> np.ndarray:
    """Binary mask (0/255) from an Otsu threshold on the grayscale region."""
    gray = to_grayscale(region)
    _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY | cv2.THRESH_OTSU)
    return binary


def occupancy_projection(mask: np.ndarray, direction: FillDirection) -> np.ndarray:
    """Fraction (0-1) of filled pixels per position along the fill axis."""
    occupied = mask.astype(np.float64) / 255.0
    if direction.is_horizontal:
        # One value per column
        return occupied.mean(axis=0)
    return occupied.mean(axis=1)


def find_fill_edge(
    projection: np.ndarray,
    direction: FillDirection,
    threshold: float = FILL_OCCUPANCY_THRESHOLD,
) -> float:
    """Fill percent from scanning the projection from the fill-start side.

    Runs of empty positions up to the gap tolerance are bridged, so
    borders and grid lines inside the bar do not cut the fill short.
    The gap counter only starts once the first filled position is seen.
    """
    length = len(projection)
    if length == 0:
        return 0.0

    values = projection[::-1] if direction.is_reversed else projection
    gap_tolerance = max(MIN_GAP_TOLERANCE, length // GAP_TOLERANCE_DIVISOR)

    last_filled = -1
    gap = 0
    for index, value in enumerate(values):
        if value > threshold:
            last_filled = index
            gap = 0
        elif last_filled >= 0:
            gap += 1
            if gap > gap_tolerance:
                break

    return (last_filled + 1) / length * 100.0


def measure_fill_from_mask(
    mask: np.ndarray,
    direction: FillDirection,
    fragment_ratio: float = FRAGMENT_RATIO_THRESHOLD,
) -> float:
    """Reconcile the simple filled ratio with the edge scan.

    When the two disagree by ``fragment_ratio`` or more relative to the
    simple ratio the projection is fragmented and the simple ratio wins;
    otherwise the edge scan is used.
    """
    projection = occupancy_projection(mask, direction)
    length = len(projection)
    if length == 0:
        return 0.0

    filled_count = int(np.count_nonzero(projection > FILL_OCCUPANCY_THRESHOLD))
    simple_percent = filled_count / length * 100.0
    edge_percent = find_fill_edge(projection, direction)

    percent = edge_percent
    if filled_count > 0:
        disagreement = abs(simple_percent - edge_percent) / simple_percent
        if disagreement >= fragment_ratio:
            percent = simple_percent

    return float(min(100.0, max(0.0, percent)))


def compute_fill_percent(
    region: Optional[np.ndarray],
    config: MeterConfig,
    fragment_ratio: float = FRAGMENT_RATIO_THRESHOLD,
) -> float:
    """Measure how full the bar in ``region`` is.

    Args:
        region: Cropped bar pixels (gray, BGR or BGRA)
        config: Meter settings (direction and optional colour hint)
        fragment_ratio: Disagreement at which the simple ratio is preferred

    Returns:
        Fill percent in [0, 100], or -1 on failure or too-small regions
    """
    if not _is_measurable(region):
        return FILL_FAILED

    try:
        if config.use_color_hint and config.color_hint is not None:
            mask = color_mask(region, config.color_hint)
        else:
            mask = contrast_mask(region)
        return measure_fill_from_mask(mask, config.direction, fragment_ratio)
    except (cv2.error, ValueError):
        return FILL_FAILED


def _percentile(sorted_values: np.ndarray, percent: float) -> int:
    """Nearest-rank style percentile: index floor(n * p / 100)."""
    index = int(len(sorted_values) * percent / 100)
    index = min(max(index, 0), len(sorted_values) - 1)
    return int(sorted_values[index])


def compute_dominant_hsv_range(region: Optional[np.ndarray]) -> Optional[HsvRange]:
    """Estimate an HSV range covering the dominant bar colour in ``region``.

    Sample the region while the bar is (mostly) full. Regions with too
    few colourful pixels are treated as white/gray bars and calibrated on
    brightness alone. Red bars straddling hue 0 produce a wrapping range.

    Returns:
        The calibrated range, or None for degenerate input
    """
    if not _is_measurable(region):
        return None

    try:
        hsv = cv2.cvtColor(ensure_bgr(region), cv2.COLOR_BGR2HSV)
    except (cv2.error, ValueError):
        return None

    pixels = hsv.reshape(-1, 3)
    hue = pixels[:, 0].astype(np.int32)
    sat = pixels[:, 1].astype(np.int32)
    val = pixels[:, 2].astype(np.int32)

    colorful = (sat >= CALIB_MIN_SATURATION) & (val >= CALIB_MIN_VALUE)
    colorful_count = int(np.count_nonzero(colorful))

    if colorful_count < len(pixels) * CALIB_MIN_COLORFUL_FRACTION:
        # White/gray bar: any hue, low saturation, bright
        sat_sorted = np.sort(sat)
        val_sorted = np.sort(val)
        return HsvRange(
            hue_min=0,
            hue_max=HUE_MAX,
            sat_min=0,
            sat_max=min(255, _percentile(sat_sorted, 90) + CALIB_SV_MARGIN),
            val_min=max(0, _percentile(val_sorted, 10) - CALIB_SV_MARGIN),
            val_max=255,
        )

    hues = np.sort(hue[colorful])
    sats = np.sort(sat[colorful])
    vals = np.sort(val[colorful])

    low_hues = hues[hues <= CALIB_WRAP_LOW_HUE]
    high_hues = hues[hues >= CALIB_WRAP_HIGH_HUE]
    wraps = (
        len(low_hues) > len(hues) * CALIB_WRAP_FRACTION
        and len(high_hues) > len(hues) * CALIB_WRAP_FRACTION
    )

    if wraps:
        hue_min = max(0, _percentile(high_hues, 10) - CALIB_WRAP_MARGIN)
        hue_max = min(HUE_MAX, _percentile(low_hues, 90) + CALIB_WRAP_MARGIN)
    else:
        hue_min = max(0, _percentile(hues, 10) - CALIB_HUE_MARGIN)
        hue_max = min(HUE_MAX, _percentile(hues, 90) + CALIB_HUE_MARGIN)

    return HsvRange(
        hue_min=hue_min,
        hue_max=hue_max,
        sat_min=max(0, _percentile(sats, 10) - CALIB_SV_MARGIN),
        sat_max=255,
        val_min=max(0, _percentile(vals, 10) - CALIB_SV_MARGIN),
        val_max=255,
    )
