"""Tests for meter fill measurement.

Verifies that:
- Full and empty masks measure ~100% and ~0% in every direction
- A half-filled bar measures ~50%, mirrored for reversed directions
- Small gaps inside the bar are bridged by the edge scan
- Fragmented projections fall back to the simple filled ratio
- Colour hint and contrast strategies both measure real bar images
- Degenerate regions return -1
"""

import numpy as np
import pytest

from pixeltrigger.core.constants import FRAGMENT_RATIO_THRESHOLD
from pixeltrigger.core.meter import (
    FILL_FAILED,
    color_mask,
    compute_fill_percent,
    find_fill_edge,
    measure_fill_from_mask,
    occupancy_projection,
)
from pixeltrigger.core.model import FillDirection, HsvRange, MeterConfig


def horizontal_mask(width: int, filled: int, height: int = 10, from_right: bool = False) -> np.ndarray:
    """Binary mask with ``filled`` columns set on one side."""
    mask = np.zeros((height, width), dtype=np.uint8)
    if from_right:
        mask[:, width - filled:] = 255
    else:
        mask[:, :filled] = 255
    return mask


def bar_image(width: int, height: int, filled: int, fill_bgr: tuple, empty_bgr: tuple) -> np.ndarray:
    """Horizontal BGR bar filled from the left."""
    image = np.empty((height, width, 3), dtype=np.uint8)
    image[:, :] = empty_bgr
    image[:, :filled] = fill_bgr
    return image


class TestMeasureFillFromMask:
    """Test suite for mask-level fill measurement."""

    @pytest.mark.parametrize("direction", list(FillDirection))
    def test_full_mask_is_100(self, direction: FillDirection) -> None:
        """A fully filled mask should measure 100% in any direction."""
        mask = np.full((20, 100), 255, dtype=np.uint8)
        assert measure_fill_from_mask(mask, direction) == pytest.approx(100.0)

    @pytest.mark.parametrize("direction", list(FillDirection))
    def test_empty_mask_is_0(self, direction: FillDirection) -> None:
        """An empty mask should measure 0% in any direction."""
        mask = np.zeros((20, 100), dtype=np.uint8)
        assert measure_fill_from_mask(mask, direction) == pytest.approx(0.0)

    def test_half_left_to_right(self) -> None:
        """Exactly half the columns filled from the left should be ~50%."""
        mask = horizontal_mask(100, 50)
        assert measure_fill_from_mask(mask, FillDirection.LeftToRight) == pytest.approx(50.0, abs=1.0)

    def test_half_right_to_left_mirrored(self) -> None:
        """The mirrored mask should measure the same in the reversed direction."""
        mask = horizontal_mask(100, 50, from_right=True)
        assert measure_fill_from_mask(mask, FillDirection.RightToLeft) == pytest.approx(50.0, abs=1.0)

    def test_vertical_directions(self) -> None:
        """Bottom-to-top and top-to-bottom should read rows from the right end."""
        mask = np.zeros((100, 10), dtype=np.uint8)
        mask[70:, :] = 255  # bottom 30 rows

        assert measure_fill_from_mask(mask, FillDirection.BottomToTop) == pytest.approx(30.0, abs=1.0)
        # Read from the top the fill starts late; the simple ratio still reports 30%
        assert measure_fill_from_mask(mask, FillDirection.TopToBottom) == pytest.approx(30.0, abs=1.0)

    def test_partial_cross_axis_occupancy(self) -> None:
        """Columns at or below half occupancy should not count as filled."""
        mask = np.zeros((10, 100), dtype=np.uint8)
        mask[:5, :80] = 255  # exactly 50% occupancy is not above threshold
        mask[:, :40] = 255
        assert measure_fill_from_mask(mask, FillDirection.LeftToRight) == pytest.approx(40.0, abs=1.0)

    def test_fragmented_projection_uses_simple_ratio(self) -> None:
        """A stray filled column far from the bar should not stretch the fill."""
        mask = horizontal_mask(100, 30)
        mask[:, 95] = 255  # isolated noise, beyond the gap tolerance
        # edge scan stops at 30, simple ratio is 31; they agree, edge wins
        assert measure_fill_from_mask(mask, FillDirection.LeftToRight) == pytest.approx(30.0, abs=1.0)

        striped = np.zeros((10, 100), dtype=np.uint8)
        striped[:, ::4] = 255  # every 4th column filled, gaps of 3 > tolerance 2
        percent = measure_fill_from_mask(striped, FillDirection.LeftToRight)
        # edge scan stops at the first gap (1%), simple ratio is 25%
        assert percent == pytest.approx(25.0, abs=0.5)

    def test_fragment_ratio_is_tunable(self) -> None:
        """A disagreement threshold above the actual disagreement keeps the edge scan."""
        striped = np.zeros((10, 100), dtype=np.uint8)
        striped[:, ::4] = 255
        assert FRAGMENT_RATIO_THRESHOLD == 0.2
        percent = measure_fill_from_mask(striped, FillDirection.LeftToRight, fragment_ratio=1.0)
        assert percent == pytest.approx(1.0, abs=0.5)


class TestFindFillEdge:
    """Test suite for the gap-tolerant edge scan."""

    def test_small_gap_is_bridged(self) -> None:
        """A gap within tolerance should not end the fill."""
        projection = np.zeros(100)
        projection[:60] = 1.0
        projection[30:32] = 0.0  # 2-wide grid line
        assert find_fill_edge(projection, FillDirection.LeftToRight) == pytest.approx(60.0)

    def test_large_gap_ends_fill(self) -> None:
        """A gap beyond tolerance should end the fill."""
        projection = np.zeros(100)
        projection[:20] = 1.0
        projection[30:60] = 1.0
        assert find_fill_edge(projection, FillDirection.LeftToRight) == pytest.approx(20.0)

    def test_gap_tolerance_scales_with_length(self) -> None:
        """Long bars should tolerate gaps of length // 50."""
        projection = np.zeros(500)
        projection[:300] = 1.0
        projection[100:110] = 0.0  # 10 == 500 // 50
        assert find_fill_edge(projection, FillDirection.LeftToRight) == pytest.approx(60.0)

    def test_leading_empty_positions_do_not_count_as_gap(self) -> None:
        """Empty positions before the first fill should not stop the scan."""
        projection = np.zeros(100)
        projection[10:50] = 1.0
        assert find_fill_edge(projection, FillDirection.LeftToRight) == pytest.approx(50.0)

    def test_reversed_scan(self) -> None:
        """Reversed directions scan from the high-index end."""
        projection = np.zeros(100)
        projection[75:] = 1.0
        assert find_fill_edge(projection, FillDirection.RightToLeft) == pytest.approx(25.0)


class TestOccupancyProjection:
    """Test projection along the fill axis."""

    def test_horizontal_projects_columns(self) -> None:
        """Horizontal directions should yield one value per column."""
        mask = np.zeros((4, 6), dtype=np.uint8)
        mask[:2, 0] = 255
        projection = occupancy_projection(mask, FillDirection.LeftToRight)
        assert projection.shape == (6,)
        assert projection[0] == pytest.approx(0.5)

    def test_vertical_projects_rows(self) -> None:
        """Vertical directions should yield one value per row."""
        mask = np.zeros((4, 6), dtype=np.uint8)
        projection = occupancy_projection(mask, FillDirection.BottomToTop)
        assert projection.shape == (4,)


class TestComputeFillPercent:
    """Test the full measurement on bar images."""

    def test_color_hint_green_bar(self) -> None:
        """A green bar 70% full on a dark background should measure ~70%."""
        image = bar_image(200, 12, 140, fill_bgr=(0, 200, 0), empty_bgr=(30, 30, 30))
        config = MeterConfig(use_color_hint=True, color_hint=HsvRange.green())
        assert compute_fill_percent(image, config) == pytest.approx(70.0, abs=1.0)

    def test_color_hint_ignores_other_colors(self) -> None:
        """Pixels outside the hint range should not count as filled."""
        image = bar_image(200, 12, 140, fill_bgr=(200, 0, 0), empty_bgr=(30, 30, 30))
        config = MeterConfig(use_color_hint=True, color_hint=HsvRange.green())
        assert compute_fill_percent(image, config) == pytest.approx(0.0)

    def test_contrast_strategy(self) -> None:
        """Without a hint a bright bar on a dark background is measured by contrast."""
        image = bar_image(200, 12, 50, fill_bgr=(220, 220, 220), empty_bgr=(20, 20, 20))
        assert compute_fill_percent(image, MeterConfig()) == pytest.approx(25.0, abs=1.0)

    def test_wrapping_red_hint(self) -> None:
        """A hue range straddling 0 should match reds on both sides."""
        image = np.zeros((10, 100, 3), dtype=np.uint8)
        image[:, :30] = (0, 40, 255)    # hue ~5
        image[:, 30:60] = (40, 0, 255)  # hue ~175
        hint = HsvRange(hue_min=170, hue_max=10)
        mask = color_mask(image, hint)
        assert (mask[:, :60] == 255).all()
        assert (mask[:, 60:] == 0).all()

        config = MeterConfig(use_color_hint=True, color_hint=hint)
        assert compute_fill_percent(image, config) == pytest.approx(60.0, abs=1.0)

    def test_bgra_region_accepted(self) -> None:
        """mss BGRA crops should be measured like BGR."""
        image = bar_image(100, 10, 40, fill_bgr=(0, 200, 0), empty_bgr=(0, 0, 0))
        bgra = np.dstack([image, np.full((10, 100), 255, dtype=np.uint8)])
        config = MeterConfig(use_color_hint=True, color_hint=HsvRange.green())
        assert compute_fill_percent(bgra, config) == pytest.approx(40.0, abs=1.0)

    def test_hint_ignored_when_disabled(self) -> None:
        """A stored hint should only be used when use_color_hint is set."""
        image = bar_image(100, 10, 40, fill_bgr=(230, 230, 230), empty_bgr=(10, 10, 10))
        config = MeterConfig(use_color_hint=False, color_hint=HsvRange.green())
        assert compute_fill_percent(image, config) == pytest.approx(40.0, abs=1.0)

    @pytest.mark.parametrize(
        "region",
        [
            None,
            np.zeros((0, 0, 3), dtype=np.uint8),
            np.zeros((1, 50, 3), dtype=np.uint8),
            np.zeros((50, 1, 3), dtype=np.uint8),
        ],
    )
    def test_degenerate_region_fails(self, region) -> None:
        """Missing or too-small regions should return -1."""
        assert compute_fill_percent(region, MeterConfig()) == FILL_FAILED
