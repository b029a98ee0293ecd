"""Global constants for the detection engine.

Empirically chosen tunables live here so they can be revisited without
touching the algorithms that use them.
"""

from typing import Final

# Loop timing
CAPTURE_DELAY_MS_DEFAULT: Final[int] = 100
"""Delay between capture cycles"""

CAPTURE_ERROR_BACKOFF_SEC: Final[float] = 1.0
"""Back-off after a failed cycle before capturing again"""

STOP_TIMEOUT_SEC: Final[float] = 5.0
"""How long stop() waits for the worker to acknowledge cancellation"""

LINGERING_JOIN_SEC: Final[float] = 0.1
"""How long start() waits for a loop abandoned by a timed-out stop to exit"""

# Capture retries
CAPTURE_RETRY_N: Final[int] = 3
"""Grab attempts before a capture is reported as failed"""

CAPTURE_RETRY_INTERVAL_MS: Final[int] = 100
"""Pause between grab attempts"""

# Template matching
DEFAULT_ALGORITHM_ID: Final[str] = "template-matching"
MASKED_ALGORITHM_ID: Final[str] = "template-matching-masked"

MATCH_THRESHOLD_DEFAULT: Final[float] = 0.8
"""Similarity score required for a template to count as found"""

ALPHA_MASK_CUTOFF: Final[int] = 100
"""Template pixels with alpha at or below this are ignored by the masked matcher"""

RESIZE_EPSILON: Final[float] = 0.001
"""Scale ratios closer than this to 1.0 skip resizing"""

# Meter fill measurement
FILL_OCCUPANCY_THRESHOLD: Final[float] = 0.5
"""Cross-axis occupancy above which a column/row counts as filled"""

FRAGMENT_RATIO_THRESHOLD: Final[float] = 0.2
"""Relative disagreement at which the simple ratio wins over the edge scan"""

MIN_GAP_TOLERANCE: Final[int] = 2
GAP_TOLERANCE_DIVISOR: Final[int] = 50
"""Edge scan tolerates max(MIN_GAP_TOLERANCE, length // GAP_TOLERANCE_DIVISOR) empty positions"""

MIN_METER_REGION_PX: Final[int] = 2
"""Regions narrower or shorter than this cannot be measured"""

# Meter auto-calibration (OpenCV HSV: H 0-180, S/V 0-255)
HUE_MAX: Final[int] = 180
CALIB_MIN_SATURATION: Final[int] = 30
CALIB_MIN_VALUE: Final[int] = 40
CALIB_MIN_COLORFUL_FRACTION: Final[float] = 0.05
CALIB_WRAP_LOW_HUE: Final[int] = 15
CALIB_WRAP_HIGH_HUE: Final[int] = 165
CALIB_WRAP_FRACTION: Final[float] = 0.1
CALIB_WRAP_MARGIN: Final[int] = 5
CALIB_HUE_MARGIN: Final[int] = 10
CALIB_SV_MARGIN: Final[int] = 20

# Value change analysis
HEAL_REBASELINE_FACTOR: Final[float] = 2.0
"""Increase (in multiples of the noise floor) that re-baselines a decreases-only meter"""

# Actions
INTENSITY_MIN: Final[int] = 1
INTENSITY_MAX: Final[int] = 100

# History and logging
HISTORY_MAX_EVENTS: Final[int] = 200
"""Recent detections kept in memory"""

LOG_BUFFER_SIZE: Final[int] = 500
"""Log ring buffer capacity"""

# Grayscale conversion weights (ITU-R BT.601)
GRAY_WEIGHT_R: Final[float] = 0.299
GRAY_WEIGHT_G: Final[float] = 0.587
GRAY_WEIGHT_B: Final[float] = 0.114
