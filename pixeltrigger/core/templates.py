"""Reference image loading and the shared template cache."""

from pathlib import Path
from threading import Lock
from typing import Optional

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from .constants import RESIZE_EPSILON
from .logging import Logger, get_logger
from .model import DetectionTarget, Resolution, TemplateConfig


class TemplateLoadError(Exception):
    """Exception raised when a reference image cannot be loaded."""

    pass


def read_image(path: str) -> np.ndarray:
    """Read an image file as BGR, or BGRA when it has transparency.

    Raises:
        TemplateLoadError: If the file is missing or not a readable image
    """
    if not path:
        raise TemplateLoadError("No image path configured")

    file_path = Path(path)
    if not file_path.is_file():
        raise TemplateLoadError(f"Image file not found: {path}")

    try:
        with Image.open(file_path) as img:
            has_alpha = img.mode in ("RGBA", "LA", "PA") or (
                img.mode == "P" and "transparency" in img.info
            )
            if has_alpha:
                rgba = np.array(img.convert("RGBA"))
                return cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGRA)
            rgb = np.array(img.convert("RGB"))
            return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)
    except (OSError, UnidentifiedImageError) as e:
        raise TemplateLoadError(f"Failed to read image {path}: {e}") from e


def scale_template(image: np.ndarray, source: Resolution, current: Resolution) -> np.ndarray:
    """Rescale a template captured at ``source`` for frames at ``current``.

    Ratios within ``RESIZE_EPSILON`` of 1.0 leave the image untouched.
    """
    if source.width <= 0 or source.height <= 0:
        return image

    scale_x, scale_y = source.scale_ratios(current)
    if abs(scale_x - 1.0) < RESIZE_EPSILON and abs(scale_y - 1.0) < RESIZE_EPSILON:
        return image

    height, width = image.shape[:2]
    new_width = max(1, int(round(width * scale_x)))
    new_height = max(1, int(round(height * scale_y)))
    return cv2.resize(image, (new_width, new_height), interpolation=cv2.INTER_AREA)


def load_template(config: TemplateConfig, current: Optional[Resolution] = None) -> np.ndarray:
    """Load a target's reference image, scaled to the current resolution.

    Raises:
        TemplateLoadError: If the image cannot be read
    """
    image = read_image(config.image_path)
    if config.auto_resize and current is not None:
        image = scale_template(image, config.capture_resolution, current)
    return image


class TemplateCache:
    """Loaded templates keyed by ``moduleId/targetId``.

    Reads and invalidation share one lock, so a reload never interleaves
    with a lookup.
    """

    def __init__(self, resolution: Optional[Resolution] = None, logger: Optional[Logger] = None) -> None:
        self._images: dict[str, np.ndarray] = {}
        self._resolution = resolution
        self._logger = logger or get_logger()
        self._lock = Lock()

    @property
    def resolution(self) -> Optional[Resolution]:
        return self._resolution

    def set_resolution(self, resolution: Resolution) -> None:
        """Change the frame resolution; cached templates are dropped if it differs."""
        with self._lock:
            if resolution == self._resolution:
                return
            self._resolution = resolution
            self._images.clear()

    def get_or_load(self, target: DetectionTarget) -> np.ndarray:
        """Cached template for ``target``, loading it on first use.

        Raises:
            TemplateLoadError: If the image cannot be loaded
        """
        with self._lock:
            image = self._images.get(target.key)
            if image is not None:
                return image

            image = load_template(target.template, self._resolution)
            self._images[target.key] = image
            self._logger.debug(
                "Template loaded",
                target=target.key,
                width=image.shape[1],
                height=image.shape[0],
            )
            return image

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._images.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._images.clear()

    def reload(self, targets: list[DetectionTarget]) -> int:
        """Drop everything, then load ``targets`` again.

        Returns:
            Number of templates loaded; failures are logged and skipped
        """
        with self._lock:
            self._images.clear()
            loaded = 0
            for target in targets:
                try:
                    self._images[target.key] = load_template(target.template, self._resolution)
                    loaded += 1
                except TemplateLoadError as e:
                    self._logger.warning(str(e), target=target.key)
            return loaded

    def __len__(self) -> int:
        with self._lock:
            return len(self._images)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._images
