from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, TextIO

import cv2 as cv
import numpy as np
import rawpy
from numpy.typing import ArrayLike, NDArray

from config import DEFAULT_CONFIG

NDArrayFloat = NDArray[np.floating[Any]]
NDArrayU8 = NDArray[np.uint8]


class ImageReadError(ValueError):
    pass


def _read_raw(path: Path, apply_white_balance: bool) -> NDArrayFloat:
    """Develop a camera RAW file with LibRaw, linear and in camera color space. Returns RGBA float32 in [0, 1]."""
    try:
        with rawpy.imread(str(path)) as raw:
            rgb = raw.postprocess(
                use_camera_wb=apply_white_balance,
                output_color=rawpy.ColorSpace.raw,
                gamma=(1, 1),
                output_bps=16,
                no_auto_bright=True,
                user_flip=0,
            )
    except (rawpy.LibRawError, OSError) as e:
        raise ImageReadError(f"Cannot read RAW image '{path}': {e}") from e

    rgba = np.ones((*rgb.shape[:2], 4), dtype=np.float32)
    rgba[..., :3] = rgb.astype(np.float32) / 65535.0
    return rgba


def read_image(path: Path, apply_white_balance: bool = True) -> NDArrayFloat:
    """Load an image as RGBA float32 (H, W, 4) in [0, 1], without color space conversion.

    White balance only affects RAW files; other formats are already developed.
    """
    path = Path(path)
    if path.suffix.lower() in DEFAULT_CONFIG.raw_extensions:
        return _read_raw(path, apply_white_balance)

    img = cv.imread(str(path), cv.IMREAD_UNCHANGED)
    if img is None:
        raise ImageReadError(f"Cannot read image '{path}'")

    if img.dtype == np.uint8:
        img = img.astype(np.float32) / 255.0
    elif img.dtype == np.uint16:
        img = img.astype(np.float32) / 65535.0
    else:
        img = img.astype(np.float32)

    if img.ndim == 2:
        img = img[..., None]

    h, w, c = img.shape
    rgba = np.ones((h, w, 4), dtype=np.float32)
    if c == 1:
        rgba[..., :3] = img
    elif c == 3:
        rgba[..., :3] = img[..., ::-1]  # BGR -> RGB
    elif c == 4:
        rgba[..., :3] = img[..., 2::-1]
        rgba[..., 3] = img[..., 3]
    else:
        raise ImageReadError(f"Unsupported number of channels ({c}) in '{path}'")
    return rgba


def rgba_to_bgr_u8(rgba: NDArrayFloat) -> NDArrayU8:
    """RGBA float [0, 1] -> BGR uint8 [0, 255] (OpenCV layout). Values outside [0, 1] saturate."""
    bgr = np.rint(np.asarray(rgba, dtype=np.float32)[..., 2::-1] * 255.0)
    return np.clip(bgr, 0, 255).astype(np.uint8)


def rgba_to_bgr_f32(rgba: NDArrayFloat) -> NDArray[np.float32]:
    """RGBA float -> BGR float32, values unscaled."""
    return np.ascontiguousarray(np.asarray(rgba)[..., 2::-1], dtype=np.float32)


def bgr_to_rgba(bgr: NDArrayFloat, rgba: NDArrayFloat) -> NDArray[np.float32]:
    """Write BGR float values into a copy of `rgba`, keeping its alpha channel."""
    bgr, rgba = np.asarray(bgr), np.asarray(rgba)
    if bgr.shape[:2] != rgba.shape[:2] or bgr.shape[-1] != 3:
        raise ValueError(f"Shape mismatch: BGR {bgr.shape} vs RGBA {rgba.shape}")
    out = rgba.astype(np.float32, copy=True)
    out[..., :3] = bgr[..., ::-1]
    return out


@dataclass
class DetectedChart:
    box: NDArrayFloat  # (4, 2) outer box corners in image pixels
    colors: NDArrayFloat  # (24, 3) average RGB per patch in [0, 1], reference order
    native: Any = None  # detector-specific checker object, used for debug drawing


class ChartDetector(Protocol):
    def detect(self, image_bgr: NDArrayU8) -> list[DetectedChart]: ...

    def draw(self, image_bgr: NDArrayU8, chart: DetectedChart) -> NDArrayU8: ...


class MCCDetector:
    """Macbeth 24-patch chart detection backed by OpenCV's contrib `mcc` module."""

    def __init__(
        self,
        max_charts: int = 1,
        draw_color: tuple[int, int, int] = (250, 0, 0),
        draw_thickness: int = 3,
    ):
        self.max_charts = max_charts
        self.draw_color = draw_color
        self.draw_thickness = draw_thickness

    def detect(self, image_bgr: NDArrayU8) -> list[DetectedChart]:
        detector = cv.mcc.CCheckerDetector_create()  # ty:ignore[unresolved-attribute]
        if not detector.process(image_bgr, cv.mcc.MCC24, nc=self.max_charts):  # ty:ignore[unresolved-attribute]
            return []

        charts = []
        for checker in detector.getListColorChecker():
            box = np.asarray(checker.getBox(), dtype=np.float64).reshape(-1, 2)
            # rows are (patch, channel) pairs; column 1 holds the channel average
            charts_rgb = np.asarray(checker.getChartsRGB())
            colors = charts_rgb[:, 1].reshape(-1, 3) / 255.0
            charts.append(DetectedChart(box, colors, checker))
        return charts

    def draw(self, image_bgr: NDArrayU8, chart: DetectedChart) -> NDArrayU8:
        r, g, b = self.draw_color
        cdraw = cv.mcc.CCheckerDraw_create(chart.native, (b, g, r), self.draw_thickness)  # ty:ignore[unresolved-attribute]
        drawn = cdraw.draw(image_bgr)
        return image_bgr if drawn is None else drawn


def write_color_data(f: TextIO, colors: ArrayLike, precision: int = DEFAULT_CONFIG.color_precision) -> int:
    """Write patch colors one value per line (patch-major, then R, G, B). Returns the number of lines."""
    values = np.asarray(colors, dtype=np.float64).reshape(-1)
    for value in values:
        f.write(f"{value:.{precision}g}\n")
    return len(values)
