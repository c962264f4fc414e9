"""Debug overlay geometry for detected color checkers.

The chart reference layout (outer box and the 24 patch centers, in chart units) is mapped onto the detected
outer box with a perspective transform. Every patch becomes a closed 5-point polyline in image pixels.
"""

from dataclasses import dataclass
from itertools import combinations
from pathlib import Path
from typing import Any, Iterable, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

NDArrayFloat = NDArray[np.floating[Any]]
Point2D = tuple[float, float]


class OverlayError(ValueError):
    """Base class for overlay geometry failures of a single chart."""


class InvalidGeometryError(OverlayError):
    pass


class DegenerateTransformError(OverlayError):
    pass


class DivisionByZeroError(OverlayError):
    pass


@dataclass(frozen=True)
class ReferenceLayout:
    """Macbeth 24-patch chart in chart-local units."""

    corners: tuple[Point2D, ...]
    cell_centers: tuple[Point2D, ...]
    cell_size: float

    def cell_corners(self, center: Point2D) -> NDArrayFloat:
        """Axis-aligned cell rectangle around `center`: top-left, top-right, bottom-right, bottom-left."""
        h = self.cell_size * 0.5
        cx, cy = center
        return np.array(
            [
                [cx - h, cy - h],
                [cx + h, cy - h],
                [cx + h, cy + h],
                [cx - h, cy + h],
            ]
        )


MACBETH_LAYOUT = ReferenceLayout(
    corners=((0.00, 0.00), (16.75, 0.00), (16.75, 11.25), (0.00, 11.25)),
    cell_centers=tuple((x, y) for y in (1.50, 4.25, 7.00, 9.75) for x in (1.50, 4.25, 7.00, 9.75, 12.50, 15.25)),
    cell_size=2.50 * 0.5,
)


@dataclass(frozen=True)
class Quad:
    """Closed polyline: 4 corners followed by the first corner again."""

    points: NDArrayFloat  # (5, 2)

    @property
    def xs(self) -> NDArrayFloat:
        return self.points[:, 0]

    @property
    def ys(self) -> NDArrayFloat:
        return self.points[:, 1]

    def __len__(self) -> int:
        return len(self.points)


def _as_points(points: ArrayLike) -> NDArrayFloat:
    pts = np.asarray(points, dtype=np.float64)
    if pts.size == 0:
        return pts.reshape(0, 2)
    if pts.ndim != 2 or pts.shape[1] != 2:
        if pts.size % 2:
            raise InvalidGeometryError(f"Cannot interpret array of shape {pts.shape} as 2D points")
        pts = pts.reshape(-1, 2)  # cv2 returns (4, 1, 2) boxes
    return pts


def build_quad(points: ArrayLike) -> Quad:
    """Close a 4-point box into a 5-point polyline."""
    pts = _as_points(points)
    if len(pts) != 4:
        raise InvalidGeometryError(f"Invalid color checker box: expected 4 points, got {len(pts)}")
    return Quad(np.vstack([pts, pts[:1]]))


def _has_collinear_triple(pts: NDArrayFloat) -> bool:
    span = max(float(np.ptp(pts, axis=0).max()), 1.0)
    tol = 1e-9 * span * span
    for a, b, c in combinations(pts, 3):
        area2 = (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])
        if abs(area2) <= tol:
            return True
    return False


def compute_perspective_transform(reference: ArrayLike, detected: ArrayLike) -> NDArrayFloat:
    """Homography mapping the 4 reference points onto the 4 detected points.

    Solves the usual 8x8 linear system with the bottom-right coefficient fixed to 1, the same system
    `cv.getPerspectiveTransform` solves.
    """
    src, dst = _as_points(reference), _as_points(detected)
    if len(src) != 4 or len(dst) != 4:
        raise DegenerateTransformError(f"Need 4 point correspondences, got {len(src)} and {len(dst)}")
    if _has_collinear_triple(src) or _has_collinear_triple(dst):
        raise DegenerateTransformError("Three of the four correspondence points are collinear")

    A = np.zeros((8, 8))
    b = np.zeros(8)
    for i, ((x, y), (u, v)) in enumerate(zip(src, dst)):
        A[2 * i] = [x, y, 1, 0, 0, 0, -x * u, -y * u]
        A[2 * i + 1] = [0, 0, 0, x, y, 1, -x * v, -y * v]
        b[2 * i], b[2 * i + 1] = u, v

    try:
        h = np.linalg.solve(A, b)
    except np.linalg.LinAlgError as e:
        raise DegenerateTransformError(f"Singular correspondence system: {e}") from e
    if not np.isfinite(h).all():
        raise DegenerateTransformError("Perspective transform has non-finite coefficients")

    return np.append(h, 1.0).reshape(3, 3)


def transform(quad: Quad, T: ArrayLike) -> Quad:
    """Map every point of `quad` through the homography `T`; returns a new Quad."""
    T = np.asarray(T, dtype=np.float64)
    homogeneous = np.hstack([quad.points, np.ones((len(quad.points), 1))]) @ T.T
    w = homogeneous[:, 2]
    if np.any(w == 0):
        raise DivisionByZeroError("Point maps to infinity (zero homogeneous weight)")
    return Quad(homogeneous[:, :2] / w[:, None])


def build_overlay(detected_box: ArrayLike, layout: ReferenceLayout = MACBETH_LAYOUT) -> list[Quad]:
    """Outer box quad followed by the 24 cell quads in reference order, all in image pixels."""
    quads = [build_quad(detected_box)]

    # Transform matrix from the reference chart to the measured one
    T = compute_perspective_transform(layout.corners, detected_box)

    for center in layout.cell_centers:
        quads.append(transform(build_quad(layout.cell_corners(center)), T))
    return quads


def _polyline_points(quad: Quad) -> str:
    return " ".join(f"{x:g},{y:g}" for x, y in quad.points)


def write_overlay_svg(
    quads: Iterable[Quad],
    filename: Path,
    size: Sequence[int] | None = None,
    stroke: str = "red",
    stroke_width: float = 2.0,
) -> None:
    """Write quads as stroked polylines. `size` is (width, height) of the underlying image."""
    filename.parent.mkdir(exist_ok=True, parents=True)
    with open(filename, "w") as f:
        f.write('<?xml version="1.0" encoding="UTF-8" standalone="no"?>\n')
        if size is not None:
            width, height = size
            f.write(f'<svg xmlns="http://www.w3.org/2000/svg" version="1.1" width="{width}" height="{height}">\n')
        else:
            f.write('<svg xmlns="http://www.w3.org/2000/svg" version="1.1">\n')
        for quad in quads:
            f.write(
                f'  <polyline points="{_polyline_points(quad)}" '
                f'style="fill:none;stroke:{stroke};stroke-width:{stroke_width:g}"/>\n'
            )
        f.write("</svg>\n")
