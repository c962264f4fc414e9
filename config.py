"""Configuration for color checker detection."""

from dataclasses import dataclass, field


@dataclass
class DetectionConfig:
    """Configuration for color checker detection.

    Modify the default values here for experimentation.
    Command-line options override the matching fields.
    """

    # Detection
    max_charts: int = 1
    """Maximum number of charts to detect per image"""

    # Debug output
    svg_stroke: str = "red"
    """Stroke color of the SVG overlay polylines"""

    svg_stroke_width: float = 2.0
    """Stroke width of the SVG overlay polylines"""

    draw_color: tuple[int, int, int] = (250, 0, 0)
    """RGB color used by the native checker drawing on the debug JPEG"""

    draw_thickness: int = 3
    """Line thickness of the native checker drawing"""

    # Input
    scene_extensions: tuple[str, ...] = (".sfm", ".json", ".abc")
    """Extensions recognized as SfM scene files"""

    image_extensions: tuple[str, ...] = (".jpg", ".jpeg", ".png", ".tif", ".tiff", ".exr", ".bmp")
    """Extensions of images decoded with OpenCV"""

    raw_extensions: tuple[str, ...] = (".dng", ".cr2", ".cr3", ".nef", ".arw", ".raf", ".orf", ".rw2")
    """Extensions of camera RAW files decoded with rawpy"""

    # Output
    color_precision: int = 17
    """Significant digits per value in the color data file (double digits10 + 2)"""

    verbose_levels: dict[str, int] = field(
        default_factory=lambda: {
            "fatal": 50,
            "error": 40,
            "warning": 30,
            "info": 20,
            "debug": 10,
            "trace": 10,
        }
    )
    """Verbosity names accepted on the command line and their logging levels"""

    @property
    def supported_extensions(self) -> tuple[str, ...]:
        return self.image_extensions + self.raw_extensions


DEFAULT_CONFIG = DetectionConfig()
