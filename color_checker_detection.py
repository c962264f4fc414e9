import logging
from pathlib import Path
from typing import TextIO

import cv2 as cv
import typer

from config import DEFAULT_CONFIG, DetectionConfig
from overlay import OverlayError, build_overlay, write_overlay_svg
from scene import SceneLoadError, View, resolve_input
from utils import ChartDetector, ImageReadError, MCCDetector, read_image, rgba_to_bgr_u8, write_color_data

logger = logging.getLogger(__name__)

app = typer.Typer()


def detect_color_checker(
    view: View,
    detector: ChartDetector,
    color_file: TextIO,
    output_dir: Path,
    debug: bool = False,
    cfg: DetectionConfig = DEFAULT_CONFIG,
) -> int:
    """Detect charts in one image and append their patch colors to `color_file`.

    Returns the number of charts written.
    """
    img_path = view.image_path
    image = read_image(img_path, apply_white_balance=view.apply_white_balance)
    image_bgr = rgba_to_bgr_u8(image)

    if image_bgr.shape[0] == 0 or image_bgr.shape[1] == 0:
        raise ImageReadError(f"Image at: '{img_path}' is empty.")

    charts = detector.detect(image_bgr)
    if not charts:
        logger.info("Checker not detected in image at: '%s'", img_path)
        return 0

    logger.info("Checker successfully detected in '%s'", img_path.stem)

    for k, chart in enumerate(charts):
        if debug:
            dest_stem = img_path.stem if k == 0 else f"{img_path.stem}_{k}"
            h, w = image_bgr.shape[:2]
            try:
                quads = build_overlay(chart.box)
            except OverlayError as e:
                # chart colors are still valid, only the drawing is lost
                logger.error("Cannot build overlay for chart %d in '%s': %s", k, img_path, e)
            else:
                write_overlay_svg(
                    quads,
                    output_dir / f"{dest_stem}.svg",
                    size=(w, h),
                    stroke=cfg.svg_stroke,
                    stroke_width=cfg.svg_stroke_width,
                )

            image_bgr = detector.draw(image_bgr, chart)
            cv.imwrite(str(output_dir / f"{dest_stem}.jpg"), image_bgr)

        n = write_color_data(color_file, chart.colors, precision=cfg.color_precision)
        logger.debug("Wrote %d color values for chart %d of '%s'", n, k, img_path.stem)

    return len(charts)


@app.command()
def main(
    input_expression: str = typer.Option(
        ...,
        "--input",
        "-i",
        help=(
            "SfMData file input, image filenames or regex(es) on the image file path "
            "(supported regex: '#' matches a single digit, '@' one or more digits, "
            "'?' one character and '*' zero or more)."
        ),
    ),
    output_color_data: Path = typer.Option(
        ...,
        "--output",
        "--outputColorData",
        "-o",
        help="Output path for the color data file.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug/--no-debug",
        help="Output debug data (SVG overlay and annotated JPEG per image).",
    ),
    max_charts: int = typer.Option(
        DEFAULT_CONFIG.max_charts,
        "--max-charts",
        help="Maximum number of charts to detect per image",
        min=1,
    ),
    image_dir: Path | None = typer.Option(
        None,
        "--image-dir",
        help="Image folder of a COLMAP model (default: <dataset>/images)",
    ),
    verbose_level: str = typer.Option(
        "info",
        "--verbose-level",
        "--verboseLevel",
        "-v",
        help="verbosity level (fatal, error, warning, info, debug, trace).",
    ),
):
    """Perform color checker detection and export the measured patch colors."""

    cfg = DetectionConfig(max_charts=max_charts)

    level = cfg.verbose_levels.get(verbose_level.lower())
    if level is None:
        typer.echo(f"Error: unknown verbose level '{verbose_level}'", err=True)
        raise typer.Exit(code=1)
    logging.basicConfig(level=level, format="%(message)s", force=True)

    typer.echo("Program called with the following parameters:")
    typer.echo(f"  input: {input_expression}")
    typer.echo(f"  outputColorData: {output_color_data}")
    typer.echo(f"  debug: {debug}")
    typer.echo(f"  maxCharts: {max_charts}")
    typer.echo(f"  verboseLevel: {verbose_level}")

    try:
        views = resolve_input(input_expression, image_dir=image_dir)
    except SceneLoadError as e:
        logger.error("%s", e)
        raise typer.Exit(code=1)

    if not views:
        logger.warning("No image found for input '%s'", input_expression)

    output_dir = output_color_data.parent
    output_dir.mkdir(parents=True, exist_ok=True)
    detector = MCCDetector(cfg.max_charts, cfg.draw_color, cfg.draw_thickness)

    n_charts = 0
    with open(output_color_data, "w") as color_file:
        for counter, view in enumerate(views, start=1):
            logger.info("%d/%d - Process image at: '%s'.", counter, len(views), view.image_path)
            try:
                n_charts += detect_color_checker(view, detector, color_file, output_dir, debug, cfg)
            except ImageReadError as e:
                logger.error("%s", e)
                raise typer.Exit(code=1)

    logger.info("%d chart(s) written to '%s'", n_charts, output_color_data)


if __name__ == "__main__":
    app()
