"""Input resolution: SfM scenes (AliceVision JSON, COLMAP sparse models) and image expressions."""

import enum
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pycolmap

from config import DEFAULT_CONFIG

logger = logging.getLogger(__name__)

COLMAP_MODEL_FILES = ("cameras.bin", "cameras.txt")


class SceneLoadError(ValueError):
    pass


class SceneFields(enum.Flag):
    VIEWS = enum.auto()
    INTRINSICS = enum.auto()


@dataclass
class View:
    view_id: int
    image_path: Path
    apply_white_balance: bool = True


@dataclass
class Scene:
    path: Path
    views: list[View] = field(default_factory=list)
    intrinsics: list[dict[str, Any]] = field(default_factory=list)


def _is_colmap_model(path: Path) -> bool:
    return path.is_dir() and any((path / name).exists() for name in COLMAP_MODEL_FILES)


def is_scene_file(expression: str | Path) -> bool:
    """True if the input should be loaded as an SfM scene rather than as images."""
    path = Path(expression)
    return path.suffix.lower() in DEFAULT_CONFIG.scene_extensions or _is_colmap_model(path)


def _use_white_balance(metadata: dict[str, Any]) -> bool:
    value = str(metadata.get("AliceVision:useWhiteBalance", "1")).strip().lower()
    return value not in ("0", "false", "no", "off")


def _load_alicevision(path: Path, fields: SceneFields) -> Scene:
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SceneLoadError(f"The input SfMData file '{path}' cannot be read: {e}") from e

    if not isinstance(data, dict):
        raise SceneLoadError(f"The input SfMData file '{path}' is not a JSON object")

    scene = Scene(path)
    if SceneFields.VIEWS in fields:
        records = data.get("views", [])
        if not isinstance(records, list):
            raise SceneLoadError(f"'views' in '{path}' must be a list")
        for idx, record in enumerate(records):
            if not isinstance(record, dict):
                raise SceneLoadError(f"View #{idx} in '{path}' is not a JSON object")
            if "path" not in record:
                raise SceneLoadError(f"View #{idx} in '{path}' has no image path")
            try:
                image_path = Path(record["path"])
                if not image_path.is_absolute():
                    image_path = path.parent / image_path
                view = View(
                    view_id=int(record.get("viewId", idx)),  # ids are stored as strings
                    image_path=image_path,
                    apply_white_balance=_use_white_balance(record.get("metadata", {})),
                )
            except (ValueError, TypeError, AttributeError) as e:
                raise SceneLoadError(f"View #{idx} in '{path}' is malformed: {e}") from e
            scene.views.append(view)
        # views are keyed by id in the scene graph
        scene.views.sort(key=lambda v: v.view_id)

    if SceneFields.INTRINSICS in fields:
        intrinsics = data.get("intrinsics", [])
        if not isinstance(intrinsics, list) or not all(isinstance(i, dict) for i in intrinsics):
            raise SceneLoadError(f"'intrinsics' in '{path}' must be a list of objects")
        scene.intrinsics = list(intrinsics)

    return scene


def _load_colmap(path: Path, fields: SceneFields, image_dir: Path | None) -> Scene:
    """Read a COLMAP sparse model, e.g. <dataset>/sparse/0 with images in <dataset>/images."""
    try:
        rec = pycolmap.Reconstruction(str(path))
    except (ValueError, RuntimeError) as e:
        raise SceneLoadError(f"The input COLMAP model '{path}' cannot be read: {e}") from e

    if image_dir is None:
        image_dir = path.parent.parent / "images"

    scene = Scene(path)
    if SceneFields.VIEWS in fields:
        for image_id, image in sorted(rec.images.items()):
            scene.views.append(View(view_id=int(image_id), image_path=image_dir / image.name))

    if SceneFields.INTRINSICS in fields:
        scene.intrinsics = [
            {"intrinsicId": int(camera_id), "width": cam.width, "height": cam.height, "params": list(cam.params)}
            for camera_id, cam in sorted(rec.cameras.items())
        ]

    return scene


def load_scene(path: str | Path, fields: SceneFields = SceneFields.VIEWS, image_dir: Path | None = None) -> Scene:
    path = Path(path)
    if _is_colmap_model(path):
        scene = _load_colmap(path, fields, image_dir)
    elif path.suffix.lower() == ".abc":
        raise SceneLoadError(f"The input SfMData file '{path}' cannot be read: Alembic scenes are not supported")
    else:
        scene = _load_alicevision(path, fields)

    logger.debug("Loaded scene '%s' with %d views", path, len(scene.views))
    return scene


def _wildcard_to_regex(pattern: str) -> re.Pattern[str]:
    """'#' one digit, '@' one or more digits, '?' one character, '*' zero or more characters."""
    tokens = {"#": "[0-9]", "@": "[0-9]+", "?": ".", "*": ".*"}
    return re.compile("".join(tokens.get(c, re.escape(c)) for c in pattern))


def resolve_image_expression(expression: str | Path) -> list[Path]:
    """Image file, image folder, or wildcard expression on the file name -> sorted image paths."""
    path = Path(expression)
    if path.is_file():
        return [path]

    if path.is_dir():
        supported = DEFAULT_CONFIG.supported_extensions
        return sorted(p for p in path.iterdir() if p.is_file() and p.suffix.lower() in supported)

    parent = path.parent
    if not parent.is_dir():
        logger.warning("Folder '%s' of input expression '%s' does not exist", parent, expression)
        return []

    regex = _wildcard_to_regex(path.name)
    return sorted(p for p in parent.iterdir() if p.is_file() and regex.fullmatch(p.name))


def resolve_input(expression: str | Path, image_dir: Path | None = None) -> list[View]:
    """Views to process: the scene's views, or one view per image matched by the expression."""
    if is_scene_file(expression):
        return load_scene(expression, SceneFields.VIEWS, image_dir).views

    return [View(view_id=idx, image_path=p) for idx, p in enumerate(resolve_image_expression(expression))]
