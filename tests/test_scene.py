import json
from pathlib import Path
from types import SimpleNamespace

import pytest
from typer.testing import CliRunner

import scene
from color_checker_detection import app
from scene import (
    SceneFields,
    SceneLoadError,
    is_scene_file,
    load_scene,
    resolve_image_expression,
    resolve_input,
)


@pytest.fixture
def image_dir(tmp_path):
    d = tmp_path / "images"
    d.mkdir()
    for name in ["IMG_1.jpg", "IMG_2.jpg", "IMG_10.jpg", "IMG_A.jpg", "IMG_1.JPG.xmp", "notes.txt", "RAW_0001.DNG"]:
        (d / name).write_bytes(b"")
    return d


def _write_sfm(path: Path, views: list[dict], intrinsics: list[dict] | None = None) -> Path:
    data = {"version": ["1", "2", "0"], "views": views, "intrinsics": intrinsics or []}
    path.write_text(json.dumps(data))
    return path


def test_is_scene_file(tmp_path):
    assert is_scene_file("scene.sfm")
    assert is_scene_file("SCENE.SFM")
    assert is_scene_file("cameraInit.json")
    assert is_scene_file("scene.abc")
    assert not is_scene_file("IMG_0001.jpg")
    assert not is_scene_file(tmp_path)

    model = tmp_path / "sparse" / "0"
    model.mkdir(parents=True)
    (model / "cameras.bin").write_bytes(b"")
    assert is_scene_file(model)


def test_load_alicevision_views(tmp_path):
    sfm = _write_sfm(
        tmp_path / "cameraInit.sfm",
        [
            {"viewId": "42", "path": "/data/IMG_0002.jpg", "metadata": {}},
            {"viewId": "7", "path": "IMG_0001.CR2", "metadata": {"AliceVision:useWhiteBalance": "0"}},
        ],
        intrinsics=[{"intrinsicId": "1", "width": "4000"}],
    )

    result = load_scene(sfm)
    assert [v.view_id for v in result.views] == [7, 42]
    assert result.views[0].image_path == tmp_path / "IMG_0001.CR2"
    assert result.views[0].apply_white_balance is False
    assert result.views[1].image_path == Path("/data/IMG_0002.jpg")
    assert result.views[1].apply_white_balance is True
    assert result.intrinsics == []

    with_intrinsics = load_scene(sfm, SceneFields.VIEWS | SceneFields.INTRINSICS)
    assert with_intrinsics.intrinsics == [{"intrinsicId": "1", "width": "4000"}]


def test_load_alicevision_errors(tmp_path):
    with pytest.raises(SceneLoadError):
        load_scene(tmp_path / "missing.sfm")

    broken = tmp_path / "broken.sfm"
    broken.write_text("{not json")
    with pytest.raises(SceneLoadError):
        load_scene(broken)

    no_path = _write_sfm(tmp_path / "nopath.sfm", [{"viewId": "1"}])
    with pytest.raises(SceneLoadError):
        load_scene(no_path)


@pytest.mark.parametrize(
    "views",
    [
        [{"viewId": "abc", "path": "x.jpg"}],
        [{"viewId": "1", "path": "x.jpg", "metadata": []}],
        [{"viewId": "1", "path": None}],
        ["x.jpg"],
    ],
)
def test_load_alicevision_malformed_view(tmp_path, views):
    sfm = _write_sfm(tmp_path / "malformed.sfm", views)
    with pytest.raises(SceneLoadError, match="View #0"):
        load_scene(sfm)


def test_load_alicevision_malformed_intrinsics(tmp_path):
    sfm = tmp_path / "intrinsics.sfm"
    sfm.write_text(json.dumps({"views": [], "intrinsics": {"intrinsicId": "1"}}))
    load_scene(sfm)  # intrinsics are only parsed on request
    with pytest.raises(SceneLoadError, match="intrinsics"):
        load_scene(sfm, SceneFields.VIEWS | SceneFields.INTRINSICS)


def test_cli_reports_malformed_scene(tmp_path):
    sfm = _write_sfm(tmp_path / "malformed.sfm", [{"viewId": "abc", "path": "x.jpg"}])
    result = CliRunner().invoke(app, ["-i", str(sfm), "-o", str(tmp_path / "colors.txt")])
    assert result.exit_code == 1
    assert not isinstance(result.exception, ValueError)


def test_alembic_not_supported(tmp_path):
    abc = tmp_path / "scene.abc"
    abc.write_bytes(b"\x00")
    with pytest.raises(SceneLoadError, match="Alembic"):
        load_scene(abc)


def test_load_colmap_model(tmp_path, monkeypatch):
    model = tmp_path / "dataset" / "sparse" / "0"
    model.mkdir(parents=True)
    (model / "cameras.txt").write_text("")

    class FakeReconstruction:
        def __init__(self, path):
            assert path == str(model)
            self.images = {
                3: SimpleNamespace(name="b.jpg"),
                1: SimpleNamespace(name="a.jpg"),
            }
            self.cameras = {1: SimpleNamespace(width=640, height=480, params=[500.0, 320.0, 240.0])}

    monkeypatch.setattr(scene.pycolmap, "Reconstruction", FakeReconstruction)

    result = load_scene(model, SceneFields.VIEWS | SceneFields.INTRINSICS)
    assert [v.view_id for v in result.views] == [1, 3]
    assert result.views[0].image_path == tmp_path / "dataset" / "images" / "a.jpg"
    assert result.intrinsics == [{"intrinsicId": 1, "width": 640, "height": 480, "params": [500.0, 320.0, 240.0]}]

    custom = load_scene(model, image_dir=tmp_path / "frames")
    assert custom.views[1].image_path == tmp_path / "frames" / "b.jpg"


def test_resolve_single_file(image_dir):
    assert resolve_image_expression(image_dir / "IMG_2.jpg") == [image_dir / "IMG_2.jpg"]


def test_resolve_folder_keeps_supported_images(image_dir):
    names = [p.name for p in resolve_image_expression(image_dir)]
    assert names == sorted(["IMG_1.jpg", "IMG_10.jpg", "IMG_2.jpg", "IMG_A.jpg", "RAW_0001.DNG"])


@pytest.mark.parametrize(
    "pattern, expected",
    [
        ("IMG_#.jpg", ["IMG_1.jpg", "IMG_2.jpg"]),
        ("IMG_@.jpg", ["IMG_1.jpg", "IMG_10.jpg", "IMG_2.jpg"]),
        ("IMG_?.jpg", ["IMG_1.jpg", "IMG_2.jpg", "IMG_A.jpg"]),
        ("IMG_*", ["IMG_1.JPG.xmp", "IMG_1.jpg", "IMG_10.jpg", "IMG_2.jpg", "IMG_A.jpg"]),
        ("RAW_####.DNG", ["RAW_0001.DNG"]),
        ("nothing_*.png", []),
    ],
)
def test_resolve_wildcards(image_dir, pattern, expected):
    assert [p.name for p in resolve_image_expression(image_dir / pattern)] == expected


def test_resolve_missing_folder(tmp_path):
    assert resolve_image_expression(tmp_path / "nowhere" / "*.jpg") == []


def test_resolve_input_images(image_dir):
    views = resolve_input(str(image_dir / "IMG_#.jpg"))
    assert [(v.view_id, v.image_path.name, v.apply_white_balance) for v in views] == [
        (0, "IMG_1.jpg", True),
        (1, "IMG_2.jpg", True),
    ]


def test_resolve_input_scene(tmp_path):
    sfm = _write_sfm(tmp_path / "scene.sfm", [{"viewId": "5", "path": "/x/y.jpg"}])
    views = resolve_input(str(sfm))
    assert [v.view_id for v in views] == [5]
