from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from stereocapture.config import CameraConfig, ConfigError
from stereocapture.core.geometry import Pose
from stereocapture.sim.render import RaycastRenderer
from stereocapture.sim.scene import PlanePatch, Scene, Sphere, load_scene, parse_pose, parse_scene, plane_basis

EXAMPLE_SCENE = Path(__file__).resolve().parents[1] / "examples_data" / "scene.json"


def test_sphere_closest_hit():
    s = Scene(objects=[Sphere(center=np.zeros(3), radius=1.0)])
    p = s.intersect(np.array([0.0, 0.0, -5.0]), np.array([0.0, 0.0, 2.0]))
    assert np.allclose(p, [0.0, 0.0, -1.0])
    assert s.intersect(np.array([0.0, 3.0, -5.0]), np.array([0.0, 0.0, 1.0])) is None
    # Rays pointing away do not hit.
    assert s.intersect(np.array([0.0, 0.0, -5.0]), np.array([0.0, 0.0, -1.0])) is None


def test_plane_patch_is_bounded():
    wall = PlanePatch(center=np.array([0.0, 0.0, 2.0]), basis=plane_basis([0.0, 0.0, -1.0]), size=(1.0, 1.0))
    s = Scene(objects=[wall])
    assert np.allclose(s.intersect(np.zeros(3), np.array([0.0, 0.0, 1.0])), [0.0, 0.0, 2.0])
    assert s.intersect(np.array([0.6, 0.0, 0.0]), np.array([0.0, 0.0, 1.0])) is None
    # Parallel ray.
    assert s.intersect(np.zeros(3), np.array([1.0, 0.0, 0.0])) is None


def test_closest_object_wins():
    wall = PlanePatch(center=np.array([0.0, 0.0, 5.0]), basis=plane_basis([0.0, 0.0, -1.0]), size=(10.0, 10.0))
    ball = Sphere(center=np.array([0.0, 0.0, 3.0]), radius=0.5)
    s = Scene(objects=[wall, ball])
    assert np.allclose(s.intersect(np.zeros(3), np.array([0.0, 0.0, 1.0])), [0.0, 0.0, 2.5])


def test_batch_matches_single():
    s, _ = load_scene(EXAMPLE_SCENE)
    rng = np.random.default_rng(1)
    origins = np.tile([0.0, 1.0, -4.0], (200, 1))
    dirs = rng.normal(size=(200, 3)) * [0.4, 0.4, 1.0] + [0.0, 0.0, 1.0]
    points, hit = s.intersect_batch(origins, dirs)
    assert hit.any() and not hit.all()
    for i in range(200):
        single = s.intersect(origins[i], dirs[i])
        assert (single is not None) == bool(hit[i])
        if single is not None:
            assert np.allclose(single, points[i])


def test_parse_example_scene():
    scene, pose = load_scene(EXAMPLE_SCENE)
    assert scene.name == "Checkerboard"
    assert len(scene.objects) == 3
    assert np.allclose(pose.forward, [0.0, 0.0, 1.0])


def test_parse_scene_errors():
    base = {"schema_version": "stereocapture.scene.v0", "objects": []}
    parse_scene(base)
    with pytest.raises(ConfigError):
        parse_scene({**base, "schema_version": "x"})
    with pytest.raises(ConfigError):
        parse_scene({**base, "objects": [{"type": "cone"}]})
    with pytest.raises(ConfigError):
        parse_scene({**base, "objects": [{"type": "sphere", "center": [0, 0, 0], "radius": -1}]})
    with pytest.raises(ConfigError):
        parse_scene(
            {**base, "objects": [{"type": "plane", "center": [0, 0, 0], "normal": [0, 1, 0], "size": [1, 1]}]}
        )


@pytest.mark.parametrize(
    "fields",
    [
        {"square_size": None},
        {"square_size": "wide"},
        {"square_size": float("nan")},
        {"size": ["a", 1]},
        {"size": [None, 1]},
        {"size": [1, float("inf")]},
        {"size": 2.0},
    ],
)
def test_parse_plane_rejects_bad_numbers(fields):
    plane = {"type": "plane", "center": [0, 0, 5], "normal": [0, 0, -1], "size": [2, 2], **fields}
    with pytest.raises(ConfigError, match=r"objects\[0\]\.(size|square_size)"):
        parse_scene({"schema_version": "stereocapture.scene.v0", "objects": [plane]})


def test_parse_pose_forms():
    p = parse_pose({"position": [1, 2, 3], "look_at": [1, 2, 4]})
    assert np.allclose(p.forward, [0.0, 0.0, 1.0])
    q = parse_pose({"position": [1, 2, 3], "rotation": p.rotation.tolist()})
    assert q.same_as(p)
    with pytest.raises(ConfigError):
        parse_pose({"position": [0, 0, 0], "rotation": [[2, 0, 0], [0, 1, 0], [0, 0, 1]]})
    with pytest.raises(ConfigError):
        parse_pose({"position": [0, 0, 0], "look_at": [0, 0, 0]})


def test_renderer_output(tmp_path: Path):
    scene, pose = load_scene(EXAMPLE_SCENE)
    cfg = CameraConfig(width=32, height=18, focal_length_mm=35.0)
    img = RaycastRenderer(scene, cfg, chunk_rows=5).render_full_frame(pose, 32, 18)
    assert img.shape == (18, 32, 3)
    assert img.dtype == np.uint8
    same = RaycastRenderer(scene, cfg).render_full_frame(pose, 32, 18)
    assert np.array_equal(img, same)

    small = RaycastRenderer(scene, cfg).render_full_frame(pose, 16, 9)
    assert small.shape == (9, 16, 3)


def test_empty_scene_renders_background():
    scene = Scene(objects=[], background=(1, 2, 3))
    img = RaycastRenderer(scene, CameraConfig(width=4, height=2)).render_full_frame(Pose.identity(), 4, 2)
    assert np.all(img == np.array([1, 2, 3], dtype=np.uint8))
