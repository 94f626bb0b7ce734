from __future__ import annotations

import numpy as np
import pytest

from stereocapture.capture.engine import Camera, CaptureArtifacts, StereoCapture
from stereocapture.config import CameraConfig
from stereocapture.core.geometry import Pose
from stereocapture.sim.render import RaycastRenderer
from stereocapture.sim.scene import PlanePatch, Scene, Sphere, plane_basis


def make_scene() -> Scene:
    # Wall at z=4 facing the camera, a sphere in front of it.
    wall = PlanePatch(
        center=np.array([0.0, 0.0, 4.0]),
        basis=plane_basis([0.0, 0.0, -1.0]),
        size=(3.0, 2.0),
        square_size=0.25,
    )
    ball = Sphere(center=np.array([0.3, 0.1, 2.5]), radius=0.4)
    return Scene(objects=[wall, ball], name="Unit")


@pytest.fixture
def small_config() -> CameraConfig:
    return CameraConfig(width=24, height=16, sensor_size_mm=(36.0, 24.0), focal_length_mm=35.0, baseline=0.2)


@pytest.fixture
def scene() -> Scene:
    return make_scene()


@pytest.fixture
def small_capture(small_config: CameraConfig, scene: Scene) -> CaptureArtifacts:
    camera = Camera(small_config, Pose.identity(), name="Cam")
    return StereoCapture(camera, scene, RaycastRenderer(scene, small_config)).run()
