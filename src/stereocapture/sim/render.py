from __future__ import annotations

from dataclasses import replace

import numpy as np

from stereocapture.config import CameraConfig
from stereocapture.core.geometry import Pose, pixel_grid, pixel_ray_directions
from stereocapture.core.intrinsics import compute_intrinsics
from stereocapture.sim.scene import Scene


class RaycastRenderer:
    """
    CPU ray-cast renderer for a Scene, seen through the lens of `config`.

    Casts the same per-pixel rays as the correspondence sweep, so a pixel shows
    the surface whose 3D point is recorded for it. Rendering at a resolution other
    than the config's keeps the lens and sensor and rescales the intrinsics.
    """

    def __init__(self, scene: Scene, config: CameraConfig, chunk_rows: int = 256):
        self.scene = scene
        self.config = config
        self.chunk_rows = max(1, int(chunk_rows))

    def render_full_frame(self, pose: Pose, width: int, height: int) -> np.ndarray:
        config = self.config
        if (width, height) != config.size_px:
            config = replace(config, width=width, height=height)
        intr = compute_intrinsics(config)
        w, h = config.width, config.height

        img = np.empty((h * w, 3), dtype=np.uint8)
        xs, ys = pixel_grid(w, h)
        origin = np.asarray(pose.position, dtype=np.float64)
        step = self.chunk_rows * w
        for start in range(0, h * w, step):
            stop = min(h * w, start + step)
            dirs = pixel_ray_directions(intr, pose, xs[start:stop], ys[start:stop])
            origins = np.broadcast_to(origin, dirs.shape)
            img[start:stop] = self.scene.shade(origins, dirs)
        return img.reshape(h, w, 3)
