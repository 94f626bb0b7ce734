from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from stereocapture.core.intrinsics import IntrinsicParameters


def _frozen(a: np.ndarray, shape: tuple[int, ...], name: str) -> np.ndarray:
    out = np.array(a, dtype=np.float64, copy=True)
    if out.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {out.shape}")
    if not np.all(np.isfinite(out)):
        raise ValueError(f"{name} has non-finite values")
    out.setflags(write=False)
    return out


@dataclass(frozen=True, eq=False)
class Pose:
    """
    Rigid camera pose in world space.

    Convention: the columns of `rotation` are the camera's local axes in world
    coordinates, x right, y down, z forward (viewing direction). A point in the
    camera frame maps to world as X_w = rotation @ X_c + position.
    """

    position: np.ndarray  # (3,)
    rotation: np.ndarray  # (3,3)

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", _frozen(self.position, (3,), "position"))
        object.__setattr__(self, "rotation", _frozen(self.rotation, (3, 3), "rotation"))

    @classmethod
    def identity(cls) -> Pose:
        return cls(np.zeros(3), np.eye(3))

    @classmethod
    def look_at(cls, position, target, up=(0.0, 1.0, 0.0)) -> Pose:
        """
        Camera at `position` looking at `target`; `up` is the world up vector.
        """
        position = np.asarray(position, dtype=np.float64)
        forward = np.asarray(target, dtype=np.float64) - position
        norm = np.linalg.norm(forward)
        if norm < 1e-12:
            raise ValueError("look_at target coincides with position")
        forward /= norm
        right = np.cross(forward, np.asarray(up, dtype=np.float64))
        rn = np.linalg.norm(right)
        if rn < 1e-12:
            raise ValueError("look_at up vector is parallel to the viewing direction")
        right /= rn
        down = np.cross(forward, right)
        return cls(position, np.stack([right, down, forward], axis=1))

    @property
    def right(self) -> np.ndarray:
        return self.rotation[:, 0]

    @property
    def down(self) -> np.ndarray:
        return self.rotation[:, 1]

    @property
    def forward(self) -> np.ndarray:
        return self.rotation[:, 2]

    def translated(self, offset_along_right: float) -> Pose:
        """Same orientation, position moved along the local right axis."""
        return Pose(self.position + float(offset_along_right) * self.right, self.rotation)

    def to_local(self, points_world: np.ndarray) -> np.ndarray:
        p = np.asarray(points_world, dtype=np.float64)
        return (p - self.position) @ self.rotation

    def to_world(self, points_local: np.ndarray) -> np.ndarray:
        p = np.asarray(points_local, dtype=np.float64)
        return p @ self.rotation.T + self.position

    def same_as(self, other: Pose) -> bool:
        return bool(np.array_equal(self.position, other.position) and np.array_equal(self.rotation, other.rotation))


def pixel_grid(width: int, height: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Integer pixel coordinates (xs, ys) flattened in raster order (y outer, x inner).
    """
    yy, xx = np.meshgrid(np.arange(height), np.arange(width), indexing="ij")
    return xx.reshape(-1), yy.reshape(-1)


def camera_ray_directions(intrinsics: IntrinsicParameters, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    """
    Unit ray directions in the camera frame through pixel sample points.

    The sample point of pixel (x,y) is the image coordinate (x,y) itself, origin
    top-left, y down. Hence a hit point X_c projects back with K exactly onto (x,y).
    """
    x = (np.asarray(xs, dtype=np.float64) - intrinsics.principal_point_x) / intrinsics.focal_length_x
    y = (np.asarray(ys, dtype=np.float64) - intrinsics.principal_point_y) / intrinsics.focal_length_y
    dirs = np.stack([x, y, np.ones_like(x)], axis=-1)
    norms = np.linalg.norm(dirs, axis=-1, keepdims=True)
    return dirs / norms


def pixel_ray_directions(
    intrinsics: IntrinsicParameters, pose: Pose, xs: np.ndarray, ys: np.ndarray
) -> np.ndarray:
    """World-space unit ray directions (N,3) for the given pixels seen from `pose`."""
    return camera_ray_directions(intrinsics, xs, ys) @ pose.rotation.T


def project_points(intrinsics: IntrinsicParameters, points_cam: np.ndarray) -> np.ndarray:
    """Pinhole projection of camera-frame points (N,3) -> pixel coordinates (N,2)."""
    p = np.asarray(points_cam, dtype=np.float64).reshape(-1, 3)
    z = p[:, 2]
    u = intrinsics.focal_length_x * p[:, 0] / z + intrinsics.principal_point_x
    v = intrinsics.focal_length_y * p[:, 1] / z + intrinsics.principal_point_y
    return np.stack([u, v], axis=-1)
