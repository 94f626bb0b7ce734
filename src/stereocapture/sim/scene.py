from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import numpy as np

from stereocapture.config import ConfigError, _number, _pair, _require
from stereocapture.core.geometry import Pose

SCENE_SCHEMA_VERSION = "stereocapture.scene.v0"

# Hits closer than this along the ray are ignored (self-intersection guard).
T_MIN = 1e-9


class SceneObject(Protocol):
    def distances(self, origins: np.ndarray, dirs: np.ndarray) -> np.ndarray:
        """Ray parameter of the closest hit per ray (N,), inf on miss. `dirs` are unit."""
        ...

    def normals(self, points: np.ndarray) -> np.ndarray: ...

    def albedo(self, points: np.ndarray) -> np.ndarray:
        """Surface colour (N,3) in [0,1]."""
        ...


def _rgb(color) -> np.ndarray:
    return np.clip(np.asarray(color, dtype=np.float64).reshape(3), 0.0, 255.0) / 255.0


def plane_basis(normal, up=(0.0, 1.0, 0.0)) -> np.ndarray:
    """
    Orthonormal basis (3,3) with columns (u, v, n) for a plane of normal `n`.
    `up` picks the in-plane v direction.
    """
    n = np.asarray(normal, dtype=np.float64)
    nn = np.linalg.norm(n)
    if nn < 1e-12:
        raise ValueError("plane normal must be non-zero")
    n = n / nn
    u = np.cross(np.asarray(up, dtype=np.float64), n)
    un = np.linalg.norm(u)
    if un < 1e-12:
        raise ValueError("plane up vector is parallel to its normal")
    u /= un
    v = np.cross(n, u)
    return np.stack([u, v, n], axis=1)


@dataclass(frozen=True, eq=False)
class PlanePatch:
    """
    Bounded rectangle with a checker texture.

    Plane local coordinates: (xp, yp) along the first two basis columns, centered
    on `center`; the patch spans [-w/2, w/2] x [-h/2, h/2].
    """

    center: np.ndarray  # (3,)
    basis: np.ndarray  # (3,3) columns u, v, normal
    size: tuple[float, float]
    square_size: float = 0.25
    colors: tuple[tuple[int, int, int], tuple[int, int, int]] = ((51, 51, 51), (230, 230, 230))

    def __post_init__(self) -> None:
        object.__setattr__(self, "center", np.asarray(self.center, dtype=np.float64).reshape(3))
        object.__setattr__(self, "basis", np.asarray(self.basis, dtype=np.float64).reshape(3, 3))
        if self.size[0] <= 0 or self.size[1] <= 0:
            raise ValueError("plane size must be > 0")
        if self.square_size <= 0:
            raise ValueError("plane square_size must be > 0")

    @property
    def normal(self) -> np.ndarray:
        return self.basis[:, 2]

    def _local(self, points: np.ndarray) -> np.ndarray:
        return (points - self.center[None, :]) @ self.basis

    def distances(self, origins: np.ndarray, dirs: np.ndarray) -> np.ndarray:
        n = self.normal
        denom = dirs @ n
        with np.errstate(divide="ignore", invalid="ignore"):
            t = ((self.center[None, :] - origins) @ n) / np.where(np.abs(denom) < 1e-12, np.nan, denom)
        X = origins + np.nan_to_num(t)[:, None] * dirs
        loc = self._local(X)
        w, h = self.size
        inside = (
            np.isfinite(t)
            & (t > T_MIN)
            & (np.abs(loc[:, 0]) <= 0.5 * w)
            & (np.abs(loc[:, 1]) <= 0.5 * h)
        )
        return np.where(inside, t, np.inf)

    def normals(self, points: np.ndarray) -> np.ndarray:
        return np.broadcast_to(self.normal, points.shape).copy()

    def albedo(self, points: np.ndarray) -> np.ndarray:
        loc = self._local(points)
        w, h = self.size
        gx = np.floor((loc[:, 0] + 0.5 * w) / self.square_size).astype(np.int64)
        gy = np.floor((loc[:, 1] + 0.5 * h) / self.square_size).astype(np.int64)
        light = ((gx + gy) & 1).astype(bool)
        dark_c, light_c = _rgb(self.colors[0]), _rgb(self.colors[1])
        return np.where(light[:, None], light_c[None, :], dark_c[None, :])


@dataclass(frozen=True, eq=False)
class Sphere:
    center: np.ndarray  # (3,)
    radius: float
    color: tuple[int, int, int] = (200, 80, 60)

    def __post_init__(self) -> None:
        object.__setattr__(self, "center", np.asarray(self.center, dtype=np.float64).reshape(3))
        if not self.radius > 0:
            raise ValueError("sphere radius must be > 0")

    def distances(self, origins: np.ndarray, dirs: np.ndarray) -> np.ndarray:
        oc = origins - self.center[None, :]
        b = np.sum(oc * dirs, axis=-1)
        c = np.sum(oc * oc, axis=-1) - self.radius * self.radius
        disc = b * b - c
        root = np.sqrt(np.maximum(disc, 0.0))
        t0 = -b - root
        t1 = -b + root
        t = np.where(t0 > T_MIN, t0, np.where(t1 > T_MIN, t1, np.inf))
        return np.where(disc >= 0.0, t, np.inf)

    def normals(self, points: np.ndarray) -> np.ndarray:
        d = points - self.center[None, :]
        return d / np.linalg.norm(d, axis=-1, keepdims=True)

    def albedo(self, points: np.ndarray) -> np.ndarray:
        return np.broadcast_to(_rgb(self.color), points.shape).copy()


@dataclass(eq=False)
class Scene:
    """
    Static geometry with closest-hit ray queries.

    Implements both the per-ray `intersect` and the vectorized `intersect_batch`.
    """

    objects: list = field(default_factory=list)
    background: tuple[int, int, int] = (30, 30, 30)
    name: str = "Scene"

    def trace(self, origins: np.ndarray, dirs: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Closest hit per ray: (t (N,), object index (N,) or -1, unit dirs (N,3)).
        """
        origins = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        dirs = np.asarray(dirs, dtype=np.float64).reshape(-1, 3)
        norms = np.linalg.norm(dirs, axis=-1, keepdims=True)
        dirs = dirs / np.where(norms > 0, norms, 1.0)

        n = dirs.shape[0]
        t_best = np.full((n,), np.inf, dtype=np.float64)
        idx = np.full((n,), -1, dtype=np.int64)
        for k, obj in enumerate(self.objects):
            t = obj.distances(origins, dirs)
            closer = t < t_best
            t_best = np.where(closer, t, t_best)
            idx = np.where(closer, k, idx)
        return t_best, idx, dirs

    def intersect_batch(self, origins: np.ndarray, dirs: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        origins = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        t, idx, unit = self.trace(origins, dirs)
        hit = idx >= 0
        points = np.zeros_like(unit)
        points[hit] = origins[hit] + t[hit, None] * unit[hit]
        return points, hit

    def intersect(self, origin: np.ndarray, direction: np.ndarray) -> np.ndarray | None:
        points, hit = self.intersect_batch(np.asarray(origin).reshape(1, 3), np.asarray(direction).reshape(1, 3))
        if not hit[0]:
            return None
        return points[0]

    def shade(self, origins: np.ndarray, dirs: np.ndarray) -> np.ndarray:
        """
        RGB (N,3) uint8: albedo times a headlight lambert term; background on miss.
        """
        origins = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        t, idx, unit = self.trace(origins, dirs)
        out = np.empty((unit.shape[0], 3), dtype=np.float64)
        out[:] = _rgb(self.background)[None, :]
        for k, obj in enumerate(self.objects):
            sel = idx == k
            if not np.any(sel):
                continue
            pts = origins[sel] + t[sel, None] * unit[sel]
            cos = np.abs(np.sum(obj.normals(pts) * unit[sel], axis=-1))
            out[sel] = obj.albedo(pts) * (0.25 + 0.75 * cos)[:, None]
        return np.clip(out * 255.0 + 0.5, 0.0, 255.0).astype(np.uint8)


def _vec3(value: Any, name: str) -> np.ndarray:
    _require(isinstance(value, (list, tuple)) and len(value) == 3, f"{name} must be [x,y,z]")
    try:
        out = np.asarray([float(v) for v in value], dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} values must be numbers") from e
    _require(bool(np.all(np.isfinite(out))), f"{name} values must be finite")
    return out


def _color(value: Any, name: str) -> tuple[int, int, int]:
    v = _vec3(value, name)
    _require(bool(np.all((v >= 0) & (v <= 255))), f"{name} components must be in [0,255]")
    return (int(v[0]), int(v[1]), int(v[2]))


def _parse_object(obj: dict[str, Any], i: int):
    _require(isinstance(obj, dict), f"objects[{i}] must be an object")
    kind = obj.get("type")
    where = f"objects[{i}]"
    if kind == "plane":
        w, h = _pair(obj.get("size"), f"{where}.size")
        _require(w > 0 and h > 0, f"{where}.size must be > 0")
        square = _number(obj.get("square_size", 0.25), f"{where}.square_size")
        _require(square > 0, f"{where}.square_size must be > 0")
        colors = obj.get("colors", [[51, 51, 51], [230, 230, 230]])
        _require(isinstance(colors, (list, tuple)) and len(colors) == 2, f"{where}.colors must be [dark, light]")
        try:
            basis = plane_basis(_vec3(obj.get("normal"), f"{where}.normal"), _vec3(obj.get("up", [0, 1, 0]), f"{where}.up"))
        except ValueError as e:
            raise ConfigError(f"{where}: {e}") from e
        return PlanePatch(
            center=_vec3(obj.get("center"), f"{where}.center"),
            basis=basis,
            size=(w, h),
            square_size=square,
            colors=(_color(colors[0], f"{where}.colors[0]"), _color(colors[1], f"{where}.colors[1]")),
        )
    if kind == "sphere":
        radius = obj.get("radius")
        _require(isinstance(radius, (int, float)) and not isinstance(radius, bool), f"{where}.radius must be a number")
        _require(math.isfinite(radius) and radius > 0, f"{where}.radius must be > 0")
        return Sphere(
            center=_vec3(obj.get("center"), f"{where}.center"),
            radius=float(radius),
            color=_color(obj.get("color", [200, 80, 60]), f"{where}.color"),
        )
    raise ConfigError(f"{where}.type unsupported: {kind!r}")


def parse_pose(data: dict[str, Any]) -> Pose:
    """
    {"position": [x,y,z], "look_at": [x,y,z], "up": [x,y,z]} or
    {"position": [x,y,z], "rotation": [[...],[...],[...]]} (columns right, down, forward).
    """
    _require(isinstance(data, dict), "pose must be an object")
    position = _vec3(data.get("position"), "pose.position")
    if "rotation" in data:
        rot = data["rotation"]
        _require(isinstance(rot, (list, tuple)) and len(rot) == 3, "pose.rotation must be a 3x3 matrix")
        rows = [_vec3(r, "pose.rotation row") for r in rot]
        R = np.stack(rows, axis=0)
        _require(bool(np.allclose(R.T @ R, np.eye(3), atol=1e-6)), "pose.rotation must be orthonormal")
        return Pose(position, R)
    target = _vec3(data.get("look_at"), "pose.look_at")
    up = _vec3(data.get("up", [0, 1, 0]), "pose.up")
    try:
        return Pose.look_at(position, target, up)
    except ValueError as e:
        raise ConfigError(f"pose: {e}") from e


def parse_scene(data: dict[str, Any]) -> tuple[Scene, Pose | None]:
    """Returns the scene and its optional `camera_pose`."""
    _require(isinstance(data, dict), "scene must be an object")
    _require(data.get("schema_version") == SCENE_SCHEMA_VERSION, f"schema_version must be {SCENE_SCHEMA_VERSION}")
    objects = data.get("objects", [])
    _require(isinstance(objects, list), "objects must be a list")
    scene = Scene(
        objects=[_parse_object(o, i) for i, o in enumerate(objects)],
        background=_color(data.get("background", [30, 30, 30]), "background"),
        name=str(data.get("name", "Scene")),
    )
    pose = parse_pose(data["camera_pose"]) if "camera_pose" in data else None
    return scene, pose


def load_scene(path: Path) -> tuple[Scene, Pose | None]:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path} is not valid JSON: {e}") from e
    return parse_scene(data)
