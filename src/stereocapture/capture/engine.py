from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Protocol

import numpy as np

from stereocapture.config import BASELINE_EPSILON, CameraConfig
from stereocapture.core.geometry import Pose, pixel_grid, pixel_ray_directions
from stereocapture.core.image_io import encode_png
from stereocapture.core.intrinsics import MATRIX_FILE, IntrinsicParameters, compute_intrinsics, format_decimal
from stereocapture.core.viewport import FULL_VIEWPORT, Rect

logger = logging.getLogger(__name__)

CALIBRATION_2D_FILE = "Calibration-2D.txt"
CALIBRATION_3D_FILE = "Calibration-3D.txt"
LEFT_IMAGE_FILE = "Left.png"
RIGHT_IMAGE_FILE = "Right.png"

# Rays per intersect_batch call.
BATCH_RAYS = 1 << 18


class CaptureError(RuntimeError):
    pass


class CaptureConfigurationError(CaptureError):
    pass


class ViewRenderer(Protocol):
    def render_full_frame(self, pose: Pose, width: int, height: int) -> np.ndarray:
        """(H,W,3) uint8 RGB raster of the scene seen from `pose`, row 0 at the top."""
        ...


class RayIntersector(Protocol):
    def intersect(self, origin: np.ndarray, direction: np.ndarray) -> np.ndarray | None:
        """Closest world-space hit point (3,) of the ray, or None."""
        ...


ImageEncoder = Callable[[np.ndarray], bytes]


@dataclass(frozen=True)
class CorrespondencePoint:
    world_position: tuple[float, float, float]
    pixel_coordinate: tuple[int, int]


@dataclass(frozen=True, eq=False)
class CorrespondenceTable:
    """
    Index-aligned pixel -> 3D point pairs in raster order (y outer, x inner).

    `points` are expressed in the left camera's local frame.
    """

    pixels: np.ndarray  # (N,2) int64, (x,y)
    points: np.ndarray  # (N,3) float64

    def __post_init__(self) -> None:
        pixels = np.array(self.pixels, dtype=np.int64, copy=True).reshape(-1, 2)
        points = np.array(self.points, dtype=np.float64, copy=True).reshape(-1, 3)
        if pixels.shape[0] != points.shape[0]:
            raise ValueError(f"pixels/points length mismatch: {pixels.shape[0]} != {points.shape[0]}")
        pixels.setflags(write=False)
        points.setflags(write=False)
        object.__setattr__(self, "pixels", pixels)
        object.__setattr__(self, "points", points)

    @classmethod
    def empty(cls) -> CorrespondenceTable:
        return cls(np.zeros((0, 2), np.int64), np.zeros((0, 3), np.float64))

    def __len__(self) -> int:
        return int(self.pixels.shape[0])

    def __iter__(self) -> Iterator[CorrespondencePoint]:
        for (x, y), (px, py, pz) in zip(self.pixels.tolist(), self.points.tolist()):
            yield CorrespondencePoint(world_position=(px, py, pz), pixel_coordinate=(x, y))

    def pixels_text(self) -> str:
        return "\n".join(f"{x} {y}" for x, y in self.pixels.tolist())

    def points_text(self) -> str:
        return "\n".join(" ".join(format_decimal(v) for v in p) for p in self.points.tolist())


class Camera:
    """
    Mutable camera state shared with the host: configuration, pose, display
    viewport and the transient render target size. A capture mutates pose,
    viewport and target and always restores them.
    """

    def __init__(
        self,
        config: CameraConfig,
        pose: Pose | None = None,
        viewport: Rect = FULL_VIEWPORT,
        name: str = "Camera",
    ):
        self.config = config
        self.pose = pose if pose is not None else Pose.identity()
        self.viewport = viewport
        self.target: tuple[int, int] | None = None
        self.name = name
        self._capturing = False

    @property
    def capturing(self) -> bool:
        return self._capturing

    def __str__(self) -> str:
        return f'Camera "{self.name}": {self.config.width} x {self.config.height}'


@dataclass(frozen=True, eq=False)
class CaptureArtifacts:
    config: CameraConfig
    intrinsics: IntrinsicParameters
    correspondences: CorrespondenceTable
    left_image: np.ndarray  # (H,W,3) uint8
    right_image: np.ndarray  # (H,W,3) uint8
    left_png: bytes
    right_png: bytes

    def files(self) -> dict[str, bytes]:
        """The full artifact set as {file name: content}, in write order."""
        out = {name: text.encode("utf-8") for name, text in self.intrinsics.scalar_texts().items()}
        out[MATRIX_FILE] = self.intrinsics.matrix_text().encode("utf-8")
        out[CALIBRATION_2D_FILE] = self.correspondences.pixels_text().encode("utf-8")
        out[CALIBRATION_3D_FILE] = self.correspondences.points_text().encode("utf-8")
        out[LEFT_IMAGE_FILE] = self.left_png
        out[RIGHT_IMAGE_FILE] = self.right_png
        return out


def eye_offsets(baseline: float) -> tuple[float, float]:
    """
    Signed offsets along the local right axis for (left, right) eyes.

    A baseline at (or below) BASELINE_EPSILON keeps the two eyes apart by
    +/-BASELINE_EPSILON rather than halving it.
    """
    baseline = float(baseline)
    if not baseline > BASELINE_EPSILON:
        return (-BASELINE_EPSILON, BASELINE_EPSILON)
    half = baseline / 2.0
    return (-half, half)


def eye_poses(reference: Pose, baseline: float) -> tuple[Pose, Pose]:
    """
    Left and right eye poses for `reference`, offset along its local right axis.

    Far from the origin a tiny offset is lost to rounding. The step is then
    doubled until the two eye positions are distinct, so the eyes never coincide.
    """
    lo, hi = eye_offsets(baseline)
    left, right = reference.translated(lo), reference.translated(hi)
    while np.array_equal(left.position, right.position):
        lo, hi = 2.0 * lo, 2.0 * hi
        left, right = reference.translated(lo), reference.translated(hi)
    if (lo, hi) != eye_offsets(baseline):
        logger.debug("eye offset widened to %r to separate the eyes at %s", hi, reference.position)
    return left, right


def sweep_correspondences(
    intersector: RayIntersector,
    intrinsics: IntrinsicParameters,
    pose: Pose,
    width: int,
    height: int,
) -> CorrespondenceTable:
    """
    Cast one ray per pixel from `pose` and collect every hit in raster order.

    Uses `intersector.intersect_batch(origins, directions) -> (points, hit)` when
    available; the result is identical to the per-pixel scan.
    """
    xs, ys = pixel_grid(width, height)
    dirs = pixel_ray_directions(intrinsics, pose, xs, ys)
    origin = np.array(pose.position, dtype=np.float64)

    batch = getattr(intersector, "intersect_batch", None)
    if callable(batch):
        hit_mask, hit_points = _sweep_batch(batch, origin, dirs)
    else:
        hit_mask, hit_points = _sweep_single(intersector, origin, dirs)

    pixels = np.stack([xs[hit_mask], ys[hit_mask]], axis=-1)
    return CorrespondenceTable(pixels, pose.to_local(hit_points[hit_mask]))


def _sweep_single(intersector: RayIntersector, origin: np.ndarray, dirs: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    n = dirs.shape[0]
    hit_mask = np.zeros((n,), dtype=bool)
    hit_points = np.zeros((n, 3), dtype=np.float64)
    for i in range(n):
        hit = intersector.intersect(origin.copy(), dirs[i].copy())
        if hit is None:
            continue
        hit_points[i] = _as_point(hit)
        hit_mask[i] = True
    return hit_mask, hit_points


def _sweep_batch(batch, origin: np.ndarray, dirs: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    n = dirs.shape[0]
    hit_mask = np.zeros((n,), dtype=bool)
    hit_points = np.zeros((n, 3), dtype=np.float64)
    for start in range(0, n, BATCH_RAYS):
        stop = min(n, start + BATCH_RAYS)
        origins = np.broadcast_to(origin, (stop - start, 3))
        points, hit = batch(origins, dirs[start:stop])
        points = np.asarray(points, dtype=np.float64)
        hit = np.asarray(hit, dtype=bool)
        if points.shape != (stop - start, 3) or hit.shape != (stop - start,):
            raise CaptureError(
                f"intersect_batch returned shapes {points.shape}, {hit.shape} for {stop - start} rays"
            )
        hit_mask[start:stop] = hit
        hit_points[start:stop][hit] = points[hit]
    return hit_mask, hit_points


def _as_point(hit) -> np.ndarray:
    p = np.asarray(hit, dtype=np.float64).reshape(-1)
    if p.shape != (3,):
        raise CaptureError(f"intersect returned a point with shape {p.shape}, expected (3,)")
    return p


def _check_raster(raster, width: int, height: int, side: str) -> np.ndarray:
    arr = np.asarray(raster)
    if arr.shape != (height, width, 3):
        raise CaptureError(f"{side} render has shape {arr.shape}, expected {(height, width, 3)}")
    if arr.dtype != np.uint8:
        raise CaptureError(f"{side} render has dtype {arr.dtype}, expected uint8")
    out = arr.copy()
    out.setflags(write=False)
    return out


class StereoCapture:
    """
    Two-eye capture of a Camera: intrinsics, left/right renders and the left-eye
    pixel -> 3D correspondence sweep.

    Blocking and single-threaded; at most one capture per camera at a time.
    """

    def __init__(
        self,
        camera: Camera,
        intersector: RayIntersector,
        renderer: ViewRenderer,
        encoder: ImageEncoder = encode_png,
    ):
        self.camera = camera
        self.intersector = intersector
        self.renderer = renderer
        self.encoder = encoder

    def _validate(self) -> None:
        if self.camera is None:
            raise CaptureConfigurationError("no camera to capture from")
        if not isinstance(self.camera.config, CameraConfig):
            raise CaptureConfigurationError("camera has no valid CameraConfig")
        if self.renderer is None or not callable(getattr(self.renderer, "render_full_frame", None)):
            raise CaptureConfigurationError("renderer must provide render_full_frame(pose, width, height)")
        if self.intersector is None or not (
            callable(getattr(self.intersector, "intersect", None))
            or callable(getattr(self.intersector, "intersect_batch", None))
        ):
            raise CaptureConfigurationError("intersector must provide intersect(origin, direction)")
        if not callable(self.encoder):
            raise CaptureConfigurationError("encoder must be callable")
        if self.camera.capturing:
            raise CaptureError(f"{self.camera} is already capturing")

    def run(self) -> CaptureArtifacts:
        self._validate()
        cam = self.camera
        config = cam.config
        width, height = config.width, config.height
        intrinsics = compute_intrinsics(config)

        reference = cam.pose
        eyes = eye_poses(reference, config.baseline)
        viewport = cam.viewport
        target = cam.target
        rasters: list[np.ndarray] = []
        encoded: list[bytes] = []
        table = CorrespondenceTable.empty()

        logger.info("capturing %s, baseline %s", cam, format_decimal(config.baseline))
        cam._capturing = True
        try:
            for i, eye in enumerate(eyes):
                left = i == 0
                side = "left" if left else "right"

                cam.pose = eye
                cam.viewport = FULL_VIEWPORT
                cam.target = (width, height)

                raster = _check_raster(self.renderer.render_full_frame(eye, width, height), width, height, side)

                if left:
                    t0 = time.perf_counter()
                    table = sweep_correspondences(self.intersector, intrinsics, eye, width, height)
                    logger.info(
                        "left sweep: %d/%d pixels hit in %.2fs",
                        len(table),
                        width * height,
                        time.perf_counter() - t0,
                    )

                cam.target = None
                cam.viewport = viewport
                encoded.append(bytes(self.encoder(raster)))
                rasters.append(raster)
                logger.debug("%s eye rendered at %s", side, eye.position)
        finally:
            cam.pose = reference
            cam.viewport = viewport
            cam.target = target
            cam._capturing = False

        return CaptureArtifacts(
            config=config,
            intrinsics=intrinsics,
            correspondences=table,
            left_image=rasters[0],
            right_image=rasters[1],
            left_png=encoded[0],
            right_png=encoded[1],
        )


def capture(
    config: CameraConfig,
    reference_pose: Pose,
    intersector: RayIntersector,
    renderer: ViewRenderer,
    encoder: ImageEncoder = encode_png,
) -> CaptureArtifacts:
    """Capture the stereo artifact set for a camera at `reference_pose`."""
    if reference_pose is None:
        raise CaptureConfigurationError("no reference pose to capture from")
    camera = Camera(config, reference_pose)
    return StereoCapture(camera, intersector, renderer, encoder).run()
