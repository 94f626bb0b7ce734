from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np

from stereocapture.capture.engine import (
    CALIBRATION_2D_FILE,
    CALIBRATION_3D_FILE,
    LEFT_IMAGE_FILE,
    RIGHT_IMAGE_FILE,
)
from stereocapture.core.image_io import load_rgb_u8
from stereocapture.core.intrinsics import MATRIX_FILE, SCALAR_FILES

ARTIFACT_FILES = (*SCALAR_FILES, MATRIX_FILE, CALIBRATION_2D_FILE, CALIBRATION_3D_FILE, LEFT_IMAGE_FILE, RIGHT_IMAGE_FILE)


@dataclass(frozen=True, eq=False)
class ArtifactSet:
    focal_length_x: float
    focal_length_y: float
    principal_point_x: float
    principal_point_y: float
    matrix: np.ndarray  # (3,3)
    pixels: np.ndarray  # (N,2) int64
    points: np.ndarray  # (N,3) float64
    image_size: tuple[int, int]  # (width, height) of Left.png


def _lines(text: str) -> list[str]:
    # Trailing newline tolerated.
    return [ln for ln in text.splitlines() if ln.strip()]


def _read_scalar(path: Path) -> float:
    lines = _lines(path.read_text(encoding="utf-8"))
    if len(lines) != 1:
        raise ValueError(f"{path} must contain a single number")
    try:
        return float(lines[0].strip())
    except ValueError as e:
        raise ValueError(f"{path} is not a decimal number: {lines[0]!r}") from e


def _read_table(path: Path, cols: int, dtype) -> np.ndarray:
    rows = []
    for i, ln in enumerate(_lines(path.read_text(encoding="utf-8"))):
        parts = ln.split(" ")
        if len(parts) != cols:
            raise ValueError(f"{path}:{i + 1} expected {cols} space-separated values, got {ln!r}")
        try:
            rows.append([dtype(p) for p in parts])
        except ValueError as e:
            raise ValueError(f"{path}:{i + 1} invalid value in {ln!r}") from e
    return np.asarray(rows, dtype=np.float64 if dtype is float else np.int64).reshape(-1, cols)


def read_artifacts(directory: Path) -> ArtifactSet:
    directory = Path(directory)
    for name in ARTIFACT_FILES:
        if not (directory / name).exists():
            raise FileNotFoundError(f"Missing {directory / name}")

    fx, fy, px, py = (_read_scalar(directory / name) for name in SCALAR_FILES)
    matrix = _read_table(directory / MATRIX_FILE, 3, float)
    if matrix.shape != (3, 3):
        raise ValueError(f"{directory / MATRIX_FILE} must have 3 rows")

    pixels = _read_table(directory / CALIBRATION_2D_FILE, 2, int)
    points = _read_table(directory / CALIBRATION_3D_FILE, 3, float)

    left = load_rgb_u8(directory / LEFT_IMAGE_FILE)
    h, w = left.shape[:2]

    return ArtifactSet(
        focal_length_x=fx,
        focal_length_y=fy,
        principal_point_x=px,
        principal_point_y=py,
        matrix=matrix,
        pixels=pixels,
        points=points,
        image_size=(int(w), int(h)),
    )


def validate_artifacts(path: Path) -> list[Path]:
    """
    Validate one capture directory, or every capture directory found below `path`.

    Returns the validated directories.
    """
    path = Path(path).resolve()
    if (path / SCALAR_FILES[0]).exists():
        dirs = [path]
    else:
        dirs = sorted(p.parent for p in path.rglob(SCALAR_FILES[0]))
    if not dirs:
        raise FileNotFoundError(f"No capture artifacts found under {path}")
    for d in dirs:
        _validate_capture_dir(d)
    return dirs


def _validate_capture_dir(directory: Path) -> None:
    a = read_artifacts(directory)

    expected = np.array(
        [[a.focal_length_x, 0.0, a.principal_point_x], [0.0, a.focal_length_y, a.principal_point_y], [0.0, 0.0, 1.0]]
    )
    if not np.array_equal(a.matrix, expected):
        raise ValueError(f"{directory / MATRIX_FILE} disagrees with the scalar intrinsic files")

    if a.pixels.shape[0] != a.points.shape[0]:
        raise ValueError(
            f"{directory}: {CALIBRATION_2D_FILE} has {a.pixels.shape[0]} lines, "
            f"{CALIBRATION_3D_FILE} has {a.points.shape[0]}"
        )

    w, h = a.image_size
    if a.pixels.size:
        if a.pixels[:, 0].min() < 0 or a.pixels[:, 0].max() >= w or a.pixels[:, 1].min() < 0 or a.pixels[:, 1].max() >= h:
            raise ValueError(f"{directory / CALIBRATION_2D_FILE} has pixels outside the {w}x{h} image")
        order = a.pixels[:, 1] * w + a.pixels[:, 0]
        if np.any(np.diff(order) <= 0):
            raise ValueError(f"{directory / CALIBRATION_2D_FILE} is not in strict raster order")
    if not np.all(np.isfinite(a.points)):
        raise ValueError(f"{directory / CALIBRATION_3D_FILE} has non-finite values")

    right = load_rgb_u8(directory / RIGHT_IMAGE_FILE)
    if (right.shape[1], right.shape[0]) != a.image_size:
        raise ValueError(f"{directory / RIGHT_IMAGE_FILE} size {right.shape[1::-1]} != Left.png size {a.image_size}")
