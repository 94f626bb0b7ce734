from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from stereocapture.config import CameraConfig

SCALAR_FILES = (
    "Focal-Length-X.txt",
    "Focal-Length-Y.txt",
    "Principal-Point-X.txt",
    "Principal-Point-Y.txt",
)
MATRIX_FILE = "Intrinsic-Matrix.txt"


def format_decimal(value: float) -> str:
    """
    Locale-invariant shortest round-trip decimal.

    Integral values are written without a fractional part ("960", not "960.0").
    """
    text = repr(float(value))
    if text.endswith(".0"):
        text = text[:-2]
    return text


@dataclass(frozen=True)
class IntrinsicParameters:
    focal_length_x: float
    focal_length_y: float
    principal_point_x: float
    principal_point_y: float

    @property
    def matrix(self) -> np.ndarray:
        return np.array(
            [
                [self.focal_length_x, 0.0, self.principal_point_x],
                [0.0, self.focal_length_y, self.principal_point_y],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )

    def scalar_texts(self) -> dict[str, str]:
        values = (self.focal_length_x, self.focal_length_y, self.principal_point_x, self.principal_point_y)
        return {name: format_decimal(v) for name, v in zip(SCALAR_FILES, values)}

    def matrix_text(self) -> str:
        rows = (
            (self.focal_length_x, 0.0, self.principal_point_x),
            (0.0, self.focal_length_y, self.principal_point_y),
            (0.0, 0.0, 1.0),
        )
        return "\n".join(" ".join(format_decimal(v) for v in row) for row in rows)


def compute_intrinsics(
    config: CameraConfig,
    focal_length_mm: float | None = None,
    sensor_size_mm: tuple[float, float] | None = None,
    lens_shift: tuple[float, float] | None = None,
) -> IntrinsicParameters:
    """
    Pinhole intrinsics from physical camera parameters.

    Inputs are promoted to Python floats (double precision) before any arithmetic,
    so float32 inputs do not degrade the result. Callers are expected to pass
    already-clamped values (see CameraConfig).
    """
    f = float(config.focal_length_mm if focal_length_mm is None else focal_length_mm)
    sx, sy = (float(v) for v in (config.sensor_size_mm if sensor_size_mm is None else sensor_size_mm))
    shift_x, shift_y = (float(v) for v in (config.lens_shift if lens_shift is None else lens_shift))
    w = float(config.width)
    h = float(config.height)

    return IntrinsicParameters(
        focal_length_x=f * (w / sx),
        focal_length_y=f * (h / sy),
        principal_point_x=(0.5 + shift_x) * w,
        principal_point_y=(0.5 + shift_y) * h,
    )
