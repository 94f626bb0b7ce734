from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CAMERA_SCHEMA_VERSION = "stereocapture.camera.v0"

MIN_SENSOR_SIZE_MM = 0.1
MIN_FOCAL_LENGTH_MM = 0.1047227
# Smallest baseline accepted; a non-positive baseline is replaced by this value.
BASELINE_EPSILON = 2.220446049250313e-16


class ConfigError(ValueError):
    pass


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigError(msg)


@dataclass(frozen=True)
class CameraConfig:
    """
    Per-capture snapshot of a physical pinhole camera and its stereo baseline.

    Out-of-range values are clamped on construction (and therefore on
    `dataclasses.replace`) instead of being rejected:
      width, height >= 1
      sensor_size_mm >= 0.1 on each axis
      focal_length_mm >= MIN_FOCAL_LENGTH_MM
      lens_shift finite (NaN or infinite components -> 0)
      baseline > 0 (non-positive -> BASELINE_EPSILON)
    """

    width: int = 1920
    height: int = 1080
    sensor_size_mm: tuple[float, float] = (36.0, 24.0)
    focal_length_mm: float = 50.0
    lens_shift: tuple[float, float] = (0.0, 0.0)
    baseline: float = 0.25

    def __post_init__(self) -> None:
        width = max(1, int(self.width))
        height = max(1, int(self.height))
        sx, sy = (float(v) for v in self.sensor_size_mm)
        sensor = (max(MIN_SENSOR_SIZE_MM, sx), max(MIN_SENSOR_SIZE_MM, sy))
        focal = max(MIN_FOCAL_LENGTH_MM, float(self.focal_length_mm))
        shift = tuple(v if math.isfinite(v) else 0.0 for v in (float(self.lens_shift[0]), float(self.lens_shift[1])))
        baseline = float(self.baseline)
        if not baseline > BASELINE_EPSILON:
            baseline = BASELINE_EPSILON

        if (width, height) != (self.width, self.height):
            logger.debug("clamped resolution %sx%s -> %dx%d", self.width, self.height, width, height)
        if sensor != tuple(self.sensor_size_mm):
            logger.debug("clamped sensor size %s -> %s", self.sensor_size_mm, sensor)
        if focal != self.focal_length_mm:
            logger.debug("clamped focal length %s -> %s", self.focal_length_mm, focal)
        if shift != tuple(self.lens_shift):
            logger.debug("non-finite lens shift %s -> %s", self.lens_shift, shift)
        if baseline != self.baseline:
            logger.debug("clamped baseline %s -> %s", self.baseline, baseline)

        object.__setattr__(self, "width", width)
        object.__setattr__(self, "height", height)
        object.__setattr__(self, "sensor_size_mm", sensor)
        object.__setattr__(self, "focal_length_mm", focal)
        object.__setattr__(self, "lens_shift", shift)
        object.__setattr__(self, "baseline", baseline)

    @property
    def size_px(self) -> tuple[int, int]:
        return (self.width, self.height)

    @property
    def aspect(self) -> float:
        return self.width / self.height


def _pair(value: Any, name: str) -> tuple[float, float]:
    _require(isinstance(value, (list, tuple)) and len(value) == 2, f"{name} must be [x,y]")
    try:
        x, y = float(value[0]), float(value[1])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} values must be numbers") from e
    _require(math.isfinite(x) and math.isfinite(y), f"{name} values must be finite")
    return x, y


def _number(value: Any, name: str) -> float:
    _require(value is not None, f"{name} is required")
    _require(not isinstance(value, bool), f"{name} must be a number")
    try:
        out = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number") from e
    _require(math.isfinite(out), f"{name} must be finite")
    return out


def parse_camera_config(data: dict[str, Any]) -> CameraConfig:
    _require(isinstance(data, dict), "camera config must be an object")
    schema_version = data.get("schema_version")
    _require(schema_version == CAMERA_SCHEMA_VERSION, f"schema_version must be {CAMERA_SCHEMA_VERSION}")

    image = data.get("image", {})
    lens = data.get("lens", {})
    stereo = data.get("stereo", {})
    _require(isinstance(image, dict), "image must be an object")
    _require(isinstance(lens, dict), "lens must be an object")
    _require(isinstance(stereo, dict), "stereo must be an object")

    w = _number(image.get("width_px"), "image.width_px")
    h = _number(image.get("height_px"), "image.height_px")
    _require(w == int(w) and h == int(h), "image.width_px and image.height_px must be integers")

    sensor = _pair(lens.get("sensor_size_mm"), "lens.sensor_size_mm")
    focal = _number(lens.get("focal_length_mm"), "lens.focal_length_mm")
    shift = _pair(lens.get("lens_shift", [0.0, 0.0]), "lens.lens_shift")
    baseline = _number(stereo.get("baseline", CameraConfig.baseline), "stereo.baseline")

    return CameraConfig(
        width=int(w),
        height=int(h),
        sensor_size_mm=sensor,
        focal_length_mm=focal,
        lens_shift=shift,
        baseline=baseline,
    )


def load_camera_config(path: Path) -> CameraConfig:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path} is not valid JSON: {e}") from e
    return parse_camera_config(data)


def camera_config_to_dict(config: CameraConfig) -> dict[str, Any]:
    return {
        "schema_version": CAMERA_SCHEMA_VERSION,
        "image": {"width_px": config.width, "height_px": config.height},
        "lens": {
            "sensor_size_mm": list(config.sensor_size_mm),
            "focal_length_mm": config.focal_length_mm,
            "lens_shift": list(config.lens_shift),
        },
        "stereo": {"baseline": config.baseline},
    }
