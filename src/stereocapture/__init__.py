from stereocapture.capture.engine import (
    Camera,
    CaptureArtifacts,
    CaptureConfigurationError,
    CaptureError,
    CorrespondencePoint,
    CorrespondenceTable,
    StereoCapture,
    capture,
)
from stereocapture.config import CameraConfig, ConfigError, load_camera_config, parse_camera_config
from stereocapture.core.geometry import Pose
from stereocapture.core.intrinsics import IntrinsicParameters, compute_intrinsics
from stereocapture.output.sinks import ArtifactWriteError, DirectorySink, ZipSink, write_artifacts

__all__ = [
    "ArtifactWriteError",
    "Camera",
    "CameraConfig",
    "CaptureArtifacts",
    "CaptureConfigurationError",
    "CaptureError",
    "ConfigError",
    "CorrespondencePoint",
    "CorrespondenceTable",
    "DirectorySink",
    "IntrinsicParameters",
    "Pose",
    "StereoCapture",
    "ZipSink",
    "capture",
    "compute_intrinsics",
    "load_camera_config",
    "parse_camera_config",
    "write_artifacts",
]
