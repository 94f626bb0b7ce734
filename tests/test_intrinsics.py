import numpy as np
import pytest

from stereocapture.config import CameraConfig
from stereocapture.core.intrinsics import MATRIX_FILE, SCALAR_FILES, compute_intrinsics, format_decimal


def test_full_hd_reference_values():
    cfg = CameraConfig(width=1920, height=1080, sensor_size_mm=(36.0, 24.0), focal_length_mm=50.0)
    k = compute_intrinsics(cfg)
    assert k.focal_length_x == pytest.approx(2666.667, abs=1e-2)
    assert k.focal_length_y == pytest.approx(2250.0, abs=1e-2)
    assert k.principal_point_x == pytest.approx(960.0, abs=1e-2)
    assert k.principal_point_y == pytest.approx(540.0, abs=1e-2)


@pytest.mark.parametrize(
    "w,h,sensor,f,shift",
    [
        (640, 480, (6.4, 4.8), 4.0, (0.0, 0.0)),
        (100, 50, (10.0, 7.5), 12.5, (0.1, -0.2)),
        (1, 1, (0.1, 0.1), 0.1047227, (-0.5, 0.5)),
    ],
)
def test_formulas(w, h, sensor, f, shift):
    cfg = CameraConfig(width=w, height=h, sensor_size_mm=sensor, focal_length_mm=f, lens_shift=shift)
    k = compute_intrinsics(cfg)
    assert k.focal_length_x == pytest.approx(f * w / sensor[0], rel=1e-9)
    assert k.focal_length_y == pytest.approx(f * h / sensor[1], rel=1e-9)
    assert k.principal_point_x == pytest.approx((0.5 + shift[0]) * w, rel=1e-12, abs=1e-12)
    assert k.principal_point_y == pytest.approx((0.5 + shift[1]) * h, rel=1e-12, abs=1e-12)


def test_float32_inputs_are_promoted_to_double():
    cfg = CameraConfig(width=1920, height=1080)
    k = compute_intrinsics(
        cfg,
        focal_length_mm=np.float32(50.0),
        sensor_size_mm=(np.float32(36.0), np.float32(24.0)),
        lens_shift=(np.float32(0.0), np.float32(0.0)),
    )
    assert type(k.focal_length_x) is float
    assert k.focal_length_x == 50.0 * (1920.0 / 36.0)


def test_matrix_and_text():
    cfg = CameraConfig(width=1920, height=1080, sensor_size_mm=(36.0, 24.0), focal_length_mm=50.0)
    k = compute_intrinsics(cfg)
    K = k.matrix
    assert K.dtype == np.float64
    assert np.array_equal(K[2], [0.0, 0.0, 1.0])
    assert K[0, 1] == 0.0 and K[1, 0] == 0.0

    lines = k.matrix_text().split("\n")
    assert lines == [f"{format_decimal(k.focal_length_x)} 0 960", "0 2250 540", "0 0 1"]

    texts = k.scalar_texts()
    assert tuple(texts) == SCALAR_FILES
    assert texts["Focal-Length-Y.txt"] == "2250"
    assert texts["Principal-Point-X.txt"] == "960"
    assert float(texts["Focal-Length-X.txt"]) == k.focal_length_x
    assert MATRIX_FILE == "Intrinsic-Matrix.txt"


def test_deterministic_text():
    cfg = CameraConfig(width=1280, height=720, sensor_size_mm=(23.5, 15.6), focal_length_mm=18.0, lens_shift=(0.01, 0.02))
    a = compute_intrinsics(cfg)
    b = compute_intrinsics(cfg)
    assert a == b
    assert a.matrix_text() == b.matrix_text()
    assert a.scalar_texts() == b.scalar_texts()


@pytest.mark.parametrize(
    "value,text",
    [(960.0, "960"), (0.1, "0.1"), (-1.5, "-1.5"), (2250, "2250"), (1e-05, "1e-05")],
)
def test_format_decimal(value, text):
    assert format_decimal(value) == text
    assert "," not in format_decimal(1234567.25)
