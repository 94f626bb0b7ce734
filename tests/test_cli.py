from __future__ import annotations

import io
import json
import zipfile
from pathlib import Path

import pytest

from stereocapture.cli.main import main

EXAMPLES = Path(__file__).resolve().parents[1] / "examples_data"


def _small_camera(tmp_path: Path) -> Path:
    doc = json.loads((EXAMPLES / "camera.json").read_text(encoding="utf-8"))
    doc["image"] = {"width_px": 32, "height_px": 18}
    p = tmp_path / "camera.json"
    p.write_text(json.dumps(doc), encoding="utf-8")
    return p


@pytest.mark.integration
def test_capture_then_validate(tmp_path: Path, capsys) -> None:
    camera = _small_camera(tmp_path)
    out = tmp_path / "out"
    rc = main(["capture", "--camera", str(camera), "--scene", str(EXAMPLES / "scene.json"), "--out", str(out)])
    assert rc == 0
    root = out / "Camera-Data" / "Checkerboard" / "Camera"
    assert (root / "Left.png").exists()
    assert "correspondences" in capsys.readouterr().out

    assert main(["validate-output", str(out)]) == 0
    assert f"OK {root.resolve()}" in capsys.readouterr().out


@pytest.mark.integration
def test_capture_to_zip(tmp_path: Path) -> None:
    camera = _small_camera(tmp_path)
    archive = tmp_path / "capture.zip"
    rc = main(
        [
            "capture",
            "--camera",
            str(camera),
            "--scene",
            str(EXAMPLES / "scene.json"),
            "--zip",
            str(archive),
            "--scene-name",
            "Lab",
            "--camera-name",
            "Rig",
        ]
    )
    assert rc == 0
    with zipfile.ZipFile(io.BytesIO(archive.read_bytes())) as zf:
        names = zf.namelist()
    assert len(names) == 9
    assert all(n.startswith("Camera-Data/Lab/Rig/") for n in names)


def test_intrinsics_command(tmp_path: Path, capsys) -> None:
    camera = tmp_path / "camera.json"
    camera.write_text(
        json.dumps(
            {
                "schema_version": "stereocapture.camera.v0",
                "image": {"width_px": 1920, "height_px": 1080},
                "lens": {"sensor_size_mm": [36, 24], "focal_length_mm": 50},
            }
        ),
        encoding="utf-8",
    )
    assert main(["intrinsics", "--camera", str(camera)]) == 0
    out = capsys.readouterr().out
    assert "Focal-Length-Y.txt: 2250" in out
    assert "0 2250 540" in out

    assert main(["intrinsics", "--camera", str(camera), "--json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["intrinsics"]["cx"] == 960.0


def test_bad_config_reports_error(tmp_path: Path, capsys) -> None:
    camera = tmp_path / "camera.json"
    camera.write_text(json.dumps({"schema_version": "nope"}), encoding="utf-8")
    assert main(["intrinsics", "--camera", str(camera)]) == 2
    assert "error:" in capsys.readouterr().err


def test_capture_rejects_out_and_zip_together(tmp_path: Path, capsys) -> None:
    camera = _small_camera(tmp_path)
    argv = ["capture", "--camera", str(camera), "--scene", str(EXAMPLES / "scene.json")]
    with pytest.raises(SystemExit) as exc:
        main([*argv, "--out", str(tmp_path / "out"), "--zip", str(tmp_path / "capture.zip")])
    assert exc.value.code == 2
    assert "not allowed with argument" in capsys.readouterr().err
    assert not (tmp_path / "out").exists()
    assert not (tmp_path / "capture.zip").exists()


@pytest.mark.integration
def test_capture_defaults_to_current_directory(tmp_path: Path, monkeypatch) -> None:
    camera = _small_camera(tmp_path)
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    assert main(["capture", "--camera", str(camera), "--scene", str(EXAMPLES / "scene.json")]) == 0
    assert (work / "Camera-Data" / "Checkerboard" / "Camera" / "Left.png").exists()
