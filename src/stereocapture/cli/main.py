from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from stereocapture.capture.engine import Camera, CaptureError, StereoCapture
from stereocapture.config import camera_config_to_dict, load_camera_config
from stereocapture.core.geometry import Pose
from stereocapture.core.intrinsics import MATRIX_FILE, compute_intrinsics
from stereocapture.output.sinks import DirectorySink, ZipSink, write_artifacts
from stereocapture.output.validate import validate_artifacts
from stereocapture.sim.render import RaycastRenderer
from stereocapture.sim.scene import load_scene, parse_pose


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _run_capture(args: argparse.Namespace) -> int:
    config = load_camera_config(args.camera)
    scene, scene_pose = load_scene(args.scene)
    if args.pose_json is not None:
        pose = parse_pose(json.loads(args.pose_json.read_text(encoding="utf-8")))
    elif scene_pose is not None:
        pose = scene_pose
    else:
        pose = Pose.identity()

    scene_name = args.scene_name or scene.name
    camera = Camera(config, pose, name=args.camera_name)
    artifacts = StereoCapture(camera, scene, RaycastRenderer(scene, config)).run()

    if args.zip is not None:
        sink = ZipSink()
        write_artifacts(artifacts, sink, scene_name, camera.name)
        args.zip.parent.mkdir(parents=True, exist_ok=True)
        args.zip.write_bytes(sink.getvalue())
        print(f"Wrote {args.zip}")
    else:
        out = args.out if args.out is not None else Path(".")
        sink = DirectorySink(out)
        written = write_artifacts(artifacts, sink, scene_name, camera.name)
        print(f"Wrote {len(written)} files to {out / Path(written[0]).parent}")
    print(f"{len(artifacts.correspondences)} correspondences")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="stereocapture")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v for info, -vv for debug logging.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    cap = sub.add_parser("capture", help="Render a stereo pair and export calibration correspondences.")
    cap.add_argument("--camera", type=Path, required=True, help="Camera config JSON (stereocapture.camera.v0).")
    cap.add_argument("--scene", type=Path, required=True, help="Scene JSON (stereocapture.scene.v0).")
    dest = cap.add_mutually_exclusive_group()
    dest.add_argument("--out", type=Path, default=None, help="Directory that receives Camera-Data/ (default: cwd).")
    dest.add_argument("--zip", type=Path, default=None, help="Write a zip archive instead of a directory tree.")
    cap.add_argument("--scene-name", type=str, default=None, help="Scene identifier (defaults to the scene's name).")
    cap.add_argument("--camera-name", type=str, default="Camera", help="Camera identifier.")
    cap.add_argument("--pose-json", type=Path, default=None, help="Reference pose JSON, overrides camera_pose.")

    val = sub.add_parser("validate-output", help="Validate exported calibration artifacts.")
    val.add_argument("path", type=Path)

    intr = sub.add_parser("intrinsics", help="Print the intrinsic parameters of a camera config.")
    intr.add_argument("--camera", type=Path, required=True)
    intr.add_argument("--json", action="store_true", help="Print JSON (config + intrinsics).")

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        if args.cmd == "capture":
            return _run_capture(args)

        if args.cmd == "validate-output":
            dirs = validate_artifacts(args.path)
            for d in dirs:
                print(f"OK {d}")
            return 0

        if args.cmd == "intrinsics":
            config = load_camera_config(args.camera)
            intrinsics = compute_intrinsics(config)
            if args.json:
                out = {
                    "camera": camera_config_to_dict(config),
                    "intrinsics": {
                        "fx": intrinsics.focal_length_x,
                        "fy": intrinsics.focal_length_y,
                        "cx": intrinsics.principal_point_x,
                        "cy": intrinsics.principal_point_y,
                        "K": intrinsics.matrix.tolist(),
                    },
                }
                print(json.dumps(out, indent=2))
            else:
                for name, text in intrinsics.scalar_texts().items():
                    print(f"{name}: {text}")
                print(f"{MATRIX_FILE}:")
                print(intrinsics.matrix_text())
            return 0
    except (ValueError, CaptureError, FileNotFoundError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    raise AssertionError(f"Unhandled cmd: {args.cmd}")


if __name__ == "__main__":
    raise SystemExit(main())
