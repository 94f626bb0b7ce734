from __future__ import annotations

import io
import logging
import zipfile
from pathlib import Path, PurePosixPath
from typing import Protocol

from stereocapture.capture.engine import CaptureArtifacts, CaptureError
from stereocapture.config import ConfigError

logger = logging.getLogger(__name__)

DATA_ROOT = "Camera-Data"


class ArtifactWriteError(CaptureError):
    pass


class OutputSink(Protocol):
    def write(self, relative_path: str, data: bytes) -> None: ...


class DirectorySink:
    """Writes artifacts under a filesystem root, creating directories as needed."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def write(self, relative_path: str, data: bytes) -> None:
        path = self.root / PurePosixPath(relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


class ZipSink:
    """
    Stages artifacts into an in-memory zip archive.

    `getvalue()` returns the archive bytes, e.g. to offer as a download.
    """

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED):
        self._buf = io.BytesIO()
        self._zip = zipfile.ZipFile(self._buf, mode="w", compression=compression)
        self._closed = False

    def write(self, relative_path: str, data: bytes) -> None:
        if self._closed:
            raise ValueError("ZipSink is closed")
        self._zip.writestr(str(PurePosixPath(relative_path)), data)

    def names(self) -> list[str]:
        return self._zip.namelist()

    def close(self) -> None:
        if not self._closed:
            self._zip.close()
            self._closed = True

    def getvalue(self) -> bytes:
        self.close()
        return self._buf.getvalue()


def _check_identifier(value: str, what: str) -> str:
    value = str(value)
    if not value or value in (".", "..") or "/" in value or "\\" in value:
        raise ConfigError(f"{what} name must be a single non-empty path component, got {value!r}")
    return value


def artifact_root(scene: str, camera: str) -> str:
    return f"{DATA_ROOT}/{_check_identifier(scene, 'scene')}/{_check_identifier(camera, 'camera')}"


def write_artifacts(artifacts: CaptureArtifacts, sink: OutputSink, scene: str, camera: str) -> list[str]:
    """
    Write the nine artifacts of a capture to `sink` under Camera-Data/{scene}/{camera}/.

    Returns the relative paths written. A sink failure aborts the write and is
    re-raised as ArtifactWriteError; files written before it are left in place.
    """
    root = artifact_root(scene, camera)
    written: list[str] = []
    for name, data in artifacts.files().items():
        rel = f"{root}/{name}"
        try:
            sink.write(rel, data)
        except (OSError, zipfile.BadZipFile, ValueError) as e:
            raise ArtifactWriteError(f"failed to write {rel} ({len(written)} artifacts already written): {e}") from e
        written.append(rel)
        logger.debug("wrote %s (%d bytes)", rel, len(data))
    return written
