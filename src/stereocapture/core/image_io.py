from __future__ import annotations

import io
from pathlib import Path

import numpy as np
from PIL import Image


def _as_rgb_u8(raster: np.ndarray) -> np.ndarray:
    arr = np.asarray(raster)
    if arr.ndim != 3 or arr.shape[2] != 3:
        raise ValueError(f"expected an (H,W,3) RGB raster, got shape {arr.shape}")
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    return np.ascontiguousarray(arr)


def encode_png(raster: np.ndarray) -> bytes:
    """
    Encode an (H,W,3) RGB raster to PNG bytes.

    Row 0 of the raster is the top row of the image.
    """
    im = Image.fromarray(_as_rgb_u8(raster))
    buf = io.BytesIO()
    im.save(buf, format="PNG")
    return buf.getvalue()


def load_rgb_u8(source: str | Path | bytes) -> np.ndarray:
    """Load an image (path or encoded bytes) as an (H,W,3) uint8 array."""
    if isinstance(source, (bytes, bytearray)):
        fp = io.BytesIO(source)
    else:
        fp = Path(source)
    with Image.open(fp) as im:
        im = im.convert("RGB")
        arr = np.asarray(im, dtype=np.uint8)
    return arr
