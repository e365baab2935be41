"""Pixel layout conversion to 32-bit RGBA."""

import logging

import numpy as np

from models.engine_types import PixelFormat, RasterBuffer
from utils.validation import UnsupportedPixelFormat

logger = logging.getLogger(__name__)


def cmyk_to_rgba(cmyk: np.ndarray) -> np.ndarray:
    """Naive CMYK -> RGB with opaque alpha.

    Each channel is normalized to [0, 1] and
    R = 255 * (1 - C) * (1 - K), likewise G from M and B from Y.

    Args:
        cmyk: uint8 array of shape (..., 4)

    Returns:
        uint8 array of shape (..., 4)
    """
    normalized = cmyk.astype(np.float32) / 255.0
    c, m, y, k = (normalized[..., i] for i in range(4))
    white = 1.0 - k

    rgba = np.empty(cmyk.shape, dtype=np.uint8)
    rgba[..., 0] = np.clip(np.rint(255.0 * (1.0 - c) * white), 0, 255)
    rgba[..., 1] = np.clip(np.rint(255.0 * (1.0 - m) * white), 0, 255)
    rgba[..., 2] = np.clip(np.rint(255.0 * (1.0 - y) * white), 0, 255)
    rgba[..., 3] = 255
    return rgba


def rgb_to_rgba(rgb: np.ndarray) -> np.ndarray:
    rgba = np.empty(rgb.shape[:-1] + (4,), dtype=np.uint8)
    rgba[..., :3] = rgb
    rgba[..., 3] = 255
    return rgba


def to_rgba(buffer: RasterBuffer) -> RasterBuffer:
    """Convert any supported buffer to RGBA.

    The layout is decided by bytes per pixel: 4 with a CMYK tag is
    converted from CMYK, 3 is RGB, any other 4 is taken as RGBA.
    The source buffer is left untouched; releasing it is the caller's job.

    Raises:
        UnsupportedPixelFormat: bytes per pixel is not 3 or 4
    """
    pixel_count = buffer.width * buffer.height
    data = buffer.pixels
    if pixel_count == 0 or len(data) % pixel_count:
        raise UnsupportedPixelFormat(
            f"{len(data)} bytes do not divide into {buffer.width}x{buffer.height} pixels"
        )

    bytes_per_pixel = len(data) // pixel_count
    pixels = np.frombuffer(data, dtype=np.uint8).reshape(buffer.height, buffer.width, bytes_per_pixel)

    if bytes_per_pixel == 4 and buffer.pixel_format is PixelFormat.CMYK:
        rgba = cmyk_to_rgba(pixels)
    elif bytes_per_pixel == 3:
        rgba = rgb_to_rgba(pixels)
    elif bytes_per_pixel == 4:
        rgba = pixels
    else:
        raise UnsupportedPixelFormat(f"No conversion for {bytes_per_pixel} bytes per pixel")

    return RasterBuffer(buffer.width, buffer.height, PixelFormat.RGBA, rgba.tobytes())
