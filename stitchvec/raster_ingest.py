"""Raster image ingestion into RGBA pixel buffers."""
import io
from pathlib import Path
from typing import Optional, Union

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from stitchvec.types import BufferSizeError, DecodeError, DegenerateDimensionsError

MIN_DIMENSION = 2


def decode_image(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes to an RGBA array.

    Args:
        data: Encoded image (PNG, JPEG, ...)

    Returns:
        uint8 array of shape (H, W, 4)

    Raises:
        DecodeError: If the bytes cannot be decoded
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            # Apply EXIF orientation transformation to handle rotation
            img = ImageOps.exif_transpose(img)
            rgba = img.convert('RGBA')
            return np.array(rgba, dtype=np.uint8)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeError(f"Failed to decode image: {e}")


def ingest(path: Union[str, Path]) -> np.ndarray:
    """
    Load an image file as RGBA.

    Raises:
        FileNotFoundError: If file doesn't exist
        DecodeError: If file cannot be decoded
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {path}")

    if not path.is_file():
        raise DecodeError(f"Path is not a file: {path}")

    return decode_image(path.read_bytes())


def rgba_from_buffer(buffer: bytes, width: int, height: int) -> np.ndarray:
    """
    View a raw row-major RGBA byte buffer as (H, W, 4).

    Raises:
        BufferSizeError: If the buffer length is not width * height * 4
    """
    expected = int(width) * int(height) * 4
    if len(buffer) != expected:
        raise BufferSizeError(
            f"Buffer size mismatch: expected {expected} bytes, got {len(buffer)}"
        )
    return np.frombuffer(bytes(buffer), dtype=np.uint8).reshape(int(height), int(width), 4)


def as_rgba(image: np.ndarray) -> np.ndarray:
    """
    Normalize an in-memory image array to uint8 RGBA.

    Accepts (H, W), (H, W, 3) and (H, W, 4); float arrays in [0, 1] are scaled.
    """
    image = np.asarray(image)

    if image.ndim == 2:
        # Grayscale - convert to RGB
        image = np.stack([image] * 3, axis=-1)

    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise DecodeError(f"Expected (H, W, 3|4) array, got shape {image.shape}")

    if image.dtype != np.uint8:
        if np.issubdtype(image.dtype, np.floating) and image.size and image.max() <= 1.0:
            image = image * 255.0
        image = np.clip(np.floor(image + 0.5), 0, 255).astype(np.uint8)

    if image.shape[2] == 3:
        alpha = np.full(image.shape[:2] + (1,), 255, dtype=np.uint8)
        image = np.concatenate([image, alpha], axis=2)

    return image


def check_dimensions(width: int, height: int, minimum: int = MIN_DIMENSION) -> None:
    """Raise DegenerateDimensionsError for images below minimum x minimum."""
    if width < minimum or height < minimum:
        raise DegenerateDimensionsError(
            f"Image too small ({width}x{height}). Minimum size is {minimum}x{minimum}."
        )


def normalize_mask(mask: Optional[np.ndarray], width: int, height: int) -> Optional[np.ndarray]:
    """Flatten a per-pixel mask to uint8 of length width * height (None passes through)."""
    if mask is None:
        return None
    if isinstance(mask, (bytes, bytearray, memoryview)):
        flat = np.frombuffer(bytes(mask), dtype=np.uint8)
    else:
        flat = np.asarray(mask).reshape(-1)
    if flat.size != width * height:
        raise BufferSizeError(
            f"Mask size mismatch: expected {width * height} entries, got {flat.size}"
        )
    return (flat > 0).astype(np.uint8)
