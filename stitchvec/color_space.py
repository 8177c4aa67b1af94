"""Perceptual color space helpers (CIE LAB under D65, CIEDE2000)."""
from typing import Sequence, Tuple

import numpy as np
from skimage.color import deltaE_ciede2000, lab2rgb, rgb2lab


def round_half_up(values):
    """Round to nearest integer with .5 going up (numpy rounds half to even)."""
    return np.floor(np.asarray(values, dtype=np.float64) + 0.5)


def composite_on_white(rgba: np.ndarray) -> np.ndarray:
    """
    Alpha-blend RGBA pixels onto an opaque white background.

    Blended channels are truncated, not rounded.

    Args:
        rgba: uint8 array (..., 4)

    Returns:
        uint8 array (..., 3)
    """
    rgba = np.asarray(rgba)
    alpha = rgba[..., 3:4].astype(np.float64) / 255.0
    rgb = rgba[..., :3].astype(np.float64)
    blended = rgb * alpha + 255.0 * (1.0 - alpha)
    return np.clip(np.floor(blended), 0, 255).astype(np.uint8)


def rgb_to_lab(rgb: np.ndarray) -> np.ndarray:
    """Convert 8-bit sRGB (..., 3) to LAB (..., 3) as float64."""
    rgb = np.asarray(rgb, dtype=np.float64) / 255.0
    if rgb.size == 0:
        return np.zeros(rgb.shape, dtype=np.float64)
    return rgb2lab(rgb)


def lab_to_rgb(lab: Sequence[float]) -> Tuple[int, int, int]:
    """Convert one LAB triple to clamped 8-bit sRGB."""
    arr = np.asarray(lab, dtype=np.float64).reshape(1, 1, 3)
    rgb = np.clip(lab2rgb(arr).reshape(3), 0.0, 1.0)
    r, g, b = (int(v) for v in round_half_up(rgb * 255.0))
    return (r, g, b)


def rgb_to_hex(rgb: Sequence[int]) -> str:
    r, g, b = (int(v) for v in rgb)
    return f"#{r:02X}{g:02X}{b:02X}"


def hex_to_rgb(hex_str: str) -> Tuple[int, int, int]:
    """
    Parse `#RRGGBB` (leading '#' optional).

    Raises:
        ValueError: If the string is not a six digit hex color
    """
    value = hex_str.strip().lstrip('#')
    if len(value) != 6:
        raise ValueError(f"Invalid hex color: {hex_str!r}")
    return (int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16))


def normalize_hex(hex_str: str) -> str:
    """Upper-case `#RRGGBB`; anything malformed becomes black."""
    value = hex_str.strip().lstrip('#').upper()
    return f"#{value}" if len(value) == 6 else "#000000"


def lab_to_hex(lab: Sequence[float]) -> str:
    return rgb_to_hex(lab_to_rgb(lab))


def ciede2000(lab1, lab2) -> np.ndarray:
    """CIEDE2000 difference; inputs broadcast along the leading axes."""
    return deltaE_ciede2000(
        np.asarray(lab1, dtype=np.float64),
        np.asarray(lab2, dtype=np.float64)
    )


def distances_to_centers(pixels: np.ndarray, centers: np.ndarray) -> np.ndarray:
    """
    CIEDE2000 distance from every pixel to every center.

    Args:
        pixels: (N, 3) LAB array
        centers: (K, 3) LAB array

    Returns:
        (N, K) distance matrix
    """
    pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 3)
    centers = np.asarray(centers, dtype=np.float64).reshape(-1, 3)
    out = np.empty((pixels.shape[0], centers.shape[0]), dtype=np.float64)
    for k in range(centers.shape[0]):
        out[:, k] = deltaE_ciede2000(pixels, centers[k][np.newaxis, :])
    return out
