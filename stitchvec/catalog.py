"""Thread catalog: lazily built LAB table and nearest-thread lookup."""
import logging
import threading
from typing import List, Optional

import numpy as np

from stitchvec.catalog_data import THREADS
from stitchvec.color_space import distances_to_centers, hex_to_rgb, rgb_to_lab
from stitchvec.types import CatalogThread

logger = logging.getLogger(__name__)

_CATALOG: Optional[List[CatalogThread]] = None
_CATALOG_LAB: Optional[np.ndarray] = None
_CATALOG_LOCK = threading.Lock()


def _build_catalog():
    rgbs = np.array([hex_to_rgb(hex_str) for _, _, hex_str in THREADS], dtype=np.uint8)
    labs = rgb_to_lab(rgbs.reshape(-1, 3))

    threads = []
    seen = set()
    for (code, name, hex_str), rgb, lab in zip(THREADS, rgbs, labs):
        if code in seen:
            raise ValueError(f"Duplicate catalog code: {code}")
        seen.add(code)
        threads.append(CatalogThread(
            code=code,
            name=name,
            hex=hex_str.upper(),
            rgb=(int(rgb[0]), int(rgb[1]), int(rgb[2])),
            lab=(float(lab[0]), float(lab[1]), float(lab[2]))
        ))

    logger.debug(f"Built thread catalog with {len(threads)} entries")
    return threads, np.asarray(labs, dtype=np.float64)


def _ensure_catalog():
    global _CATALOG, _CATALOG_LAB
    if _CATALOG is not None:
        return
    with _CATALOG_LOCK:
        if _CATALOG is None:
            threads, labs = _build_catalog()
            _CATALOG_LAB = labs
            _CATALOG = threads


def get_catalog() -> List[CatalogThread]:
    """Return the catalog in its fixed order."""
    _ensure_catalog()
    return list(_CATALOG)


def catalog_lab() -> np.ndarray:
    """(N, 3) LAB coordinates in catalog order (read-only view)."""
    _ensure_catalog()
    view = _CATALOG_LAB.view()
    view.flags.writeable = False
    return view


def find_thread(code: str) -> Optional[CatalogThread]:
    """Look up a thread by code (case-insensitive)."""
    needle = code.strip().upper()
    for thread in get_catalog():
        if thread.code.upper() == needle:
            return thread
    return None


def nearest_threads(labs: np.ndarray) -> List[CatalogThread]:
    """
    Nearest catalog thread by CIEDE2000 for each LAB row.

    Equal distances resolve to the earliest catalog entry.

    Args:
        labs: (K, 3) LAB array

    Returns:
        One CatalogThread per row
    """
    _ensure_catalog()
    labs = np.asarray(labs, dtype=np.float64).reshape(-1, 3)
    if labs.shape[0] == 0:
        return []
    # (K, N): one row per query
    distances = distances_to_centers(labs, _CATALOG_LAB)
    indices = np.argmin(distances, axis=1)
    return [_CATALOG[int(i)] for i in indices]


def nearest_thread(lab) -> CatalogThread:
    return nearest_threads(np.asarray(lab, dtype=np.float64).reshape(1, 3))[0]
