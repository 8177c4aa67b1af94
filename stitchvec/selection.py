"""Magic-wand selection over a cached perceptual workspace."""
import logging
import threading
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import numpy as np
from scipy import ndimage

from stitchvec.color_space import composite_on_white, rgb_to_lab
from stitchvec.components import FOUR_CONNECTED
from stitchvec.parallel import map_chunks
from stitchvec.raster_ingest import rgba_from_buffer
from stitchvec.types import (
    BufferSizeError,
    MagicWandParams,
    RefinementParams,
    SeedOutOfBoundsError,
    WorkspaceMissingError,
)

logger = logging.getLogger(__name__)

# Rows per LAB conversion chunk
ROW_CHUNK = 64

MAJORITY_THRESHOLD = 5

# Upper bound on island/hole/smoothing rounds before giving up on a fixed point
MAX_REFINE_ROUNDS = 32

# Cells of one class are never inside each other's 3x3 window
PARITY_CLASSES = ((0, 0), (0, 1), (1, 0), (1, 1))

# Post-process applied after every wand click
WAND_REFINEMENT = RefinementParams(min_island_area=16, hole_fill_area=16, smoothing_passes=0)


@dataclass
class SelectionWorkspace:
    workspace_id: str
    width: int
    height: int
    lab: np.ndarray  # (H, W, 3)
    gradient: np.ndarray  # (H, W)


_workspace: Optional[SelectionWorkspace] = None
_workspace_lock = threading.Lock()


def luminance_gradient(l_channel: np.ndarray) -> np.ndarray:
    """
    Gradient magnitude of the L channel from centered differences.

    Border pixels get zero.
    """
    l_channel = np.asarray(l_channel, dtype=np.float64)
    gradient = np.zeros(l_channel.shape, dtype=np.float64)
    if l_channel.shape[0] < 3 or l_channel.shape[1] < 3:
        return gradient

    dx = l_channel[1:-1, 2:] - l_channel[1:-1, :-2]
    dy = l_channel[2:, 1:-1] - l_channel[:-2, 1:-1]
    gradient[1:-1, 1:-1] = np.sqrt(dx * dx + dy * dy)
    return gradient


def init_workspace(
    rgba: Union[bytes, bytearray, np.ndarray],
    width: int,
    height: int,
    workspace_id: str,
    parallel_workers: int = -1
) -> Tuple[int, int]:
    """
    Build and install the selection workspace for an RGBA image.

    Pixels are composited on white and converted to LAB; the gradient map
    is precomputed. Replaces any previously installed workspace.

    Args:
        rgba: Row-major RGBA bytes or a (H, W, 4) uint8 array
        width: Image width
        height: Image height
        workspace_id: Identifier callers pass to magic_wand
        parallel_workers: Thread count for the LAB conversion, -1 for auto

    Returns:
        (width, height)

    Raises:
        BufferSizeError: If the buffer does not hold width * height pixels
    """
    global _workspace

    if isinstance(rgba, np.ndarray):
        if rgba.size != int(width) * int(height) * 4:
            raise BufferSizeError(
                f"Buffer size mismatch: expected {int(width) * int(height) * 4} bytes, got {rgba.size}"
            )
        pixels = rgba.astype(np.uint8, copy=False).reshape(int(height), int(width), 4)
    else:
        pixels = rgba_from_buffer(rgba, width, height)

    rgb = composite_on_white(pixels)
    rows = map_chunks(
        lambda start, stop: rgb_to_lab(rgb[start:stop]),
        int(height),
        chunk_size=ROW_CHUNK,
        parallel_workers=parallel_workers
    )
    lab = np.concatenate(rows, axis=0) if rows else np.zeros((0, int(width), 3))
    gradient = luminance_gradient(lab[..., 0])

    workspace = SelectionWorkspace(
        workspace_id=workspace_id,
        width=int(width),
        height=int(height),
        lab=lab,
        gradient=gradient
    )
    with _workspace_lock:
        _workspace = workspace

    logger.debug(f"Selection workspace {workspace_id!r} ready ({width}x{height})")
    return int(width), int(height)


def clear_workspace() -> None:
    global _workspace
    with _workspace_lock:
        _workspace = None


def _get_workspace(workspace_id: str) -> SelectionWorkspace:
    with _workspace_lock:
        workspace = _workspace
    if workspace is None or workspace.workspace_id != workspace_id:
        raise WorkspaceMissingError(f"Workspace not found or ID mismatch: {workspace_id!r}")
    return workspace


def magic_wand(
    workspace_id: str,
    params: MagicWandParams,
    refinement: RefinementParams = WAND_REFINEMENT
) -> np.ndarray:
    """
    Flood-select from a seed pixel.

    A pixel joins when its gradient is at most edge_stop and its squared
    LAB distance to the seed color is below tolerance squared; the seed
    always joins. The selection is the four-connected region of such
    pixels containing the seed, then post-processed.

    Args:
        workspace_id: Id given to init_workspace
        params: Seed and thresholds
        refinement: Post-process parameters

    Returns:
        uint8 mask of shape (H, W), 1 = selected

    Raises:
        WorkspaceMissingError: If no workspace with that id is installed
        SeedOutOfBoundsError: If the seed lies outside the image
    """
    workspace = _get_workspace(workspace_id)
    seed_x, seed_y = int(params.seed_x), int(params.seed_y)
    if not (0 <= seed_x < workspace.width and 0 <= seed_y < workspace.height):
        raise SeedOutOfBoundsError(
            f"Seed ({seed_x}, {seed_y}) outside {workspace.width}x{workspace.height} workspace"
        )

    seed_color = workspace.lab[seed_y, seed_x]
    diff = workspace.lab - seed_color
    dist_sq = np.sum(diff * diff, axis=2)
    tol_sq = float(params.tolerance) * float(params.tolerance)

    admissible = (workspace.gradient <= params.edge_stop) & (dist_sq < tol_sq)
    admissible[seed_y, seed_x] = True

    labeled, _ = ndimage.label(admissible, structure=FOUR_CONNECTED)
    mask = (labeled == labeled[seed_y, seed_x]).astype(np.uint8)

    logger.debug(f"Magic wand at ({seed_x}, {seed_y}) selected {int(mask.sum())} pixels")
    return post_process_mask(mask, refinement)


def _remove_islands(mask: np.ndarray, min_area: int) -> np.ndarray:
    labeled, count = ndimage.label(mask == 1, structure=FOUR_CONNECTED)
    if count == 0:
        return mask
    sizes = np.bincount(labeled.ravel(), minlength=count + 1)
    small = sizes < min_area
    small[0] = False
    mask = mask.copy()
    mask[small[labeled]] = 0
    return mask


def _fill_holes(mask: np.ndarray, max_area: int) -> np.ndarray:
    labeled, count = ndimage.label(mask == 0, structure=FOUR_CONNECTED)
    if count == 0:
        return mask
    sizes = np.bincount(labeled.ravel(), minlength=count + 1)

    touches_border = np.zeros(count + 1, dtype=bool)
    for edge in (labeled[0, :], labeled[-1, :], labeled[:, 0], labeled[:, -1]):
        touches_border[edge] = True

    fill = (sizes < max_area) & ~touches_border
    fill[0] = False
    mask = mask.copy()
    mask[fill[labeled]] = 1
    return mask


def _majority_smooth(mask: np.ndarray) -> np.ndarray:
    """
    Majority filter over the interior, run until no cell changes.

    Cells are updated one parity class at a time against the current mask,
    which always settles. Border cells are left alone.
    """
    height, width = mask.shape
    if height < 3 or width < 3:
        return mask
    window = np.ones((3, 3), dtype=np.int32)
    interior = np.zeros(mask.shape, dtype=bool)
    interior[1:-1, 1:-1] = True
    rows, cols = np.indices(mask.shape)
    class_cells = [
        interior & (rows % 2 == dy) & (cols % 2 == dx)
        for dy, dx in PARITY_CLASSES
    ]

    smoothed = mask.copy()
    changed = True
    while changed:
        changed = False
        for cells in class_cells:
            counts = ndimage.correlate(smoothed.astype(np.int32), window, mode='constant', cval=0)
            target = (counts >= MAJORITY_THRESHOLD).astype(np.uint8)
            flips = cells & (target != smoothed)
            if flips.any():
                smoothed[flips] = target[flips]
                changed = True
    return smoothed


def _refine_round(mask: np.ndarray, params: RefinementParams) -> np.ndarray:
    if params.min_island_area > 0:
        mask = _remove_islands(mask, params.min_island_area)
    if params.hole_fill_area > 0:
        mask = _fill_holes(mask, params.hole_fill_area)
    if params.smoothing_passes > 0:
        mask = _majority_smooth(mask)
    return mask


def post_process_mask(mask: np.ndarray, params: RefinementParams) -> np.ndarray:
    """
    Island removal, interior hole fill, then majority smoothing.

    Rounds repeat until the mask stops changing, so the result is a fixed
    point and a second call returns it unchanged. Any positive
    smoothing_passes turns smoothing on.
    """
    result = (np.asarray(mask) > 0).astype(np.uint8)
    if result.size == 0:
        return result

    for _ in range(MAX_REFINE_ROUNDS):
        refined = _refine_round(result, params)
        if np.array_equal(refined, result):
            return result
        result = refined

    logger.warning(f"Mask refinement did not settle after {MAX_REFINE_ROUNDS} rounds")
    return result


def refine(mask, width: int, height: int, params: RefinementParams) -> np.ndarray:
    """
    Post-process a selection mask.

    Args:
        mask: Row-major mask bytes or array of width * height entries
        width: Mask width
        height: Mask height
        params: Island, hole and smoothing parameters

    Returns:
        uint8 mask of shape (H, W)

    Raises:
        BufferSizeError: If the mask does not hold width * height entries
    """
    if isinstance(mask, (bytes, bytearray, memoryview)):
        flat = np.frombuffer(bytes(mask), dtype=np.uint8)
    else:
        flat = np.asarray(mask).reshape(-1)
    if flat.size != int(width) * int(height):
        raise BufferSizeError(
            f"Mask size mismatch: expected {int(width) * int(height)} entries, got {flat.size}"
        )
    return post_process_mask(flat.reshape(int(height), int(width)), params)
