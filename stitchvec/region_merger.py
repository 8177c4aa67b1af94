"""Global region merging toward a target region count and minimum area."""
import logging
from dataclasses import dataclass
from typing import List, Optional, Set

import numpy as np

from stitchvec.color_space import distances_to_centers
from stitchvec.components import analyze_components
from stitchvec.types import Component, FallbackReason, RegionConfig

logger = logging.getLogger(__name__)


@dataclass
class MergeOutcome:
    labels: np.ndarray
    fallback_reason: Optional[FallbackReason]
    passes: int  # passes that relabeled something


def merge_priority(component: Component):
    """Smallest, top-most, left-most components are merged first."""
    return (component.area, component.min_y, component.min_x, component.label, component.id)


def choose_merge_target(
    source: Component,
    components: List[Component],
    selected: Set[int],
    color_distance: np.ndarray,
    allow_selected: bool = False
) -> Optional[int]:
    """
    Pick the label a source component should be merged into.

    Neighbors rank by shared boundary (longest first), color distance
    between the two labels (closest first), neighbor area (largest first),
    then neighbor min_y, min_x and id.

    Args:
        source: Component to merge away
        components: All components, indexed by id
        selected: Ids of components already chosen as merge sources
        color_distance: (K, K) CIEDE2000 distances between labels
        allow_selected: Whether another source may be the destination

    Returns:
        Destination label, or None if no neighbor qualifies
    """
    options = []
    for neighbor_id, boundary in source.neighbors:
        if not allow_selected and neighbor_id in selected:
            continue
        neighbor = components[neighbor_id]
        distance = float(color_distance[source.label, neighbor.label])
        options.append((
            -boundary,
            distance,
            -neighbor.area,
            neighbor.min_y,
            neighbor.min_x,
            neighbor.id,
            neighbor.label,
        ))

    if not options:
        return None
    options.sort()
    return options[0][-1]


def _select_sources(components: List[Component], min_area: int, target: int) -> List[int]:
    candidates = sorted(components, key=merge_priority)

    selected = [c.id for c in candidates if c.area < min_area]
    selected_set = set(selected)

    extra_needed = max(len(components) - target - len(selected), 0)
    for component in candidates:
        if extra_needed == 0:
            break
        if component.id in selected_set:
            continue
        selected.append(component.id)
        selected_set.add(component.id)
        extra_needed -= 1

    return selected


def enforce_region_constraints(
    labels: np.ndarray,
    palette_lab: np.ndarray,
    config: RegionConfig
) -> MergeOutcome:
    """
    Merge components until the count reaches the target and none is too small.

    Each pass re-analyzes the grid, selects every undersized component plus
    enough of the next-smallest ones to reach the target, chooses a
    destination for each and applies all relabels at once. Passes are
    capped by config.max_merge_passes.

    Args:
        labels: (H, W) label grid, negative for empty cells
        palette_lab: (K, 3) LAB color of each label
        config: Region configuration

    Returns:
        MergeOutcome with the merged labels and any fallback reason
    """
    labels = np.array(labels, copy=True)
    flat = labels.reshape(-1)
    target = max(int(config.target_region_count), 1)
    min_area = max(int(config.min_region_area), 1)

    palette_lab = np.asarray(palette_lab, dtype=np.float64).reshape(-1, 3)
    color_distance = distances_to_centers(palette_lab, palette_lab)

    passes = 0
    for pass_index in range(int(config.max_merge_passes)):
        analysis = analyze_components(labels)
        components = analysis.components
        region_count = len(components)
        small_count = sum(1 for c in components if c.area < min_area)

        if region_count == 0:
            logger.warning("Region merge found no connected regions")
            return MergeOutcome(labels, FallbackReason.NO_CONNECTED_REGIONS, passes)

        if region_count <= target and small_count == 0:
            fallback_reason = None
            if region_count < target:
                fallback_reason = FallbackReason.TARGET_EXCEEDS_FEASIBLE
                logger.warning(
                    f"Region merge fallback: {fallback_reason.value} "
                    f"({region_count} regions, target {target})"
                )
            return MergeOutcome(labels, fallback_reason, passes)

        selected = _select_sources(components, min_area, target)
        if not selected:
            break
        selected_set = set(selected)

        relabels = []
        for source_id in selected:
            source = components[source_id]
            dest = choose_merge_target(source, components, selected_set, color_distance)
            if dest is None:
                dest = choose_merge_target(
                    source, components, selected_set, color_distance, allow_selected=True
                )
            if dest is None:
                continue
            relabels.append((source_id, dest))

        if not relabels:
            break

        for source_id, dest in relabels:
            flat[components[source_id].pixels] = dest
        passes += 1

        logger.debug(
            f"Merge pass {pass_index + 1}: {region_count} regions, "
            f"{small_count} undersized, {len(relabels)} relabeled"
        )

    analysis = analyze_components(labels)
    region_count = len(analysis.components)

    fallback_reason = None
    if region_count > target:
        fallback_reason = FallbackReason.MERGE_CONVERGENCE_LIMIT
    elif region_count < target:
        fallback_reason = FallbackReason.TARGET_EXCEEDS_FEASIBLE
    elif any(c.area < min_area for c in analysis.components):
        fallback_reason = FallbackReason.MIN_AREA_CONFLICT

    if fallback_reason is not None:
        logger.warning(
            f"Region merge fallback: {fallback_reason.value} "
            f"({region_count} regions, target {target})"
        )
    return MergeOutcome(labels, fallback_reason, passes)
