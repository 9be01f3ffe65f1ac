#!/usr/bin/env python3
"""
Clustering utilities to find places visited repeatedly across sessions
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import InsufficientData
from .location_utils import Coordinate, LocationUtils
from .models import DwellPoint
from .settings import HeatmapIntensity

logger = logging.getLogger(__name__)

HOT_SPOT_MIN_VISITS = 3
MOST_VISITED_RADIUS_M = 100.0
NO_DATA_LABEL = "No data yet"

# Heatmap colour bands by normalized intensity (upper bound, name, RGB)
COLOR_BANDS = (
    (0.25, 'blue', (0, 122, 255)),
    (0.5, 'purple', (175, 82, 222)),
    (0.75, 'orange', (255, 149, 0)),
    (1.0, 'red', (255, 59, 48)),
)


@dataclass(frozen=True)
class DwellCluster:
    """A group of dwells treated as the same physical place"""

    center: Coordinate
    members: Tuple[DwellPoint, ...]
    seed: DwellPoint

    @property
    def count(self) -> int:
        return len(self.members)

    @property
    def total_duration(self) -> float:
        return sum(max(member.duration, 0.0) for member in self.members)

    @property
    def display_name(self) -> Optional[str]:
        """Most frequent non-empty name among members (first seen wins ties)"""
        names = [m.display_name for m in self.members if m.display_name and m.display_name.strip()]
        if not names:
            return None
        return Counter(names).most_common(1)[0][0]


@dataclass(frozen=True)
class HeatmapPoint:
    """One translucent disc of the heatmap"""

    coordinate: Coordinate
    radius: float  # meters
    intensity: float  # normalized visit count, 0..1
    opacity: float
    color_band: str

    @property
    def color(self) -> Tuple[int, int, int]:
        for _, name, rgb in COLOR_BANDS:
            if name == self.color_band:
                return rgb
        return COLOR_BANDS[-1][2]


class DwellClusterer:
    """Group dwell points into proximity clusters"""

    @staticmethod
    def cluster(dwells: Sequence[DwellPoint], radius_m: float) -> List[DwellCluster]:
        """
        Greedy single-pass clustering.

        Dwells are visited in input order. Each unassigned dwell seeds a new
        cluster and absorbs every other unassigned dwell within `radius_m` of
        the seed (not of the growing centroid).

        Args:
            dwells: Dwell points, possibly from many sessions
            radius_m: Cluster radius in meters

        Returns:
            Clusters in creation order; an empty list for no dwells
        """
        if radius_m < 0:
            raise ValueError(f"radius_m cannot be negative, got {radius_m}")

        dwells = list(dwells)
        clusters = []
        used_indices = set()

        for i, seed in enumerate(dwells):
            if i in used_indices:
                continue

            members = []
            for j in range(i, len(dwells)):
                if j in used_indices:
                    continue
                if LocationUtils.is_within_radius(dwells[j].location, seed.location, radius_m):
                    members.append(dwells[j])
                    used_indices.add(j)

            clusters.append(DwellCluster(
                center=DwellClusterer.weighted_centroid(members),
                members=tuple(members),
                seed=seed,
            ))

        logger.debug("Clustered %d dwells into %d clusters (radius %.0fm)", len(dwells), len(clusters), radius_m)
        return clusters

    @staticmethod
    def weighted_centroid(dwells: Sequence[DwellPoint]) -> Coordinate:
        """
        Duration-weighted mean position, or the plain mean when every duration is 0
        """
        if not dwells:
            raise InsufficientData("Cannot compute the centroid of no dwells")

        weights = [max(d.duration, 0.0) for d in dwells]
        total = sum(weights)
        if total <= 0:
            weights = [1.0] * len(dwells)
            total = float(len(dwells))

        lat = sum(d.location.latitude * w for d, w in zip(dwells, weights)) / total
        lon = sum(d.location.longitude * w for d, w in zip(dwells, weights)) / total
        return Coordinate(lat, lon)

    @staticmethod
    def require_clusters(dwells: Sequence[DwellPoint], radius_m: float) -> List[DwellCluster]:
        """Same as cluster() but raises InsufficientData when there is nothing to cluster"""
        clusters = DwellClusterer.cluster(dwells, radius_m)
        if not clusters:
            raise InsufficientData("No dwells to cluster")
        return clusters

    @staticmethod
    def hot_spots(dwells: Sequence[DwellPoint], radius_m: float,
                  min_visits: int = HOT_SPOT_MIN_VISITS) -> List[DwellCluster]:
        """Clusters with at least `min_visits` members, in creation order"""
        return [c for c in DwellClusterer.cluster(dwells, radius_m) if c.count >= min_visits]

    @staticmethod
    def most_visited_place(dwells: Sequence[DwellPoint],
                           radius_m: float = MOST_VISITED_RADIUS_M) -> Tuple[int, str]:
        """
        Find the place with the most visits

        Returns:
            (visit count, display name); (0, "No data yet") without dwells
        """
        clusters = DwellClusterer.cluster(dwells, radius_m)
        if not clusters:
            return 0, NO_DATA_LABEL

        # max() keeps the first cluster on ties
        largest = max(clusters, key=lambda c: c.count)
        name = largest.display_name or f"Unnamed location ({largest.count} visits)"
        return largest.count, name


def color_band(intensity: float) -> str:
    for upper, name, _ in COLOR_BANDS:
        if intensity < upper:
            return name
    return COLOR_BANDS[-1][1]


def generate_heatmap(dwells: Iterable[DwellPoint],
                     intensity: Optional[HeatmapIntensity] = None) -> List[HeatmapPoint]:
    """
    Build heatmap discs from dwells.

    Each cluster contributes `radius_steps` concentric discs: step i (1-based)
    has radius base * i / steps and fades towards the edge. Intensity is the
    cluster's visit count relative to the busiest cluster.

    Args:
        dwells: Dwell points across sessions
        intensity: Preset; defaults to the configured one

    Returns:
        Heatmap points, empty when there are no dwells
    """
    if intensity is None:
        intensity = HeatmapIntensity.default()

    clusters = DwellClusterer.cluster(list(dwells), intensity.cluster_radius)
    if not clusters:
        return []

    max_count = max(c.count for c in clusters)
    points = []
    for cluster in clusters:
        normalized = cluster.count / max_count
        band = color_band(normalized)
        for i in range(intensity.radius_steps):
            factor = (i + 1) / intensity.radius_steps
            points.append(HeatmapPoint(
                coordinate=cluster.center,
                radius=intensity.base_radius * factor,
                intensity=normalized,
                opacity=normalized * (1 - factor * 0.7) * intensity.opacity_multiplier,
                color_band=band,
            ))

    logger.info("🔥 Heatmap: %d clusters, %d points (%s)", len(clusters), len(points), intensity.label)
    return points
