"""
Ordering policies over a whole photo collection.

Loose ordering is for display and never drops a photo. Strict ordering emits
only before/after pairs and counts everything else as omitted.
"""

import logging
from typing import Dict, List, Optional

from ..analysis.similarity.clustering import SceneClusterer, explicit_key
from ..analysis.similarity.selector import sort_by_date
from ..models import PhotoRecord, StrictSequence
from .phase import phase_score

logger = logging.getLogger(__name__)


class PhotoSequencer:
    """Loose and strict ordering of analyzed photos"""

    def __init__(self, clusterer: Optional[SceneClusterer] = None,
                 use_station_keys: Optional[bool] = None):
        """
        Initialize the sequencer

        Args:
            clusterer: Scene clusterer used by the strict policy
            use_station_keys: Group by normalized station label; defaults to
                the clusterer's setting
        """
        self.clusterer = clusterer or SceneClusterer()
        if use_station_keys is None:
            use_station_keys = self.clusterer.use_station_keys
        self.use_station_keys = use_station_keys

    @classmethod
    def from_config(cls, config: Dict) -> 'PhotoSequencer':
        return cls(clusterer=SceneClusterer.from_config(config))

    def sort_loose(self, photos: List[PhotoRecord]) -> List[PhotoRecord]:
        """
        Display order: scenes by latest date, before/status/after within a scene

        Args:
            photos: Photos in input order

        Returns:
            A permutation of the input; ungrouped photos come last by date
        """
        groups: Dict[str, List[PhotoRecord]] = {}
        orphans: List[PhotoRecord] = []

        for photo in photos:
            key = explicit_key(photo, self.use_station_keys)
            if key is None:
                orphans.append(photo)
            else:
                groups.setdefault(key, []).append(photo)

        ordered_groups = [
            sorted(members, key=lambda photo: (phase_score(photo.analysis), photo.date))
            for members in groups.values()
        ]
        # Stable: groups with equal max dates keep first-appearance order
        ordered_groups.sort(key=lambda members: max(photo.date for photo in members))

        result = [photo for members in ordered_groups for photo in members]
        result.extend(sort_by_date(orphans))

        logger.debug(f"Loose order: {len(ordered_groups)} groups, {len(orphans)} orphans")
        return result

    def sort_strict_pairs(self, photos: List[PhotoRecord]) -> StrictSequence:
        """
        Pair-only order: the earliest and latest photo of every scene

        Middle members, orphans and unanalyzed photos are omitted. Pairs are
        ordered by their after photo's date and never interleaved.

        Args:
            photos: Photos in input order

        Returns:
            StrictSequence where 2 * pair_count + omitted_count == len(photos)
        """
        clustering = self.clusterer.cluster(photos)
        positions = {id(photo): index for index, photo in enumerate(photos)}

        pairs = []
        omitted = list(clustering.orphans)
        for cluster in clustering:
            members = sort_by_date(list(cluster.members))
            pairs.append((members[0], members[-1]))
            omitted.extend(members[1:-1])

        pairs.sort(key=lambda pair: pair[1].date)
        omitted.sort(key=lambda photo: positions[id(photo)])

        sequence = StrictSequence(
            photos=[photo for pair in pairs for photo in pair],
            pairs=pairs,
            omitted=omitted,
        )

        logger.info(f"Strict order: {sequence.pair_count} pairs, "
                    f"{sequence.omitted_count} omitted of {len(photos)} photos")
        return sequence


def sort_loose(photos: List[PhotoRecord]) -> List[PhotoRecord]:
    """Loose ordering with default settings"""
    return PhotoSequencer().sort_loose(photos)


def sort_strict_pairs(photos: List[PhotoRecord]) -> StrictSequence:
    """Strict ordering with default settings"""
    return PhotoSequencer().sort_strict_pairs(photos)
