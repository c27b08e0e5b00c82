"""
Scene clustering: group photos taken at the same physical location
"""

import re
import unicodedata
from typing import Dict, List, Optional, Tuple
import logging

from ...models import Cluster, ClusteringResult, PhotoRecord
from .detector import SimilarityDetector

logger = logging.getLogger(__name__)

STATION_KEY_PREFIX = "station:"
SCENE_KEY_FORMAT = "scene-{:03d}"

_WHITESPACE = re.compile(r'\s+')
_STATION_PREFIX = re.compile(r'^(NO|STA)(?:\s*\.\s*|\s+|(?=\d))')


def normalize_station(station: Optional[str]) -> str:
    """
    Canonical form of a station label

    Full-width characters are folded to half-width, whitespace is collapsed,
    the label is uppercased and "No"/"Sta" prefixes are written as "NO." / "STA.".
    """
    if not station:
        return ""
    text = unicodedata.normalize('NFKC', station)
    text = _WHITESPACE.sub(' ', text).strip().upper()
    return _STATION_PREFIX.sub(lambda m: f"{m.group(1)}.", text)


def explicit_key(photo: PhotoRecord, use_station_keys: bool = True) -> Optional[str]:
    """
    Grouping key that needs no similarity computation

    Args:
        photo: Photo to inspect
        use_station_keys: Fall back to the normalized station label

    Returns:
        The scene identifier, a prefixed station key, or None
    """
    analysis = photo.analysis
    if analysis is None:
        return None
    if analysis.scene_id:
        return analysis.scene_id
    if use_station_keys:
        station = normalize_station(analysis.station)
        if station:
            return STATION_KEY_PREFIX + station
    return None


class SceneClusterer:
    """
    Cluster photos by explicit location key, then by landmark similarity
    """

    def __init__(self,
                 detector: Optional[SimilarityDetector] = None,
                 threshold: float = 0.6,
                 use_station_keys: bool = True):
        """
        Initialize scene clusterer

        Args:
            detector: Similarity engine used for photos without a key
            threshold: Similarity to the seed must exceed this to join a cluster
            use_station_keys: Group by normalized station label when no scene id is set
        """
        self.detector = detector or SimilarityDetector()
        self.threshold = threshold
        self.use_station_keys = use_station_keys

    @classmethod
    def from_config(cls, config: Dict) -> 'SceneClusterer':
        pairing = config.get('pairing', {})
        return cls(
            detector=SimilarityDetector.from_config(config),
            threshold=pairing.get('cluster_threshold', 0.6),
            use_station_keys=pairing.get('use_station_keys', True),
        )

    def cluster(self, photos: List[PhotoRecord],
                similarity_enabled: bool = True) -> ClusteringResult:
        """
        Group a photo set into location clusters

        Args:
            photos: Photos in input order
            similarity_enabled: Run landmark clustering for photos without a key

        Returns:
            ClusteringResult with clusters ordered by their first member's
            input position; singletons and unanalyzed photos are orphans
        """
        keyed: Dict[str, List[int]] = {}
        unkeyed: List[int] = []
        unanalyzed: List[int] = []

        for index, photo in enumerate(photos):
            if photo.analysis is None:
                unanalyzed.append(index)
                continue
            key = explicit_key(photo, self.use_station_keys)
            if key is None:
                unkeyed.append(index)
            else:
                keyed.setdefault(key, []).append(index)

        groups: List[Tuple[str, str, List[int]]] = [
            (key, 'explicit', indices) for key, indices in keyed.items()
        ]

        if similarity_enabled:
            groups.extend(self._similarity_groups(photos, unkeyed, set(keyed)))
        else:
            groups.extend(('', 'similarity', [index]) for index in unkeyed)

        orphan_indices = list(unanalyzed)
        clusters = []
        for key, strategy, indices in sorted(groups, key=lambda group: group[2][0]):
            if len(indices) < 2:
                orphan_indices.extend(indices)
                continue
            clusters.append(Cluster(
                key=key,
                members=tuple(photos[i] for i in indices),
                strategy=strategy,
            ))

        orphans = [photos[i] for i in sorted(orphan_indices)]

        logger.info(f"Clustered {len(photos)} photos into {len(clusters)} scenes "
                    f"({len(orphans)} orphans)")
        return ClusteringResult(clusters=clusters, orphans=orphans)

    def _similarity_groups(self, photos: List[PhotoRecord], indices: List[int],
                           reserved_keys: set) -> List[Tuple[str, str, List[int]]]:
        """Single-link greedy clustering against each seed, in input order."""
        groups = []
        visited = set()
        counter = 0

        for position, seed in enumerate(indices):
            if seed in visited:
                continue
            visited.add(seed)
            members = [seed]

            for candidate in indices[position + 1:]:
                if candidate in visited:
                    continue
                score = self.detector.similarity(photos[seed].analysis,
                                                 photos[candidate].analysis)
                if score > self.threshold:
                    members.append(candidate)
                    visited.add(candidate)
                    logger.debug(f"Same scene: {photos[seed].file_name} <-> "
                                 f"{photos[candidate].file_name} (similarity: {score:.3f})")

            key = ''
            if len(members) > 1:
                counter += 1
                key = SCENE_KEY_FORMAT.format(counter)
                while key in reserved_keys:
                    counter += 1
                    key = SCENE_KEY_FORMAT.format(counter)
            groups.append((key, 'similarity', members))

        return groups
