"""
Selection of the before/after representatives of a scene cluster
"""

from typing import Dict, List, Optional, Tuple, Union
import logging

from ...models import Cluster, GroundCondition, Omitted, Pair, PhotoRecord
from .detector import SimilarityDetector

logger = logging.getLogger(__name__)

# Rules 1-3: (before condition, after condition), in priority order
CONDITION_RULES: List[Tuple[GroundCondition, GroundCondition]] = [
    (GroundCondition.UNPAVED, GroundCondition.PAVED),
    (GroundCondition.UNPAVED, GroundCondition.UNDER_CONSTRUCTION),
    (GroundCondition.UNDER_CONSTRUCTION, GroundCondition.PAVED),
]
DATE_FALLBACK_RULE = 4

OMIT_TOO_FEW = "fewer than two usable members"


def sort_by_date(photos: List[PhotoRecord]) -> List[PhotoRecord]:
    """Stable date sort: photos with equal dates keep their input order."""
    return sorted(photos, key=lambda photo: photo.date)


class PairingSelector:
    """
    Choose which member of a cluster is "before" and which is "after",
    using ground condition first and capture date as the fallback
    """

    def __init__(self, detector: Optional[SimilarityDetector] = None):
        """
        Initialize pairing selector

        Args:
            detector: Similarity engine used to justify the chosen pair
        """
        self.detector = detector or SimilarityDetector()

    def select_pair(self, cluster: Cluster) -> Union[Pair, Omitted]:
        """
        Select the before/after pair of a cluster

        Args:
            cluster: Cluster to split

        Returns:
            Pair, or Omitted carrying every member when no pair can be formed
        """
        usable = sort_by_date([m for m in cluster.members if m.analysis is not None])

        if len(usable) < 2:
            logger.debug(f"Cluster {cluster.key or '(unkeyed)'} omitted: {OMIT_TOO_FEW}")
            return Omitted(reason=OMIT_TOO_FEW, members=list(cluster.members))

        by_condition: Dict[GroundCondition, List[PhotoRecord]] = {
            condition: [m for m in usable if m.analysis.ground_condition == condition]
            for condition in GroundCondition
        }

        before = after = None
        rule = DATE_FALLBACK_RULE
        for number, (before_condition, after_condition) in enumerate(CONDITION_RULES, start=1):
            if by_condition[before_condition] and by_condition[after_condition]:
                before = by_condition[before_condition][0]
                after = by_condition[after_condition][-1]
                rule = number
                break

        low_confidence = False
        note = ""
        if before is None:
            before, after = usable[0], usable[-1]
            low_confidence = True
            note = (f"ground condition did not separate {len(usable)} photos; "
                    f"paired earliest and latest by date")
            logger.warning(f"Cluster {cluster.key or '(unkeyed)'}: {note}")

        extras = [m for m in cluster.members if m is not before and m is not after]

        return Pair(
            before=before,
            after=after,
            similarity=self.detector.similarity(before.analysis, after.analysis),
            matched_landmarks=self.detector.describe_matches(before.analysis, after.analysis),
            rule=rule,
            low_confidence=low_confidence,
            note=note,
            extras=extras,
            cluster_key=cluster.key,
        )
