"""
Landmark-based spatial similarity for identifying photos of the same location
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging

from ...models import Analysis, Landmark

logger = logging.getLogger(__name__)


@dataclass
class SimilarityBreakdown:
    """Components of one similarity computation, kept for reporting."""
    score: float
    matched: int
    match_rate: float
    size_similarity: float
    viewpoint_bonus: float
    matches: List[Tuple[Landmark, Landmark, float]] = field(default_factory=list)


class SimilarityDetector:
    """
    Score how likely two analyses depict the same physical location
    by matching their static background landmarks on the 100x100 grid
    """

    def __init__(self,
                 match_distance: float = 15.0,
                 size_normalizer: float = 300.0,
                 match_weight: float = 0.9,
                 viewpoint_bonus: float = 0.1):
        """
        Initialize similarity detector

        Args:
            match_distance: Landmarks closer than this (grid units) are the same feature
            size_normalizer: Divisor for the summed width/height difference
            match_weight: Weight of the landmark match rate in the score
            viewpoint_bonus: Added when both photos face the same known direction
        """
        self.match_distance = match_distance
        self.size_normalizer = size_normalizer
        self.match_weight = match_weight
        self.viewpoint_bonus = viewpoint_bonus

    @classmethod
    def from_config(cls, config: Dict) -> 'SimilarityDetector':
        pairing = config.get('pairing', {})
        return cls(
            match_distance=pairing.get('match_distance', 15.0),
            size_normalizer=pairing.get('size_normalizer', 300.0),
            match_weight=pairing.get('match_weight', 0.9),
            viewpoint_bonus=pairing.get('viewpoint_bonus', 0.1),
        )

    def match_landmarks(self, a: Optional[Analysis],
                        b: Optional[Analysis]) -> List[Tuple[Landmark, Landmark, float]]:
        """
        Match each landmark of ``a`` to its nearest same-category landmark in ``b``

        Args:
            a: Analysis whose landmarks are matched
            b: Analysis searched for candidates

        Returns:
            (landmark_a, landmark_b, distance) for every match within tolerance,
            in the order of ``a``'s landmarks
        """
        if a is None or b is None or not a.landmarks or not b.landmarks:
            return []

        candidates = b.landmarks
        positions = np.array([[lm.x, lm.y] for lm in candidates], dtype=float)
        categories = np.array([lm.category.value for lm in candidates])

        matches = []
        for landmark in a.landmarks:
            same_category = categories == landmark.category.value
            if not same_category.any():
                continue

            distances = np.hypot(positions[:, 0] - landmark.x, positions[:, 1] - landmark.y)
            distances = np.where(same_category, distances, np.inf)
            # argmin returns the first minimum, so ties resolve to list order
            best = int(np.argmin(distances))
            distance = float(distances[best])

            if distance < self.match_distance:
                matches.append((landmark, candidates[best], distance))

        return matches

    def compare(self, a: Optional[Analysis], b: Optional[Analysis]) -> SimilarityBreakdown:
        """
        Compute the similarity score together with its components

        Args:
            a: First analysis
            b: Second analysis

        Returns:
            SimilarityBreakdown with a score in [0, 1]
        """
        matches = self.match_landmarks(a, b)
        matched = len(matches)

        count_a = len(a.landmarks) if a is not None else 0
        count_b = len(b.landmarks) if b is not None else 0
        # Average, not max, so a photo with fewer detections is not penalized
        average_count = max(1.0, (count_a + count_b) / 2.0)
        match_rate = min(1.0, matched / average_count)

        size_similarity = 0.0
        if matched:
            total = sum(
                1.0 - (abs(la.width - lb.width) + abs(la.height - lb.height)) / self.size_normalizer
                for la, lb, _ in matches
            )
            size_similarity = total / matched

        bonus = 0.0
        if (a is not None and b is not None and a.viewpoint is not None
                and b.viewpoint is not None and a.viewpoint.is_known
                and a.viewpoint.direction == b.viewpoint.direction):
            bonus = self.viewpoint_bonus

        score = min(1.0, max(0.0, match_rate * self.match_weight + bonus))

        return SimilarityBreakdown(
            score=score,
            matched=matched,
            match_rate=match_rate,
            size_similarity=size_similarity,
            viewpoint_bonus=bonus,
            matches=matches,
        )

    def similarity(self, a: Optional[Analysis], b: Optional[Analysis]) -> float:
        """Similarity score in [0, 1]"""
        return self.compare(a, b).score

    def describe_matches(self, a: Optional[Analysis], b: Optional[Analysis]) -> List[str]:
        """Justification lines for the landmarks shared by two analyses"""
        return [landmark.label() for landmark, _, _ in self.match_landmarks(a, b)]

    def similarity_matrix(self, analyses: List[Optional[Analysis]]) -> np.ndarray:
        """
        Pairwise similarity matrix with a zero diagonal

        Args:
            analyses: Analyses in input order

        Returns:
            Square matrix where [i, j] is similarity(analyses[i], analyses[j])
        """
        size = len(analyses)
        matrix = np.zeros((size, size), dtype=float)
        for i in range(size):
            for j in range(size):
                if i != j:
                    matrix[i, j] = self.similarity(analyses[i], analyses[j])
        logger.debug(f"Computed {size}x{size} similarity matrix")
        return matrix


_default_detector = SimilarityDetector()


def similarity(a: Optional[Analysis], b: Optional[Analysis]) -> float:
    """Similarity score with the default tolerances"""
    return _default_detector.similarity(a, b)
