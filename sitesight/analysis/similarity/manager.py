"""
Scene pairing management: cluster, select pairs and record scene decisions
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from ...models import Omitted, Pair, Phase, PhotoRecord
from .clustering import SceneClusterer
from .selector import PairingSelector

logger = logging.getLogger(__name__)


@dataclass
class PairingReport:
    """Everything one pairing pass decided about a photo set."""
    pairs: List[Pair] = field(default_factory=list)
    omitted: List[Omitted] = field(default_factory=list)
    orphans: List[PhotoRecord] = field(default_factory=list)
    statistics: Dict[str, Any] = field(default_factory=dict)


class ScenePairingManager:
    """
    Main interface for scene pairing
    Integrates clustering and pair selection with the analysis pipeline
    """

    def __init__(self, config: Dict,
                 clusterer: Optional[SceneClusterer] = None,
                 selector: Optional[PairingSelector] = None):
        """
        Initialize scene pairing manager

        Args:
            config: Configuration dictionary
            clusterer: Scene clusterer, built from config when omitted
            selector: Pairing selector, sharing the clusterer's detector when omitted
        """
        self.config = config.get('pairing', {})
        self.clusterer = clusterer or SceneClusterer.from_config(config)
        self.selector = selector or PairingSelector(self.clusterer.detector)
        self.low_similarity_warning = self.config.get('low_similarity_warning', 0.8)

    def pair_scenes(self, photos: List[PhotoRecord], assign: bool = True) -> PairingReport:
        """
        Cluster photos and select a before/after pair per cluster

        Args:
            photos: Photos with analyses (landmarks, ground condition)
            assign: Write scene_id/phase onto the analyses of paired clusters

        Returns:
            PairingReport whose counts account for every input photo
        """
        logger.info(f"Starting scene pairing for {len(photos)} photos")

        clustering = self.clusterer.cluster(photos)
        report = PairingReport(orphans=list(clustering.orphans))

        for cluster in clustering:
            outcome = self.selector.select_pair(cluster)
            if isinstance(outcome, Omitted):
                report.omitted.append(outcome)
                continue

            report.pairs.append(outcome)
            if assign:
                self._assign_scene(outcome)

            if outcome.similarity < self.low_similarity_warning:
                logger.warning(f"Low similarity pair in {outcome.cluster_key}: "
                               f"{outcome.before.file_name} -> {outcome.after.file_name} "
                               f"({outcome.similarity * 100:.1f}%)")

        report.statistics = self.get_statistics(report, len(photos))

        logger.info(f"Scene pairing complete:")
        logger.info(f"  Input photos: {len(photos)}")
        logger.info(f"  Scenes: {len(clustering)}")
        logger.info(f"  Pairs: {len(report.pairs)}")
        logger.info(f"  Orphans: {len(report.orphans)}")

        for index, pair in enumerate(report.pairs, start=1):
            logger.debug(f"Pair {index}: similarity {pair.similarity * 100:.1f}% (rule {pair.rule})")
            for landmark in pair.matched_landmarks:
                logger.debug(f"  - {landmark}")

        return report

    def _assign_scene(self, pair: Pair) -> None:
        """Record the clustering decision on every member of the pair's cluster."""
        pair.before.analysis.assign_scene(pair.cluster_key, Phase.BEFORE)
        pair.after.analysis.assign_scene(pair.cluster_key, Phase.AFTER)
        for extra in pair.extras:
            if extra.analysis is not None:
                extra.analysis.assign_scene(pair.cluster_key, Phase.STATUS)

    @staticmethod
    def get_statistics(report: PairingReport, total: int) -> Dict[str, Any]:
        """Photo accounting for a pairing report"""
        extras = sum(len(pair.extras) for pair in report.pairs)
        omitted = sum(len(entry.members) for entry in report.omitted)
        return {
            'total_input_photos': total,
            'pairs': len(report.pairs),
            'paired_photos': 2 * len(report.pairs),
            'cluster_extras': extras,
            'omitted_photos': omitted,
            'orphans': len(report.orphans),
            'low_confidence_pairs': sum(1 for pair in report.pairs if pair.low_confidence),
        }

    def get_pairing_summary(self, report: PairingReport) -> str:
        """
        Get a human-readable summary of a pairing report

        Args:
            report: Result of pair_scenes

        Returns:
            Formatted summary string
        """
        stats = report.statistics

        summary_lines = [
            "=== Scene Pairing Summary ===",
            f"Total input photos: {stats.get('total_input_photos', 0)}",
            f"Pairs: {stats.get('pairs', 0)}",
            f"Low confidence pairs: {stats.get('low_confidence_pairs', 0)}",
            f"Cluster extras: {stats.get('cluster_extras', 0)}",
            f"Omitted photos: {stats.get('omitted_photos', 0)}",
            f"Orphans: {stats.get('orphans', 0)}",
        ]

        return '\n'.join(summary_lines)
