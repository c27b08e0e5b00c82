"""
End-to-end analysis run for a folder of site photos.

Ledger classification in sequential batches, spatial feature extraction,
refinement, scene pairing and consensus voting. A run works on copies of
the input records so that concurrent runs never share analyses.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from .analysis.consensus import ConsensusVoter
from .analysis.refinement import AnalysisRefiner
from .analysis.similarity.manager import PairingReport, ScenePairingManager
from .analysis.vision_llm_analyzer import PhotoAnalysisPrompts, VisionLLMAnalyzer
from .exceptions import InferenceError, PermissionDeniedError
from .models import ConsensusOutcome, PhotoRecord, PhotoStatus
from .utils.caching import AnalysisCache, create_cache, photo_cache_key
from .utils.logging import PipelineStats
from .vocabulary import WorkHierarchy

logger = logging.getLogger(__name__)


def _chunks(items: Sequence[PhotoRecord], size: int) -> List[List[PhotoRecord]]:
    size = max(1, int(size))
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


@dataclass
class PipelineReport:
    """Result of one pipeline run."""
    photos: List[PhotoRecord] = field(default_factory=list)
    pairing: Optional[PairingReport] = None
    consensus: Dict[str, ConsensusOutcome] = field(default_factory=dict)
    refinement: Dict[str, int] = field(default_factory=dict)
    statistics: Dict[str, Any] = field(default_factory=dict)
    work_types: List[str] = field(default_factory=list)
    descriptions_corrected: int = 0
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'photos': [photo.to_dict() for photo in self.photos],
            'statistics': self.statistics,
            'refinement': self.refinement,
            'workTypes': self.work_types,
            'descriptionsCorrected': self.descriptions_corrected,
            'cancelled': self.cancelled,
        }
        if self.pairing is not None:
            data['pairs'] = [
                {
                    'sceneId': pair.cluster_key,
                    'before': pair.before.file_name,
                    'after': pair.after.file_name,
                    'similarity': round(pair.similarity, 4),
                    'rule': pair.rule,
                    'lowConfidence': pair.low_confidence,
                    'matchedLandmarks': pair.matched_landmarks,
                    'extras': [extra.file_name for extra in pair.extras],
                }
                for pair in self.pairing.pairs
            ]
            data['omitted'] = [
                {'reason': entry.reason, 'files': [m.file_name for m in entry.members]}
                for entry in self.pairing.omitted
            ]
            data['orphans'] = [photo.file_name for photo in self.pairing.orphans]
            data['pairing'] = self.pairing.statistics
        return data


class AnalysisPipeline:
    """
    Runs analysis, pairing and consensus over a photo set.

    Batches run one after another with a configurable delay between them.
    Cancellation is checked between batches; a request already sent is
    allowed to finish.
    """

    def __init__(self, config: Dict,
                 analyzer: Optional[VisionLLMAnalyzer] = None,
                 cache: Optional[AnalysisCache] = None,
                 vocabulary: Optional[WorkHierarchy] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize the pipeline

        Args:
            config: Full configuration dictionary
            analyzer: Vision analyzer; built from config when omitted
            cache: Result cache; built from config when omitted
            vocabulary: Work hierarchy; taken from the analyzer when omitted
            sleep: Delay function used between batches
            cancel_event: Event that stops the run between batches when set
        """
        self.config = config
        pipeline_config = config.get('pipeline', {})
        self.batch_size = pipeline_config.get('batch_size', 6)
        self.spatial_batch_size = pipeline_config.get('spatial_batch_size', 4)
        self.inter_batch_delay = pipeline_config.get('inter_batch_delay', 1.0)
        self.extract_landmarks = pipeline_config.get('extract_landmarks', True)
        self.select_work_types = pipeline_config.get('select_work_types', True)
        self.work_type_min_photos = pipeline_config.get('work_type_min_photos', 3)
        consensus_config = config.get('consensus', {})
        self.consensus_enabled = consensus_config.get('enabled', True)
        self.verify_descriptions = consensus_config.get('verify_descriptions', True)

        if vocabulary is None and analyzer is not None:
            vocabulary = analyzer.vocabulary
        if vocabulary is None:
            vocabulary = WorkHierarchy.load(config.get('vocabulary', {}).get('path'))
        self.vocabulary = vocabulary

        self.analyzer = analyzer or VisionLLMAnalyzer(config, vocabulary=vocabulary)
        self.cache = cache if cache is not None else create_cache(config)
        self.refiner = AnalysisRefiner(config, vocabulary)
        self.pairing_manager = ScenePairingManager(config)
        self.voter = ConsensusVoter(self.analyzer.orchestrator, config,
                                    self.analyzer.system_instruction)

        self.sleep = sleep
        self.cancel_event = cancel_event or threading.Event()
        self.stats = PipelineStats()

    def cancel(self) -> None:
        """Stop the run before the next batch"""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def run(self, photos: Sequence[PhotoRecord],
            instruction: Optional[str] = None) -> PipelineReport:
        """
        Analyze, pair and vote on a photo set

        Args:
            photos: Input records; they are not modified
            instruction: Optional user instruction for ledger classification

        Returns:
            PipelineReport over copies of the input records
        """
        working = [photo.copy() for photo in photos]
        self.stats = PipelineStats()
        self.stats.set_total(len(working))
        report = PipelineReport(photos=working)

        logger.info(f"Starting analysis run for {len(working)} photos")

        pending = self._load_cached(self._reject_duplicates(working))
        hierarchy = self._select_hierarchy(pending)
        report.work_types = hierarchy.work_types()
        system_instruction = PhotoAnalysisPrompts.system_instruction(hierarchy)

        batches = _chunks(pending, self.batch_size)
        for index, batch in enumerate(batches):
            if index > 0 and self.inter_batch_delay:
                self.sleep(self.inter_batch_delay)
            if self.cancelled:
                logger.warning(f"Run cancelled before batch {index + 1}/{len(batches)}")
                break
            logger.info(f"Analyzing batch {index + 1}/{len(batches)} ({len(batch)} photos)")
            self._analyze_batch(batch, instruction, hierarchy)

        if self.cancelled:
            report.cancelled = True
            report.statistics = self.stats.get_summary()
            return report

        analyzed = [photo for photo in working
                    if photo.status == PhotoStatus.DONE and photo.analysis is not None]

        if self.extract_landmarks:
            self._extract_spatial([photo for photo in analyzed
                                   if not photo.from_cache
                                   or not photo.analysis.has_spatial_features])
        self._store_cached(analyzed)

        report.refinement = self.refiner.refine(analyzed)

        for photo in analyzed:
            photo.analysis.clear_scene()
        report.pairing = self.pairing_manager.pair_scenes(analyzed)

        if self.consensus_enabled:
            targets = self.voter.select_targets(analyzed)
            report.consensus = self.voter.reach_consensus(
                targets, system_instruction=system_instruction)
            self.voter.apply_consensus(analyzed, report.consensus)
            if self.verify_descriptions and report.consensus:
                report.descriptions_corrected = self.voter.verify_descriptions(
                    targets, system_instruction)

        report.statistics = self.stats.get_summary()
        logger.info(f"Analysis run complete: {self.stats.success} analyzed, "
                    f"{self.stats.cached} from cache, {self.stats.failed} failed")
        return report

    def _reject_duplicates(self, photos: List[PhotoRecord]) -> List[PhotoRecord]:
        """
        Drop photos whose file name was already seen in this run

        Results are matched to photos by file name, so a repeated name
        would make two photos share one analysis. Every repeat after the
        first is marked as an error.
        """
        seen = set()
        unique = []
        for photo in photos:
            if photo.file_name in seen:
                logger.warning(f"Duplicate file name {photo.file_name}; photo skipped")
                photo.status = PhotoStatus.ERROR
                self.stats.add_failure(photo.file_name, "duplicate file name")
                continue
            seen.add(photo.file_name)
            unique.append(photo)
        return unique

    def _load_cached(self, photos: List[PhotoRecord]) -> List[PhotoRecord]:
        """Attach cached analyses; returns the photos that still need analysis."""
        pending = []
        for photo in photos:
            key = photo_cache_key(photo)
            cached = self.cache.get(key) if key else None
            if cached is None:
                pending.append(photo)
                continue
            cached.clear_scene()
            photo.analysis = cached
            photo.status = PhotoStatus.DONE
            photo.from_cache = True
            self.stats.add_cached()

        if len(pending) < len(photos):
            logger.info(f"Loaded {len(photos) - len(pending)} analyses from cache")
        return pending

    def _store_cached(self, photos: List[PhotoRecord]) -> None:
        for photo in photos:
            if photo.from_cache:
                continue
            key = photo_cache_key(photo)
            if key:
                self.cache.put(key, photo.analysis)

    def _select_hierarchy(self, pending: List[PhotoRecord]) -> WorkHierarchy:
        """Vocabulary narrowed to the work types seen in a sample of the photos."""
        if not self.select_work_types or len(pending) < self.work_type_min_photos:
            return self.analyzer.vocabulary
        return self.analyzer.hierarchy_for(self.analyzer.select_work_types(pending))

    def _analyze_batch(self, batch: List[PhotoRecord], instruction: Optional[str],
                       hierarchy: Optional[WorkHierarchy] = None) -> None:
        """Classify one batch and reconcile the results by file name."""
        for photo in batch:
            photo.status = PhotoStatus.PROCESSING

        try:
            results = self.analyzer.analyze_batch(batch, instruction, hierarchy)
        except PermissionDeniedError:
            for photo in batch:
                photo.status = PhotoStatus.ERROR
            logger.error("Permission denied by the vision service; aborting run")
            raise
        except InferenceError as e:
            logger.error(f"Batch failed: {e}")
            for photo in batch:
                photo.status = PhotoStatus.ERROR
                self.stats.add_failure(photo.file_name, str(e))
            return

        names = {photo.file_name for photo in batch}
        for unknown in sorted(set(results) - names):
            logger.warning(f"Result for unknown file {unknown} ignored")

        for photo in batch:
            analysis = results.get(photo.file_name)
            if analysis is None:
                logger.warning(f"No result returned for {photo.file_name}")
                photo.status = PhotoStatus.ERROR
                self.stats.add_failure(photo.file_name, "no result returned")
                continue
            photo.analysis = analysis
            photo.status = PhotoStatus.DONE
            self.stats.add_success()

    def _extract_spatial(self, photos: List[PhotoRecord]) -> None:
        """Attach landmarks, viewpoint and ground condition."""
        batches = _chunks(photos, self.spatial_batch_size)
        for index, batch in enumerate(batches):
            if index > 0 and self.inter_batch_delay:
                self.sleep(self.inter_batch_delay)
            try:
                results = self.analyzer.extract_spatial_features(batch)
            except PermissionDeniedError:
                raise
            except InferenceError as e:
                logger.warning(f"Spatial extraction failed for batch {index + 1}/{len(batches)}: {e}")
                continue

            for photo in batch:
                item = results.get(photo.file_name)
                if item is None:
                    logger.warning(f"No spatial features returned for {photo.file_name}")
                    continue
                item.apply_to(photo.analysis)
