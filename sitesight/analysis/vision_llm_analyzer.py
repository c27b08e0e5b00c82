"""
Vision LLM analyzer for SiteSight.

Builds the prompts for photo ledger classification and spatial feature
extraction, sends them through the inference orchestrator and validates
the returned items.
"""

import json
import logging
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from ..exceptions import InferenceError, PermissionDeniedError
from ..inference.orchestrator import InferenceOrchestrator, RetryPolicy
from ..models import Analysis, LandmarkCategory, PhotoRecord
from ..vocabulary import WorkHierarchy
from .schemas import (
    LEDGER_SCHEMA, SPATIAL_SCHEMA, WORK_TYPE_SCHEMA, LedgerItem, SpatialItem,
    WorkTypeSelection, validate_items,
)

logger = logging.getLogger(__name__)


class PhotoAnalysisPrompts:
    """Standard prompts for construction photo analysis tasks."""

    SYSTEM_INSTRUCTION = """You are a Japanese construction site supervisor creating a formal photo ledger (工事写真台帳).
The hierarchy below is a strict subset of the MLIT photo management standard.
Never use a work type, variety, detail or remark that is not in the master data;
map each photo to the closest existing node instead.

--- MASTER DATA HIERARCHY ---
{hierarchy}

--- FIELDS ---
1. workType: 工種 (level 1)
2. variety: 種別 (level 2)
3. detail: 細別 (level 3)
4. remarks: 備考 (level 4, the leaf)
5. station: 測点. A district name or cross-section station such as "NO.5" or "STA.10+00".
   Management point symbols (H1, H2, H3, L, CL, R, t) never go here.
   Avoid vague words such as 全体 or 概況.
6. description: 記事. Measured values only; state the unit once at the start.
   A close-up of one measurement lists only that point's value.
   An overview or blackboard-only photo lists every value on the board.
7. hasBoard: whether a site blackboard (黒板) is visible
8. detectedText: all text read from the blackboard

--- REMARKS FOR AS-BUILT MEASUREMENTS ---
- 上層路盤工出来形測定: a string line (水糸) and staff measure the drop from the reference height
- 砕石厚測定: a test hole is dug and the crushed stone layer thickness is measured

Respond with JSON only."""

    LEDGER_TASK = """{instruction}Analyze these {count} photos.
For each photo, output one JSON object matching the schema.
Order must match the input order.

Photo file names, in input order:
{file_names}"""

    USER_INSTRUCTION = """--- USER INSTRUCTION (PRIORITY) ---
{instruction}

"""

    SPATIAL_TASK = """You are analyzing fixed-point construction site photos.
For each photo, extract permanent background landmarks on a 100x100 grid
(x: 0 = left edge, 100 = right edge; y: 0 = top, 100 = bottom).
Photos taken from the same spot should yield nearly identical coordinates.
Ignore temporary objects such as machines, workers and cones.

Landmark types: {categories}
- buildings (roof shape, colour, windows), utility poles and wires, signs,
  fences and walls (material, height), retaining walls, curbs, distinctive trees

Ground condition:
- "unpaved": gravel, soil, weeds or cracked old asphalt
- "paved": fresh asphalt, clean road markings
- "under_construction": intermediate layers, e.g. a surface uniformly
  covered in grey sand or crushed stone

For each photo output fileName, landmarks (type, position {{x, y}},
size {{width, height}}, description, confidence 0-1), viewpoint
(direction, elevation: ground/elevated/aerial, fov: narrow/normal/wide),
groundCondition and a short signature string describing the landmark layout.

Photo file names, in input order:
{file_names}"""

    MANAGEMENT_POINT_TASK = """--- MANAGEMENT POINT TASK ---
Identify the photo type and the management point of each as-built measurement photo.

Photos ({count}, in input order):
{file_names}

Photo types:
1. Overview (全景): several workers seen from a distance -> managementPoint: null
2. Blackboard only: only the blackboard is visible -> managementPoint: null
3. Board-up measurement: blackboard next to a measuring staff
   - string line visible -> reference height drop -> H1 / H2 / H3
   - test hole visible -> stone thickness -> t
4. Close-up of the measured spot
   - test hole visible -> t

Rules:
- Board-up photos of reference height drops are taken in the order H2 -> H1 -> H3.
  On the blackboard sketch L = H1, CL = H2, R = H3.
- Match close-ups to overview photos by the crouching worker's posture and clothing.

Output: {{"analysis": [{{"fileName": ..., "photoType": ..., "managementPoint": ..., "measureType": ...}}]}}"""

    WORK_TYPE_TASK = """You classify construction site photos.
Look at these {count} sample photos and decide which work types (工種) the whole set contains.

Available work types with representative remarks:
{overview}

Rules:
- Include every work type that appears when several are mixed.
- When unsure, choose the closest work type.
- Use only these names: {work_types}

Output: {{"workTypes": ["舗装工", ...]}}"""

    DESCRIPTION_CHECK_TASK = """--- DESCRIPTION CHECK ---
Check the description (記事) of each as-built measurement photo below and correct it if needed.

Current results:
{results}

Rules:
1. Close-up or board-up photo: only the value of the one management point measured
   in that photo is listed. magiVotes [H2, H2] means only the H2 value;
   [t, t] means only the crushed stone thickness.
2. Overview or blackboard-only photo: every measured value is listed.
3. State the unit once at the start, e.g. "基準高下がり(単位:mm)", and omit it from the numbers.
4. Remove duplicated lines such as "H2測定\\nH2測定".

Output: {{"verified": [{{"fileName": ..., "description": ..., "changed": true|false, "reason": ...}}]}}"""

    @classmethod
    def system_instruction(cls, hierarchy: WorkHierarchy) -> str:
        return cls.SYSTEM_INSTRUCTION.format(hierarchy=hierarchy.to_prompt_json())

    @classmethod
    def ledger_task(cls, file_names: Sequence[str], instruction: Optional[str] = None) -> str:
        section = cls.USER_INSTRUCTION.format(instruction=instruction) if instruction else ""
        return cls.LEDGER_TASK.format(
            instruction=section,
            count=len(file_names),
            file_names=', '.join(file_names),
        )

    @classmethod
    def spatial_task(cls, file_names: Sequence[str]) -> str:
        return cls.SPATIAL_TASK.format(
            categories=', '.join(c.value for c in LandmarkCategory),
            file_names=', '.join(file_names),
        )

    @classmethod
    def management_point_task(cls, file_names: Sequence[str]) -> str:
        return cls.MANAGEMENT_POINT_TASK.format(
            count=len(file_names),
            file_names=', '.join(file_names),
        )

    @classmethod
    def work_type_task(cls, count: int, hierarchy: WorkHierarchy) -> str:
        return cls.WORK_TYPE_TASK.format(
            count=count,
            overview=hierarchy.work_type_overview(),
            work_types=', '.join(hierarchy.work_types()),
        )

    @classmethod
    def description_check_task(cls, results: List[Dict]) -> str:
        return cls.DESCRIPTION_CHECK_TASK.format(
            results=json.dumps(results, ensure_ascii=False, indent=2),
        )


def build_orchestrator(config: Dict) -> InferenceOrchestrator:
    """
    Orchestrator wired to the configured provider

    Args:
        config: Full configuration dictionary

    Returns:
        InferenceOrchestrator calling Gemini
    """
    inference = config.get('inference', {})
    provider_name = inference.get('provider', 'gemini')

    # Import providers dynamically to avoid dependencies if not used
    if provider_name == 'gemini':
        from .vision_providers.gemini_vision import GeminiVisionProvider, classify_gemini_error
        provider = GeminiVisionProvider(inference)
        return InferenceOrchestrator(
            call=provider.generate,
            policy=RetryPolicy.from_config(config),
            classify_error=classify_gemini_error,
        )
    raise ValueError(f"Unknown vision provider: {provider_name}")


class VisionLLMAnalyzer:
    """
    Main analyzer class that coordinates vision LLM analysis.
    """

    def __init__(self, config: Dict,
                 orchestrator: Optional[InferenceOrchestrator] = None,
                 vocabulary: Optional[WorkHierarchy] = None):
        """
        Initialize the analyzer with configuration.

        Args:
            config: Full configuration dictionary
            orchestrator: Inference orchestrator; built from config when omitted
            vocabulary: Work hierarchy used in the system prompt
        """
        self.config = config
        self.orchestrator = orchestrator or build_orchestrator(config)
        if vocabulary is None:
            vocabulary = WorkHierarchy.load(config.get('vocabulary', {}).get('path'))
        self.vocabulary = vocabulary
        self.temperature = config.get('inference', {}).get('temperature', 0.1)

    @property
    def system_instruction(self) -> str:
        return PhotoAnalysisPrompts.system_instruction(self.vocabulary)

    @staticmethod
    def sample_photos(photos: Sequence[PhotoRecord]) -> List[PhotoRecord]:
        """First, middle and last photo; all of them when there are three or fewer"""
        if len(photos) <= 3:
            return list(photos)
        return [photos[0], photos[len(photos) // 2], photos[-1]]

    def select_work_types(self, photos: Sequence[PhotoRecord]) -> List[str]:
        """
        Work types present in a photo set, judged from a sample of it.

        Only names from the vocabulary are kept. An empty answer or a
        failed request falls back to every work type.

        Args:
            photos: Photos about to be classified

        Returns:
            Selected work types in vocabulary order

        Raises:
            PermissionDeniedError: The service refused the credentials
        """
        available = self.vocabulary.work_types()
        sample = self.sample_photos(photos)
        if not sample:
            return available

        try:
            raw = self.orchestrator.invoke(
                sample,
                PhotoAnalysisPrompts.work_type_task(len(sample), self.vocabulary),
                schema=WORK_TYPE_SCHEMA,
                temperature=self.temperature,
            )
            answered = set(WorkTypeSelection(**raw).workTypes)
        except PermissionDeniedError:
            raise
        except (InferenceError, ValidationError) as e:
            logger.warning(f"Work type selection failed, using all work types: {e}")
            return available

        selected = [work_type for work_type in available if work_type in answered]
        if not selected:
            logger.info("No work types selected, using all work types")
            return available

        logger.info(f"Selected {len(selected)}/{len(available)} work types: {', '.join(selected)}")
        return selected

    def hierarchy_for(self, work_types: Sequence[str]) -> WorkHierarchy:
        """Vocabulary narrowed to the selected work types"""
        if set(work_types) >= set(self.vocabulary.work_types()):
            return self.vocabulary
        return self.vocabulary.subset(work_types)

    def analyze_batch(self, batch: List[PhotoRecord],
                      instruction: Optional[str] = None,
                      hierarchy: Optional[WorkHierarchy] = None) -> Dict[str, Analysis]:
        """
        Classify a batch of photos for the photo ledger.

        Args:
            batch: Photos to analyze in one request
            instruction: Optional user instruction given priority in the prompt
            hierarchy: Hierarchy shown in the system prompt; the full
                vocabulary when None

        Returns:
            Analyses keyed by the file name the model reported. Names may
            include ones not in the batch; the caller reconciles them.
        """
        file_names = [photo.file_name for photo in batch]
        raw = self.orchestrator.invoke(
            batch,
            PhotoAnalysisPrompts.ledger_task(file_names, instruction),
            schema=LEDGER_SCHEMA,
            temperature=self.temperature,
            system_instruction=PhotoAnalysisPrompts.system_instruction(hierarchy or self.vocabulary),
        )

        results: Dict[str, Analysis] = {}
        for item in validate_items(raw, LedgerItem):
            if item.fileName in results:
                logger.warning(f"Duplicate result for {item.fileName}; keeping the first")
                continue
            results[item.fileName] = item.to_analysis()

        logger.info(f"Analyzed {len(results)}/{len(batch)} photos")
        return results

    def extract_spatial_features(self, batch: List[PhotoRecord]) -> Dict[str, SpatialItem]:
        """
        Extract landmarks, viewpoint and ground condition for a batch.

        Args:
            batch: Photos to analyze in one request

        Returns:
            Validated spatial items keyed by file name
        """
        file_names = [photo.file_name for photo in batch]
        raw = self.orchestrator.invoke(
            batch,
            PhotoAnalysisPrompts.spatial_task(file_names),
            schema=SPATIAL_SCHEMA,
            temperature=self.temperature,
        )

        results: Dict[str, SpatialItem] = {}
        for item in validate_items(raw, SpatialItem):
            results.setdefault(item.fileName, item)

        logger.info(f"Extracted spatial features for {len(results)}/{len(batch)} photos")
        return results
