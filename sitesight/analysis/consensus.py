"""
Consensus voting (MAGI) for ambiguous management points.

As-built measurement photos often show a blackboard listing several
measurements, so the point a photo actually measures (H1, H2, H3 or the
stone thickness t) is ambiguous. The same targets and prompt are sent to
the model several times at increasing temperature, and each photo's votes
are reduced by majority.
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence

from ..exceptions import InferenceError, PermissionDeniedError
from ..inference.orchestrator import InferenceOrchestrator
from ..models import Analysis, ConsensusOutcome, PhotoRecord
from .schemas import (
    DESCRIPTION_CHECK_SCHEMA, MANAGEMENT_POINT_SCHEMA, DescriptionCheckItem,
    ManagementPointItem, validate_items,
)
from .vision_llm_analyzer import PhotoAnalysisPrompts

logger = logging.getLogger(__name__)

ROUND_NAMES = ['MELCHIOR', 'BALTHASAR', 'CASPER']


def magi_vote(votes: Sequence[Optional[str]]) -> ConsensusOutcome:
    """
    Reduce votes to one value by majority

    Ties go to the value that was voted first, so round 1 wins a tie.

    Args:
        votes: Votes in round order; empty values are ignored

    Returns:
        ConsensusOutcome; ``changed`` is False when there were no votes
    """
    cast = [vote for vote in votes if vote]
    if not cast:
        return ConsensusOutcome(value=None, votes=[], unanimous=False, changed=False)

    counts: Dict[str, int] = {}
    for vote in cast:
        counts[vote] = counts.get(vote, 0) + 1

    winner, best = cast[0], 0
    for value, count in counts.items():
        if count > best:
            winner, best = value, count

    return ConsensusOutcome(value=winner, votes=cast, unanimous=best == len(cast))


class ConsensusVoter:
    """Run independent management point judgments and vote on them"""

    def __init__(self, orchestrator: InferenceOrchestrator, config: Dict,
                 system_instruction: Optional[str] = None):
        """
        Initialize the voter

        Args:
            orchestrator: Inference orchestrator used for every round
            config: Full configuration dictionary
            system_instruction: System prompt shared with ledger analysis
        """
        self.orchestrator = orchestrator
        self.config = config.get('consensus', {})
        self.system_instruction = system_instruction

        self.rounds = self.config.get('rounds', 3)
        self.base_temperature = self.config.get('base_temperature', 0.3)
        self.temperature_step = self.config.get('temperature_step', 0.1)
        self.target_remarks = list(self.config.get('target_remarks',
                                                   ['上層路盤工出来形測定', '砕石厚測定']))

    def needs_consensus(self, analysis: Optional[Analysis]) -> bool:
        """Whether the photo's remark is on the consensus allowlist"""
        if analysis is None or not analysis.remarks:
            return False
        return any(target in analysis.remarks for target in self.target_remarks)

    def select_targets(self, photos: Sequence[PhotoRecord]) -> List[PhotoRecord]:
        return [photo for photo in photos if self.needs_consensus(photo.analysis)]

    def temperature_for(self, round_index: int) -> float:
        return round(self.base_temperature + round_index * self.temperature_step, 3)

    def reach_consensus(self, targets: Sequence[PhotoRecord],
                        rounds: Optional[int] = None,
                        system_instruction: Optional[str] = None) -> Dict[str, ConsensusOutcome]:
        """
        Vote on the management point of every target

        A failed round or a missing vote is logged and skipped. A target
        without any vote keeps its prior value.

        Args:
            targets: Photos that need disambiguation
            rounds: Number of independent judgments (configured default when None)
            system_instruction: System prompt for this run; the voter's own when None

        Returns:
            Outcome per target file name
        """
        rounds = self.rounds if rounds is None else rounds
        system_instruction = system_instruction or self.system_instruction
        if not targets:
            logger.info("Consensus skipped: no target photos")
            return {}

        file_names = [photo.file_name for photo in targets]
        votes: Dict[str, List[str]] = {name: [] for name in file_names}
        prompt = PhotoAnalysisPrompts.management_point_task(file_names)

        logger.info(f"Consensus voting on {len(targets)} photos over {rounds} rounds")

        for round_index in range(rounds):
            name = ROUND_NAMES[round_index % len(ROUND_NAMES)]
            temperature = self.temperature_for(round_index)
            try:
                raw = self.orchestrator.invoke(
                    targets,
                    prompt,
                    schema=MANAGEMENT_POINT_SCHEMA,
                    temperature=temperature,
                    system_instruction=system_instruction,
                )
            except PermissionDeniedError:
                raise
            except InferenceError as e:
                logger.warning(f"[{name}] round {round_index + 1} failed: {e}")
                continue

            voted = set()
            for item in validate_items(raw.get('analysis') or [], ManagementPointItem):
                if item.fileName not in votes:
                    logger.warning(f"[{name}] vote for unknown photo {item.fileName} ignored")
                    continue
                if item.fileName in voted or not item.managementPoint:
                    continue
                voted.add(item.fileName)
                votes[item.fileName].append(item.managementPoint)
                logger.debug(f"[{name}] {item.fileName} -> {item.managementPoint} "
                             f"({item.measureType or item.photoType or ''})")

        outcomes: Dict[str, ConsensusOutcome] = {}
        unanimous = split = kept = 0
        for photo in targets:
            outcome = magi_vote(votes[photo.file_name])
            if not outcome.changed:
                prior = photo.analysis.management_point if photo.analysis else None
                outcome = ConsensusOutcome(value=prior, votes=[], unanimous=False, changed=False)
                kept += 1
            elif outcome.unanimous:
                unanimous += 1
            else:
                split += 1
            outcomes[photo.file_name] = outcome

        logger.info(f"Consensus complete: unanimous={unanimous}, majority={split}, "
                    f"no votes={kept}")
        return outcomes

    def describe(self, value: str) -> str:
        """Measurement label written at the start of the description"""
        prefixes = self.config.get('description_prefixes', {'t': '砕石厚測定'})
        if value in prefixes:
            return prefixes[value]
        return self.config.get('description_prefix', '{value}測定').format(value=value)

    def apply_consensus(self, photos: Sequence[PhotoRecord],
                        outcomes: Mapping[str, ConsensusOutcome]) -> int:
        """
        Write consensus results onto the photos' analyses

        Args:
            photos: Photos to update
            outcomes: Result of reach_consensus

        Returns:
            Number of analyses updated
        """
        updated = 0
        for photo in photos:
            outcome = outcomes.get(photo.file_name)
            if outcome is None or not outcome.changed or photo.analysis is None:
                continue

            analysis = photo.analysis
            analysis.management_point = outcome.value
            analysis.consensus_votes = list(outcome.votes)
            analysis.consensus_unanimous = outcome.unanimous

            prefix = self.describe(outcome.value)
            if not analysis.description.startswith(prefix):
                analysis.description = f"{prefix}\n{analysis.description}".strip()
            updated += 1

        return updated

    def verify_descriptions(self, photos: Sequence[PhotoRecord],
                            system_instruction: Optional[str] = None) -> int:
        """
        Have the model check the descriptions of measurement photos

        After voting, a close-up of one management point should list only
        that point's value while overview photos keep every value. The
        targets are sent again with their votes and current descriptions,
        and the returned descriptions replace the current ones. A failed
        request leaves every description unchanged.

        Args:
            photos: Photos to check; only consensus targets are sent
            system_instruction: System prompt for this run; the voter's own when None

        Returns:
            Number of descriptions that changed

        Raises:
            PermissionDeniedError: The service refused the credentials
        """
        targets = self.select_targets(photos)
        if not targets:
            logger.info("Description check skipped: no measurement photos")
            return 0

        current = [
            {
                'fileName': photo.file_name,
                'remarks': photo.analysis.remarks,
                'description': photo.analysis.description,
                'magiVotes': list(photo.analysis.consensus_votes),
            }
            for photo in targets
        ]

        try:
            raw = self.orchestrator.invoke(
                targets,
                PhotoAnalysisPrompts.description_check_task(current),
                schema=DESCRIPTION_CHECK_SCHEMA,
                temperature=self.config.get('verify_temperature', 0.1),
                system_instruction=system_instruction or self.system_instruction,
            )
        except PermissionDeniedError:
            raise
        except InferenceError as e:
            logger.warning(f"Description check failed: {e}")
            return 0

        by_name = {photo.file_name: photo for photo in targets}
        changed = 0
        for item in validate_items(raw.get('verified') or [], DescriptionCheckItem):
            photo = by_name.pop(item.fileName, None)
            if photo is None:
                logger.warning(f"Description check for unknown photo {item.fileName} ignored")
                continue
            description = item.description.strip()
            if not description or description == photo.analysis.description:
                continue
            logger.info(f"Description of {item.fileName} corrected"
                        + (f": {item.reason}" if item.reason else ""))
            photo.analysis.description = description
            changed += 1

        logger.info(f"Description check complete: {changed} corrected")
        return changed
