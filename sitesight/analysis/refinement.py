"""
Post-analysis refinement of ledger fields.

Runs after classification and before pairing:
remark repair from blackboard aliases, majority normalization of the
classification fields, and station filling for temperature control photos.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence

from ..models import PhotoRecord
from ..vocabulary import WorkHierarchy

logger = logging.getLogger(__name__)

TEMPERATURE_REMARK = 'アスファルト合材温度管理'
OPENING_TEMPERATURE = '開放温度'

DATE_PATTERN = re.compile(r'日\s*付[:：]\s*(\d{1,2})/(\d{1,2})')
TRUCK_PATTERN = re.compile(r'(\d+台目)')

MAJORITY_FIELDS = ('work_type', 'variety', 'detail', 'remarks')


def _analyzed(photos: Sequence[PhotoRecord]) -> List[PhotoRecord]:
    return [photo for photo in photos if photo.analysis is not None]


def refine_remarks(photos: Sequence[PhotoRecord], vocabulary: WorkHierarchy) -> int:
    """
    Repair remarks using aliases found in the detected blackboard text

    Args:
        photos: Photos to check
        vocabulary: Work hierarchy with remark aliases

    Returns:
        Number of remarks changed
    """
    fixed = 0
    for photo in _analyzed(photos):
        a = photo.analysis
        if not vocabulary.is_valid(a.work_type, a.variety, a.detail):
            continue

        valid = vocabulary.is_valid(a.work_type, a.variety, a.detail, a.remarks)
        if valid and a.remarks in a.detected_text:
            continue

        suggested = vocabulary.suggest_remark(a.work_type, a.variety, a.detail, a.detected_text)
        if suggested and suggested != a.remarks:
            logger.info(f"{photo.file_name}: remark '{a.remarks}' -> '{suggested}' (alias match)")
            a.remarks = suggested
            fixed += 1
        elif not valid:
            logger.warning(f"{photo.file_name}: remark '{a.remarks}' is not in the work hierarchy")

    return fixed


def _majority(values: Sequence[str]) -> Optional[str]:
    """Most frequent non-empty value; the first one seen wins ties."""
    counts: Dict[str, int] = {}
    for value in values:
        if value:
            counts[value] = counts.get(value, 0) + 1

    winner, best = None, 0
    for value, count in counts.items():
        if count > best:
            winner, best = value, count
    return winner


def normalize_by_majority(photos: Sequence[PhotoRecord]) -> int:
    """
    Set work type, variety, detail and remark to the folder-wide majority

    Photos from one folder almost always share their classification, so
    outliers are treated as misreads.

    Returns:
        Number of analyses changed
    """
    analyzed = _analyzed(photos)
    if not analyzed:
        return 0

    majority = {
        name: _majority([getattr(photo.analysis, name) for photo in analyzed])
        for name in MAJORITY_FIELDS
    }
    logger.info(f"Majority classification: {majority}")

    normalized = 0
    for photo in analyzed:
        changed = False
        for name, value in majority.items():
            if value and getattr(photo.analysis, name) != value:
                setattr(photo.analysis, name, value)
                changed = True
        if changed:
            logger.debug(f"{photo.file_name}: normalized to majority classification")
            normalized += 1

    return normalized


def fill_temperature_stations(photos: Sequence[PhotoRecord],
                              remark: str = TEMPERATURE_REMARK) -> int:
    """
    Set the station of temperature control photos to "date truck-number"

    The date ("日付:1/28" -> "1月28日") and the truck number ("2台目") are
    read from the first blackboard that shows them. Opening temperature
    photos get the date only.

    Returns:
        Number of stations set
    """
    targets = [photo for photo in _analyzed(photos) if photo.analysis.remarks == remark]
    if not targets:
        return 0

    date = truck = None
    for photo in targets:
        text = photo.analysis.detected_text
        if not text:
            continue
        if date is None:
            match = DATE_PATTERN.search(text)
            if match:
                date = f"{int(match.group(1))}月{int(match.group(2))}日"
        if truck is None and OPENING_TEMPERATURE not in text:
            match = TRUCK_PATTERN.search(text)
            if match:
                truck = match.group(1)

    if date is None:
        logger.info(f"No date found on {len(targets)} temperature control photos")
        return 0

    for photo in targets:
        a = photo.analysis
        opening = OPENING_TEMPERATURE in a.description or OPENING_TEMPERATURE in a.detected_text
        a.station = date if opening else f"{date} {truck or ''}".strip()

    logger.info(f"Filled stations of {len(targets)} temperature control photos "
                f"(date={date}, truck={truck or 'none'})")
    return len(targets)


class AnalysisRefiner:
    """Apply the configured refinement steps in order"""

    def __init__(self, config: Dict, vocabulary: WorkHierarchy):
        self.config = config.get('refinement', {})
        self.vocabulary = vocabulary

    def refine(self, photos: Sequence[PhotoRecord]) -> Dict[str, int]:
        """
        Run remark repair, majority normalization and station filling

        Returns:
            Number of photos changed by each step
        """
        changes = {}
        if self.config.get('repair_remarks', True):
            changes['remarks_repaired'] = refine_remarks(photos, self.vocabulary)
        if self.config.get('normalize_by_majority', True):
            changes['normalized'] = normalize_by_majority(photos)
        if self.config.get('fill_temperature_stations', True):
            changes['stations_filled'] = fill_temperature_stations(
                photos, self.config.get('temperature_remark', TEMPERATURE_REMARK))
        return changes
