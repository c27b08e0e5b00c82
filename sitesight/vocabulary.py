"""
Controlled vocabulary for photo ledger classification.

The work hierarchy is 工種 (work type) -> 種別 (variety) -> 細別 (detail)
-> 備考 (remark). Each remark carries one or more photo categories and
optional aliases seen on site blackboards.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml

from .exceptions import VocabularyError

logger = logging.getLogger(__name__)

DEFAULT_HIERARCHY_PATH = Path(__file__).parent / "data" / "work_hierarchy.yaml"


class WorkHierarchy:
    """Lookup interface over the work hierarchy master"""

    def __init__(self, tree: Dict[str, Dict[str, Dict[str, Dict[str, Any]]]]):
        self._tree = tree

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> 'WorkHierarchy':
        """
        Load the hierarchy from a YAML master file

        Args:
            path: Master file; the bundled work_hierarchy.yaml when None

        Returns:
            WorkHierarchy instance

        Raises:
            VocabularyError: If the file is missing or malformed
        """
        path = Path(path) if path else DEFAULT_HIERARCHY_PATH
        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise VocabularyError(f"Failed to load work hierarchy from {path}: {e}") from e

        if not isinstance(raw, dict):
            raise VocabularyError(f"Work hierarchy in {path} must be a mapping")

        tree = {}
        for work_type, varieties in raw.items():
            tree[str(work_type)] = {}
            for variety, details in (varieties or {}).items():
                tree[str(work_type)][str(variety)] = {}
                for detail, remarks in (details or {}).items():
                    tree[str(work_type)][str(variety)][str(detail)] = {
                        str(name): cls._remark_definition(definition)
                        for name, definition in (remarks or {}).items()
                    }

        logger.debug(f"Loaded work hierarchy with {len(tree)} work types from {path}")
        return cls(tree)

    @staticmethod
    def _remark_definition(definition: Any) -> Dict[str, List[str]]:
        definition = definition or {}
        return {
            'categories': [str(c) for c in definition.get('categories') or []],
            'aliases': [str(a) for a in definition.get('aliases') or []],
        }

    def _remarks(self, work_type: str, variety: str,
                 detail: str) -> Optional[Dict[str, Dict[str, List[str]]]]:
        return self._tree.get(work_type, {}).get(variety, {}).get(detail)

    def work_types(self) -> List[str]:
        return list(self._tree)

    def varieties(self, work_type: str) -> List[str]:
        return list(self._tree.get(work_type, {}))

    def details(self, work_type: str, variety: str) -> List[str]:
        return list(self._tree.get(work_type, {}).get(variety, {}))

    def remarks_for(self, work_type: str, variety: str, detail: str) -> List[str]:
        """Valid remarks under a detail node, empty when the path is unknown"""
        return list(self._remarks(work_type, variety, detail) or {})

    def is_valid(self, work_type: str, variety: str, detail: str,
                 remark: Optional[str] = None) -> bool:
        """Whether the classification path (and remark, if given) exists"""
        remarks = self._remarks(work_type, variety, detail)
        if remarks is None:
            return False
        return remark is None or remark in remarks

    def categories_for(self, work_type: str, variety: str, detail: str,
                       remark: str) -> Optional[List[str]]:
        """
        Photo categories of a remark

        An exact remark match wins; otherwise the first remark with an alias
        contained in ``remark`` is used.

        Returns:
            List of categories, or None when nothing matches
        """
        remarks = self._remarks(work_type, variety, detail)
        if not remarks:
            return None

        if remark in remarks:
            return list(remarks[remark]['categories'])

        for definition in remarks.values():
            if any(alias in remark for alias in definition['aliases']):
                return list(definition['categories'])
        return None

    def infer_categories(self, remark: str) -> Optional[List[str]]:
        """Categories of a remark when the classification path is unknown"""
        for varieties in self._tree.values():
            for details in varieties.values():
                for remarks in details.values():
                    if remark in remarks:
                        return list(remarks[remark]['categories'])
                    for definition in remarks.values():
                        if remark in definition['aliases']:
                            return list(definition['categories'])
        return None

    def suggest_remark(self, work_type: str, variety: str, detail: str,
                       text: str) -> Optional[str]:
        """
        Remark whose alias appears in blackboard text

        Args:
            work_type: 工種
            variety: 種別
            detail: 細別
            text: Text detected on the blackboard

        Returns:
            The first remark (in master order) with a matching alias, or None
        """
        if not text:
            return None
        for name, definition in (self._remarks(work_type, variety, detail) or {}).items():
            if any(alias in text for alias in definition['aliases']):
                return name
        return None

    def subset(self, work_types: Iterable[str]) -> 'WorkHierarchy':
        """Hierarchy restricted to the given work types (unknown names are ignored)"""
        selected = [w for w in work_types if w in self._tree]
        return WorkHierarchy({w: self._tree[w] for w in selected})

    def work_type_overview(self, max_remarks: int = 5) -> str:
        """
        One line per work type with a few representative remarks

        Args:
            max_remarks: Remarks listed per work type

        Returns:
            Text for the work type selection prompt
        """
        lines = []
        for work_type, varieties in self._tree.items():
            remarks: List[str] = []
            for details in varieties.values():
                for names in details.values():
                    for name in names:
                        if name not in remarks:
                            remarks.append(name)
            lines.append(f"- {work_type}: {', '.join(remarks[:max_remarks])}")
        return '\n'.join(lines)

    def format_for_prompt(self) -> Dict[str, Any]:
        """Nested names only, without categories or aliases"""
        return {
            work_type: {
                variety: {
                    detail: {remark: {} for remark in remarks}
                    for detail, remarks in details.items()
                }
                for variety, details in varieties.items()
            }
            for work_type, varieties in self._tree.items()
        }

    def to_prompt_json(self) -> str:
        return json.dumps(self.format_for_prompt(), ensure_ascii=False, indent=2)

    def __len__(self) -> int:
        return len(self._tree)

    def __contains__(self, work_type: str) -> bool:
        return work_type in self._tree
