"""
Tests for the work hierarchy vocabulary.
"""

import json

import pytest

from sitesight.exceptions import VocabularyError
from sitesight.vocabulary import WorkHierarchy

PATH = ('舗装工', '舗装打換え工', '上層路盤工')


class TestWorkHierarchyLookups:
    """Test lookups over the bundled master."""

    def test_levels(self, vocabulary):
        """Test each level of the hierarchy is listed in master order."""
        assert '舗装工' in vocabulary.work_types()
        assert '舗装打換え工' in vocabulary.varieties('舗装工')
        assert '上層路盤工' in vocabulary.details('舗装工', '舗装打換え工')
        assert '上層路盤工出来形測定' in vocabulary.remarks_for(*PATH)

    def test_unknown_path(self, vocabulary):
        """Test unknown paths give empty results instead of errors."""
        assert vocabulary.varieties('存在しない工種') == []
        assert vocabulary.remarks_for('舗装工', 'x', 'y') == []
        assert not vocabulary.is_valid('舗装工', 'x', 'y')

    def test_is_valid(self, vocabulary):
        assert vocabulary.is_valid(*PATH)
        assert vocabulary.is_valid(*PATH, remark='転圧状況')
        assert not vocabulary.is_valid(*PATH, remark='舗設状況')

    def test_categories_exact(self, vocabulary):
        """Test an exact remark returns its categories."""
        assert vocabulary.categories_for(*PATH, '現場密度測定工') == ['品質管理写真']

    def test_categories_by_alias(self, vocabulary):
        """Test a remark containing an alias resolves through it."""
        assert vocabulary.categories_for(*PATH, 'RI計器による測定') == ['品質管理写真']

    def test_categories_none(self, vocabulary):
        assert vocabulary.categories_for(*PATH, '全く別の備考') is None
        assert vocabulary.categories_for('x', 'y', 'z', '転圧状況') is None

    def test_infer_categories(self, vocabulary):
        """Test categories are found without a classification path."""
        assert vocabulary.infer_categories('密度測定') == ['品質管理写真']
        assert vocabulary.infer_categories('全く別の備考') is None

    def test_suggest_remark(self, vocabulary):
        """Test an alias on the blackboard suggests its remark."""
        text = '工事名 市道改良\n基準高下がり H1'
        assert vocabulary.suggest_remark(*PATH, text) == '不陸整正出来形'
        assert vocabulary.suggest_remark(*PATH, '') is None
        assert vocabulary.suggest_remark(*PATH, '無関係な文字') is None


class TestWorkHierarchyPrompt:
    """Test prompt formatting and subsets."""

    def test_subset(self, vocabulary):
        """Test unknown work types are ignored in a subset."""
        subset = vocabulary.subset(['舗装工', 'unknown'])
        assert subset.work_types() == ['舗装工']
        assert len(subset) == 1
        assert '道路土工' not in subset

    def test_format_for_prompt(self, vocabulary):
        """Test the prompt form lists names only."""
        prompt = json.loads(vocabulary.subset(['舗装工']).to_prompt_json())
        remarks = prompt['舗装工']['舗装打換え工']['上層路盤工']
        assert remarks['不陸整正出来形'] == {}

    def test_work_type_overview(self, vocabulary):
        """Test one line per work type with a bounded remark list."""
        lines = vocabulary.work_type_overview(max_remarks=2).splitlines()
        assert len(lines) == len(vocabulary)
        assert lines[2].startswith("- 舗装工: ")
        assert len(lines[2].split(": ", 1)[1].split(", ")) == 2


class TestWorkHierarchyLoading:
    """Test loading master files."""

    def test_custom_file(self, tmp_path):
        """Test a minimal master with aliases."""
        master = tmp_path / "hierarchy.yaml"
        master.write_text(
            "土工:\n"
            "  掘削工:\n"
            "    掘削:\n"
            "      掘削状況: {categories: [施工状況写真], aliases: [掘削中]}\n"
            "      完了:\n",
            encoding='utf-8',
        )
        hierarchy = WorkHierarchy.load(master)

        assert hierarchy.remarks_for('土工', '掘削工', '掘削') == ['掘削状況', '完了']
        assert hierarchy.categories_for('土工', '掘削工', '掘削', '完了') == []
        assert hierarchy.suggest_remark('土工', '掘削工', '掘削', '掘削中です') == '掘削状況'

    def test_missing_file(self, tmp_path):
        with pytest.raises(VocabularyError):
            WorkHierarchy.load(tmp_path / "missing.yaml")

    def test_not_a_mapping(self, tmp_path):
        master = tmp_path / "list.yaml"
        master.write_text("- a\n- b\n", encoding='utf-8')
        with pytest.raises(VocabularyError):
            WorkHierarchy.load(master)
