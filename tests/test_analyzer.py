"""
Tests for response validation and the vision LLM analyzer.
"""

import pytest

from sitesight.analysis.schemas import (
    LEDGER_SCHEMA, SPATIAL_SCHEMA, WORK_TYPE_SCHEMA, LedgerItem, ManagementPointItem,
    SpatialItem, WorkTypeSelection, validate_items,
)
from sitesight.analysis.vision_llm_analyzer import PhotoAnalysisPrompts, VisionLLMAnalyzer
from sitesight.exceptions import InferenceFailedError, PermissionDeniedError
from sitesight.models import GroundCondition, LandmarkCategory

from conftest import make_analysis, make_photo


class TestValidateItems:
    """Test per-item validation of model responses."""

    def test_invalid_items_skipped(self, caplog):
        """Test non-conforming items are dropped and the rest kept."""
        items = [
            {'fileName': 'a.jpg', 'workType': '舗装工'},
            'not an object',
            {'workType': 'no file name'},
            {'fileName': '', 'workType': 'empty name'},
            {'fileName': 'b.jpg'},
        ]
        with caplog.at_level("WARNING"):
            validated = validate_items(items, LedgerItem)
        assert [item.fileName for item in validated] == ['a.jpg', 'b.jpg']
        assert "Skipping" in caplog.text

    def test_ledger_item_normalizes_values(self):
        """Test nulls become empty strings and numbers become text."""
        item = LedgerItem(fileName='a.jpg', station=5, description=None, hasBoard=None,
                          remarks='  転圧状況 ')
        analysis = item.to_analysis()
        assert analysis.station == '5'
        assert analysis.description == ''
        assert analysis.has_board is False
        assert analysis.remarks == '転圧状況'

    def test_spatial_item_drops_unknown_landmarks(self):
        """Test unknown categories are dropped without failing the photo."""
        item = SpatialItem(
            fileName='a.jpg',
            landmarks=[
                {'type': 'Building', 'position': {'x': 120, 'y': 30}},
                {'type': 'excavator', 'position': {'x': 50, 'y': 50}},
                {'type': 'road-edge', 'position': {'x': 10, 'y': 90}},
            ],
            groundCondition='Under Construction',
        )
        analysis = make_analysis()
        item.apply_to(analysis)

        assert [l.category for l in analysis.landmarks] == [
            LandmarkCategory.BUILDING, LandmarkCategory.ROAD_EDGE]
        assert analysis.landmarks[0].x == 100.0
        assert analysis.ground_condition == GroundCondition.UNDER_CONSTRUCTION

    def test_spatial_item_unknown_condition(self):
        item = SpatialItem(fileName='a.jpg', landmarks='none', groundCondition='muddy')
        assert item.landmarks == []
        assert item.groundCondition is None

    @pytest.mark.parametrize("raw", [None, "", "null", " None "])
    def test_management_point_blank(self, raw):
        assert ManagementPointItem(fileName='a.jpg', managementPoint=raw).managementPoint is None

    def test_management_point_value(self):
        assert ManagementPointItem(fileName='a.jpg', managementPoint=' H1 ').managementPoint == 'H1'


class TestPrompts:
    """Test prompt construction."""

    def test_ledger_task(self):
        prompt = PhotoAnalysisPrompts.ledger_task(['a.jpg', 'b.jpg'])
        assert "2 photos" in prompt
        assert "a.jpg, b.jpg" in prompt
        assert "USER INSTRUCTION" not in prompt

    def test_ledger_task_with_instruction(self):
        prompt = PhotoAnalysisPrompts.ledger_task(['a.jpg'], instruction="測点はNO.3")
        assert prompt.index("USER INSTRUCTION") < prompt.index("Analyze")
        assert "測点はNO.3" in prompt

    def test_spatial_task_lists_categories(self):
        prompt = PhotoAnalysisPrompts.spatial_task(['a.jpg'])
        for category in LandmarkCategory:
            assert category.value in prompt

    def test_system_instruction_embeds_hierarchy(self, vocabulary):
        instruction = PhotoAnalysisPrompts.system_instruction(vocabulary)
        assert '舗装打換え工' in instruction


class TestVisionLLMAnalyzer:
    """Test batch analysis through the orchestrator."""

    @pytest.fixture
    def analyzer(self, config, orchestrator, vocabulary):
        return VisionLLMAnalyzer(config, orchestrator=orchestrator, vocabulary=vocabulary)

    def test_analyze_batch(self, analyzer, service):
        """Test results are keyed by reported name and duplicates keep the first."""
        service.on(LEDGER_SCHEMA, lambda request: [
            {'fileName': 'a.jpg', 'workType': '舗装工', 'remarks': '転圧状況'},
            {'fileName': 'a.jpg', 'workType': '道路土工', 'remarks': '掘削状況'},
            {'fileName': 'b.jpg', 'workType': '舗装工', 'hasBoard': True,
             'detectedText': '工事名'},
        ])
        batch = [make_photo('a.jpg', 1), make_photo('b.jpg', 2)]

        results = analyzer.analyze_batch(batch, instruction="全て舗装工")

        assert results['a.jpg'].remarks == '転圧状況'
        assert results['b.jpg'].has_board
        request = service.requests[0]
        assert request.batch == batch
        assert request.system_instruction and '舗装工' in request.system_instruction
        assert "全て舗装工" in request.prompt

    def test_analyze_batch_wrong_shape(self, analyzer, service):
        """Test a response that is not an array fails the batch."""
        service.on(LEDGER_SCHEMA, lambda request: {'fileName': 'a.jpg'})
        with pytest.raises(InferenceFailedError):
            analyzer.analyze_batch([make_photo('a.jpg', 1)])

    def test_extract_spatial_features(self, analyzer, service):
        service.on(SPATIAL_SCHEMA, lambda request: [
            {'fileName': 'a.jpg', 'landmarks': [{'type': 'pole', 'position': {'x': 5, 'y': 6}}],
             'viewpoint': {'direction': 'north', 'elevation': None}},
            {'fileName': 'a.jpg', 'landmarks': []},
        ])
        results = analyzer.extract_spatial_features([make_photo('a.jpg', 1)])

        item = results['a.jpg']
        assert len(item.landmarks) == 1
        assert item.viewpoint.elevation == 'ground'


class TestWorkTypeSelection:
    """Test narrowing the hierarchy from a sample of the photo set."""

    @pytest.fixture
    def analyzer(self, config, orchestrator, vocabulary):
        return VisionLLMAnalyzer(config, orchestrator=orchestrator, vocabulary=vocabulary)

    @pytest.fixture
    def photos(self):
        return [make_photo(f"{i}.jpg", i) for i in range(5)]

    def test_sample_photos(self, photos):
        """Test first, middle and last photos are sampled."""
        assert [p.file_name for p in VisionLLMAnalyzer.sample_photos(photos)] == [
            "0.jpg", "2.jpg", "4.jpg"]
        assert VisionLLMAnalyzer.sample_photos(photos[:2]) == photos[:2]

    def test_selection_keeps_known_names(self, analyzer, service, photos):
        """Test unknown names are dropped and the vocabulary order is kept."""
        service.on(WORK_TYPE_SCHEMA, lambda request: {
            'workTypes': ['排水構造物工', '未知の工種', '舗装工']})

        assert analyzer.select_work_types(photos) == ['舗装工', '排水構造物工']

        request = service.requests[0]
        assert [p.file_name for p in request.batch] == ["0.jpg", "2.jpg", "4.jpg"]
        assert request.system_instruction is None
        assert "3 sample photos" in request.prompt
        assert "安全管理" in request.prompt

    def test_empty_answer_uses_every_work_type(self, analyzer, service, photos, vocabulary):
        service.on(WORK_TYPE_SCHEMA, lambda request: {'workTypes': []})
        assert analyzer.select_work_types(photos) == vocabulary.work_types()

    def test_failure_uses_every_work_type(self, analyzer, service, photos, vocabulary, caplog):
        """Test a failed request is logged and falls back to the full list."""
        service.on(WORK_TYPE_SCHEMA, lambda request: ['舗装工'])
        with caplog.at_level("WARNING"):
            assert analyzer.select_work_types(photos) == vocabulary.work_types()
        assert "Work type selection failed" in caplog.text

    def test_permission_denied_aborts(self, analyzer, service, photos):
        service.on(WORK_TYPE_SCHEMA, lambda request: PermissionDeniedError("403"))
        with pytest.raises(PermissionDeniedError):
            analyzer.select_work_types(photos)

    def test_hierarchy_for(self, analyzer, vocabulary):
        """Test a full selection keeps the vocabulary itself."""
        assert analyzer.hierarchy_for(vocabulary.work_types()) is vocabulary
        assert analyzer.hierarchy_for(['舗装工']).work_types() == ['舗装工']

    def test_analyze_batch_with_narrowed_hierarchy(self, analyzer, service, vocabulary):
        """Test the ledger system prompt lists only the given hierarchy."""
        service.on(LEDGER_SCHEMA, lambda request: [])
        analyzer.analyze_batch([make_photo('a.jpg', 1)], hierarchy=vocabulary.subset(['舗装工']))

        instruction = service.requests[0].system_instruction
        assert '舗装工' in instruction
        assert '道路土工' not in instruction

    def test_selection_model_normalizes_names(self):
        assert WorkTypeSelection(workTypes=[' 舗装工 ', None, 3]).workTypes == ['舗装工', '3']
        assert WorkTypeSelection(workTypes='舗装工').workTypes == []
