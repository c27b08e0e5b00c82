"""
Shared fixtures and factories for SiteSight tests.
"""

import json
import logging
from typing import Callable, Dict, List, Optional

import pytest

from sitesight.analysis.schemas import LEDGER_SCHEMA, MANAGEMENT_POINT_SCHEMA, SPATIAL_SCHEMA
from sitesight.config import get_default_config
from sitesight.inference.orchestrator import InferenceOrchestrator, InferenceRequest, RetryPolicy
from sitesight.models import (
    Analysis, GroundCondition, Landmark, LandmarkCategory, PhotoRecord, Viewpoint,
)
from sitesight.vocabulary import WorkHierarchy

DAY = 24 * 60 * 60 * 1000


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """Keep root logger level/handlers from leaking between tests."""
    root = logging.getLogger()
    level, handlers = root.level, list(root.handlers)
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)


def make_landmark(category: str = "building", x: float = 50.0, y: float = 50.0,
                  width: float = 10.0, height: float = 10.0,
                  description: str = "") -> Landmark:
    return Landmark(
        category=LandmarkCategory(category),
        x=x, y=y, width=width, height=height,
        description=description or f"{category} at {x},{y}",
    )


def site_landmarks(offset: float = 0.0) -> List[Landmark]:
    """Three landmarks of one location, optionally shifted a little."""
    return [
        make_landmark("building", 20 + offset, 30, 25, 40, "red roof house"),
        make_landmark("pole", 60 + offset, 40, 3, 50, "utility pole"),
        make_landmark("fence", 80 + offset, 70, 30, 8, "mesh fence"),
    ]


def other_landmarks() -> List[Landmark]:
    """Landmarks of a different location."""
    return [
        make_landmark("wall", 10, 80, 40, 10, "retaining wall"),
        make_landmark("tree", 90, 20, 10, 30, "pine tree"),
    ]


def make_analysis(landmarks: Optional[List[Landmark]] = None,
                  ground: Optional[str] = None,
                  station: str = "",
                  direction: str = "unknown",
                  **fields) -> Analysis:
    analysis = Analysis(
        landmarks=list(landmarks or []),
        ground_condition=GroundCondition(ground) if ground else None,
        station=station,
        viewpoint=Viewpoint(direction=direction),
        **fields,
    )
    return analysis


def make_photo(name: str, day: int = 0, analysis: Optional[Analysis] = None,
               **fields) -> PhotoRecord:
    return PhotoRecord(
        file_name=name,
        payload=b"jpeg-bytes",
        captured_at=day * DAY,
        modified_at=day * DAY,
        file_size=1000 + day,
        analysis=analysis,
        **fields,
    )


class ScriptedService:
    """
    Stand-in for the vision service

    Answers each request from the responder registered for its schema and
    records every request it receives.
    """

    def __init__(self):
        self.requests: List[InferenceRequest] = []
        self.responders: Dict[int, Callable[[InferenceRequest], object]] = {}

    def on(self, schema: Dict, responder: Callable[[InferenceRequest], object]) -> None:
        self.responders[id(schema)] = responder

    def __call__(self, request: InferenceRequest) -> str:
        self.requests.append(request)
        result = self.responders[id(request.schema)](request)
        if isinstance(result, BaseException):
            raise result
        return json.dumps(result, ensure_ascii=False)

    def requests_for(self, schema: Dict) -> List[InferenceRequest]:
        return [r for r in self.requests if r.schema is schema]


@pytest.fixture
def config():
    """Default configuration without file or network dependencies."""
    return get_default_config()


@pytest.fixture
def vocabulary():
    """Bundled work hierarchy."""
    return WorkHierarchy.load()


@pytest.fixture
def service():
    return ScriptedService()


@pytest.fixture
def orchestrator(service):
    """Orchestrator over the scripted service that never sleeps."""
    return InferenceOrchestrator(
        call=service,
        policy=RetryPolicy(primary_model="primary", fallback_model="fallback"),
        sleep=lambda seconds: None,
    )


__all__ = [
    'DAY', 'LEDGER_SCHEMA', 'MANAGEMENT_POINT_SCHEMA', 'SPATIAL_SCHEMA',
    'ScriptedService', 'make_analysis', 'make_landmark', 'make_photo',
    'other_landmarks', 'site_landmarks',
]
