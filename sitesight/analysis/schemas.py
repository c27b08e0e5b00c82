"""
Response schemas for vision-language analysis calls.

Each call sends a Gemini response schema and validates the returned items
one by one with the pydantic models below. An item that fails validation
is skipped, never coerced into a guess.
"""

import logging
from pydantic import BaseModel, Field, validator, ValidationError
from typing import Any, Dict, List, Optional, Type

from ..models import (
    Analysis, GroundCondition, Landmark, LandmarkCategory, Viewpoint,
)

logger = logging.getLogger(__name__)


def _blank_to_empty(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class LedgerItem(BaseModel):
    """One photo ledger entry returned by the classification call"""
    fileName: str = Field(min_length=1)
    workType: str = ""
    variety: str = ""
    detail: str = ""
    station: str = ""
    remarks: str = ""
    description: str = ""
    hasBoard: bool = False
    detectedText: str = ""

    @validator('workType', 'variety', 'detail', 'station', 'remarks',
               'description', 'detectedText', pre=True)
    def none_to_empty(cls, v):
        return _blank_to_empty(v)

    @validator('hasBoard', pre=True)
    def none_to_false(cls, v):
        return False if v is None else v

    def to_analysis(self) -> Analysis:
        return Analysis(
            work_type=self.workType.strip(),
            variety=self.variety.strip(),
            detail=self.detail.strip(),
            station=self.station.strip(),
            remarks=self.remarks.strip(),
            description=self.description.strip(),
            has_board=self.hasBoard,
            detected_text=self.detectedText,
        )


class PositionItem(BaseModel):
    x: float = 0.0
    y: float = 0.0


class SizeItem(BaseModel):
    width: float = 0.0
    height: float = 0.0


class LandmarkItem(BaseModel):
    """A static background feature on the 100x100 grid"""
    type: str
    position: PositionItem = Field(default_factory=PositionItem)
    size: SizeItem = Field(default_factory=SizeItem)
    description: str = ""
    confidence: float = 1.0

    @validator('type')
    def known_category(cls, v):
        if LandmarkCategory.parse(v) is None:
            raise ValueError(f"unknown landmark category: {v}")
        return v

    @validator('description', pre=True)
    def none_to_empty(cls, v):
        return _blank_to_empty(v)

    def to_landmark(self) -> Landmark:
        return Landmark(
            category=LandmarkCategory.parse(self.type),
            x=self.position.x,
            y=self.position.y,
            width=self.size.width,
            height=self.size.height,
            description=self.description,
            confidence=self.confidence,
        )


class ViewpointItem(BaseModel):
    direction: str = "unknown"
    elevation: str = "ground"
    fov: str = "normal"

    @validator('direction', pre=True)
    def unknown_direction(cls, v):
        return v or "unknown"

    @validator('elevation', pre=True)
    def ground_elevation(cls, v):
        return v or "ground"

    @validator('fov', pre=True)
    def normal_fov(cls, v):
        return v or "normal"


class SpatialItem(BaseModel):
    """Spatial features of one photo"""
    fileName: str = Field(min_length=1)
    landmarks: List[LandmarkItem] = Field(default_factory=list)
    viewpoint: Optional[ViewpointItem] = None
    groundCondition: Optional[str] = None
    signature: str = ""

    @validator('landmarks', pre=True)
    def drop_unknown_landmarks(cls, v):
        # Unknown categories are dropped individually instead of failing the photo
        if not isinstance(v, list):
            return []
        return [item for item in v
                if isinstance(item, dict)
                and LandmarkCategory.parse(item.get('type')) is not None]

    @validator('groundCondition', pre=True)
    def known_condition(cls, v):
        condition = GroundCondition.parse(v)
        return condition.value if condition else None

    @validator('signature', pre=True)
    def none_to_empty(cls, v):
        return _blank_to_empty(v)

    def apply_to(self, analysis: Analysis) -> None:
        """Copy the spatial features onto an existing analysis"""
        analysis.landmarks = [item.to_landmark() for item in self.landmarks]
        if self.viewpoint is not None:
            analysis.viewpoint = Viewpoint(
                direction=self.viewpoint.direction,
                elevation=self.viewpoint.elevation,
                fov=self.viewpoint.fov,
            )
        analysis.ground_condition = GroundCondition.parse(self.groundCondition)
        analysis.signature = self.signature


class ManagementPointItem(BaseModel):
    """One consensus vote: the management point measured in a photo"""
    fileName: str = Field(min_length=1)
    photoType: Optional[str] = None
    managementPoint: Optional[str] = None
    measureType: Optional[str] = None

    @validator('managementPoint', pre=True)
    def blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        if not v or v.lower() in ('null', 'none'):
            return None
        return v


class WorkTypeSelection(BaseModel):
    """Work types the model sees in a sample of the photo set"""
    workTypes: List[str] = Field(default_factory=list)

    @validator('workTypes', pre=True)
    def names_only(cls, v):
        if not isinstance(v, list):
            return []
        return [str(name).strip() for name in v if isinstance(name, (str, int, float))]


class DescriptionCheckItem(BaseModel):
    """A checked description for one as-built measurement photo"""
    fileName: str = Field(min_length=1)
    description: str = ""
    changed: bool = False
    reason: str = ""

    @validator('description', 'reason', pre=True)
    def none_to_empty(cls, v):
        return _blank_to_empty(v)

    @validator('changed', pre=True)
    def none_to_false(cls, v):
        return False if v is None else v


def validate_items(items: List[Any], model: Type[BaseModel]) -> List[BaseModel]:
    """
    Validate raw response items, skipping the ones that do not conform

    Args:
        items: Parsed JSON items
        model: Pydantic model for one item

    Returns:
        Validated items in response order
    """
    validated = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            logger.warning(f"Skipping response item {index}: expected an object")
            continue
        try:
            validated.append(model(**item))
        except ValidationError as e:
            logger.warning(f"Skipping invalid response item {index} "
                           f"({item.get('fileName', '?')}): {e}")
    return validated


# Gemini response schemas (OpenAPI subset)

LEDGER_SCHEMA: Dict[str, Any] = {
    'type': 'ARRAY',
    'items': {
        'type': 'OBJECT',
        'properties': {
            'fileName': {'type': 'STRING'},
            'workType': {'type': 'STRING'},
            'variety': {'type': 'STRING'},
            'detail': {'type': 'STRING'},
            'station': {'type': 'STRING'},
            'remarks': {'type': 'STRING'},
            'description': {'type': 'STRING'},
            'hasBoard': {'type': 'BOOLEAN'},
            'detectedText': {'type': 'STRING'},
        },
        'required': ['fileName', 'workType', 'station', 'description'],
    },
}

SPATIAL_SCHEMA: Dict[str, Any] = {
    'type': 'ARRAY',
    'items': {
        'type': 'OBJECT',
        'properties': {
            'fileName': {'type': 'STRING'},
            'landmarks': {
                'type': 'ARRAY',
                'items': {
                    'type': 'OBJECT',
                    'properties': {
                        'type': {'type': 'STRING'},
                        'position': {
                            'type': 'OBJECT',
                            'properties': {
                                'x': {'type': 'NUMBER'},
                                'y': {'type': 'NUMBER'},
                            },
                            'required': ['x', 'y'],
                        },
                        'size': {
                            'type': 'OBJECT',
                            'properties': {
                                'width': {'type': 'NUMBER'},
                                'height': {'type': 'NUMBER'},
                            },
                        },
                        'description': {'type': 'STRING'},
                        'confidence': {'type': 'NUMBER'},
                    },
                    'required': ['type', 'position'],
                },
            },
            'viewpoint': {
                'type': 'OBJECT',
                'properties': {
                    'direction': {'type': 'STRING'},
                    'elevation': {'type': 'STRING'},
                    'fov': {'type': 'STRING'},
                },
            },
            'groundCondition': {'type': 'STRING'},
            'signature': {'type': 'STRING'},
        },
        'required': ['fileName', 'landmarks'],
    },
}

MANAGEMENT_POINT_SCHEMA: Dict[str, Any] = {
    'type': 'OBJECT',
    'properties': {
        'analysis': {
            'type': 'ARRAY',
            'items': {
                'type': 'OBJECT',
                'properties': {
                    'fileName': {'type': 'STRING'},
                    'photoType': {'type': 'STRING'},
                    'managementPoint': {'type': 'STRING', 'nullable': True},
                    'measureType': {'type': 'STRING'},
                },
                'required': ['fileName'],
            },
        },
    },
    'required': ['analysis'],
}

WORK_TYPE_SCHEMA: Dict[str, Any] = {
    'type': 'OBJECT',
    'properties': {
        'workTypes': {'type': 'ARRAY', 'items': {'type': 'STRING'}},
    },
    'required': ['workTypes'],
}

DESCRIPTION_CHECK_SCHEMA: Dict[str, Any] = {
    'type': 'OBJECT',
    'properties': {
        'verified': {
            'type': 'ARRAY',
            'items': {
                'type': 'OBJECT',
                'properties': {
                    'fileName': {'type': 'STRING'},
                    'description': {'type': 'STRING'},
                    'changed': {'type': 'BOOLEAN'},
                    'reason': {'type': 'STRING'},
                },
                'required': ['fileName', 'description'],
            },
        },
    },
    'required': ['verified'],
}
