"""
Data models for the scene pairing and consensus pipeline.

Photo records are owned by a single pipeline run. Analyses carry the
AI-derived ledger fields, the spatial features used for scene matching,
and the results of clustering and consensus voting.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class PhotoStatus(str, Enum):
    """Processing status of a photo record."""
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class Phase(str, Enum):
    """Stage of a photo in the construction timeline."""
    BEFORE = "before"
    AFTER = "after"
    STATUS = "status"
    UNKNOWN = "unknown"


class GroundCondition(str, Enum):
    """Coarse construction progress of the photographed surface."""
    UNPAVED = "unpaved"
    UNDER_CONSTRUCTION = "under_construction"
    PAVED = "paved"

    @classmethod
    def parse(cls, value: Any) -> Optional['GroundCondition']:
        if value is None or isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower().replace('-', '_').replace(' ', '_'))
        except ValueError:
            return None


class LandmarkCategory(str, Enum):
    """Closed set of static background features."""
    BUILDING = "building"
    POLE = "pole"
    SIGN = "sign"
    FENCE = "fence"
    WALL = "wall"
    TREE = "tree"
    ROAD_EDGE = "road_edge"

    @classmethod
    def parse(cls, value: Any) -> Optional['LandmarkCategory']:
        if value is None or isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower().replace('-', '_'))
        except ValueError:
            return None


def _clamp(value: Any, low: float, high: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return low
    return max(low, min(high, number))


@dataclass(frozen=True)
class Landmark:
    """
    One static background feature on a 100x100 image grid.

    Coordinates and sizes are clamped to [0, 100], confidence to [0, 1].
    """
    category: LandmarkCategory
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0
    description: str = ""
    confidence: float = 1.0

    def __post_init__(self):
        object.__setattr__(self, 'x', _clamp(self.x, 0.0, 100.0))
        object.__setattr__(self, 'y', _clamp(self.y, 0.0, 100.0))
        object.__setattr__(self, 'width', _clamp(self.width, 0.0, 100.0))
        object.__setattr__(self, 'height', _clamp(self.height, 0.0, 100.0))
        object.__setattr__(self, 'confidence', _clamp(self.confidence, 0.0, 1.0))

    def label(self) -> str:
        """Human readable justification line."""
        return f"{self.category.value}: {self.description} (x={self.x:g}, y={self.y:g})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.category.value,
            'position': {'x': self.x, 'y': self.y},
            'size': {'width': self.width, 'height': self.height},
            'description': self.description,
            'confidence': self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional['Landmark']:
        category = LandmarkCategory.parse(data.get('type') or data.get('category'))
        if category is None:
            return None
        position = data.get('position') or {}
        size = data.get('size') or {}
        return cls(
            category=category,
            x=position.get('x', data.get('x', 0.0)),
            y=position.get('y', data.get('y', 0.0)),
            width=size.get('width', data.get('width', 0.0)),
            height=size.get('height', data.get('height', 0.0)),
            description=data.get('description') or "",
            confidence=data.get('confidence', 1.0),
        )


@dataclass(frozen=True)
class Viewpoint:
    """Estimated camera viewpoint."""
    direction: str = "unknown"
    elevation: str = "ground"
    fov: str = "normal"

    @property
    def is_known(self) -> bool:
        return bool(self.direction) and self.direction != "unknown"


@dataclass
class Analysis:
    """
    AI-derived structured metadata attached to a photo record.

    ``scene_id`` and ``phase`` are written together: a clustering decision
    is atomic, so an analysis never carries one without the other.
    """
    work_type: str = ""
    variety: str = ""
    detail: str = ""
    station: str = ""
    remarks: str = ""
    description: str = ""
    has_board: bool = False
    detected_text: str = ""
    scene_id: Optional[str] = None
    phase: Optional[Phase] = None
    visual_anchors: str = ""

    # Spatial features
    landmarks: List[Landmark] = field(default_factory=list)
    viewpoint: Optional[Viewpoint] = None
    ground_condition: Optional[GroundCondition] = None
    signature: str = ""

    # Consensus voting
    management_point: Optional[str] = None
    consensus_votes: List[str] = field(default_factory=list)
    consensus_unanimous: Optional[bool] = None

    def __post_init__(self):
        if self.phase is not None and not isinstance(self.phase, Phase):
            self.phase = Phase(self.phase)
        self.ground_condition = GroundCondition.parse(self.ground_condition)
        if (self.scene_id is None) != (self.phase is None):
            raise ValueError("scene_id and phase must be set together")

    def assign_scene(self, scene_id: str, phase: Union[Phase, str]) -> None:
        """Record a clustering decision."""
        if not scene_id:
            raise ValueError("scene_id must be a non-empty string")
        self.scene_id = scene_id
        self.phase = Phase(phase)

    def clear_scene(self) -> None:
        self.scene_id = None
        self.phase = None

    @property
    def has_spatial_features(self) -> bool:
        return bool(self.landmarks) or self.ground_condition is not None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'workType': self.work_type,
            'variety': self.variety,
            'detail': self.detail,
            'station': self.station,
            'remarks': self.remarks,
            'description': self.description,
            'hasBoard': self.has_board,
            'detectedText': self.detected_text,
            'sceneId': self.scene_id,
            'phase': self.phase.value if self.phase else None,
            'visualAnchors': self.visual_anchors,
            'landmarks': [landmark.to_dict() for landmark in self.landmarks],
            'groundCondition': self.ground_condition.value if self.ground_condition else None,
            'signature': self.signature,
        }
        if self.viewpoint is not None:
            data['viewpoint'] = {
                'direction': self.viewpoint.direction,
                'elevation': self.viewpoint.elevation,
                'fov': self.viewpoint.fov,
            }
        if self.management_point is not None or self.consensus_votes:
            data['managementPoint'] = self.management_point
            data['magiVotes'] = list(self.consensus_votes)
            data['magiUnanimous'] = self.consensus_unanimous
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Analysis':
        landmarks = []
        for item in data.get('landmarks') or []:
            landmark = Landmark.from_dict(item)
            if landmark is not None:
                landmarks.append(landmark)

        viewpoint = None
        if isinstance(data.get('viewpoint'), dict):
            vp = data['viewpoint']
            viewpoint = Viewpoint(
                direction=vp.get('direction') or "unknown",
                elevation=vp.get('elevation') or "ground",
                fov=vp.get('fov') or "normal",
            )

        scene_id = data.get('sceneId') or None
        phase = data.get('phase') or None
        if scene_id is None or phase is None:
            # A half-written clustering decision is discarded as a whole
            scene_id, phase = None, None

        return cls(
            work_type=data.get('workType') or "",
            variety=data.get('variety') or "",
            detail=data.get('detail') or "",
            station=data.get('station') or "",
            remarks=data.get('remarks') or "",
            description=data.get('description') or "",
            has_board=bool(data.get('hasBoard', False)),
            detected_text=data.get('detectedText') or "",
            scene_id=scene_id,
            phase=phase,
            visual_anchors=data.get('visualAnchors') or "",
            landmarks=landmarks,
            viewpoint=viewpoint,
            ground_condition=data.get('groundCondition'),
            signature=data.get('signature') or "",
            management_point=data.get('managementPoint'),
            consensus_votes=list(data.get('magiVotes') or []),
            consensus_unanimous=data.get('magiUnanimous'),
        )


@dataclass
class PhotoRecord:
    """
    One ingested photograph.

    ``payload`` is a handle owned by the payload collaborator (normally a
    file path). It is referenced, never duplicated.
    """
    file_name: str
    payload: Any = None
    captured_at: Optional[int] = None
    modified_at: Optional[int] = None
    file_size: Optional[int] = None
    mime_type: str = "image/jpeg"
    status: PhotoStatus = PhotoStatus.PENDING
    analysis: Optional[Analysis] = None
    from_cache: bool = False

    @property
    def date(self) -> int:
        """Capture timestamp in epoch millis, falling back to file mtime."""
        if self.captured_at is not None:
            return self.captured_at
        if self.modified_at is not None:
            return self.modified_at
        return 0

    def copy(self) -> 'PhotoRecord':
        """Working-set copy: analysis is deep-copied, payload is shared."""
        return PhotoRecord(
            file_name=self.file_name,
            payload=self.payload,
            captured_at=self.captured_at,
            modified_at=self.modified_at,
            file_size=self.file_size,
            mime_type=self.mime_type,
            status=self.status,
            analysis=copy.deepcopy(self.analysis),
            from_cache=self.from_cache,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'fileName': self.file_name,
            'date': self.captured_at,
            'lastModified': self.modified_at,
            'fileSize': self.file_size,
            'mimeType': self.mime_type,
            'status': self.status.value,
            'fromCache': self.from_cache,
            'analysis': self.analysis.to_dict() if self.analysis else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], payload: Any = None) -> 'PhotoRecord':
        analysis = data.get('analysis')
        return cls(
            file_name=data['fileName'],
            payload=payload,
            captured_at=data.get('date'),
            modified_at=data.get('lastModified'),
            file_size=data.get('fileSize'),
            mime_type=data.get('mimeType') or "image/jpeg",
            status=PhotoStatus(data.get('status') or PhotoStatus.PENDING.value),
            analysis=Analysis.from_dict(analysis) if analysis else None,
            from_cache=bool(data.get('fromCache', False)),
        )


@dataclass(frozen=True)
class Cluster:
    """Photos believed to depict the same physical location."""
    key: str
    members: Tuple[PhotoRecord, ...]
    strategy: str = "similarity"

    def __len__(self) -> int:
        return len(self.members)


@dataclass
class ClusteringResult:
    """Clusters of two or more photos plus everything left unclustered."""
    clusters: List[Cluster] = field(default_factory=list)
    orphans: List[PhotoRecord] = field(default_factory=list)

    def __iter__(self):
        return iter(self.clusters)

    def __len__(self) -> int:
        return len(self.clusters)


@dataclass
class Pair:
    """
    Before/after representatives of one cluster.

    ``extras`` holds the cluster members that were not chosen; they stay
    attributed to the cluster and are not counted as omitted.
    """
    before: PhotoRecord
    after: PhotoRecord
    similarity: float
    matched_landmarks: List[str] = field(default_factory=list)
    rule: int = 1
    low_confidence: bool = False
    note: str = ""
    extras: List[PhotoRecord] = field(default_factory=list)
    cluster_key: str = ""


@dataclass
class Omitted:
    """A cluster (or set of photos) that could not produce a pair."""
    reason: str
    members: List[PhotoRecord] = field(default_factory=list)


@dataclass
class StrictSequence:
    """Output of the strict pair-only ordering policy."""
    photos: List[PhotoRecord] = field(default_factory=list)
    pairs: List[Tuple[PhotoRecord, PhotoRecord]] = field(default_factory=list)
    omitted: List[PhotoRecord] = field(default_factory=list)

    @property
    def pair_count(self) -> int:
        return len(self.pairs)

    @property
    def omitted_count(self) -> int:
        return len(self.omitted)


@dataclass
class ConsensusOutcome:
    """Majority decision for one target photo."""
    value: Optional[str]
    votes: List[str] = field(default_factory=list)
    unanimous: bool = False
    changed: bool = True
