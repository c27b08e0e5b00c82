"""
Scene similarity, clustering and before/after pairing for SiteSight
"""

from .detector import SimilarityDetector, SimilarityBreakdown, similarity
from .clustering import SceneClusterer, normalize_station, explicit_key
from .selector import PairingSelector
from .manager import ScenePairingManager, PairingReport

__all__ = ['SimilarityDetector', 'SimilarityBreakdown', 'similarity',
           'SceneClusterer', 'normalize_station', 'explicit_key',
           'PairingSelector', 'ScenePairingManager', 'PairingReport']
