"""
Photo analysis modules for SiteSight
"""

from .consensus import ConsensusVoter, magi_vote
from .refinement import AnalysisRefiner
from .vision_llm_analyzer import VisionLLMAnalyzer

__all__ = ['ConsensusVoter', 'magi_vote', 'AnalysisRefiner', 'VisionLLMAnalyzer']
