"""
Photo ordering for SiteSight albums
"""

from .phase import phase_score
from .sequencer import PhotoSequencer, sort_loose, sort_strict_pairs

__all__ = ['phase_score', 'PhotoSequencer', 'sort_loose', 'sort_strict_pairs']
