"""
SiteSight: scene pairing and consensus pipeline for construction site photos

Clusters photos of the same location from AI-derived landmarks, selects
before/after pairs for the photo ledger and resolves ambiguous management
points by majority vote over repeated model judgments.
"""

__version__ = "0.1.0"

# Core imports for easy access
from .config import load_config

__all__ = [
    "load_config",
]
