"""
Vision-language service providers
"""

from .gemini_vision import GeminiVisionProvider, classify_gemini_error

__all__ = ['GeminiVisionProvider', 'classify_gemini_error']
