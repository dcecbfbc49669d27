"""
Client adapter for the Gemini generative image service.
"""
from .gemini import GeminiClient

__all__ = ["GeminiClient"]
