"""
Re-render engine: style mimicry with identity preservation on top of Gemini.
"""
from .config import load_config
from .tasks.controller import PipelineController

__all__ = ["load_config", "PipelineController"]
