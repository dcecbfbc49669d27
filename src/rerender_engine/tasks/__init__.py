"""
Pipeline steps and the controller that sequences them.
"""
from .aspect import infer_ratio, resolve_ratio
from .controller import PipelineController
from .decoder import decode_reference_image
from .editor import edit_generated_image
from .intake import IntakeResult, select_bytes, select_file
from .mimic import build_mimic_prompt, is_stylized, mimic_style

__all__ = [
    "PipelineController",
    "IntakeResult",
    "select_file",
    "select_bytes",
    "infer_ratio",
    "resolve_ratio",
    "decode_reference_image",
    "mimic_style",
    "build_mimic_prompt",
    "is_stylized",
    "edit_generated_image",
]
