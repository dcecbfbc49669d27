from __future__ import annotations

import json
from typing import Any, Dict

from pydantic import ValidationError

from ..clients.gemini import GeminiClient
from ..errors import DecodeFailure, MissingInputError
from ..types import ImageSlot, StyleMetadata

DECODE_INSTRUCTIONS = (
    "ACT AS A PROMPT ENGINEER. Analyze this image to create a REVERSE-ENGINEERED prompt.\n"
    "Provide a structured JSON response with these keys:\n"
    "- artStyle: The exact medium (e.g., Ufotable 2D anime, Hyper-realistic 3D Unreal Engine render).\n"
    "- outfitDetails: Comprehensive clothing description.\n"
    "- poseAndGestures: Body posture and specific hand gestures.\n"
    "- backgroundElements: Environment and atmosphere.\n"
    "- lightingAndColor: Palette and light source.\n"
    "- composition: Describe framing AND any foreground occlusions (e.g., 'hands clasped over mouth', "
    "'sword blade across eyes', 'magical energy obscuring jawline'). This is CRITICAL for reconstruction."
)

METADATA_FIELDS = (
    "artStyle",
    "outfitDetails",
    "poseAndGestures",
    "backgroundElements",
    "lightingAndColor",
    "composition",
)


def metadata_schema() -> Dict[str, Any]:
    """Response schema forcing all six visual DNA fields."""
    return {
        "type": "OBJECT",
        "properties": {name: {"type": "STRING"} for name in METADATA_FIELDS},
        "required": list(METADATA_FIELDS),
    }


def parse_metadata(text: str) -> StyleMetadata:
    """Validate the decoder's JSON text; a missing or non-string field is a failure."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DecodeFailure(f"Engine: Decoder returned invalid JSON ({exc.msg}).") from exc
    if not isinstance(payload, dict):
        raise DecodeFailure("Engine: Decoder returned an unexpected payload.")
    try:
        return StyleMetadata.model_validate(payload, strict=True)
    except ValidationError as exc:
        fields = ", ".join(sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]}))
        raise DecodeFailure(f"Engine: Decoder response incomplete ({fields}).") from exc


def decode_reference_image(client: GeminiClient, image: ImageSlot) -> StyleMetadata:
    """
    Reverse-engineer the visual DNA of a reference image.

    Raises
    ------
    MissingInputError
        If the slot holds no payload.
    DecodeFailure
        On any transport, HTTP or parse failure. No retry is attempted here.
    """
    if image.is_empty or image.mime_type is None:
        raise MissingInputError()
    try:
        text = client.decode(image.encoded, image.mime_type, DECODE_INSTRUCTIONS, metadata_schema())
    except Exception as exc:
        raise DecodeFailure() from exc
    return parse_metadata(text)
