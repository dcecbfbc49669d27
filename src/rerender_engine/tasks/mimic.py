from __future__ import annotations

import re

from ..clients.gemini import GeminiClient
from ..errors import GenerationFailure, MetadataNotReadyError, MissingInputError
from ..types import AspectRatio, FidelityMode, ImageSlot, StyleMetadata

STYLIZED_PATTERN = re.compile(r"anime|2d|illustration|cartoon|drawing|sketch", re.IGNORECASE)


def is_stylized(art_style: str) -> bool:
    """True when the decoded medium reads as drawn rather than rendered or photographed."""
    return STYLIZED_PATTERN.search(art_style) is not None


def fidelity_instruction(metadata: StyleMetadata, fidelity: FidelityMode) -> str:
    if fidelity is FidelityMode.HARD:
        if is_stylized(metadata.art_style):
            return (
                "TRANSLATE THE USER TO THE STYLE: Do not paste a photo. Draw the user as if they are a "
                f"character in this specific style ({metadata.art_style}). Flatten the skin shading, "
                "enlarge eyes slightly if the style demands it, but keep the user's likeness through "
                "facial structure."
            )
        return (
            f"FULL TRANSFORMATION: The subject MUST be fully converted into the medium of "
            f"'{metadata.art_style}'. Render the subject using the specific textures, skin shaders, "
            "and lighting models of that medium."
        )
    return (
        "REALISTIC ADAPTATION: Keep the subject looking like a real human, but apply cinematic "
        "lighting, props, and environment of the reference. The result should look like a "
        "high-budget live-action adaptation of the style."
    )


def build_mimic_prompt(metadata: StyleMetadata, fidelity: FidelityMode) -> str:
    """Compose the full generation instruction sent verbatim to the image model."""
    return f"""
TASK: Generate a cohesive image merging the STYLE of Image 1 with the IDENTITY of Image 2.

[IDENTITY PRESERVATION BLOCK]
IDENTITY PRIORITY: You must preserve the User's (Image 2) facial structure, eye shape, nose shape, and ethnicity. However, you MUST render these features using the Art Style of Image 1.

[IMAGE 1 - THE BLUEPRINT]
This image dictates the Art Style, Pose, Composition, Lighting, and Background.
- Style Description: {metadata.art_style}
- Required Pose: {metadata.pose_and_gestures}
- Required Composition: {metadata.composition}
- Reference Composition Authority: The Reference Image (Image 1) dictates the scene. If Image 1 has hands or objects covering the face, you MUST draw the User performing that exact pose with the identical occlusion. The hands or objects must cover the user's face exactly as they do in the reference.

[IMAGE 2 - THE ACTOR]
This image dictates the Facial Features and Identity.
- Identity Instructions: Transfer the user's eye shape, nose, mouth, and jawline.
- CRITICAL: Do NOT simply paste Image 2 onto Image 1.
- STYLIZATION: You must paint/render the face of Image 2 to match the specific texture and shading of Image 1.
  - If Image 1 is Anime -> Draw Image 2 as an anime character.
  - If Image 1 is 3D Render -> Render Image 2 with 3D skin textures.
  - If Image 1 is Photoreal -> Keep Image 2 photorealistic but match the lighting.

OUTPUT GOAL: A seamless, single image. No cropping. The result should look like the person in Image 2 is cosplaying or starring in the world of Image 1.

{fidelity_instruction(metadata, fidelity)}
"""


def mimic_style(
    client: GeminiClient,
    ref_image: ImageSlot,
    user_image: ImageSlot,
    metadata: StyleMetadata | None,
    fidelity: FidelityMode,
    aspect_ratio: AspectRatio,
) -> ImageSlot:
    """
    Re-render the subject of ``user_image`` into the world of ``ref_image``.

    Preconditions are checked before the service is contacted. The returned slot
    holds the first inline image of the response.
    """
    if ref_image.is_empty or user_image.is_empty:
        raise MissingInputError()
    if metadata is None:
        raise MetadataNotReadyError()

    prompt = build_mimic_prompt(metadata, fidelity)
    ratio = AspectRatio.SQUARE if aspect_ratio is AspectRatio.AUTO else aspect_ratio

    try:
        result = client.generate(
            ref_image.encoded,
            ref_image.mime_type or "image/png",
            user_image.encoded,
            user_image.mime_type or "image/png",
            prompt,
            ratio.value,
        )
    except Exception as exc:
        raise GenerationFailure(f"Render Error: Generation failed ({exc}).") from exc

    if result is None:
        raise GenerationFailure()
    return result.to_slot()
