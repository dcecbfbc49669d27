from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .errors import MimicError


class FidelityMode(str, Enum):
    """How far the subject is pulled into the reference medium."""

    HARD = "Hard Style"
    REALISTIC = "Realistic Blend"


class AspectRatio(str, Enum):
    """Output dimensions; AUTO means "infer from the reference image"."""

    AUTO = "AUTO"
    SQUARE = "1:1"
    POSTER = "3:4"
    LANDSCAPE = "4:3"
    PORTRAIT = "9:16"
    WIDESCREEN = "16:9"


@dataclass(frozen=True, slots=True)
class ImageSlot:
    """A single image held in memory."""

    data: bytes | None = None
    mime_type: str | None = None
    width: int | None = None
    height: int | None = None

    @classmethod
    def empty(cls) -> "ImageSlot":
        return cls()

    @classmethod
    def from_base64(cls, encoded: str, mime_type: str) -> "ImageSlot":
        return cls(data=base64.b64decode(encoded), mime_type=mime_type)

    @property
    def is_empty(self) -> bool:
        return self.data is None

    @property
    def encoded(self) -> str | None:
        """Base64 text of the payload, as sent to the service."""
        if self.data is None:
            return None
        return base64.b64encode(self.data).decode("utf-8")

    @property
    def display_url(self) -> str | None:
        """Directly renderable data URL; present only when both parts are known."""
        if self.data is None or self.mime_type is None:
            return None
        return f"data:{self.mime_type};base64,{self.encoded}"


class StyleMetadata(BaseModel):
    """Visual DNA decoded from a reference image."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    art_style: str = Field(..., alias="artStyle", description="Exact medium of the reference")
    outfit_details: str = Field(..., alias="outfitDetails", description="Comprehensive clothing description")
    pose_and_gestures: str = Field(
        ..., alias="poseAndGestures", description="Body posture and specific hand gestures"
    )
    background_elements: str = Field(
        ..., alias="backgroundElements", description="Environment and atmosphere"
    )
    lighting_and_color: str = Field(..., alias="lightingAndColor", description="Palette and light source")
    composition: str = Field(..., description="Framing and any foreground occlusions")


@dataclass(slots=True)
class PipelineState:
    """Everything the controller tracks for one session."""

    ref_image: ImageSlot = field(default_factory=ImageSlot.empty)
    user_image: ImageSlot = field(default_factory=ImageSlot.empty)
    result_image: ImageSlot = field(default_factory=ImageSlot.empty)
    metadata: StyleMetadata | None = None
    fidelity: FidelityMode = FidelityMode.REALISTIC
    aspect_ratio: AspectRatio = AspectRatio.AUTO
    inferred_aspect_ratio: AspectRatio | None = None
    decoding: bool = False
    generating: bool = False
    editing: bool = False
    last_error: MimicError | None = None
    edit_prompt: str = ""

    @property
    def error_message(self) -> str | None:
        return None if self.last_error is None else self.last_error.message

    @property
    def busy(self) -> bool:
        return self.decoding or self.generating or self.editing


@dataclass(slots=True)
class GenerationResult:
    """Represents the first inline image a collaborator call returned."""

    image_bytes: bytes
    mime_type: str

    def to_slot(self) -> ImageSlot:
        return ImageSlot(data=self.image_bytes, mime_type=self.mime_type)
