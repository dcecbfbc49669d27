from __future__ import annotations

import io
import json
from typing import Any, Callable

import pytest
from PIL import Image
from rich.console import Console

from rerender_engine.tasks.controller import PipelineController
from rerender_engine.types import GenerationResult, ImageSlot

ANIME_METADATA = {
    "artStyle": "Ufotable 2D anime",
    "outfitDetails": "black high-collar school uniform",
    "poseAndGestures": "hands forming a sign in front of the face",
    "backgroundElements": "ruined shrine at dusk",
    "lightingAndColor": "purple rim light, teal shadows",
    "composition": "medium shot, fingers covering the mouth",
}


def make_png(width: int, height: int, color: tuple[int, int, int] = (200, 40, 90)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_slot(width: int = 64, height: int = 64) -> ImageSlot:
    return ImageSlot(data=make_png(width, height), mime_type="image/png", width=width, height=height)


def image_result(marker: bytes) -> GenerationResult:
    return GenerationResult(image_bytes=marker, mime_type="image/png")


class FakeCollaborator:
    """In-memory stand-in for the Gemini client that records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.decode_response: Any = json.dumps(ANIME_METADATA)
        self.generate_response: Any = image_result(b"generated")
        self.edit_response: Any = image_result(b"edited")
        self.on_decode: Callable[[], None] | None = None
        self.on_generate: Callable[[], None] | None = None
        self.on_edit: Callable[[], None] | None = None

    def _respond(self, response: Any) -> Any:
        if isinstance(response, Exception):
            raise response
        return response

    def decode(self, image_b64, mime_type, instructions, schema):
        self.calls.append(("decode", {"image": image_b64, "mime_type": mime_type, "schema": schema}))
        if self.on_decode:
            self.on_decode()
        return self._respond(self.decode_response)

    def generate(self, ref_b64, ref_mime, user_b64, user_mime, prompt, aspect_ratio):
        self.calls.append(
            (
                "generate",
                {"ref": ref_b64, "user": user_b64, "prompt": prompt, "aspect_ratio": aspect_ratio},
            )
        )
        if self.on_generate:
            self.on_generate()
        return self._respond(self.generate_response)

    def edit(self, image_b64, mime_type, prompt):
        self.calls.append(("edit", {"image": image_b64, "prompt": prompt}))
        if self.on_edit:
            self.on_edit()
        return self._respond(self.edit_response)

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def collaborator() -> FakeCollaborator:
    return FakeCollaborator()


@pytest.fixture
def controller(collaborator: FakeCollaborator) -> PipelineController:
    return PipelineController(collaborator, console=Console(quiet=True))
