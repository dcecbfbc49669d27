from __future__ import annotations

from ..clients.gemini import GeminiClient
from ..errors import EditFailure
from ..types import ImageSlot


def can_edit(current: ImageSlot, instruction: str | None) -> bool:
    return not current.is_empty and bool(instruction and instruction.strip())


def edit_generated_image(client: GeminiClient, current: ImageSlot, instruction: str) -> ImageSlot:
    """Apply ``instruction`` on top of the current result and return the replacement image."""
    try:
        result = client.edit(current.encoded, current.mime_type or "image/png", instruction)
    except Exception as exc:
        raise EditFailure(f"Edit failed ({exc}).") from exc
    if result is None:
        raise EditFailure()
    return result.to_slot()
