from __future__ import annotations

import io
import mimetypes
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from ..errors import UnreadableFileError
from ..types import ImageSlot


@dataclass(frozen=True, slots=True)
class IntakeResult:
    """Raw payload read from a selected file."""

    data: bytes
    mime_type: str
    width: int | None = None
    height: int | None = None

    def to_slot(self) -> ImageSlot:
        return ImageSlot(
            data=self.data,
            mime_type=self.mime_type,
            width=self.width,
            height=self.height,
        )


def sniff_mime_type(data: bytes) -> str:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data.startswith(b"GIF8"):
        return "image/gif"
    if data[:2] == b"BM":
        return "image/bmp"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "application/octet-stream"


def read_dimensions(data: bytes) -> tuple[int, int] | None:
    """Pixel size of an image payload, or ``None`` when Pillow cannot identify it."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError):
        return None


def select_bytes(data: bytes, mime_type: str | None = None) -> IntakeResult:
    """Wrap an in-memory payload; no validation of the image content is performed."""
    size = read_dimensions(data)
    width, height = size if size else (None, None)
    return IntakeResult(
        data=data,
        mime_type=mime_type or sniff_mime_type(data),
        width=width,
        height=height,
    )


def select_file(path: str | Path) -> IntakeResult:
    """
    Read a locally selected file as binary.

    Any readable file is accepted; the MIME type comes from the extension and
    falls back to the file's magic bytes.

    Raises
    ------
    UnreadableFileError
        If the file is missing, is a directory or cannot be opened.
    """
    file_path = Path(path).expanduser()
    try:
        data = file_path.read_bytes()
    except OSError as exc:
        raise UnreadableFileError(f"Input Error: Could not read {file_path} ({exc.strerror or exc}).") from exc

    guessed, _ = mimetypes.guess_type(file_path.name)
    return select_bytes(data, guessed)
