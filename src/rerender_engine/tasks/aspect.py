from __future__ import annotations

from ..types import AspectRatio

WIDE_THRESHOLD = 1.2
TALL_THRESHOLD = 0.8


def infer_ratio(width: int, height: int) -> AspectRatio:
    """Classify pixel dimensions into an output ratio; exact bounds fall into 1:1."""
    ratio = width / height
    if ratio > WIDE_THRESHOLD:
        return AspectRatio.WIDESCREEN
    if ratio < TALL_THRESHOLD:
        return AspectRatio.PORTRAIT
    return AspectRatio.SQUARE


def resolve_ratio(selection: AspectRatio, inferred: AspectRatio | None = None) -> AspectRatio:
    """Concrete ratio for a request: manual selection, then inferred value, then 1:1."""
    if selection is not AspectRatio.AUTO:
        return selection
    if inferred is not None and inferred is not AspectRatio.AUTO:
        return inferred
    return AspectRatio.SQUARE
