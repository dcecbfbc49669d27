from __future__ import annotations


class MimicError(RuntimeError):
    """Base class for failures surfaced to the operator as a single message."""

    default_message = "Engine: Unexpected failure."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class UnreadableFileError(MimicError):
    default_message = "Input Error: File could not be read."


class DecodeFailure(MimicError):
    default_message = "Engine: Decoding failed. Check connection."


class MissingInputError(MimicError):
    default_message = "Input Error: Missing image data."


class MetadataNotReadyError(MimicError):
    default_message = "Engine: Waiting for prompt reconstruction..."


class GenerationFailure(MimicError):
    default_message = "Render Error: engine produced no image."


class EditFailure(MimicError):
    default_message = "Edit Error: Failed to edit image."


class BusyError(MimicError):
    default_message = "Engine: Operation already in progress."


class SaveFailure(MimicError):
    default_message = "Download Error: Could not save the rendered frame."
