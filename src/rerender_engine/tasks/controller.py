from __future__ import annotations

import dataclasses
import threading
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from ..clients.gemini import GeminiClient
from ..config import AppConfig, OutputConfig
from ..errors import BusyError, MetadataNotReadyError, MimicError, MissingInputError, SaveFailure
from ..types import AspectRatio, FidelityMode, ImageSlot, PipelineState
from .aspect import infer_ratio, resolve_ratio
from .decoder import decode_reference_image
from .editor import can_edit, edit_generated_image
from .mimic import is_stylized, mimic_style


class PipelineController:
    """
    Own the session state and drive intake -> decode -> mimic -> edit.

    Every operation reports failures by storing a ``MimicError`` in
    ``state.last_error`` instead of raising. Each collaborator family (decode,
    generate, edit) has a busy flag; a second invocation while that flag is set
    is rejected with ``BusyError``. State is guarded by a re-entrant lock that is
    released while a collaborator call is in flight.

    Calls cannot be aborted once sent. ``cancel()`` (and therefore ``reset()``)
    advances an epoch counter so that calls started earlier have their results
    discarded when they return.
    """

    def __init__(
        self,
        client: GeminiClient,
        config: AppConfig | None = None,
        console: Console | None = None,
    ) -> None:
        self._client = client
        self._output = config.output if config is not None else OutputConfig()
        self._console = console or Console()
        self._state = PipelineState()
        self._lock = threading.RLock()
        self._epoch = 0

    # ------------------------------------------------------------------ #
    # State access
    # ------------------------------------------------------------------ #
    @property
    def state(self) -> PipelineState:
        return self._state

    def snapshot(self) -> PipelineState:
        """Copy of the current state, safe to read while calls are in flight."""
        with self._lock:
            return dataclasses.replace(self._state)

    @property
    def resolved_aspect_ratio(self) -> AspectRatio:
        with self._lock:
            return resolve_ratio(self._state.aspect_ratio, self._state.inferred_aspect_ratio)

    # ------------------------------------------------------------------ #
    # Operator selections
    # ------------------------------------------------------------------ #
    def set_reference_image(self, slot: ImageSlot) -> bool:
        """
        Replace the reference image and decode its visual DNA.

        Metadata and the error are cleared before the decode call is made, so
        no stale description is visible while decoding. Re-selecting the image
        that is already decoded keeps its metadata. Returns ``True`` when
        metadata for the new image is available afterwards.
        """
        with self._lock:
            if self._state.decoding:
                self._fail(BusyError("Engine: Reference decode already in progress."))
                return False
            if not slot.is_empty and slot == self._state.ref_image and self._state.metadata is not None:
                return True
            self._state.ref_image = slot
            self._state.metadata = None
            self._state.last_error = None
            self._state.inferred_aspect_ratio = None
            self._infer_aspect_locked()

        if slot.is_empty:
            return False
        return self._decode_reference()

    def set_user_image(self, slot: ImageSlot) -> None:
        with self._lock:
            self._state.user_image = slot

    def set_fidelity(self, fidelity: FidelityMode) -> None:
        with self._lock:
            self._state.fidelity = fidelity

    def set_aspect_ratio(self, aspect_ratio: AspectRatio) -> None:
        with self._lock:
            self._state.aspect_ratio = aspect_ratio
            self._infer_aspect_locked()

    def set_edit_prompt(self, text: str) -> None:
        with self._lock:
            self._state.edit_prompt = text

    # ------------------------------------------------------------------ #
    # Collaborator-backed transitions
    # ------------------------------------------------------------------ #
    def run_mimic(self) -> bool:
        """Generate a new result from the reference, the subject and the decoded metadata."""
        with self._lock:
            state = self._state
            if state.generating:
                self._fail(BusyError("Engine: Render already in progress."))
                return False
            if state.ref_image.is_empty or state.user_image.is_empty:
                self._fail(MissingInputError())
                return False
            if state.metadata is None:
                self._fail(MetadataNotReadyError())
                return False

            state.generating = True
            state.last_error = None
            epoch = self._epoch
            ref_image, user_image = state.ref_image, state.user_image
            metadata, fidelity = state.metadata, state.fidelity
            ratio = resolve_ratio(state.aspect_ratio, state.inferred_aspect_ratio)

        branch = "stylized" if is_stylized(metadata.art_style) else "non-stylized"
        self._console.print(
            f"[bold cyan]Rendering[/bold cyan] fidelity={fidelity.value} ({branch}) ratio={ratio.value}"
        )

        result: ImageSlot | None = None
        error: MimicError | None = None
        try:
            result = mimic_style(self._client, ref_image, user_image, metadata, fidelity, ratio)
        except MimicError as exc:
            error = exc
        finally:
            with self._lock:
                if epoch == self._epoch:
                    self._state.generating = False

        return self._apply_result(epoch, result, error, clear_prompt=False)

    def run_edit(self, prompt: str | None = None) -> bool:
        """
        Apply an edit instruction on top of the current result.

        Without a populated result or a non-blank instruction this is a no-op.
        """
        with self._lock:
            state = self._state
            if prompt is not None:
                state.edit_prompt = prompt
            instruction = state.edit_prompt
            if not can_edit(state.result_image, instruction):
                return False
            if state.editing:
                self._fail(BusyError("Engine: Edit already in progress."))
                return False

            state.editing = True
            state.last_error = None
            epoch = self._epoch
            current = state.result_image

        self._console.print(f"[bold cyan]Refining[/bold cyan] {escape(repr(instruction))}")

        result: ImageSlot | None = None
        error: MimicError | None = None
        try:
            result = edit_generated_image(self._client, current, instruction)
        except MimicError as exc:
            error = exc
        finally:
            with self._lock:
                if epoch == self._epoch:
                    self._state.editing = False

        return self._apply_result(epoch, result, error, clear_prompt=True)

    # ------------------------------------------------------------------ #
    # Session control
    # ------------------------------------------------------------------ #
    def cancel(self) -> None:
        """Detach in-flight calls; their results are dropped when they return."""
        with self._lock:
            self._epoch += 1
            self._state.decoding = False
            self._state.generating = False
            self._state.editing = False

    def reset(self) -> None:
        """Clear images, metadata and error; fidelity and aspect selections persist."""
        with self._lock:
            self.cancel()
            state = self._state
            state.ref_image = ImageSlot.empty()
            state.user_image = ImageSlot.empty()
            state.result_image = ImageSlot.empty()
            state.metadata = None
            state.inferred_aspect_ratio = None
            state.last_error = None
        self._console.print("[dim]Session reset.[/dim]")

    def save_result(self, path: str | Path | None = None) -> Path | None:
        """Write the current result to ``path`` (or the default download location)."""
        with self._lock:
            result = self._state.result_image
            if result.is_empty:
                self._fail(MissingInputError("Input Error: No rendered frame to save."))
                return None
            target = Path(path) if path is not None else self._output.root_dir / self._output.filename
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(result.data)
            except OSError as exc:
                self._fail(SaveFailure(f"Download Error: Could not save {target} ({exc.strerror or exc})."))
                return None
        self._console.print(f"[green]Frame saved to[/green] {target}")
        return target

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _decode_reference(self) -> bool:
        with self._lock:
            state = self._state
            if state.decoding:
                self._fail(BusyError("Engine: Reference decode already in progress."))
                return False
            state.decoding = True
            state.last_error = None
            epoch = self._epoch
            ref_image = state.ref_image

        self._console.print("[bold cyan]Decoding[/bold cyan] visual DNA from reference image...")

        metadata = None
        error: MimicError | None = None
        try:
            metadata = decode_reference_image(self._client, ref_image)
        except MimicError as exc:
            error = exc
        finally:
            with self._lock:
                if epoch == self._epoch:
                    self._state.decoding = False

        with self._lock:
            if epoch != self._epoch:
                self._console.print("[yellow]Discarding decode result from a cancelled session.[/yellow]")
                return False
            if error is not None:
                self._fail(error)
                return False
            self._state.metadata = metadata
        self._console.print(f"[green]Visual DNA ready:[/green] {escape(metadata.art_style)}")
        return True

    def _apply_result(
        self,
        epoch: int,
        result: ImageSlot | None,
        error: MimicError | None,
        *,
        clear_prompt: bool,
    ) -> bool:
        with self._lock:
            if epoch != self._epoch:
                self._console.print("[yellow]Discarding result from a cancelled session.[/yellow]")
                return False
            if error is not None or result is None:
                self._fail(error or MimicError())
                return False
            self._state.result_image = result
            if clear_prompt:
                self._state.edit_prompt = ""
        self._console.print("[green]Frame updated.[/green]")
        return True

    def _infer_aspect_locked(self) -> None:
        state = self._state
        if state.aspect_ratio is not AspectRatio.AUTO:
            return
        ref = state.ref_image
        if ref.display_url is None or not ref.width or not ref.height:
            return
        state.inferred_aspect_ratio = infer_ratio(ref.width, ref.height)

    def _fail(self, error: MimicError) -> None:
        self._state.last_error = error
        self._console.print(f"[red]{escape(error.message)}[/red]")
