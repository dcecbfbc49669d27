from __future__ import annotations

import json

import httpx

from rerender_engine.errors import (
    BusyError,
    DecodeFailure,
    EditFailure,
    GenerationFailure,
    MetadataNotReadyError,
    MissingInputError,
    SaveFailure,
)
from rerender_engine.config import OutputConfig
from rerender_engine.types import AspectRatio, FidelityMode, ImageSlot

from .conftest import ANIME_METADATA, make_slot


def _ready(controller, ref_size=(64, 64)) -> None:
    controller.set_user_image(make_slot())
    assert controller.set_reference_image(make_slot(*ref_size))


def test_initial_state(controller) -> None:
    state = controller.state
    assert state.ref_image.is_empty and state.user_image.is_empty and state.result_image.is_empty
    assert state.metadata is None
    assert state.fidelity is FidelityMode.REALISTIC
    assert state.aspect_ratio is AspectRatio.AUTO
    assert not state.busy
    assert state.error_message is None


def test_reference_triggers_decode_and_inference(controller, collaborator) -> None:
    assert controller.set_reference_image(make_slot(160, 100))

    state = controller.state
    assert collaborator.names() == ["decode"]
    assert state.metadata is not None
    assert state.metadata.art_style == "Ufotable 2D anime"
    assert state.inferred_aspect_ratio is AspectRatio.WIDESCREEN
    assert state.aspect_ratio is AspectRatio.AUTO
    assert controller.resolved_aspect_ratio is AspectRatio.WIDESCREEN
    assert not state.decoding


def test_metadata_cleared_before_decode_resolves(controller, collaborator) -> None:
    _ready(controller)
    seen = {}

    def capture() -> None:
        seen["metadata"] = controller.state.metadata
        seen["decoding"] = controller.state.decoding

    collaborator.on_decode = capture
    controller.set_reference_image(make_slot(32, 64))

    assert seen == {"metadata": None, "decoding": True}
    assert controller.state.metadata is not None


def test_reselecting_decoded_reference_skips_decode(controller, collaborator) -> None:
    slot = make_slot(160, 100)
    assert controller.set_reference_image(slot)
    metadata = controller.state.metadata

    assert controller.set_reference_image(slot)

    assert collaborator.names() == ["decode"]
    assert controller.state.metadata is metadata


def test_reselecting_reference_after_failed_decode_retries(controller, collaborator) -> None:
    slot = make_slot()
    collaborator.decode_response = httpx.ConnectError("offline")
    assert not controller.set_reference_image(slot)

    collaborator.decode_response = json.dumps(ANIME_METADATA)
    assert controller.set_reference_image(slot)

    assert collaborator.names() == ["decode", "decode"]
    assert controller.state.last_error is None


def test_reference_while_decoding_is_busy(controller, collaborator) -> None:
    first = make_slot(160, 100)
    nested = {}

    def reenter() -> None:
        nested["accepted"] = controller.set_reference_image(make_slot(32, 64))
        nested["error"] = controller.state.last_error

    collaborator.on_decode = reenter
    assert controller.set_reference_image(first)

    assert nested["accepted"] is False
    assert isinstance(nested["error"], BusyError)
    assert collaborator.names() == ["decode"]
    assert controller.state.ref_image == first
    assert controller.state.metadata is not None


def test_manual_ratio_is_never_overridden(controller) -> None:
    controller.set_aspect_ratio(AspectRatio.POSTER)
    controller.set_reference_image(make_slot(1600, 900))

    assert controller.state.aspect_ratio is AspectRatio.POSTER
    assert controller.state.inferred_aspect_ratio is None
    assert controller.resolved_aspect_ratio is AspectRatio.POSTER


def test_switching_back_to_auto_reinfers(controller) -> None:
    controller.set_aspect_ratio(AspectRatio.POSTER)
    controller.set_reference_image(make_slot(60, 120))
    controller.set_aspect_ratio(AspectRatio.AUTO)

    assert controller.state.inferred_aspect_ratio is AspectRatio.PORTRAIT


def test_decode_failure_leaves_metadata_absent(controller, collaborator) -> None:
    collaborator.decode_response = httpx.ConnectError("offline")

    assert not controller.set_reference_image(make_slot())

    state = controller.state
    assert state.metadata is None
    assert isinstance(state.last_error, DecodeFailure)
    assert state.error_message == "Engine: Decoding failed. Check connection."
    assert state.decoding is False


def test_clearing_reference_skips_decode(controller, collaborator) -> None:
    _ready(controller)
    collaborator.calls.clear()

    assert not controller.set_reference_image(ImageSlot.empty())

    assert controller.state.metadata is None
    assert collaborator.calls == []


def test_mimic_with_missing_image_makes_no_call(controller, collaborator) -> None:
    controller.set_reference_image(make_slot())
    collaborator.calls.clear()

    assert not controller.run_mimic()

    assert isinstance(controller.state.last_error, MissingInputError)
    assert collaborator.calls == []


def test_mimic_before_metadata_resolves(controller, collaborator) -> None:
    collaborator.decode_response = httpx.ConnectError("offline")
    controller.set_user_image(make_slot())
    controller.set_reference_image(make_slot())

    assert not controller.run_mimic()

    assert isinstance(controller.state.last_error, MetadataNotReadyError)
    assert "generate" not in collaborator.names()


def test_anime_reference_hard_fidelity_scenario(controller, collaborator) -> None:
    controller.set_fidelity(FidelityMode.HARD)
    controller.set_user_image(make_slot())
    controller.set_reference_image(make_slot(160, 100))

    assert controller.run_mimic()

    _, call = collaborator.calls[-1]
    assert call["aspect_ratio"] == "16:9"
    assert "TRANSLATE THE USER TO THE STYLE" in call["prompt"]
    state = controller.state
    assert state.result_image.data == b"generated"
    assert state.result_image.display_url is not None
    assert not state.generating
    assert state.last_error is None


def test_generate_without_image_part(controller, collaborator) -> None:
    _ready(controller)
    collaborator.generate_response = None

    assert not controller.run_mimic()

    state = controller.state
    assert isinstance(state.last_error, GenerationFailure)
    assert state.generating is False
    assert state.result_image.is_empty


def test_failed_mimic_keeps_previous_result(controller, collaborator) -> None:
    _ready(controller)
    controller.run_mimic()
    collaborator.generate_response = httpx.ReadTimeout("slow")

    assert not controller.run_mimic()

    assert controller.state.result_image.data == b"generated"
    assert isinstance(controller.state.last_error, GenerationFailure)


def test_generating_flag_set_during_call(controller, collaborator) -> None:
    _ready(controller)
    seen = {}
    collaborator.on_generate = lambda: seen.setdefault("generating", controller.state.generating)

    controller.run_mimic()

    assert seen == {"generating": True}
    assert controller.state.generating is False


def test_second_mimic_while_generating_is_busy(controller, collaborator) -> None:
    _ready(controller)
    nested = {}

    def reenter() -> None:
        nested["accepted"] = controller.run_mimic()
        nested["error"] = controller.state.last_error

    collaborator.on_generate = reenter
    controller.run_mimic()

    assert nested["accepted"] is False
    assert isinstance(nested["error"], BusyError)
    assert collaborator.names().count("generate") == 1


def test_second_edit_while_editing_is_busy(controller, collaborator) -> None:
    _ready(controller)
    controller.run_mimic()
    nested = {}

    def reenter() -> None:
        nested["accepted"] = controller.run_edit("add rain")
        nested["error"] = controller.state.last_error

    collaborator.on_edit = reenter
    assert controller.run_edit("make it night")

    assert nested["accepted"] is False
    assert isinstance(nested["error"], BusyError)
    assert collaborator.names().count("edit") == 1
    assert controller.state.result_image.data == b"edited"
    assert controller.state.editing is False


def test_successful_edit_replaces_result_and_clears_prompt(controller, collaborator) -> None:
    _ready(controller)
    controller.run_mimic()
    controller.set_edit_prompt("change background to cyberpunk city")

    assert controller.run_edit()

    state = controller.state
    assert state.result_image.data == b"edited"
    assert state.edit_prompt == ""
    _, call = collaborator.calls[-1]
    assert call["prompt"] == "change background to cyberpunk city"
    assert not state.editing


def test_edits_compose_on_current_result(controller, collaborator) -> None:
    _ready(controller)
    controller.run_mimic()
    controller.run_edit("first")
    first_result = controller.state.result_image

    controller.run_edit("second")

    _, call = collaborator.calls[-1]
    assert call["image"] == first_result.encoded


def test_failed_edit_keeps_previous_result(controller, collaborator) -> None:
    _ready(controller)
    controller.run_mimic()
    collaborator.edit_response = None

    assert not controller.run_edit("make it night")

    state = controller.state
    assert state.result_image.data == b"generated"
    assert isinstance(state.last_error, EditFailure)
    assert state.edit_prompt == "make it night"
    assert state.editing is False


def test_edit_preconditions_are_a_silent_noop(controller, collaborator) -> None:
    assert not controller.run_edit("make it night")
    assert controller.state.last_error is None

    _ready(controller)
    controller.run_mimic()
    collaborator.calls.clear()

    assert not controller.run_edit("   ")
    assert collaborator.calls == []
    assert controller.state.last_error is None


def test_new_error_replaces_previous_one(controller) -> None:
    controller.run_mimic()
    assert isinstance(controller.state.last_error, MissingInputError)

    controller.set_user_image(make_slot())
    controller.set_reference_image(make_slot())
    controller.state.metadata = None
    controller.run_mimic()

    assert isinstance(controller.state.last_error, MetadataNotReadyError)


def test_reset_clears_session_but_keeps_preferences(controller) -> None:
    _ready(controller, ref_size=(160, 100))
    controller.set_fidelity(FidelityMode.HARD)
    controller.set_aspect_ratio(AspectRatio.PORTRAIT)
    controller.run_mimic()
    controller.state.last_error = MissingInputError()

    controller.reset()

    state = controller.state
    assert state.ref_image.is_empty
    assert state.user_image.is_empty
    assert state.result_image.is_empty
    assert state.metadata is None
    assert state.last_error is None
    assert state.fidelity is FidelityMode.HARD
    assert state.aspect_ratio is AspectRatio.PORTRAIT


def test_reset_during_call_discards_its_result(controller, collaborator) -> None:
    _ready(controller)
    collaborator.on_generate = controller.reset

    assert not controller.run_mimic()

    state = controller.state
    assert state.result_image.is_empty
    assert state.generating is False
    assert state.last_error is None


def test_cancel_during_decode_drops_metadata(controller, collaborator) -> None:
    collaborator.on_decode = controller.cancel

    assert not controller.set_reference_image(make_slot())

    assert controller.state.metadata is None
    assert controller.state.decoding is False


def test_save_result_writes_download(collaborator, tmp_path) -> None:
    from rich.console import Console

    from rerender_engine.config import AppConfig, GeminiConfig
    from rerender_engine.tasks.controller import PipelineController

    config = AppConfig(gemini=GeminiConfig(api_key="key"), output=OutputConfig(root_dir=tmp_path / "out"))
    controller = PipelineController(collaborator, config=config, console=Console(quiet=True))
    _ready(controller)
    controller.run_mimic()

    target = controller.save_result()

    assert target == tmp_path / "out" / "mimic-render-v2.png"
    assert target.read_bytes() == b"generated"


def test_save_without_result_sets_error(controller, tmp_path) -> None:
    assert controller.save_result(tmp_path / "frame.png") is None
    assert isinstance(controller.state.last_error, MissingInputError)
    assert not (tmp_path / "frame.png").exists()


def test_unwritable_download_sets_error(controller, tmp_path) -> None:
    _ready(controller)
    controller.run_mimic()
    blocker = tmp_path / "occupied"
    blocker.write_text("not a directory", encoding="utf-8")

    assert controller.save_result(blocker / "frame.png") is None

    assert isinstance(controller.state.last_error, SaveFailure)
    assert str(blocker) in controller.state.error_message
    assert controller.state.result_image.data == b"generated"


def test_snapshot_is_a_copy(controller) -> None:
    snapshot = controller.snapshot()
    controller.set_fidelity(FidelityMode.HARD)
    assert snapshot.fidelity is FidelityMode.REALISTIC
