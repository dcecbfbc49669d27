from __future__ import annotations

import argparse
from pathlib import Path

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from rerender_engine.clients.gemini import GeminiClient
from rerender_engine.config import load_config
from rerender_engine.errors import UnreadableFileError
from rerender_engine.tasks.controller import PipelineController
from rerender_engine.tasks.intake import select_file
from rerender_engine.types import AspectRatio, FidelityMode, PipelineState

FIDELITY_CHOICES = {"hard": FidelityMode.HARD, "realistic": FidelityMode.REALISTIC}


def _existing_path(value: str) -> Path:
    path = Path(value).expanduser()
    if not path.exists():
        raise argparse.ArgumentTypeError(f"Path not found: {path}")
    return path


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Decode the visual DNA of a reference image, re-render a subject in that style, "
            "and optionally refine the result with text edits."
        )
    )
    parser.add_argument("--reference", required=True, type=_existing_path, help="Reference style image.")
    parser.add_argument("--subject", required=True, type=_existing_path, help="Image of the subject to preserve.")
    parser.add_argument(
        "--aspect-ratio",
        choices=[ratio.value for ratio in AspectRatio],
        default=AspectRatio.AUTO.value,
        help="Output dimensions (AUTO matches the reference image).",
    )
    parser.add_argument(
        "--fidelity",
        choices=sorted(FIDELITY_CHOICES),
        default="realistic",
        help="'hard' converts the subject into the reference medium; 'realistic' keeps them photographic.",
    )
    parser.add_argument(
        "--edit",
        action="append",
        default=[],
        help="Edit instruction applied to the result; repeat to chain edits.",
    )
    parser.add_argument(
        "--interactive",
        action="store_true",
        help="Prompt for further edit instructions until a blank line is entered.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Where to save the final frame (defaults to <OUTPUT_ROOT_DIR>/mimic-render-v2.png).",
    )
    parser.add_argument(
        "--dotenv",
        type=Path,
        default=None,
        help="Optional path to a .env file containing GEMINI_API_KEY.",
    )
    return parser.parse_args()


def _metadata_table(state: PipelineState) -> Table:
    table = Table(title="Visual DNA", show_header=False)
    metadata = state.metadata
    rows = [
        ("Medium", metadata.art_style if metadata else ""),
        ("Outfit", metadata.outfit_details if metadata else ""),
        ("Pose/Gesture", metadata.pose_and_gestures if metadata else ""),
        ("Occlusions", metadata.composition if metadata else ""),
        ("Environment", metadata.background_elements if metadata else ""),
        ("Lighting", metadata.lighting_and_color if metadata else ""),
    ]
    for label, value in rows:
        table.add_row(label, value)
    return table


def main() -> None:
    args = parse_args()
    console = Console()

    config = load_config(args.dotenv)

    try:
        reference = select_file(args.reference)
        subject = select_file(args.subject)
    except UnreadableFileError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise SystemExit(1) from exc

    with GeminiClient(config.gemini) as client:
        controller = PipelineController(client, config=config, console=console)
        controller.set_fidelity(FIDELITY_CHOICES[args.fidelity])
        controller.set_aspect_ratio(AspectRatio(args.aspect_ratio))
        controller.set_user_image(subject.to_slot())

        console.rule("Visual DNA Extraction")
        if not controller.set_reference_image(reference.to_slot()):
            raise SystemExit(1)
        console.print(_metadata_table(controller.state))

        console.rule("Re-Render")
        if not controller.run_mimic():
            raise SystemExit(1)

        for instruction in args.edit:
            controller.run_edit(instruction)

        if args.interactive:
            console.rule("Post-Process Refinement")
            while True:
                instruction = Prompt.ask("Edit instruction (blank to finish)", default="", console=console)
                if not instruction.strip():
                    break
                controller.run_edit(instruction)

        if controller.save_result(args.output) is None:
            raise SystemExit(1)


if __name__ == "__main__":
    main()
