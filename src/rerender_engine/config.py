from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError


class GeminiConfig(BaseModel):
    """Settings required to reach the Gemini generateContent endpoint."""

    api_key: str = Field(..., min_length=1, description="Gemini API key")
    api_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Base URL of the Gemini REST API (models are addressed beneath it)",
    )
    decoder_model: str = Field(
        default="gemini-3-pro-preview",
        description="Model used to reverse-engineer the reference prompt",
    )
    image_model: str = Field(
        default="gemini-2.5-flash-image",
        description="Model used for image synthesis and edits",
    )
    timeout_seconds: float = Field(
        default=120.0,
        ge=1.0,
        le=600.0,
        description="HTTP timeout applied to every generateContent call",
    )
    max_attempts: int = Field(
        default=1,
        ge=1,
        le=10,
        description="Transport attempts per call; 1 disables retrying",
    )


class OutputConfig(BaseModel):
    """Where downloaded results are written."""

    root_dir: Path = Field(default_factory=lambda: Path("output"))
    filename: str = Field(default="mimic-render-v2.png", description="Default download filename")


class AppConfig(BaseModel):
    """Top-level configuration consumed by the controller and scripts."""

    gemini: GeminiConfig
    output: OutputConfig = Field(default_factory=OutputConfig)


def _float_from_env(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid float value: {value}") from exc


def _int_from_env(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer value: {value}") from exc


def load_config(dotenv_path: str | Path | None = None) -> AppConfig:
    """
    Load configuration from environment variables (optionally seeded by a .env file).

    Parameters
    ----------
    dotenv_path:
        Optional override for the .env file location. Defaults to ``.env`` in the
        working directory.

    Raises
    ------
    RuntimeError
        If the API credential is missing or a numeric value cannot be parsed.
    """
    env_path = Path(dotenv_path) if dotenv_path else Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    data = {
        "gemini": {
            "api_key": os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY"),
            "api_url": os.getenv("GEMINI_API_URL", "https://generativelanguage.googleapis.com/v1beta"),
            "decoder_model": os.getenv("GEMINI_DECODER_MODEL", "gemini-3-pro-preview"),
            "image_model": os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image"),
            "timeout_seconds": _float_from_env(os.getenv("GEMINI_TIMEOUT_SECONDS"), 120.0),
            "max_attempts": _int_from_env(os.getenv("GEMINI_MAX_ATTEMPTS"), 1),
        },
        "output": {
            "root_dir": Path(os.getenv("OUTPUT_ROOT_DIR", "output")),
        },
    }

    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        missing = {"/".join(str(part) for part in err["loc"]) for err in exc.errors()}
        missing_str = ", ".join(sorted(missing))
        raise RuntimeError(f"Missing configuration values: {missing_str}") from exc
