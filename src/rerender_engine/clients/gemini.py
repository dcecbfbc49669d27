from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, List, Mapping

import httpx
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..config import GeminiConfig
from ..types import GenerationResult


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code == 429 or exc.response.status_code >= 500
    return False


def _inline_part(data_b64: str, mime_type: str) -> Dict[str, Any]:
    return {"inlineData": {"mimeType": mime_type, "data": data_b64}}


class GeminiClient:
    """Client for the Gemini ``generateContent`` endpoint covering decode, generate and edit."""

    def __init__(self, config: GeminiConfig, transport: httpx.BaseTransport | None = None) -> None:
        self._config = config
        url = httpx.URL(config.api_url)

        base_url = url.copy_with(query=None, fragment=None)
        self._session = httpx.Client(
            base_url=str(base_url),
            headers={
                "x-goog-api-key": config.api_key,
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(config.timeout_seconds),
            transport=transport,
        )

    def close(self) -> None:
        self._session.close()

    @staticmethod
    def _model_path(model: str) -> str:
        return f"/models/{model}:generateContent"

    def _post(self, model: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST a generateContent request, retrying transient failures when configured to."""
        path = self._model_path(model)
        for attempt in Retrying(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_exponential(multiplier=2, min=1, max=20),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        ):
            with attempt:
                response = self._session.post(path, json=body)
                try:
                    response.raise_for_status()
                except httpx.HTTPStatusError as exc:
                    if exc.response.status_code == 404:
                        raise RuntimeError(
                            f"Gemini model endpoint not found at {path}. "
                            "Check GEMINI_API_URL and the configured model names."
                        ) from exc
                    raise
                return response.json()
        raise RuntimeError("Gemini request loop exited without a response")  # pragma: no cover

    @staticmethod
    def _parts(data: Mapping[str, Any]) -> List[Mapping[str, Any]]:
        parts: List[Mapping[str, Any]] = []
        for candidate in data.get("candidates") or []:
            content = candidate.get("content") or {}
            parts.extend(content.get("parts") or [])
        return parts

    def _extract_image(self, data: Mapping[str, Any]) -> GenerationResult | None:
        """Return the first inline image across all candidates, or ``None`` when there is none."""
        for part in self._parts(data):
            inline = part.get("inlineData") or part.get("inline_data")
            if not inline or not inline.get("data"):
                continue
            try:
                image_bytes = base64.b64decode(inline["data"])
            except (ValueError, binascii.Error) as exc:
                raise RuntimeError(f"Failed to decode base64 image data: {exc}") from exc
            return GenerationResult(
                image_bytes=image_bytes,
                mime_type=inline.get("mimeType") or inline.get("mime_type") or "image/png",
            )
        return None

    def decode(
        self,
        image_b64: str,
        mime_type: str,
        instructions: str,
        schema: Mapping[str, Any],
    ) -> str:
        """
        Ask the decoder model for a schema-constrained JSON description of an image.

        Returns the raw JSON text; parsing is left to the caller.
        """
        body = {
            "contents": [
                {
                    "role": "user",
                    "parts": [_inline_part(image_b64, mime_type), {"text": instructions}],
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": dict(schema),
            },
        }
        data = self._post(self._config.decoder_model, body)
        text = "".join(part.get("text") or "" for part in self._parts(data))
        if not text:
            raise RuntimeError(f"Gemini decode response carried no text. Response format: {list(data.keys())}")
        return text

    def generate(
        self,
        ref_b64: str,
        ref_mime: str,
        user_b64: str,
        user_mime: str,
        prompt: str,
        aspect_ratio: str,
    ) -> GenerationResult | None:
        """Synthesize a single image from the reference, the subject and the composed prompt."""
        body = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        _inline_part(ref_b64, ref_mime),
                        _inline_part(user_b64, user_mime),
                        {"text": prompt},
                    ],
                }
            ],
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {"aspectRatio": aspect_ratio},
            },
        }
        data = self._post(self._config.image_model, body)
        return self._extract_image(data)

    def edit(self, image_b64: str, mime_type: str, prompt: str) -> GenerationResult | None:
        """Apply a free-text instruction on top of an existing image."""
        body = {
            "contents": [
                {
                    "role": "user",
                    "parts": [_inline_part(image_b64, mime_type), {"text": prompt}],
                }
            ],
            "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
        }
        data = self._post(self._config.image_model, body)
        return self._extract_image(data)

    def __enter__(self) -> "GeminiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()
