"""Bird identification through the OpenAI Chat Completions API.

Functions here return the raw decoded JSON answer; shaping it into an
identification result is the job of :mod:`birdlens.services.normalizer`.
"""

from __future__ import annotations

import atexit
import logging
import os
from typing import Any

import httpx
from openai import APITimeoutError, OpenAI, OpenAIError

from birdlens.config import Settings
from birdlens.errors import InvalidResponseShape
from birdlens.services.normalizer import parse_model_text

logger = logging.getLogger(__name__)
settings = Settings()

_DEFAULT_TIMEOUT = 60

_client: OpenAI | None = None
_http_client: httpx.Client | None = None


def _load_timeout() -> int:
    raw = os.environ.get("OPENAI_TIMEOUT_SECONDS")
    try:
        value = int(raw) if raw is not None else _DEFAULT_TIMEOUT
    except ValueError:
        return _DEFAULT_TIMEOUT
    return value if value > 0 else _DEFAULT_TIMEOUT


_TIMEOUT_SECONDS = _load_timeout()


def _get_client() -> OpenAI:
    """Lazily build and cache the OpenAI client."""

    global _client, _http_client
    if _client is None:
        mounts: dict[str, httpx.HTTPTransport] = {}
        http_proxy = os.environ.get("HTTP_PROXY")
        https_proxy = os.environ.get("HTTPS_PROXY")
        if http_proxy:
            mounts["http://"] = httpx.HTTPTransport(proxy=http_proxy)
        if https_proxy:
            mounts["https://"] = httpx.HTTPTransport(proxy=https_proxy)

        _http_client = httpx.Client(mounts=mounts) if mounts else None
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY environment variable is not set")
        _client = OpenAI(api_key=api_key, http_client=_http_client)
    return _client


def _close_client() -> None:
    global _client, _http_client
    if _http_client is not None:
        _http_client.close()
    _http_client = None
    _client = None


atexit.register(_close_client)

_SYSTEM_PROMPT = "You are an expert ornithologist. Answer with a single raw JSON object."

_RESPONSE_FORMAT = """
Respond ONLY with a JSON object of this shape (omit anything you do not know,
do not invent facts, no Markdown):
{
  "mainBird": {
    "name": "common name",
    "scientificName": "scientific name",
    "confidence": 1-100,
    "description": "detailed description",
    "features": ["at least four key physical features"],
    "habitat": "habitat summary",
    "sound": "calls and songs summary",
    "physicalCharacteristics": {"size": "", "weight": "", "wingspan": "",
      "plumage": "", "bill": "", "legs": "", "eyeColor": ""},
    "habitatAndRange": {"preferredHabitat": "", "geographicRange": ""},
    "migrationPatterns": {"migratory": true, "migrationSeason": "",
      "migrationRoute": "", "winteringGrounds": "", "breedingGrounds": ""},
    "seasonalVariations": {"breedingPlumage": "", "winterPlumage": "",
      "juvenilePlumage": "", "seasonalBehavior": ""},
    "sounds": {"calls": "", "songs": ""}
  },
  "similarBirds": [
    {"name": "similar species", "scientificName": "", "confidence": 1-100}
  ]
}
List up to 3 similar species. If there is no bird or you cannot identify it,
respond with {"error": true, "message": "why identification failed"}.
"""

IMAGE_PROMPT = "Identify the bird in this image." + _RESPONSE_FORMAT
SOUND_PROMPT = (
    "Identify the bird singing or calling in this recording. Consider common "
    "species whose vocalizations match what you hear." + _RESPONSE_FORMAT
)


def description_prompt(description: str) -> str:
    return (
        "Identify the most likely bird species from this description only:\n\n"
        f"{description.strip()}\n" + _RESPONSE_FORMAT
    )


def _request_completion(client: OpenAI, model: str, payload: dict[str, Any]) -> Any:
    try:
        return client.chat.completions.create(
            model=model, timeout=_TIMEOUT_SECONDS, **payload
        )
    except APITimeoutError as exc:
        raise TimeoutError("OpenAI request timed out") from exc
    except OpenAIError as exc:
        logger.exception("OpenAI request failed")
        raise RuntimeError("OpenAI request failed") from exc


def _extract_text(response: Any) -> str:
    try:
        content = response.choices[0].message.content
    except (AttributeError, IndexError, TypeError) as exc:
        raise InvalidResponseShape("Empty AI response") from exc
    if not content:
        raise InvalidResponseShape("Empty AI response")
    return content


def _complete(model: str, content: list[dict[str, Any]], *, json_mode: bool) -> dict:
    payload: dict[str, Any] = {
        "messages": [
            {"role": "system", "content": _SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ],
    }
    if json_mode:
        payload["response_format"] = {"type": "json_object"}
    response = _request_completion(_get_client(), model, payload)
    text = _extract_text(response)
    logger.debug("AI response: %s", text)
    return parse_model_text(text)


def identify_bird_image(image_b64: str, mime_type: str) -> dict:
    """Ask the vision model to identify the bird in a base64 image."""
    content = [
        {"type": "text", "text": IMAGE_PROMPT},
        {
            "type": "image_url",
            "image_url": {"url": f"data:{mime_type};base64,{image_b64}"},
        },
    ]
    return _complete(settings.openai_model, content, json_mode=True)


def identify_bird_description(description: str) -> dict:
    """Text-only identification from a free-form description."""
    content = [{"type": "text", "text": description_prompt(description)}]
    return _complete(settings.openai_model, content, json_mode=True)


def identify_bird_sound(audio_b64: str, audio_format: str) -> dict:
    """Identify a bird from a ``wav``/``mp3`` recording."""
    content = [
        {"type": "text", "text": SOUND_PROMPT},
        {
            "type": "input_audio",
            "input_audio": {"data": audio_b64, "format": audio_format},
        },
    ]
    # audio models reject response_format
    return _complete(settings.openai_audio_model, content, json_mode=False)


__all__ = [
    "identify_bird_image",
    "identify_bird_description",
    "identify_bird_sound",
]
