"""Helpers for base64 media submitted by clients."""

from __future__ import annotations

import base64
import binascii
import re

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,", re.IGNORECASE)

# base64 prefixes of common image signatures
_IMAGE_SIGNATURES = (
    ("/9j/", "image/jpeg"),
    ("iVBORw0KGgo", "image/png"),
    ("R0lGODlh", "image/gif"),
    ("R0lGODdh", "image/gif"),
    ("UklGR", "image/webp"),
)

AUDIO_FORMATS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
}

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "audio/wav": "wav",
    "audio/mpeg": "mp3",
}


class MediaError(ValueError):
    """Submitted media cannot be used."""


class MediaTooLarge(MediaError):
    pass


def split_data_url(value: str) -> tuple[str | None, str]:
    """Return ``(mime_type, base64_payload)``; mime is None for bare base64."""
    value = value.strip()
    match = _DATA_URL_RE.match(value)
    if match is None:
        return None, value
    return match.group("mime").lower(), value[match.end():]


def detect_image_mime(b64: str, default: str = "image/jpeg") -> str:
    for prefix, mime in _IMAGE_SIGNATURES:
        if b64.startswith(prefix):
            return mime
    return default


def decode_base64(b64: str, max_bytes: int) -> bytes:
    """Decode and size-check a base64 payload."""
    if len(b64) > ((max_bytes + 2) // 3) * 4:
        raise MediaTooLarge("payload too large")
    try:
        data = base64.b64decode(b64, validate=True)
    except binascii.Error as exc:
        raise MediaError("invalid base64") from exc
    if not data:
        raise MediaError("empty payload")
    if len(data) > max_bytes:
        raise MediaTooLarge("payload too large")
    return data


def audio_format(mime: str | None) -> str:
    """Map an audio MIME type onto the formats the model accepts."""
    if mime is None:
        return "wav"
    try:
        return AUDIO_FORMATS[mime]
    except KeyError:
        raise MediaError(f"unsupported audio format: {mime}") from None


def extension_for(mime: str) -> str:
    return _EXTENSIONS.get(mime, "bin")


__all__ = [
    "MediaError",
    "MediaTooLarge",
    "split_data_url",
    "detect_image_mime",
    "decode_base64",
    "audio_format",
    "extension_for",
    "AUDIO_FORMATS",
]
