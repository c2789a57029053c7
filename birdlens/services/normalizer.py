"""Turn a loosely structured AI answer into a validated identification result."""

from __future__ import annotations

import json
import math
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from birdlens.errors import IdentificationFailed, InvalidResponseShape, SchemaViolation

DEFAULT_NAME = "Unknown Bird"
DEFAULT_SIMILAR_NAME = "Unknown Similar Bird"
DEFAULT_SCIENTIFIC_NAME = "Unknown Species"
DEFAULT_DESCRIPTION = "No description available"
DEFAULT_FEATURES = ("No features available",)
DEFAULT_HABITAT = "Unknown habitat"
DEFAULT_SOUND = "Unknown sound"
DEFAULT_ERROR_MESSAGE = "Failed to identify bird in image"

MIN_CONFIDENCE = 1
MAX_CONFIDENCE = 100

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


class _Schema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


class PhysicalCharacteristics(_Schema):
    size: str | None = None
    weight: str | None = None
    wingspan: str | None = None
    plumage: str | None = None
    bill: str | None = None
    legs: str | None = None
    eye_color: str | None = None


class HabitatAndRange(_Schema):
    preferred_habitat: str | None = None
    geographic_range: str | None = None
    range_map_url: str | None = None


class MigrationPatterns(_Schema):
    migratory: bool | None = None
    migration_season: str | None = None
    migration_route: str | None = None
    wintering_grounds: str | None = None
    breeding_grounds: str | None = None


class SeasonalVariations(_Schema):
    breeding_plumage: str | None = None
    winter_plumage: str | None = None
    juvenile_plumage: str | None = None
    seasonal_behavior: str | None = None


class BirdSounds(_Schema):
    calls: str | None = None
    songs: str | None = None
    audio_url: str | None = None


class Bird(_Schema):
    name: str = Field(min_length=1)
    scientific_name: str
    confidence: int = Field(ge=MIN_CONFIDENCE, le=MAX_CONFIDENCE)
    description: str
    features: list[str] = Field(min_length=1)
    habitat: str | None = None
    sound: str | None = None
    image_url: str | None = None
    physical_characteristics: PhysicalCharacteristics | None = None
    habitat_and_range: HabitatAndRange | None = None
    migration_patterns: MigrationPatterns | None = None
    seasonal_variations: SeasonalVariations | None = None
    sounds: BirdSounds | None = None


class SimilarBird(_Schema):
    name: str = Field(min_length=1)
    scientific_name: str
    confidence: int = Field(ge=MIN_CONFIDENCE, le=MAX_CONFIDENCE)
    image_url: str | None = None


class IdentificationResult(_Schema):
    main_bird: Bird
    similar_birds: list[SimilarBird] = Field(default_factory=list)
    original_image: str = ""

    def to_payload(self) -> dict[str, Any]:
        """camelCase JSON payload; absent optional groups are omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Source keys copied for each optional group (camelCase, as the model emits them).
_GROUP_KEYS: dict[str, tuple[str, ...]] = {
    "physicalCharacteristics": (
        "size",
        "weight",
        "wingspan",
        "plumage",
        "bill",
        "legs",
        "eyeColor",
    ),
    "habitatAndRange": ("preferredHabitat", "geographicRange", "rangeMapUrl"),
    "migrationPatterns": (
        "migratory",
        "migrationSeason",
        "migrationRoute",
        "winteringGrounds",
        "breedingGrounds",
    ),
    "seasonalVariations": (
        "breedingPlumage",
        "winterPlumage",
        "juvenilePlumage",
        "seasonalBehavior",
    ),
    "sounds": ("calls", "songs", "audioUrl"),
}


def parse_model_text(text: str) -> dict[str, Any]:
    """Decode the model's answer, tolerating Markdown code fences."""
    cleaned = _FENCE_RE.sub("", (text or "").strip()).strip()
    try:
        data = json.loads(cleaned)
    except (TypeError, ValueError) as exc:
        raise InvalidResponseShape("AI response is not valid JSON") from exc
    if not isinstance(data, dict):
        raise InvalidResponseShape("AI response is not a JSON object")
    return data


def _to_number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        number = float(value)
    except OverflowError:
        # integers beyond float range
        return math.inf if value > 0 else -math.inf
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return number


def normalize_confidence(value: Any) -> int:
    """Round half up to an integer, then clamp into [1, 100]."""
    number = min(max(_to_number(value), 0.0), float(MAX_CONFIDENCE))
    rounded = math.floor(number + 0.5)
    return min(max(MIN_CONFIDENCE, rounded), MAX_CONFIDENCE)


def _or_default(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    return value


def _group(source: Any, keys: tuple[str, ...]) -> Any:
    if not isinstance(source, dict):
        # left for schema validation to reject
        return source
    group = {key: source[key] for key in keys if source.get(key) is not None}
    if "migratory" in keys:
        group["migratory"] = bool(source.get("migratory"))
    return group


def _similar_bird(entry: Any) -> Any:
    if not isinstance(entry, dict):
        return entry
    bird = {
        "name": _or_default(entry.get("name"), DEFAULT_SIMILAR_NAME),
        "scientificName": _or_default(
            entry.get("scientificName"), DEFAULT_SCIENTIFIC_NAME
        ),
        "confidence": normalize_confidence(entry.get("confidence")),
    }
    if entry.get("imageUrl") is not None:
        bird["imageUrl"] = entry["imageUrl"]
    return bird


def normalize_identification(
    raw: dict[str, Any], original_image: str = ""
) -> IdentificationResult:
    """Validate and default a raw AI response.

    Raises :class:`IdentificationFailed` when the response carries an error
    flag, :class:`InvalidResponseShape` when the primary bird has no name and
    :class:`SchemaViolation` when the assembled record is still invalid.
    """
    if not isinstance(raw, dict):
        raise InvalidResponseShape("AI response is not a JSON object")
    if raw.get("error"):
        message = raw.get("message") or DEFAULT_ERROR_MESSAGE
        raise IdentificationFailed(str(message))

    source = raw.get("mainBird")
    if not isinstance(source, dict) or not source.get("name"):
        raise InvalidResponseShape(
            "The AI response did not contain valid bird identification data"
        )

    features = source.get("features")
    main_bird: dict[str, Any] = {
        "name": _or_default(source.get("name"), DEFAULT_NAME),
        "scientificName": _or_default(
            source.get("scientificName"), DEFAULT_SCIENTIFIC_NAME
        ),
        "confidence": normalize_confidence(source.get("confidence")),
        "description": _or_default(source.get("description"), DEFAULT_DESCRIPTION),
        "features": list(DEFAULT_FEATURES) if features in (None, []) else features,
        "habitat": _or_default(source.get("habitat"), DEFAULT_HABITAT),
        "sound": _or_default(source.get("sound"), DEFAULT_SOUND),
    }
    if source.get("imageUrl") is not None:
        main_bird["imageUrl"] = source["imageUrl"]
    for name, keys in _GROUP_KEYS.items():
        if source.get(name) is not None:
            main_bird[name] = _group(source[name], keys)

    similar = raw.get("similarBirds")
    similar_birds = (
        [_similar_bird(entry) for entry in similar] if isinstance(similar, list) else []
    )

    try:
        return IdentificationResult.model_validate(
            {
                "mainBird": main_bird,
                "similarBirds": similar_birds,
                "originalImage": original_image,
            }
        )
    except ValidationError as exc:
        raise SchemaViolation(str(exc)) from exc


__all__ = [
    "Bird",
    "SimilarBird",
    "IdentificationResult",
    "parse_model_text",
    "normalize_confidence",
    "normalize_identification",
]
