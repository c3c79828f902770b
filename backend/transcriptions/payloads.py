"""Per-mode job options.

Each transcription mode carries its own options type, so a human job cannot
be given provider settings and an AI job cannot carry reviewer instructions.
``parse_mode_options`` picks the variant from the job's mode.
"""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping, Optional, Union

from billing import plans

LANGUAGE_PATTERN = re.compile(r"^[a-z]{2}(-[A-Z]{2})?$")
OPERATING_POINTS = ("standard", "enhanced")
DOMAINS = ("general", "medical", "legal")
MAX_INSTRUCTIONS_LENGTH = 1000


class InvalidJobOptions(ValueError):
    """Raised when mode options fail validation; ``errors`` maps field to message."""

    def __init__(self, errors: Dict[str, str]):
        super().__init__("; ".join(f"{key}: {value}" for key, value in errors.items()))
        self.errors = errors


@dataclass(frozen=True)
class AiJobOptions:
    language: str = "en"
    operating_point: str = "enhanced"
    domain: str = "general"
    diarization: bool = True
    punctuation: bool = True
    verbatim: bool = False

    mode = plans.AI

    def to_dict(self) -> Dict[str, Any]:
        return {"mode": self.mode, **asdict(self)}


@dataclass(frozen=True)
class HybridJobOptions(AiJobOptions):
    review_instructions: str = ""

    mode = plans.HYBRID


@dataclass(frozen=True)
class HumanJobOptions:
    domain: str = "general"
    verbatim: bool = False
    special_instructions: str = ""
    speaker_count: int = 0

    mode = plans.HUMAN

    def to_dict(self) -> Dict[str, Any]:
        return {"mode": self.mode, **asdict(self)}


JobOptions = Union[AiJobOptions, HybridJobOptions, HumanJobOptions]

OPTION_TYPES = {
    plans.AI: AiJobOptions,
    plans.HYBRID: HybridJobOptions,
    plans.HUMAN: HumanJobOptions,
}


def parse_mode_options(mode: str, data: Optional[Mapping[str, Any]]) -> JobOptions:
    option_type = OPTION_TYPES.get(mode)
    if option_type is None:
        raise InvalidJobOptions({"mode": f"Unsupported transcription mode '{mode}'."})

    data = dict(data or {})
    data.pop("mode", None)
    allowed = {field.name for field in fields(option_type)}
    errors: Dict[str, str] = {}

    unknown = sorted(set(data) - allowed)
    for key in unknown:
        errors[key] = f"Not a valid option for {mode} jobs."

    if "language" in data and not LANGUAGE_PATTERN.match(str(data["language"])):
        errors["language"] = "Invalid language code."
    if "operating_point" in data and data["operating_point"] not in OPERATING_POINTS:
        errors["operating_point"] = "Operating point must be standard or enhanced."
    if "domain" in data and data["domain"] not in DOMAINS:
        errors["domain"] = "Domain must be general, medical or legal."
    for key in ("diarization", "punctuation", "verbatim"):
        if key in data and not isinstance(data[key], bool):
            errors[key] = "Must be a boolean."
    for key in ("review_instructions", "special_instructions"):
        if key in data:
            if not isinstance(data[key], str):
                errors[key] = "Must be a string."
            elif len(data[key]) > MAX_INSTRUCTIONS_LENGTH:
                errors[key] = "Instructions too long."
    if "speaker_count" in data:
        value = data["speaker_count"]
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            errors["speaker_count"] = "Must be a non-negative integer."

    if errors:
        raise InvalidJobOptions(errors)

    return option_type(**{key: value for key, value in data.items() if key in allowed})


def load_mode_options(mode: str, stored: Optional[Mapping[str, Any]]) -> JobOptions:
    """Rebuild options persisted on a job, ignoring keys the variant no longer has."""
    option_type = OPTION_TYPES[mode]
    allowed = {field.name for field in fields(option_type)}
    return option_type(**{key: value for key, value in (stored or {}).items() if key in allowed})
