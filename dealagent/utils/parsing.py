"""
Strict parse-or-default helpers for untrusted payloads.

WHAT: Tagged parse results and JSON extraction from free text
WHY: Registry records, tool envelopes and LLM replies are untrusted input
HOW: Parsed/Invalid dataclasses; callers branch with isinstance
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from pydantic import BaseModel, ValidationError

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class Parsed(Generic[T]):
    """Successful parse carrying the typed value."""
    value: T


@dataclass(frozen=True)
class Invalid:
    """Failed parse with a short human-readable reason."""
    reason: str


ParseResult = Union[Parsed[T], Invalid]


_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)
_BARE_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def extract_json_object(text: str) -> ParseResult[dict]:
    """
    Pull the first JSON object out of model output.

    Tries a fenced ```json block first, then the widest {...} span,
    then the whole string.
    """
    if not text or not text.strip():
        return Invalid("empty response")

    candidates = []
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    bare = _BARE_OBJECT.search(text)
    if bare:
        candidates.append(bare.group(0))
    candidates.append(text.strip())

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return Parsed(data)
    return Invalid("no JSON object found in response")


def parse_model(model: type[M], data: Any) -> ParseResult[M]:
    """Validate `data` against a pydantic model without raising."""
    try:
        return Parsed(model.model_validate(data))
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(part) for part in first.get("loc", ()))
        return Invalid(f"{loc}: {first.get('msg', 'invalid value')}" if loc else str(first.get("msg", e)))
