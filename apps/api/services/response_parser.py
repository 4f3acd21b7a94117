"""
Recommendation response parser.

Strict on structure, lenient on content:

1. The envelope must match candidates[0].content.parts[0].text, and that text
   must decode (after stripping code fences) into a JSON object. Anything
   else is a StructuralError and parse() raises ResponseParseError.
2. Inside the document, missing analysis sections are skipped, missing or
   empty arrays fall back to a single default line, and missing leaf fields
   read as empty strings.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import ResponseParseError
from models import Recommendation

logger = logging.getLogger(__name__)

DEFAULT_IMPROVEMENTS = "No improvements suggested."
DEFAULT_SUGGESTIONS = "No suggestions provided."
DEFAULT_SAFETY = "Follow general SafetyGuidelines."

# (key in analysis object, label in recommendation text)
ANALYSIS_SECTIONS = (
    ("overall", "Overall"),
    ("pace", "Pace"),
    ("heartRate", "HeartRate"),
    ("caloriesBurned", "CaloriesBurned"),
)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Envelope schema
# ---------------------------------------------------------------------------

class _Part(BaseModel):
    model_config = ConfigDict(extra="ignore")
    text: str


class _Content(BaseModel):
    model_config = ConfigDict(extra="ignore")
    parts: List[_Part] = Field(min_length=1)


class _Candidate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    content: _Content


class GeminiEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")
    candidates: List[_Candidate] = Field(min_length=1)

    @property
    def text(self) -> str:
        return self.candidates[0].content.parts[0].text


@dataclass(frozen=True)
class ParsedEnvelope:
    """Validated envelope plus its decoded inner document."""
    text: str
    document: Dict[str, Any]

    @property
    def analysis(self) -> Dict[str, Any]:
        value = self.document.get("analysis")
        return value if isinstance(value, dict) else {}

    @property
    def improvements(self) -> Any:
        return self.document.get("improvements")

    @property
    def suggestions(self) -> Any:
        return self.document.get("suggestions")

    @property
    def safety_tips(self) -> Any:
        return self.document.get("safetyTips")


@dataclass(frozen=True)
class StructuralError:
    stage: str  # "envelope" | "inner_json"
    message: str


ParseResult = Union[ParsedEnvelope, StructuralError]


def strip_wrapping(text: str) -> str:
    """Remove markdown code fences and stray ''' markers around the JSON."""
    cleaned = text.strip()
    if cleaned.startswith("'''"):
        cleaned = cleaned[3:].strip()
    if cleaned.endswith("'''"):
        cleaned = cleaned[:-3].strip()
    # A bare object is left alone: fences may appear inside its string values
    if cleaned.startswith("```") or not cleaned.startswith("{"):
        fenced = _FENCE_RE.search(cleaned)
        if fenced:
            cleaned = fenced.group(1)
        elif cleaned.startswith("```"):
            # Unterminated fence (truncated output)
            lines = [l for l in cleaned.split("\n") if not l.strip().startswith("```")]
            cleaned = "\n".join(lines)
    return cleaned.strip()


def parse_envelope(raw: Any) -> ParseResult:
    """Validate the provider envelope and decode its inner JSON in one pass."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            return StructuralError(stage="envelope", message=f"envelope is not JSON: {e}")

    try:
        envelope = GeminiEnvelope.model_validate(raw)
    except PydanticValidationError as e:
        return StructuralError(stage="envelope", message=f"unexpected envelope shape: {e.error_count()} error(s)")

    inner = strip_wrapping(envelope.text)
    try:
        document = json.loads(inner)
    except json.JSONDecodeError as e:
        return StructuralError(stage="inner_json", message=f"inner text is not JSON: {e}")

    if not isinstance(document, dict):
        return StructuralError(stage="inner_json", message=f"expected JSON object, got {type(document).__name__}")

    return ParsedEnvelope(text=inner, document=document)


# ---------------------------------------------------------------------------
# Content extraction (lenient)
# ---------------------------------------------------------------------------

def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        # Nested objects and arrays carry no text of their own
        return ""
    return str(value)


def _field(item: Any, key: str) -> str:
    if not isinstance(item, dict):
        return ""
    return _as_text(item.get(key))


def build_recommendation_text(analysis: Dict[str, Any]) -> str:
    sections = []
    for key, label in ANALYSIS_SECTIONS:
        if analysis.get(key) is not None:
            sections.append(f"{label}:{_as_text(analysis[key])}")
    return "\n\n".join(sections).strip()


def extract_improvements(node: Any) -> List[str]:
    if not isinstance(node, list) or not node:
        return [DEFAULT_IMPROVEMENTS]
    return [
        f"Area: {_field(item, 'area')} - Recommendation: {_field(item, 'recommendation')}"
        for item in node
    ]


def extract_suggestions(node: Any) -> List[str]:
    if not isinstance(node, list) or not node:
        return [DEFAULT_SUGGESTIONS]
    return [
        f"Workout: {_field(item, 'workout')} - Nutrition: {_field(item, 'nutrition')}"
        for item in node
    ]


def extract_safety(node: Any) -> List[str]:
    if not isinstance(node, list) or not node:
        return [DEFAULT_SAFETY]
    return [_as_text(tip) for tip in node]


def parse(activity, raw: Any) -> Recommendation:
    """
    Turn a provider envelope into an (unsaved) Recommendation for `activity`.

    Raises:
        ResponseParseError: envelope or inner document structurally malformed
    """
    result = parse_envelope(raw)
    if isinstance(result, StructuralError):
        logger.error(f"Failed to parse AI response for activity {activity.id} ({result.stage}): {result.message}")
        raise ResponseParseError(f"{result.stage}: {result.message}")

    return Recommendation(
        activity_id=activity.id,
        user_id=activity.user_id,
        activity_type=getattr(activity.activity_type, "value", activity.activity_type),
        recommendation_text=build_recommendation_text(result.analysis),
        improvements=extract_improvements(result.improvements),
        suggestions=extract_suggestions(result.suggestions),
        safety=extract_safety(result.safety_tips),
    )
