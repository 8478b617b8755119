from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, Optional

import requests

from normalize import ExternalResult, normalize

logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_TIMEOUT = 30

EXTRACTION_FIELDS = ("title", "author", "isbn", "publisher", "year", "description", "category")

PROMPT = """Analyze this book cover image and extract the following information in JSON format:
{
    "title": "Book title",
    "author": "Author name(s)",
    "isbn": "ISBN if visible",
    "publisher": "Publisher name",
    "year": "Publication year",
    "description": "Brief description of the book",
    "category": "Book category/genre",
    "confidence": "Confidence level (0-100) for the extraction"
}

Please be as accurate as possible. If any information is not clearly visible or readable, use null for that field. Focus on extracting the title and author as these are most important for book identification."""

LINE_SCAN_CONFIDENCE = 50

PLACEHOLDER: Dict[str, Any] = {
    "title": "Book Cover Detected",
    "author": "Unknown Author",
    "isbn": None,
    "publisher": "Unknown Publisher",
    "year": None,
    "description": (
        "Book information could not be extracted from the image. "
        "Please try again or enter details manually."
    ),
    "category": None,
    "confidence": 0,
}

_LINE_PATTERN = re.compile(
    r"^[\s*\-#>]*(title|author|isbn|publisher|year|category|description)[\s*]*:[\s*]*(.*)$",
    re.IGNORECASE,
)


class ParseKind(str, Enum):
    PARSED = "parsed"
    PARTIALLY_PARSED = "partially_parsed"
    FALLBACK = "fallback"


@dataclass
class CoverExtraction:
    kind: ParseKind
    fields: Dict[str, Any]
    raw_text: str = ""
    error: Optional[str] = None
    source: str = field(default="gemini_ai")

    @property
    def confidence(self) -> int:
        return int(self.fields.get("confidence") or 0)

    @property
    def trusted(self) -> bool:
        return self.kind is not ParseKind.FALLBACK

    def to_result(self) -> ExternalResult:
        return normalize("gemini_ai", self.fields)

    def to_dict(self) -> Dict[str, Any]:
        payload = dict(self.fields)
        payload["parse_kind"] = self.kind.value
        payload["source"] = self.source if self.trusted else "fallback"
        if self.error:
            payload["error"] = self.error
        return payload


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------
def _balanced_spans(text: str) -> Iterator[str]:
    """Yield every balanced ``{...}`` span, in order of its opening brace."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    yield text[start : index + 1]
                    break
        start = text.find("{", start + 1)


def _year(value: Any) -> Optional[int]:
    if value is None:
        return None
    match = re.search(r"\d{4}", str(value))
    return int(match.group(0)) if match else None


def _confidence(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip().rstrip("%"))
    except ValueError:
        return None
    # Some responses use a 0-1 scale despite the prompt.
    if 0 < number < 1:
        number *= 100
    return max(0, min(100, int(round(number))))


def _text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, list):
        value = ", ".join(str(entry) for entry in value if entry)
    text = str(value).strip()
    if not text or text.lower() in ("null", "none", "n/a"):
        return None
    return text


def _clean_fields(parsed: Dict[str, Any]) -> Dict[str, Any]:
    fields_out: Dict[str, Any] = {}
    for name in EXTRACTION_FIELDS:
        value = parsed.get(name)
        fields_out[name] = _year(value) if name == "year" else _text_or_none(value)
    fields_out["confidence"] = _confidence(parsed.get("confidence"))
    return fields_out


def _parse_json(text: str) -> Optional[Dict[str, Any]]:
    for span in _balanced_spans(text):
        try:
            parsed = json.loads(span)
        except ValueError:
            continue
        if isinstance(parsed, dict) and any(name in parsed for name in EXTRACTION_FIELDS):
            return parsed
    return None


def _scan_lines(text: str) -> Optional[Dict[str, Any]]:
    found: Dict[str, Any] = {}
    for line in text.splitlines():
        match = _LINE_PATTERN.match(line)
        if not match:
            continue
        key = match.group(1).lower()
        value = match.group(2).strip().strip("*\"',").strip()
        if key in found or not value:
            continue
        found[key] = value
    return found or None


def parse_gemini_response(text: Optional[str]) -> CoverExtraction:
    """Interpret model output: JSON span, then ``key: value`` lines, then placeholder."""
    raw = text or ""
    parsed = _parse_json(raw)
    if parsed is not None:
        return CoverExtraction(ParseKind.PARSED, _clean_fields(parsed), raw_text=raw)

    scanned = _scan_lines(raw)
    if scanned is not None:
        fields_out = _clean_fields(scanned)
        fields_out["confidence"] = LINE_SCAN_CONFIDENCE
        return CoverExtraction(ParseKind.PARTIALLY_PARSED, fields_out, raw_text=raw)

    return placeholder(raw_text=raw)


def placeholder(*, raw_text: str = "", error: Optional[str] = None) -> CoverExtraction:
    return CoverExtraction(ParseKind.FALLBACK, dict(PLACEHOLDER), raw_text=raw_text, error=error)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------
class GeminiClient:
    """Cover recognition over the Gemini ``generateContent`` endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def _payload(self, image_base64: str, mime_type: str) -> Dict[str, Any]:
        return {
            "contents": [
                {
                    "parts": [
                        {"text": PROMPT},
                        {"inline_data": {"mime_type": mime_type, "data": image_base64}},
                    ]
                }
            ],
            "generationConfig": {
                "temperature": 0.1,
                "topK": 32,
                "topP": 1,
                "maxOutputTokens": 1024,
            },
        }

    def generate(self, image_base64: str, mime_type: str) -> str:
        """Return the model's raw text. Raises on transport or shape errors."""
        response = requests.post(
            f"{GEMINI_API_URL}/{self.model}:generateContent",
            headers={"Content-Type": "application/json", "x-goog-api-key": self.api_key or ""},
            json=self._payload(image_base64, mime_type),
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not candidates:
            raise ValueError("Invalid response from Gemini API")
        parts = (candidates[0].get("content") or {}).get("parts") or [{}]
        return parts[0].get("text") or ""

    def extract_cover_info(self, image_base64: str, mime_type: str = "image/jpeg") -> CoverExtraction:
        if not self.api_key:
            logger.warning("Gemini API key not configured; returning placeholder extraction")
            return placeholder(error="Gemini API key not configured")
        try:
            text = self.generate(image_base64, mime_type)
        except requests.Timeout:
            logger.warning("Gemini request timed out")
            return placeholder(error="Request timeout - please try again")
        except (requests.RequestException, ValueError, KeyError, IndexError, AttributeError) as error:
            logger.warning("Gemini cover recognition failed: %s", error)
            return placeholder(error=f"Failed to process image: {error}")

        logger.debug("Gemini response: %s", text)
        return parse_gemini_response(text)
