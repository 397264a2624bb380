from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")

UNSUPPORTED_EXTENSIONS = {".accdb"}
UNSUPPORTED_MEDIA_TYPES = {"application/msaccess", "application/x-msaccess"}

# error kinds
UNSUPPORTED_FORMAT = "unsupported-format"
EXTRACTION_FAILURE = "extraction-failure"
EMPTY_RESULT = "empty-result"
MALFORMED_RESPONSE = "malformed-response"

EMPTY_RESPONSE_MSG = "API returned an empty response."
MALFORMED_MSG = "Failed to parse the data from the AI. Please try again with a clearer document."
GENERIC_FAILURE_MSG = "Please check the server log."

PROMPT = """Analyze the provided document (which could be an image, PDF, or Word document) of a bakery order. The document can be one of two types:
1. A main "Slice Order" list with multiple routes/locations in a table.
2. An individual production slip for a single route (e.g., a page with "FINNERTY" at the top).

First, find and extract the 'Issue Date' if it's present (usually at the top right of the main list).

If the document is the main list: for each location, extract the route name, the full product description from the table, and the number from the 'Trays' column.

If the document is an individual production slip:
- The route name is the main title on the page (e.g., "FINNERTY").
- Extract the "Product name".
- Extract the "Quantity" and map it to the 'trays' field.

Ignore any handwritten checkmarks or circles.
Provide the output as a single JSON object according to the provided schema. If it's a single slip, the 'orders' array will contain just one item.
If a value like 'issueDate' is not present on a slip, return an empty string for it."""

RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "issueDate": {
            "type": "STRING",
            "description": "The main issue date from the top of the document, formatted as 'DAY DD MMM'. This might only be present on a main list.",
        },
        "orders": {
            "type": "ARRAY",
            "description": "A list of all orders. This may contain one or many orders depending on the document type.",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "route": {"type": "STRING", "description": "The name of the route or location (e.g., ATHLONE, FINNERTY)."},
                    "product": {"type": "STRING", "description": "The full product name (e.g., B441 4\" Regular Tray 60 or '4 Reg')."},
                    "trays": {"type": "INTEGER", "description": "The quantity of trays for that specific product and route."},
                },
                "required": ["route", "product", "trays"],
            },
        },
    },
    "required": ["issueDate", "orders"],
}


# =========================
# PAYLOAD SCHEMA
# =========================
class ExtractedOrder(BaseModel):
    route: str
    product: str
    trays: int


class ExtractionPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    issue_date: str = Field(alias="issueDate")
    orders: List[ExtractedOrder]


# =========================
# TAGGED RESULT
# =========================
@dataclass(frozen=True)
class Ok:
    payload: ExtractionPayload


@dataclass(frozen=True)
class Err:
    kind: str
    reason: str


ExtractionResult = Union[Ok, Err]


@dataclass(frozen=True)
class SourceFile:
    name: str
    media_type: str
    path: Path

    def read_bytes(self) -> bytes:
        return Path(self.path).read_bytes()


def is_unsupported(name: str, media_type: str = "") -> bool:
    return Path(name or "").suffix.lower() in UNSUPPORTED_EXTENSIONS or (media_type or "").lower() in UNSUPPORTED_MEDIA_TYPES


def parse_response_text(text: Optional[str]) -> ExtractionResult:
    if not text or not text.strip():
        return Err(EMPTY_RESULT, EMPTY_RESPONSE_MSG)
    try:
        payload = ExtractionPayload.model_validate_json(text)
    except ValidationError as exc:
        print(f"[extract] Failed to parse JSON response: {exc.error_count()} error(s): {text[:200]!r}", flush=True)
        return Err(MALFORMED_RESPONSE, MALFORMED_MSG)
    return Ok(payload)


class GeminiExtractor:
    """
    One call per file: file bytes + instruction in, JSON per RESPONSE_SCHEMA out.
    The client is built on first use so importing this module never needs a key.
    """

    def __init__(self, api_key: Optional[str] = None, model: str = GEMINI_MODEL, client: Any = None):
        self.api_key = api_key
        self.model = model
        self._client = client

    @property
    def client(self):
        if self._client is None:
            from google import genai

            key = self.api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY")
            self._client = genai.Client(api_key=key)
        return self._client

    def _generate(self, data: bytes, media_type: str) -> Optional[str]:
        from google.genai import types

        response = self.client.models.generate_content(
            model=self.model,
            contents=[
                types.Part.from_bytes(data=data, mime_type=media_type),
                PROMPT,
            ],
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=RESPONSE_SCHEMA,
            ),
        )
        return response.text

    def __call__(self, source: SourceFile) -> ExtractionResult:
        if is_unsupported(source.name, source.media_type):
            return Err(UNSUPPORTED_FORMAT, "Microsoft Access (.accdb) files are not supported for analysis.")
        try:
            text = self._generate(source.read_bytes(), source.media_type or "application/octet-stream")
        except Exception as exc:
            print(f"[extract] {source.name}: request failed: {exc!r}", flush=True)
            return Err(EXTRACTION_FAILURE, str(exc) or GENERIC_FAILURE_MSG)
        return parse_response_text(text)
