"""Identify books from photos and look up their metadata via Gemini."""

from __future__ import annotations

import json
from typing import Protocol

import httpx
import structlog

from .errors import IdentificationError
from .models import IdentifiedBook, from_json_key

log = structlog.get_logger()

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
_REQUEST_TIMEOUT = 30

IDENTIFY_PROMPT = (
    "Analyze this image. If there is a barcode, extract the ISBN. "
    "If there is a book cover or spine, read the Title and Author. Return a JSON object."
)

METADATA_PROMPT = """Find detailed metadata for the book matching this query: "{query}".
If it is an ISBN, look it up. If it is a title, find the best match.
Return the data in {language}.
Provide a visual description of the cover in 5 words for a placeholder."""

IDENTIFY_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "isbn": {
            "type": "STRING",
            "description": "The ISBN-13 or ISBN-10 if visible. Empty string if not found.",
        },
        "title": {"type": "STRING", "description": "The title of the book if visible."},
        "author": {"type": "STRING", "description": "The author of the book if visible."},
    },
}

METADATA_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "title": {"type": "STRING"},
        "author": {"type": "STRING"},
        "publisher": {"type": "STRING"},
        "year": {"type": "STRING"},
        "genre": {
            "type": "STRING",
            "description": "The main genre, e.g., Novel, Science Fiction, History",
        },
        "isbn": {"type": "STRING"},
        "coverDescription": {"type": "STRING"},
    },
}

METADATA_FIELDS = (
    "title",
    "author",
    "publisher",
    "year",
    "genre",
    "isbn",
    "cover_description",
)


class Identifier(Protocol):
    """Anything that can recognise a book in a photo and enrich a query."""

    async def identify_from_image(self, image: str) -> IdentifiedBook | None: ...

    async def fetch_metadata(self, query: str) -> dict[str, str] | None: ...


class GeminiIdentifier:
    """Book identification backed by the Gemini generateContent REST API.

    Both calls either return data, return None when nothing useful was
    found, or raise IdentificationError. There is no retry.
    """

    def __init__(
        self,
        api_key: str,
        vision_model: str = "gemini-2.5-flash",
        text_model: str = "gemini-2.5-flash",
        language: str = "English",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.vision_model = vision_model
        self.text_model = text_model
        self.language = language
        self._client = client

    async def _generate(self, model: str, parts: list[dict], schema: dict) -> dict | None:
        """Run one generateContent call and decode its JSON answer."""
        url = f"{GEMINI_BASE_URL}/models/{model}:generateContent"
        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema,
            },
        }
        try:
            if self._client is not None:
                resp = await self._client.post(
                    url, params={"key": self.api_key}, json=payload, timeout=_REQUEST_TIMEOUT
                )
            else:
                async with httpx.AsyncClient() as client:
                    resp = await client.post(
                        url, params={"key": self.api_key}, json=payload, timeout=_REQUEST_TIMEOUT
                    )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("gemini_request_failed", model=model, error=str(e))
            raise IdentificationError(str(e)) from e

        if not isinstance(data, dict):
            raise IdentificationError("malformed response")
        candidates = data.get("candidates") or []
        if not isinstance(candidates, list):
            raise IdentificationError("malformed response")
        if not candidates:
            log.debug("gemini_no_candidates", model=model)
            return None
        first = candidates[0]
        content = (first.get("content") if isinstance(first, dict) else None) or {}
        parts = (content.get("parts") if isinstance(content, dict) else None) or []
        if (
            not isinstance(first, dict)
            or not isinstance(content, dict)
            or not isinstance(parts, list)
            or not all(isinstance(p, dict) for p in parts)
        ):
            log.warning("gemini_malformed_envelope", model=model)
            raise IdentificationError("malformed response")
        text = "".join(str(part.get("text") or "") for part in parts)
        if not text.strip():
            return None
        try:
            answer = json.loads(text)
        except ValueError as e:
            log.warning("gemini_malformed_answer", model=model, error=str(e))
            raise IdentificationError("malformed response") from e
        if not isinstance(answer, dict):
            raise IdentificationError("malformed response")
        return answer

    async def identify_from_image(self, image: str) -> IdentifiedBook | None:
        """Read ISBN, title and author from a base64 JPEG payload."""
        answer = await self._generate(
            self.vision_model,
            [
                {"inline_data": {"mime_type": "image/jpeg", "data": image}},
                {"text": IDENTIFY_PROMPT},
            ],
            IDENTIFY_SCHEMA,
        )
        if answer is None:
            return None
        found = IdentifiedBook(
            isbn=str(answer.get("isbn") or "").strip(),
            title=str(answer.get("title") or "").strip(),
            author=str(answer.get("author") or "").strip(),
        )
        if found.is_empty:
            log.debug("identify_nothing_found")
            return None
        log.debug("identify_hit", isbn=found.isbn, title=found.title)
        return found

    async def fetch_metadata(self, query: str) -> dict[str, str] | None:
        """Look up book details by ISBN or free-text title and author.

        Returns only the fields the service answered, keyed by snake_case
        field name.
        """
        answer = await self._generate(
            self.text_model,
            [{"text": METADATA_PROMPT.format(query=query, language=self.language)}],
            METADATA_SCHEMA,
        )
        if not answer:
            return None
        details = {}
        for key, value in answer.items():
            name = from_json_key(key)
            if name in METADATA_FIELDS and value is not None:
                details[name] = str(value)
        if not details:
            return None
        log.debug("metadata_hit", query=query, title=details.get("title", ""))
        return details
