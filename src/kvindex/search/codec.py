"""Value encoding for the opaque bytes held by key-value stores."""

from __future__ import annotations

from typing import Any

import orjson

from kvindex.errors import CodecError
from kvindex.search.models import DocumentSummary, Posting


def _loads(raw: bytes | str, what: str) -> Any:
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise CodecError(f"Malformed {what} value: {exc}") from exc


def encode_posting(posting: Posting) -> bytes:
    return orjson.dumps(posting, option=orjson.OPT_SORT_KEYS)


def decode_posting(raw: bytes | str) -> Posting:
    data = _loads(raw, "posting")
    if not isinstance(data, dict):
        raise CodecError(f"Posting must be a JSON object, got {type(data).__name__}")
    return {str(doc_id): float(freq) for doc_id, freq in data.items()}


def encode_summary(summary: DocumentSummary) -> bytes:
    return orjson.dumps(summary.to_dict())


def decode_summary(raw: bytes | str) -> DocumentSummary:
    data = _loads(raw, "summary")
    if not isinstance(data, dict) or "i" not in data:
        raise CodecError("Summary must be a JSON object with an 'i' key")
    return DocumentSummary.from_dict(data)


def encode_term_id(term_id: int) -> bytes:
    return str(term_id).encode("ascii")


def decode_term_id(raw: bytes | str) -> int:
    text = raw.decode("ascii", errors="replace") if isinstance(raw, bytes) else raw
    try:
        return int(text)
    except ValueError as exc:
        raise CodecError(f"Malformed term id value: {text!r}") from exc
