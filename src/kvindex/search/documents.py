"""Generic access to host records.

The engine never inspects host objects directly. A :class:`DocumentAdapter`
supplies the two accessors it needs: the record id and the value of a
field (a string, a list of strings, or ``None``). Materializing full
records from matched ids is the job of a host-side :class:`RecordLookup`.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol


FieldValue = str | Sequence[str] | None


class RecordLookup(Protocol):
    """Host collaborator that loads full records for matched ids."""

    def find(self, ids: Iterable[str]) -> list[Any]:  # pragma: no cover - interface definition
        ...


@dataclass(frozen=True)
class DocumentAdapter:
    """Id and field accessors for one kind of host record."""

    id_of: Callable[[Any], Any]
    field_of: Callable[[Any, str], Any]

    def doc_id(self, record: Any) -> str:
        value = self.id_of(record)
        if value is None or value == "":
            raise ValueError(f"Record has no id: {record!r}")
        return str(value)

    def value(self, record: Any, field_name: str) -> FieldValue:
        value = self.field_of(record, field_name)
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, Iterable):
            return [str(item) for item in value if item is not None]
        return str(value)


def mapping_adapter(id_field: str = "id") -> DocumentAdapter:
    """Adapter for dict-like records: ``{"id": 1, "title": "..."}``."""

    def id_of(record: Mapping[str, Any]) -> Any:
        return record.get(id_field)

    def field_of(record: Mapping[str, Any], field_name: str) -> Any:
        return record.get(field_name)

    return DocumentAdapter(id_of=id_of, field_of=field_of)


def attribute_adapter(id_attr: str = "id") -> DocumentAdapter:
    """Adapter for objects exposing fields as attributes."""

    def id_of(record: Any) -> Any:
        return getattr(record, id_attr, None)

    def field_of(record: Any, field_name: str) -> Any:
        return getattr(record, field_name, None)

    return DocumentAdapter(id_of=id_of, field_of=field_of)
