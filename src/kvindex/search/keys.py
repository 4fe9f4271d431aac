"""Canonical key scheme shared by every store.

| Purpose          | Key pattern                               |
|------------------|-------------------------------------------|
| Posting          | ``<namespace>:<field>:<term-or-term-id>`` |
| Term-id mapping  | ``<namespace>::term_id::<term>``          |
| Term-id counter  | ``<namespace>::next_term_id``             |
| Document summary | ``<namespace>::summary::<id>``            |
"""

from __future__ import annotations


def posting_key(namespace: str, field_name: str, term_key: str | int) -> str:
    return f"{namespace}:{field_name}:{term_key}"


def term_id_key(namespace: str, term: str) -> str:
    return f"{namespace}::term_id::{term}"


def term_counter_key(namespace: str) -> str:
    return f"{namespace}::next_term_id"


def summary_key(namespace: str, doc_id: str) -> str:
    return f"{namespace}::summary::{doc_id}"
