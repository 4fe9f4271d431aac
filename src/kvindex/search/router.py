"""Backing store routing.

Resolves a field to its configured store name and that name to a client,
groups keys per store so each store receives one bulk call, and turns
backend faults into :class:`StoreUnavailable`.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
import logging

from kvindex.errors import ConfigurationError, KvIndexError, StoreUnavailable
from kvindex.observability.metrics import STORE_CALLS
from kvindex.search.schema import IndexSpec
from kvindex.search.stores import KeyValueStore


logger = logging.getLogger(__name__)


class StoreRouter:
    """Maps fields to named stores and batches operations per store."""

    def __init__(
        self,
        stores: Mapping[str, KeyValueStore],
        spec: IndexSpec,
        *,
        default_store: str = "default",
    ) -> None:
        if not stores:
            raise ConfigurationError("At least one named store is required")
        self._stores = dict(stores)
        self.spec = spec
        self.default_store = default_store
        for field_name in spec:
            self.store_name_for(field_name)

    @property
    def store_names(self) -> list[str]:
        return sorted(self._stores)

    def store_name_for(self, field_name: str) -> str:
        """Store name configured for a field; raises ConfigurationError if unknown."""
        name = self.spec.config_for(field_name).store or self.default_store
        if name not in self._stores:
            raise ConfigurationError(
                f"Field '{field_name}' is routed to unknown store '{name}'. Configured: {self.store_names}"
            )
        return name

    def store(self, name: str) -> KeyValueStore:
        try:
            return self._stores[name]
        except KeyError:
            raise ConfigurationError(f"Unknown store '{name}'. Configured: {self.store_names}") from None

    def group_fields(self, fields: Iterable[str]) -> dict[str, list[str]]:
        """Group field names by the store they are routed to, preserving order."""
        grouped: dict[str, list[str]] = defaultdict(list)
        for field_name in fields:
            grouped[self.store_name_for(field_name)].append(field_name)
        return dict(grouped)

    def _call(self, store_name: str, operation: str, method: str, *args):
        client = self.store(store_name)
        STORE_CALLS.labels(store=store_name, operation=operation).inc()
        try:
            return getattr(client, method)(*args)
        except KvIndexError:
            raise
        except OSError as exc:
            logger.error(
                "Store call failed",
                extra={"store": store_name, "operation": operation, "error": str(exc)},
            )
            raise StoreUnavailable(store_name, operation, str(exc)) from exc

    def get(self, store_name: str, key: str) -> bytes | None:
        return self._call(store_name, "get", "get", key)

    def get_bulk(self, store_name: str, keys: Iterable[str]) -> dict[str, bytes]:
        unique = list(dict.fromkeys(keys))
        if not unique:
            return {}
        return self._call(store_name, "get_bulk", "get_bulk", unique)

    def set(self, store_name: str, key: str, value: bytes) -> None:
        self._call(store_name, "set", "set", key, value)

    def set_bulk(self, store_name: str, items: Mapping[str, bytes]) -> None:
        if not items:
            return
        self._call(store_name, "set_bulk", "set_bulk", dict(items))

    def increment(self, store_name: str, key: str) -> int:
        return int(self._call(store_name, "increment", "increment", key))

    def remove(self, store_name: str, key: str) -> None:
        self._call(store_name, "remove", "remove", key)

    def close(self) -> None:
        for client in self._stores.values():
            client.close()
