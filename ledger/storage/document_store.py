"""Partition/sort-keyed document store.

``DocumentStore`` is the interface the core codes against; the production
implementation is an external collaborator (a managed key-value store with
secondary indexes and multi-item transactions). ``InMemoryDocumentStore`` is
a faithful local implementation used for development and tests.

Items are plain dicts. The base table is keyed by ``PK``/``SK``; secondary
index ``GSIn`` is keyed by ``GSInPK``/``GSInSK`` and only contains items that
carry both attributes.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Protocol, Union

DEFAULT_MAX_TRANSACTION_ITEMS = 100
INDEX_NAMES = ("GSI1", "GSI2", "GSI3")


class StoreError(Exception):
    """Base class for store-level failures (not domain errors)."""


class ConditionFailedError(StoreError):
    """A conditional put found the item in the wrong state."""


class TransactionCanceledError(StoreError):
    """A transaction was rejected; nothing was written."""

    def __init__(self, reasons: list[str]) -> None:
        super().__init__(f"Transaction cancelled: {', '.join(reasons)}")
        self.reasons = reasons


class TransactionTooLargeError(StoreError):
    def __init__(self, item_count: int, limit: int) -> None:
        super().__init__(f"Transaction has {item_count} items; limit is {limit}")
        self.item_count = item_count
        self.limit = limit


class Condition(str, Enum):
    NOT_EXISTS = "attribute_not_exists"
    EXISTS = "attribute_exists"


@dataclass
class PutRequest:
    """One put inside a transaction."""

    table: str
    item: dict[str, Any]
    condition: Condition | None = None


@dataclass
class DeleteRequest:
    """One delete inside a transaction. Deleting a missing item is a no-op."""

    table: str
    pk: str
    sk: str
    condition: Condition | None = None


TransactItem = Union[PutRequest, DeleteRequest]


@dataclass
class QueryResult:
    items: list[dict[str, Any]] = field(default_factory=list)
    last_key: dict[str, Any] | None = None


class DocumentStore(Protocol):
    max_transaction_items: int

    def get(self, table: str, pk: str, sk: str) -> dict[str, Any] | None: ...

    def put(self, table: str, item: dict[str, Any], condition: Condition | None = None) -> None: ...

    def query(
        self,
        table: str,
        partition: str,
        *,
        index: str | None = None,
        sort_prefix: str | None = None,
        reverse: bool = False,
        limit: int | None = None,
        start_key: dict[str, Any] | None = None,
    ) -> QueryResult: ...

    def scan(
        self,
        table: str,
        predicate: Callable[[dict[str, Any]], bool] | None = None,
    ) -> list[dict[str, Any]]: ...

    def transact_write(self, requests: Iterable[TransactItem]) -> None: ...


def _key_attrs(index: str | None) -> tuple[str, str]:
    if index is None:
        return "PK", "SK"
    if index not in INDEX_NAMES:
        raise ValueError(f"Unknown index: {index}")
    return f"{index}PK", f"{index}SK"


def _order_key(item: dict[str, Any], sk_attr: str) -> tuple[str, str, str]:
    return (str(item.get(sk_attr, "")), str(item.get("PK", "")), str(item.get("SK", "")))


class InMemoryDocumentStore:
    """Thread-safe dict-based document store.

    Items are stored per table under their (PK, SK) primary key. Conditions
    are evaluated and transactions applied under a single lock, so a
    transaction is all-or-nothing to every reader.
    """

    def __init__(self, max_transaction_items: int = DEFAULT_MAX_TRANSACTION_ITEMS) -> None:
        self._tables: dict[str, dict[tuple[str, str], dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self.max_transaction_items = max_transaction_items

    # -- CRUD -----------------------------------------------------------------

    def get(self, table: str, pk: str, sk: str) -> dict[str, Any] | None:
        """Point get. Returns a copy, or None if not found."""
        with self._lock:
            item = self._tables.get(table, {}).get((pk, sk))
            return copy.deepcopy(item) if item is not None else None

    def put(self, table: str, item: dict[str, Any], condition: Condition | None = None) -> None:
        """Store or overwrite an item, honouring an optional condition."""
        key = self._primary_key(item)
        with self._lock:
            rows = self._tables.setdefault(table, {})
            if not self._condition_holds(rows, key, condition):
                raise ConditionFailedError(f"Condition {condition.value} failed for {key}")
            rows[key] = copy.deepcopy(item)

    def delete(self, table: str, pk: str, sk: str) -> bool:
        with self._lock:
            return self._tables.get(table, {}).pop((pk, sk), None) is not None

    # -- Queries --------------------------------------------------------------

    def query(
        self,
        table: str,
        partition: str,
        *,
        index: str | None = None,
        sort_prefix: str | None = None,
        reverse: bool = False,
        limit: int | None = None,
        start_key: dict[str, Any] | None = None,
    ) -> QueryResult:
        """Range query within one partition of the table or an index.

        Results are ordered by sort key (descending when *reverse*). When
        *limit* cuts the result short, ``last_key`` holds the key attributes
        of the last returned item; pass it back as *start_key* to continue.
        """
        pk_attr, sk_attr = _key_attrs(index)
        with self._lock:
            matches = [
                copy.deepcopy(item)
                for item in self._tables.get(table, {}).values()
                if item.get(pk_attr) == partition
                and sk_attr in item
                and (sort_prefix is None or str(item[sk_attr]).startswith(sort_prefix))
            ]

        matches.sort(key=lambda it: _order_key(it, sk_attr), reverse=reverse)

        if start_key:
            boundary = _order_key(start_key, sk_attr)
            if reverse:
                matches = [it for it in matches if _order_key(it, sk_attr) < boundary]
            else:
                matches = [it for it in matches if _order_key(it, sk_attr) > boundary]

        last_key = None
        if limit is not None and len(matches) > limit:
            matches = matches[:limit]
            last = matches[-1]
            last_key = {
                attr: last[attr]
                for attr in ("PK", "SK", pk_attr, sk_attr)
                if attr in last
            }

        return QueryResult(items=matches, last_key=last_key)

    def scan(
        self,
        table: str,
        predicate: Callable[[dict[str, Any]], bool] | None = None,
    ) -> list[dict[str, Any]]:
        """Return every item in *table* matching *predicate*."""
        with self._lock:
            return [
                copy.deepcopy(item)
                for item in self._tables.get(table, {}).values()
                if predicate is None or predicate(item)
            ]

    # -- Transactions ---------------------------------------------------------

    def transact_write(self, requests: Iterable[TransactItem]) -> None:
        """Apply all puts and deletes atomically, or none of them.

        Raises TransactionTooLargeError when the request exceeds
        ``max_transaction_items`` and TransactionCanceledError when any
        condition fails.
        """
        requests = list(requests)
        if len(requests) > self.max_transaction_items:
            raise TransactionTooLargeError(len(requests), self.max_transaction_items)

        keyed = [(req, self._request_key(req)) for req in requests]
        seen: set[tuple[str, tuple[str, str]]] = set()
        for req, key in keyed:
            if (req.table, key) in seen:
                raise TransactionCanceledError([f"duplicate item {key}"])
            seen.add((req.table, key))

        with self._lock:
            failures = [
                f"{req.table}{key}: {req.condition.value}"
                for req, key in keyed
                if not self._condition_holds(self._tables.get(req.table, {}), key, req.condition)
            ]
            if failures:
                raise TransactionCanceledError(failures)
            for req, key in keyed:
                rows = self._tables.setdefault(req.table, {})
                if isinstance(req, DeleteRequest):
                    rows.pop(key, None)
                else:
                    rows[key] = copy.deepcopy(req.item)

    # -- Introspection --------------------------------------------------------

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._tables.get(table, {}))

    # -- Internals ------------------------------------------------------------

    @classmethod
    def _request_key(cls, req: TransactItem) -> tuple[str, str]:
        if isinstance(req, DeleteRequest):
            return req.pk, req.sk
        return cls._primary_key(req.item)

    @staticmethod
    def _primary_key(item: dict[str, Any]) -> tuple[str, str]:
        try:
            return str(item["PK"]), str(item["SK"])
        except KeyError as exc:
            raise ValueError("Item is missing its PK/SK attributes") from exc

    @staticmethod
    def _condition_holds(
        rows: dict[tuple[str, str], dict[str, Any]],
        key: tuple[str, str],
        condition: Condition | None,
    ) -> bool:
        if condition is None:
            return True
        exists = key in rows
        return not exists if condition == Condition.NOT_EXISTS else exists
