"""Tests for the storage layer.

Covers: InMemoryDocumentStore (conditions, queries, indexes, transactions),
InMemoryObjectStore, cursor encoding and the storage key mapping.
"""

import pytest

from ledger.storage import (
    Condition,
    ConditionFailedError,
    DeleteRequest,
    InMemoryDocumentStore,
    InMemoryObjectStore,
    PutRequest,
    TransactionCanceledError,
    TransactionTooLargeError,
    decode_cursor,
    encode_cursor,
)
from ledger.storage import keys


def _row(pk, sk, **attrs):
    return {"PK": pk, "SK": sk, **attrs}


# ============================================================================
# InMemoryDocumentStore - CRUD and conditions
# ============================================================================


class TestDocumentStoreCrud:
    def test_put_and_get(self):
        store = InMemoryDocumentStore()
        store.put("T", _row("A", "1", name="x"))
        assert store.get("T", "A", "1") == {"PK": "A", "SK": "1", "name": "x"}

    def test_get_missing_returns_none(self):
        assert InMemoryDocumentStore().get("T", "A", "1") is None

    def test_get_returns_copy(self):
        store = InMemoryDocumentStore()
        store.put("T", _row("A", "1", tags=["a"]))
        store.get("T", "A", "1")["tags"].append("b")
        assert store.get("T", "A", "1")["tags"] == ["a"]

    def test_not_exists_condition_blocks_overwrite(self):
        store = InMemoryDocumentStore()
        store.put("T", _row("A", "1", n=1), condition=Condition.NOT_EXISTS)
        with pytest.raises(ConditionFailedError):
            store.put("T", _row("A", "1", n=2), condition=Condition.NOT_EXISTS)
        assert store.get("T", "A", "1")["n"] == 1

    def test_exists_condition_requires_item(self):
        store = InMemoryDocumentStore()
        with pytest.raises(ConditionFailedError):
            store.put("T", _row("A", "1"), condition=Condition.EXISTS)

    def test_item_without_keys_is_rejected(self):
        with pytest.raises(ValueError):
            InMemoryDocumentStore().put("T", {"PK": "A"})

    def test_delete(self):
        store = InMemoryDocumentStore()
        store.put("T", _row("A", "1"))
        assert store.delete("T", "A", "1") is True
        assert store.delete("T", "A", "1") is False


# ============================================================================
# InMemoryDocumentStore - queries
# ============================================================================


class TestDocumentStoreQuery:
    @pytest.fixture
    def store(self):
        store = InMemoryDocumentStore()
        for v in range(1, 13):
            store.put("T", _row("CARD#c1", keys.version_sk(v), version=v))
        store.put("T", _row("CARD#c1", "LATEST", GSI1PK="FEED", GSI1SK="PUBLISH#2"))
        store.put("T", _row("CARD#c2", "LATEST", GSI1PK="FEED", GSI1SK="PUBLISH#1"))
        return store

    def test_prefix_query_excludes_other_rows(self, store):
        result = store.query("T", "CARD#c1", sort_prefix="V#")
        assert [it["version"] for it in result.items] == list(range(1, 13))

    def test_reverse_limit_one_is_highest_version(self, store):
        result = store.query("T", "CARD#c1", sort_prefix="V#", reverse=True, limit=1)
        assert result.items[0]["version"] == 12

    def test_index_query_only_sees_indexed_items(self, store):
        result = store.query("T", "FEED", index="GSI1", reverse=True)
        assert [it["PK"] for it in result.items] == ["CARD#c1", "CARD#c2"]

    def test_unknown_index_raises(self, store):
        with pytest.raises(ValueError):
            store.query("T", "FEED", index="GSI9")

    def test_pagination_walks_all_items_once(self, store):
        seen, start = [], None
        while True:
            result = store.query("T", "CARD#c1", sort_prefix="V#", limit=5, start_key=start)
            seen += [it["version"] for it in result.items]
            if result.last_key is None:
                break
            start = result.last_key
        assert seen == list(range(1, 13))

    def test_last_key_absent_when_page_is_exact(self, store):
        result = store.query("T", "CARD#c1", sort_prefix="V#", limit=12)
        assert result.last_key is None

    def test_scan_with_predicate(self, store):
        rows = store.scan("T", keys.is_version_row)
        assert len(rows) == 12


# ============================================================================
# InMemoryDocumentStore - transactions
# ============================================================================


class TestDocumentStoreTransactions:
    def test_transaction_writes_all_items(self):
        store = InMemoryDocumentStore()
        store.transact_write([PutRequest("T", _row("A", str(i))) for i in range(3)])
        assert store.count("T") == 3

    def test_failed_condition_writes_nothing(self):
        store = InMemoryDocumentStore()
        store.put("T", _row("A", "1"))
        with pytest.raises(TransactionCanceledError):
            store.transact_write([
                PutRequest("T", _row("A", "2")),
                PutRequest("T", _row("A", "1"), Condition.NOT_EXISTS),
            ])
        assert store.get("T", "A", "2") is None

    def test_oversized_transaction_rejected(self):
        store = InMemoryDocumentStore(max_transaction_items=2)
        with pytest.raises(TransactionTooLargeError) as exc:
            store.transact_write([PutRequest("T", _row("A", str(i))) for i in range(3)])
        assert exc.value.item_count == 3
        assert store.count("T") == 0

    def test_duplicate_item_in_transaction_rejected(self):
        store = InMemoryDocumentStore()
        with pytest.raises(TransactionCanceledError):
            store.transact_write([PutRequest("T", _row("A", "1")), PutRequest("T", _row("A", "1"))])

    def test_transaction_mixes_puts_and_deletes(self):
        store = InMemoryDocumentStore()
        store.put("T", _row("A", "old"))
        store.transact_write([
            PutRequest("T", _row("A", "new")),
            DeleteRequest("T", "A", "old"),
            DeleteRequest("T", "A", "never-written"),
        ])
        assert store.get("T", "A", "old") is None
        assert store.get("T", "A", "new") is not None
        assert store.count("T") == 1

    def test_delete_is_rolled_back_with_failed_put(self):
        store = InMemoryDocumentStore()
        store.put("T", _row("A", "1"))
        store.put("T", _row("A", "2"))
        with pytest.raises(TransactionCanceledError):
            store.transact_write([
                DeleteRequest("T", "A", "2"),
                PutRequest("T", _row("A", "1"), Condition.NOT_EXISTS),
            ])
        assert store.get("T", "A", "2") is not None


# ============================================================================
# InMemoryObjectStore
# ============================================================================


class TestObjectStore:
    def test_head_reports_size_and_type(self):
        objects = InMemoryObjectStore()
        objects.put("sources/s1/upload.pdf", b"abc", "application/pdf")
        meta = objects.head("sources/s1/upload.pdf")
        assert meta.content_length == 3
        assert meta.content_type == "application/pdf"

    def test_open_stream_chunks(self):
        objects = InMemoryObjectStore()
        objects.put("k", b"x" * 10, "text/html")
        assert list(objects.open_stream("k", chunk_size=4)) == [b"xxxx", b"xxxx", b"xx"]

    def test_missing_object(self):
        objects = InMemoryObjectStore()
        assert objects.head("nope") is None
        assert objects.open_stream("nope") is None
        with pytest.raises(KeyError):
            objects.copy("nope", "dest")

    def test_presigned_urls_name_bucket_and_key(self):
        objects = InMemoryObjectStore(bucket="b1")
        url = objects.presign_put("sources/s1/upload.pdf", "application/pdf", 60)
        assert url.startswith("memory://b1/sources/s1/upload.pdf?")
        assert "method=PUT" in url
        assert "signature=" in url


# ============================================================================
# Cursors
# ============================================================================


class TestCursors:
    def test_cursor_is_opaque_and_decodes(self):
        key = {"PK": "CARD#c1", "SK": "LATEST"}
        cursor = encode_cursor(key)
        assert "CARD" not in cursor
        assert decode_cursor(cursor) == key

    @pytest.mark.parametrize("bad", ["", None, "!!!", "bm90LWpzb24"])
    def test_malformed_cursor_starts_from_top(self, bad):
        assert decode_cursor(bad) is None


# ============================================================================
# Key mapping
# ============================================================================


class TestKeys:
    def test_version_sort_keys_order_numerically(self):
        sks = [keys.version_sk(v) for v in (2, 10, 9, 100)]
        assert sorted(sks) == [keys.version_sk(v) for v in (2, 9, 10, 100)]

    def test_strip_keys_removes_index_attributes(self):
        item = {"PK": "a", "SK": "b", "GSI1PK": "c", "GSI1SK": "d", "title": "t"}
        assert keys.strip_keys(item) == {"title": "t"}
