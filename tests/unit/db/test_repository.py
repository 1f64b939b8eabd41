"""Tests for the Repository pattern."""

from __future__ import annotations

import json
import time

import pytest

from ragvault.db.repository import Repository
from ragvault.db.vectors import vector_to_blob
from ragvault.hashing import EMPTY_METADATA_HASH, metadata_hash


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


def _add(repo, owner="alice", path="doc.md", text="hello world", vector=(1.0, 0.0), meta=None,
         model="m"):
    doc_id = repo.upsert_document(owner, path)
    meta = meta or {}
    emb = repo.insert_embedding(
        document_id=doc_id,
        model_name=model,
        chunk_text=text,
        vector_blob=vector_to_blob(list(vector), 2),
        chunk_size=len(text.encode("utf-8")),
        metadata_json=json.dumps(meta),
        metadata_hash=metadata_hash(meta),
    )
    repo.add_document_size(doc_id, emb.chunk_size)
    return emb


# ------------------------------------------------------------------
# Documents
# ------------------------------------------------------------------

def test_upsert_document_returns_same_id(repo):
    first = repo.upsert_document("alice", "a.md")
    second = repo.upsert_document("alice", "a.md")
    assert first == second


def test_upsert_document_scoped_by_owner(repo):
    assert repo.upsert_document("alice", "a.md") != repo.upsert_document("bob", "a.md")


def test_upsert_document_refreshes_updated_at(repo):
    repo.upsert_document("alice", "a.md")
    before = repo.get_document("alice", "a.md")
    time.sleep(0.01)
    repo.upsert_document("alice", "a.md")
    after = repo.get_document("alice", "a.md")
    assert after.created_at == before.created_at
    assert after.updated_at > before.updated_at


def test_get_document_not_found(repo):
    assert repo.get_document("alice", "missing.md") is None


def test_add_document_size_accumulates(repo):
    _add(repo, text="abc")
    _add(repo, text="defgh")
    assert repo.get_document("alice", "doc.md").total_chunk_size == 8


def test_list_documents_newest_first(repo):
    repo.upsert_document("alice", "old.md")
    time.sleep(0.01)
    repo.upsert_document("alice", "new.md")
    repo.upsert_document("bob", "other.md")
    assert [d.file_path for d in repo.list_documents("alice")] == ["new.md", "old.md"]


# ------------------------------------------------------------------
# Embeddings
# ------------------------------------------------------------------

def test_insert_embedding_returns_stored_row(repo):
    emb = _add(repo, text="héllo", meta={"lang": "fr"})
    assert emb.id >= 1
    assert emb.chunk_text == "héllo"
    assert emb.chunk_size == 6
    assert emb.metadata == {"lang": "fr"}
    assert emb.metadata_hash == metadata_hash({"lang": "fr"})
    assert emb.vector == [1.0, 0.0]


def test_get_embedding_is_owner_scoped(repo):
    emb = _add(repo, owner="alice")
    assert repo.get_embedding("alice", emb.id) is not None
    assert repo.get_embedding("bob", emb.id) is None


def test_search_vec_orders_by_distance(repo):
    far = _add(repo, path="far.md", vector=(0.0, 1.0))
    near = _add(repo, path="near.md", vector=(1.0, 0.1))
    exact = _add(repo, path="exact.md", vector=(1.0, 0.0))
    matches = repo.search_vec("alice", vector_to_blob([1.0, 0.0], 2), "m", 10)
    assert [m.id for m in matches] == [exact.id, near.id, far.id]
    assert matches[0].similarity == pytest.approx(1.0, abs=1e-6)
    assert matches[0].similarity == pytest.approx(1.0 - matches[0].distance)


def test_search_vec_breaks_ties_by_id(repo):
    a = _add(repo, path="a.md", vector=(1.0, 1.0))
    b = _add(repo, path="b.md", vector=(1.0, 1.0))
    matches = repo.search_vec("alice", vector_to_blob([1.0, 1.0], 2), "m", 10)
    assert [m.id for m in matches] == [a.id, b.id]


def test_search_vec_limit(repo):
    for i in range(5):
        _add(repo, path=f"{i}.md", vector=(1.0, float(i)))
    assert len(repo.search_vec("alice", vector_to_blob([1.0, 0.0], 2), "m", 2)) == 2


def test_search_vec_filters_owner_and_model(repo):
    _add(repo, owner="bob")
    _add(repo, owner="alice", model="other-model")
    mine = _add(repo, owner="alice")
    matches = repo.search_vec("alice", vector_to_blob([1.0, 0.0], 2), "m", 10)
    assert [m.id for m in matches] == [mine.id]


def test_search_vec_metadata_hash_filter(repo):
    en = _add(repo, path="en.md", meta={"lang": "en"})
    plain = _add(repo, path="plain.md")
    query = vector_to_blob([1.0, 0.0], 2)

    filtered = repo.search_vec("alice", query, "m", 10, metadata_hash=metadata_hash({"lang": "en"}))
    assert [m.id for m in filtered] == [en.id]
    assert filtered[0].metadata == {"lang": "en"}

    empty = repo.search_vec("alice", query, "m", 10, metadata_hash=EMPTY_METADATA_HASH)
    assert [m.id for m in empty] == [plain.id]

    unfiltered = repo.search_vec("alice", query, "m", 10)
    assert {m.id for m in unfiltered} == {en.id, plain.id}


def test_list_chunks_newest_first_and_filtered(repo):
    first = _add(repo, path="a.md", meta={"k": 1})
    time.sleep(0.01)
    second = _add(repo, path="b.md")
    assert [c.id for c in repo.list_chunks("alice")] == [second.id, first.id]
    assert [c.id for c in repo.list_chunks("alice", metadata_hash({"k": 1}))] == [first.id]
    assert repo.list_chunks("bob") == []


# ------------------------------------------------------------------
# Purge
# ------------------------------------------------------------------

def test_storage_stats(repo):
    _add(repo, path="a.md", text="aaaa")
    _add(repo, path="a.md", text="bb")
    _add(repo, path="b.md", text="c")
    repo.upsert_document("alice", "empty.md")
    _add(repo, owner="bob", text="zzz")

    stats = repo.storage_stats("alice")
    assert stats.embedding_count == 3
    assert stats.document_count == 2
    assert stats.total_bytes == 7
    assert set(stats.file_paths) == {"a.md", "b.md"}


def test_storage_stats_empty_owner(repo):
    stats = repo.storage_stats("nobody")
    assert (stats.embedding_count, stats.document_count, stats.total_bytes) == (0, 0, 0)
    assert stats.file_paths == []


def test_delete_embeddings_by_owner(repo):
    _add(repo, path="a.md")
    _add(repo, path="b.md")
    theirs = _add(repo, owner="bob")

    assert repo.delete_embeddings_by_owner("alice") == 2
    assert repo.list_chunks("alice") == []
    assert repo.get_embedding("bob", theirs.id) is not None
    docs = repo.list_documents("alice")
    assert len(docs) == 2
    assert all(d.total_chunk_size == 0 for d in docs)


# ------------------------------------------------------------------
# API usage
# ------------------------------------------------------------------

def test_increment_api_usage(repo):
    assert repo.increment_api_usage("alice") == 1
    assert repo.increment_api_usage("alice") == 2
    assert repo.increment_api_usage("bob") == 1


def test_usage_stats(repo):
    _add(repo, path="a.md", text="abcd")
    _add(repo, path="b.md", text="ef")
    repo.increment_api_usage("alice")

    stats = repo.usage_stats("alice")
    assert stats.total_bytes == 6
    assert stats.api_requests == 1
    assert stats.document_count == 2
    assert stats.chunk_count == 2


def test_usage_stats_unknown_owner(repo):
    stats = repo.usage_stats("nobody")
    assert (stats.total_bytes, stats.api_requests, stats.document_count, stats.chunk_count) == (
        0, 0, 0, 0,
    )
