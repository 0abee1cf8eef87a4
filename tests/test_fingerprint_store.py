"""Tests for the content-hash extraction cache."""

from schemas.extraction import ExtractionData
from services import fingerprint_store


def test_hash_depends_only_on_bytes():
    assert fingerprint_store.compute_hash(b"invoice") == fingerprint_store.compute_hash(b"invoice")
    assert fingerprint_store.compute_hash(b"invoice") != fingerprint_store.compute_hash(b"invoice ")
    assert len(fingerprint_store.compute_hash(b"")) == 64


def test_lookup_miss(database):
    assert fingerprint_store.lookup("0" * 64) is None


def test_store_then_lookup(database):
    data = ExtractionData(vendor="Tata Power", emission_category="electricity", confidence=88)

    fingerprint_store.store("abc123", data)
    hit = fingerprint_store.lookup("abc123")

    assert hit is not None
    assert hit.document_hash == "abc123"
    assert hit.data == data


def test_last_write_wins(database, query):
    fingerprint_store.store("abc123", ExtractionData(vendor="First"))
    fingerprint_store.store("abc123", ExtractionData(vendor="Second"))

    assert fingerprint_store.lookup("abc123").data.vendor == "Second"
    assert query("SELECT COUNT(*) FROM document_fingerprints") == [(1,)]
