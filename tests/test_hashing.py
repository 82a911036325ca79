from __future__ import annotations

import hashlib

from rules_index.ingest.hashing import compute_page_hashes, decide_reindex, hash_text, hashes_match
from rules_index.ingest.models import PageHash

from conftest import make_pages


def test_page_hashes_are_sha256_of_page_text() -> None:
    hashes = compute_page_hashes(make_pages("alpha", "beta"))

    assert hashes == [
        PageHash(page_number=1, hash=hashlib.sha256(b"alpha").hexdigest()),
        PageHash(page_number=2, hash=hashlib.sha256(b"beta").hexdigest()),
    ]
    assert hash_text("alpha") == hashes[0].hash


def test_identical_pages_are_skipped_when_previously_indexed() -> None:
    pages = make_pages("alpha", "beta")
    previous = compute_page_hashes(pages)

    decision = decide_reindex(previous, make_pages("alpha", "beta"), previously_indexed=True)

    assert decision.skip
    assert decision.page_hashes == previous
    assert decision.reason == "unchanged"


def test_changed_page_count_forces_reindex() -> None:
    previous = compute_page_hashes(make_pages("alpha", "beta"))

    decision = decide_reindex(previous, make_pages("alpha", "beta", "gamma"), previously_indexed=True)

    assert not decision.skip
    assert decision.reason == "changed"


def test_force_and_unindexed_sources_never_skip() -> None:
    pages = make_pages("alpha")
    previous = compute_page_hashes(pages)

    assert not decide_reindex(previous, pages, previously_indexed=True, force=True).skip
    assert not decide_reindex(previous, pages, previously_indexed=False).skip
    assert not decide_reindex([], pages, previously_indexed=True).skip


def test_hashes_match_compares_page_numbers() -> None:
    first = [PageHash(page_number=1, hash="x")]
    shifted = [PageHash(page_number=2, hash="x")]

    assert hashes_match(first, list(first))
    assert not hashes_match(first, shifted)
