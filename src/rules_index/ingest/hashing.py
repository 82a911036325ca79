"""Page fingerprints used to skip reindexing unchanged documents."""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from .models import Page, PageHash


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def compute_page_hashes(pages: Iterable[Page]) -> List[PageHash]:
    return [PageHash(page_number=page.page_number, hash=hash_text(page.text)) for page in pages]


def hashes_match(previous: Sequence[PageHash], current: Sequence[PageHash]) -> bool:
    """True when both lists cover the same page numbers with identical hashes, in order."""

    if len(previous) != len(current):
        return False
    return all(
        old.page_number == new.page_number and old.hash == new.hash for old, new in zip(previous, current)
    )


@dataclass(slots=True)
class ReindexDecision:
    skip: bool
    page_hashes: List[PageHash]
    reason: str


def decide_reindex(
    previous: Sequence[PageHash],
    pages: Sequence[Page],
    *,
    previously_indexed: bool,
    force: bool = False,
) -> ReindexDecision:
    """Decide whether a run over ``pages`` can skip the destructive rewrite."""

    current = compute_page_hashes(pages)
    if force:
        return ReindexDecision(skip=False, page_hashes=current, reason="forced")
    if not previously_indexed:
        return ReindexDecision(skip=False, page_hashes=current, reason="not-indexed")
    if not previous:
        return ReindexDecision(skip=False, page_hashes=current, reason="no-previous-hashes")
    if hashes_match(previous, current):
        return ReindexDecision(skip=True, page_hashes=current, reason="unchanged")
    return ReindexDecision(skip=False, page_hashes=current, reason="changed")
