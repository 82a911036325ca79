from __future__ import annotations

from rules_index.ingest.models import Confidence
from rules_index.ingest.pipeline import IndexPipeline, IndexPipelineConfig, stable_id
from rules_index.ingest.structured import StructuredImport

from conftest import make_pages
from test_structured import structured_payload

RULEBOOK_PAGES = (
    "# Exploration\nAfter each battle roll on the table.\nExploration Results\n1-2 Ambush\n3-4 Treasure\n5-6 Nothing",
    "# Equipment\n| Item | Cost |\n|---|---|\n| Sword | 10gc |\n| Shield | 5gc |",
)


def test_index_pages_builds_sections_tables_chunks_and_datasets() -> None:
    result = IndexPipeline().index_pages("src-1", make_pages(*RULEBOOK_PAGES))

    assert [section.title for section in result.sections] == ["Exploration", "Equipment"]
    assert [(table.table_type, table.page_number) for table in result.tables] == [("dice-roll", 1), ("pipe", 2)]
    assert result.tables[0].title == "Exploration Results"
    assert result.tables[1].confidence is Confidence.HIGH
    assert [dataset.name for dataset in result.datasets] == ["Equipment"]
    assert [chunk.order_index for chunk in result.chunks] == [0, 1]
    assert set(result.timings) == {"detectSections", "detectTables", "buildChunks", "detectDatasets"}


def test_ids_are_deterministic_and_linked() -> None:
    first = IndexPipeline().index_pages("src-1", make_pages(*RULEBOOK_PAGES))
    second = IndexPipeline().index_pages("src-1", make_pages(*RULEBOOK_PAGES))

    assert [section.id for section in first.sections] == [section.id for section in second.sections]
    assert first.sections[0].id == stable_id("src-1", "section", 0)
    assert first.chunks[0].id == stable_id("src-1", "chunk", 0)
    assert first.chunks[1].section_id == first.sections[1].id


def test_exploration_chunk_carries_dice_hints() -> None:
    result = IndexPipeline().index_pages("src-1", make_pages(*RULEBOOK_PAGES))

    hints = result.chunks[0].score_hints
    assert hints.has_dice_table
    assert hints.has_roll_ranges
    assert hints.section_type == "exploration"
    assert result.chunks[1].score_hints.has_table_pattern


def test_supplied_tables_replace_detection() -> None:
    result = IndexPipeline().index_pages("src-1", make_pages(*RULEBOOK_PAGES), tables=[])

    assert result.tables == []
    assert result.datasets == []


def test_small_target_produces_overlapping_chunks() -> None:
    long_page = "# Skills\n" + " ".join(f"Heroes learn skill number {index}." for index in range(40))
    pipeline = IndexPipeline(IndexPipelineConfig(target_chars=200, overlap_chars=40))

    result = pipeline.index_pages("src-1", make_pages(long_page))

    assert len(result.chunks) > 1
    assert all(len(chunk.text) <= 200 for chunk in result.chunks)
    assert all(chunk.overlap_chars == 40 for chunk in result.chunks[1:])


def test_index_structured_uses_explicit_datasets() -> None:
    data = StructuredImport.model_validate(structured_payload())

    result = IndexPipeline().index_structured("src-2", data)

    assert len(result.sections) == 3
    assert len(result.chunks) == 3
    assert [dataset.name for dataset in result.datasets] == ["Crew Types"]
    assert "mapStructured" in result.timings
    assert result.chunks[0].page_start is None
