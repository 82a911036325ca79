from __future__ import annotations

import pytest

from rules_index.ingest.sections import (
    HEADING_RULES,
    build_sections,
    classify_section_type,
    detect_headings,
    headings_from_hints,
    match_heading,
)

from conftest import make_pages


def test_pages_without_headings_fall_back_to_one_section_per_page() -> None:
    pages = make_pages("just some prose about things.", "more prose here.")

    sections = build_sections(pages)

    assert [section.title for section in sections] == ["Page 1", "Page 2"]
    assert [(section.page_start, section.page_end) for section in sections] == [(1, 1), (2, 2)]
    assert sections[1].text == "more prose here."


def test_markdown_headings_nest_into_section_paths() -> None:
    pages = make_pages(
        "# Core Rules\nIntro text.\n## Movement\nMove 6 inches.",
        "## Shooting\nRoll to hit.\n# Equipment\nSwords.",
    )

    sections = build_sections(pages)

    assert [section.section_path for section in sections] == [
        ["Core Rules"],
        ["Core Rules", "Movement"],
        ["Core Rules", "Shooting"],
        ["Equipment"],
    ]
    movement = sections[1]
    assert movement.text == "Move 6 inches."
    assert (movement.page_start, movement.page_end) == (1, 1)
    assert [section.section_type for section in sections] == ["core", "core", "core", "equipment"]
    assert [section.level for section in sections] == [1, 2, 2, 1]


def test_text_before_first_heading_becomes_introduction() -> None:
    pages = make_pages("Welcome to the game.\n# Rules\nText.")

    sections = build_sections(pages)

    assert [section.title for section in sections] == ["Introduction", "Rules"]
    assert sections[0].text == "Welcome to the game."


def test_section_spans_pages_until_next_heading() -> None:
    pages = make_pages(
        "CAMPAIGN RULES\nBody one.",
        "Body two.",
        "Body three.\nChapter 2: Skills\nHeroes learn.",
    )

    sections = build_sections(pages)

    campaign, skills = sections
    assert (campaign.page_start, campaign.page_end) == (1, 3)
    assert campaign.text == "Body one.\nBody two.\nBody three."
    assert campaign.section_type == "core"
    assert skills.title == "Chapter 2: Skills"
    assert skills.section_path == ["Chapter 2: Skills"]
    assert skills.section_type == "skills"


def test_section_ends_on_previous_page_when_heading_opens_a_page() -> None:
    pages = make_pages("# Alpha\nAlpha body.", "# Beta\nBeta body.")

    alpha, beta = build_sections(pages)

    assert (alpha.page_start, alpha.page_end) == (1, 1)
    assert (beta.page_start, beta.page_end) == (2, 2)


@pytest.mark.parametrize(
    ("line", "rule", "level"),
    [
        ("Chapter 3 Campaigns", "chapter", 1),
        ("### Hired Swords", "markdown", 3),
        ("1.2 Movement Phase", "numbered", 2),
        ("4. Scenarios", "numbered", 1),
        ("EXPLORATION", "all-caps", 2),
        ("Exploration", "domain", 2),
    ],
)
def test_heading_rules_in_priority_order(line: str, rule: str, level: int) -> None:
    match = match_heading(line)

    assert match is not None
    assert match.rule == rule
    assert match.level == level


@pytest.mark.parametrize("line", ["1-2 Ambush", "1 Storm", "| A | B |", "ab", "Roll a dice for each model."])
def test_non_heading_lines(line: str) -> None:
    assert match_heading(line) is None


def test_heading_rules_are_sorted_by_priority() -> None:
    priorities = [rule.priority for rule in HEADING_RULES]

    assert priorities == sorted(priorities)


@pytest.mark.parametrize(
    ("title", "expected"),
    [
        ("Loot Tables", "exploration"),
        ("Hero Skills", "skills"),
        ("Post-Battle Sequence", "post-game"),
        ("Weapons and Armour", "equipment"),
        ("Combat Rules", "core"),
        ("Scribbles", "other"),
    ],
)
def test_classify_section_type(title: str, expected: str) -> None:
    assert classify_section_type(title) == expected


def test_heading_hints_are_located_in_page_text() -> None:
    pages = make_pages("Intro words\nSkills of heroes\nText", "Other page")

    headings = headings_from_hints(pages, [(1, "skills of heroes", 2), (5, "Missing", 1), (2, "Absent", 1)])

    assert len(headings) == 1
    assert (headings[0].page_number, headings[0].line_index, headings[0].level) == (1, 1, 2)


def test_detect_headings_records_positions() -> None:
    pages = make_pages("prose\n# First", "## Second\nbody")

    headings = detect_headings(pages)

    assert [(heading.page_number, heading.line_index, heading.title) for heading in headings] == [
        (1, 1, "First"),
        (2, 0, "Second"),
    ]
