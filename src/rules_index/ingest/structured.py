"""Schema and mapping for pre-structured rulebook imports."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .keywords import unique
from .models import Confidence, Dataset, Section, Table
from .sections import classify_section_type
from .tables import table_keywords


class _ImportModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class StructuredTable(_ImportModel):
    name: str
    dice_type: Optional[str] = Field(default=None, alias="diceType")
    columns: List[str] = Field(default_factory=list)
    rows: List[Union[Dict[str, Any], List[Any]]] = Field(default_factory=list)


class StructuredSection(_ImportModel):
    title: str
    text: str = ""
    subsections: List["StructuredSection"] = Field(default_factory=list)
    tables: List[StructuredTable] = Field(default_factory=list)


class StructuredGroup(_ImportModel):
    name: str
    description: str = ""
    sections: List[StructuredSection] = Field(default_factory=list)


class StructuredDataset(_ImportModel):
    name: str
    type: str = "generic"
    fields: List[str] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)


class StructuredImport(_ImportModel):
    """A rulebook already split into groups, sections, tables and datasets."""

    version: int = 1
    name: str = ""
    groups: List[StructuredGroup] = Field(default_factory=list)
    tables: List[StructuredTable] = Field(default_factory=list)
    datasets: List[StructuredDataset] = Field(default_factory=list)


StructuredSection.model_rebuild()


@dataclass(slots=True)
class StructuredIndex:
    sections: List[Section] = field(default_factory=list)
    tables: List[Table] = field(default_factory=list)
    datasets: List[Dataset] = field(default_factory=list)


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


def _table_rows(table: StructuredTable) -> tuple[List[str], List[Dict[str, str]]]:
    columns = list(table.columns) or (["roll", "result"] if table.dice_type else [])
    rows: List[Dict[str, str]] = []
    for row in table.rows:
        if isinstance(row, dict):
            rows.append({str(key): _cell(value) for key, value in row.items()})
            continue
        keys = columns + [f"col{index + 1}" for index in range(len(columns), len(row))]
        rows.append({key: _cell(value) for key, value in zip(keys, row)})
    if not columns:
        columns = unique(key for row in rows for key in row)
    return columns, rows


def _render(columns: List[str], rows: List[Dict[str, str]]) -> str:
    lines = ["| " + " | ".join(columns) + " |", "|" + "---|" * len(columns)]
    lines.extend("| " + " | ".join(row.get(column, "") for column in columns) + " |" for row in rows)
    return "\n".join(lines)


def map_table(table: StructuredTable, context: str = "") -> Table:
    columns, rows = _table_rows(table)
    mapped = Table(
        title=table.name,
        raw_text=_render(columns, rows),
        parsed_rows=rows,
        confidence=Confidence.HIGH,
        table_type="structured",
        columns=columns,
        dice_type=table.dice_type.lower() if table.dice_type else None,
        header_context=context,
        start_line=0,
        end_line=len(rows),
    )
    mapped.keywords = table_keywords(mapped)
    return mapped


def _section_type(path: List[str]) -> str:
    for title in reversed(path):
        section_type = classify_section_type(title)
        if section_type != "other":
            return section_type
    return "other"


def map_structured_import(data: StructuredImport) -> StructuredIndex:
    """Map the import tree directly onto sections, tables and datasets."""

    result = StructuredIndex()

    def walk(section: StructuredSection, parent_path: List[str], level: int) -> None:
        path = [*parent_path, section.title]
        result.sections.append(
            Section(
                title=section.title,
                text=section.text.strip(),
                page_start=None,
                page_end=None,
                section_path=path,
                section_type=_section_type(path),
                level=level,
            )
        )
        result.tables.extend(map_table(table, context=section.title) for table in section.tables)
        for subsection in section.subsections:
            walk(subsection, path, level + 1)

    for group in data.groups:
        if group.description.strip():
            result.sections.append(
                Section(
                    title=group.name,
                    text=group.description.strip(),
                    page_start=None,
                    page_end=None,
                    section_path=[group.name],
                    section_type=classify_section_type(group.name),
                    level=1,
                )
            )
        for section in group.sections:
            walk(section, [group.name], 2)

    result.tables.extend(map_table(table, context=data.name) for table in data.tables)
    for dataset in data.datasets:
        fields = list(dataset.fields) or unique(str(key) for row in dataset.rows for key in row)
        result.datasets.append(
            Dataset(
                name=dataset.name,
                dataset_type=dataset.type,
                fields=fields,
                rows=[dict(row) for row in dataset.rows],
                confidence=Confidence.HIGH,
            )
        )
    return result
