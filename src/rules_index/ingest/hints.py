"""Closed schemas for optional hints supplied by an upstream client-side extraction pass."""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import Confidence, Table
from .tables import table_keywords


class _HintModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ClientStats(_HintModel):
    """Extraction statistics measured by the client; unknown keys are dropped."""

    version: int = 1
    pages_extracted: Optional[int] = Field(default=None, ge=0, alias="pagesExtracted")
    empty_pages: Optional[int] = Field(default=None, ge=0, alias="emptyPages")
    avg_chars_per_page: Optional[int] = Field(default=None, ge=0, alias="avgCharsPerPage")


class PreDetectedSection(_HintModel):
    title: str = Field(..., min_length=1)
    page_number: int = Field(..., ge=1, alias="pageNumber")
    level: int = Field(1, ge=1, le=6)

    def as_hint(self) -> tuple[int, str, int]:
        return self.page_number, self.title, self.level


class PreDetectedTable(_HintModel):
    title: str = "Untitled Table"
    page_number: Optional[int] = Field(default=None, ge=1, alias="pageNumber")
    raw_text: str = Field("", alias="rawText")
    parsed_rows: List[Dict[str, str]] = Field(default_factory=list, alias="parsedRows")
    confidence: Confidence = Confidence.MEDIUM
    table_type: str = Field("pipe", alias="tableType")
    columns: List[str] = Field(default_factory=list)
    dice_type: Optional[str] = Field(default=None, alias="diceType")
    header_context: str = Field("", alias="headerContext")
    keywords: List[str] = Field(default_factory=list)

    @field_validator("parsed_rows", mode="before")
    @classmethod
    def _stringify_cells(cls, value: object) -> object:
        if isinstance(value, list):
            return [
                {str(key): "" if cell is None else str(cell) for key, cell in row.items()}
                if isinstance(row, dict)
                else row
                for row in value
            ]
        return value

    def to_table(self) -> Table:
        table = Table(
            title=self.title,
            raw_text=self.raw_text,
            parsed_rows=[dict(row) for row in self.parsed_rows],
            confidence=self.confidence,
            table_type=self.table_type,
            page_number=self.page_number,
            columns=list(self.columns),
            dice_type=self.dice_type,
            header_context=self.header_context,
        )
        table.keywords = list(self.keywords) or table_keywords(table)
        return table


def validate_client_timings(timings: Optional[Dict[str, float]]) -> Dict[str, float]:
    """Keep finite, non-negative stage timings."""

    cleaned: Dict[str, float] = {}
    for stage, value in (timings or {}).items():
        try:
            milliseconds = float(value)
        except (TypeError, ValueError):
            continue
        if milliseconds >= 0 and milliseconds != float("inf") and stage.strip():
            cleaned[stage.strip()] = milliseconds
    return cleaned
