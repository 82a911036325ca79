"""Group detected tables into named datasets."""
from __future__ import annotations

from typing import Any, Dict, List, Sequence

from .keywords import unique
from .models import Confidence, Dataset, Table

DATASET_RULES: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("Equipment", "equipment", ("equipment", "weapon", "armour", "armor", "gear", "item")),
    ("Skills", "skills", ("skill", "abilit")),
    ("Injuries", "injuries", ("injur", "wound", "casualt")),
)


def _matches(table: Table, terms: Sequence[str]) -> bool:
    haystack = " ".join([table.title, *table.keywords]).lower()
    return any(term in haystack for term in terms)


def detect_datasets(tables: Sequence[Table]) -> List[Dataset]:
    datasets: List[Dataset] = []
    for name, dataset_type, terms in DATASET_RULES:
        matched = [table for table in tables if table.confidence is not Confidence.LOW and _matches(table, terms)]
        if not matched:
            continue
        rows: List[Dict[str, Any]] = []
        fields: List[str] = []
        for table in matched:
            for row in table.parsed_rows:
                rows.append({**row, "sourceTable": table.title})
                fields.extend(row.keys())
        confidence = (
            Confidence.HIGH if all(table.confidence is Confidence.HIGH for table in matched) else Confidence.MEDIUM
        )
        datasets.append(
            Dataset(
                name=name,
                dataset_type=dataset_type,
                fields=unique(fields),
                rows=rows,
                confidence=confidence,
            )
        )
    return datasets
