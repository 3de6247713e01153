"""
Map uploaded CSV rows onto a template's fields.

Templates name their columns freely ("Student", "Completion Date", ...), so each
dynamic field is looked up under a short ordered list of candidate keys and the
result is folded back into the fixed certificate columns.
"""

import csv
import io
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from repositories import FieldSpec

# Fallback headers for the fixed certificate columns, tried in order after the
# canonical field_type key.
_FIXED_COLUMN_FALLBACKS: dict[str, tuple[str, ...]] = {
    "student_name": ("Name", "name"),
    "course_name": ("Course", "course"),
    "completion_date": ("Completion Date", "completion_date"),
}


@dataclass
class StudentRow:
    student_name: str = ""
    course_name: str = ""
    completion_date: str = ""
    custom_data: dict[str, str] = field(default_factory=dict)


def iter_csv_rows(path: Path) -> Iterator[dict[str, str]]:
    """Yield raw rows one at a time; the file is never read into one string."""
    with path.open("r", newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames is None:
            return
        reader.fieldnames = [name.strip() if name else name for name in reader.fieldnames]
        for row in reader:
            # DictReader files overflow cells under None; they have no header to match.
            row.pop(None, None)  # type: ignore[call-overload]
            yield {key: (value if value is not None else "") for key, value in row.items()}


def input_fields(fields: Iterable[FieldSpec]) -> list[FieldSpec]:
    """Fields the user supplies: dynamic, and never certificate_id/verification_link."""
    return [f for f in fields if f.is_user_input]


def column_candidates(spec: FieldSpec) -> list[tuple[str, int]]:
    """Candidate CSV headers for a field, as (key, priority) with 0 tried first."""
    return [
        (spec.label, 0),
        (spec.label.lower(), 1),
        (spec.field_type, 2),
    ]


def lookup_value(row: dict[str, str], candidates: list[tuple[str, int]]) -> str | None:
    """First non-empty candidate wins.

    Otherwise the last candidate's cell is returned as-is: "" when that column
    exists but is empty, None when it is missing. Empty cells under earlier
    candidates are not recorded.
    """
    ordered = sorted(candidates, key=lambda c: c[1])
    for key, _priority in ordered:
        value = row.get(key)
        if value:
            return value
    return row.get(ordered[-1][0]) if ordered else None


def map_row(row: dict[str, str], fields: Iterable[FieldSpec]) -> StudentRow:
    custom_data: dict[str, str] = {}
    for spec in fields:
        value = lookup_value(row, column_candidates(spec))
        if value is not None:
            custom_data[spec.field_type] = value

    fixed: dict[str, str] = {}
    for column, fallbacks in _FIXED_COLUMN_FALLBACKS.items():
        fixed[column] = custom_data.get(column) or next(
            (row[h] for h in fallbacks if row.get(h)), ""
        )

    return StudentRow(custom_data=custom_data, **fixed)


def sample_csv(fields: Iterable[FieldSpec]) -> str:
    """Header of input-field labels plus one example row."""
    specs = input_fields(fields)
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([f.label for f in specs])
    writer.writerow(
        ["2026-02-25" if f.field_type == "completion_date" else f"Sample {f.label}" for f in specs]
    )
    return buffer.getvalue()


def map_rows(rows: Iterable[dict[str, str]], fields: Iterable[FieldSpec]) -> Iterator[StudentRow]:
    specs = list(fields)
    for row in rows:
        yield map_row(row, specs)
