import logging
from typing import Any, Dict, List, Optional

from sheetlens.core.schemas import ColumnKind, ColumnProfile, NumericRange
from sheetlens.core.performance import track_performance
from sheetlens.services.normalizer import is_missing, looks_like_date, to_number

logger = logging.getLogger(__name__)

MAX_SAMPLE_VALUES = 8


def _sample(rows: List[Dict[str, Any]], sample_limit: int) -> List[Dict[str, Any]]:
    if not rows:
        return []
    return list(rows[:max(1, sample_limit)])


def _profile_column(
    name: str,
    sample: List[Dict[str, Any]],
    date_threshold: float,
    numeric_threshold: float,
    day_first: bool,
) -> ColumnProfile:
    seen: List[str] = []
    seen_set = set()
    non_empty = 0
    numeric_count = 0
    date_count = 0
    numeric_min: Optional[float] = None
    numeric_max: Optional[float] = None

    for row in sample:
        value = row.get(name)
        text = "" if value is None else str(value)
        if text not in seen_set:
            seen_set.add(text)
            seen.append(text)

        if is_missing(value):
            continue
        non_empty += 1

        if looks_like_date(value, day_first=day_first):
            date_count += 1

        number = to_number(value)
        if number != 0:
            numeric_count += 1
            numeric_min = number if numeric_min is None else min(numeric_min, number)
            numeric_max = number if numeric_max is None else max(numeric_max, number)

    date_ratio = date_count / non_empty if non_empty else 0
    numeric_ratio = numeric_count / non_empty if non_empty else 0

    # Date strings such as "2024-01-05" also pass the numeric heuristic, so dates win
    if non_empty and date_ratio >= date_threshold:
        kind = ColumnKind.DATE
    elif numeric_ratio > numeric_threshold:
        kind = ColumnKind.NUMERIC
    else:
        kind = ColumnKind.CATEGORICAL

    numeric_range = None
    if kind == ColumnKind.NUMERIC and numeric_min is not None:
        numeric_range = NumericRange(min=numeric_min, max=numeric_max)

    return ColumnProfile(
        name=name,
        kind=kind,
        sample_values=seen[:MAX_SAMPLE_VALUES],
        unique_sample_count=len(seen_set),
        non_empty_count=non_empty,
        numeric_range=numeric_range,
    )


@track_performance("classify_columns")
def classify_columns(
    rows: List[Dict[str, Any]],
    sample_limit: int = 200,
    date_threshold: float = 0.6,
    numeric_threshold: float = 0.6,
    day_first: bool = True,
) -> List[ColumnProfile]:
    """
    Classify every column of a dataset as numeric, categorical or date.

    Only the first `sample_limit` rows are inspected. Column names come from
    the first row, in order. An empty dataset yields an empty list.
    """
    sample = _sample(rows, sample_limit)
    if not sample or not sample[0]:
        return []

    profiles = [
        _profile_column(name, sample, date_threshold, numeric_threshold, day_first)
        for name in sample[0].keys()
    ]
    logger.debug(
        f"Classified {len(profiles)} columns from {len(sample)} sampled rows: "
        + ", ".join(f"{p.name}={p.kind.value}" for p in profiles)
    )
    return profiles


def detect_date_columns(
    rows: List[Dict[str, Any]],
    sample_limit: int = 200,
    threshold: float = 0.6,
    day_first: bool = True,
) -> List[str]:
    """Names of the columns whose sampled values mostly look like dates."""
    profiles = classify_columns(rows, sample_limit=sample_limit, date_threshold=threshold, day_first=day_first)
    return [p.name for p in profiles if p.kind == ColumnKind.DATE]


def columns_of_kind(profiles: List[ColumnProfile], kind: ColumnKind) -> List[str]:
    return [p.name for p in profiles if p.kind == kind]


def build_column_summary(profiles: List[ColumnProfile]) -> Dict[str, Any]:
    """Compact per-column summary sent to the AI service."""
    columns = []
    for profile in profiles:
        columns.append({
            "name": profile.name,
            "type": profile.kind.value,
            "sample": profile.sample_values,
            "uniqueSampleCount": profile.unique_sample_count,
            "numericSummary": (
                {"min": profile.numeric_range.min, "max": profile.numeric_range.max}
                if profile.numeric_range else None
            ),
        })
    return {"columns": columns}
