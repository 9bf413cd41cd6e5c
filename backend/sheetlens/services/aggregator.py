"""
Aggregation service.

Turns raw rows into the shapes the chart renderers consume: grouped totals
for bar/pie/donut charts and aligned time series for line/area charts.

Monetary values are summed as integer cents and only converted back to
floats (rounded to 2 decimals) once accumulation is finished.
"""
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from sheetlens.core.performance import track_performance
from sheetlens.core.schemas import GroupTotal, TimeSeries, TimeSeriesResult
from sheetlens.services.normalizer import is_missing, parse_flexible_date, to_number

logger = logging.getLogger(__name__)

MISSING_GROUP_KEY = "N/A"
MISSING_SERIES_NAME = "Unknown"
SINGLE_SERIES_NAME = "__all__"

_MONTH_ABBREVIATIONS = {
    "en-US": ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"],
    "pt-BR": ["jan", "fev", "mar", "abr", "mai", "jun", "jul", "ago", "set", "out", "nov", "dez"],
}


def to_cents(value: float) -> int:
    """Round half up to integer cents. Values too large to scale count as 0."""
    scaled = value * 100
    if not math.isfinite(scaled):
        return 0
    return int(math.floor(scaled + 0.5))


def from_cents(cents: int) -> float:
    return round(cents / 100, 2)


def _cents_column(cents: List[int]) -> pd.Series:
    # Object dtype keeps exact Python ints; int64 sums wrap silently
    return pd.Series(cents, dtype=object)


def _group_key(value: Any, missing: str) -> str:
    if is_missing(value):
        return missing
    return str(value)


# ---------------------------------------------------------------------------
# Grouped totals
# ---------------------------------------------------------------------------

@track_performance("aggregate_groups")
def aggregate_groups(
    rows: List[Dict[str, Any]],
    group_field: str,
    metric_fields: Sequence[str],
    top_n: Optional[int] = None,
    sort_desc: bool = True,
    include_count: bool = False,
    aggregation: str = "sum",
    missing_key: str = MISSING_GROUP_KEY,
) -> List[GroupTotal]:
    """
    Group rows by the stringified value of `group_field` and total each metric.

    Args:
        rows: Dataset rows (never modified)
        group_field: Column whose values become the group keys
        metric_fields: Columns to total per group
        top_n: Keep only the first N groups after sorting
        sort_desc: Sort groups by the sum of their metric totals, largest first
        include_count: Add a "count" entry with the group's row count
        aggregation: "sum" (default), "avg" or "count"; "none" behaves like "sum"
        missing_key: Group key for rows without a value

    Returns:
        One GroupTotal per distinct key, in first-seen order unless sorted
    """
    if not rows:
        return []

    # Positional column names so metric names can never clash with the key
    metric_columns = [f"m{i}" for i in range(len(metric_fields))]
    frame = pd.DataFrame({"key": [_group_key(row.get(group_field), missing_key) for row in rows]})
    for column, field in zip(metric_columns, metric_fields):
        frame[column] = _cents_column([to_cents(to_number(row.get(field))) for row in rows])

    # sort=False keeps groups in first-seen order
    grouped = frame.groupby("key", sort=False)
    counts = grouped.size()
    sums = grouped[metric_columns].sum() if metric_columns else None

    groups: List[GroupTotal] = []
    for key, row_count in counts.items():
        row_count = int(row_count)
        bucket = {field: int(sums.at[key, column]) for column, field in zip(metric_columns, metric_fields)}
        if aggregation == "count":
            totals = {field: float(row_count) for field in metric_fields}
        elif aggregation == "avg":
            totals = {field: round(total / row_count / 100, 2) for field, total in bucket.items()}
        else:
            totals = {field: from_cents(total) for field, total in bucket.items()}
        if include_count:
            totals["count"] = float(row_count)
        groups.append(GroupTotal(group_key=key, metric_totals=totals, row_count=row_count))

    if sort_desc:
        sort_fields = list(metric_fields) or (["count"] if include_count else [])
        # sorted() is stable, so ties keep their first-seen order
        groups = sorted(
            groups,
            key=lambda g: sum(g.metric_totals.get(field, 0) for field in sort_fields),
            reverse=True,
        )
    if top_n is not None and top_n > 0:
        groups = groups[:top_n]
    return groups


# ---------------------------------------------------------------------------
# Time series
# ---------------------------------------------------------------------------

def _month_label(date: datetime, locale: str) -> str:
    months = _MONTH_ABBREVIATIONS.get(locale, _MONTH_ABBREVIATIONS["en-US"])
    month = months[date.month - 1]
    if locale == "pt-BR":
        return f"{month}. de {date.year}"
    return f"{month} {date.year}"


def _day_label(date: datetime, locale: str) -> str:
    months = _MONTH_ABBREVIATIONS.get(locale, _MONTH_ABBREVIATIONS["en-US"])
    month = months[date.month - 1]
    if locale == "pt-BR":
        return f"{date.day:02d} de {month}. de {date.year}"
    return f"{month} {date.day:02d}, {date.year}"


def bucket_key_and_label(date: datetime, granularity: str, locale: str = "en-US") -> Tuple[str, str]:
    """Sortable bucket key and display label for a date."""
    if granularity == "year":
        return f"{date.year:04d}", f"{date.year:04d}"
    if granularity in ("month", "month-year"):
        return f"{date.year:04d}-{date.month:02d}", _month_label(date, locale)
    return f"{date.year:04d}-{date.month:02d}-{date.day:02d}", _day_label(date, locale)


def bucket_key_to_date(key: str) -> datetime:
    """Representative date of a bucket key ("2020", "2020-01", "2020-01-31")."""
    if len(key) == 4:
        return datetime(int(key), 1, 1)
    if len(key) == 7:
        return datetime.strptime(key, "%Y-%m")
    return datetime.strptime(key, "%Y-%m-%d")


@track_performance("aggregate_time_series")
def aggregate_time_series(
    rows: List[Dict[str, Any]],
    date_field: str,
    value_field: str,
    group_by_field: Optional[str] = None,
    granularity: str = "month-year",
    top_n: Optional[int] = None,
    fill_missing: bool = True,
    locale: str = "en-US",
    day_first: bool = True,
) -> TimeSeriesResult:
    """
    Bucket rows by date and sum `value_field` per bucket and per group.

    Rows whose date cannot be parsed are skipped. Categories are the bucket
    labels in chronological order and every series has exactly one value per
    category; buckets a group never reached are 0.

    `fill_missing` is accepted for API compatibility: aligned arrays are
    always gap-filled.
    """
    if granularity == "none":
        granularity = "month-year"

    series_names: List[str] = []
    buckets: List[str] = []
    cents: List[int] = []
    labels: Dict[str, str] = {}
    skipped = 0

    for row in rows:
        parsed = parse_flexible_date(row.get(date_field), day_first=day_first)
        if parsed is None:
            skipped += 1
            continue
        key, label = bucket_key_and_label(parsed, granularity, locale)
        labels[key] = label

        if group_by_field:
            name = _group_key(row.get(group_by_field), MISSING_SERIES_NAME)
        else:
            name = SINGLE_SERIES_NAME
        series_names.append(name)
        buckets.append(key)
        cents.append(to_cents(to_number(row.get(value_field))))

    if skipped:
        logger.debug(f"Skipped {skipped} rows with unparseable '{date_field}' values")
    if not cents:
        return TimeSeriesResult(categories=[], bucket_keys=[], series=[])

    frame = pd.DataFrame({"series": series_names, "bucket": buckets, "cents": _cents_column(cents)})
    bucket_keys = sorted(labels.keys(), key=bucket_key_to_date)
    names = list(frame["series"].unique())

    # One row per series, one column per bucket, 0 where a series has no rows
    table = (
        frame.groupby(["series", "bucket"], sort=False)["cents"].sum()
        .unstack("bucket", fill_value=0)
        .reindex(index=names, columns=bucket_keys, fill_value=0)
    )
    totals = table.sum(axis=1)

    # sorted() is stable, so equal totals keep first-seen order
    ranked = sorted(names, key=lambda name: totals[name], reverse=True)
    if top_n is not None and top_n > 0:
        ranked = ranked[:top_n]

    series = [
        TimeSeries(
            name=name,
            data=[from_cents(int(amount)) for amount in table.loc[name]],
            total=from_cents(int(totals[name])),
        )
        for name in ranked
    ]

    return TimeSeriesResult(
        categories=[labels[key] for key in bucket_keys],
        bucket_keys=bucket_keys,
        series=series,
    )
