import logging
import re
from typing import Any, Dict, List, Optional

from sheetlens.core.errors import UnsupportedChartType
from sheetlens.core.schemas import (
    GROUPED_CHART_TYPES,
    TIME_SERIES_CHART_TYPES,
    ChartRecommendation,
    GeneratedChart,
    GroupedPayload,
    TimeSeriesPayload,
)
from sheetlens.services.aggregator import aggregate_groups, aggregate_time_series
from sheetlens.services.normalizer import looks_like_date

logger = logging.getLogger(__name__)

DEFAULT_TOP_N = 10
DATE_NAME_PATTERN = re.compile(r"date|data|dt", re.IGNORECASE)
DATE_PROBE_ROWS = 20


def chart_id(recommendation: ChartRecommendation, index: int) -> str:
    return f"ai-{index}-{recommendation.chart_type}-{recommendation.group_by or 'nogroup'}"


def chart_title(recommendation: ChartRecommendation) -> str:
    if recommendation.explain:
        return recommendation.explain
    return f"{recommendation.chart_type} of {recommendation.metric or 'value'}"


def _column_looks_like_date(rows: List[Dict[str, Any]], column: str, day_first: bool) -> bool:
    values = [row.get(column) for row in rows[:DATE_PROBE_ROWS]]
    values = [v for v in values if v not in (None, "")]
    if not values:
        return False
    hits = sum(1 for v in values if looks_like_date(v, day_first=day_first))
    return hits / len(values) >= 0.6


def resolve_date_field(
    recommendation: ChartRecommendation,
    rows: List[Dict[str, Any]],
    date_columns: Optional[List[str]] = None,
    day_first: bool = True,
) -> Optional[str]:
    """
    Pick the date column for a time-series chart.

    An explicit dateField wins, then a known date column whose name looks
    like a date, then any column named like one, then any known date column,
    then any column whose values look like dates.
    """
    if not rows:
        return None
    available = list(rows[0].keys())
    if recommendation.date_field:
        return recommendation.date_field

    date_columns = [c for c in (date_columns or []) if c in available]
    for column in date_columns:
        if DATE_NAME_PATTERN.search(column):
            return column
    for column in available:
        if DATE_NAME_PATTERN.search(column) and _column_looks_like_date(rows, column, day_first):
            return column
    if date_columns:
        return date_columns[0]
    for column in available:
        if column != recommendation.metric and _column_looks_like_date(rows, column, day_first):
            return column
    return None


def materialize(
    recommendation: ChartRecommendation,
    rows: List[Dict[str, Any]],
    index: int = 0,
    date_columns: Optional[List[str]] = None,
    chart_id_override: Optional[str] = None,
    regeneration_attempts: int = 0,
    locale: str = "en-US",
    day_first: bool = True,
    default_top_n: int = DEFAULT_TOP_N,
) -> GeneratedChart:
    """
    Turn a validated recommendation into a render-ready chart.

    Never raises: charts that cannot be built come back with valid=False and
    an error string the UI can show in place of the chart.
    """
    base = {
        "id": chart_id_override or chart_id(recommendation, index),
        "kind": recommendation.chart_type,
        "title": chart_title(recommendation),
        "recommendation": recommendation,
        "regeneration_attempts": regeneration_attempts,
    }

    def invalid(error: str) -> GeneratedChart:
        logger.debug(f"Chart {base['id']} is invalid: {error}")
        return GeneratedChart(**base, payload=None, valid=False, error=error)

    first_row = rows[0] if rows else {}
    top_n = recommendation.top_n or default_top_n
    kind = recommendation.chart_type

    if kind in GROUPED_CHART_TYPES:
        group_by, metric = recommendation.group_by, recommendation.metric
        counting = recommendation.aggregation == "count"
        if not group_by or group_by not in first_row:
            return invalid("Missing groupBy/metric in data")
        if (metric and metric not in first_row) or (not metric and not counting):
            return invalid("Missing groupBy/metric in data")

        value_field = metric or "count"
        groups = aggregate_groups(
            rows,
            group_by,
            [metric] if metric else [],
            top_n=top_n,
            sort_desc=True,
            include_count=not metric,
            aggregation=recommendation.aggregation,
        )
        payload = GroupedPayload(
            category_field=group_by,
            value_field=value_field,
            groups=groups,
            rows=[{group_by: g.group_key, value_field: g.metric_totals[value_field]} for g in groups],
        )
        return GeneratedChart(**base, payload=payload, valid=True)

    if kind in TIME_SERIES_CHART_TYPES:
        date_field = resolve_date_field(recommendation, rows, date_columns, day_first)
        metric = recommendation.metric
        if not date_field or date_field not in first_row or not metric or metric not in first_row:
            return invalid("Missing date or metric")

        group_by = recommendation.group_by if recommendation.group_by in first_row else None
        result = aggregate_time_series(
            rows,
            date_field=date_field,
            value_field=metric,
            group_by_field=group_by,
            granularity=recommendation.granularity or "month-year",
            top_n=top_n,
            fill_missing=True,
            locale=locale,
            day_first=day_first,
        )
        payload = TimeSeriesPayload(categories=result.categories, series=result.series)
        return GeneratedChart(**base, payload=payload, valid=True)

    return invalid(str(UnsupportedChartType(kind)))
