"""
Recommendation reconciler.

The AI service is untrusted: it may name columns that do not exist, repeat
itself, suggest time series for data without dates or return no JSON at all.
This module turns whatever came back into a short, deduplicated list of chart
recommendations that are valid against the real dataset, synthesizing a
deterministic fallback when nothing usable survives.
"""
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from sheetlens.core.errors import AIResponseError, SchemaMismatchError
from sheetlens.core.performance import track_performance
from sheetlens.core.schemas import (
    AGGREGATIONS,
    GRANULARITIES,
    TIME_SERIES_CHART_TYPES,
    ChartRecommendation,
    ColumnKind,
    ColumnProfile,
    ReconcileResult,
    Rejection,
)
from sheetlens.services.classifier import classify_columns
from sheetlens.services.fields import fuzzy_match_column
from sheetlens.services.normalizer import is_missing, to_number

logger = logging.getLogger(__name__)

FALLBACK_SAMPLE_LIMIT = 500
DONUT_NOTE = "(Shown as a donut because the data has no date column.)"


def combo_key(group_by: Optional[str], metric: Optional[str]) -> str:
    return f"{group_by or ''}||{metric or ''}"


# ---------------------------------------------------------------------------
# AI response boundary
# ---------------------------------------------------------------------------

def extract_json(text: Optional[str]) -> Dict[str, Any]:
    """
    Parse the JSON object embedded in a noisy AI response.

    Takes everything between the first '{' and the last '}', which also
    handles markdown fences and leading prose.

    Raises:
        AIResponseError: No JSON object could be extracted
    """
    if not text:
        raise AIResponseError("Empty AI response")
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last == -1 or last < first:
        raise AIResponseError("No JSON found in AI response")
    try:
        parsed = json.loads(text[first:last + 1])
    except json.JSONDecodeError as e:
        raise AIResponseError(f"Invalid JSON in AI response: {e}") from e
    if not isinstance(parsed, dict):
        raise AIResponseError("AI response JSON is not an object")
    return parsed


def parse_ai_response(text: Optional[str]) -> Tuple[List[Any], List[Any]]:
    """
    Return (recommendedCharts, recommendedCards) from an AI response.

    Raises:
        AIResponseError: No JSON, or `recommendedCharts` is not a list
    """
    parsed = extract_json(text)
    charts = parsed.get("recommendedCharts", [])
    if charts is None:
        charts = []
    if not isinstance(charts, list):
        raise AIResponseError("recommendedCharts is not a list")
    cards = parsed.get("recommendedCards") or []
    if not isinstance(cards, list):
        cards = []
    return charts, cards


# ---------------------------------------------------------------------------
# Validation of a single recommendation
# ---------------------------------------------------------------------------

def _resolve_field(raw: Dict[str, Any], key: str, columns: List[str]) -> Optional[str]:
    suggested = raw.get(key)
    if isinstance(suggested, (list, tuple)):
        suggested = suggested[0] if suggested else None
    if suggested is None or (isinstance(suggested, str) and suggested.strip().lower() in ("", "null", "none")):
        return None
    resolved = fuzzy_match_column(suggested, columns)
    if resolved is None:
        raise SchemaMismatchError(key, suggested)
    return resolved


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        # json.loads accepts Infinity and 1e400
        return None
    return number if number > 0 else None


def _as_score(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if score != score:
        return None
    return min(1.0, max(0.0, score))


def validate_recommendation(raw: Any, columns: List[str]) -> Union[ChartRecommendation, Rejection]:
    """
    Check one raw AI recommendation against the real column names.

    Field names are fuzzy-resolved. A non-null groupBy or metric that matches
    no column rejects the whole recommendation. Unknown aggregations and
    granularities fall back to defaults; unknown chart types are kept so the
    materializer can report them.
    """
    if not isinstance(raw, dict):
        return Rejection(reason="Recommendation is not an object", raw=raw)

    chart_type = raw.get("chartType", raw.get("chart_type"))
    if not isinstance(chart_type, str) or not chart_type.strip():
        return Rejection(reason="Missing chartType", raw=raw)
    chart_type = chart_type.strip().lower()

    try:
        group_by = _resolve_field(raw, "groupBy", columns)
        metric = _resolve_field(raw, "metric", columns)
    except SchemaMismatchError as e:
        logger.debug(f"Dropping recommendation: {e}")
        return Rejection(reason=str(e), raw=raw)

    aggregation = str(raw.get("aggregation") or "sum").lower()
    if aggregation not in AGGREGATIONS:
        aggregation = "sum"

    granularity = str(raw.get("granularity") or "").lower()
    if granularity == "month":
        granularity = "month-year"
    if granularity not in GRANULARITIES:
        granularity = "month-year" if chart_type in TIME_SERIES_CHART_TYPES else "none"

    date_field = raw.get("dateField")
    date_field = fuzzy_match_column(date_field, columns) if date_field else None

    explain = raw.get("explain")
    return ChartRecommendation(
        chart_type=chart_type,
        group_by=group_by,
        metric=metric,
        aggregation=aggregation,
        granularity=granularity,
        top_n=_as_int(raw.get("topN")),
        score=_as_score(raw.get("score")),
        explain=explain.strip() if isinstance(explain, str) else "",
        date_field=date_field,
    )


# ---------------------------------------------------------------------------
# Deterministic fallback
# ---------------------------------------------------------------------------

def rank_columns(
    sample_rows: List[Dict[str, Any]],
    profiles: List[ColumnProfile],
) -> Tuple[List[str], List[str]]:
    """
    Rank categorical columns by distinct-value count and numeric columns by
    summed magnitude, both over at most FALLBACK_SAMPLE_LIMIT rows.

    Categoricals whose sampled values are all distinct (identifiers) or all
    equal make poor groupings and are ranked last.
    """
    sample = sample_rows[:FALLBACK_SAMPLE_LIMIT]

    categorical_scores = []
    for position, profile in enumerate(p for p in profiles if p.kind == ColumnKind.CATEGORICAL):
        values = [row.get(profile.name) for row in sample]
        present = [str(v) for v in values if not is_missing(v)]
        distinct = len(set(present))
        poor = distinct <= 1 or (len(present) > 2 and distinct == len(present))
        categorical_scores.append((poor, -distinct, position, profile.name))
    categoricals = [name for *_, name in sorted(categorical_scores)]

    numeric_scores = []
    for position, profile in enumerate(p for p in profiles if p.kind == ColumnKind.NUMERIC):
        magnitude = sum(abs(to_number(row.get(profile.name))) for row in sample)
        numeric_scores.append((-magnitude, position, profile.name))
    numerics = [name for *_, name in sorted(numeric_scores)]

    return categoricals, numerics


def synthesize_fallback(
    sample_rows: List[Dict[str, Any]],
    profiles: List[ColumnProfile],
    forbidden_combos: Set[str],
    max_results: int = 4,
) -> List[ChartRecommendation]:
    """
    Build bar/sum recommendations pairing the top categorical and numeric
    columns, best pairs first. Falls back to a single count chart when no
    pair is available.
    """
    categoricals, numerics = rank_columns(sample_rows, profiles)

    pairs = sorted(
        ((i, j) for i in range(len(categoricals)) for j in range(len(numerics))),
        key=lambda pair: (pair[0] + pair[1], pair[0]),
    )
    recommendations: List[ChartRecommendation] = []
    for i, j in pairs:
        if len(recommendations) >= max_results:
            break
        group_by, metric = categoricals[i], numerics[j]
        if group_by == metric or combo_key(group_by, metric) in forbidden_combos:
            continue
        recommendations.append(ChartRecommendation(
            chart_type="bar",
            group_by=group_by,
            metric=metric,
            aggregation="sum",
            granularity="none",
            explain=f"Total {metric} by {group_by}",
        ))

    if recommendations:
        return recommendations

    group_by = categoricals[0] if categoricals else None
    if combo_key(group_by, None) in forbidden_combos:
        return []
    return [ChartRecommendation(
        chart_type="bar",
        group_by=group_by,
        metric=None,
        aggregation="count",
        granularity="none",
        explain=f"Number of rows by {group_by}" if group_by else "Number of rows",
    )]


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def _apply_time_series_gate(
    recommendation: ChartRecommendation,
    sample_rows: List[Dict[str, Any]],
    profiles: List[ColumnProfile],
    forbidden_combos: Set[str],
) -> Optional[ChartRecommendation]:
    if recommendation.group_by:
        explain = f"{recommendation.explain} {DONUT_NOTE}".strip()
        return recommendation.model_copy(update={
            "chart_type": "donut",
            "granularity": "none",
            "explain": explain,
        })
    synthesized = synthesize_fallback(sample_rows, profiles, forbidden_combos, max_results=1)
    return synthesized[0] if synthesized else None


def _diversify(recommendations: List[ChartRecommendation]) -> List[ChartRecommendation]:
    if not recommendations or any(r.chart_type not in ("bar", "line") for r in recommendations):
        return recommendations
    for index, recommendation in enumerate(recommendations):
        if recommendation.group_by:
            recommendations = list(recommendations)
            recommendations[index] = recommendation.model_copy(
                update={"chart_type": "donut", "granularity": "none"}
            )
            break
    return recommendations


@track_performance("reconcile")
def reconcile(
    raw_recommendations: Iterable[Any],
    sample_rows: List[Dict[str, Any]],
    forbidden_combos: Optional[Set[str]] = None,
    max_results: int = 4,
    profiles: Optional[List[ColumnProfile]] = None,
) -> ReconcileResult:
    """
    Validate, repair and deduplicate raw AI chart recommendations.

    Args:
        raw_recommendations: Items of `recommendedCharts` as returned by the AI
        sample_rows: Rows used for column names, date detection and fallback ranking
        forbidden_combos: "groupBy||metric" keys that must not be recommended
        max_results: Maximum number of recommendations returned
        profiles: Column profiles; classified from `sample_rows` when omitted

    Returns:
        ReconcileResult with at most `max_results` recommendations

    Raises:
        TypeError: `raw_recommendations` is not iterable
    """
    if raw_recommendations is None:
        raise TypeError("raw_recommendations must be an iterable, got None")
    raw_items = list(raw_recommendations)
    forbidden = set(forbidden_combos or ())
    rows = list(sample_rows or [])

    if profiles is None:
        profiles = classify_columns(rows)
    columns = list(rows[0].keys()) if rows else [p.name for p in profiles]
    date_columns_available = any(p.kind == ColumnKind.DATE for p in profiles)

    rejections: List[Rejection] = []
    candidates: List[ChartRecommendation] = []
    for raw in raw_items:
        result = validate_recommendation(raw, columns)
        if isinstance(result, Rejection):
            rejections.append(result)
            continue
        if result.chart_type in TIME_SERIES_CHART_TYPES and not date_columns_available:
            gated = _apply_time_series_gate(result, rows, profiles, forbidden)
            if gated is None:
                rejections.append(Rejection(reason="Time series without a date column", raw=raw))
                continue
            result = gated
        candidates.append(result)

    allowed = [r for r in candidates if r.combo_key not in forbidden]
    if len(allowed) < len(candidates):
        logger.debug(f"Dropped {len(candidates) - len(allowed)} forbidden recommendations")

    # Stable: equal scores keep the order the AI gave them
    allowed.sort(key=lambda r: r.score or 0, reverse=True)
    seen: Set[str] = set()
    unique: List[ChartRecommendation] = []
    for recommendation in allowed:
        if recommendation.combo_key in seen:
            continue
        seen.add(recommendation.combo_key)
        unique.append(recommendation)

    used_fallback = False
    if not unique:
        unique = synthesize_fallback(rows, profiles, forbidden, max_results)
        used_fallback = True
        logger.info(f"No usable AI recommendations, synthesized {len(unique)} fallback charts")

    unique = _diversify(unique)

    return ReconcileResult(
        recommended_charts=unique[:max_results],
        date_columns_available=date_columns_available,
        used_fallback=used_fallback,
        rejections=rejections,
    )
