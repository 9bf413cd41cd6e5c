"""
Dashboard cards.

The AI only suggests which cards to show; every value is computed here on the
real rows. A card that cannot be computed comes back with value=None and the
reason in `explain`, without affecting the other cards.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from sheetlens.core.errors import SchemaMismatchError
from sheetlens.core.schemas import CardPayload, CardSpec
from sheetlens.services.aggregator import aggregate_groups, from_cents, to_cents
from sheetlens.services.fields import fuzzy_match_column
from sheetlens.services.normalizer import is_missing, to_number

logger = logging.getLogger(__name__)

MONETARY_NAME_PATTERN = re.compile(r"valor|value|total|price|amount|sales|cost", re.IGNORECASE)
DEFAULT_TOP_CATEGORIES = 3


def _require_field(spec: CardSpec, columns: List[str]) -> str:
    if not spec.field:
        raise ValueError(f"{spec.card_type} requires field")
    resolved = fuzzy_match_column(spec.field, columns)
    if resolved is None:
        raise SchemaMismatchError("field", spec.field)
    return resolved


def _sum(values: List[float]) -> float:
    return from_cents(sum(to_cents(v) for v in values))


def _average(values: List[float]) -> float:
    if not values:
        return 0.0
    return round(sum(to_cents(v) for v in values) / len(values) / 100, 2)


def pick_numeric_field(rows: List[Dict[str, Any]], columns: List[str], exclude: Optional[str] = None) -> Optional[str]:
    """Numeric column used to rank categories, preferring monetary-looking names."""
    candidates = [c for c in columns if c != exclude]
    for column in candidates:
        if MONETARY_NAME_PATTERN.search(column):
            return column
    probe = rows[:50]
    for column in candidates:
        values = [row.get(column) for row in probe if not is_missing(row.get(column))]
        if values and sum(1 for v in values if to_number(v) != 0) / len(values) > 0.6:
            return column
    return None


def _compute(spec: CardSpec, rows: List[Dict[str, Any]], columns: List[str]) -> Dict[str, Any]:
    card_type = spec.card_type

    if card_type == "metric":
        field = _require_field(spec, columns)
        values = [to_number(row.get(field)) for row in rows]
        if spec.aggregation == "avg":
            value = _average(values)
        elif spec.aggregation == "count":
            value = len(values)
        else:
            value = _sum(values)
        return {"field": field, "value": value, "label": spec.label or f"{spec.aggregation or 'sum'} {field}"}

    if card_type == "count":
        if not spec.field:
            return {"field": None, "value": len(rows), "label": spec.label or "Count", "format": spec.format or "number"}
        field = _require_field(spec, columns)
        distinct = {"" if row.get(field) is None else str(row.get(field)) for row in rows}
        return {"field": field, "value": len(distinct), "label": spec.label or f"Count of {field}", "format": spec.format or "number"}

    if card_type == "topCategory":
        field = _require_field(spec, columns)
        numeric_field = pick_numeric_field(rows, columns, exclude=field)
        top_n = spec.top_n if spec.top_n and spec.top_n > 0 else DEFAULT_TOP_CATEGORIES
        # Without a numeric column the categories are ranked by row count
        groups = aggregate_groups(
            rows,
            field,
            [numeric_field] if numeric_field else [],
            top_n=top_n,
            include_count=numeric_field is None,
            missing_key="Unknown",
        )
        total_key = numeric_field or "count"
        value = [{"key": g.group_key, "value": g.metric_totals[total_key]} for g in groups]
        return {
            "field": field,
            "value": value,
            "numeric_field": numeric_field,
            "label": spec.label or f"Top {field}",
            "format": spec.format or "number",
        }

    if card_type == "avg":
        field = _require_field(spec, columns)
        value = _average([to_number(row.get(field)) for row in rows])
        return {"field": field, "value": value, "label": spec.label or f"Avg {field}", "format": spec.format or "number"}

    if card_type == "minMax":
        field = _require_field(spec, columns)
        values = [to_number(row.get(field)) for row in rows]
        return {
            "field": field,
            "value": {"min": min(values), "max": max(values)},
            "label": spec.label or field,
            "format": spec.format or "number",
        }

    return {"field": spec.field, "value": None, "label": spec.label or "Unknown"}


def compute_card_values(rows: List[Dict[str, Any]], card_specs: List[Any], max_cards: Optional[int] = None) -> List[CardPayload]:
    """
    Compute the value of each AI-suggested card over all rows.

    Args:
        rows: Full dataset
        card_specs: Raw `recommendedCards` items (dicts) or CardSpec objects
        max_cards: Keep at most this many cards

    Returns:
        One CardPayload per spec, in order
    """
    if not rows:
        return []
    columns = list(rows[0].keys())
    specs = card_specs[:max_cards] if max_cards is not None else card_specs

    results = []
    for index, raw in enumerate(specs):
        try:
            spec = raw if isinstance(raw, CardSpec) else CardSpec.model_validate(raw)
        except ValidationError as e:
            logger.debug(f"Skipping malformed card spec #{index}: {e.error_count()} errors")
            continue

        card_id = f"card-{index}-{spec.card_type}-{spec.field or 'all'}"
        try:
            computed = _compute(spec, rows, columns)
        except (ValueError, SchemaMismatchError) as e:
            logger.debug(f"Card {card_id} could not be computed: {e}")
            results.append(CardPayload(
                id=card_id,
                card_type=spec.card_type,
                label=spec.label or "Error",
                field=spec.field,
                value=None,
                format=spec.format,
                explain=str(e),
            ))
            continue

        results.append(CardPayload(
            id=card_id,
            card_type=spec.card_type,
            label=computed["label"],
            field=computed["field"],
            value=computed["value"],
            format=computed.get("format", spec.format),
            explain=spec.explain,
            numeric_field=computed.get("numeric_field"),
        ))
    return results
