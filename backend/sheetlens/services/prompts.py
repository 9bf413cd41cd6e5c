"""
Prompt builders for the AI recommendation service.

Both prompts ask for JSON only. Column names and sample values come from the
uploaded file, so they are sanitized before they are embedded.
"""
import json
from typing import Any, Dict, Iterable, List

from sheetlens.core.sanitization import sanitize_for_prompt
from sheetlens.core.schemas import GeneratedChart

SYSTEM_PROMPT = (
    "You are a data visualization assistant. You recommend charts and dashboard "
    "cards for tabular datasets. You answer with a single JSON object and nothing else."
)

RESPONSE_SCHEMA = """{
  "recommendedCharts": [
    {
      "chartType": <"bar"|"donut"|"pie"|"line"|"area">,
      "groupBy": <string|null>,
      "metric": <string|null>,
      "aggregation": <"sum"|"avg"|"count"|"none">,
      "granularity": <"day"|"month-year"|"year"|"none">,
      "topN": <int|null>,
      "score": <number between 0 and 1>,
      "explain": <string>
    }
  ],
  "recommendedCards": [
    {
      "cardType": <"metric"|"topCategory"|"count"|"avg"|"minMax">,
      "field": <string|null>,
      "aggregation": <"sum"|"avg"|"count"|null>,
      "label": <string>,
      "format": <"currency"|"number"|"percentage"|"text">,
      "topN": <int|null>,
      "explain": <string>
    }
  ]
}"""


def _sanitize_summary(column_summary: Dict[str, Any]) -> Dict[str, Any]:
    columns = []
    for column in column_summary.get("columns", []):
        columns.append({
            **column,
            "name": sanitize_for_prompt(column.get("name"), 80),
            "sample": [sanitize_for_prompt(v, 40) for v in column.get("sample", [])],
        })
    return {**column_summary, "columns": columns}


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def build_analysis_prompt(column_summary: Dict[str, Any], max_charts: int = 4, max_cards: int = 4) -> str:
    """Prompt for the first analysis of a dataset."""
    return f"""You are given a compact summary of a dataset: column names with inferred types, small value samples and numeric ranges.
Return strictly a JSON object with this schema:

{RESPONSE_SCHEMA}

Suggest up to {max_charts} charts and up to {max_cards} dashboard cards that give a quick overview of the data (e.g. total sales, average order value, number of orders, top categories).
Do NOT compute numbers for the cards; only return their specs, the values are computed locally on the real data.

Column summary (JSON):
{_dump(_sanitize_summary(column_summary))}

RULES:
- Use only column names that appear in the summary.
- Order charts by importance and give each a score between 0 and 1.
- Prefer "sum" for monetary-like metrics and "avg" for rates.
- Use "line" or "area" only with a column of type "date"; default granularity "month-year".
- Use null where a field does not apply.

Return the JSON only."""


def build_regenerate_prompt(
    chart: GeneratedChart,
    column_summary: Dict[str, Any],
    forbidden_combos: Iterable[str],
    date_columns: List[str],
    max_charts: int = 3,
) -> str:
    """Prompt asking for an alternative to a chart the user rejected."""
    previous = chart.recommendation.model_dump(by_alias=True, exclude={"score"})
    forbidden = sorted(sanitize_for_prompt(combo, 200) for combo in forbidden_combos)
    dates = [sanitize_for_prompt(name, 80) for name in date_columns]

    return f"""The user rejected a chart and wants an alternative. Return strictly a JSON object with this schema:

{RESPONSE_SCHEMA}

Rejected chart:
{_dump(previous)}

Column summary (JSON):
{_dump(_sanitize_summary(column_summary))}

Forbidden "groupBy||metric" combinations (already shown, never repeat them):
{_dump(forbidden)}

Available date columns: {_dump(dates) if dates else "none (do not suggest line or area charts)"}

RULES:
- Return up to {max_charts} alternative charts, ordered by score (0 to 1).
- Prefer a different metric, grouping or chart type than the rejected chart.
- If no alternative exists, return an empty "recommendedCharts" array.
- "recommendedCards" may be empty.

Return the JSON only."""
