"""
Full analysis pass over a freshly parsed dataset.

classify -> prompt -> AI -> reconcile -> materialize -> cards

The AI is optional: a missing, failing or nonsensical response only means
the charts come from the deterministic fallback.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sheetlens.core.config import Settings, get_settings
from sheetlens.core.errors import AIResponseError
from sheetlens.core.performance import track_performance
from sheetlens.core.schemas import AnalysisResult, CardPayload, ColumnKind, ColumnProfile, GeneratedChart
from sheetlens.services.cards import compute_card_values
from sheetlens.services.classifier import build_column_summary, classify_columns
from sheetlens.services.materializer import materialize
from sheetlens.services.prompts import build_analysis_prompt
from sheetlens.services.reconciler import parse_ai_response, reconcile
from sheetlens.services.regeneration import RegenerationController

logger = logging.getLogger(__name__)

GenerateFn = Callable[[str], Awaitable[Optional[str]]]


@dataclass
class AnalysisSession:
    """Everything needed to serve follow-up requests for one uploaded file."""
    session_id: str
    filename: str
    rows: List[Dict[str, Any]]
    profiles: List[ColumnProfile]
    cards: List[CardPayload]
    controller: RegenerationController
    used_fallback: bool = False
    date_columns: List[str] = field(default_factory=list)

    @property
    def charts(self) -> List[GeneratedChart]:
        return self.controller.charts

    def to_result(self) -> AnalysisResult:
        return AnalysisResult(
            session_id=self.session_id,
            filename=self.filename,
            row_count=len(self.rows),
            columns=self.profiles,
            date_columns=self.date_columns,
            charts=self.charts,
            cards=self.cards,
            used_fallback=self.used_fallback,
        )


async def _ask_ai(generate: GenerateFn, prompt: str):
    """Raw chart and card specs from the AI, or empty lists when nothing usable came back."""
    try:
        text = await generate(prompt)
    except Exception as e:
        logger.warning(f"AI call failed, using fallback recommendations: {e}")
        return [], []
    if not text:
        logger.info("AI unavailable or returned nothing, using fallback recommendations")
        return [], []
    try:
        return parse_ai_response(text)
    except AIResponseError as e:
        logger.warning(f"Unusable AI response, using fallback recommendations: {e}")
        return [], []


@track_performance("analyze_rows")
async def analyze_rows(
    rows: List[Dict[str, Any]],
    generate: GenerateFn,
    settings: Optional[Settings] = None,
    session_id: str = "",
    filename: str = "dataset",
) -> AnalysisSession:
    """
    Run the whole pipeline on parsed rows.

    Args:
        rows: Parsed dataset (read only)
        generate: Async AI text generation, `generate(prompt) -> str | None`
        settings: Pipeline settings (defaults to the application settings)
        session_id: Identifier stored on the returned session
        filename: Original file name, for display

    Returns:
        AnalysisSession with materialized charts, cards and a ready controller
    """
    settings = settings or get_settings()

    profiles = classify_columns(
        rows,
        sample_limit=settings.sample_limit,
        date_threshold=settings.date_threshold,
        numeric_threshold=settings.numeric_threshold,
        day_first=settings.day_first,
    )
    date_columns = [p.name for p in profiles if p.kind == ColumnKind.DATE]

    prompt = build_analysis_prompt(
        build_column_summary(profiles),
        max_charts=settings.max_recommendations,
        max_cards=settings.max_cards,
    )
    raw_charts, raw_cards = await _ask_ai(generate, prompt)

    sample = rows[:settings.sample_limit]
    result = reconcile(
        raw_charts,
        sample,
        forbidden_combos=set(),
        max_results=settings.max_recommendations,
        profiles=profiles,
    )
    if result.rejections:
        logger.info(f"Rejected {len(result.rejections)} AI recommendations")

    charts = [
        materialize(
            recommendation,
            rows,
            index=index,
            date_columns=date_columns,
            locale=settings.label_locale,
            day_first=settings.day_first,
            default_top_n=settings.default_top_n,
        )
        for index, recommendation in enumerate(result.recommended_charts)
    ]
    cards = compute_card_values(rows, raw_cards, max_cards=settings.max_cards)

    controller = RegenerationController(generate, settings)
    controller.reset(rows, profiles, charts)

    logger.info(
        f"Analysis complete: {len(rows)} rows, {len(profiles)} columns, "
        f"{sum(1 for c in charts if c.valid)}/{len(charts)} valid charts, {len(cards)} cards"
        + (" (fallback)" if result.used_fallback else "")
    )
    return AnalysisSession(
        session_id=session_id,
        filename=filename,
        rows=rows,
        profiles=profiles,
        cards=cards,
        controller=controller,
        used_fallback=result.used_fallback,
        date_columns=date_columns,
    )
