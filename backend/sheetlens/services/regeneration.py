"""
Chart regeneration controller.

Owns the only mutable state of an analysis session: the per-chart attempt
counters, the set of charts currently being regenerated and the set of
"groupBy||metric" combinations already shown to the user.

Runs on a single asyncio event loop. The AI call is the only suspension
point, so the bookkeeping between awaits needs no locking.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from sheetlens.core.config import Settings, get_settings
from sheetlens.core.errors import AIResponseError, RegenerationLimitExceeded
from sheetlens.core.schemas import ColumnKind, ColumnProfile, GeneratedChart, RegenerationOutcome
from sheetlens.services.classifier import build_column_summary, classify_columns
from sheetlens.services.materializer import materialize
from sheetlens.services.prompts import build_regenerate_prompt
from sheetlens.services.reconciler import parse_ai_response, reconcile

logger = logging.getLogger(__name__)

GenerateFn = Callable[[str], Awaitable[Optional[str]]]


@dataclass
class ChartSlot:
    chart: GeneratedChart
    attempts: int = 0
    regenerating: bool = False


class RegenerationController:
    """
    Replaces one chart at a time with an alternative the user has not seen.

    Usage:
        controller = RegenerationController(ai_client.generate)
        controller.reset(rows, profiles, charts)
        outcome = await controller.regenerate("ai-0-bar-Categoria")
    """

    def __init__(self, generate: GenerateFn, settings: Optional[Settings] = None):
        self._generate = generate
        self.settings = settings or get_settings()
        self.max_attempts = self.settings.max_regeneration_attempts

        self._slots: Dict[str, ChartSlot] = {}
        self._in_flight: Set[str] = set()
        self._forbidden: Set[str] = set()
        self._generation = 0

        self._rows: List[Dict[str, Any]] = []
        self._profiles: List[ColumnProfile] = []
        self._date_columns: List[str] = []

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    def reset(
        self,
        rows: List[Dict[str, Any]],
        profiles: Optional[List[ColumnProfile]] = None,
        charts: Iterable[GeneratedChart] = (),
    ):
        """
        Start over with a new dataset.

        Counters, in-flight markers and shown combinations are cleared, and
        regenerations still awaiting the AI for the previous dataset will be
        discarded when they resume.
        """
        self._generation += 1
        self._slots = {}
        self._in_flight = set()
        self._forbidden = set()
        self._rows = rows
        if profiles is None:
            profiles = classify_columns(
                rows,
                sample_limit=self.settings.sample_limit,
                date_threshold=self.settings.date_threshold,
                numeric_threshold=self.settings.numeric_threshold,
                day_first=self.settings.day_first,
            )
        self._profiles = profiles
        self._date_columns = [p.name for p in profiles if p.kind == ColumnKind.DATE]
        self.register_charts(charts)

    def register_charts(self, charts: Iterable[GeneratedChart]):
        """Track charts shown to the user; their combinations become forbidden."""
        for chart in charts:
            self._slots[chart.id] = ChartSlot(chart=chart, attempts=chart.regeneration_attempts)
            self._forbidden.add(chart.recommendation.combo_key)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def forbidden_combos(self) -> FrozenSet[str]:
        return frozenset(self._forbidden)

    @property
    def charts(self) -> List[GeneratedChart]:
        return [slot.chart for slot in self._slots.values()]

    def get_chart(self, chart_id: str) -> Optional[GeneratedChart]:
        slot = self._slots.get(chart_id)
        return slot.chart if slot else None

    def attempts(self, chart_id: str) -> int:
        slot = self._slots.get(chart_id)
        return slot.attempts if slot else 0

    def is_in_flight(self, chart_id: str) -> bool:
        return chart_id in self._in_flight

    # ------------------------------------------------------------------
    # Regeneration
    # ------------------------------------------------------------------

    async def regenerate(self, chart_id: str) -> RegenerationOutcome:
        """
        Ask the AI for an alternative to one chart.

        Returns a RegenerationOutcome whose status is one of: regenerated,
        unchanged (nothing usable came back, previous chart kept), limit_reached,
        in_flight (a request for this chart is already running), stale (the
        dataset was replaced meanwhile), unknown_chart or failed.
        """
        slot = self._slots.get(chart_id)
        if slot is None:
            return RegenerationOutcome(status="unknown_chart")
        if chart_id in self._in_flight:
            logger.debug(f"Regeneration already running for {chart_id}")
            return RegenerationOutcome(status="in_flight", chart=slot.chart)

        slot.attempts += 1
        if slot.attempts > self.max_attempts:
            limit = RegenerationLimitExceeded(chart_id, slot.attempts, self.max_attempts)
            logger.info(str(limit))
            return RegenerationOutcome(status="limit_reached", chart=slot.chart, warning=str(limit))

        generation = self._generation
        self._in_flight.add(chart_id)
        slot.regenerating = True
        slot.chart = slot.chart.model_copy(update={"regenerating": True})
        try:
            outcome = await self._regenerate(chart_id, slot, generation)
        except Exception as e:
            logger.error(f"Regeneration failed for {chart_id}: {e}")
            outcome = RegenerationOutcome(status="failed", warning=str(e), ai_called=True)
        finally:
            # A reset while awaiting already cleared the markers of the old dataset
            if generation == self._generation:
                self._in_flight.discard(chart_id)
                slot.regenerating = False
                slot.chart = slot.chart.model_copy(update={"regenerating": False})

        if outcome.status != "stale":
            outcome.chart = slot.chart
        return outcome

    async def _regenerate(self, chart_id: str, slot: ChartSlot, generation: int) -> RegenerationOutcome:
        prompt = build_regenerate_prompt(
            slot.chart,
            build_column_summary(self._profiles),
            self._forbidden,
            self._date_columns,
        )
        text = await self._generate(prompt)

        if generation != self._generation:
            logger.info(f"Discarding regeneration of {chart_id}: dataset was replaced")
            return RegenerationOutcome(status="stale", ai_called=True)

        if not text:
            return RegenerationOutcome(status="unchanged", ai_called=True)

        try:
            raw_charts, _ = parse_ai_response(text)
        except AIResponseError as e:
            logger.warning(f"Unusable AI response while regenerating {chart_id}: {e}")
            raw_charts = []

        sample = self._rows[:self.settings.sample_limit]
        result = reconcile(
            raw_charts,
            sample,
            self._forbidden,
            max_results=self.settings.max_recommendations,
            profiles=self._profiles,
        )
        if not result.recommended_charts:
            logger.info(f"No alternative left for {chart_id}")
            return RegenerationOutcome(status="unchanged", ai_called=True)

        # A working chart is only replaced by one that renders
        for best in result.recommended_charts:
            candidate = materialize(
                best,
                self._rows,
                chart_id_override=chart_id,
                date_columns=self._date_columns,
                regeneration_attempts=slot.attempts,
                locale=self.settings.label_locale,
                day_first=self.settings.day_first,
                default_top_n=self.settings.default_top_n,
            )
            if candidate.valid:
                break
            logger.debug(f"Skipping alternative {best.chart_type} {best.combo_key} for {chart_id}: {candidate.error}")
        else:
            logger.info(f"No renderable alternative for {chart_id}")
            return RegenerationOutcome(status="unchanged", ai_called=True)

        slot.chart = candidate
        self._forbidden.add(best.combo_key)
        logger.info(f"Regenerated {chart_id} as {best.chart_type} {best.combo_key} (attempt {slot.attempts})")
        return RegenerationOutcome(status="regenerated", ai_called=True)
