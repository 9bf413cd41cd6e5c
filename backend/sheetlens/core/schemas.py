from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional, Any, Dict, Union

SUPPORTED_CHART_TYPES = ("bar", "line", "pie", "donut", "area")
TIME_SERIES_CHART_TYPES = ("line", "area")
GROUPED_CHART_TYPES = ("bar", "pie", "donut")
AGGREGATIONS = ("sum", "avg", "count", "none")
GRANULARITIES = ("day", "month-year", "year", "none")


class CamelModel(BaseModel):
    """Accepts and emits the camelCase keys used by the AI service and the frontend."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ColumnKind(str, Enum):
    NUMERIC = "numeric"
    CATEGORICAL = "categorical"
    DATE = "date"


class NumericRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: float
    max: float


class ColumnProfile(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str
    kind: ColumnKind
    sample_values: List[str]  # up to 8 stringified values
    unique_sample_count: int
    non_empty_count: int = 0
    numeric_range: Optional[NumericRange] = None


class GroupTotal(CamelModel):
    group_key: str
    metric_totals: Dict[str, float]
    row_count: int


class TimeSeries(BaseModel):
    name: str
    data: List[float]
    total: float


class TimeSeriesResult(CamelModel):
    categories: List[str]  # bucket labels, chronological
    bucket_keys: List[str] = []
    series: List[TimeSeries]


class ChartRecommendation(CamelModel):
    chart_type: str
    group_by: Optional[str] = None
    metric: Optional[str] = None
    aggregation: str = "sum"  # 'sum', 'avg', 'count', 'none'
    granularity: str = "none"  # 'day', 'month-year', 'year', 'none'
    top_n: Optional[int] = None
    score: Optional[float] = None
    explain: str = ""
    date_field: Optional[str] = None

    @property
    def combo_key(self) -> str:
        return f"{self.group_by or ''}||{self.metric or ''}"


class Rejection(BaseModel):
    reason: str
    raw: Any = None


class GroupedPayload(CamelModel):
    category_field: str
    value_field: str
    groups: List[GroupTotal]
    rows: List[Dict[str, Any]]  # [{category_field: key, value_field: total}, ...]


class TimeSeriesPayload(CamelModel):
    categories: List[str]
    series: List[TimeSeries]


class GeneratedChart(CamelModel):
    id: str
    kind: str
    title: str
    recommendation: ChartRecommendation
    payload: Optional[Union[GroupedPayload, TimeSeriesPayload]] = None
    valid: bool
    error: Optional[str] = None
    regenerating: bool = False
    regeneration_attempts: int = 0


class ReconcileResult(CamelModel):
    recommended_charts: List[ChartRecommendation]
    date_columns_available: bool
    used_fallback: bool = False
    rejections: List[Rejection] = []


class CardSpec(CamelModel):
    card_type: str  # 'metric', 'topCategory', 'count', 'avg', 'minMax'
    field: Optional[str] = None
    aggregation: Optional[str] = None
    label: Optional[str] = None
    format: Optional[str] = None  # 'currency', 'number', 'percentage', 'text'
    top_n: Optional[int] = None
    explain: Optional[str] = None


class CardPayload(CamelModel):
    id: str
    card_type: str
    label: str
    field: Optional[str] = None
    value: Any = None
    format: Optional[str] = None
    explain: Optional[str] = None
    numeric_field: Optional[str] = None


class AnalysisResult(CamelModel):
    session_id: Optional[str] = None
    filename: str
    row_count: int
    columns: List[ColumnProfile]
    date_columns: List[str]
    charts: List[GeneratedChart]
    cards: List[CardPayload] = []
    used_fallback: bool = False


class RegenerationOutcome(CamelModel):
    status: str  # 'regenerated', 'unchanged', 'limit_reached', 'in_flight', 'stale', 'unknown_chart', 'failed'
    chart: Optional[GeneratedChart] = None
    warning: Optional[str] = None
    ai_called: bool = Field(default=False)
