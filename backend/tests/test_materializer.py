"""
Unit tests for turning recommendations into render-ready charts.
"""
import pytest

from sheetlens.core.schemas import ChartRecommendation, GroupedPayload, TimeSeriesPayload
from sheetlens.services.materializer import chart_id, chart_title, materialize, resolve_date_field


def _rec(**kwargs):
    return ChartRecommendation(**kwargs)


@pytest.mark.unit
class TestNaming:

    def test_chart_id(self):
        assert chart_id(_rec(chart_type="pie", group_by="Regiao"), 2) == "ai-2-pie-Regiao"
        assert chart_id(_rec(chart_type="line"), 0) == "ai-0-line-nogroup"

    def test_title(self):
        assert chart_title(_rec(chart_type="bar", explain="Sales by region")) == "Sales by region"
        assert chart_title(_rec(chart_type="bar", metric="Valor")) == "bar of Valor"
        assert chart_title(_rec(chart_type="bar")) == "bar of value"


@pytest.mark.unit
class TestGroupedCharts:

    def test_bar_sum(self, sales_rows):
        chart = materialize(_rec(chart_type="bar", group_by="Categoria", metric="Valor"), sales_rows)

        assert chart.valid is True
        assert chart.error is None
        assert isinstance(chart.payload, GroupedPayload)
        assert chart.payload.rows == [
            {"Categoria": "Eletronicos", "Valor": 1350.75},
            {"Categoria": "Moveis", "Valor": 599.9},
            {"Categoria": "Roupas", "Valor": 200.0},
        ]

    def test_top_n(self, sales_rows):
        chart = materialize(_rec(chart_type="pie", group_by="Categoria", metric="Valor", top_n=2), sales_rows)
        assert len(chart.payload.rows) == 2

    def test_count_without_metric(self, sales_rows):
        chart = materialize(_rec(chart_type="donut", group_by="Regiao", aggregation="count"), sales_rows)

        assert chart.valid is True
        assert chart.payload.value_field == "count"
        assert chart.payload.rows == [{"Regiao": "Sul", "count": 3.0}, {"Regiao": "Norte", "count": 3.0}]

    @pytest.mark.parametrize("rec", [
        _rec(chart_type="bar", group_by="Cidade", metric="Valor"),
        _rec(chart_type="bar", group_by="Categoria", metric="Receita"),
        _rec(chart_type="bar", metric="Valor"),
        _rec(chart_type="bar", group_by="Categoria"),
    ])
    def test_missing_fields(self, sales_rows, rec):
        chart = materialize(rec, sales_rows)

        assert chart.valid is False
        assert chart.payload is None
        assert chart.error == "Missing groupBy/metric in data"

    def test_empty_rows(self):
        chart = materialize(_rec(chart_type="bar", group_by="Categoria", metric="Valor"), [])
        assert chart.valid is False


@pytest.mark.unit
class TestTimeSeriesCharts:

    def test_line_by_month(self, sales_rows):
        chart = materialize(_rec(chart_type="line", metric="Valor", granularity="month-year"), sales_rows)

        assert chart.valid is True
        assert isinstance(chart.payload, TimeSeriesPayload)
        assert chart.payload.categories == ["Jan 2024", "Feb 2024", "Mar 2024"]
        assert chart.payload.series[0].data == [1500.5, 500.25, 149.9]

    def test_area_grouped_pt_br(self, sales_rows):
        chart = materialize(
            _rec(chart_type="area", metric="Valor", group_by="Regiao", granularity="month-year"),
            sales_rows,
            locale="pt-BR",
        )
        assert chart.payload.categories[0] == "jan. de 2024"
        assert {s.name for s in chart.payload.series} == {"Sul", "Norte"}

    def test_missing_metric(self, sales_rows):
        chart = materialize(_rec(chart_type="line", metric="Receita"), sales_rows)
        assert chart.valid is False
        assert chart.error == "Missing date or metric"

    def test_no_date_column(self, undated_rows):
        chart = materialize(_rec(chart_type="line", metric="Valor"), undated_rows)
        assert chart.valid is False
        assert chart.error == "Missing date or metric"


@pytest.mark.unit
class TestResolveDateField:

    def test_explicit_field_wins(self, sales_rows):
        rec = _rec(chart_type="line", metric="Valor", date_field="Data")
        assert resolve_date_field(rec, sales_rows, date_columns=[]) == "Data"

    def test_named_known_date_column_preferred(self):
        rows = [{"criado": "2024-01-01", "data_envio": "2024-02-01", "v": 1}]
        rec = _rec(chart_type="line", metric="v")
        assert resolve_date_field(rec, rows, date_columns=["criado", "data_envio"]) == "data_envio"

    def test_first_known_date_column(self):
        rows = [{"criado": "2024-01-01", "v": 1}]
        rec = _rec(chart_type="line", metric="v")
        assert resolve_date_field(rec, rows, date_columns=["criado"]) == "criado"

    def test_detects_by_values(self):
        rows = [{"quando": "2024-01-01", "v": 1}, {"quando": "2024-02-01", "v": 2}]
        rec = _rec(chart_type="line", metric="v")
        assert resolve_date_field(rec, rows) == "quando"

    def test_none_found(self, undated_rows):
        assert resolve_date_field(_rec(chart_type="line", metric="Valor"), undated_rows) is None


@pytest.mark.unit
class TestOptions:

    def test_unsupported_chart_type(self, sales_rows):
        chart = materialize(_rec(chart_type="scatter", group_by="Categoria", metric="Valor"), sales_rows)
        assert chart.valid is False
        assert chart.error == "Unsupported chart type"

    def test_id_override_and_attempts(self, sales_rows):
        chart = materialize(
            _rec(chart_type="pie", group_by="Regiao", metric="Valor"),
            sales_rows,
            index=3,
            chart_id_override="ai-0-bar-Categoria",
            regeneration_attempts=2,
        )
        assert chart.id == "ai-0-bar-Categoria"
        assert chart.regeneration_attempts == 2
        assert chart.regenerating is False

    def test_serializes_camel_case(self, sales_rows):
        chart = materialize(_rec(chart_type="bar", group_by="Categoria", metric="Valor"), sales_rows)
        data = chart.model_dump(by_alias=True)

        assert data["regenerationAttempts"] == 0
        assert data["payload"]["categoryField"] == "Categoria"
        assert data["recommendation"]["chartType"] == "bar"
