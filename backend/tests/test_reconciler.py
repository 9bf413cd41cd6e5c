"""
Unit tests for AI recommendation reconciliation.
"""
import pytest

from sheetlens.core.errors import AIResponseError
from sheetlens.core.schemas import ChartRecommendation, Rejection
from sheetlens.services.classifier import classify_columns
from sheetlens.services.reconciler import (
    DONUT_NOTE,
    combo_key,
    extract_json,
    parse_ai_response,
    rank_columns,
    reconcile,
    synthesize_fallback,
    validate_recommendation,
)

COLUMNS = ["Categoria", "Regiao", "Valor", "Quantidade", "Data"]


def _combos(result):
    return [r.combo_key for r in result.recommended_charts]


@pytest.mark.unit
class TestAIResponseParsing:

    def test_extracts_from_fenced_text(self):
        text = 'Here you go:\n```json\n{"recommendedCharts": [{"chartType": "bar"}]}\n```'
        assert extract_json(text) == {"recommendedCharts": [{"chartType": "bar"}]}

    @pytest.mark.parametrize("text", [None, "", "no json here", "{broken", "} backwards {"])
    def test_unusable_text_raises(self, text):
        with pytest.raises(AIResponseError):
            extract_json(text)

    def test_parse_ai_response(self):
        charts, cards = parse_ai_response('{"recommendedCharts": [{"chartType": "pie"}], "recommendedCards": [{"cardType": "count"}]}')
        assert charts == [{"chartType": "pie"}]
        assert cards == [{"cardType": "count"}]

    def test_missing_lists_become_empty(self):
        assert parse_ai_response('{"recommendedCharts": null}') == ([], [])
        assert parse_ai_response('{"recommendedCards": "nope"}') == ([], [])

    def test_charts_must_be_a_list(self):
        with pytest.raises(AIResponseError):
            parse_ai_response('{"recommendedCharts": "bar"}')


@pytest.mark.unit
class TestValidateRecommendation:

    def test_resolves_fields_and_normalizes(self):
        result = validate_recommendation({
            "chartType": "BAR",
            "groupBy": "categoria",
            "metric": "valor",
            "aggregation": "median",
            "granularity": "weekly",
            "topN": "5",
            "score": 1.7,
            "explain": "  Sales by category ",
        }, COLUMNS)

        assert isinstance(result, ChartRecommendation)
        assert result.chart_type == "bar"
        assert (result.group_by, result.metric) == ("Categoria", "Valor")
        assert result.aggregation == "sum"
        assert result.granularity == "none"
        assert result.top_n == 5
        assert result.score == 1.0
        assert result.explain == "Sales by category"

    def test_time_series_defaults_to_month_year(self):
        result = validate_recommendation({"chartType": "line", "metric": "Valor", "granularity": "month"}, COLUMNS)
        assert result.granularity == "month-year"
        result = validate_recommendation({"chartType": "area", "metric": "Valor"}, COLUMNS)
        assert result.granularity == "month-year"

    def test_null_like_fields_are_none(self):
        result = validate_recommendation({"chartType": "line", "groupBy": "null", "metric": "Valor"}, COLUMNS)
        assert result.group_by is None

    def test_unknown_field_rejects(self):
        result = validate_recommendation({"chartType": "bar", "groupBy": "Cidade", "metric": "Valor"}, COLUMNS)
        assert isinstance(result, Rejection)
        assert "Cidade" in result.reason

    @pytest.mark.parametrize("raw", ["bar", None, {}, {"chartType": ""}, {"groupBy": "Categoria"}])
    def test_malformed_rejected(self, raw):
        assert isinstance(validate_recommendation(raw, COLUMNS), Rejection)

    def test_unknown_chart_type_is_kept(self):
        result = validate_recommendation({"chartType": "scatter", "groupBy": "Categoria", "metric": "Valor"}, COLUMNS)
        assert result.chart_type == "scatter"

    def test_bad_numbers_ignored(self):
        result = validate_recommendation({"chartType": "bar", "topN": "-3", "score": "high"}, COLUMNS)
        assert result.top_n is None
        assert result.score is None

    @pytest.mark.parametrize("top_n", [float("inf"), float("-inf"), float("nan"), 1e400, "Infinity"])
    def test_non_finite_top_n_ignored(self, top_n):
        result = validate_recommendation({"chartType": "bar", "groupBy": "Categoria", "metric": "Valor", "topN": top_n}, COLUMNS)
        assert result.top_n is None


@pytest.mark.unit
class TestFallback:

    def test_rank_columns(self, undated_rows):
        categoricals, numerics = rank_columns(undated_rows, classify_columns(undated_rows))
        assert categoricals == ["Categoria", "Regiao"]
        assert numerics == ["Valor", "Quantidade"]

    def test_identifier_columns_rank_last(self):
        names = ["alfa", "bravo", "charlie", "delta", "echo", "foxtrot"]
        rows = [{"id": name, "g": "a" if i % 2 else "b", "v": str(i + 1)} for i, name in enumerate(names)]
        categoricals, _ = rank_columns(rows, classify_columns(rows))
        assert categoricals == ["g", "id"]

    def test_pairs_best_first(self, undated_rows):
        recs = synthesize_fallback(undated_rows, classify_columns(undated_rows), set())
        assert [r.combo_key for r in recs] == [
            "Categoria||Valor",
            "Categoria||Quantidade",
            "Regiao||Valor",
            "Regiao||Quantidade",
        ]
        assert all(r.chart_type == "bar" and r.aggregation == "sum" for r in recs)
        assert recs[0].explain == "Total Valor by Categoria"

    def test_skips_forbidden_pairs(self, undated_rows):
        recs = synthesize_fallback(undated_rows, classify_columns(undated_rows), {"Categoria||Valor"}, max_results=1)
        assert [r.combo_key for r in recs] == ["Categoria||Quantidade"]

    def test_count_chart_without_numerics(self):
        rows = [{"g": "a"}, {"g": "b"}, {"g": "a"}]
        recs = synthesize_fallback(rows, classify_columns(rows), set())

        assert len(recs) == 1
        assert recs[0].aggregation == "count"
        assert recs[0].metric is None
        assert recs[0].group_by == "g"

    def test_forbidden_count_chart(self):
        rows = [{"g": "a"}, {"g": "b"}]
        assert synthesize_fallback(rows, classify_columns(rows), {combo_key("g", None)}) == []


@pytest.mark.unit
class TestReconcile:

    def test_none_raises(self, sales_rows):
        with pytest.raises(TypeError):
            reconcile(None, sales_rows)

    def test_empty_input_uses_fallback(self, undated_rows):
        result = reconcile([], undated_rows)

        assert result.used_fallback is True
        assert result.date_columns_available is False
        assert _combos(result)[0] == "Categoria||Valor"
        # All-bar output gets one donut for variety
        assert result.recommended_charts[0].chart_type == "donut"
        assert [r.chart_type for r in result.recommended_charts[1:]] == ["bar", "bar", "bar"]

    def test_sorted_by_score_and_deduplicated(self, sales_rows):
        raw = [
            {"chartType": "bar", "groupBy": "Regiao", "metric": "Valor", "score": 0.4},
            {"chartType": "pie", "groupBy": "Categoria", "metric": "Valor", "score": 0.9},
            {"chartType": "bar", "groupBy": "categoria", "metric": "valor", "score": 0.5},
            {"chartType": "line", "metric": "Valor", "score": 0.7},
        ]
        result = reconcile(raw, sales_rows)

        assert result.used_fallback is False
        assert _combos(result) == ["Categoria||Valor", "||Valor", "Regiao||Valor"]
        assert result.recommended_charts[0].chart_type == "pie"

    def test_equal_scores_keep_input_order(self, sales_rows):
        raw = [
            {"chartType": "bar", "groupBy": "Regiao", "metric": "Valor"},
            {"chartType": "pie", "groupBy": "Categoria", "metric": "Quantidade"},
        ]
        assert _combos(reconcile(raw, sales_rows)) == ["Regiao||Valor", "Categoria||Quantidade"]

    def test_forbidden_combos_removed(self, sales_rows):
        raw = [
            {"chartType": "pie", "groupBy": "Categoria", "metric": "Valor"},
            {"chartType": "pie", "groupBy": "Regiao", "metric": "Valor"},
        ]
        result = reconcile(raw, sales_rows, forbidden_combos={"Categoria||Valor"})
        assert _combos(result) == ["Regiao||Valor"]

    def test_all_forbidden_falls_back_without_forbidden(self, undated_rows):
        raw = [{"chartType": "pie", "groupBy": "Categoria", "metric": "Valor"}]
        result = reconcile(raw, undated_rows, forbidden_combos={"Categoria||Valor"})

        assert result.used_fallback is True
        assert "Categoria||Valor" not in _combos(result)

    def test_max_results(self, sales_rows):
        raw = [
            {"chartType": "pie", "groupBy": g, "metric": m}
            for g in ("Categoria", "Regiao") for m in ("Valor", "Quantidade")
        ]
        assert len(reconcile(raw, sales_rows, max_results=2).recommended_charts) == 2

    def test_rejections_reported(self, sales_rows):
        raw = [{"chartType": "bar", "groupBy": "Cidade", "metric": "Valor"}, "junk"]
        result = reconcile(raw, sales_rows)

        assert len(result.rejections) == 2
        assert result.used_fallback is True

    def test_time_series_without_dates_becomes_donut(self, undated_rows):
        raw = [{"chartType": "line", "groupBy": "Regiao", "metric": "Valor", "explain": "Trend"}]
        result = reconcile(raw, undated_rows)
        chart = result.recommended_charts[0]

        assert chart.chart_type == "donut"
        assert chart.granularity == "none"
        assert chart.explain == f"Trend {DONUT_NOTE}"

    def test_time_series_without_dates_or_group_is_replaced(self, undated_rows):
        raw = [{"chartType": "area", "metric": "Valor"}]
        result = reconcile(raw, undated_rows)

        assert result.used_fallback is False
        assert _combos(result) == ["Categoria||Valor"]

    def test_time_series_kept_when_dates_exist(self, sales_rows):
        raw = [
            {"chartType": "line", "metric": "Valor", "score": 0.9},
            {"chartType": "pie", "groupBy": "Regiao", "metric": "Valor", "score": 0.5},
        ]
        result = reconcile(raw, sales_rows)

        assert result.date_columns_available is True
        assert [r.chart_type for r in result.recommended_charts] == ["line", "pie"]

    def test_diversity_not_applied_when_mixed(self, sales_rows):
        raw = [
            {"chartType": "bar", "groupBy": "Regiao", "metric": "Valor"},
            {"chartType": "pie", "groupBy": "Categoria", "metric": "Valor"},
        ]
        assert [r.chart_type for r in reconcile(raw, sales_rows).recommended_charts] == ["bar", "pie"]

    def test_accepts_any_iterable(self, sales_rows):
        raw = ({"chartType": "pie", "groupBy": "Regiao", "metric": "Valor"},)
        assert _combos(reconcile(iter(raw), sales_rows)) == ["Regiao||Valor"]


@pytest.mark.unit
@pytest.mark.parametrize("raw", [
    [],
    ["junk", None, 42],
    [{"chartType": "bar", "groupBy": "Nope", "metric": "Nada"}],
    [{"chartType": "line", "metric": "Valor"}],
    [{"chartType": "pie", "groupBy": "Categoria", "metric": "Valor"}] * 3,
])
def test_output_never_empty_and_never_forbidden(undated_rows, raw):
    forbidden = {"Categoria||Valor", "Regiao||Quantidade"}
    result = reconcile(raw, undated_rows, forbidden_combos=forbidden)

    assert result.recommended_charts
    assert not forbidden.intersection(_combos(result))
    assert len(set(_combos(result))) == len(result.recommended_charts)


@pytest.mark.unit
@pytest.mark.parametrize("top_n", ["1e400", "Infinity", "-Infinity", "NaN"])
def test_non_finite_top_n_from_ai_text(sales_rows, top_n):
    text = '{"recommendedCharts": [{"chartType": "bar", "groupBy": "Categoria", "metric": "Valor", "topN": %s}]}' % top_n
    raw_charts, _ = parse_ai_response(text)

    result = reconcile(raw_charts, sales_rows, set(), 4)

    assert result.used_fallback is False
    assert _combos(result) == ["Categoria||Valor"]
    assert result.recommended_charts[0].top_n is None
