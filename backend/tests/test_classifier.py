"""
Unit tests for column classification.
"""
import pytest

from sheetlens.core.schemas import ColumnKind
from sheetlens.services.classifier import (
    build_column_summary,
    classify_columns,
    columns_of_kind,
    detect_date_columns,
)


def _kinds(profiles):
    return {p.name: p.kind for p in profiles}


@pytest.mark.unit
def test_classify_sales_sheet(sales_rows):
    profiles = classify_columns(sales_rows)

    assert [p.name for p in profiles] == ["Categoria", "Regiao", "Valor", "Quantidade", "Data"]
    assert _kinds(profiles) == {
        "Categoria": ColumnKind.CATEGORICAL,
        "Regiao": ColumnKind.CATEGORICAL,
        "Valor": ColumnKind.NUMERIC,
        "Quantidade": ColumnKind.NUMERIC,
        "Data": ColumnKind.DATE,
    }


@pytest.mark.unit
def test_empty_dataset():
    assert classify_columns([]) == []
    assert detect_date_columns([]) == []


@pytest.mark.unit
def test_numeric_range_and_samples(sales_rows):
    valor = next(p for p in classify_columns(sales_rows) if p.name == "Valor")

    assert valor.numeric_range.min == pytest.approx(50.0)
    assert valor.numeric_range.max == pytest.approx(1000.5)
    assert valor.sample_values[0] == "1.000,50"
    assert valor.unique_sample_count == 6
    assert valor.non_empty_count == 6


@pytest.mark.unit
def test_sample_values_capped_at_eight():
    rows = [{"id": str(i)} for i in range(1, 30)]
    profile = classify_columns(rows)[0]

    assert len(profile.sample_values) == 8
    assert profile.unique_sample_count == 29


@pytest.mark.unit
def test_only_sampled_rows_are_inspected():
    rows = [{"x": "abc"} for _ in range(5)] + [{"x": "10"} for _ in range(50)]

    assert classify_columns(rows, sample_limit=5)[0].kind == ColumnKind.CATEGORICAL
    assert classify_columns(rows, sample_limit=200)[0].kind == ColumnKind.NUMERIC


@pytest.mark.unit
def test_years_are_numbers_not_dates():
    rows = [{"Ano": str(year)} for year in (2020, 2021, 2022, 2023)]
    assert classify_columns(rows)[0].kind == ColumnKind.NUMERIC


@pytest.mark.unit
def test_shift_and_rank_codes_are_not_dates():
    rows = [{"Turno": f"T{i % 3 + 1}", "Rank": ["1st", "2nd", "3rd"][i % 3]} for i in range(9)]

    assert detect_date_columns(rows) == []
    assert ColumnKind.DATE not in _kinds(classify_columns(rows)).values()


@pytest.mark.unit
def test_iso_dates_beat_numeric_heuristic():
    rows = [{"d": f"2024-01-{day:02d}"} for day in range(1, 10)]
    assert detect_date_columns(rows) == ["d"]


@pytest.mark.unit
def test_mostly_zero_column_is_categorical():
    rows = [{"v": "0"} for _ in range(8)] + [{"v": "3"}, {"v": "4"}]
    assert classify_columns(rows)[0].kind == ColumnKind.CATEGORICAL


@pytest.mark.unit
def test_blank_cells_do_not_count_against_ratios():
    rows = [{"v": "10"}, {"v": ""}, {"v": None}, {"v": "20"}]
    profile = classify_columns(rows)[0]

    assert profile.kind == ColumnKind.NUMERIC
    assert profile.non_empty_count == 2


@pytest.mark.unit
def test_columns_of_kind(sales_rows):
    profiles = classify_columns(sales_rows)
    assert columns_of_kind(profiles, ColumnKind.NUMERIC) == ["Valor", "Quantidade"]


@pytest.mark.unit
def test_build_column_summary(sales_rows):
    summary = build_column_summary(classify_columns(sales_rows))
    by_name = {c["name"]: c for c in summary["columns"]}

    assert by_name["Data"]["type"] == "date"
    assert by_name["Data"]["numericSummary"] is None
    assert by_name["Quantidade"]["numericSummary"] == {"min": 1.0, "max": 5.0}
    assert by_name["Regiao"]["uniqueSampleCount"] == 2
