"""
Shared fixtures: a small Brazilian sales sheet as the CSV parser returns it
(raw strings, locale-formatted numbers, day-first dates).
"""
import pytest

from sheetlens.core.config import Settings
from sheetlens.core.performance import PerformanceMonitor


@pytest.fixture
def sales_rows():
    return [
        {"Categoria": "Eletronicos", "Regiao": "Sul", "Valor": "1.000,50", "Quantidade": "2", "Data": "05/01/2024"},
        {"Categoria": "Moveis", "Regiao": "Norte", "Valor": "500,00", "Quantidade": "1", "Data": "20/01/2024"},
        {"Categoria": "Roupas", "Regiao": "Sul", "Valor": "200", "Quantidade": "5", "Data": "03/02/2024"},
        {"Categoria": "Eletronicos", "Regiao": "Norte", "Valor": "300,25", "Quantidade": "1", "Data": "15/02/2024"},
        {"Categoria": "Moveis", "Regiao": "Sul", "Valor": "99,90", "Quantidade": "3", "Data": "01/03/2024"},
        {"Categoria": "Eletronicos", "Regiao": "Norte", "Valor": "50", "Quantidade": "4", "Data": "10/03/2024"},
    ]


@pytest.fixture
def undated_rows(sales_rows):
    """The same sheet without its date column."""
    return [{k: v for k, v in row.items() if k != "Data"} for row in sales_rows]


@pytest.fixture
def settings():
    """Default settings, independent of the environment."""
    return Settings()


@pytest.fixture(autouse=True)
def _clear_metrics():
    PerformanceMonitor.clear_metrics()
    yield
