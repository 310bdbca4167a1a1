"""Shared fixtures for the startup chart pipeline tests."""

import sys
from pathlib import Path

import pytest

# Ensure project root is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from schemas import AppConfig  # noqa: E402


@pytest.fixture
def main_rows():
    """Primary dataset, 2005..2023, unsorted, with columns that appear late.

    "Revenue early stage" and "Employees in Finland" only exist from the
    sixth row on, so they are invisible in the first row's keys.
    """
    rows = []
    for i, year in enumerate(range(2005, 2024)):
        row = {
            "Year": year,
            "Revenue": 1_000_000_000 + i * 500_000_000,
            "Employees": 10_000 + i * 1_000,
            "Firms": 2_000 + i * 100,
        }
        if i >= 5:
            row["Revenue early stage"] = 200_000_000 + i * 10_000_000
            row["Employees in Finland"] = 8_000 + i * 500
        rows.append(row)
    # source order is not chronological
    rows[3], rows[10] = rows[10], rows[3]
    return rows


@pytest.fixture
def gender_rows():
    return [
        {"Year": 2022, "Male": 7000, "Female": 3000},
        {"Year": 2020, "Male": 6000, "Female": 2000},
        {"Year": 2021, "Male": 6500, "Female": 2500},
    ]


@pytest.fixture
def immigration_rows():
    return [
        {"Year": 2021, "Finnish background": 800, "Foreign background": 200,
         "Share of foreign background": 0.2},
        {"Year": 2022, "Finnish background": 750, "Foreign background": 250,
         "Share of foreign background": 0.25},
    ]


@pytest.fixture
def barometer_rows():
    return [
        {"Time": "Q3/2023", "Financial situation past 3mo": 12.5,
         "Financial situation next 3mo": 20.0},
        {"Time": "Q1/2023", "Financial situation past 3mo": -4.0,
         "Financial situation next 3mo": 0},
        {"Time": "Q2/2023"},
        {"Time": "Q4/2022", "Financial situation past 3mo": 0},
    ]


@pytest.fixture
def unicorn_rows():
    return [
        {"Firm": "Wolt", "Last valuation": 8_100_000_000, "Finnish": True,
         "Finnish background": True},
        {"Firm": "Supercell", "Last valuation": 10_200_000_000, "Finnish": "TRUE",
         "Finnish background": 1},
        {"Firm": "Oura", "Last valuation": 5_200_000_000, "Finnish": 1,
         "Finnish background": "yes"},
        {"Firm": "Relex", "Last valuation": 5_000_000_000, "Finnish": "FALSE",
         "Finnish background": True},
        {"Firm": "Nameless", "Finnish": True},
    ]


@pytest.fixture
def datasets(main_rows, gender_rows, barometer_rows, unicorn_rows):
    return {
        "main": main_rows,
        "employees_gender": gender_rows,
        "rdi": [
            {"Year": 2021, "R&D-investments": 1_500_000_000},
            {"Year": 2022, "R&D-investments": 1_800_000_000},
        ],
        "barometer": barometer_rows,
        "unicorns": unicorn_rows,
    }


@pytest.fixture
def cfg(tmp_path):
    """Config pointing every file tier and the discovery state at tmp_path."""
    return AppConfig(**{
        "sources": {
            "document_id": "doc-main",
            "barometer_document_id": "doc-barometer",
            "data_dir": str(tmp_path / "data"),
            "excel_path": str(tmp_path / "data" / "bundled.xlsx"),
        },
        "fetch": {"timeout_seconds": 1, "max_retries": 3},
        "discovery": {"first_tab": 0, "last_tab": 5, "max_workers": 2,
                      "state_file": str(tmp_path / "data" / "discovered_tabs.yaml")},
    })
