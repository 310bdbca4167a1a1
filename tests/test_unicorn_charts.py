"""Tests for the unicorn valuation ranking chart."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from chart_common import format_valuation
from unicorn_charts import as_flag, build_unicorn_config, normalize_unicorns, truncate


# =====================================================================
# NORMALISATION
# =====================================================================

class TestNormalize:
    def test_ranked_by_valuation(self, unicorn_rows):
        firms = [u.firm for u in normalize_unicorns(unicorn_rows)]
        assert firms == ["Supercell", "Wolt", "Oura", "Relex"]

    def test_rows_without_valuation_skipped(self, unicorn_rows):
        assert "Nameless" not in [u.firm for u in normalize_unicorns(unicorn_rows)]

    @pytest.mark.parametrize("raw,expected", [
        (True, True), ("TRUE", True), ("yes", True), (1, True), ("x", True),
        (False, False), ("FALSE", False), (0, False), (None, False), ("", False),
    ])
    def test_flags(self, raw, expected):
        assert as_flag(raw) is expected

    def test_truncate(self):
        assert truncate("Supercell", 12) == "Supercell"
        assert truncate("Very Long Company Name", 12) == "Very Long..."


# =====================================================================
# FILTERS
# =====================================================================

class TestFilters:
    def test_all(self, unicorn_rows):
        config = build_unicorn_config(unicorn_rows)
        assert len(config["data"]) == 4
        assert config["context_text"].endswith("4 total unicorns.")

    def test_founded_in_finland(self, unicorn_rows):
        config = build_unicorn_config(unicorn_rows, {"filter": "finnish"})
        assert [d["label"] for d in config["data"]] == ["Supercell", "Wolt", "Oura"]
        active = [t["key"] for t in config["filters"]["toggles"] if t["active"]]
        assert active == ["finnish"]

    def test_finnish_background(self, unicorn_rows):
        config = build_unicorn_config(unicorn_rows, {"filter": "finnish-background"})
        assert len(config["data"]) == 4

    def test_filter_with_no_match_keeps_config(self):
        rows = [{"Firm": "Acme", "Valuation": 2e9, "Finnish": False}]
        config = build_unicorn_config(rows, {"filter": "finnish"})
        assert config is not None
        assert config["data"] == []

    def test_unknown_filter_is_all(self, unicorn_rows):
        config = build_unicorn_config(unicorn_rows, {"filter": "bogus"})
        assert len(config["data"]) == 4

    def test_no_valid_rows(self):
        assert build_unicorn_config([{"Firm": "Acme"}]) is None
        assert build_unicorn_config([]) is None


# =====================================================================
# LAYOUT
# =====================================================================

class TestLayout:
    def test_wide_is_vertical(self, unicorn_rows):
        config = build_unicorn_config(unicorn_rows, {"windowWidth": 1200})
        assert config["bar_layout"] == "vertical"
        assert config["x_axis"]["angle"] == -45
        assert config["x_axis_interval"] == 0

    def test_many_firms_steeper_labels(self):
        rows = [{"Firm": f"Firm {i}", "Valuation": 1e9 + i} for i in range(16)]
        config = build_unicorn_config(rows)
        assert config["x_axis"]["angle"] == -60
        assert config["x_axis"]["height"] == 170

    def test_narrow_is_horizontal(self, unicorn_rows):
        config = build_unicorn_config(unicorn_rows, {"windowWidth": 600})
        assert config["bar_layout"] == "horizontal"
        assert config["y_axis"]["labels"][0] == "Supercell"
        assert config["x_axis_interval"] == 0

    def test_table_columns(self, unicorn_rows):
        table = build_unicorn_config(unicorn_rows)["table"]
        assert [c["key"] for c in table["columns"]] == [
            "name", "value", "is_finnish", "is_finnish_background"]
        assert table["rows"][-1]["is_finnish"] == "No"


class TestValuationFormat:
    @pytest.mark.parametrize("value,expected", [
        (10_200_000_000, "€10.2B"),
        (8_100_000_000, "€8.10B"),
        (500_000_000, "€500.0M"),
        (2_500_000, "€2.50M"),
        (1_500, "€1.5K"),
        (999, "€999"),
    ])
    def test_adaptive(self, value, expected):
        assert format_valuation(value) == expected
