"""Tests for role -> column resolution.

Resolution scans the union of keys over every row, so a
column that first appears mid-dataset is still found.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from column_resolver import (
    ROLE_RULES,
    ColumnResolver,
    ColumnRule,
    all_columns,
    find_all,
    find_any,
)


# =====================================================================
# UNION OF KEYS
# =====================================================================

class TestUnionOfKeys:
    def test_late_column_found(self, main_rows):
        assert "Revenue early stage" not in main_rows[0]
        resolver = ColumnResolver(main_rows)
        assert resolver.column("revenue_early_stage") == "Revenue early stage"
        assert resolver.column("employees_finland") == "Employees in Finland"

    def test_all_columns_first_seen_order(self):
        assert all_columns([{"a": 1}, {"b": 2, "a": 3}, {"c": 4}]) == ["a", "b", "c"]

    def test_empty_rows(self):
        resolver = ColumnResolver([])
        assert resolver.columns == ()
        assert resolver.column("revenue") is None


# =====================================================================
# ECONOMIC ROLES
# =====================================================================

class TestEconomicRoles:
    def test_base_columns_exclude_variants(self, main_rows):
        resolver = ColumnResolver(main_rows)
        assert resolver.column("revenue") == "Revenue"
        assert resolver.column("employees") == "Employees"
        assert resolver.column("firms") == "Firms"
        assert resolver.year_column() == "Year"

    def test_finnish_fallback_names(self):
        resolver = ColumnResolver([{"Vuosi": 2021, "Liikevaihto": 5, "Yritykset": 3}])
        assert resolver.year_column() == "Vuosi"
        assert resolver.column("revenue") == "Liikevaihto"
        assert resolver.column("firms") == "Yritykset"

    def test_revenue_tier_priority(self):
        # "revenue" outranks "sales" regardless of column order
        resolver = ColumnResolver([{"Sales": 1, "Total revenue": 2}])
        assert resolver.column("revenue") == "Total revenue"

    def test_number_of_startups_counts_as_firms(self):
        resolver = ColumnResolver([{"Year": 2020, "Number of startups": 10}])
        assert resolver.column("firms") == "Number of startups"
        assert resolver.column("firms_early_stage") == "Number of startups"

    def test_share_columns_never_counts(self):
        resolver = ColumnResolver([{"Share of employees in Finland": 0.8}])
        assert resolver.column("employees") is None
        assert resolver.column("employees_finland") is None

    def test_rdi_column(self):
        resolver = ColumnResolver([{"Year": 2021, "R&D-investments": 10}])
        assert resolver.column("rdi") == "R&D-investments"


# =====================================================================
# CATEGORICAL ROLES
# =====================================================================

class TestCategoricalRoles:
    def test_male_does_not_match_female(self, gender_rows):
        resolver = ColumnResolver(gender_rows)
        assert resolver.column("male") == "Male"
        assert resolver.column("female") == "Female"
        assert resolver.column("share_male") is None

    def test_background_counts_and_share(self, immigration_rows):
        resolver = ColumnResolver(immigration_rows)
        assert resolver.column("finnish_background") == "Finnish background"
        assert resolver.column("foreign_background") == "Foreign background"
        assert resolver.column("share_foreign") == "Share of foreign background"
        assert resolver.column("share_finnish") is None

    def test_unicorn_columns(self, unicorn_rows):
        resolver = ColumnResolver(unicorn_rows)
        assert resolver.column("firm_name") == "Firm"
        assert resolver.column("valuation") == "Last valuation"
        assert resolver.column("founded_in_finland") == "Finnish"
        assert resolver.column("finnish_background_flag") == "Finnish background"

    def test_barometer_columns(self, barometer_rows):
        resolver = ColumnResolver(barometer_rows)
        assert resolver.column("time") == "Time"
        assert resolver.column("barometer_financial_past") == "Financial situation past 3mo"
        assert resolver.column("barometer_financial_next") == "Financial situation next 3mo"
        assert resolver.column("barometer_economy_past") is None


# =====================================================================
# RESULT OBJECTS
# =====================================================================

class TestResolvedColumn:
    def test_unknown_role_is_explicit(self):
        result = ColumnResolver([{"Year": 1}]).resolve("no-such-role")
        assert result.known_role is False
        assert result.column is None
        assert "revenue" in result.valid_roles

    def test_missing_column_is_not_found(self):
        result = ColumnResolver([{"Year": 1}]).resolve("revenue")
        assert result.known_role is True
        assert result.found is False

    def test_roles_lists_rule_table(self):
        assert set(ColumnResolver([]).roles()) == set(ROLE_RULES)


class TestMatchingHelpers:
    def test_case_insensitive(self):
        assert find_any(["REVENUE"], [("revenue",)]) == "REVENUE"

    def test_exclude_always_wins(self):
        assert find_any(["Revenue share"], [("revenue",)], exclude=["share"]) is None

    def test_find_all_requires_every_keyword(self):
        cols = ["Employees", "Employees in Finland"]
        assert find_all(cols, ["employees", "finland"]) == "Employees in Finland"

    def test_exact_beats_keywords(self):
        rule = ColumnRule(any_of=(("name",),), exact=("firm",))
        assert rule.match(["Firm name", "Firm"]) == "Firm"
