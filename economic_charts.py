#!/usr/bin/env python3
"""
Time-series chart configs for the economic-impact family:
revenue, employees, active firms and R&D investments.

Each builder is ``(rows, params) -> dict | None``. A chart has one base
column and optional variant columns ("early-stage", "finland", ...). Only
variants that resolve on the given dataset are offered as filter options,
and a requested variant that is missing falls back to the base column.
"""

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from chart_common import (
    ChartParams, area_style, currency_format, has_period, number_format,
    numeric, period_label, presentation, sort_by_period,
)
from column_resolver import ColumnResolver


@dataclass(frozen=True)
class Variant:
    token: str
    role: str
    option_label: str
    data_label: str


@dataclass(frozen=True)
class TimeSeriesSpec:
    key: str
    title: str
    base_role: str
    all_option: str
    base_label: str
    filter_key: str
    variants: tuple[Variant, ...] = ()
    scale: float = 1.0
    is_revenue: bool = False


REVENUE = TimeSeriesSpec(
    key="revenue",
    title="Startup Revenue",
    base_role="revenue",
    all_option="All Revenue",
    base_label="Total Revenue",
    filter_key="revenue_filter",
    variants=(
        Variant("early-stage", "revenue_early_stage", "Early-Stage", "Early Stage Revenue"),
        Variant("later-stage", "revenue_later_stage", "Later-Stage", "Later-Stage Revenue"),
    ),
    scale=1e9,
    is_revenue=True,
)

EMPLOYEES = TimeSeriesSpec(
    key="employees",
    title="Number of Employees",
    base_role="employees",
    all_option="All Employees",
    base_label="Total Employees",
    filter_key="employees_filter",
    variants=(
        Variant("finland", "employees_finland", "Finland Only", "Employees in Finland"),
    ),
)

FIRMS = TimeSeriesSpec(
    key="firms",
    title="Active firms",
    base_role="firms",
    all_option="All Firms",
    base_label="Active firms",
    filter_key="firms_filter",
    variants=(
        Variant("finland", "firms_finland", "Finland Only", "Firms in Finland"),
        Variant("early-stage", "firms_early_stage", "Early-Stage", "Number of Startups"),
        Variant("later-stage", "firms_later_stage", "Later-Stage", "Number of Scaleups"),
    ),
)


def series_points(rows: Sequence[Mapping], column: str, year_column: str,
                  scale: float = 1.0) -> list[dict]:
    """Plot points for one column: valid non-negative numbers with a period."""
    points = []
    for row in rows:
        period = row.get(year_column)
        value = numeric(row.get(column))
        if not has_period(period) or value is None or value < 0:
            continue
        points.append({
            "label": period_label(period),
            "value": value / scale,
            "original_value": value,
        })
    return sort_by_period(points, key=lambda p: p["label"])


def _value_formats(is_currency: bool, scale: float, symbol: str = "€") -> tuple[dict, dict]:
    if is_currency:
        axis = currency_format(divisor=1.0, suffix="B", decimals=1, symbol=symbol)
        tooltip = currency_format(divisor=scale, suffix="B", decimals=2, symbol=symbol)
    else:
        axis = number_format()
        tooltip = number_format()
    return axis, tooltip


def build_time_series(rows: Sequence[Mapping], params, spec: TimeSeriesSpec) -> Optional[dict]:
    """Shared builder behind every economic-impact chart."""
    if not rows:
        return None
    params = ChartParams.from_mapping(params)
    resolver = ColumnResolver(rows)

    base = resolver.column(spec.base_role)
    variants = {v.token: (v, resolver.column(v.role)) for v in spec.variants}
    if base is None and all(col is None for _, col in variants.values()):
        return None

    year_column = resolver.year_column()
    if year_column is None:
        return None

    active_token, column, data_label = "all", base, spec.base_label
    requested = variants.get(params.filter)
    if requested is not None and requested[1] is not None:
        variant, column = requested
        active_token, data_label = variant.token, variant.data_label
    if column is None:
        return None

    points = series_points(rows, column, year_column, spec.scale)
    if not points:
        return None

    options = [{"value": "all", "label": spec.all_option}] if base else []
    options += [{"value": v.token, "label": v.option_label}
                for v, col in variants.values() if col is not None]

    axis_fmt, tooltip_fmt = _value_formats(spec.is_revenue, spec.scale, params.currency_symbol)
    return {
        "chart_type": "area",
        "title": spec.title,
        "data_label": data_label,
        "data": points,
        "filters": {
            "enabled": True,
            "options": options,
            "default": "all",
            "active": active_token,
            "filter_key": spec.filter_key,
        },
        "y_axis": {"format": axis_fmt, "width": 35},
        "tooltip": {"format": tooltip_fmt, "field": "original_value"},
        "style": area_style(f"gradient-filterable-{spec.key}"),
        "is_revenue_value": spec.is_revenue,
        "debug": {"filter": params.filter, "column_used": column},
        "actions": params.actions(),
        **presentation(params),
    }


def build_revenue_config(rows, params=None) -> Optional[dict]:
    return build_time_series(rows, params, REVENUE)


def build_employees_config(rows, params=None) -> Optional[dict]:
    return build_time_series(rows, params, EMPLOYEES)


def build_firms_config(rows, params=None) -> Optional[dict]:
    return build_time_series(rows, params, FIRMS)


# =========================================================================
# R&D: single series, unit decided by the column name
# =========================================================================

_RDI_CURRENCY_HINTS = ("investment", "rdi", "r&d")


def display_column_name(name: str) -> str:
    """'r&d-investments' -> 'R&D Investments'."""
    words = name.replace("_", " ").replace("-", " ").split()
    out = []
    for word in words:
        out.append("R&D" if word.lower() == "r&d" else word[:1].upper() + word[1:].lower())
    return " ".join(out)


def build_rdi_config(rows, params=None) -> Optional[dict]:
    """R&D investments; currency columns are shown in billions."""
    if not rows:
        return None
    params = ChartParams.from_mapping(params)
    resolver = ColumnResolver(rows)
    column = resolver.column("rdi")
    year_column = resolver.year_column()
    if column is None or year_column is None:
        return None

    is_currency = any(h in column.lower() for h in _RDI_CURRENCY_HINTS)
    scale = 1e9 if is_currency else 1.0
    points = series_points(rows, column, year_column, scale)
    if not points:
        return None

    axis_fmt, tooltip_fmt = _value_formats(is_currency, scale, params.currency_symbol)
    return {
        "chart_type": "area",
        "title": "R&D investments",
        "data_label": display_column_name(column),
        "data": points,
        "filters": {
            "enabled": False,
            "options": [],
            "default": "all",
            "active": "all",
            "filter_key": "rdi_filter",
        },
        "y_axis": {"format": axis_fmt, "width": 35},
        "tooltip": {"format": tooltip_fmt, "field": "original_value"},
        "style": area_style("gradient-rdi"),
        "is_revenue_value": is_currency,
        "debug": {"filter": params.filter, "column_used": column},
        "actions": params.actions(),
        **presentation(params),
    }
