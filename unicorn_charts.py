#!/usr/bin/env python3
"""
Ranked categorical chart: unicorn valuations.

Firms are ranked by last valuation (descending) and can be narrowed to
those founded in Finland or with a Finnish background. Narrow viewports
switch to horizontal bars so every firm name stays readable.
"""

from typing import Mapping, NamedTuple, Optional, Sequence

from chart_common import (
    ACCENT, ChartParams, numeric, presentation, valuation_format,
)
from column_resolver import ColumnResolver

FILTERS = (
    ("all", "All"),
    ("finnish", "Founded in Finland"),
    ("finnish-background", "Finnish background"),
)

_TRUE_TOKENS = {"true", "yes", "y", "1", "x", "kyllä", "k"}


class Unicorn(NamedTuple):
    firm: str
    valuation: float
    is_finnish: bool
    is_finnish_background: bool


def as_flag(value) -> bool:
    """Spreadsheet boolean -> bool (TRUE, 1, "yes", "x" ...)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_TOKENS


def normalize_unicorns(rows: Sequence[Mapping]) -> list[Unicorn]:
    """Valid unicorn rows, highest valuation first.

    Rows without a firm name or a numeric valuation are skipped.
    """
    resolver = ColumnResolver(rows)
    firm_col = resolver.column("firm_name")
    valuation_col = resolver.column("valuation")
    if firm_col is None or valuation_col is None:
        return []
    finnish_col = resolver.column("founded_in_finland")
    background_col = resolver.column("finnish_background_flag")

    out = []
    for row in rows:
        firm = row.get(firm_col)
        valuation = numeric(row.get(valuation_col))
        if firm is None or not str(firm).strip() or valuation is None:
            continue
        out.append(Unicorn(
            firm=str(firm).strip(),
            valuation=valuation,
            is_finnish=as_flag(row.get(finnish_col)) if finnish_col else False,
            is_finnish_background=as_flag(row.get(background_col)) if background_col else False,
        ))
    out.sort(key=lambda u: u.valuation, reverse=True)
    return out


def truncate(name: str, max_length: int) -> str:
    if len(name) <= max_length:
        return name
    return name[:max_length - 3] + "..."


def _axes(count: int, window_width: int, symbol: str = "€") -> tuple[str, dict, dict]:
    small = window_width <= 640
    if window_width <= 768:
        # horizontal: x is the valuation axis, y lists firm names
        x_axis = {"font_size": 9 if small else 10, "tick_margin": 10, "height": 45}
        y_axis = {
            "format": valuation_format(symbol),
            "interval": 0,
            "width": 150 if small else 140,
            "label_max_length": 14 if small else 16,
            "font_size": 9 if small else 10,
        }
        return "horizontal", x_axis, y_axis
    if count >= 16:
        x_axis = {"interval": 0, "font_size": 8, "angle": -60, "height": 170,
                  "tick_margin": 12}
    else:
        x_axis = {"interval": 0, "font_size": 9, "angle": -45, "height": 120,
                  "tick_margin": None}
    x_axis["label_max_length"] = 10 if small else 12
    return "vertical", x_axis, {"format": valuation_format(symbol), "width": 60}


def build_unicorn_config(rows: Sequence[Mapping], params=None) -> Optional[dict]:
    """Valuation bars for every firm passing the active filter."""
    unicorns = normalize_unicorns(rows)
    if not unicorns:
        return None
    params = ChartParams.from_mapping(params)

    active = params.filter if params.filter in dict(FILTERS) else "all"
    if active == "finnish":
        selected = [u for u in unicorns if u.is_finnish]
    elif active == "finnish-background":
        selected = [u for u in unicorns if u.is_finnish_background]
    else:
        selected = unicorns

    layout, x_axis, y_axis = _axes(len(selected), params.window_width, params.currency_symbol)
    for axis in (x_axis, y_axis):
        if "label_max_length" in axis:
            axis["labels"] = [truncate(u.firm, axis["label_max_length"]) for u in selected]

    noun = {"all": "total", "finnish": "Finnish-founded"}.get(active, "Finnish background")
    plural = "s" if len(selected) != 1 else ""
    return {
        "chart_type": "bar",
        "bar_layout": layout,
        "title": "Unicorn Valuations",
        "data_label": "Valuation",
        "data": [
            {"label": u.firm, "value": u.valuation, "original_value": u.valuation,
             "is_finnish": u.is_finnish,
             "is_finnish_background": u.is_finnish_background}
            for u in selected
        ],
        "series": [{
            "data_key": "value",
            "label": "Valuation",
            "color": ACCENT,
            "gradient_id": "gradient-unicorn-valuation",
            "gradient_start_opacity": 0.8,
            "gradient_end_opacity": 0.3,
            "visible": True,
        }],
        "filters": {
            "enabled": True,
            "toggles": [{"label": label, "key": token, "active": token == active}
                        for token, label in FILTERS],
        },
        "x_axis": x_axis,
        "y_axis": y_axis,
        "tooltip": {"format": valuation_format(params.currency_symbol), "field": "value"},
        "context_text": (f"Finnish unicorns represent companies valued at over "
                         f"$1 billion. {len(selected)} {noun} unicorn{plural}."),
        "table": {
            "rows": [
                {"name": u.firm, "value": u.valuation,
                 "is_finnish": "Yes" if u.is_finnish else "No",
                 "is_finnish_background": "Yes" if u.is_finnish_background else "No"}
                for u in selected
            ],
            "columns": [
                {"key": "name", "label": "Firm"},
                {"key": "value", "label": "Valuation"},
                {"key": "is_finnish", "label": "Founded in Finland"},
                {"key": "is_finnish_background", "label": "Finnish Background"},
            ],
        },
        "is_revenue_value": True,
        "debug": {"filter": params.filter, "column_used": "valuation"},
        "actions": params.actions(filter_change=params.on_filter_change),
        **presentation(params),
        # every firm name is always shown
        "x_axis_interval": 0,
    }
