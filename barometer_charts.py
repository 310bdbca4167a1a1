#!/usr/bin/env python3
"""
Sentiment-balance (barometer) chart configs.

Each survey wave carries, per topic, a retrospective reading ("past 3
months") and a prospective one ("next 3 months"). The readings are balance
figures on a -100..+100 scale that are already aggregated in the source
data; they are plotted as-is.
"""

import re
from typing import Mapping, Optional, Sequence

from chart_common import (
    ChartParams, area_style, fixed_format, has_period, numeric,
    period_label, presentation,
)
from column_resolver import BAROMETER_TOPICS, ColumnResolver

_QUARTER_YEAR = re.compile(r"Q(\d)\s*/\s*(\d{4})", re.IGNORECASE)

TOPIC_TITLES = {
    "financial": "Financial situation",
    "employees": "Number of employees",
    "economy": "Surrounding economy",
}

BALANCE_NOTE = ("Balance = % very positive + (0.5*positive) "
                "- (0.5*%negative) - % very negative")

SERIES = (
    ("past", "Past 3 months", "#A580F2"),
    ("next", "Next 3 months", "#4A90E2"),
)


def parse_quarter_year(token) -> Optional[tuple[int, int]]:
    """'Q2/2022' -> (2022, 2); None when the token has no quarter/year."""
    m = _QUARTER_YEAR.search(str(token))
    if not m:
        return None
    return int(m.group(2)), int(m.group(1))


def wave_sort_key(label: str) -> tuple:
    """Parsed waves chronologically, then unparsed tokens lexically."""
    parsed = parse_quarter_year(label)
    if parsed is not None:
        return (0, parsed, "")
    return (1, (0, 0), label)


def build_barometer_config(rows: Sequence[Mapping], params=None,
                           topic: str = "financial") -> Optional[dict]:
    """Past/next balance series for one topic, or None without data."""
    if not rows or topic not in BAROMETER_TOPICS:
        return None
    params = ChartParams.from_mapping(params)
    resolver = ColumnResolver(rows)
    time_column = resolver.column("time")
    if time_column is None:
        return None
    columns = {
        "past": resolver.column(f"barometer_{topic}_past"),
        "next": resolver.column(f"barometer_{topic}_next"),
    }
    if all(c is None for c in columns.values()):
        return None

    waves = []
    for row in rows:
        period = row.get(time_column)
        if not has_period(period):
            continue
        point = {"label": period_label(period)}
        for key, column in columns.items():
            if column is not None:
                point[key] = numeric(row.get(column))
        # 0 is a valid balance; only a wave with no reading at all is dropped
        if all(point.get(key) is None for key in columns):
            continue
        waves.append(point)
    if not waves:
        return None
    waves.sort(key=lambda p: wave_sort_key(p["label"]))

    return {
        "chart_type": "area",
        "title": TOPIC_TITLES[topic],
        "title_note": BALANCE_NOTE,
        "data_label": "Sentiment",
        "data": waves,
        "series": [
            {"key": key, "label": label, "color": color,
             "gradient_id": f"gradient-barometer-{key}",
             "gradient_start_opacity": 0.3, "gradient_end_opacity": 0.05}
            for key, label, color in SERIES if columns[key] is not None
        ],
        "y_axis": {
            "format": fixed_format(1),
            "domain": [-50, 50],
            "label": "Balance Figure (-100 to +100)",
        },
        "tooltip": {"format": fixed_format(1), "field": "value"},
        "style": area_style("gradient-barometer-default"),
        "filters": {"enabled": False, "options": []},
        "is_revenue_value": False,
        "debug": {"filter": topic,
                  "column_used": [c for c in columns.values() if c is not None]},
        "actions": params.actions(),
        **presentation(params),
    }


def build_financial_config(rows, params=None) -> Optional[dict]:
    return build_barometer_config(rows, params, "financial")


def build_employees_outlook_config(rows, params=None) -> Optional[dict]:
    return build_barometer_config(rows, params, "employees")


def build_economy_config(rows, params=None) -> Optional[dict]:
    return build_barometer_config(rows, params, "economy")
