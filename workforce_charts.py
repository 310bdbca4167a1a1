#!/usr/bin/env python3
"""
Workforce chart configs: gender distribution and immigration status.

Two mutually exclusive modes over the same counts:
  - toggle view: one bar series per category, each with its own
    visibility flag
  - share view: a single percentage area series that replaces the bars

Share values come from a precomputed share column when the dataset has
one, otherwise they are computed from the two category counts.
"""

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from chart_common import (
    ChartParams, bar_series, has_period, number_format, numeric,
    percent_format, period_label, presentation, sort_by_period,
)
from column_resolver import ColumnResolver

NO_VIEW = "none"


@dataclass(frozen=True)
class Category:
    key: str            # series / data key, e.g. "Male"
    role: str           # column role of the count
    toggle: str         # token passed to on_toggle_series
    color: str
    gradient_id: str


@dataclass(frozen=True)
class ShareView:
    token: str
    label: str
    title: str
    share_role: str     # precomputed share column role
    category: int       # index of the category whose share this is
    color: str


@dataclass(frozen=True)
class CategoricalSpec:
    key: str
    title: str
    categories: tuple[Category, Category]
    views: tuple[ShareView, ...]
    context_text: str = ""


GENDER = CategoricalSpec(
    key="gender",
    title="Gender distribution of startup workers",
    categories=(
        Category("Male", "male", "male", "#4A90E2", "gradient-male-bar"),
        Category("Female", "female", "female", "#E94B7E", "gradient-female-bar"),
    ),
    views=(
        ShareView("male-share", "Share of Males", "Share of male employees",
                  "share_male", 0, "#4A90E2"),
        ShareView("female-share", "Share of Females", "Share of female employees",
                  "share_female", 1, "#E94B7E"),
    ),
)

IMMIGRATION = CategoricalSpec(
    key="immigration",
    title="Immigration status",
    categories=(
        Category("Finnish", "finnish_background", "finnish", "#3498DB",
                 "gradient-finnish-bar-immigration"),
        Category("Foreign", "foreign_background", "foreign", "#9B59B6",
                 "gradient-foreign-bar-immigration"),
    ),
    views=(
        ShareView("finnish-share", "Share of Finnish",
                  "Share of Finnish background employees in startups",
                  "share_finnish", 0, "#3498DB"),
        ShareView("foreign-share", "Share of Foreign",
                  "Share of foreign background employees in startups",
                  "share_foreign", 1, "#9B59B6"),
    ),
    context_text=("The immigration status of employees in startup-based firms "
                  "shows the distribution between Finnish and foreign "
                  "background workers over time."),
)

_VISIBILITY = {
    "male": "show_male",
    "female": "show_female",
    "finnish": "show_finnish",
    "foreign": "show_foreign",
}


def as_percentage(value: float) -> float:
    """Share cell -> percent. Values <= 1 are read as fractions.

    This misreads a genuine share below 1% as a fraction; share columns in
    the source data are either all fractions or all percentages.
    """
    return value * 100 if value <= 1 else value


def compute_share(part: float, total: float) -> float:
    return part / total * 100 if total > 0 else 0.0


def count_rows(rows: Sequence[Mapping], columns: Sequence[Optional[str]],
               keys: Sequence[str], year_column: str) -> list[dict]:
    """One entry per valid row: period label, each category count and the total."""
    out = []
    resolved = [(k, c) for k, c in zip(keys, columns) if c is not None]
    for row in rows:
        period = row.get(year_column)
        if not has_period(period):
            continue
        values = {k: numeric(row.get(c)) for k, c in resolved}
        if any(v is None or v < 0 for v in values.values()):
            continue
        out.append({"label": period_label(period), **values,
                    "Total": sum(values.values())})
    return sort_by_period(out, key=lambda r: r["label"])


def share_points(rows: Sequence[Mapping], share_column: Optional[str],
                 counts: list[dict], view: ShareView,
                 categories: Sequence[Category], year_column: str) -> list[dict]:
    """Percentage series for ``view``; precomputed column first, counts second."""
    if share_column is not None:
        points = []
        for row in rows:
            period = row.get(year_column)
            raw = numeric(row.get(share_column))
            if not has_period(period) or raw is None or raw < 0:
                continue
            points.append({"label": period_label(period),
                           "value": as_percentage(raw),
                           "original_value": raw})
        return sort_by_period(points, key=lambda p: p["label"])

    part_key = categories[view.category].key
    if not counts or any(c.key not in counts[0] for c in categories):
        return []
    return [
        {"label": r["label"],
         "value": compute_share(r[part_key], r["Total"]),
         "original_value": r[part_key]}
        for r in counts
    ]


def build_categorical(rows: Sequence[Mapping], params, spec: CategoricalSpec) -> Optional[dict]:
    """Shared builder behind the gender and immigration charts."""
    if not rows:
        return None
    params = ChartParams.from_mapping(params)
    resolver = ColumnResolver(rows)
    year_column = resolver.year_column()
    columns = [resolver.column(c.role) for c in spec.categories]
    if year_column is None or all(c is None for c in columns):
        return None

    counts = count_rows(rows, columns, [c.key for c in spec.categories], year_column)
    if not counts:
        return None

    shares = {
        v.token: share_points(rows, resolver.column(v.share_role), counts, v,
                              spec.categories, year_column)
        for v in spec.views
    }

    visible = {c.key: bool(getattr(params, _VISIBILITY[c.toggle]))
               for c in spec.categories}
    active_view = next((v for v in spec.views
                        if v.token == params.view and shares[v.token]), None)
    view_token = active_view.token if active_view else NO_VIEW

    view_buttons = [
        {"label": v.label, "value": v.token, "active": v.token == view_token}
        for v in spec.views if shares[v.token]
    ]
    toggle_buttons = [
        {"label": c.key, "key": c.toggle,
         "active": view_token == NO_VIEW and visible[c.key]}
        for c in spec.categories if c.key in counts[0]
    ]

    if active_view is not None:
        config = {
            "chart_type": "area",
            "title": active_view.title,
            "data_label": active_view.label,
            "data": shares[view_token],
            "series": None,
            "area": {
                "data_key": "value",
                "color": active_view.color,
                "gradient_id": f"gradient-{view_token}",
                "gradient_start_opacity": 0.3,
                "gradient_end_opacity": 0.05,
            },
            "y_axis": {"format": percent_format(1), "width": 35},
            "tooltip": {"format": percent_format(2), "field": "value"},
        }
    else:
        data = [
            {"label": r["label"],
             **{c.key: r[c.key] for c in spec.categories
                if c.key in r and visible[c.key]}}
            for r in counts
        ]
        config = {
            "chart_type": "bar",
            "title": spec.title,
            "data_label": "Employees",
            "data": data,
            "series": [
                bar_series(c.key, c.key, c.color, c.gradient_id, visible[c.key])
                for c in spec.categories if c.key in counts[0]
            ],
            "area": None,
            "y_axis": {"format": number_format(), "width": None},
            "tooltip": {"format": number_format(), "field": "value"},
        }

    config.update({
        "view": view_token,
        "filters": {
            "enabled": True,
            "toggles": toggle_buttons,
            "views": view_buttons,
        },
        "table": {"rows": counts},
        "context_text": spec.context_text,
        "is_revenue_value": False,
        "debug": {
            "filter": params.view,
            "column_used": [c for c in columns if c is not None],
        },
        "actions": params.actions(view_change=params.on_view_change,
                                  toggle_series=params.on_toggle_series),
        **presentation(params),
    })
    return config


def build_gender_config(rows, params=None) -> Optional[dict]:
    return build_categorical(rows, params, GENDER)


def build_immigration_config(rows, params=None) -> Optional[dict]:
    return build_categorical(rows, params, IMMIGRATION)
