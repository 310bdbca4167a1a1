#!/usr/bin/env python3
"""
Shared vocabulary for the chart-config builders.

Everything a builder needs besides its own column logic lives here:
  - ChartParams: the parameter bag every builder accepts
  - palettes per theme and x-axis tick density per viewport width
  - period helpers (year parsing, chronological sort)
  - format descriptors and the function that executes them
  - JSON / table export of a finished ChartConfig

A ChartConfig is a plain dict; ``None`` stands for "no data to plot".
"""

import json
import math
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

import numpy as np
import pandas as pd

ACCENT = "#A580F2"

_LEADING_INT = re.compile(r"^\s*(-?\d+)")


# =========================================================================
# Theme and viewport
# =========================================================================

CHART_COLORS = {
    "light": {
        "grid": "rgba(0, 0, 0, 0.1)",
        "axis": "rgba(26, 26, 26, 0.5)",
        "tick": "rgba(26, 26, 26, 0.7)",
        "tooltip_bg": "rgba(255, 255, 255, 0.95)",
        "tooltip_text": "#1a1a1a",
    },
    "dark": {
        "grid": "rgba(255, 255, 255, 0.1)",
        "axis": "rgba(255, 255, 255, 0.5)",
        "tick": "rgba(255, 255, 255, 0.7)",
        "tooltip_bg": "rgba(17, 17, 17, 0.95)",
        "tooltip_text": "#ffffff",
    },
}


def chart_colors(theme: str) -> dict:
    """Palette for ``theme``; anything but 'light' gets the dark palette."""
    return dict(CHART_COLORS["light" if theme == "light" else "dark"])


def x_axis_interval(window_width: int) -> int:
    """Number of x tick labels to skip between shown ones."""
    if window_width >= 1024:
        return 0
    if window_width >= 768:
        return 1
    return 2


# =========================================================================
# Parameter bag
# =========================================================================

_PARAM_ALIASES = {
    "windowWidth": "window_width",
    "showMaleBar": "show_male",
    "showFemaleBar": "show_female",
    "showFinnishBar": "show_finnish",
    "showForeignBar": "show_foreign",
    "showTable": "show_table",
    "currencySymbol": "currency_symbol",
    "onShowTable": "on_show_table",
    "onFullscreen": "on_fullscreen",
    "onViewChange": "on_view_change",
    "onToggleBar": "on_toggle_series",
    "onFilterChange": "on_filter_change",
}


@dataclass(frozen=True)
class ChartParams:
    """Inputs that change a chart without changing its data."""
    filter: str = "all"
    view: str = "none"
    show_male: bool = True
    show_female: bool = True
    show_finnish: bool = True
    show_foreign: bool = True
    window_width: int = 1200
    theme: str = "dark"
    currency_symbol: str = "€"
    show_table: bool = False
    # Optional UI callbacks, passed through untouched
    on_show_table: Optional[Callable] = field(default=None, compare=False)
    on_fullscreen: Optional[Callable] = field(default=None, compare=False)
    on_view_change: Optional[Callable] = field(default=None, compare=False)
    on_toggle_series: Optional[Callable] = field(default=None, compare=False)
    on_filter_change: Optional[Callable] = field(default=None, compare=False)

    @classmethod
    def from_config(cls, charts) -> "ChartParams":
        """Deployment defaults from the ``charts`` section of AppConfig."""
        return cls(window_width=charts.window_width, theme=charts.theme,
                   currency_symbol=charts.currency_symbol)

    @classmethod
    def from_mapping(cls, params: Optional[Mapping] = None,
                     defaults: Optional["ChartParams"] = None) -> "ChartParams":
        """Build from a dict using snake_case or camelCase keys; unknown keys are ignored.

        Keys absent from ``params`` keep their value from ``defaults``.
        """
        base = defaults if defaults is not None else cls()
        if params is None:
            return base
        if isinstance(params, ChartParams):
            return params
        known = set(cls.__dataclass_fields__)
        kwargs = {}
        for key, val in params.items():
            name = _PARAM_ALIASES.get(key, key)
            if name in known and val is not None:
                kwargs[name] = val
        if "window_width" in kwargs:
            kwargs["window_width"] = int(kwargs["window_width"])
        return replace(base, **kwargs)

    def with_(self, **changes) -> "ChartParams":
        return replace(self, **changes)

    @property
    def colors(self) -> dict:
        return chart_colors(self.theme)

    @property
    def x_axis_interval(self) -> int:
        return x_axis_interval(self.window_width)

    def actions(self, **extra) -> dict:
        """Callback handles for the renderer. Only the ones that were supplied."""
        handles = {
            "show_table": self.on_show_table,
            "fullscreen": self.on_fullscreen,
            **extra,
        }
        return {k: v for k, v in handles.items() if v is not None}


# =========================================================================
# Cells and periods
# =========================================================================

def numeric(value) -> Optional[float]:
    """A tagged numeric cell as float, else None. Strings are not re-parsed."""
    if isinstance(value, bool) or not isinstance(value, (int, float, np.number)):
        return None
    value = float(value)
    if not math.isfinite(value):
        return None
    return value


def numeric_year(value) -> Optional[int]:
    """Leading integer of a period value ("2021", 2021, "2021*" -> 2021)."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, np.number)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return int(value)
    m = _LEADING_INT.match(str(value))
    return int(m.group(1)) if m else None


def has_period(value) -> bool:
    return value is not None and value != ""


def period_label(value) -> str:
    """Display label of a period cell; integral floats lose their '.0'."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def sort_by_period(items: Iterable, key: Callable[[Any], Any]) -> list:
    """Ascending by numeric year; entries without one follow in input order."""
    def _k(item):
        year = numeric_year(key(item))
        return (0, year) if year is not None else (1, 0)
    return sorted(items, key=_k)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# =========================================================================
# Format descriptors
# =========================================================================

def currency_format(divisor: float = 1.0, suffix: str = "", decimals: int = 2,
                    symbol: str = "€") -> dict:
    return {"kind": "currency", "divisor": divisor, "suffix": suffix,
            "decimals": decimals, "symbol": symbol}


def number_format(decimals: int = 0) -> dict:
    return {"kind": "number", "decimals": decimals}


def percent_format(decimals: int = 1) -> dict:
    return {"kind": "percent", "decimals": decimals}


def fixed_format(decimals: int = 1) -> dict:
    return {"kind": "fixed", "decimals": decimals}


def valuation_format(symbol: str = "€") -> dict:
    return {"kind": "valuation", "symbol": symbol}


def format_valuation(value: float, symbol: str = "€") -> str:
    """Adaptive B/M/K valuation label; one decimal from 10 upwards."""
    if value >= 1e9:
        scaled = value / 1e9
        return f"{symbol}{scaled:.{1 if scaled >= 10 else 2}f}B"
    if value >= 1e6:
        scaled = value / 1e6
        return f"{symbol}{scaled:.{1 if scaled >= 10 else 2}f}M"
    if value >= 1e3:
        return f"{symbol}{value / 1e3:.1f}K"
    return f"{symbol}{round_half_up(value):,}"


def format_value(descriptor: Mapping, value) -> str:
    """Render ``value`` according to a format descriptor."""
    if value is None:
        return ""
    kind = descriptor.get("kind", "number")
    decimals = descriptor.get("decimals", 0)
    if kind == "currency":
        scaled = value / descriptor.get("divisor", 1.0)
        return f"{descriptor.get('symbol', '€')}{scaled:.{decimals}f}{descriptor.get('suffix', '')}"
    if kind == "percent":
        return f"{value:.{decimals}f}%"
    if kind == "fixed":
        return f"{value:.{decimals}f}"
    if kind == "valuation":
        return format_valuation(value, descriptor.get("symbol", "€"))
    if decimals == 0:
        return f"{round_half_up(value):,}"
    return f"{value:,.{decimals}f}"


# =========================================================================
# Shared config pieces
# =========================================================================

def area_style(gradient_id: str, color: str = ACCENT) -> dict:
    return {
        "stroke_color": color,
        "gradient_id": gradient_id,
        "gradient_start_color": color,
        "gradient_end_color": color,
        "gradient_start_opacity": 0.3,
        "gradient_end_opacity": 0.05,
        "stroke_width": 2,
    }


def bar_series(key: str, label: str, color: str, gradient_id: str,
               visible: bool = True) -> dict:
    return {
        "data_key": key,
        "label": label,
        "color": color,
        "gradient_id": gradient_id,
        "gradient_start_color": color,
        "gradient_end_color": color,
        "gradient_start_opacity": 0.9,
        "gradient_end_opacity": 0.6,
        "visible": visible,
    }


def presentation(params: ChartParams) -> dict:
    """Flags every config carries regardless of chart family."""
    return {
        "colors": params.colors,
        "window_width": params.window_width,
        "x_axis_interval": params.x_axis_interval,
        "show_table": params.show_table,
    }


# =========================================================================
# Export
# =========================================================================

def _safe(v):
    """Convert numpy/pandas types to JSON-safe Python types."""
    if v is None or (isinstance(v, float) and math.isnan(v)):
        return None
    if isinstance(v, np.integer):
        return int(v)
    if isinstance(v, np.floating):
        return None if np.isnan(v) else float(v)
    if isinstance(v, np.bool_):
        return bool(v)
    return v


def _plain(obj):
    if isinstance(obj, dict):
        return {k: _plain(v) for k, v in obj.items() if not callable(v)}
    if isinstance(obj, (list, tuple)):
        return [_plain(v) for v in obj]
    return _safe(obj)


def to_json(config: Optional[Mapping], indent: Optional[int] = None) -> str:
    """Serialise a ChartConfig; callbacks are dropped, None stays null."""
    if config is None:
        return "null"
    return json.dumps(_plain(dict(config)), indent=indent, ensure_ascii=False)


def table_frame(config: Optional[Mapping]) -> pd.DataFrame:
    """Tabular view of a config's data, using its table columns when given."""
    if not config:
        return pd.DataFrame()
    table = config.get("table") or {}
    rows = table.get("rows") or config.get("data") or []
    df = pd.DataFrame(list(rows))
    columns = table.get("columns")
    if columns:
        keys = [c["key"] for c in columns if c["key"] in df.columns]
        df = df[keys].rename(columns={c["key"]: c["label"] for c in columns})
    return df


def export_table(config: Optional[Mapping], path: str | Path) -> str:
    """Write the table view to .xlsx (openpyxl) or .csv, by extension."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df = table_frame(config)
    if path.suffix.lower() == ".xlsx":
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name="Data", index=False)
    else:
        df.to_csv(path, index=False)
    return str(path)
