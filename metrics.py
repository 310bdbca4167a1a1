#!/usr/bin/env python3
"""
Metric Extractor
================
Headline indicators for the landing page: latest value, growth against the
previous period and a display string, one per resolved column.

    metrics = get_startup_metrics(snapshot.datasets)
    metrics.revenue.formatted_value   # "€12.20B"

Formatting is deterministic and metric specific:
  - revenue            format_currency   €12.20B / €3.40M / €999,999
  - R&D                format_millions   €18M
  - firms, unicorns    format_count      4,321
  - employees          format_hundreds   nearest 100, grouped
"""

import math
from typing import Callable, Iterable, Mapping, Optional, Sequence

from chart_common import has_period, round_half_up, sort_by_period
from column_resolver import ColumnResolver
from csv_parser import NUMERIC_NOISE
from schemas import MetricData, StartupMetrics
from run_context import get_logger
from unicorn_charts import normalize_unicorns

logger = get_logger(__name__)

_MISSING_TOKENS = {"", "n/a", "na", "-", "--"}


# =========================================================================
# Parsing & growth
# =========================================================================

def parse_numeric(value) -> Optional[float]:
    """Raw cell -> float, tolerating separators, currency and Unicode spaces.

    Returns None for missing or unparsable input; never raises.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = float(value)
        return value if math.isfinite(value) else None
    text = str(value).strip()
    if text.lower() in _MISSING_TOKENS:
        return None
    for candidate in (text, NUMERIC_NOISE.sub("", text)):
        try:
            num = float(candidate)
        except ValueError:
            continue
        return num if math.isfinite(num) else None
    logger.debug("Unparsable numeric cell %r", value)
    return None


def calculate_growth(current: float, previous: float) -> float:
    """Percentage change; 0 when previous is 0 or either side is NaN."""
    if previous == 0 or math.isnan(previous) or math.isnan(current):
        return 0.0
    return (current - previous) / previous * 100


# =========================================================================
# Formatting
# =========================================================================

def format_currency(value: float, symbol: str = "€") -> str:
    """>= 1e9 -> €X.XXB, >= 1e6 -> €X.XXM, else grouped whole units.

    The unit is picked on the rounded figure, so 999,999,999 renders as
    "€1.00B" and 999,999.6 as "€1.00M".
    """
    if value >= 1e9 or round(value / 1e6, 2) >= 1000:
        return f"{symbol}{value / 1e9:.2f}B"
    if value >= 1e6 or round_half_up(value) >= 1_000_000:
        return f"{symbol}{value / 1e6:.2f}M"
    return f"{symbol}{round_half_up(value):,}"


def format_millions(value: float, symbol: str = "€") -> str:
    return f"{symbol}{round_half_up(value / 1e6)}M"


def format_count(value: float, symbol: str = "€") -> str:
    return f"{round_half_up(value):,}"


def format_hundreds(value: float, symbol: str = "€") -> str:
    return f"{round_half_up(value / 100) * 100:,}"


FORMATTERS: Mapping[str, Callable[..., str]] = {
    "currency": format_currency,
    "millions": format_millions,
    "count": format_count,
    "hundreds": format_hundreds,
}


# =========================================================================
# Extraction
# =========================================================================

def latest_points(rows: Iterable[Mapping], column: str, year_column: str,
                  require_positive: bool = False) -> list[tuple]:
    """Valid (period, value) pairs for ``column``, chronologically sorted."""
    points = []
    for row in rows:
        period = row.get(year_column)
        if not has_period(period):
            continue
        value = parse_numeric(row.get(column))
        if value is None or value < 0 or (require_positive and value == 0):
            continue
        points.append((period, value))
    return sort_by_period(points, key=lambda p: p[0])


def extract_metric(rows: Sequence[Mapping], column: Optional[str],
                   year_column: Optional[str], fmt: str = "count",
                   require_positive: bool = True,
                   symbol: str = "€") -> Optional[MetricData]:
    """Latest value + growth for one column, or None when nothing is valid."""
    if not column or not year_column:
        return None
    points = latest_points(rows, column, year_column, require_positive)
    if not points:
        logger.warning("No valid data for column %r", column)
        return None
    year, value = points[-1]
    growth = calculate_growth(value, points[-2][1]) if len(points) > 1 else 0.0
    return MetricData(
        value=value,
        growth=growth,
        year=year,
        formatted_value=FORMATTERS[fmt](value, symbol=symbol),
    )


def unicorn_count_metric(rows: Sequence[Mapping]) -> Optional[MetricData]:
    """Number of valid unicorn rows; not a time series, so growth is 0."""
    count = len(normalize_unicorns(rows))
    if count == 0:
        return None
    return MetricData(value=count, growth=0.0, year="Total",
                      formatted_value=str(count))


def placeholder_metric(currency: bool = False, symbol: str = "€") -> MetricData:
    return MetricData(value=0, growth=0.0, year="N/A",
                      formatted_value=f"{symbol}0" if currency else "0")


# (field, role, format, require_positive)
_MAIN_METRICS = (
    ("firms", "firms", "count", True),
    ("revenue", "revenue", "currency", False),
    ("employees", "employees", "hundreds", True),
    ("employees_in_finland", "employees_finland", "count", True),
)
_CURRENCY_FIELDS = {"revenue", "rdi"}


def get_startup_metrics(datasets, symbol: Optional[str] = None,
                        cfg=None) -> Optional[StartupMetrics]:
    """Headline metric bundle from a DatasetSnapshot or a dataset mapping.

    Unresolved metrics get a zero placeholder; None only when every metric
    failed. The currency symbol comes from ``symbol``, else
    ``cfg.charts.currency_symbol``, else "€".
    """
    if symbol is None:
        symbol = cfg.charts.currency_symbol if cfg is not None else "€"
    datasets = getattr(datasets, "datasets", datasets)
    main = datasets.get("main") or ()
    rdi_rows = datasets.get("rdi") or ()
    unicorn_rows = datasets.get("unicorns") or ()

    found: dict[str, Optional[MetricData]] = {}

    resolver = ColumnResolver(main)
    year_col = resolver.year_column()
    if main and not year_col:
        logger.error("Year column not found in main dataset; columns: %s",
                     list(resolver.columns))
    for name, role, fmt, positive in _MAIN_METRICS:
        column = resolver.column(role)
        if main and column is None:
            logger.warning("%s column not found; metric will be 0", name)
        found[name] = extract_metric(main, column, year_col, fmt, positive, symbol)

    rdi_resolver = ColumnResolver(rdi_rows)
    found["rdi"] = extract_metric(rdi_rows, rdi_resolver.column("rdi"),
                                  rdi_resolver.year_column(), "millions",
                                  True, symbol)
    found["unicorns"] = unicorn_count_metric(unicorn_rows)

    if all(m is None for m in found.values()):
        return None
    return StartupMetrics(**{
        name: metric if metric is not None
        else placeholder_metric(name in _CURRENCY_FIELDS, symbol)
        for name, metric in found.items()
    })

