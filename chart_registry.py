#!/usr/bin/env python3
"""
Chart Registry
==============
Stable chart identifiers -> {title, kind, dataset key, builder}.

Lookups never raise: an unknown identifier yields ChartNotFound, which
lists every valid identifier so callers can show the user what exists.

    entry = resolve_chart("workforce-gender")
    if isinstance(entry, ChartNotFound):
        print(entry.valid_ids)
    else:
        config = entry.build(snapshot.datasets, {"view": "female-share"})
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Sequence, Union

import barometer_charts
import economic_charts
import unicorn_charts
import workforce_charts
from chart_common import ChartParams
from run_context import get_logger

logger = get_logger(__name__)

Builder = Callable[[Sequence[Mapping], object], Optional[dict]]


@dataclass(frozen=True)
class ChartEntry:
    chart_id: str
    title: str
    kind: str           # "graph" | "bar"
    dataset_key: str
    builder: Builder

    def build(self, datasets: Mapping[str, Sequence[Mapping]], params=None,
              defaults: Optional[ChartParams] = None) -> Optional[dict]:
        """Run the builder on this entry's dataset; None when there is nothing to plot."""
        rows = datasets.get(self.dataset_key) or ()
        return self.builder(rows, ChartParams.from_mapping(params, defaults))


@dataclass(frozen=True)
class ChartNotFound:
    chart_id: str
    valid_ids: tuple[str, ...]


_ENTRIES = (
    ChartEntry("economic-impact-revenue", "Startup Revenue", "graph", "main",
               economic_charts.build_revenue_config),
    ChartEntry("economic-impact-employees", "Number of Employees", "graph", "main",
               economic_charts.build_employees_config),
    ChartEntry("economic-impact-firms", "Active firms", "graph", "main",
               economic_charts.build_firms_config),
    ChartEntry("economic-impact-rdi", "R&D investments", "graph", "rdi",
               economic_charts.build_rdi_config),
    ChartEntry("workforce-gender", "Gender distribution of startup workers", "bar",
               "employees_gender", workforce_charts.build_gender_config),
    ChartEntry("workforce-immigration", "Immigration status", "bar",
               "employees_gender", workforce_charts.build_immigration_config),
    ChartEntry("barometer-financial", "Financial situation", "graph", "barometer",
               barometer_charts.build_financial_config),
    ChartEntry("barometer-employees", "Number of employees", "graph", "barometer",
               barometer_charts.build_employees_outlook_config),
    ChartEntry("barometer-economy", "Surrounding economy", "graph", "barometer",
               barometer_charts.build_economy_config),
    ChartEntry("unicorns-valuation", "Unicorn Valuations", "bar", "unicorns",
               unicorn_charts.build_unicorn_config),
)

CHART_REGISTRY: Mapping[str, ChartEntry] = MappingProxyType(
    {e.chart_id: e for e in _ENTRIES}
)


def all_chart_ids() -> tuple[str, ...]:
    return tuple(CHART_REGISTRY)


def is_valid_chart_id(chart_id) -> bool:
    return isinstance(chart_id, str) and chart_id in CHART_REGISTRY


def resolve_chart(chart_id) -> Union[ChartEntry, ChartNotFound]:
    if is_valid_chart_id(chart_id):
        return CHART_REGISTRY[chart_id]
    logger.warning("Unknown chart id %r", chart_id, extra={"chart_id": str(chart_id)})
    return ChartNotFound(str(chart_id), all_chart_ids())


def build_chart(chart_id, datasets: Mapping[str, Sequence[Mapping]],
                params=None, cfg=None) -> Union[dict, None, ChartNotFound]:
    """Config for ``chart_id``, None without data, ChartNotFound for a bad id.

    ``datasets`` may be a DatasetSnapshot. With ``cfg``, its ``charts``
    section supplies window width, theme and currency symbol for any
    parameter the caller leaves out.
    """
    entry = resolve_chart(chart_id)
    if isinstance(entry, ChartNotFound):
        return entry
    datasets = getattr(datasets, "datasets", datasets)
    defaults = ChartParams.from_config(cfg.charts) if cfg is not None else None
    return entry.build(datasets, params, defaults)
