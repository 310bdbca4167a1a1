#!/usr/bin/env python3
"""
Column Resolver
===============
Maps the drifting, bilingual column names of spreadsheet exports to fixed
semantic roles ("revenue", "year", "share_female", ...).

Columns come and go between years: a column may be missing from the first
rows and appear only later. Resolution therefore always scans the union of
keys over every row, never just the first one.

Matching is declarative: each role owns one or more ColumnRule entries,
tried in order. Within a rule:
  - ``exact``     lower-cased names that match by equality
  - ``any_of``    keyword tiers; the first tier with a hit wins, giving
                  priority by tier order
  - ``also``      groups that must each contribute at least one keyword
  - ``exclude``   keywords that disqualify a column (always wins)

All comparisons are case-insensitive substring matches over the column
names precomputed once per dataset.
"""

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

YEAR_KEYWORDS = ("year", "period", "date", "vuosi")


@dataclass(frozen=True)
class ColumnRule:
    any_of: tuple[tuple[str, ...], ...] = ()
    also: tuple[tuple[str, ...], ...] = ()
    exclude: tuple[str, ...] = ()
    exact: tuple[str, ...] = ()

    def match(self, columns: Sequence[str]) -> Optional[str]:
        lowered = [(c, c.lower().strip()) for c in columns]
        for name in self.exact:
            for col, low in lowered:
                if low == name:
                    return col
        tiers = self.any_of or ((),)
        for tier in tiers:
            for col, low in lowered:
                if tier and not any(k in low for k in tier):
                    continue
                if not tier and not self.also:
                    continue
                if not all(any(k in low for k in group) for group in self.also):
                    continue
                if any(k in low for k in self.exclude):
                    continue
                return col
        return None


@dataclass(frozen=True)
class ResolvedColumn:
    """Outcome of resolving one role against one dataset."""
    role: str
    column: Optional[str]
    known_role: bool = True
    valid_roles: tuple[str, ...] = ()

    @property
    def found(self) -> bool:
        return self.column is not None


# =========================================================================
# Keyword vocabulary (English first, Finnish fallbacks)
# =========================================================================

_REVENUE = ("revenue", "turnover", "sales", "liikevaihto")
_EMPLOYEES = ("employees", "employee", "employment", "jobs", "workers",
              "työlliset", "työntekijät", "työllisyys")
_FIRMS = ("firms", "firm", "companies", "company", "startups", "startup",
          "yritykset", "yritys")
_FINLAND = ("finland", "suomi", "suomessa")
_STAGE_VARIANTS = ("early", "stage", "scaleup", "scale-up")
_MALE = ("male", "mies", "man", "men")
_FEMALE = ("female", "nainen", "woman", "women")
_SHARE = ("share", "osuus")

_BAROMETER_TOPICS = {
    "financial": ("financial", "company financial"),
    "employees": ("employees", "number of employees"),
    "economy": ("economy", "surrounding economy"),
}
BAROMETER_TOPICS = tuple(_BAROMETER_TOPICS)


def _barometer_rules() -> dict:
    rules = {}
    for topic, terms in _BAROMETER_TOPICS.items():
        rules[f"barometer_{topic}_past"] = (
            ColumnRule(any_of=(terms,), also=(("past",),)),
        )
        rules[f"barometer_{topic}_next"] = (
            ColumnRule(any_of=(terms,), also=(("next", "expectation"),)),
        )
    return rules


ROLE_RULES: Mapping[str, tuple[ColumnRule, ...]] = {
    "year": (ColumnRule(any_of=(YEAR_KEYWORDS,)),),
    "time": (ColumnRule(any_of=(("time", "date", "period"),)),),

    "revenue": (ColumnRule(
        any_of=(("revenue",), ("turnover",), ("sales",),
                ("liikevaihto", "kokonaisliikevaihto")),
        exclude=_STAGE_VARIANTS + _SHARE,
    ),),
    "revenue_early_stage": (ColumnRule(
        any_of=(("revenue", "turnover", "liikevaihto"),),
        also=(("early",), ("stage",)),
    ),),
    "revenue_later_stage": (ColumnRule(
        any_of=(("revenue", "turnover", "liikevaihto"),),
        also=(("scaleup", "scale-up"),),
    ),),

    "employees": (ColumnRule(
        any_of=(("employees",), ("employee",), ("employment",),
                ("jobs", "workers", "workforce"),
                ("työlliset", "työllisyys", "työntekijät")),
        exclude=_FINLAND + _SHARE + _FEMALE + ("male", "background"),
    ),),
    "employees_finland": (ColumnRule(
        any_of=(("employees",), ("employee",), ("employment", "jobs", "workers"),
                ("työlliset", "työntekijät", "työllisyys")),
        also=(_FINLAND,),
        exclude=_SHARE,
    ),),

    "firms": (
        ColumnRule(
            any_of=tuple((k,) for k in _FIRMS),
            exclude=("number",) + _FINLAND + _STAGE_VARIANTS + _SHARE
            + _REVENUE + _EMPLOYEES + ("r&d", "rdi"),
        ),
        ColumnRule(exact=("number startups", "number of startups")),
    ),
    "firms_finland": (ColumnRule(
        any_of=(_FIRMS,),
        also=(_FINLAND,),
        exclude=_SHARE + _REVENUE + _EMPLOYEES,
    ),),
    "firms_early_stage": (ColumnRule(exact=("number startups", "number of startups")),),
    "firms_later_stage": (ColumnRule(exact=("number scaleups", "number of scaleups")),),

    "rdi": (ColumnRule(
        any_of=(("r&d-investments",), ("rdi",), ("r&d",), ("r and d",),
                ("investments",), ("research", "development"),
                ("tutkimus", "kehitys")),
        exclude=YEAR_KEYWORDS,
    ),),

    "male": (ColumnRule(any_of=(("male", "mies", "man"),),
                        exclude=_FEMALE + _SHARE),),
    "female": (ColumnRule(any_of=(_FEMALE,), exclude=_SHARE),),
    "share_male": (ColumnRule(any_of=(_MALE,), also=(_SHARE,), exclude=_FEMALE),),
    "share_female": (ColumnRule(any_of=(_FEMALE,), also=(_SHARE,)),),

    "finnish_background": (ColumnRule(any_of=(("finnish",),), also=(("background",),),
                                      exclude=_SHARE),),
    "foreign_background": (ColumnRule(any_of=(("foreign",),), also=(("background",),),
                                      exclude=_SHARE),),
    "share_finnish": (ColumnRule(any_of=(("finnish",),), also=(_SHARE,),
                                 exclude=("foreign",)),),
    "share_foreign": (ColumnRule(any_of=(("foreign",),), also=(_SHARE,)),),

    "firm_name": (ColumnRule(exact=("firm", "firm name", "company", "name")),),
    "valuation": (ColumnRule(any_of=(("last valuation", "lastvaluation"), ("valuation",))),),
    "founded_in_finland": (
        ColumnRule(exact=("finnish", "founded in finland")),
        ColumnRule(any_of=(("founded",),), also=(("finland",),)),
    ),
    "finnish_background_flag": (ColumnRule(exact=("finnish background",
                                                  "finnishbackground")),),

    **_barometer_rules(),
}


# =========================================================================
# Matching helpers
# =========================================================================

def all_columns(rows: Iterable[Mapping]) -> list[str]:
    """Union of keys over every row, in first-seen order."""
    seen: dict[str, None] = {}
    for row in rows:
        for key in row:
            if key not in seen:
                seen[key] = None
    return list(seen)


def find_any(columns: Sequence[str], tiers: Sequence[Sequence[str]],
             exclude: Sequence[str] = ()) -> Optional[str]:
    """First column containing a keyword of the earliest tier that matches."""
    return ColumnRule(any_of=tuple(tuple(t) for t in tiers),
                      exclude=tuple(exclude)).match(columns)


def find_all(columns: Sequence[str], keywords: Sequence[str],
             exclude: Sequence[str] = ()) -> Optional[str]:
    """First column whose name contains every keyword."""
    return ColumnRule(also=tuple((k,) for k in keywords),
                      exclude=tuple(exclude)).match(columns)


class ColumnResolver:
    """Role -> column lookups for one dataset.

    Build one per dataset; results depend on that dataset's column set and
    must not be shared across datasets.
    """

    def __init__(self, rows: Iterable[Mapping], rules: Mapping = ROLE_RULES):
        self.columns: tuple[str, ...] = tuple(all_columns(rows))
        self._rules = rules
        self._cache: dict[str, ResolvedColumn] = {}

    def roles(self) -> tuple[str, ...]:
        return tuple(self._rules)

    def resolve(self, role: str) -> ResolvedColumn:
        if role in self._cache:
            return self._cache[role]
        rules = self._rules.get(role)
        if rules is None:
            return ResolvedColumn(role, None, known_role=False,
                                  valid_roles=self.roles())
        column = None
        for rule in rules:
            column = rule.match(self.columns)
            if column is not None:
                break
        result = ResolvedColumn(role, column, valid_roles=self.roles())
        self._cache[role] = result
        return result

    def column(self, role: str) -> Optional[str]:
        return self.resolve(role).column

    def year_column(self) -> Optional[str]:
        return self.column("year")
