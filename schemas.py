#!/usr/bin/env python3
"""
Typed schemas for the startup statistics chart pipeline.

Provides Pydantic models for data validation at pipeline boundaries:
the YAML configuration, the headline metric record and the message
posted from an embedded chart to its host page.
"""

from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


DATASET_KEYS = ("main", "employees_gender", "rdi", "barometer", "unicorns")


# =========================================================================
# Metric record
# =========================================================================

class MetricData(BaseModel):
    """Headline indicator for one resolved column.

    ``growth`` is a percentage; ``year`` is the period of the latest point
    (or a marker such as "Total" / "N/A").
    """
    value: float
    growth: float = 0.0
    year: str | int | float
    formatted_value: str = Field(..., alias="formattedValue")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class StartupMetrics(BaseModel):
    """Bundle of headline metrics. Unresolved entries hold a zero placeholder."""
    firms: MetricData
    revenue: MetricData
    employees: MetricData
    employees_in_finland: MetricData = Field(..., alias="employeesInFinland")
    rdi: MetricData
    unicorns: MetricData

    model_config = ConfigDict(populate_by_name=True, frozen=True)


# =========================================================================
# Host-frame message
# =========================================================================

class HeightMessage(BaseModel):
    """Message an embedded chart posts to its parent document."""
    kind: Literal["chart-height"] = "chart-height"
    chart_id: str = Field(..., alias="chartId", min_length=1)
    height: int = Field(..., ge=0)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


# =========================================================================
# AppConfig — top-level config schema
# =========================================================================

class TabSignature(BaseModel):
    """Header keywords that identify a tab during discovery."""
    include: list[str] = []
    exclude: list[str] = []


class DatasetSource(BaseModel):
    """Where one named dataset can be found."""
    local_file: str
    tab_id: Optional[str] = None        # None => discover when a signature exists
    document_id: Optional[str] = None   # None => the primary document
    required: bool = False
    signature: Optional[TabSignature] = None

    @field_validator("tab_id", mode="before")
    @classmethod
    def tab_id_as_string(cls, v):
        if v is None or v == "":
            return None
        return str(v)


def _default_datasets() -> dict:
    return {
        "main": DatasetSource(local_file="main-data.json", tab_id="0", required=True),
        "employees_gender": DatasetSource(
            local_file="employees-gender-data.json",
            signature=TabSignature(
                include=["gender", "male", "female", "sukupuoli",
                         "employees_gender", "employees gender"],
                exclude=["revenue", "liikevaihto", "firms", "yritykset"],
            ),
        ),
        "rdi": DatasetSource(local_file="rdi-data.json"),
        "barometer": DatasetSource(local_file="barometer-data.json", tab_id="0"),
        "unicorns": DatasetSource(local_file="unicorns-data.json"),
    }


class AppConfig(BaseModel):
    """Schema for validated config.yaml contents."""

    class SourcesConfig(BaseModel):
        document_id: str = ""
        barometer_document_id: str = ""
        data_dir: str = "data"
        excel_path: str = "data/WebsiteDataEng.xlsx"
        datasets: dict[str, DatasetSource] = Field(default_factory=_default_datasets)

        @model_validator(mode="after")
        def known_datasets_only(self) -> "AppConfig.SourcesConfig":
            unknown = set(self.datasets) - set(DATASET_KEYS)
            if unknown:
                raise ValueError(f"Unknown dataset keys: {sorted(unknown)}")
            defaults = _default_datasets()
            for key in DATASET_KEYS:
                self.datasets.setdefault(key, defaults[key])
            return self

    class FetchConfig(BaseModel):
        timeout_seconds: float = Field(15.0, gt=0)
        max_retries: int = Field(3, ge=1, le=10)

    class DiscoveryConfig(BaseModel):
        enabled: bool = True
        first_tab: int = Field(0, ge=0)
        last_tab: int = Field(20, ge=0)
        max_workers: int = Field(4, ge=1, le=32)
        state_file: str = "data/discovered_tabs.yaml"

        @model_validator(mode="after")
        def range_not_empty(self) -> "AppConfig.DiscoveryConfig":
            if self.last_tab < self.first_tab:
                raise ValueError(
                    f"Discovery range is empty ({self.first_tab}..{self.last_tab})"
                )
            return self

        def candidates(self) -> list[str]:
            return [str(g) for g in range(self.first_tab, self.last_tab + 1)]

    class ChartsConfig(BaseModel):
        window_width: int = Field(1200, gt=0)
        theme: str = "dark"
        currency_symbol: str = "€"

        @field_validator("theme")
        @classmethod
        def theme_known(cls, v: str) -> str:
            if v not in ("light", "dark"):
                raise ValueError(f"Theme must be 'light' or 'dark', got {v!r}")
            return v

    class LoggingConfig(BaseModel):
        level: str = "INFO"
        log_dir: Optional[str] = None

    sources: SourcesConfig = SourcesConfig()
    fetch: FetchConfig = FetchConfig()
    discovery: DiscoveryConfig = DiscoveryConfig()
    charts: ChartsConfig = ChartsConfig()
    logging: LoggingConfig = LoggingConfig()

    def dataset(self, key: str) -> DatasetSource:
        return self.sources.datasets[key]

    def document_for(self, key: str) -> str:
        """Remote document holding ``key`` (barometer lives in its own sheet)."""
        src = self.dataset(key)
        if src.document_id:
            return src.document_id
        if key == "barometer" and self.sources.barometer_document_id:
            return self.sources.barometer_document_id
        return self.sources.document_id
