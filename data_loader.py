#!/usr/bin/env python3
"""
Dataset Loader
==============
Produces the row sets every chart is built from. Each named dataset is
loaded through a fallback chain, first tier that yields at least one valid
row wins:

  1. local  pre-generated JSON file in the data directory
  2. snapshot  rows from an earlier successful load in this process
  3. remote  CSV export of a published spreadsheet tab (retried, 1s/2s/4s)
  4. bundled  static .xlsx shipped with the site (primary dataset only)

A remote response that is an HTML page means the sheet is not shared
publicly; that is reported as SourceNotPublicError and never retried.

Tabs whose id is not configured are found by probing candidate tab ids
concurrently and matching the header row against the dataset's signature.
Discovered ids are memoised and persisted so later loads skip the probe.

The result of a load cycle is a DatasetSnapshot. It is published with a
single reference swap: readers see the previous or the new snapshot, never
a partially loaded one.

Usage:
    cfg = load_config()
    snapshot = load_datasets(cfg)
    rows = snapshot.rows("main")
"""

import json
import threading
import time
import zipfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Sequence

import pandas as pd
import requests
import yaml
from openpyxl.utils.exceptions import InvalidFileException

from column_resolver import ColumnResolver, all_columns
from csv_parser import Row, normalize_rows, rows_from_csv, rows_from_table
from instrumentation import EventLog, trace_event, trace_net_call
from run_context import get_logger
from schemas import DATASET_KEYS, AppConfig, TabSignature
from unicorn_charts import as_flag

logger = get_logger(__name__)

EXPORT_URL = "https://docs.google.com/spreadsheets/d/{document_id}/export?format=csv&gid={tab_id}"

TIER_LOCAL = "local"
TIER_SNAPSHOT = "snapshot"
TIER_REMOTE = "remote"
TIER_BUNDLED = "bundled"
TIER_NONE = "none"

_HTML_MARKERS = ("<!doctype", "<html", "accounts.google.com")
_NOT_PUBLIC_STATUS = (401, 403)
_SHARE_HINT = ('Open the sheet, click Share and set General access to '
               '"Anyone with the link can view".')

# Columns of the unicorn sheet holding spreadsheet booleans
_UNICORN_FLAG_ROLES = ("founded_in_finland", "finnish_background_flag")


# =========================================================================
# Errors
# =========================================================================

class DataSourceError(Exception):
    """A tier could not produce rows for a dataset."""

    def __init__(self, message: str, dataset: str = "", tier: str = ""):
        super().__init__(message)
        self.dataset = dataset
        self.tier = tier


class SourceNotPublicError(DataSourceError):
    """The export URL answered with an HTML page instead of CSV."""

    def __init__(self, message: str = "", dataset: str = "", tier: str = TIER_REMOTE):
        super().__init__(
            message or f"Received HTML instead of CSV; the sheet is not public. {_SHARE_HINT}",
            dataset, tier)


class SourceFetchError(DataSourceError):
    """Network failure or an HTTP error status."""

    def __init__(self, message: str, dataset: str = "", tier: str = TIER_REMOTE,
                 status_code: Optional[int] = None):
        super().__init__(message, dataset, tier)
        self.status_code = status_code


class EmptySourceError(DataSourceError):
    """The source exists but holds no valid row."""


class DataUnavailableError(Exception):
    """A required dataset exhausted every tier during a strict load."""

    def __init__(self, datasets: Sequence[str], errors: Mapping[str, Sequence[str]]):
        self.datasets = tuple(datasets)
        self.errors = {k: tuple(v) for k, v in errors.items()}
        detail = "; ".join(f"{k}: {' | '.join(self.errors.get(k, ()))}"
                           for k in self.datasets)
        super().__init__(f"Required dataset(s) unavailable: {', '.join(self.datasets)} ({detail})")


# =========================================================================
# Remote CSV
# =========================================================================

def looks_like_html(text: str) -> bool:
    """True for login / error pages served in place of a CSV export."""
    lowered = text.lstrip().lower()
    if lowered.startswith("<!doctype") or lowered.startswith("<html"):
        return True
    return any(marker in lowered for marker in _HTML_MARKERS)


def csv_export_url(document_id: str, tab_id: str) -> str:
    return EXPORT_URL.format(document_id=document_id, tab_id=tab_id)


def fetch_csv(session: requests.Session, url: str, timeout: float = 15.0,
              max_retries: int = 3, log: Optional[EventLog] = None,
              dataset: str = "") -> str:
    """GET a CSV export with exponential backoff retry (1s / 2s / 4s).

    HTML pages, 401/403 and 404 fail immediately; other HTTP errors and
    network exceptions are retried. An empty body raises EmptySourceError.
    """
    last_err: Optional[DataSourceError] = None
    for attempt in range(max_retries):
        t0 = time.monotonic()
        try:
            resp = session.get(url, timeout=timeout)
        except requests.RequestException as exc:
            elapsed = (time.monotonic() - t0) * 1000
            trace_net_call(log, f"{dataset}: GET csv", url, retries=attempt,
                           duration_ms=elapsed, status="FAIL", dataset=dataset)
            last_err = SourceFetchError(f"{type(exc).__name__}: {exc}", dataset)
        else:
            elapsed = (time.monotonic() - t0) * 1000
            text = resp.text or ""
            ok = resp.status_code < 400 and not looks_like_html(text)
            trace_net_call(log, f"{dataset}: GET csv", url, resp.status_code,
                           retries=attempt, nbytes=len(text), duration_ms=elapsed,
                           status="OK" if ok else "FAIL", dataset=dataset)
            if resp.status_code in _NOT_PUBLIC_STATUS:
                raise SourceNotPublicError(dataset=dataset)
            if resp.status_code == 404:
                raise SourceFetchError(f"HTTP 404 for {url}", dataset, status_code=404)
            if resp.status_code >= 400:
                last_err = SourceFetchError(f"HTTP {resp.status_code} for {url}",
                                            dataset, status_code=resp.status_code)
            elif looks_like_html(text):
                raise SourceNotPublicError(dataset=dataset)
            elif not text.strip():
                raise EmptySourceError("Empty CSV export", dataset, TIER_REMOTE)
            else:
                return text
        # Exponential backoff: 1s, 2s, 4s
        if attempt < max_retries - 1:
            time.sleep(2 ** attempt)
    raise SourceFetchError(f"Failed after {max_retries} retries: {last_err}", dataset,
                           status_code=getattr(last_err, "status_code", None))


def parse_remote(text: str, dataset: str = "") -> list[Row]:
    rows = rows_from_csv(text)
    if not rows:
        raise EmptySourceError("CSV export has no data rows", dataset, TIER_REMOTE)
    return rows


# =========================================================================
# File tiers
# =========================================================================

def read_local_rows(path: str | Path, dataset: str = "") -> list[Row]:
    """Rows from a pre-generated JSON array of row objects."""
    path = Path(path)
    if not path.exists():
        raise DataSourceError(f"{path.name} not found", dataset, TIER_LOCAL)
    try:
        with open(path, encoding="utf-8") as f:
            records = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DataSourceError(f"Cannot read {path.name}: {exc}", dataset, TIER_LOCAL) from exc
    if not isinstance(records, list):
        raise DataSourceError(f"{path.name} is not a JSON array", dataset, TIER_LOCAL)
    rows = normalize_rows(records)
    if not rows:
        raise EmptySourceError(f"{path.name} has no valid rows", dataset, TIER_LOCAL)
    return rows


def read_bundled_rows(path: str | Path, dataset: str = "main") -> list[Row]:
    """Rows from the first sheet of the bundled workbook (first row = header)."""
    path = Path(path)
    if not path.exists():
        raise DataSourceError(f"{path.name} not found", dataset, TIER_BUNDLED)
    try:
        df = pd.read_excel(path, sheet_name=0, header=None, engine="openpyxl", dtype=object)
    except (OSError, ValueError, KeyError, zipfile.BadZipFile, InvalidFileException) as exc:
        raise DataSourceError(f"Cannot read {path.name}: {exc}", dataset, TIER_BUNDLED) from exc
    table = df.astype(object).where(pd.notna(df), None).values.tolist()
    rows = rows_from_table(table)
    if not rows:
        raise EmptySourceError(f"{path.name} has no valid rows", dataset, TIER_BUNDLED)
    return rows


# =========================================================================
# Tab discovery
# =========================================================================

_DISCOVERED: dict[tuple[str, str], str] = {}
_DISCOVERY_LOCK = threading.Lock()


def matches_signature(headers: Sequence[str], signature: TabSignature) -> bool:
    """Some include keyword appears in a header and no exclude keyword does."""
    lowered = [str(h).lower() for h in headers]
    if not any(kw.lower() in h for kw in signature.include for h in lowered):
        return False
    return not any(kw.lower() in h for kw in signature.exclude for h in lowered)


def load_discovery_state(path: str | Path) -> dict:
    path = Path(path)
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            state = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Ignoring unreadable discovery state %s: %s", path, exc)
        return {}
    return state if isinstance(state, dict) else {}


def save_discovery_state(path: str | Path, document_id: str, dataset: str, tab_id: str):
    path = Path(path)
    state = load_discovery_state(path)
    state.setdefault(document_id, {})[dataset] = str(tab_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(state, f, sort_keys=True)


def known_tab(cfg: AppConfig, dataset: str) -> Optional[str]:
    """Previously discovered tab id (in-process memo, then the state file)."""
    document_id = cfg.document_for(dataset)
    with _DISCOVERY_LOCK:
        tab_id = _DISCOVERED.get((document_id, dataset))
    if tab_id is not None:
        return tab_id
    persisted = load_discovery_state(cfg.discovery.state_file).get(document_id, {})
    tab_id = persisted.get(dataset) if isinstance(persisted, dict) else None
    if tab_id is None:
        return None
    with _DISCOVERY_LOCK:
        _DISCOVERED[(document_id, dataset)] = str(tab_id)
    return str(tab_id)


def forget_discovered_tabs():
    with _DISCOVERY_LOCK:
        _DISCOVERED.clear()


def _probe_tab(session: requests.Session, cfg: AppConfig, dataset: str,
               tab_id: str, signature: TabSignature,
               log: Optional[EventLog]) -> Optional[list[Row]]:
    url = csv_export_url(cfg.document_for(dataset), tab_id)
    try:
        rows = parse_remote(
            fetch_csv(session, url, cfg.fetch.timeout_seconds, 1, log, dataset),
            dataset)
    except DataSourceError as exc:
        logger.debug("Tab %s rejected: %s", tab_id,
                     exc, extra={"dataset": dataset, "tab_id": tab_id})
        return None
    if not matches_signature(all_columns(rows), signature):
        return None
    return rows


def discover_tab(session: requests.Session, cfg: AppConfig, dataset: str,
                 log: Optional[EventLog] = None) -> Optional[tuple[str, list[Row]]]:
    """Probe candidate tabs concurrently; first tab matching the signature wins.

    Remaining probes are cancelled once a match is found. The winner is
    memoised and written to the discovery state file.
    """
    signature = cfg.dataset(dataset).signature
    if signature is None or not cfg.discovery.enabled:
        return None
    document_id = cfg.document_for(dataset)
    candidates = cfg.discovery.candidates()
    logger.info("Discovering tab for %s among %d candidates", dataset, len(candidates),
                extra={"dataset": dataset, "count": len(candidates)})

    found: Optional[tuple[str, list[Row]]] = None
    pool = ThreadPoolExecutor(max_workers=cfg.discovery.max_workers)
    try:
        futs = {pool.submit(_probe_tab, session, cfg, dataset, tab_id, signature, log): tab_id
                for tab_id in candidates}
        for fut in as_completed(futs):
            rows = fut.result()
            if rows:
                found = (futs[fut], rows)
                break
    finally:
        pool.shutdown(wait=False, cancel_futures=True)

    if found is None:
        logger.warning("No tab matched the %s signature", dataset, extra={"dataset": dataset})
        return None
    tab_id = found[0]
    with _DISCOVERY_LOCK:
        _DISCOVERED[(document_id, dataset)] = tab_id
    try:
        save_discovery_state(cfg.discovery.state_file, document_id, dataset, tab_id)
    except OSError as exc:
        logger.warning("Could not persist discovered tab: %s", exc, extra={"dataset": dataset})
    logger.info("Discovered %s at tab %s", dataset, tab_id,
                extra={"dataset": dataset, "tab_id": tab_id})
    return found


def fetch_remote_rows(session: requests.Session, cfg: AppConfig, dataset: str,
                      log: Optional[EventLog] = None) -> list[Row]:
    """Remote tier: configured tab, then a known discovered tab, then discovery."""
    document_id = cfg.document_for(dataset)
    if not document_id:
        raise DataSourceError("No document id configured", dataset, TIER_REMOTE)
    tab_id = cfg.dataset(dataset).tab_id or known_tab(cfg, dataset)
    if tab_id is None:
        found = discover_tab(session, cfg, dataset, log)
        if found is None:
            raise DataSourceError("No tab id configured or discovered", dataset, TIER_REMOTE)
        return found[1]
    text = fetch_csv(session, csv_export_url(document_id, tab_id),
                     cfg.fetch.timeout_seconds, cfg.fetch.max_retries, log, dataset)
    return parse_remote(text, dataset)


# =========================================================================
# Snapshot
# =========================================================================

@dataclass(frozen=True)
class DatasetSnapshot:
    """Immutable result of one load cycle."""
    revision: int
    datasets: Mapping[str, tuple]
    sources: Mapping[str, str]
    errors: Mapping[str, tuple[str, ...]]
    loaded_at: datetime = field(default_factory=datetime.now)
    missing_required: tuple[str, ...] = ()

    def rows(self, dataset: str) -> tuple:
        return self.datasets.get(dataset, ())

    @property
    def complete(self) -> bool:
        return not self.missing_required


_SNAPSHOT: Optional[DatasetSnapshot] = None
_SNAPSHOT_LOCK = threading.Lock()


def current_snapshot() -> Optional[DatasetSnapshot]:
    return _SNAPSHOT


def clear_snapshot():
    global _SNAPSHOT
    with _SNAPSHOT_LOCK:
        _SNAPSHOT = None


def _publish(build: Callable[[int], DatasetSnapshot]) -> DatasetSnapshot:
    global _SNAPSHOT
    with _SNAPSHOT_LOCK:
        revision = (_SNAPSHOT.revision + 1) if _SNAPSHOT is not None else 1
        snapshot = build(revision)
        _SNAPSHOT = snapshot
    return snapshot


def _freeze(rows: Sequence[Mapping]) -> tuple:
    return tuple(MappingProxyType(dict(r)) for r in rows)


# =========================================================================
# Load cycle
# =========================================================================

def _tiers(cfg: AppConfig, dataset: str, session: requests.Session,
           previous: Optional[DatasetSnapshot], log: Optional[EventLog]):
    data_dir = Path(cfg.sources.data_dir)
    src = cfg.dataset(dataset)

    def from_snapshot():
        rows = previous.rows(dataset) if previous is not None else ()
        if not rows:
            raise EmptySourceError("No earlier snapshot", dataset, TIER_SNAPSHOT)
        return list(rows)

    tiers = [
        (TIER_LOCAL, "READ", lambda: read_local_rows(data_dir / src.local_file, dataset)),
        (TIER_SNAPSHOT, "READ", from_snapshot),
        (TIER_REMOTE, "NET", lambda: fetch_remote_rows(session, cfg, dataset, log)),
    ]
    if dataset == "main":
        tiers.append((TIER_BUNDLED, "READ",
                      lambda: read_bundled_rows(cfg.sources.excel_path, dataset)))
    return tiers


def load_dataset(cfg: AppConfig, dataset: str, session: requests.Session,
                 previous: Optional[DatasetSnapshot] = None,
                 log: Optional[EventLog] = None) -> tuple[list, str, list[str]]:
    """Walk the fallback chain for one dataset -> (rows, tier, errors)."""
    errors: list[str] = []
    for tier, event_type, read in _tiers(cfg, dataset, session, previous, log):
        try:
            with trace_event(log, event_type, f"{dataset}: {tier}", dataset=dataset):
                rows = read()
        except DataSourceError as exc:
            errors.append(f"{tier}: {exc}")
            logger.debug("%s tier failed for %s: %s", tier, dataset, exc,
                         extra={"dataset": dataset, "tier": tier, "error": str(exc)})
            continue
        logger.info("Loaded %s from %s (%d rows)", dataset, tier, len(rows),
                    extra={"dataset": dataset, "tier": tier, "count": len(rows)})
        return rows, tier, errors
    return [], TIER_NONE, errors


def load_datasets(cfg: Optional[AppConfig] = None, session: Optional[requests.Session] = None,
                  ctx=None, strict: bool = False) -> DatasetSnapshot:
    """Load every dataset and publish the resulting snapshot.

    A secondary dataset that no tier can supply is carried as an empty
    tuple. A required one is listed in ``missing_required`` and logged at
    ERROR; with ``strict=True`` DataUnavailableError is raised instead and
    the previously published snapshot stays current.
    """
    cfg = cfg or (ctx.cfg if ctx is not None else AppConfig())
    log = ctx.events if ctx is not None else None
    own_session = session is None
    session = session or requests.Session()
    previous = current_snapshot()

    datasets, sources, errors = {}, {}, {}
    try:
        for key in DATASET_KEYS:
            rows, tier, errs = load_dataset(cfg, key, session, previous, log)
            datasets[key] = _freeze(rows)
            sources[key] = tier
            errors[key] = tuple(errs)
    finally:
        if own_session:
            session.close()

    missing = tuple(k for k in DATASET_KEYS if cfg.dataset(k).required and not datasets[k])
    for key in missing:
        logger.error("Required dataset %s unavailable: %s", key, "; ".join(errors[key]),
                     extra={"dataset": key})
    if missing and strict:
        raise DataUnavailableError(missing, errors)

    return _publish(lambda revision: DatasetSnapshot(
        revision=revision,
        datasets=MappingProxyType(datasets),
        sources=MappingProxyType(sources),
        errors=MappingProxyType(errors),
        loaded_at=datetime.now(),
        missing_required=missing,
    ))


# =========================================================================
# Maintenance utilities
# =========================================================================

def test_connection(cfg: AppConfig, session: Optional[requests.Session] = None,
                    dataset: str = "main") -> dict:
    """Single-attempt fetch of one dataset's tab, summarised for a human."""
    session = session or requests.Session()
    document_id = cfg.document_for(dataset)
    if not document_id:
        return {"success": False, "error": "No document id configured",
                "details": "Set sources.document_id or the STARTUP_CHARTS_SHEET_ID variable."}
    tab_id = cfg.dataset(dataset).tab_id or known_tab(cfg, dataset) or "0"
    url = csv_export_url(document_id, tab_id)
    try:
        rows = parse_remote(
            fetch_csv(session, url, cfg.fetch.timeout_seconds, 1, dataset=dataset), dataset)
    except SourceNotPublicError as exc:
        return {"success": False, "error": "Received HTML instead of CSV",
                "details": str(exc)}
    except DataSourceError as exc:
        return {"success": False, "error": type(exc).__name__, "details": str(exc)}
    return {
        "success": True,
        "row_count": len(rows),
        "headers": all_columns(rows),
        "preview": rows[:3],
    }


test_connection.__test__ = False  # not a pytest test


def _normalize_unicorn_flags(rows: list[Row]) -> list[Row]:
    resolver = ColumnResolver(rows)
    flag_columns = [c for c in (resolver.column(r) for r in _UNICORN_FLAG_ROLES) if c]
    out = []
    for row in rows:
        row = dict(row)
        for column in flag_columns:
            row[column] = as_flag(row.get(column))
        out.append(row)
    return out


def refresh_local_files(cfg: AppConfig, session: Optional[requests.Session] = None,
                        ctx=None) -> dict[str, int]:
    """Fetch every remote dataset and rewrite the JSON files the local tier reads.

    Returns rows written per dataset; failed datasets are logged and skipped.
    """
    log = ctx.events if ctx is not None else None
    session = session or requests.Session()
    data_dir = Path(cfg.sources.data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    written: dict[str, int] = {}
    for key in DATASET_KEYS:
        try:
            with trace_event(log, "NET", f"{key}: refresh", dataset=key):
                rows = fetch_remote_rows(session, cfg, key, log)
        except DataSourceError as exc:
            logger.warning("Skipping %s: %s", key, exc, extra={"dataset": key, "error": str(exc)})
            continue
        if key == "unicorns":
            rows = _normalize_unicorn_flags(rows)
        path = data_dir / cfg.dataset(key).local_file
        with open(path, "w", encoding="utf-8") as f:
            json.dump(rows, f, indent=2, ensure_ascii=False)
        written[key] = len(rows)
        logger.info("Wrote %d rows to %s", len(rows), path.name,
                    extra={"dataset": key, "count": len(rows)})
    return written
