#!/usr/bin/env python3
"""
Run Context — load-cycle infrastructure for the chart pipeline.

Provides:
  - Config loading + validation (config.yaml -> schemas.AppConfig)
  - run_id generation (UUID4) per dataset load cycle
  - Structured JSON logging (optional file handler) + console logging
  - A per-cycle EventLog for timed NET/READ/CALC tracing

Usage:
    cfg = load_config()
    ctx = RunContext(cfg)
    snapshot = load_datasets(cfg, ctx=ctx)
    ctx.log.info("message", extra={"dataset": "main"})
"""

import json
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import yaml
from pydantic import ValidationError

from instrumentation import EventLog
from schemas import AppConfig

ROOT = Path(__file__).resolve().parent
CONFIG_PATH = ROOT / "config.yaml"
SHEET_ID_ENV = "STARTUP_CHARTS_SHEET_ID"

LOGGER_NAME = "startup_charts"


def get_logger(name: str) -> logging.Logger:
    """Module logger under the pipeline root, so RunContext handlers see it."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


class ConfigError(Exception):
    """config.yaml is missing, unreadable or fails validation."""


def load_config(path: Path | str = CONFIG_PATH, overrides: dict | None = None) -> AppConfig:
    """Load and validate config.yaml.

    A missing file yields the defaults; a malformed one raises ConfigError.
    ``STARTUP_CHARTS_SHEET_ID`` overrides ``sources.document_id``.
    """
    path = Path(path)
    raw: dict = {}
    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse {path.name}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"{path.name} is empty or malformed")

    if overrides:
        raw = _deep_merge(raw, overrides)

    sheet_id = os.environ.get(SHEET_ID_ENV)
    if sheet_id:
        raw.setdefault("sources", {})["document_id"] = sheet_id

    try:
        return AppConfig(**raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path.name}: {e}") from e


def _deep_merge(base: dict, extra: dict) -> dict:
    out = dict(base)
    for key, val in extra.items():
        if isinstance(val, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], val)
        else:
            out[key] = val
    return out


class _JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "func": record.funcName,
            "msg": record.getMessage(),
        }
        # Merge any extra fields (dataset, tier, chart_id, etc.)
        for key in ("run_id", "dataset", "tier", "chart_id", "tab_id",
                    "count", "duration_ms", "error"):
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, default=str)


class RunContext:
    """One dataset load cycle: run_id, logging handlers and event trace."""

    def __init__(self, cfg: AppConfig | None = None, run_id: str | None = None,
                 console: bool = True):
        self.cfg = cfg or AppConfig()
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.start_time = datetime.now()
        self.events = EventLog()

        self.log = logging.getLogger(LOGGER_NAME)
        self.log.setLevel(getattr(logging, self.cfg.logging.level.upper(), logging.INFO))
        self.log.propagate = False

        # Remove existing handlers to avoid duplicates on re-init
        for h in list(self.log.handlers):
            h.close()
        self.log.handlers.clear()

        self.log_path = None
        if self.cfg.logging.log_dir:
            log_dir = Path(self.cfg.logging.log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            self.log_path = log_dir / f"load_{self.run_id}.jsonl"
            fh = logging.FileHandler(str(self.log_path), encoding="utf-8")
            fh.setFormatter(_JSONFormatter())
            self.log.addHandler(fh)

        if console:
            # Console handler (human-readable)
            ch = logging.StreamHandler(sys.stdout)
            ch.setFormatter(logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%H:%M:%S"))
            self.log.addHandler(ch)

        self.log.info("Load cycle started", extra={"run_id": self.run_id})

    def summary(self) -> dict:
        """Elapsed time and event counts for this cycle."""
        failures = sum(1 for e in self.events.events if e.status != "OK")
        return {
            "run_id": self.run_id,
            "start_time": self.start_time.isoformat(),
            "elapsed_seconds": round((datetime.now() - self.start_time).total_seconds(), 1),
            "events": len(self.events.events),
            "failures": failures,
        }

    def close(self):
        """Flush the event trace next to the log file and release handlers."""
        if self.log_path is not None:
            self.events.flush_all(self.log_path.parent / f"events_{self.run_id}")
        self.log.info("Load cycle finished", extra={"run_id": self.run_id})
        for h in list(self.log.handlers):
            h.close()
        self.log.handlers.clear()
