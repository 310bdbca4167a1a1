"""Tests for config validation via Pydantic schemas.

Verifies that:
- The shipped config.yaml passes validation
- Missing keys fall back to defaults
- Bad values (theme, discovery range, dataset keys) are rejected
- The sheet id environment override wins over the file
"""

import sys
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from run_context import SHEET_ID_ENV, ConfigError, load_config
from schemas import DATASET_KEYS, AppConfig, HeightMessage, MetricData


ROOT = Path(__file__).resolve().parent.parent


class TestAppConfigValidation:
    def test_production_config_passes(self):
        cfg = load_config(ROOT / "config.yaml")
        assert cfg.dataset("main").required is True
        assert cfg.dataset("main").tab_id == "0"
        assert cfg.sources.barometer_document_id

    def test_missing_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv(SHEET_ID_ENV, raising=False)
        cfg = load_config(tmp_path / "absent.yaml")
        assert cfg == AppConfig()

    def test_defaults_cover_every_dataset(self):
        cfg = AppConfig()
        assert set(cfg.sources.datasets) == set(DATASET_KEYS)
        assert cfg.dataset("employees_gender").signature is not None

    def test_partial_datasets_filled(self):
        cfg = AppConfig(sources={"datasets": {"rdi": {"local_file": "x.json", "tab_id": 12}}})
        assert cfg.dataset("rdi").tab_id == "12"
        assert cfg.dataset("main").local_file == "main-data.json"

    def test_unknown_dataset_rejected(self):
        with pytest.raises(ValueError, match="Unknown dataset"):
            AppConfig(sources={"datasets": {"weather": {"local_file": "w.json"}}})

    def test_bad_theme_rejected(self):
        with pytest.raises(ValueError):
            AppConfig(charts={"theme": "neon"})

    def test_empty_discovery_range_rejected(self):
        with pytest.raises(ValueError, match="range is empty"):
            AppConfig(discovery={"first_tab": 5, "last_tab": 2})

    def test_candidates(self):
        cfg = AppConfig(discovery={"first_tab": 2, "last_tab": 4})
        assert cfg.discovery.candidates() == ["2", "3", "4"]

    def test_barometer_document(self):
        cfg = AppConfig(sources={"document_id": "a", "barometer_document_id": "b"})
        assert cfg.document_for("barometer") == "b"
        assert cfg.document_for("main") == "a"
        assert AppConfig(sources={"document_id": "a"}).document_for("barometer") == "a"


class TestLoadConfig:
    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("sources: [unclosed")
        with pytest.raises(ConfigError, match="Failed to parse"):
            load_config(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"fetch": {"max_retries": 0}}))
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(path)

    def test_overrides_merge(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"fetch": {"timeout_seconds": 5, "max_retries": 2}}))
        cfg = load_config(path, overrides={"fetch": {"max_retries": 4}})
        assert cfg.fetch.timeout_seconds == 5
        assert cfg.fetch.max_retries == 4

    def test_env_sheet_id(self, tmp_path, monkeypatch):
        monkeypatch.setenv(SHEET_ID_ENV, "from-env")
        assert load_config(tmp_path / "absent.yaml").sources.document_id == "from-env"


class TestBoundarySchemas:
    def test_metric_alias(self):
        m = MetricData(value=1, growth=0, year=2021, formattedValue="1")
        assert m.formatted_value == "1"
        assert m.model_dump(by_alias=True)["formattedValue"] == "1"

    def test_height_message_wire(self):
        msg = HeightMessage(chartId="x", height=10)
        assert msg.to_wire() == {"kind": "chart-height", "chartId": "x", "height": 10}

    def test_height_message_requires_id(self):
        with pytest.raises(ValueError):
            HeightMessage(chart_id="", height=10)
