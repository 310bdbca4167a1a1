"""Tests for embed parameters, host snippet and the height-sync protocol."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from chart_common import chart_colors
from chart_registry import ChartNotFound
from embed import (
    EmbedParams,
    FrameScheduler,
    HeightSync,
    ManualFrameScheduler,
    MessageQueue,
    SyncState,
    build_embed_snippet,
    build_embed_url,
    embed_chart,
    render_not_found,
    resolve_theme,
)
from schemas import AppConfig, HeightMessage


class FakeSurface:
    """Measured height the tests can change between frames."""

    def __init__(self, height=400.0):
        self.height = height

    def __call__(self):
        return self.height


def _sync(height=400.0, embedded=True, chart_id="workforce-gender"):
    surface = FakeSurface(height)
    scheduler = ManualFrameScheduler()
    outbox = MessageQueue()
    sync = HeightSync(chart_id, surface, scheduler, outbox, embedded=embedded)
    return sync, surface, scheduler, outbox


# =====================================================================
# URL PARAMETERS
# =====================================================================

class TestEmbedParams:
    def test_defaults(self):
        p = EmbedParams.from_query("workforce-gender")
        assert p.filter == "all"
        assert p.view == "none"
        assert p.show_male and p.show_female
        assert p.theme == "dark"
        assert p.show_title and p.show_source
        assert not p.compact and not p.debug

    def test_query_string(self):
        p = EmbedParams.from_query(
            "workforce-gender",
            "?view=female-share&showMaleBar=false&theme=light&showTitle=0&compact=1&fscDebug=1")
        assert p.view == "female-share"
        assert p.show_male is False
        assert p.theme == "light"
        assert p.show_title is False
        assert p.compact is True
        assert p.debug is True

    @pytest.mark.parametrize("requested,prefers_light,expected", [
        ("light", False, "light"),
        ("dark", True, "dark"),
        ("system", True, "light"),
        ("system", False, "dark"),
        (None, True, "dark"),
        ("neon", False, "dark"),
    ])
    def test_theme(self, requested, prefers_light, expected):
        assert resolve_theme(requested, prefers_light) == expected

    def test_query_round_trip_omits_defaults(self):
        p = EmbedParams.from_query("x", {"filter": "finland", "showForeignBar": "false"})
        assert p.to_query() == {"filter": "finland", "showForeignBar": "false"}

    def test_state_changes(self):
        p = EmbedParams.from_query("workforce-gender")
        assert p.with_view("male-share").view == "male-share"
        assert p.with_filter("").filter == "all"
        assert p.with_toggle("female", False).show_female is False
        with pytest.raises(ValueError):
            p.with_toggle("robots", False)

    def test_to_chart_params(self):
        params = EmbedParams.from_query("x", "showFinnishBar=false").to_chart_params(700)
        assert params.show_finnish is False
        assert params.window_width == 700


class TestSnippet:
    def test_url(self):
        url = build_embed_url("https://stats.example.org/", "workforce-gender",
                              view="female-share", theme="light")
        assert url.startswith("https://stats.example.org/embed/workforce-gender?")
        assert "view=female-share" in url
        assert "showTitle=1" in url and "showSource=1" in url
        assert "filter=" not in url

    def test_snippet_filters_by_chart_id(self):
        snippet = build_embed_snippet("https://stats.example.org", "unicorns-valuation")
        assert "data.chartId !== \"unicorns-valuation\"" in snippet
        assert "'chart-height'" in snippet
        assert "Math.max(200, Math.min(3000" in snippet
        assert 'height="520"' in snippet


class TestEmbedChart:
    def test_known_chart(self, datasets):
        result = embed_chart("workforce-gender", datasets, "view=male-share&fscDebug=1")
        assert result["config"]["view"] == "male-share"
        assert result["title"] == "Gender distribution of startup workers"
        assert result["debug"]["filter"] == "male-share"
        assert result["not_found"] is None

    def test_hidden_title(self, datasets):
        assert embed_chart("workforce-gender", datasets, "showTitle=0")["title"] is None

    def test_unknown_chart_lists_valid_ids(self, datasets):
        result = embed_chart("nope", datasets)
        assert result["config"] is None
        assert "Chart not found: nope" in result["not_found"]
        assert "workforce-gender" in result["not_found"]

    def test_configured_defaults(self, datasets):
        cfg = AppConfig(charts={"theme": "light", "window_width": 700, "currency_symbol": "$"})
        result = embed_chart("economic-impact-revenue", datasets, cfg=cfg)
        assert result["params"].theme == "light"
        assert result["config"]["colors"] == chart_colors("light")
        assert result["config"]["window_width"] == 700
        assert result["config"]["tooltip"]["format"]["symbol"] == "$"

    def test_query_theme_beats_configured_theme(self, datasets):
        cfg = AppConfig(charts={"theme": "light"})
        result = embed_chart("economic-impact-revenue", datasets, "theme=dark", cfg=cfg)
        assert result["params"].theme == "dark"

    def test_render_not_found(self):
        text = render_not_found(ChartNotFound("x", ("unicorns-valuation",)))
        assert "unicorns-valuation: Unicorn Valuations" in text


# =====================================================================
# HEIGHT SYNC
# =====================================================================

class TestHeightSync:
    def test_first_paint_reports_once(self):
        sync, _, scheduler, outbox = _sync(412.4)
        sync.on_first_paint()
        sync.on_fonts_loaded()
        sync.on_size_change()
        assert scheduler.pending == 1
        scheduler.tick()
        assert [m.height for m in outbox.sent] == [412]
        assert outbox.sent[0].chart_id == "workforce-gender"
        assert sync.state is SyncState.IDLE

    def test_unchanged_height_not_reported(self):
        sync, _, scheduler, outbox = _sync()
        sync.on_first_paint()
        scheduler.tick()
        sync.on_window_resize()
        scheduler.tick()
        assert len(outbox.sent) == 1

    def test_changed_height_reported(self):
        sync, surface, scheduler, outbox = _sync()
        sync.on_first_paint()
        scheduler.tick()
        surface.height = 600
        sync.on_size_change()
        scheduler.tick()
        assert [m.height for m in outbox.sent] == [400, 600]

    def test_overlay_suppresses_then_forces_one_report(self):
        sync, surface, scheduler, outbox = _sync()
        sync.on_first_paint()
        scheduler.tick()
        sync.overlay_opened()
        assert sync.state is SyncState.PAUSED
        surface.height = 900
        sync.on_size_change()
        sync.on_window_resize()
        assert scheduler.pending == 0
        sync.overlay_closed()
        assert len(outbox.sent) == 2
        assert outbox.sent[-1].height == 900

    def test_overlay_close_reports_even_if_unchanged(self):
        sync, _, scheduler, outbox = _sync()
        sync.on_first_paint()
        scheduler.tick()
        sync.overlay_opened()
        sync.overlay_closed()
        assert [m.height for m in outbox.sent] == [400, 400]

    def test_overlay_cancels_pending_frame(self):
        sync, _, scheduler, outbox = _sync()
        sync.on_first_paint()
        sync.overlay_opened()
        assert scheduler.tick() == 0
        assert outbox.sent == []

    def test_not_embedded_never_posts(self):
        sync, _, scheduler, outbox = _sync(embedded=False)
        sync.on_first_paint()
        scheduler.tick()
        sync.overlay_opened()
        sync.overlay_closed()
        assert outbox.sent == []

    def test_teardown_releases_observers(self):
        sync, _, scheduler, outbox = _sync()
        unsubscribe = MagicMock()
        sync.attach([unsubscribe, unsubscribe])
        sync.on_first_paint()
        sync.teardown()
        assert unsubscribe.call_count == 2
        assert scheduler.pending == 0
        sync.on_size_change()
        assert scheduler.pending == 0
        assert outbox.sent == []

    def test_wire_message_shape(self):
        delivered = []
        sync = HeightSync("barometer-financial", lambda: 321.0, ManualFrameScheduler(),
                          MessageQueue(lambda msg, origin: delivered.append((msg, origin))))
        sync.overlay_opened()
        sync.overlay_closed()
        assert delivered == [({"kind": "chart-height", "chartId": "barometer-financial",
                               "height": 321}, "*")]

    def test_unmeasurable_height_skipped(self):
        height = {"px": float("nan")}
        scheduler, outbox = ManualFrameScheduler(), MessageQueue()
        sync = HeightSync("workforce-gender", lambda: height["px"], scheduler, outbox)
        sync.on_first_paint()
        scheduler.tick()
        assert outbox.sent == []
        assert sync.state is SyncState.IDLE
        height["px"] = 480.0
        sync.on_size_change()
        scheduler.tick()
        assert [m.height for m in outbox.sent] == [480]

    def test_scheduler_must_implement_frames(self):
        class HalfScheduler(FrameScheduler):
            def request(self, callback):
                return 1

        with pytest.raises(TypeError):
            HalfScheduler()
        with pytest.raises(TypeError):
            FrameScheduler()

    def test_requires_chart_id(self):
        with pytest.raises(ValueError):
            HeightSync("", lambda: 0, ManualFrameScheduler(), MessageQueue())

    def test_negative_height_rejected_by_schema(self):
        with pytest.raises(ValueError):
            HeightMessage(chart_id="x", height=-1)
