#!/usr/bin/env python3
"""
Embedding charts in third-party pages.

Provides:
  - EmbedParams: URL-carried parameters of an embedded chart
  - HeightSync: the state machine that reports the chart's height to the
    hosting document, at most once per animation frame
  - build_embed_url / build_embed_snippet: what a host pastes into its page
  - embed_chart / render_not_found: registry lookup for the embed surface

Wire message (origin unrestricted, routed by exact chartId):
    {"kind": "chart-height", "chartId": "<id>", "height": <int px>}
"""

import enum
import json
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Mapping, Optional, Union
from urllib.parse import parse_qsl, urlencode

from chart_common import ChartParams
from chart_registry import CHART_REGISTRY, ChartNotFound, resolve_chart
from schemas import HeightMessage
from run_context import get_logger

logger = get_logger(__name__)

MIN_HOST_HEIGHT = 200
MAX_HOST_HEIGHT = 3000
DEFAULT_IFRAME_HEIGHT = 520

_TOGGLE_PARAMS = {
    "male": "showMaleBar",
    "female": "showFemaleBar",
    "finnish": "showFinnishBar",
    "foreign": "showForeignBar",
}


# =========================================================================
# URL parameters
# =========================================================================

def _flag(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in ("false", "0", "no")


def resolve_theme(requested: Optional[str], prefers_light: bool = False,
                  default: str = "dark") -> str:
    """light|dark pass through, system follows the viewer, anything else is ``default``."""
    if requested in ("light", "dark"):
        return requested
    if requested == "system":
        return "light" if prefers_light else "dark"
    return default


@dataclass(frozen=True)
class EmbedParams:
    chart_id: str
    filter: str = "all"
    view: str = "none"
    show_male: bool = True
    show_female: bool = True
    show_finnish: bool = True
    show_foreign: bool = True
    theme: str = "dark"
    theme_requested: Optional[str] = None
    show_title: bool = True
    show_source: bool = True
    compact: bool = False
    debug: bool = False

    @classmethod
    def from_query(cls, chart_id: str, query: Union[str, Mapping[str, str], None] = None,
                   prefers_light: bool = False, default_theme: str = "dark") -> "EmbedParams":
        if query is None:
            q: Mapping[str, str] = {}
        elif isinstance(query, str):
            q = dict(parse_qsl(query.lstrip("?"), keep_blank_values=True))
        else:
            q = query
        theme_requested = q.get("theme")
        return cls(
            chart_id=chart_id,
            filter=q.get("filter") or "all",
            view=q.get("view") or "none",
            show_male=_flag(q.get("showMaleBar"), True),
            show_female=_flag(q.get("showFemaleBar"), True),
            show_finnish=_flag(q.get("showFinnishBar"), True),
            show_foreign=_flag(q.get("showForeignBar"), True),
            theme=resolve_theme(theme_requested, prefers_light, default_theme),
            theme_requested=theme_requested,
            show_title=q.get("showTitle") != "0",
            show_source=q.get("showSource") != "0",
            compact=q.get("compact") == "1",
            debug=q.get("fscDebug") == "1",
        )

    def to_chart_params(self, window_width: int = 1200, currency_symbol: str = "€",
                        **callbacks) -> ChartParams:
        return ChartParams(
            filter=self.filter,
            view=self.view,
            show_male=self.show_male,
            show_female=self.show_female,
            show_finnish=self.show_finnish,
            show_foreign=self.show_foreign,
            window_width=window_width,
            theme=self.theme,
            currency_symbol=currency_symbol,
            **callbacks,
        )

    def to_query(self) -> dict:
        """Minimal query dict; defaults are omitted."""
        q = {}
        if self.filter != "all":
            q["filter"] = self.filter
        if self.view != "none":
            q["view"] = self.view
        for token, name in _TOGGLE_PARAMS.items():
            if not getattr(self, f"show_{token}"):
                q[name] = "false"
        if self.theme_requested:
            q["theme"] = self.theme_requested
        if not self.show_title:
            q["showTitle"] = "0"
        if not self.show_source:
            q["showSource"] = "0"
        if self.compact:
            q["compact"] = "1"
        if self.debug:
            q["fscDebug"] = "1"
        return q

    # The renderer's callbacks rewrite the URL; these give the new state.
    def with_filter(self, token: str) -> "EmbedParams":
        return replace(self, filter=token or "all")

    def with_view(self, token: str) -> "EmbedParams":
        return replace(self, view=token or "none")

    def with_toggle(self, series: str, visible: bool) -> "EmbedParams":
        if series not in _TOGGLE_PARAMS:
            raise ValueError(f"Unknown series {series!r}; expected one of {sorted(_TOGGLE_PARAMS)}")
        return replace(self, **{f"show_{series}": bool(visible)})


def build_embed_url(base_url: str, chart_id: str, filter: str = "all",
                    view: str = "none", theme: Optional[str] = None) -> str:
    q = {}
    if filter and filter != "all":
        q["filter"] = filter
    if view and view != "none":
        q["view"] = view
    if theme:
        q["theme"] = theme
    q["showTitle"] = "1"
    q["showSource"] = "1"
    return f"{base_url.rstrip('/')}/embed/{chart_id}?{urlencode(q)}"


def build_embed_snippet(base_url: str, chart_id: str, filter: str = "all",
                        view: str = "none", theme: Optional[str] = None,
                        initial_height: int = DEFAULT_IFRAME_HEIGHT) -> str:
    """Host-side iframe plus a listener that applies height messages.

    The listener ignores messages for other chart ids and clamps heights
    to MIN_HOST_HEIGHT..MAX_HOST_HEIGHT.
    """
    url = build_embed_url(base_url, chart_id, filter, view, theme)
    iframe_id = f"fsc-chart-{chart_id}"
    js_id = json.dumps(chart_id)
    return f"""<iframe id="{iframe_id}" src="{url}"
     style="width:100%;border:0;"
     height="{initial_height}"
     loading="lazy"
     title="Startup statistics chart: {chart_id}"></iframe>
<script>
  (function() {{
    var iframe = document.getElementById({json.dumps(iframe_id)});
    if (!iframe) return;
    var lastHeight = {initial_height};
    var rafId = null;
    function setHeight(height) {{
      if (rafId !== null) cancelAnimationFrame(rafId);
      rafId = requestAnimationFrame(function() {{
        if (height !== lastHeight) {{
          iframe.style.height = height + 'px';
          lastHeight = height;
        }}
      }});
    }}
    window.addEventListener('message', function(event) {{
      var data = event.data;
      if (!data || typeof data !== 'object') return;
      if (data.kind !== 'chart-height') return;
      if (data.chartId !== {js_id}) return;
      var height = data.height;
      if (typeof height !== 'number' || !isFinite(height)) return;
      height = Math.max({MIN_HOST_HEIGHT}, Math.min({MAX_HOST_HEIGHT}, Math.round(height)));
      setHeight(height);
    }});
  }})();
</script>"""


def render_not_found(result: ChartNotFound) -> str:
    lines = [f"Chart not found: {result.chart_id}", "", "Available charts:"]
    for chart_id in result.valid_ids:
        entry = CHART_REGISTRY.get(chart_id)
        title = entry.title if entry else chart_id
        lines.append(f"  - {chart_id}: {title}")
    return "\n".join(lines)


def embed_chart(chart_id: str, datasets: Mapping, query=None,
                window_width: Optional[int] = None, prefers_light: bool = False,
                cfg=None) -> dict:
    """Everything the embed surface renders for one request.

    ``cfg.charts`` supplies the fallback theme, window width and currency
    symbol; the query string still wins for theme.
    """
    charts = cfg.charts if cfg is not None else None
    if window_width is None:
        window_width = charts.window_width if charts else 1200
    params = EmbedParams.from_query(chart_id, query, prefers_light,
                                    charts.theme if charts else "dark")
    datasets = getattr(datasets, "datasets", datasets)
    entry = resolve_chart(chart_id)
    if isinstance(entry, ChartNotFound):
        return {"chart_id": chart_id, "config": None,
                "not_found": render_not_found(entry), "params": params}
    config = entry.build(datasets, params.to_chart_params(
        window_width, charts.currency_symbol if charts else "€"))
    return {
        "chart_id": chart_id,
        "title": entry.title if params.show_title else None,
        "config": config,
        "not_found": None,
        "params": params,
        "debug": config.get("debug") if (params.debug and config) else None,
    }


# =========================================================================
# Height synchronisation
# =========================================================================

class FrameScheduler(ABC):
    """Animation-frame source: run a callback before the next repaint."""

    @abstractmethod
    def request(self, callback: Callable[[], None]) -> object:
        ...

    @abstractmethod
    def cancel(self, handle: object) -> None:
        ...


class ManualFrameScheduler(FrameScheduler):
    """Frames advance only when tick() is called."""

    def __init__(self):
        self._pending: dict[int, Callable[[], None]] = {}
        self._next = 0

    def request(self, callback):
        self._next += 1
        self._pending[self._next] = callback
        return self._next

    def cancel(self, handle):
        self._pending.pop(handle, None)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def tick(self) -> int:
        """Run every callback queued before this frame; returns how many ran."""
        due, self._pending = self._pending, {}
        for callback in due.values():
            callback()
        return len(due)


class MessageQueue:
    """Single outbound channel to the parent document."""

    def __init__(self, deliver: Optional[Callable[[dict, str], None]] = None):
        self.sent: list[HeightMessage] = []
        self._deliver = deliver

    def post(self, message: HeightMessage, target_origin: str = "*"):
        self.sent.append(message)
        if self._deliver is not None:
            self._deliver(message.to_wire(), target_origin)


class SyncState(enum.Enum):
    IDLE = "idle"
    MEASURING = "measuring"
    REPORTING = "reporting"
    PAUSED = "paused"


class HeightSync:
    """Reports the embedded surface's height to its host.

    A report goes out only when the surface is embedded, the height changed
    since the last report and no local overlay is open. Triggers within one
    animation frame collapse into a single measure+report cycle.
    """

    def __init__(self, chart_id: str, measure: Callable[[], float],
                 scheduler: FrameScheduler, outbox: MessageQueue,
                 embedded: bool = True):
        if not chart_id:
            raise ValueError("chart_id is required")
        self.chart_id = chart_id
        self.state = SyncState.IDLE
        self.last_reported: Optional[int] = None
        self._measure = measure
        self._scheduler = scheduler
        self._outbox = outbox
        self._embedded = embedded
        self._frame = None
        self._listeners: list[Callable[[], None]] = []
        self._closed = False

    # -- listeners ---------------------------------------------------------

    def attach(self, unsubscribers: Iterable[Callable[[], None]]):
        """Register unsubscribe callables of observers that feed the triggers."""
        self._listeners.extend(unsubscribers)

    # -- triggers ----------------------------------------------------------

    def on_first_paint(self):
        self._schedule()

    def on_fonts_loaded(self):
        self._schedule()

    def on_size_change(self):
        self._schedule()

    def on_window_resize(self):
        self._schedule()

    # -- overlay -----------------------------------------------------------

    def overlay_opened(self):
        if self._closed:
            return
        self._cancel_frame()
        self.state = SyncState.PAUSED

    def overlay_closed(self):
        if self._closed or self.state is not SyncState.PAUSED:
            return
        self.state = SyncState.MEASURING
        self._report(force=True)

    # -- lifecycle ---------------------------------------------------------

    def teardown(self):
        """Cancel the pending frame and release every observer."""
        self._cancel_frame()
        listeners, self._listeners = self._listeners, []
        for unsubscribe in listeners:
            unsubscribe()
        self._closed = True
        self.state = SyncState.IDLE

    @property
    def pending(self) -> bool:
        return self._frame is not None

    # -- internals ---------------------------------------------------------

    def _schedule(self):
        if self._closed or self.state is SyncState.PAUSED:
            return
        if self._frame is not None:
            return
        self.state = SyncState.MEASURING
        self._frame = self._scheduler.request(self._on_frame)

    def _on_frame(self):
        self._frame = None
        if self._closed or self.state is SyncState.PAUSED:
            return
        self._report(force=False)

    def _cancel_frame(self):
        if self._frame is not None:
            self._scheduler.cancel(self._frame)
            self._frame = None

    def _report(self, force: bool):
        measured = self._measure()
        if measured is None or not math.isfinite(measured):
            # layout not measurable yet; the next trigger retries
            logger.debug("Skipped height report, measured %r", measured,
                         extra={"chart_id": self.chart_id})
            self.state = SyncState.IDLE
            return
        height = max(0, int(round(measured)))
        self.state = SyncState.REPORTING
        if self._embedded and (force or height != self.last_reported):
            self._outbox.post(HeightMessage(chart_id=self.chart_id, height=height))
            self.last_reported = height
            logger.debug("Reported height %d", height, extra={"chart_id": self.chart_id})
        self.state = SyncState.IDLE
