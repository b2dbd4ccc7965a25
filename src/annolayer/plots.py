"""
AnnoLayer Plots - Line, bar and scatter charts inside a sub-rectangle

data:
    {
        "type": "line" | "bar" | "scatter",
        "position": {"x", "y", "width", "height"},      # normalized
        "series": [{"name", "color"?, "points": [{"timeMs", "value"}]}],
        "title"?, "showGrid"?, "showLegend"?
    }

The time axis spans all series. A vertical cursor marks the current video
time when it falls inside that span.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .drawing import Color, DrawingContext, measure_text, parse_color
from .geometry import Box, Rect, denormalize_bounding_box
from .manifest import Annotation
from .renderers import Renderer, flag_option, number_option

CHART_TYPES = ("line", "bar", "scatter")

DEFAULT_SERIES_COLORS = ("#00ff00", "#00bfff", "#ff9800", "#e91e63", "#ffeb3b")


@dataclass
class DataBounds:
    """Time and value extent of all series, value range padded by 10%."""
    min_time: float
    max_time: float
    min_value: float
    max_value: float

    @property
    def time_span(self) -> float:
        return self.max_time - self.min_time

    @property
    def value_span(self) -> float:
        return self.max_value - self.min_value


def _series_points(series: Mapping[str, Any]) -> List[Tuple[float, float]]:
    points = []
    raw = series.get("points")
    if not isinstance(raw, (list, tuple)):
        return points
    for point in raw:
        if not isinstance(point, Mapping):
            continue
        t, v = point.get("timeMs"), point.get("value")
        if isinstance(t, bool) or isinstance(v, bool):
            continue
        if isinstance(t, (int, float)) and isinstance(v, (int, float)) and math.isfinite(t) and math.isfinite(v):
            points.append((float(t), float(v)))
    return points


def data_bounds(series_points: Sequence[Sequence[Tuple[float, float]]]) -> Optional[DataBounds]:
    """
    Extent over every point of every series.

    Returns:
        DataBounds, or None when there are no points
    """
    flat = [p for points in series_points for p in points]
    if not flat:
        return None
    arr = np.asarray(flat, dtype=np.float64)
    min_t, max_t = float(arr[:, 0].min()), float(arr[:, 0].max())
    min_v, max_v = float(arr[:, 1].min()), float(arr[:, 1].max())
    pad = (max_v - min_v) * 0.1
    if pad == 0:
        pad = abs(max_v) * 0.1 or 1.0
    return DataBounds(min_t, max_t, min_v - pad, max_v + pad)


def value_ticks(bounds: DataBounds, count: int = 5) -> List[float]:
    """Evenly spaced value ticks from min to max inclusive."""
    return [float(v) for v in np.linspace(bounds.min_value, bounds.max_value, max(2, count))]


def to_pixels(points: Sequence[Tuple[float, float]], area: Box, bounds: DataBounds) -> List[Tuple[float, float]]:
    """Map (timeMs, value) pairs into the plotting area."""
    time_span = bounds.time_span or 1.0
    value_span = bounds.value_span or 1.0
    out = []
    for t, v in points:
        x = area.x + (t - bounds.min_time) / time_span * area.width
        if bounds.time_span == 0:
            x = area.x + area.width / 2
        y = area.y2 - (v - bounds.min_value) / value_span * area.height
        out.append((x, y))
    return out


class ChartRenderer(Renderer):
    """Scaled chart of named series with axis ticks, grid, legend and cursor."""

    category = "chart"

    @classmethod
    def default_options(cls) -> Dict[str, Any]:
        return {
            "backgroundColor": "rgba(0,0,0,0.7)",
            "gridColor": "rgba(255,255,255,0.2)",
            "axisColor": "rgba(255,255,255,0.5)",
            "textColor": "#ffffff",
            "cursorColor": "#ffc107",
            "fontSize": 10,
            "lineWidth": 2,
            "pointRadius": 3,
            "borderRadius": 0,
            "margin": {"top": 20, "right": 20, "bottom": 30, "left": 40},
            "gridLines": {"x": 5, "y": 5},
            "showGrid": True,
            "showAxes": True,
            "showLegend": False,
            "showCursor": True,
        }

    def plot_area(self, frame: Box, style: Mapping[str, Any]) -> Box:
        margin = {"top": 20, "right": 20, "bottom": 30, "left": 40}
        if isinstance(style.get("margin"), Mapping):
            margin.update(style["margin"])
        return Box(
            frame.x + margin["left"],
            frame.y + margin["top"],
            max(1.0, frame.width - margin["left"] - margin["right"]),
            max(1.0, frame.height - margin["top"] - margin["bottom"]),
        )

    def draw(self, ctx: DrawingContext, annotation: Annotation, current_time_ms: float, rect: Rect):
        data = annotation.data
        series = data.get("series")
        if not isinstance(series, (list, tuple)) or not series:
            raise self.malformed(annotation, "series")
        if not isinstance(data.get("position"), Mapping):
            raise self.malformed(annotation, "position")
        frame = denormalize_bounding_box(data["position"], rect)
        if not all(math.isfinite(v) for v in (frame.x, frame.y, frame.width, frame.height)):
            raise self.malformed(annotation, "position")

        chart_type = data.get("type") or data.get("graphType") or "line"
        if chart_type not in CHART_TYPES:
            self.logger.warning(f"Unknown chart type '{chart_type}', drawing a line chart")
            chart_type = "line"

        style = self.style_for(annotation)
        font_size = number_option(style, "fontSize", 10)
        text_color = self.color(style, "textColor")

        ctx.rounded_rectangle(
            frame,
            number_option(style, "borderRadius", 0),
            parse_color(style.get("backgroundColor"), Color((0, 0, 0), 0.7)),
            filled=True,
        )
        area = self.plot_area(frame, style)

        valid = [s for s in series if isinstance(s, Mapping)]
        points_per_series = [_series_points(s) for s in valid]
        bounds = data_bounds(points_per_series)

        if flag_option(data, style, "showGrid", True):
            self._draw_grid(ctx, area, style)
        if bounds is not None and style.get("showAxes", True):
            self._draw_axes(ctx, area, bounds, style, text_color, font_size)

        if bounds is not None:
            for index, (entry, points) in enumerate(zip(valid, points_per_series)):
                color = parse_color(entry.get("color"), parse_color(DEFAULT_SERIES_COLORS[index % len(DEFAULT_SERIES_COLORS)]))
                pixels = to_pixels(points, area, bounds)
                self._draw_series(ctx, chart_type, pixels, area, color, entry, style)

            if style.get("showCursor", True) and bounds.min_time <= current_time_ms <= bounds.max_time and bounds.time_span > 0:
                x = area.x + (current_time_ms - bounds.min_time) / bounds.time_span * area.width
                ctx.line((x, area.y), (x, area.y2), self.color(style, "cursorColor"), 1)

        title = data.get("title")
        if title:
            ctx.text(str(title), (frame.x + 8, frame.y + 4 + measure_text(str(title), font_size + 2)[1]),
                     text_color, font_size + 2, bold=True)

        if flag_option(data, style, "showLegend", False):
            self._draw_legend(ctx, frame, valid, text_color, font_size)

    def _draw_grid(self, ctx: DrawingContext, area: Box, style: Mapping[str, Any]):
        grid_color = parse_color(style.get("gridColor"), Color((255, 255, 255), 0.2))
        lines = style.get("gridLines") if isinstance(style.get("gridLines"), Mapping) else {}
        nx = int(lines.get("x", 5) or 5)
        ny = int(lines.get("y", 5) or 5)
        for i in range(1, nx):
            x = area.x + area.width / nx * i
            ctx.polyline([(x, area.y), (x, area.y2)], grid_color, dash=(2, 2))
        for i in range(1, ny):
            y = area.y + area.height / ny * i
            ctx.polyline([(area.x, y), (area.x2, y)], grid_color, dash=(2, 2))

    def _draw_axes(
        self,
        ctx: DrawingContext,
        area: Box,
        bounds: DataBounds,
        style: Mapping[str, Any],
        text_color: Color,
        font_size: float
    ):
        axis_color = parse_color(style.get("axisColor"), Color((255, 255, 255), 0.5))
        ctx.line((area.x, area.y2), (area.x2, area.y2), axis_color)
        ctx.line((area.x, area.y), (area.x, area.y2), axis_color)

        ticks = value_ticks(bounds)
        for i, value in enumerate(ticks):
            y = area.y2 - area.height * i / (len(ticks) - 1)
            label = f"{value:.1f}"
            w, h, _ = measure_text(label, font_size)
            ctx.line((area.x - 3, y), (area.x, y), axis_color)
            ctx.text(label, (area.x - 5 - w, y + h / 2), text_color, font_size)

        # time ticks in seconds at both ends of the axis
        for t, anchor_x in ((bounds.min_time, area.x), (bounds.max_time, area.x2)):
            label = f"{t / 1000:.1f}s"
            w, h, _ = measure_text(label, font_size)
            ctx.text(label, (anchor_x - w / 2, area.y2 + 4 + h), text_color, font_size)

    def _draw_series(
        self,
        ctx: DrawingContext,
        chart_type: str,
        pixels: List[Tuple[float, float]],
        area: Box,
        color: Color,
        series: Mapping[str, Any],
        style: Mapping[str, Any]
    ):
        if not pixels:
            return
        line_width = int(number_option(series, "lineWidth", number_option(style, "lineWidth", 2)))
        radius = number_option(series, "pointRadius", number_option(style, "pointRadius", 3))

        if chart_type == "line":
            ctx.polyline(pixels, color, line_width)
            for point in pixels:
                ctx.circle(point, 2, color, filled=True)
        elif chart_type == "bar":
            bar_width = area.width / len(pixels) * 0.8
            for x, y in pixels:
                ctx.rectangle(Box(x - bar_width / 2, y, bar_width, area.y2 - y), color, filled=True)
        else:
            for point in pixels:
                ctx.circle(point, radius, color, filled=True)

    def _draw_legend(
        self,
        ctx: DrawingContext,
        frame: Box,
        series: Sequence[Mapping[str, Any]],
        text_color: Color,
        font_size: float
    ):
        """Colour swatch plus name per series, stacked up from the bottom-left."""
        y = frame.y2 - 10
        x = frame.x + 10
        for index, entry in enumerate(series):
            color = parse_color(entry.get("color"), parse_color(DEFAULT_SERIES_COLORS[index % len(DEFAULT_SERIES_COLORS)]))
            ctx.rectangle(Box(x, y - font_size, 10, font_size), color, filled=True)
            ctx.text(str(entry.get("name") or f"Series {index + 1}"), (x + 15, y), text_color, font_size)
            y -= font_size + 5
