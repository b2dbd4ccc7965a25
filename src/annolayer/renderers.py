"""
AnnoLayer Renderers - One drawing component per annotation category

Every renderer owns the annotations of its own category, assigned once at
construction, plus cached style options. On each frame it narrows to the
annotations whose window covers the current time and draws them through a
DrawingContext.

Style resolution (later wins):
    FALLBACK_STYLE < default_options() + constructor options < data["style"]

Categories:
- detection           Bounding boxes with labels and confidence bars
- trajectory          Motion paths with history, marker, direction, future
- calibration-line    Fixed reference segments
- telemetry-strip     Accelerometer style time-series panel
- text                Wrapped, anchored text banners
- debug-cross         Diagonals and centre lines across the whole frame
- chart               See plots.py
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .drawing import ANCHORS, BLACK, WHITE, Color, DrawingContext, measure_text, parse_color, wrap_text
from .errors import MalformedAnnotationError
from .geometry import (
    Box,
    Rect,
    Waypoint,
    denormalize_bounding_box,
    denormalize_point,
    direction_at,
    interpolate_position,
    is_finite_point,
    parse_waypoints,
    sample_timed_path,
)
from .manifest import Annotation


# =============================================================================
# BASE
# =============================================================================

class Renderer(ABC):
    """
    Abstract base class for category renderers.

    Subclasses implement draw() for a single annotation and may override
    default_options(). A renderer starts Visible; hide() keeps its
    annotations.

    Attributes:
        category: Category name this instance serves
        annotations: Tuple of assigned annotations (own category only)
        options: default_options() merged with constructor options
        visible: Whether render() draws anything
    """

    category = ""

    FALLBACK_STYLE = {
        "color": "#ffffff",
        "lineWidth": 2,
        "opacity": 1.0,
        "fontSize": 14,
    }

    def __init__(
        self,
        annotations: Iterable[Annotation] = (),
        options: Optional[Mapping[str, Any]] = None,
        category: Optional[str] = None
    ):
        if category:
            self.category = category
        self.annotations: Tuple[Annotation, ...] = tuple(
            a for a in annotations if a.category == self.category
        )
        self.options: Dict[str, Any] = {**self.default_options(), **dict(options or {})}
        self.visible = True
        self.logger = logging.getLogger(f"{__name__}.{type(self).__name__}")

    @classmethod
    def default_options(cls) -> Dict[str, Any]:
        return {}

    def show(self):
        self.visible = True

    def hide(self):
        self.visible = False

    def style_for(self, annotation: Annotation) -> Dict[str, Any]:
        """Resolved style for one annotation."""
        return {**self.FALLBACK_STYLE, **self.options, **annotation.style}

    def active_at(self, current_time_ms: float) -> List[Annotation]:
        return [a for a in self.annotations if a.is_active_at(current_time_ms)]

    def render(self, ctx: DrawingContext, current_time_ms: float, rect: Rect) -> int:
        """
        Draw every active annotation.

        A malformed annotation is logged and skipped; the rest still draw.

        Returns:
            Number of annotations drawn
        """
        if not self.visible:
            return 0
        drawn = 0
        for annotation in self.active_at(current_time_ms):
            try:
                self.draw(ctx, annotation, current_time_ms, rect)
                drawn += 1
            except MalformedAnnotationError as e:
                self.logger.warning(f"Skipping annotation: {e}")
        return drawn

    @abstractmethod
    def draw(self, ctx: DrawingContext, annotation: Annotation, current_time_ms: float, rect: Rect):
        """
        Draw one active annotation.

        Raises:
            MalformedAnnotationError: If a required field is missing
        """
        pass

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def malformed(self, annotation: Annotation, field: str) -> MalformedAnnotationError:
        return MalformedAnnotationError(self.category, field, annotation.id)

    def color(self, style: Mapping[str, Any], key: str, fallback: str = "color") -> Color:
        """Colour for a style key, falling back to another key then white."""
        default = parse_color(style.get(fallback), WHITE)
        return parse_color(style.get(key), default)

    def __repr__(self) -> str:
        state = "visible" if self.visible else "hidden"
        return f"{type(self).__name__}(category={self.category!r}, annotations={len(self.annotations)}, {state})"


def number_option(style: Mapping[str, Any], key: str, default: float) -> float:
    value = style.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return value


def flag_option(data: Mapping[str, Any], style: Mapping[str, Any], key: str, default: bool) -> bool:
    """Boolean switch from data, then style, then default."""
    if isinstance(data.get(key), bool):
        return data[key]
    if isinstance(style.get(key), bool):
        return style[key]
    return default


def _label_anchor(position: str, box: Box, margin: float = 2) -> Tuple[Tuple[float, float], str]:
    """
    Anchor point on a box and the text-block anchor for a label position.

    Top labels sit above the box, bottom labels below it, centre labels
    inside it.
    """
    if position not in ANCHORS:
        position = "top-left"
    vertical, _, horizontal = position.partition("-")
    if position == "center":
        vertical, horizontal = "center", "center"

    if horizontal == "left":
        x = box.x
    elif horizontal == "right":
        x = box.x2
    else:
        x = box.x + box.width / 2

    if vertical == "top":
        return (x, box.y - margin), f"bottom-{horizontal}"
    if vertical == "bottom":
        return (x, box.y2 + margin), f"top-{horizontal}"
    anchor = "center" if horizontal == "center" else f"center-{horizontal}"
    return (x, box.y + box.height / 2), anchor


# =============================================================================
# BOUNDING BOXES
# =============================================================================

class BoundingBoxRenderer(Renderer):
    """
    Stroked boxes with translucent fill and a measured label.

    data: {bbox: {x, y, width, height}, label?, class?, confidence?,
           trackId?, style?}
    """

    category = "detection"

    @classmethod
    def default_options(cls) -> Dict[str, Any]:
        return {
            "borderColor": "#ff0000",
            "borderWidth": 2,
            "fillOpacity": 0.1,
            "showLabel": True,
            "labelPosition": "top-left",
            "labelColor": "#ffffff",
            "labelBackground": "rgba(0,0,0,0.7)",
            "fontSize": 12,
            "labelPadding": 4,
            "showConfidence": False,
            "showTrackId": False,
            "confidenceBarHeight": 4,
        }

    def label_text(self, data: Mapping[str, Any], style: Mapping[str, Any]) -> str:
        text = str(data.get("label") or data.get("class") or "")
        confidence = data.get("confidence")
        if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
            percent = f"{round(confidence * 100)}%"
            text = f"{text} {percent}" if text else percent
        track_id = data.get("trackId")
        if track_id is not None and style.get("showTrackId"):
            text = f"{text} [{track_id}]" if text else f"[{track_id}]"
        return text

    def draw(self, ctx: DrawingContext, annotation: Annotation, current_time_ms: float, rect: Rect):
        data = annotation.data
        if not isinstance(data.get("bbox"), Mapping):
            raise self.malformed(annotation, "bbox")
        box = denormalize_bounding_box(data["bbox"], rect)
        if not all(math.isfinite(v) for v in (box.x, box.y, box.width, box.height)):
            raise self.malformed(annotation, "bbox")

        style = self.style_for(annotation)
        border = self.color(style, "borderColor")
        opacity = number_option(style, "opacity", 1.0)

        fill_opacity = number_option(style, "fillOpacity", 0.0)
        if fill_opacity > 0:
            fill = parse_color(style.get("fillColor"), border)
            ctx.rectangle(box, fill.with_alpha(fill_opacity * opacity), filled=True)
        ctx.rectangle(box, border.fade(opacity), int(number_option(style, "borderWidth", 2)))

        if style.get("showLabel", True):
            text = self.label_text(data, style)
            if text:
                point, anchor = _label_anchor(str(style.get("labelPosition")), box)
                ctx.text_block(
                    [text],
                    point,
                    self.color(style, "labelColor").fade(opacity),
                    background=parse_color(style.get("labelBackground")),
                    font_size=number_option(style, "fontSize", 12),
                    anchor=anchor,
                    padding=int(number_option(style, "labelPadding", 4)),
                    corner_radius=3,
                )

        confidence = data.get("confidence")
        if style.get("showConfidence") and isinstance(confidence, (int, float)):
            self._draw_confidence_bar(ctx, box, float(confidence), style)

    def _draw_confidence_bar(self, ctx: DrawingContext, box: Box, confidence: float, style: Mapping[str, Any]):
        """Thin bar under the box: track, fill coloured by level."""
        confidence = max(0.0, min(1.0, confidence))
        height = number_option(style, "confidenceBarHeight", 4)
        track = Box(box.x, box.y2 + 2, box.width, height)
        ctx.rectangle(track, Color((255, 255, 255), 0.3), filled=True)

        if "confidenceBarColor" in style:
            fill = self.color(style, "confidenceBarColor")
        elif confidence > 0.7:
            fill = Color((0, 255, 0))
        elif confidence > 0.4:
            fill = Color((0, 255, 255))
        else:
            fill = Color((0, 0, 255))
        if confidence > 0:
            ctx.rectangle(Box(track.x, track.y, track.width * confidence, height), fill, filled=True)


# =============================================================================
# TRAJECTORIES
# =============================================================================

class TrajectoryRenderer(Renderer):
    """
    Motion path with history trail, marker, direction arrow and future path.

    data: {points: [{x, y, timeMs}], interpolation: "linear" | "curve",
           showHistory, historyLengthMs, showDirection, showFuture, label?}

    The history and future sub-paths are cut out of the same sampled curve
    the marker position is computed on.
    """

    category = "trajectory"

    @classmethod
    def default_options(cls) -> Dict[str, Any]:
        return {
            "lineColor": "#ffff00",
            "lineWidth": 3,
            "pointRadius": 4,
            "arrowSize": 8,
            "pathOpacity": 0.3,
            "trailOpacity": 0.9,
            "futureOpacity": 0.4,
            "interpolation": "linear",
            "showHistory": True,
            "showDirection": True,
            "showFuture": False,
            "showGlow": True,
            "historyLengthMs": 2000,
            "samplesPerSegment": 16,
        }

    def draw(self, ctx: DrawingContext, annotation: Annotation, current_time_ms: float, rect: Rect):
        data = annotation.data
        waypoints = parse_waypoints(data.get("points"))
        if not waypoints:
            raise self.malformed(annotation, "points")

        style = self.style_for(annotation)
        mode = data.get("interpolation") or style.get("interpolation")
        position = interpolate_position(waypoints, current_time_ms, mode)
        if position is None:
            self.logger.debug(f"No trajectory position at {current_time_ms}ms for {annotation.id}")
            return

        pixel_points = [
            Waypoint(*denormalize_point((w.x, w.y), rect), w.time_ms) for w in waypoints
        ]
        marker = denormalize_point(position, rect)
        samples = sample_timed_path(
            pixel_points, mode, int(number_option(style, "samplesPerSegment", 16))
        )

        line_color = self.color(style, "lineColor")
        line_width = number_option(style, "lineWidth", 3)

        # Full path
        ctx.polyline(
            [(s.x, s.y) for s in samples],
            line_color.with_alpha(number_option(style, "pathOpacity", 0.3)),
            max(1, int(line_width * 0.5)),
        )

        if flag_option(data, style, "showHistory", True):
            history_ms = number_option(data, "historyLengthMs", number_option(style, "historyLengthMs", 2000))
            start = current_time_ms - history_ms
            trail = [(s.x, s.y) for s in samples if start <= s.time_ms <= current_time_ms]
            if start > waypoints[0].time_ms:
                tail = interpolate_position(waypoints, start, mode)
                if tail is not None:
                    trail.insert(0, denormalize_point(tail, rect))
            trail.append(marker)
            ctx.polyline(trail, line_color.with_alpha(number_option(style, "trailOpacity", 0.9)), int(line_width))

        if flag_option(data, style, "showFuture", False):
            future = [marker] + [(s.x, s.y) for s in samples if s.time_ms > current_time_ms]
            ctx.polyline(
                future,
                line_color.with_alpha(number_option(style, "futureOpacity", 0.4)),
                max(1, int(line_width * 0.7)),
                dash=(5, 5),
            )

        self._draw_marker(ctx, marker, style)

        if flag_option(data, style, "showDirection", True):
            direction = direction_at(pixel_points, current_time_ms)
            if direction is not None:
                self._draw_arrow(ctx, marker, direction, style)

        label = data.get("label")
        if label:
            radius = number_option(style, "pointRadius", 4)
            ctx.text_block(
                [str(label)],
                (marker[0] + radius + 6, marker[1] - radius - 6),
                WHITE,
                background=Color((0, 0, 0), 0.6),
                font_size=number_option(style, "fontSize", 14),
                anchor="bottom-left",
                padding=4,
            )

    def _draw_marker(self, ctx: DrawingContext, center: Tuple[float, float], style: Mapping[str, Any]):
        radius = number_option(style, "pointRadius", 4)
        color = parse_color(style.get("pointColor"), self.color(style, "lineColor"))
        if style.get("showGlow", True):
            glow = parse_color(style.get("glowColor"), color)
            ctx.circle(center, radius * 2, glow.with_alpha(0.3), filled=True)
        ctx.circle(center, radius, color, filled=True)
        ctx.circle(center, max(1.0, radius * 0.3), WHITE, filled=True)

    def _draw_arrow(
        self,
        ctx: DrawingContext,
        origin: Tuple[float, float],
        direction: Tuple[float, float],
        style: Mapping[str, Any]
    ):
        """Filled triangle pointing along the direction of travel."""
        size = number_option(style, "arrowSize", 8)
        color = parse_color(style.get("arrowColor"), self.color(style, "lineColor"))
        angle = math.atan2(direction[1], direction[0])
        tip = (origin[0] + math.cos(angle) * size, origin[1] + math.sin(angle) * size)
        wing = size * 0.6
        base1 = (
            tip[0] - math.cos(angle - math.pi * 0.8) * wing,
            tip[1] - math.sin(angle - math.pi * 0.8) * wing,
        )
        base2 = (
            tip[0] - math.cos(angle + math.pi * 0.8) * wing,
            tip[1] - math.sin(angle + math.pi * 0.8) * wing,
        )
        ctx.polygon([tip, base1, base2], color)


# =============================================================================
# CALIBRATION LINES
# =============================================================================

class CalibrationLineRenderer(Renderer):
    """
    Fixed reference segments from normalized endpoint pairs.

    data: {lines: [[[x1, y1], [x2, y2]], ...], showEndpoints?}
    """

    category = "calibration-line"

    @classmethod
    def default_options(cls) -> Dict[str, Any]:
        return {
            "strokeColor": "#00ff00",
            "lineWidth": 2,
            "opacity": 1.0,
            "showEndpoints": False,
            "endpointColor": "#ff0000",
            "endpointRadius": 3,
        }

    @staticmethod
    def _segments(lines: Any) -> List[Tuple[Sequence[float], Sequence[float]]]:
        segments = []
        if not isinstance(lines, (list, tuple)):
            return segments
        for line in lines:
            if isinstance(line, (list, tuple)) and len(line) == 2:
                start, end = line
                if isinstance(start, (list, tuple, Mapping)) and isinstance(end, (list, tuple, Mapping)):
                    segments.append((start, end))
        return segments

    def draw(self, ctx: DrawingContext, annotation: Annotation, current_time_ms: float, rect: Rect):
        data = annotation.data
        segments = self._segments(data.get("lines"))
        if not segments:
            raise self.malformed(annotation, "lines")

        style = self.style_for(annotation)
        color = self.color(style, "strokeColor").fade(number_option(style, "opacity", 1.0))
        width = int(number_option(style, "lineWidth", 2))
        show_endpoints = flag_option(data, style, "showEndpoints", False)
        endpoint_color = self.color(style, "endpointColor")
        radius = number_option(style, "endpointRadius", 3)

        for start, end in segments:
            p1 = denormalize_point(start, rect)
            p2 = denormalize_point(end, rect)
            if not ctx.line(p1, p2, color, width):
                self.logger.debug(f"Skipping non-finite calibration segment {start} -> {end}")
                continue
            if show_endpoints:
                ctx.circle(p1, radius, endpoint_color, filled=True)
                ctx.circle(p2, radius, endpoint_color, filled=True)


# =============================================================================
# TELEMETRY STRIP
# =============================================================================

class TelemetryStripRenderer(Renderer):
    """
    Translucent panel along the bottom edge with time-series curves.

    data: {timesMs: [...], series: [{label, values: [...], color?}], rangeG?}

    Values are clamped to +/- rangeG. Only the first active annotation is
    drawn. Without usable series a fixed synthetic waveform is shown so the
    panel never disappears.
    """

    category = "telemetry-strip"

    SYNTHETIC_POINTS = 100
    SYNTHETIC_DURATION_MS = 10000.0

    @classmethod
    def default_options(cls) -> Dict[str, Any]:
        return {
            "opacity": 0.95,
            "backgroundColor": "#000000",
            "backgroundOpacity": 0.25,
            "borderColor": "#ffffff",
            "borderWidth": 1,
            "gridColor": "#ffffff",
            "gridOpacity": 0.15,
            "curveColors": ["#00ff88", "#ff4444", "#4fc3f7", "#ffd54f"],
            "timelineColor": "#ffc107",
            "textColor": "#ffffff",
            "fontSize": 16,
            "curveLineWidth": 2,
            "timelineWidth": 3,
            "cornerRadius": 8,
            "rangeG": 0.75,
            "widthFraction": 0.9,
            "heightFraction": 0.08,
            "bottomMargin": 20,
        }

    def render(self, ctx: DrawingContext, current_time_ms: float, rect: Rect) -> int:
        if not self.visible:
            return 0
        active = self.active_at(current_time_ms)
        if not active:
            return 0
        try:
            self.draw(ctx, active[0], current_time_ms, rect)
            return 1
        except MalformedAnnotationError as e:
            self.logger.warning(f"Skipping annotation: {e}")
            return 0

    def panel_box(self, rect: Rect, style: Mapping[str, Any]) -> Box:
        width = rect.width * number_option(style, "widthFraction", 0.9)
        height = rect.height * number_option(style, "heightFraction", 0.08)
        x = (rect.width - width) / 2
        y = rect.height - height - number_option(style, "bottomMargin", 20)
        return Box(x, y, width, height)

    @classmethod
    def synthetic_series(cls) -> Tuple[List[float], List[List[float]]]:
        """Deterministic two-curve waveform over [0, 1]."""
        n = cls.SYNTHETIC_POINTS
        times = [i / n for i in range(n)]
        first = [math.sin(u * math.pi * 3) * 2.5 for u in times]
        second = [math.cos(u * math.pi * 2) * 1.8 for u in times]
        return times, [first, second]

    def _usable_series(self, annotation: Annotation) -> Optional[Tuple[List[float], List[Mapping[str, Any]]]]:
        data = annotation.data
        times = data.get("timesMs")
        series = data.get("series")
        if not isinstance(times, (list, tuple)) or len(times) < 2:
            return None
        for t in times:
            if isinstance(t, bool) or not isinstance(t, (int, float)) or not math.isfinite(t):
                raise self.malformed(annotation, "timesMs")
        if not isinstance(series, (list, tuple)) or not series:
            return None
        usable = [
            s for s in series
            if isinstance(s, Mapping)
            and isinstance(s.get("values"), (list, tuple))
            and len(s["values"]) == len(times)
        ]
        if not usable:
            return None
        return list(times), usable

    def draw(self, ctx: DrawingContext, annotation: Annotation, current_time_ms: float, rect: Rect):
        data = annotation.data
        found = self._usable_series(annotation)
        style = self.style_for(annotation)
        panel = self.panel_box(rect, style)
        range_g = number_option(data, "rangeG", number_option(style, "rangeG", 0.75)) or 0.75
        opacity = number_option(style, "opacity", 0.95)

        background = self.color(style, "backgroundColor")
        radius = number_option(style, "cornerRadius", 8)
        ctx.rounded_rectangle(panel, radius, background.with_alpha(number_option(style, "backgroundOpacity", 0.25)), filled=True)
        ctx.rounded_rectangle(panel, radius, self.color(style, "borderColor"), int(number_option(style, "borderWidth", 1)))
        self._draw_grid(ctx, panel, style)

        palette = [parse_color(c, WHITE) for c in style.get("curveColors") or ["#ffffff"]]
        if found is not None:
            times, series = found
            t_min, t_max = min(times), max(times)
            span = (t_max - t_min) or 1.0
            fractions = [(t - t_min) / span for t in times]
            for index, entry in enumerate(series):
                color = parse_color(entry.get("color"), palette[index % len(palette)])
                self._draw_curve(ctx, panel, fractions, entry["values"], range_g, color.fade(opacity), style)
            progress = (current_time_ms - t_min) / (t_max - t_min) if t_max > t_min else 0.0
        else:
            fractions, curves = self.synthetic_series()
            for index, values in enumerate(curves):
                self._draw_curve(ctx, panel, fractions, values, range_g, palette[index % len(palette)].fade(opacity), style)
            progress = current_time_ms / self.SYNTHETIC_DURATION_MS

        self._draw_labels(ctx, panel, palette, range_g, style)

        progress = max(0.0, min(1.0, progress))
        x = panel.x + progress * panel.width
        ctx.line((x, panel.y), (x, panel.y2), self.color(style, "timelineColor"), int(number_option(style, "timelineWidth", 3)))

    def _draw_grid(self, ctx: DrawingContext, panel: Box, style: Mapping[str, Any]):
        grid = self.color(style, "gridColor").with_alpha(number_option(style, "gridOpacity", 0.15))
        center_y = panel.y + panel.height / 2
        ctx.line((panel.x + 10, center_y), (panel.x2 - 10, center_y), grid)
        for i in range(1, 4):
            x = panel.x + panel.width * i / 4
            ctx.line((x, panel.y + 5), (x, panel.y2 - 5), grid)

    def _draw_curve(
        self,
        ctx: DrawingContext,
        panel: Box,
        fractions: Sequence[float],
        values: Sequence[Any],
        range_g: float,
        color: Color,
        style: Mapping[str, Any]
    ):
        scale = (panel.height / (2 * range_g)) * 0.6
        center_y = panel.y + panel.height / 2
        points = []
        for fraction, value in zip(fractions, values):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            clamped = max(-range_g, min(range_g, value))
            points.append((panel.x + fraction * panel.width, center_y - clamped * scale))
        ctx.polyline(points, color, int(number_option(style, "curveLineWidth", 2)))

    def _stroked_text(self, ctx: DrawingContext, text: str, origin: Tuple[float, float], color: Color, size: float):
        ctx.text(text, origin, BLACK, size, bold=True)
        ctx.text(text, origin, color, size)

    def _draw_labels(self, ctx: DrawingContext, panel: Box, palette: List[Color], range_g: float, style: Mapping[str, Any]):
        """Direction labels at the right corners, range labels at the left."""
        size = number_option(style, "fontSize", 16)
        text_color = self.color(style, "textColor")
        lateral = palette[0]
        driving = palette[1 % len(palette)]

        for words, baseline in (
            (("BKWD", "|", "LEFT"), panel.y - 5),
            (("FWD", "|", "RIGHT"), panel.y2 + 5 + measure_text("FWD", size)[1]),
        ):
            colors = (driving, text_color, lateral)
            widths = [measure_text(w, size)[0] for w in words]
            x = panel.x2 - sum(widths)
            for word, width, color in zip(words, widths, colors):
                self._stroked_text(ctx, word, (x, baseline), color, size)
                x += width

        top_label = f"+{range_g:g}G"
        bottom_label = f"-{range_g:g}G"
        self._stroked_text(ctx, top_label, (panel.x, panel.y - 5), text_color, size)
        self._stroked_text(
            ctx, bottom_label, (panel.x, panel.y2 + 5 + measure_text(bottom_label, size)[1]), text_color, size
        )


# =============================================================================
# TEXT
# =============================================================================

class TextRenderer(Renderer):
    """
    Word-wrapped text anchored at a normalized position.

    data: {text, position: {x, y}, anchor?, maxWidth?}

    maxWidth is a fraction of the target width.
    """

    category = "text"

    @classmethod
    def default_options(cls) -> Dict[str, Any]:
        return {
            "fontSize": 16,
            "color": "#ffffff",
            "backgroundColor": "rgba(0,0,0,0.7)",
            "borderColor": None,
            "padding": 8,
            "borderRadius": 4,
            "anchor": "top-left",
            "bold": False,
            "lineSpacing": 1.3,
        }

    def draw(self, ctx: DrawingContext, annotation: Annotation, current_time_ms: float, rect: Rect):
        data = annotation.data
        text = data.get("text")
        if not isinstance(text, str) or not text.strip():
            raise self.malformed(annotation, "text")
        position = data.get("position")
        if not isinstance(position, (Mapping, list, tuple)):
            raise self.malformed(annotation, "position")
        point = denormalize_point(position, rect)
        if not is_finite_point(point):
            raise self.malformed(annotation, "position")

        style = self.style_for(annotation)
        font_size = number_option(style, "fontSize", 16)
        bold = bool(style.get("bold"))
        max_width = data.get("maxWidth")
        pixel_width = None
        if isinstance(max_width, (int, float)) and not isinstance(max_width, bool) and max_width > 0:
            pixel_width = max_width * rect.width

        ctx.text_block(
            wrap_text(text, pixel_width, font_size, bold),
            point,
            self.color(style, "color"),
            background=parse_color(style.get("backgroundColor")),
            font_size=font_size,
            anchor=str(data.get("anchor") or style.get("anchor") or "top-left"),
            padding=int(number_option(style, "padding", 8)),
            line_spacing=number_option(style, "lineSpacing", 1.3),
            bold=bold,
            border=parse_color(style.get("borderColor")),
            corner_radius=number_option(style, "borderRadius", 4),
        )


# =============================================================================
# DEBUG CROSS
# =============================================================================

class DebugCrossRenderer(Renderer):
    """Diagonals and centre lines across the whole target; no data needed."""

    category = "debug-cross"

    @classmethod
    def default_options(cls) -> Dict[str, Any]:
        return {
            "strokeColor": "#ff00ff",
            "lineWidth": 2,
            "opacity": 0.8,
        }

    def render(self, ctx: DrawingContext, current_time_ms: float, rect: Rect) -> int:
        active = self.active_at(current_time_ms) if self.visible else []
        if not active:
            return 0
        self.draw(ctx, active[0], current_time_ms, rect)
        return 1

    def draw(self, ctx: DrawingContext, annotation: Annotation, current_time_ms: float, rect: Rect):
        style = self.style_for(annotation)
        color = self.color(style, "strokeColor").with_alpha(number_option(style, "opacity", 0.8))
        width = int(number_option(style, "lineWidth", 2))
        w, h = rect.width, rect.height
        ctx.line((0, 0), (w, h), color, width)
        ctx.line((w, 0), (0, h), color, width)
        ctx.line((0, h / 2), (w, h / 2), color, width)
        ctx.line((w / 2, 0), (w / 2, h), color, width)
