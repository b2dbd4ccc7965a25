"""
AnnoLayer Drawing - Render target and OpenCV drawing context

The render target is a BGRA uint8 numpy buffer with premultiplied alpha,
sized to the video's natural resolution. Renderers never touch it directly;
they go through a DrawingContext which:
- Parses web-style colours ("#ff8800", "rgba(255,0,0,0.5)")
- Blends translucent primitives with the overlay + addWeighted pattern
- Skips primitives whose coordinates are not finite
- Counts issued draw calls (used by the debug HUD and tests)

Compositing onto a BGR video frame:
    out = frame * (1 - alpha) + colour
"""

import logging
import math
import re
from typing import Any, Callable, Iterable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import cv2
import matplotlib.colors as mcolors

from .geometry import Box, Point

logger = logging.getLogger(__name__)

FONT = cv2.FONT_HERSHEY_SIMPLEX
# Hershey simplex glyphs are roughly 22px tall at scale 1.0
_FONT_PIXELS_PER_SCALE = 22.0

ANCHORS = (
    "top-left", "top-center", "top-right",
    "center-left", "center", "center-right",
    "bottom-left", "bottom-center", "bottom-right",
)


# =============================================================================
# COLOURS
# =============================================================================

class Color(NamedTuple):
    """BGR colour plus straight (non-premultiplied) alpha in [0, 1]."""
    bgr: Tuple[int, int, int]
    alpha: float = 1.0

    def with_alpha(self, alpha: float) -> "Color":
        return Color(self.bgr, max(0.0, min(1.0, alpha)))

    def fade(self, factor: float) -> "Color":
        return self.with_alpha(self.alpha * factor)


WHITE = Color((255, 255, 255))
BLACK = Color((0, 0, 0))

_RGBA_RE = re.compile(r"^rgba?\(\s*([^)]*)\)$", re.IGNORECASE)


def _channel(value: float) -> int:
    return int(max(0, min(255, round(value))))


def _rgba_to_color(rgba: Sequence[float]) -> Color:
    """matplotlib (r, g, b, a) floats in [0, 1] -> Color."""
    r, g, b, a = rgba
    return Color((_channel(b * 255), _channel(g * 255), _channel(r * 255)), max(0.0, min(1.0, float(a))))


def parse_color(value: Any, default: Optional[Color] = None) -> Optional[Color]:
    """
    Parse a colour value.

    Hex strings ("#rgb", "#rrggbb", "#rrggbbaa"), CSS/X11 names and
    matplotlib colour specs go through matplotlib.colors.to_rgba. The CSS
    functional forms "rgb(r,g,b)" / "rgba(r,g,b,a)" and (r, g, b[, a])
    sequences take 0-255 channels and a 0-1 alpha. Sequences are RGB like
    the string forms, not OpenCV BGR.

    Args:
        value: Colour to parse
        default: Returned when the value is missing or unparseable

    Returns:
        Color
    """
    if value is None:
        return default
    if isinstance(value, Color):
        return value
    try:
        if isinstance(value, str):
            text = value.strip()
            match = _RGBA_RE.match(text)
            if match:
                parts = [float(p) for p in match.group(1).split(",")]
            else:
                return _rgba_to_color(mcolors.to_rgba(text))
        else:
            parts = [float(p) for p in value]
        if len(parts) not in (3, 4):
            raise ValueError(value)
        scaled = [max(0.0, min(255.0, p)) / 255.0 for p in parts[:3]]
        alpha = max(0.0, min(1.0, parts[3])) if len(parts) == 4 else 1.0
        return _rgba_to_color(mcolors.to_rgba(scaled, alpha))
    except (TypeError, ValueError):
        logger.debug(f"Unparseable colour {value!r}, using default")
        return default


# =============================================================================
# TEXT
# =============================================================================

def font_scale_for(font_size: float) -> float:
    """OpenCV font scale for a pixel font size."""
    return max(0.1, float(font_size) / _FONT_PIXELS_PER_SCALE)


def font_thickness_for(font_size: float, bold: bool = False) -> int:
    base = max(1, int(round(float(font_size) / 14.0)))
    return base + 1 if bold else base


def measure_text(text: str, font_size: float = 14, bold: bool = False) -> Tuple[int, int, int]:
    """
    Measure a single line of text.

    Returns:
        (width, height, baseline) in pixels
    """
    (w, h), baseline = cv2.getTextSize(
        text, FONT, font_scale_for(font_size), font_thickness_for(font_size, bold)
    )
    return w, h, baseline


def wrap_text(text: str, max_width: Optional[float], font_size: float = 14, bold: bool = False) -> List[str]:
    """
    Greedy word wrap to a pixel width.

    Explicit newlines are kept. A single word wider than max_width gets its
    own line.
    """
    lines = []
    for paragraph in str(text).split("\n"):
        if not max_width or max_width <= 0:
            lines.append(paragraph)
            continue
        current = ""
        for word in paragraph.split():
            candidate = f"{current} {word}" if current else word
            if current and measure_text(candidate, font_size, bold)[0] > max_width:
                lines.append(current)
                current = word
            else:
                current = candidate
        lines.append(current)
    return lines


def anchor_top_left(anchor: str, x: float, y: float, width: float, height: float) -> Point:
    """
    Top-left corner of a width x height box anchored at (x, y).

    "top-left" puts the box's top-left corner on the point, "center" centres
    it, "bottom-right" puts its bottom-right corner there, and so on.
    """
    if anchor not in ANCHORS:
        anchor = "top-left"
    vertical, _, horizontal = anchor.partition("-")
    if anchor == "center":
        vertical, horizontal = "center", "center"

    if horizontal == "left":
        left = x
    elif horizontal == "right":
        left = x - width
    else:
        left = x - width / 2

    if vertical == "top":
        top = y
    elif vertical == "bottom":
        top = y - height
    else:
        top = y - height / 2

    return (left, top)


# =============================================================================
# CANVAS
# =============================================================================

class Canvas:
    """
    BGRA premultiplied-alpha render target.

    Attributes:
        buffer: (height, width, 4) uint8 array
        clear_count: Number of clear() calls so far
    """

    def __init__(self, width: int = 1, height: int = 1):
        if width <= 0 or height <= 0:
            raise ValueError(f"Canvas size must be positive, got {width}x{height}")
        self.buffer = np.zeros((int(height), int(width), 4), dtype=np.uint8)
        self.clear_count = 0
        self.logger = logging.getLogger(__name__)

    @property
    def width(self) -> int:
        return self.buffer.shape[1]

    @property
    def height(self) -> int:
        return self.buffer.shape[0]

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def resize(self, width: int, height: int) -> bool:
        """
        Reallocate the buffer at a new pixel size.

        Returns:
            True if the size changed
        """
        width, height = int(width), int(height)
        if width <= 0 or height <= 0:
            self.logger.warning(f"Ignoring invalid canvas size {width}x{height}")
            return False
        if (width, height) == self.size:
            return False
        self.buffer = np.zeros((height, width, 4), dtype=np.uint8)
        self.logger.debug(f"Canvas resized to {width}x{height}")
        return True

    def clear(self):
        """Reset every pixel to fully transparent."""
        self.buffer[:] = 0
        self.clear_count += 1

    def blit_frame(self, frame: np.ndarray):
        """Copy an opaque BGR frame into the canvas, scaling it to fit."""
        if frame is None:
            return
        if frame.ndim == 2:
            frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
        if frame.shape[1] != self.width or frame.shape[0] != self.height:
            frame = cv2.resize(frame, (self.width, self.height), interpolation=cv2.INTER_LINEAR)
        self.buffer[..., :3] = frame[..., :3]
        self.buffer[..., 3] = 255

    def composite_onto(self, frame: np.ndarray) -> np.ndarray:
        """
        Blend the canvas over a BGR frame.

        The canvas is scaled to the frame size if they differ.

        Returns:
            New BGR frame
        """
        layer = self.buffer
        h, w = frame.shape[:2]
        if layer.shape[1] != w or layer.shape[0] != h:
            layer = cv2.resize(layer, (w, h), interpolation=cv2.INTER_LINEAR)
        alpha = layer[..., 3:4].astype(np.float32) / 255.0
        out = frame[..., :3].astype(np.float32) * (1.0 - alpha) + layer[..., :3].astype(np.float32)
        return np.clip(out, 0, 255).astype(np.uint8)

    def to_bgr(self, background: Tuple[int, int, int] = (0, 0, 0)) -> np.ndarray:
        """Flatten onto a solid background colour."""
        bg = np.empty((self.height, self.width, 3), dtype=np.uint8)
        bg[:] = background
        return self.composite_onto(bg)


# =============================================================================
# DRAWING CONTEXT
# =============================================================================

def _finite(*values: float) -> bool:
    return all(v is not None and math.isfinite(v) for v in values)


def _ipt(p: Sequence[float]) -> Tuple[int, int]:
    return (int(round(p[0])), int(round(p[1])))


class DrawingContext:
    """
    Drawing API handed to renderers for one canvas.

    Every primitive takes a Color (alpha included). Primitives with
    non-finite coordinates are skipped and not counted.
    """

    def __init__(self, canvas: Canvas):
        self.canvas = canvas
        self.draw_calls = 0

    @property
    def width(self) -> int:
        return self.canvas.width

    @property
    def height(self) -> int:
        return self.canvas.height

    def reset_stats(self):
        self.draw_calls = 0

    def _paint(self, color: Color, draw: Callable[[np.ndarray, Tuple[int, int, int, int]], None]):
        """Run a cv2 primitive on the canvas with the colour's alpha."""
        self.draw_calls += 1
        if color.alpha <= 0.0:
            return
        target = self.canvas.buffer
        opaque = (color.bgr[0], color.bgr[1], color.bgr[2], 255)
        if color.alpha >= 1.0:
            draw(target, opaque)
            return
        overlay = target.copy()
        draw(overlay, opaque)
        cv2.addWeighted(overlay, color.alpha, target, 1.0 - color.alpha, 0, target)

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def line(self, p1: Point, p2: Point, color: Color, thickness: int = 1) -> bool:
        if not _finite(*p1, *p2):
            return False
        a, b = _ipt(p1), _ipt(p2)
        self._paint(color, lambda img, c: cv2.line(img, a, b, c, max(1, int(thickness)), cv2.LINE_AA))
        return True

    def polyline(
        self,
        points: Iterable[Point],
        color: Color,
        thickness: int = 1,
        closed: bool = False,
        dash: Optional[Tuple[float, float]] = None
    ) -> bool:
        """
        Stroke a polyline.

        Args:
            points: Pixel points
            color: Stroke colour
            thickness: Line width in pixels
            closed: Connect last point back to the first
            dash: Optional (on, off) dash lengths in pixels
        """
        pts = [p for p in points if _finite(*p)]
        if len(pts) < 2:
            return False
        if dash:
            if closed:
                pts = pts + [pts[0]]
            segments = dash_segments(pts, dash[0], dash[1])
            if not segments:
                return False
            arrays = [np.array([_ipt(a), _ipt(b)], dtype=np.int32) for a, b in segments]
            self._paint(color, lambda img, c: cv2.polylines(
                img, arrays, False, c, max(1, int(thickness)), cv2.LINE_AA))
            return True
        arr = np.array([_ipt(p) for p in pts], dtype=np.int32)
        self._paint(color, lambda img, c: cv2.polylines(
            img, [arr], closed, c, max(1, int(thickness)), cv2.LINE_AA))
        return True

    def rectangle(self, box: Box, color: Color, thickness: int = 1, filled: bool = False) -> bool:
        if not _finite(box.x, box.y, box.width, box.height):
            return False
        tl, br = _ipt((box.x, box.y)), _ipt((box.x2, box.y2))
        width = -1 if filled else max(1, int(thickness))
        self._paint(color, lambda img, c: cv2.rectangle(img, tl, br, c, width, cv2.LINE_AA))
        return True

    def rounded_rectangle(
        self,
        box: Box,
        radius: float,
        color: Color,
        thickness: int = 1,
        filled: bool = False
    ) -> bool:
        """Rectangle with circular corners (radius clamped to half the short side)."""
        if not _finite(box.x, box.y, box.width, box.height):
            return False
        r = int(max(0, min(radius, abs(box.width) / 2, abs(box.height) / 2)))
        if r == 0:
            return self.rectangle(box, color, thickness, filled)
        x1, y1 = _ipt((box.x, box.y))
        x2, y2 = _ipt((box.x2, box.y2))
        t = max(1, int(thickness))

        def draw(img, c):
            corners = (
                ((x1 + r, y1 + r), 180),
                ((x2 - r, y1 + r), 270),
                ((x2 - r, y2 - r), 0),
                ((x1 + r, y2 - r), 90),
            )
            if filled:
                cv2.rectangle(img, (x1 + r, y1), (x2 - r, y2), c, -1)
                cv2.rectangle(img, (x1, y1 + r), (x2, y2 - r), c, -1)
                for center, angle in corners:
                    cv2.ellipse(img, center, (r, r), angle, 0, 90, c, -1, cv2.LINE_AA)
            else:
                cv2.line(img, (x1 + r, y1), (x2 - r, y1), c, t, cv2.LINE_AA)
                cv2.line(img, (x2, y1 + r), (x2, y2 - r), c, t, cv2.LINE_AA)
                cv2.line(img, (x1 + r, y2), (x2 - r, y2), c, t, cv2.LINE_AA)
                cv2.line(img, (x1, y1 + r), (x1, y2 - r), c, t, cv2.LINE_AA)
                for center, angle in corners:
                    cv2.ellipse(img, center, (r, r), angle, 0, 90, c, t, cv2.LINE_AA)

        self._paint(color, draw)
        return True

    def circle(self, center: Point, radius: float, color: Color, thickness: int = 1, filled: bool = False) -> bool:
        if not _finite(*center, radius):
            return False
        c0 = _ipt(center)
        r = max(1, int(round(radius)))
        width = -1 if filled else max(1, int(thickness))
        self._paint(color, lambda img, c: cv2.circle(img, c0, r, c, width, cv2.LINE_AA))
        return True

    def polygon(self, points: Sequence[Point], color: Color) -> bool:
        """Filled polygon."""
        if len(points) < 3 or not all(_finite(*p) for p in points):
            return False
        arr = np.array([_ipt(p) for p in points], dtype=np.int32)
        self._paint(color, lambda img, c: cv2.fillPoly(img, [arr], c, cv2.LINE_AA))
        return True

    def text(
        self,
        text: str,
        origin: Point,
        color: Color,
        font_size: float = 14,
        bold: bool = False
    ) -> bool:
        """Draw one line of text with its baseline-left corner at origin."""
        if not text or not _finite(*origin):
            return False
        org = _ipt(origin)
        scale = font_scale_for(font_size)
        thickness = font_thickness_for(font_size, bold)
        self._paint(color, lambda img, c: cv2.putText(
            img, text, org, FONT, scale, c, thickness, cv2.LINE_AA))
        return True

    def text_block(
        self,
        lines: Sequence[str],
        position: Point,
        color: Color,
        background: Optional[Color] = None,
        font_size: float = 14,
        anchor: str = "top-left",
        padding: int = 6,
        line_spacing: float = 1.3,
        bold: bool = False,
        border: Optional[Color] = None,
        corner_radius: float = 0
    ) -> Optional[Box]:
        """
        Draw lines of text with a background sized to the measured text.

        Args:
            lines: Text lines, top to bottom
            position: Anchor point in pixels
            color: Text colour
            background: Optional background colour
            font_size: Pixel font size
            anchor: One of ANCHORS, relative to the whole block
            padding: Background padding in pixels
            line_spacing: Line height as a multiple of font size
            bold: Thicker strokes
            border: Optional background border colour
            corner_radius: Background corner radius

        Returns:
            The background box, or None if nothing was drawn
        """
        lines = [line for line in lines if line is not None]
        if not lines or not _finite(*position):
            return None

        sizes = [measure_text(line, font_size, bold) for line in lines]
        line_height = font_size * line_spacing
        text_w = max(w for w, _, _ in sizes)
        text_h = sizes[0][1] + line_height * (len(lines) - 1) + sizes[-1][2]

        box_w = text_w + 2 * padding
        box_h = text_h + 2 * padding
        left, top = anchor_top_left(anchor, position[0], position[1], box_w, box_h)
        box = Box(left, top, box_w, box_h)

        if background is not None:
            self.rounded_rectangle(box, corner_radius, background, filled=True)
        if border is not None:
            self.rounded_rectangle(box, corner_radius, border, thickness=1)

        first_h = sizes[0][1]
        for index, line in enumerate(lines):
            baseline_y = top + padding + first_h + index * line_height
            self.text(line, (left + padding, baseline_y), color, font_size, bold)
        return box


def dash_segments(points: Sequence[Point], on: float, off: float) -> List[Tuple[Point, Point]]:
    """
    Split a polyline into dash segments.

    The dash phase carries across vertices so the pattern is continuous.
    """
    if on <= 0:
        return []
    if off <= 0:
        return [(points[i], points[i + 1]) for i in range(len(points) - 1)]

    segments = []
    pattern = (on, off)
    index = 0
    remaining = on
    for i in range(len(points) - 1):
        (x0, y0), (x1, y1) = points[i], points[i + 1]
        length = math.hypot(x1 - x0, y1 - y0)
        pos = 0.0
        while pos < length:
            step = min(remaining, length - pos)
            if index == 0:
                a = pos / length
                b = (pos + step) / length
                segments.append((
                    (x0 + (x1 - x0) * a, y0 + (y1 - y0) * a),
                    (x0 + (x1 - x0) * b, y0 + (y1 - y0) * b),
                ))
            pos += step
            remaining -= step
            if remaining <= 1e-9:
                index = 1 - index
                remaining = pattern[index]
    return segments
