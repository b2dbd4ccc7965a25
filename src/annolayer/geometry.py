"""
AnnoLayer Geometry - Coordinate conversion and path interpolation

Pure, stateless helpers shared by every renderer:
- Normalized [0, 1] coordinates -> pixel coordinates of the render target
- Linear and cubic-curve interpolation over timed waypoints
- Path sampling for stroking, using the same control points as the
  position query so the marker always sits on the drawn curve
- Direction estimate around a query time

Malformed input never raises here. A missing or non-numeric coordinate
becomes NaN and the drawing layer skips whatever it cannot place.
"""

import math
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

# Tangent scale for the curve control points
SMOOTHING_FACTOR = 0.2

# Half-width of the window used to estimate the travel direction
DIRECTION_WINDOW_MS = 500.0

LINEAR = "linear"
CURVE = "curve"
_CURVE_ALIASES = (CURVE, "bezier")

Point = Tuple[float, float]
PointLike = Union[Mapping[str, Any], Sequence[float]]


@dataclass(frozen=True)
class Rect:
    """Pixel size of the render target."""
    width: float
    height: float


@dataclass(frozen=True)
class Box:
    """Axis-aligned box (top-left corner plus size)."""
    x: float
    y: float
    width: float
    height: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Point:
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass(frozen=True)
class Waypoint:
    """A normalized position at a point in video time."""
    x: float
    y: float
    time_ms: float


def _num(value: Any) -> float:
    """Coerce to float, NaN for anything unusable."""
    if isinstance(value, bool) or value is None:
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _xy(point: Any) -> Point:
    if isinstance(point, Waypoint):
        return (point.x, point.y)
    if isinstance(point, Mapping):
        return (_num(point.get("x")), _num(point.get("y")))
    try:
        return (_num(point[0]), _num(point[1]))
    except (TypeError, IndexError, KeyError):
        return (math.nan, math.nan)


def is_finite_point(point: Point) -> bool:
    return math.isfinite(point[0]) and math.isfinite(point[1])


# =============================================================================
# NORMALIZED -> PIXEL
# =============================================================================

def denormalize_point(point: PointLike, rect: Rect) -> Point:
    """
    Scale a normalized point to pixel coordinates.

    Args:
        point: {"x", "y"} mapping or (x, y) sequence in [0, 1]
        rect: Render target size

    Returns:
        (px, py); components are NaN where the input was missing
    """
    x, y = _xy(point)
    return (x * rect.width, y * rect.height)


def denormalize_bounding_box(box: Any, rect: Rect) -> Box:
    """
    Scale a normalized {x, y, width, height} box to pixels.

    Sequences in (x, y, width, height) order are accepted too.
    """
    if isinstance(box, Mapping):
        x, y = _num(box.get("x")), _num(box.get("y"))
        w, h = _num(box.get("width")), _num(box.get("height"))
    else:
        try:
            x, y, w, h = (_num(v) for v in box)
        except (TypeError, ValueError):
            x = y = w = h = math.nan
    return Box(x * rect.width, y * rect.height, w * rect.width, h * rect.height)


# =============================================================================
# WAYPOINTS
# =============================================================================

def parse_waypoints(points: Any) -> List[Waypoint]:
    """
    Read a list of {x, y, timeMs} mappings.

    Entries without a usable timeMs are dropped. Order is kept as given.
    """
    result = []
    if not isinstance(points, (list, tuple)):
        return result
    for point in points:
        if isinstance(point, Waypoint):
            result.append(point)
            continue
        if not isinstance(point, Mapping):
            continue
        t = _num(point.get("timeMs"))
        if math.isnan(t):
            continue
        x, y = _xy(point)
        result.append(Waypoint(x, y, t))
    return result


def normalize_mode(mode: Optional[str]) -> str:
    """Map an interpolation name to LINEAR or CURVE."""
    if isinstance(mode, str) and mode.lower() in _CURVE_ALIASES:
        return CURVE
    return LINEAR


def bezier_control_points(points: Sequence[PointLike], index: int) -> Tuple[Point, Point]:
    """
    Control points for the segment points[index] -> points[index + 1].

    C1 = Pi + k * (Pi+1 - Pi-1), or Pi at the first segment
    C2 = Pi+1 - k * (Pi+2 - Pi), or Pi+1 at the last segment
    """
    p0 = _xy(points[index])
    p1 = _xy(points[index + 1])

    c1 = p0
    if index > 0:
        prev = _xy(points[index - 1])
        c1 = (
            p0[0] + (p1[0] - prev[0]) * SMOOTHING_FACTOR,
            p0[1] + (p1[1] - prev[1]) * SMOOTHING_FACTOR,
        )

    c2 = p1
    if index < len(points) - 2:
        nxt = _xy(points[index + 2])
        c2 = (
            p1[0] - (nxt[0] - p0[0]) * SMOOTHING_FACTOR,
            p1[1] - (nxt[1] - p0[1]) * SMOOTHING_FACTOR,
        )

    return c1, c2


def cubic_bezier(p0: Point, c1: Point, c2: Point, p1: Point, t: float) -> Point:
    """B(t) = (1-t)^3 P0 + 3(1-t)^2 t C1 + 3(1-t) t^2 C2 + t^3 P1"""
    u = 1.0 - t
    a = u * u * u
    b = 3 * u * u * t
    c = 3 * u * t * t
    d = t * t * t
    return (
        a * p0[0] + b * c1[0] + c * c2[0] + d * p1[0],
        a * p0[1] + b * c1[1] + c * c2[1] + d * p1[1],
    )


def curve_segment_point(points: Sequence[PointLike], index: int, t: float) -> Point:
    """Point at local parameter t on curve segment `index`."""
    c1, c2 = bezier_control_points(points, index)
    return cubic_bezier(_xy(points[index]), c1, c2, _xy(points[index + 1]), t)


def _segment_t(p0: Waypoint, p1: Waypoint, time_ms: float) -> float:
    span = p1.time_ms - p0.time_ms
    if span == 0:
        return 0.0
    return (time_ms - p0.time_ms) / span


def interpolate_position(
    points: Sequence[Any],
    time_ms: float,
    mode: Optional[str] = LINEAR
) -> Optional[Point]:
    """
    Position along a waypoint path at a video time.

    Times before the earliest or after the latest waypoint clamp to the
    first or last endpoint. With fewer than three waypoints the curve mode falls back to
    linear.

    Args:
        points: Waypoints ({x, y, timeMs} mappings or Waypoint objects)
        time_ms: Query time
        mode: "linear" or "curve" ("bezier" is accepted)

    Returns:
        Normalized (x, y), or None if there are no waypoints or the time
        lands in no segment (non-monotonic timestamps)
    """
    waypoints = parse_waypoints(points)
    if not waypoints:
        return None
    if len(waypoints) == 1:
        return (waypoints[0].x, waypoints[0].y)

    curve = normalize_mode(mode) == CURVE and len(waypoints) >= 3

    for i in range(len(waypoints) - 1):
        p0, p1 = waypoints[i], waypoints[i + 1]
        if p0.time_ms <= time_ms <= p1.time_ms:
            t = _segment_t(p0, p1, time_ms)
            if curve:
                return curve_segment_point(waypoints, i, t)
            return (p0.x + (p1.x - p0.x) * t, p0.y + (p1.y - p0.y) * t)

    # Outside [earliest, latest] clamps; a gap inside it has no position
    times = [w.time_ms for w in waypoints]
    if time_ms < min(times):
        first = waypoints[0]
        return (first.x, first.y)
    if time_ms > max(times):
        last = waypoints[-1]
        return (last.x, last.y)
    return None


def sample_path(
    points: Sequence[Any],
    mode: Optional[str] = LINEAR,
    samples_per_segment: int = 16
) -> List[Point]:
    """
    Polyline approximation of the stroked path through the points.

    Two points always give a straight line. Curve segments are sampled with
    the same control points used by interpolate_position().
    """
    coords = list(points)
    if len(coords) < 2:
        return [_xy(p) for p in coords]
    if normalize_mode(mode) != CURVE or len(coords) < 3:
        return [_xy(p) for p in coords]

    steps = max(1, int(samples_per_segment))
    out = [_xy(coords[0])]
    for i in range(len(coords) - 1):
        for s in range(1, steps + 1):
            out.append(curve_segment_point(coords, i, s / steps))
    return out


def sample_timed_path(
    points: Sequence[Any],
    mode: Optional[str] = LINEAR,
    samples_per_segment: int = 16
) -> List[Waypoint]:
    """
    Like sample_path() but keeps a timestamp on every sample.

    Sample times are interpolated linearly inside each segment, matching the
    segment-local parameter used by interpolate_position(). This lets a
    renderer cut the history and future sub-paths out of the very curve the
    marker travels on.
    """
    waypoints = parse_waypoints(points)
    if len(waypoints) < 3 or normalize_mode(mode) != CURVE:
        return waypoints

    steps = max(1, int(samples_per_segment))
    out = [waypoints[0]]
    for i in range(len(waypoints) - 1):
        p0, p1 = waypoints[i], waypoints[i + 1]
        for s in range(1, steps + 1):
            t = s / steps
            x, y = curve_segment_point(waypoints, i, t)
            out.append(Waypoint(x, y, p0.time_ms + (p1.time_ms - p0.time_ms) * t))
    return out


def direction_at(
    points: Sequence[Any],
    time_ms: float,
    window_ms: float = DIRECTION_WINDOW_MS
) -> Optional[Point]:
    """
    Unit direction of travel around time_ms.

    Uses the first and last waypoints whose time lies within +/- window_ms.

    Returns:
        (dx, dy) unit vector, or None with fewer than two nearby points or
        zero displacement
    """
    nearby = [p for p in parse_waypoints(points) if abs(p.time_ms - time_ms) <= window_ms]
    if len(nearby) < 2:
        return None
    nearby.sort(key=lambda p: p.time_ms)
    dx = nearby[-1].x - nearby[0].x
    dy = nearby[-1].y - nearby[0].y
    length = math.hypot(dx, dy)
    if not length or math.isnan(length):
        return None
    return (dx / length, dy / length)
