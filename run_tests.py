#!/usr/bin/env python3
"""
Unit Tests for the AnnoLayer Overlay Engine

Covers the behaviours hosts rely on:
A. Visibility windows and coordinate scaling
B. Path interpolation (linear and curve)
C. Frame deduplication, resize and visibility in the annotator
D. Failure isolation (malformed records, failing renderers)
E. Manifest, registry, extraction and config plumbing

All tests use synthetic data; no video files are needed.
"""

import sys
import os
import json
import math
import tempfile

import numpy as np

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from annolayer.annotator import AnnotatorOptions, VideoAnnotator
from annolayer.config import DemoConfig, load_config
from annolayer.drawing import Canvas, Color, DrawingContext, parse_color, wrap_text, measure_text
from annolayer.errors import ConfigError, ConstructionError
from annolayer.extraction import convert_to_manifest
from annolayer.geometry import (
    Rect,
    bezier_control_points,
    curve_segment_point,
    denormalize_bounding_box,
    denormalize_point,
    direction_at,
    interpolate_position,
    sample_timed_path,
)
from annolayer.manifest import FULL_VIDEO_MS, Annotation, AnnotationManifest, dump_manifest, load_manifest
from annolayer.playback import ManualPlayback
from annolayer.plots import ChartRenderer, data_bounds
from annolayer.registry import RENDERER_CLASSES, RendererKind, RendererRegistry, default_registry, describe
from annolayer.renderers import (
    BoundingBoxRenderer,
    DebugCrossRenderer,
    Renderer,
    TelemetryStripRenderer,
    TextRenderer,
    TrajectoryRenderer,
)


def banner(title: str):
    print("\n" + "="*60)
    print(title)
    print("="*60)


def close(a, b, tol=1e-9):
    return math.isclose(a, b, rel_tol=tol, abs_tol=tol)


def make_manifest(*annotations) -> AnnotationManifest:
    manifest = AnnotationManifest.create({"source": "tests"})
    for annotation in annotations:
        manifest.add(annotation)
    return manifest


def cross_annotation(start=0, duration=10000) -> Annotation:
    return Annotation("debug-cross", start, duration, {}, id="cross")


class ExplodingRenderer(Renderer):
    """Raises from draw() for every active annotation."""

    category = "boom"

    def draw(self, ctx, annotation, current_time_ms, rect):
        raise RuntimeError("renderer bug")


class RecordingContext(DrawingContext):
    """DrawingContext that remembers the geometry of lines, polylines and circles."""

    def __init__(self, canvas):
        super().__init__(canvas)
        self.lines = []
        self.polylines = []
        self.circles = []

    def line(self, p1, p2, color, thickness=1):
        self.lines.append((p1, p2))
        return super().line(p1, p2, color, thickness)

    def polyline(self, points, color, thickness=1, closed=False, dash=None):
        points = list(points)
        self.polylines.append(points)
        return super().polyline(points, color, thickness, closed, dash)

    def circle(self, center, radius, color, thickness=1, filled=False):
        self.circles.append(center)
        return super().circle(center, radius, color, thickness, filled)


# =============================================================================
# A. WINDOWS AND COORDINATES
# =============================================================================

def test_active_window_is_closed():
    banner("TEST: Closed visibility window")
    ann = Annotation("detection", 1000, 4000, {"bbox": {"x": 0, "y": 0, "width": 0.1, "height": 0.1}})

    for t, expected in ((1000, True), (3000, True), (5000, True), (500, False), (5001, False), (999.9, False)):
        print(f"  t={t}ms active={ann.is_active_at(t)}")
        assert ann.is_active_at(t) == expected, f"Window check failed at {t}ms"

    canvas = Canvas(200, 100)
    ctx = DrawingContext(canvas)
    renderer = BoundingBoxRenderer([ann])
    assert renderer.render(ctx, 500, Rect(200, 100)) == 0
    assert ctx.draw_calls == 0, "Inactive annotation must not draw"
    assert renderer.render(ctx, 5000, Rect(200, 100)) == 1
    assert ctx.draw_calls > 0


def test_annotation_construction_errors():
    banner("TEST: Annotation construction errors")
    for bad in (
        lambda: Annotation(""),
        lambda: Annotation(None),
        lambda: Annotation("detection", "soon", 100),
        lambda: Annotation("detection", 0, -5),
        lambda: Annotation.from_dict({"startTimeMs": 0, "durationMs": 100}),
    ):
        try:
            bad()
        except ConstructionError as e:
            print(f"  ✓ rejected: {e}")
        else:
            raise AssertionError("Expected ConstructionError")


def test_denormalize_bounding_box():
    banner("TEST: Normalized box to pixels")
    box = denormalize_bounding_box({"x": 0.1, "y": 0.2, "width": 0.3, "height": 0.4}, Rect(1000, 500))
    print(f"  Box: {box}")
    assert close(box.x, 100) and close(box.y, 100)
    assert close(box.width, 300) and close(box.height, 200)
    assert close(box.x2, 400) and close(box.y2, 300)


def test_denormalize_identity_and_missing():
    banner("TEST: Unit rect is identity, missing values are NaN")
    for point in ((0.25, 0.75), (0.0, 1.0), (0.333, 0.5)):
        assert denormalize_point(point, Rect(1, 1)) == point
    box = denormalize_bounding_box({"x": 0.1, "y": 0.2, "width": 0.3, "height": 0.4}, Rect(1, 1))
    assert (box.x, box.y, box.width, box.height) == (0.1, 0.2, 0.3, 0.4)

    px, py = denormalize_point({"x": 0.5}, Rect(100, 100))
    assert px == 50 and math.isnan(py)
    box = denormalize_bounding_box({"x": 0.1, "y": 0.1, "width": 0.2}, Rect(100, 100))
    assert math.isnan(box.height)


# =============================================================================
# B. INTERPOLATION
# =============================================================================

PATH = [
    {"x": 0.0, "y": 0.0, "timeMs": 0},
    {"x": 1.0, "y": 0.0, "timeMs": 1000},
    {"x": 1.0, "y": 1.0, "timeMs": 2000},
]


def test_linear_trajectory_positions():
    banner("TEST: Linear trajectory positions")
    cases = {
        500: (0.5, 0.0),
        1500: (1.0, 0.5),
        -100: (0.0, 0.0),
        5000: (1.0, 1.0),
        1000: (1.0, 0.0),
    }
    for t, expected in cases.items():
        got = interpolate_position(PATH, t, "linear")
        print(f"  t={t}ms -> {got}")
        assert close(got[0], expected[0]) and close(got[1], expected[1])

    assert interpolate_position([], 100) is None
    assert interpolate_position([{"x": 0.3, "y": 0.4, "timeMs": 50}], 9999) == (0.3, 0.4)
    # Duplicate timestamps: zero-length span gives the segment start
    dup = [{"x": 0, "y": 0, "timeMs": 100}, {"x": 1, "y": 1, "timeMs": 100}]
    assert interpolate_position(dup, 100) == (0.0, 0.0)


def test_curve_hits_waypoints():
    banner("TEST: Curve segments start and end on waypoints")
    points = [(0.0, 0.0), (1.0, 0.0), (2.0, 1.0), (3.0, 1.0)]
    for i in range(len(points) - 1):
        assert curve_segment_point(points, i, 0.0) == points[i]
        assert curve_segment_point(points, i, 1.0) == points[i + 1]

    timed = [{"x": x, "y": y, "timeMs": i * 100} for i, (x, y) in enumerate(points)]
    for i, (x, y) in enumerate(points):
        got = interpolate_position(timed, i * 100, "curve")
        assert close(got[0], x) and close(got[1], y), f"Waypoint {i} missed: {got}"


def test_curve_control_points():
    banner("TEST: Curve control points")
    points = [(0.0, 0.0), (1.0, 0.0), (2.0, 1.0), (3.0, 1.0)]
    c1, c2 = bezier_control_points(points, 1)
    print(f"  Segment 1 controls: {c1}, {c2}")
    assert close(c1[0], 1.4) and close(c1[1], 0.2)
    assert close(c2[0], 1.6) and close(c2[1], 0.8)

    c1, _ = bezier_control_points(points, 0)
    assert c1 == points[0]
    _, c2 = bezier_control_points(points, 2)
    assert c2 == points[3]


def test_curve_with_two_points_is_linear():
    banner("TEST: Two-point curve equals linear")
    two = PATH[:2]
    for t in (0, 250, 500, 999):
        assert interpolate_position(two, t, "curve") == interpolate_position(two, t, "linear")
    assert interpolate_position(two, 250, "bezier") == interpolate_position(two, 250, "linear")


def test_timed_samples_and_direction():
    banner("TEST: Timed samples and direction")
    samples = sample_timed_path(PATH, "curve", 8)
    assert len(samples) == 1 + 2 * 8
    assert samples[0].time_ms == 0 and samples[-1].time_ms == 2000
    times = [s.time_ms for s in samples]
    assert times == sorted(times)

    direction = direction_at(PATH, 0, 1000)
    assert close(direction[0], 1.0) and close(direction[1], 0.0)
    assert direction_at(PATH, 0, 10) is None


def test_marker_follows_sampled_curve():
    banner("TEST: Curve marker lies on the sampled path")
    timed = [
        {"x": 0.0, "y": 0.0, "timeMs": 0},
        {"x": 0.4, "y": 0.1, "timeMs": 400},
        {"x": 0.6, "y": 0.7, "timeMs": 1000},
        {"x": 1.0, "y": 0.9, "timeMs": 1600},
    ]
    points = [(p["x"], p["y"]) for p in timed]
    # Inside segment 1 at a quarter of the way
    got = interpolate_position(timed, 550, "curve")
    expected = curve_segment_point(points, 1, 0.25)
    print(f"  t=550ms -> {got} (segment point {expected})")
    assert close(got[0], expected[0]) and close(got[1], expected[1])
    assert not close(got[1], 0.1 + (0.7 - 0.1) * 0.25), "Curve must differ from the chord here"

    for sample in sample_timed_path(timed, "curve", 6):
        marker = interpolate_position(timed, sample.time_ms, "curve")
        assert close(marker[0], sample.x, 1e-7) and close(marker[1], sample.y, 1e-7), \
            f"Sample at {sample.time_ms}ms off the marker path"


def test_non_monotonic_path_gap():
    banner("TEST: Non-monotonic timestamps")
    backwards = [
        {"x": 0.1, "y": 0.1, "timeMs": 2000},
        {"x": 0.5, "y": 0.5, "timeMs": 1000},
        {"x": 0.9, "y": 0.9, "timeMs": 0},
    ]
    assert interpolate_position(backwards, 1500) is None
    assert interpolate_position(backwards, 500, "curve") is None
    assert interpolate_position(backwards, 2500) == (0.9, 0.9)
    assert interpolate_position(backwards, -5) == (0.1, 0.1)

    ctx = DrawingContext(Canvas(100, 100))
    TrajectoryRenderer([Annotation("trajectory", 0, 3000, {"points": backwards})]).render(ctx, 1500, Rect(100, 100))
    assert ctx.draw_calls == 0, "No position means nothing is drawn"


# =============================================================================
# C. ANNOTATOR
# =============================================================================

def test_unknown_and_empty_categories_draw_nothing():
    banner("TEST: Unknown / empty categories")
    manifest = make_manifest(cross_annotation())
    playback = ManualPlayback(natural_size=(320, 240))
    canvas = Canvas()

    annotator = VideoAnnotator(playback, manifest, canvas, ["no-such-category", "trajectory"])
    print(f"  Renderers: {annotator.categories}")
    assert annotator.categories == ["trajectory"]
    playback.seek(1.0)
    assert annotator.last_pass_draw_calls == 0
    assert not canvas.buffer.any(), "Canvas must stay transparent"


def test_same_millisecond_renders_once():
    banner("TEST: Frame deduplication")
    playback = ManualPlayback(natural_size=(320, 240))
    canvas = Canvas()
    annotator = VideoAnnotator(playback, make_manifest(cross_annotation()), canvas, ["debug-cross"])

    playback.seek(1.0)
    assert canvas.clear_count == 1
    calls = annotator.ctx.draw_calls

    playback.seek(1.0)
    playback.seek(1.0004)
    print(f"  clears={canvas.clear_count}, draw calls={annotator.ctx.draw_calls}")
    assert canvas.clear_count == 1, "Same millisecond must not re-render"
    assert annotator.ctx.draw_calls == calls
    assert annotator.last_time_ms == 1000

    playback.seek(1.001)
    assert canvas.clear_count == 2
    assert annotator.last_time_ms == 1001


def test_resize_uses_natural_size():
    banner("TEST: Target follows natural size")
    playback = ManualPlayback(natural_size=(1920, 1080), display_size=(960, 540))
    canvas = Canvas()
    annotator = VideoAnnotator(playback, make_manifest(cross_annotation()), canvas)
    print(f"  Canvas: {canvas.size}")
    assert canvas.size == (1920, 1080)

    playback.seek(2.0)
    clears = canvas.clear_count
    playback.set_display_size(480, 270)
    assert canvas.size == (1920, 1080)

    playback.set_natural_size(1280, 720)
    assert canvas.size == (1280, 720)
    assert annotator.last_time_ms is None, "Resize must reset the watermark"
    playback.seek(2.0)
    assert canvas.clear_count == clears + 1


def test_bounding_box_pixels():
    banner("TEST: Bounding box lands on the right pixels")
    ann = Annotation("detection", 1000, 4000, {"bbox": {"x": 0.1, "y": 0.2, "width": 0.3, "height": 0.4}})
    playback = ManualPlayback(natural_size=(1000, 500))
    canvas = Canvas()
    VideoAnnotator(
        playback, make_manifest(ann), canvas, ["detection"],
        {"rendererOptions": {"detection": {"fillOpacity": 0, "showLabel": False}}},
    )
    playback.seek(1.5)

    top_edge = canvas.buffer[100, 250]
    print(f"  Top edge pixel BGRA: {top_edge}")
    assert top_edge[2] > 200 and top_edge[3] > 200, "Red border expected on the top edge"
    assert top_edge[0] < 50 and top_edge[1] < 50
    assert canvas.buffer[200, 250, 3] == 0, "Interior must stay empty without fill"
    assert canvas.buffer[20, 20, 3] == 0, "Outside the box must stay empty"


def test_hide_show_and_renderer_visibility():
    banner("TEST: Hide / show")
    playback = ManualPlayback(natural_size=(200, 200))
    canvas = Canvas()
    annotator = VideoAnnotator(playback, make_manifest(cross_annotation()), canvas, ["debug-cross"])

    playback.seek(1.0)
    assert canvas.buffer.any()

    annotator.hide()
    assert not annotator.is_visible
    assert not canvas.buffer.any(), "hide() must clear the target"
    clears = canvas.clear_count
    playback.seek(2.0)
    assert canvas.clear_count == clears, "Hidden annotator must not render"

    annotator.show()
    assert canvas.clear_count == clears + 1
    assert canvas.buffer.any()

    assert annotator.set_renderer_visible("debug-cross", False)
    assert annotator.last_pass_draw_calls == 0
    assert len(annotator.renderers["debug-cross"].annotations) == 1, "Hidden renderer keeps its data"
    assert not annotator.set_renderer_visible("missing", True)


def test_failing_renderer_is_isolated():
    banner("TEST: Renderer exception isolation")
    factories = dict(RENDERER_CLASSES)
    factories[RendererKind.TEXT] = ExplodingRenderer
    registry = RendererRegistry(
        {"boom": RendererKind.TEXT, "debug-cross": RendererKind.DEBUG_CROSS},
        factories,
    )
    manifest = make_manifest(Annotation("boom", 0, 10000, {}), cross_annotation())
    playback = ManualPlayback(natural_size=(200, 200))
    annotator = VideoAnnotator(playback, manifest, Canvas(), ["boom", "debug-cross"], registry=registry)

    playback.seek(1.0)
    print(f"  Draw calls after failure: {annotator.last_pass_draw_calls}")
    assert annotator.last_pass_draw_calls == 4, "Debug cross must still draw its four lines"


def test_debug_hud_adds_draw_calls():
    banner("TEST: Debug HUD")
    playback = ManualPlayback(natural_size=(400, 300))
    annotator = VideoAnnotator(
        playback, make_manifest(cross_annotation()), Canvas(), ["debug-cross"], {"debugMode": True}
    )
    playback.seek(1.0)
    assert annotator.last_pass_draw_calls > 4


def test_annotator_construction_errors():
    banner("TEST: Annotator construction errors")
    manifest = make_manifest(cross_annotation())
    playback = ManualPlayback(natural_size=(100, 100))
    for args in (
        (None, manifest, Canvas()),
        (playback, manifest, None),
        (playback, manifest, np.zeros((10, 10, 4), dtype=np.uint8)),
        (playback, {"inference_data": {}}, Canvas()),
    ):
        try:
            VideoAnnotator(*args)
        except ConstructionError as e:
            print(f"  ✓ rejected: {e}")
        else:
            raise AssertionError("Expected ConstructionError")

    try:
        AnnotatorOptions.from_mapping({"debugMode": "yes"})
    except ConstructionError:
        pass
    else:
        raise AssertionError("Non-boolean option must be rejected")


def test_close_unsubscribes():
    banner("TEST: close() unsubscribes")
    playback = ManualPlayback(natural_size=(100, 100))
    canvas = Canvas()
    with VideoAnnotator(playback, make_manifest(cross_annotation()), canvas) as annotator:
        assert playback.listener_count == 2
    assert playback.listener_count == 0
    clears = canvas.clear_count
    playback.seek(3.0)
    assert canvas.clear_count == clears
    assert annotator.categories == []


def test_dict_manifest_accepted():
    banner("TEST: Plain dict manifest")
    raw = {
        "version": "1.0",
        "items": {"debug-cross": [{"category": "debug-cross", "startTimeMs": 0, "durationMs": 100, "data": {}}]},
    }
    playback = ManualPlayback(natural_size=(100, 100))
    annotator = VideoAnnotator(playback, raw, Canvas())
    playback.seek(0.05)
    assert annotator.last_pass_draw_calls == 4


# =============================================================================
# D. RENDERERS
# =============================================================================

def test_malformed_annotation_is_skipped():
    banner("TEST: Malformed annotation skipped")
    bad = Annotation("detection", 0, 1000, {"label": "no box"}, id="bad")
    good = Annotation("detection", 0, 1000, {"bbox": {"x": 0.1, "y": 0.1, "width": 0.5, "height": 0.5}}, id="good")
    canvas = Canvas(100, 100)
    ctx = DrawingContext(canvas)
    renderer = BoundingBoxRenderer([bad, good], {"showLabel": False})

    drawn = renderer.render(ctx, 500, Rect(100, 100))
    print(f"  Drawn: {drawn}")
    assert drawn == 1

    assert TextRenderer([Annotation("text", 0, 100, {"position": {"x": 0, "y": 0}})]).render(ctx, 50, Rect(100, 100)) == 0
    assert ChartRenderer([Annotation("chart", 0, 100, {"series": []})]).render(ctx, 50, Rect(100, 100)) == 0


def test_renderer_filters_foreign_categories():
    banner("TEST: Renderer only keeps its own category")
    anns = [cross_annotation(), Annotation("detection", 0, 10, {})]
    renderer = DebugCrossRenderer(anns)
    assert len(renderer.annotations) == 1
    renderer = BoundingBoxRenderer(anns, category="detection")
    assert len(renderer.annotations) == 1


def test_style_precedence():
    banner("TEST: Style precedence")
    ann = Annotation("detection", 0, 100, {"bbox": {}, "style": {"borderColor": "#00ff00"}})
    renderer = BoundingBoxRenderer([ann], {"borderColor": "#0000ff", "borderWidth": 5})
    style = renderer.style_for(ann)
    print(f"  Resolved: borderColor={style['borderColor']} borderWidth={style['borderWidth']}")
    assert style["borderColor"] == "#00ff00"
    assert style["borderWidth"] == 5
    assert style["fontSize"] == 12
    assert style["lineWidth"] == 2


def test_trajectory_renderer_draws():
    banner("TEST: Trajectory renderer")
    ann = Annotation("trajectory", 0, 2000, {"points": PATH, "interpolation": "curve", "showFuture": True, "label": "car"})
    canvas = Canvas(200, 200)
    ctx = DrawingContext(canvas)
    renderer = TrajectoryRenderer([ann])
    assert renderer.render(ctx, 700, Rect(200, 200)) == 1
    assert ctx.draw_calls >= 5
    assert canvas.buffer[..., 3].any()

    empty = Annotation("trajectory", 0, 2000, {"points": []})
    assert TrajectoryRenderer([empty]).render(ctx, 700, Rect(200, 200)) == 0


def test_telemetry_strip_panel_and_fallback():
    banner("TEST: Telemetry strip")
    renderer = TelemetryStripRenderer([Annotation("telemetry-strip", 0, 10000, {})])
    panel = renderer.panel_box(Rect(1000, 500), renderer.options)
    print(f"  Panel: {panel}")
    assert close(panel.x, 50) and close(panel.width, 900)
    assert close(panel.height, 40) and close(panel.y, 440)

    ctx = DrawingContext(Canvas(1000, 500))
    assert renderer.render(ctx, 5000, Rect(1000, 500)) == 1, "Synthetic waveform expected without series"
    assert ctx.draw_calls > 0

    times, curves = TelemetryStripRenderer.synthetic_series()
    assert len(times) == 100 and len(curves) == 2


def test_trajectory_history_starts_at_window_edge():
    banner("TEST: Trajectory history window")
    ann = Annotation("trajectory", 0, 2000, {
        "points": PATH, "historyLengthMs": 500, "showDirection": False,
    })
    ctx = RecordingContext(Canvas(200, 200))
    assert TrajectoryRenderer([ann]).render(ctx, 1700, Rect(200, 200)) == 1
    full, trail = ctx.polylines
    print(f"  Trail: {trail}")
    # 1700 - 500 = 1200ms is a fifth of the way down the second segment
    assert close(trail[0][0], 200) and close(trail[0][1], 40)
    assert close(trail[-1][0], 200) and close(trail[-1][1], 140)
    assert (200.0, 0.0) not in trail, "Waypoint older than the window leaked into the trail"
    assert close(ctx.circles[-1][0], 200) and close(ctx.circles[-1][1], 140)

    # A window reaching back past the first waypoint starts at that waypoint
    ctx = RecordingContext(Canvas(200, 200))
    TrajectoryRenderer([ann]).render(ctx, 300, Rect(200, 200))
    trail = ctx.polylines[1]
    assert trail[0] == (0.0, 0.0) and close(trail[-1][0], 60)


def test_telemetry_cursor_tracks_series_times():
    banner("TEST: Telemetry cursor position")
    ann = Annotation("telemetry-strip", 0, 10000, {
        "timesMs": [1000, 3000],
        "series": [{"values": [0.1, -0.1]}],
    })
    renderer = TelemetryStripRenderer([ann])
    for t, expected_x in ((1500, 50 + 0.25 * 900), (1000, 50), (500, 50), (3000, 950), (8000, 950)):
        ctx = RecordingContext(Canvas(1000, 500))
        assert renderer.render(ctx, t, Rect(1000, 500)) == 1
        (x1, y1), (x2, y2) = ctx.lines[-1]
        print(f"  t={t}ms cursor x={x1}")
        assert close(x1, expected_x) and close(x2, expected_x)
        assert close(y1, 440) and close(y2, 480)


def test_telemetry_bad_times_rejected():
    banner("TEST: Telemetry with invalid timestamps")
    for times in ([0, None, 200], [0, float("nan"), 200], [0, True, 200], [0, "100", 200]):
        ann = Annotation("telemetry-strip", 0, 10000, {
            "timesMs": times,
            "series": [{"values": [0.0, 0.5, -0.5]}],
        })
        ctx = DrawingContext(Canvas(1000, 500))
        assert TelemetryStripRenderer([ann]).render(ctx, 100, Rect(1000, 500)) == 0, f"{times} accepted"
        assert ctx.draw_calls == 0, f"Panel partly drawn for {times}"


def test_chart_bounds_and_render():
    banner("TEST: Chart renderer")
    bounds = data_bounds([[(0, 0.0), (1000, 10.0)]])
    assert close(bounds.min_value, -1.0) and close(bounds.max_value, 11.0)
    assert bounds.min_time == 0 and bounds.max_time == 1000
    assert data_bounds([[]]) is None

    ann = Annotation("chart", 0, 5000, {
        "type": "bar",
        "position": {"x": 0.1, "y": 0.1, "width": 0.8, "height": 0.5},
        "series": [{"name": "speed", "points": [{"timeMs": 0, "value": 3}, {"timeMs": 1000, "value": 5}]}],
        "title": "Speed",
        "showLegend": True,
    })
    ctx = DrawingContext(Canvas(400, 300))
    assert ChartRenderer([ann]).render(ctx, 500, Rect(400, 300)) == 1
    assert ctx.draw_calls > 0


def test_text_wrapping():
    banner("TEST: Text wrapping")
    text = "one two three four five six seven eight"
    width = measure_text("one two three", 16)[0] + 1
    lines = wrap_text(text, width, 16)
    print(f"  Lines: {lines}")
    assert len(lines) > 1
    assert " ".join(lines) == text
    assert wrap_text("a\nb", None) == ["a", "b"]


def test_color_parsing():
    banner("TEST: Colour parsing")
    assert parse_color("#ff0000") == Color((0, 0, 255), 1.0)
    assert parse_color("#f00") == Color((0, 0, 255), 1.0)
    assert parse_color("rgba(0,255,0,0.5)") == Color((0, 255, 0), 0.5)
    assert parse_color("white") == Color((255, 255, 255), 1.0)
    assert parse_color("navy") == Color((128, 0, 0), 1.0)
    assert parse_color("rebeccapurple") == Color((153, 51, 102), 1.0)
    assert parse_color("tab:blue") == parse_color("#1f77b4")
    assert parse_color((255, 0, 0)) == Color((0, 0, 255), 1.0)
    translucent = parse_color("#ff000080")
    assert translucent.bgr == (0, 0, 255) and close(translucent.alpha, 128 / 255)
    assert parse_color("not-a-colour", Color((1, 2, 3))) == Color((1, 2, 3))
    assert parse_color(None) is None


def test_canvas_compositing():
    banner("TEST: Canvas compositing")
    frame = np.full((20, 30, 3), 77, dtype=np.uint8)
    canvas = Canvas(30, 20)
    assert np.array_equal(canvas.composite_onto(frame), frame), "Transparent canvas must not change the frame"

    ctx = DrawingContext(canvas)
    ctx.rectangle(denormalize_bounding_box((0, 0, 1, 1), Rect(30, 20)), Color((0, 0, 255)), filled=True)
    out = canvas.composite_onto(frame)
    assert tuple(out[10, 15]) == (0, 0, 255)

    assert canvas.resize(60, 40)
    assert not canvas.resize(60, 40)
    assert canvas.size == (60, 40)


# =============================================================================
# E. MANIFEST / REGISTRY / EXTRACTION / CONFIG
# =============================================================================

def test_manifest_round_trip():
    banner("TEST: Manifest round trip")
    manifest = make_manifest(
        Annotation("detection", 1000, 4000, {"bbox": {"x": 0.1, "y": 0.2, "width": 0.3, "height": 0.4}}, id="d1"),
        {"category": "text", "startTimeMs": 0, "durationMs": 500, "data": {"text": "hi", "position": [0, 0]}},
    )
    assert manifest.count == 2
    assert manifest.categories == ["detection", "text"]

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "manifest.json")
        dump_manifest(manifest, path)
        loaded = load_manifest(path)
    assert loaded.to_dict() == manifest.to_dict()
    assert loaded.find_by_id("d1").duration_ms == 4000

    assert [a.id for a in manifest.active_at(2000)] == ["d1"]
    assert manifest.remove("d1")
    assert "detection" not in manifest.categories
    assert not manifest.remove("d1")


def test_manifest_legacy_time_range():
    banner("TEST: Legacy timeRange shape")
    manifest = AnnotationManifest.from_dict({
        "items": {"text": [{"timeRange": {"startMs": 200, "endMs": 700}, "data": {"text": "x"}}]},
    })
    ann = manifest.by_category("text")[0]
    assert ann.category == "text"
    assert ann.start_time_ms == 200 and ann.duration_ms == 500

    open_ended = AnnotationManifest.from_dict({
        "items": {"text": [{"timeRange": {"startMs": 200}, "data": {"text": "y"}}]},
    })
    ann = open_ended.by_category("text")[0]
    assert ann.duration_ms == FULL_VIDEO_MS and math.isfinite(ann.end_time_ms)
    assert ann.is_active_at(3600 * 1000)
    text = json.dumps(open_ended.to_dict(), allow_nan=False)
    assert "Infinity" not in text


def test_load_manifest_invalid_json():
    banner("TEST: Invalid manifest JSON")
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "bad.json")
        with open(path, "w") as f:
            f.write("{not json")
        try:
            load_manifest(path)
        except ConstructionError:
            pass
        else:
            raise AssertionError("Expected ConstructionError")


def test_registry():
    banner("TEST: Renderer registry")
    registry = default_registry()
    assert registry.resolve("dsf") is RendererKind.CALIBRATION_LINE
    assert registry["graph"] is RendererKind.CHART
    assert registry.resolve("nope") is None
    assert registry.create("nope") is None

    renderer = registry.create("outward-bounding-boxes", [Annotation("outward-bounding-boxes", 0, 1, {})])
    assert isinstance(renderer, BoundingBoxRenderer)
    assert renderer.category == "outward-bounding-boxes"
    assert len(renderer.annotations) == 1

    try:
        registry["new"] = RendererKind.TEXT
    except TypeError:
        pass
    else:
        raise AssertionError("Registry must be read-only")

    extended = registry.with_category("banner", RendererKind.TEXT)
    assert "banner" in extended and "banner" not in registry
    assert describe()["chart"] == "ChartRenderer"
    assert set(registry.kinds()) == set(RendererKind)


SESSION_METADATA = {
    "alertId": "A-42",
    "session_info": {"session_id": "S-1", "start_time": "2024-01-01T00:00:00Z"},
    "device_info": {"model": "Cam-X", "firmware_version": "2.1"},
    "inference_data": {
        "observations_data": {
            "carBoxTrackerList": [
                [1000, [
                    {"objectClass": 1, "xctr": 960, "yctr": 540, "width": 192, "height": 108},
                    {"objectClass": 7, "xctr": 10, "yctr": 10, "width": 5, "height": 5},
                ]],
                [1500, [{"objectClass": 2, "xctr": 100, "yctr": 100, "width": 400, "height": 400}]],
            ],
            "laneCalibrationParams": [[960, 540], [0], [480, 1440], 1080],
        }
    },
    "sensorMetaData": [
        {"accelerometer": "0.1 0.2 0.3 5000"},
        {"accelerometer": "garbage"},
        {"accelerometer": "0.1 0.25 0.35 5100"},
    ],
}


def test_extraction_pipeline():
    banner("TEST: Metadata extraction")
    manifest = convert_to_manifest(
        SESSION_METADATA,
        ["outward-bounding-boxes", "dsf", "inertial-bar", "header-banner", "bogus"],
    )
    counts = manifest.counts_by_category()
    print(f"  Counts: {counts}")
    assert counts == {"outward-bounding-boxes": 2, "dsf": 1, "inertial-bar": 1, "header-banner": 1}
    assert manifest.metadata["source"] == "metadata-converter"

    first, second = manifest.by_category("outward-bounding-boxes")
    assert first.start_time_ms == 0 and first.duration_ms == 300
    assert close(first.data["bbox"]["x"], 0.45) and close(first.data["bbox"]["width"], 0.1)
    assert first.data["label"] == "Class: 1"
    assert second.start_time_ms == 500
    assert second.data["bbox"]["x"] == 0.0, "Boxes are clamped to the frame"

    lines = manifest.by_category("dsf")[0].data["lines"]
    assert lines == [[[0.25, 1.0], [0.5, 0.5]], [[0.75, 1.0], [0.5, 0.5]]]

    bar = manifest.by_category("inertial-bar")[0].data
    assert bar["timesMs"] == [0, 100]
    assert bar["series"][0]["values"] == [0.2, 0.25]

    playback = ManualPlayback(natural_size=(1920, 1080))
    annotator = VideoAnnotator(playback, manifest, Canvas(), ["dsf"])
    playback.seek(10.0)
    assert annotator.last_pass_draw_calls == 2


def test_extractor_failure_is_isolated():
    banner("TEST: Extractor failure isolation")
    metadata = dict(SESSION_METADATA, session_info="not-a-mapping")
    manifest = convert_to_manifest(metadata, ["header-banner", "debug-cross"])
    assert manifest.categories == ["debug-cross"]

    try:
        convert_to_manifest(["not", "metadata"])
    except ConstructionError:
        pass
    else:
        raise AssertionError("Expected ConstructionError")


def test_config_loading():
    banner("TEST: Config loading")
    assert load_config(None) == DemoConfig()
    assert load_config("/nonexistent/player.json") == DemoConfig()

    with tempfile.TemporaryDirectory() as tmp:
        broken = os.path.join(tmp, "broken.json")
        with open(broken, "w") as f:
            f.write("{oops")
        assert load_config(broken) == DemoConfig()

        good = os.path.join(tmp, "good.json")
        with open(good, "w") as f:
            json.dump({"video": "a.mp4", "categories": ["dsf"], "debugMode": True, "logLevel": "debug"}, f)
        config = load_config(good)
        assert config.video == "a.mp4" and config.categories == ("dsf",)
        assert config.debug_mode and config.log_level == "DEBUG"

        wrong = os.path.join(tmp, "wrong.json")
        with open(wrong, "w") as f:
            json.dump({"debugMode": "yes"}, f)
        try:
            load_config(wrong)
        except ConfigError:
            pass
        else:
            raise AssertionError("Expected ConfigError")

    merged = config.with_overrides(video=None, categories=["text"], loop=True)
    assert merged.video == "a.mp4" and merged.categories == ("text",) and merged.loop
    assert AnnotatorOptions.from_mapping(merged.annotator_options()).debug_mode


TESTS = [
    ("Closed visibility window", test_active_window_is_closed),
    ("Annotation construction errors", test_annotation_construction_errors),
    ("Denormalize bounding box", test_denormalize_bounding_box),
    ("Denormalize identity / missing", test_denormalize_identity_and_missing),
    ("Linear trajectory", test_linear_trajectory_positions),
    ("Curve hits waypoints", test_curve_hits_waypoints),
    ("Curve control points", test_curve_control_points),
    ("Two-point curve", test_curve_with_two_points_is_linear),
    ("Timed samples / direction", test_timed_samples_and_direction),
    ("Curve marker on sampled path", test_marker_follows_sampled_curve),
    ("Non-monotonic timestamps", test_non_monotonic_path_gap),
    ("Unknown / empty categories", test_unknown_and_empty_categories_draw_nothing),
    ("Frame deduplication", test_same_millisecond_renders_once),
    ("Resize", test_resize_uses_natural_size),
    ("Bounding box pixels", test_bounding_box_pixels),
    ("Hide / show", test_hide_show_and_renderer_visibility),
    ("Renderer isolation", test_failing_renderer_is_isolated),
    ("Debug HUD", test_debug_hud_adds_draw_calls),
    ("Annotator construction errors", test_annotator_construction_errors),
    ("Close", test_close_unsubscribes),
    ("Dict manifest", test_dict_manifest_accepted),
    ("Malformed skipped", test_malformed_annotation_is_skipped),
    ("Category filtering", test_renderer_filters_foreign_categories),
    ("Style precedence", test_style_precedence),
    ("Trajectory renderer", test_trajectory_renderer_draws),
    ("Trajectory history window", test_trajectory_history_starts_at_window_edge),
    ("Telemetry strip", test_telemetry_strip_panel_and_fallback),
    ("Telemetry cursor", test_telemetry_cursor_tracks_series_times),
    ("Telemetry invalid times", test_telemetry_bad_times_rejected),
    ("Chart renderer", test_chart_bounds_and_render),
    ("Text wrapping", test_text_wrapping),
    ("Colour parsing", test_color_parsing),
    ("Canvas compositing", test_canvas_compositing),
    ("Manifest round trip", test_manifest_round_trip),
    ("Legacy timeRange", test_manifest_legacy_time_range),
    ("Invalid manifest JSON", test_load_manifest_invalid_json),
    ("Registry", test_registry),
    ("Extraction", test_extraction_pipeline),
    ("Extractor isolation", test_extractor_failure_is_isolated),
    ("Config", test_config_loading),
]


def main():
    """Run all tests."""
    print("\n" + "="*60)
    print("ANNOLAYER ENGINE - UNIT TESTS")
    print("="*60)

    results = []
    for name, test in TESTS:
        try:
            test()
            results.append((name, True))
        except AssertionError as e:
            print(f"\n✗ {name} FAILED: {e}")
            results.append((name, False))
        except Exception as e:
            print(f"\n✗ {name} ERROR: {e}")
            import traceback
            traceback.print_exc()
            results.append((name, False))

    # Summary
    print("\n" + "="*60)
    print("TEST SUMMARY")
    print("="*60)
    for name, passed in results:
        status = "✓ PASSED" if passed else "✗ FAILED"
        print(f"  {name}: {status}")

    all_passed = all(result for _, result in results)
    print("\n" + ("="*60))
    if all_passed:
        print("✓ ALL TESTS PASSED")
    else:
        print("✗ SOME TESTS FAILED")
    print("="*60 + "\n")

    return 0 if all_passed else 1


if __name__ == "__main__":
    sys.exit(main())
