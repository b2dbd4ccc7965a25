"""
AnnoLayer - Time-synchronized annotation overlays for recorded video

Draws a manifest of timed annotations on top of a playing video, in step
with the playback clock.

Features:
- Category-based renderers (boxes, trajectories, lane lines, telemetry,
  text, charts) resolved through a registry
- Normalized coordinates scaled to the video's natural size
- Linear and smooth curve interpolation along timed paths
- At most one render pass per distinct millisecond
- Failure isolation per annotation and per renderer

Quick Start:
    from annolayer import Canvas, ManualPlayback, VideoAnnotator, load_manifest

    manifest = load_manifest("annotations.json")
    playback = ManualPlayback(natural_size=(1920, 1080))
    canvas = Canvas()
    annotator = VideoAnnotator(playback, manifest, canvas, ["detection", "trajectory"])

    # Host loop
    playback.set_frame(frame, seconds=t)
    output = canvas.composite_onto(frame)
"""

__version__ = "1.0.0"
__author__ = "AnnoLayer Team"

# Data model
from .errors import (
    AnnoLayerError,
    ConstructionError,
    MalformedAnnotationError,
    ConfigError,
)
from .manifest import (
    Annotation,
    AnnotationManifest,
    load_manifest,
    dump_manifest,
)

# Geometry
from .geometry import (
    Rect,
    Box,
    Waypoint,
    denormalize_point,
    denormalize_bounding_box,
    interpolate_position,
    bezier_control_points,
)

# Drawing
from .drawing import (
    Canvas,
    Color,
    DrawingContext,
    parse_color,
)

# Renderers
from .renderers import (
    Renderer,
    BoundingBoxRenderer,
    TrajectoryRenderer,
    CalibrationLineRenderer,
    TelemetryStripRenderer,
    TextRenderer,
    DebugCrossRenderer,
)
from .plots import ChartRenderer
from .registry import (
    RendererKind,
    RendererRegistry,
    default_registry,
)

# Compositor
from .playback import (
    PlaybackSource,
    ManualPlayback,
    VideoFilePlayback,
)
from .annotator import (
    AnnotatorOptions,
    VideoAnnotator,
)

# Outside the core
from .extraction import convert_to_manifest
from .config import DemoConfig, load_config

__all__ = [
    # Version
    "__version__",

    # Errors
    "AnnoLayerError",
    "ConstructionError",
    "MalformedAnnotationError",
    "ConfigError",

    # Data model
    "Annotation",
    "AnnotationManifest",
    "load_manifest",
    "dump_manifest",

    # Geometry
    "Rect",
    "Box",
    "Waypoint",
    "denormalize_point",
    "denormalize_bounding_box",
    "interpolate_position",
    "bezier_control_points",

    # Drawing
    "Canvas",
    "Color",
    "DrawingContext",
    "parse_color",

    # Renderers
    "Renderer",
    "BoundingBoxRenderer",
    "TrajectoryRenderer",
    "CalibrationLineRenderer",
    "TelemetryStripRenderer",
    "TextRenderer",
    "ChartRenderer",
    "DebugCrossRenderer",
    "RendererKind",
    "RendererRegistry",
    "default_registry",

    # Compositor
    "PlaybackSource",
    "ManualPlayback",
    "VideoFilePlayback",
    "AnnotatorOptions",
    "VideoAnnotator",

    # Extraction / config
    "convert_to_manifest",
    "DemoConfig",
    "load_config",
]
