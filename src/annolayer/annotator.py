"""
AnnoLayer Annotator - Time-driven compositor

VideoAnnotator ties a playback source, an annotation manifest and a render
target together:
- One renderer per requested category, built once through the registry
- Renders on every position change, at most once per distinct millisecond
- Resizes the target to the video's natural size on geometry changes
- Isolates failures: a renderer that raises is logged, the others still draw

Per-frame pass:
    quantize time -> dedup -> visible? -> clear (+ source frame) ->
    renderers in order -> debug HUD
"""

import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .drawing import Canvas, Color, DrawingContext
from .errors import ConstructionError
from .geometry import Rect
from .manifest import AnnotationManifest
from .playback import PlaybackSource
from .registry import RendererRegistry, default_registry
from .renderers import Renderer


@dataclass(frozen=True)
class AnnotatorOptions:
    """
    Annotator switches.

    Attributes:
        debug_mode: Draw the debug HUD (FPS, time, renderer count, draw calls)
        copy_source_frame: Blit the current video frame under the annotations
        renderer_options: Per-category option overrides passed to renderers
    """
    debug_mode: bool = False
    copy_source_frame: bool = False
    renderer_options: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "AnnotatorOptions":
        """
        Build from {debugMode, copySourceFrame, rendererOptions}.

        snake_case keys are accepted too.

        Raises:
            ConstructionError: On a non-boolean switch
        """
        if raw is None:
            return cls()
        if isinstance(raw, AnnotatorOptions):
            return raw
        if not isinstance(raw, Mapping):
            raise ConstructionError(f"Annotator options must be a mapping, got {type(raw).__name__}")

        def switch(camel: str, snake: str) -> bool:
            value = raw.get(camel, raw.get(snake, False))
            if not isinstance(value, bool):
                raise ConstructionError(f"Option '{camel}' must be true or false, got {value!r}")
            return value

        renderer_options = raw.get("rendererOptions", raw.get("renderer_options")) or {}
        if not isinstance(renderer_options, Mapping):
            raise ConstructionError("Option 'rendererOptions' must be a mapping of category -> options")

        return cls(
            debug_mode=switch("debugMode", "debug_mode"),
            copy_source_frame=switch("copySourceFrame", "copy_source_frame"),
            renderer_options=dict(renderer_options),
        )


class DebugHud:
    """
    Frame-rate and draw-call readout in the top-left corner.

    FPS is averaged over the last 30 passes.
    """

    def __init__(self, history_size: int = 30):
        self._frame_times: List[float] = []
        self._history_size = history_size
        self._last_time = time.perf_counter()

    def update(self):
        now = time.perf_counter()
        self._frame_times.append(now - self._last_time)
        self._last_time = now
        if len(self._frame_times) > self._history_size:
            self._frame_times.pop(0)

    def get_fps(self) -> float:
        if not self._frame_times:
            return 0.0
        avg_frame_time = sum(self._frame_times) / len(self._frame_times)
        return 1.0 / avg_frame_time if avg_frame_time > 0 else 0.0

    def draw(self, ctx: DrawingContext, time_ms: int, renderer_count: int, draw_calls: int):
        fps = self.get_fps()
        if fps >= 30:
            color = Color((0, 255, 0))
        elif fps >= 20:
            color = Color((0, 255, 255))
        else:
            color = Color((0, 0, 255))

        ctx.text_block(
            [
                f"FPS: {fps:.1f}",
                f"Time: {time_ms}ms",
                f"Renderers: {renderer_count}",
                f"Draw calls: {draw_calls}",
            ],
            (5, 5),
            color,
            background=Color((0, 0, 0), 0.6),
            font_size=16,
            padding=8,
        )


ManifestLike = Union[AnnotationManifest, Mapping[str, Any]]


class VideoAnnotator:
    """
    Keeps a render target in sync with a playback source.

    Usage:
        canvas = Canvas()
        playback = ManualPlayback(natural_size=(1920, 1080))
        annotator = VideoAnnotator(playback, manifest, canvas, ["detection", "trajectory"])
        playback.seek(1.0)
        frame = canvas.composite_onto(frame)
    """

    def __init__(
        self,
        playback: PlaybackSource,
        manifest: ManifestLike,
        target: Canvas,
        categories: Optional[Iterable[str]] = None,
        options: Union[AnnotatorOptions, Mapping[str, Any], None] = None,
        registry: Optional[RendererRegistry] = None
    ):
        """
        Build renderers and subscribe to the playback source.

        Args:
            playback: Source of time and geometry notifications
            manifest: AnnotationManifest or its plain dict form
            target: Canvas to draw into
            categories: Categories to render, in draw order (default: all in
                the manifest)
            options: AnnotatorOptions or {debugMode, copySourceFrame}
            registry: Category -> renderer table (default: built-ins)

        Raises:
            ConstructionError: On a missing playback source or target, or a
                malformed manifest
        """
        self.logger = logging.getLogger(__name__)

        if playback is None:
            raise ConstructionError("VideoAnnotator needs a playback source")
        if target is None or not isinstance(target, Canvas):
            raise ConstructionError("VideoAnnotator needs a Canvas render target")

        self.playback = playback
        self.target = target
        self.manifest = self._coerce_manifest(manifest)
        self.options = AnnotatorOptions.from_mapping(options)
        self.registry = registry if registry is not None else default_registry()

        self.ctx = DrawingContext(target)
        self._renderers: Dict[str, Renderer] = {}
        self._last_time_ms: Optional[int] = None
        self._visible = True
        self._closed = False
        self.last_pass_draw_calls = 0
        self.hud = DebugHud() if self.options.debug_mode else None

        if categories is None:
            categories = self.manifest.categories
        elif isinstance(categories, str):
            categories = [categories]
        for category in dict.fromkeys(categories):
            self._add_renderer(category)

        playback.add_position_listener(self._on_position)
        playback.add_geometry_listener(self._on_geometry)
        self.resize()

        self.logger.info(
            f"VideoAnnotator ready: {len(self._renderers)} renderer(s) "
            f"{list(self._renderers)} at {self.target.width}x{self.target.height}"
        )

    @staticmethod
    def _coerce_manifest(manifest: ManifestLike) -> AnnotationManifest:
        if isinstance(manifest, AnnotationManifest):
            return manifest
        if isinstance(manifest, Mapping) and "items" in manifest:
            return AnnotationManifest.from_dict(manifest)
        raise ConstructionError(
            "Expected an AnnotationManifest or a dict with 'items'; convert raw "
            "metadata with annolayer.extraction.convert_to_manifest() first"
        )

    def _add_renderer(self, category: str):
        if not isinstance(category, str) or not category:
            self.logger.warning(f"UnknownCategory: ignoring invalid category {category!r}")
            return
        options = self.options.renderer_options.get(category)
        renderer = self.registry.create(category, self.manifest.by_category(category), options)
        if renderer is None:
            self.logger.warning(f"UnknownCategory: no renderer registered for '{category}', skipping")
            return
        self._renderers[category] = renderer
        self.logger.debug(f"Created {renderer!r}")

    # ------------------------------------------------------------------
    # Playback notifications
    # ------------------------------------------------------------------

    def _on_position(self, source: PlaybackSource):
        self.render_frame()

    def _on_geometry(self, source: PlaybackSource):
        self.resize()

    def resize(self) -> bool:
        """
        Match the target buffer to the video's natural size.

        The display size is ignored: annotations are drawn at full
        resolution and scaled together with the video.

        Returns:
            True if the buffer size changed
        """
        width, height = self.playback.natural_size
        if width <= 0 or height <= 0:
            return False
        changed = self.target.resize(width, height)
        if changed:
            self._last_time_ms = None
            self.logger.info(f"Render target resized to {width}x{height}")
        return changed

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render_frame(self, force: bool = False) -> bool:
        """
        Run the per-frame pass for the playback's current time.

        Args:
            force: Render even if this millisecond was already rendered

        Returns:
            True if a pass ran
        """
        if self._closed:
            return False
        time_ms = int(round(self.playback.current_time * 1000))
        if not force and time_ms == self._last_time_ms:
            return False
        if not self._visible:
            return False
        self._last_time_ms = time_ms
        self._render_pass(time_ms)
        return True

    def _render_pass(self, time_ms: int):
        calls_before = self.ctx.draw_calls
        self.target.clear()

        if self.options.copy_source_frame:
            frame = self.playback.current_frame
            if frame is not None:
                self.target.blit_frame(frame)

        rect = Rect(self.target.width, self.target.height)
        for category, renderer in self._renderers.items():
            if not renderer.visible:
                continue
            try:
                renderer.render(self.ctx, time_ms, rect)
            except Exception:
                self.logger.exception(f"Renderer '{category}' failed at {time_ms}ms")

        if self.hud is not None:
            self.hud.update()
            visible = sum(1 for r in self._renderers.values() if r.visible)
            self.hud.draw(self.ctx, time_ms, visible, self.ctx.draw_calls - calls_before)

        self.last_pass_draw_calls = self.ctx.draw_calls - calls_before

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------

    def show(self):
        """Resume rendering and draw the current time immediately."""
        self._visible = True
        self.render_frame(force=True)

    def hide(self):
        """Stop rendering and clear the target. Renderers keep their data."""
        self._visible = False
        self._last_time_ms = None
        self.target.clear()

    def toggle(self) -> bool:
        if self._visible:
            self.hide()
        else:
            self.show()
        return self._visible

    def set_renderer_visible(self, category: str, visible: bool) -> bool:
        """
        Show or hide one category and redraw.

        Returns:
            False if no renderer exists for the category
        """
        renderer = self._renderers.get(category)
        if renderer is None:
            self.logger.warning(f"No renderer for '{category}'")
            return False
        if visible:
            renderer.show()
        else:
            renderer.hide()
        self.render_frame(force=True)
        return True

    @property
    def is_visible(self) -> bool:
        return self._visible

    # ------------------------------------------------------------------
    # Introspection / teardown
    # ------------------------------------------------------------------

    @property
    def renderers(self) -> Mapping[str, Renderer]:
        return MappingProxyType(self._renderers)

    @property
    def categories(self) -> List[str]:
        return list(self._renderers)

    @property
    def last_time_ms(self) -> Optional[int]:
        """Last rendered time (ms), None before the first pass."""
        return self._last_time_ms

    def close(self):
        """Unsubscribe from the playback source and drop all renderers."""
        if self._closed:
            return
        self.playback.remove_position_listener(self._on_position)
        self.playback.remove_geometry_listener(self._on_geometry)
        self._renderers.clear()
        self._closed = True
        self.logger.info("VideoAnnotator closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
