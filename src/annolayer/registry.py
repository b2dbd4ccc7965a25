"""
AnnoLayer Registry - Category name to renderer factory

The set of renderer variants is closed (RendererKind). A RendererRegistry is
an immutable mapping built once and passed by reference to every annotator;
categories are resolved once at annotator setup, never per frame.

Usage:
    registry = default_registry()
    renderer = registry.create("detection", annotations)
"""

from collections import abc
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, Type

from .manifest import Annotation
from .plots import ChartRenderer
from .renderers import (
    BoundingBoxRenderer,
    CalibrationLineRenderer,
    DebugCrossRenderer,
    Renderer,
    TelemetryStripRenderer,
    TextRenderer,
    TrajectoryRenderer,
)


class RendererKind(Enum):
    """Renderer variants."""
    BOUNDING_BOX = "bounding-box"
    TRAJECTORY = "trajectory"
    CALIBRATION_LINE = "calibration-line"
    TELEMETRY_STRIP = "telemetry-strip"
    TEXT = "text"
    CHART = "chart"
    DEBUG_CROSS = "debug-cross"


RENDERER_CLASSES: Mapping[RendererKind, Type[Renderer]] = MappingProxyType({
    RendererKind.BOUNDING_BOX: BoundingBoxRenderer,
    RendererKind.TRAJECTORY: TrajectoryRenderer,
    RendererKind.CALIBRATION_LINE: CalibrationLineRenderer,
    RendererKind.TELEMETRY_STRIP: TelemetryStripRenderer,
    RendererKind.TEXT: TextRenderer,
    RendererKind.CHART: ChartRenderer,
    RendererKind.DEBUG_CROSS: DebugCrossRenderer,
})

# Category names as they appear in manifests, including the names used by the
# metadata extraction pipeline.
DEFAULT_CATEGORIES: Mapping[str, RendererKind] = MappingProxyType({
    "detection": RendererKind.BOUNDING_BOX,
    "outward-bounding-boxes": RendererKind.BOUNDING_BOX,
    "trajectory": RendererKind.TRAJECTORY,
    "calibration-line": RendererKind.CALIBRATION_LINE,
    "dsf": RendererKind.CALIBRATION_LINE,
    "telemetry-strip": RendererKind.TELEMETRY_STRIP,
    "inertial-bar": RendererKind.TELEMETRY_STRIP,
    "text": RendererKind.TEXT,
    "header-banner": RendererKind.TEXT,
    "chart": RendererKind.CHART,
    "graph": RendererKind.CHART,
    "debug-cross": RendererKind.DEBUG_CROSS,
})

RendererFactory = Callable[..., Renderer]


class RendererRegistry(abc.Mapping):
    """
    Read-only mapping: category name -> RendererKind.

    Each kind is built by a factory (the renderer class by default). Both
    tables are frozen at construction.
    """

    def __init__(
        self,
        categories: Optional[Mapping[str, RendererKind]] = None,
        factories: Optional[Mapping[RendererKind, RendererFactory]] = None
    ):
        self._categories = MappingProxyType(dict(categories if categories is not None else DEFAULT_CATEGORIES))
        self._factories = MappingProxyType(dict(factories if factories is not None else RENDERER_CLASSES))
        missing = {kind for kind in self._categories.values() if kind not in self._factories}
        if missing:
            raise ValueError(f"No factory for renderer kinds: {sorted(k.value for k in missing)}")

    def __getitem__(self, category: str) -> RendererKind:
        return self._categories[category]

    def __iter__(self):
        return iter(self._categories)

    def __len__(self) -> int:
        return len(self._categories)

    def resolve(self, category: str) -> Optional[RendererKind]:
        """Kind for a category, or None if it is not registered."""
        return self._categories.get(category)

    def factory(self, kind: RendererKind) -> RendererFactory:
        return self._factories[kind]

    def create(
        self,
        category: str,
        annotations: Iterable[Annotation] = (),
        options: Optional[Mapping[str, Any]] = None
    ) -> Optional[Renderer]:
        """
        Build the renderer for one category.

        Returns:
            Renderer bound to `category`, or None if the category is unknown
        """
        kind = self.resolve(category)
        if kind is None:
            return None
        return self._factories[kind](annotations, options, category=category)

    def with_category(self, category: str, kind: RendererKind) -> "RendererRegistry":
        """New registry with one more category name."""
        categories = dict(self._categories)
        categories[category] = kind
        return RendererRegistry(categories, self._factories)

    def kinds(self) -> Tuple[RendererKind, ...]:
        return tuple(dict.fromkeys(self._categories.values()))


_DEFAULT: Optional[RendererRegistry] = None


def default_registry() -> RendererRegistry:
    """Shared registry with every built-in category."""
    global _DEFAULT
    if _DEFAULT is None:
        _DEFAULT = RendererRegistry()
    return _DEFAULT


def describe(registry: Optional[RendererRegistry] = None) -> Dict[str, str]:
    """category -> renderer class name, for logs and --help output."""
    if registry is None:
        registry = default_registry()
    return {
        category: getattr(registry.factory(kind), "__name__", repr(registry.factory(kind)))
        for category, kind in registry.items()
    }
