"""
AnnoLayer Manifest - Annotation records and their versioned container

An Annotation is a time-windowed, categorized overlay record with an opaque
per-category payload. The AnnotationManifest groups annotations by category
and round-trips to the plain nested structure produced by the extraction
pipeline:

    {
        "version": "1.0",
        "metadata": {...},
        "items": {
            "detection": [
                {"category": "detection", "startTimeMs": 1000,
                 "durationMs": 4000, "data": {"bbox": {...}}}
            ]
        }
    }
"""

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .errors import ConstructionError

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "1.0"

# Effectively "until the end of the video"
FULL_VIDEO_MS = 999999999


def _as_time(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConstructionError(f"Annotation {name} must be a number, got {value!r}")
    if math.isnan(value):
        raise ConstructionError(f"Annotation {name} must not be NaN")
    return value


@dataclass(frozen=True)
class Annotation:
    """
    A single overlay record.

    Attributes:
        category: Renderer category this record is routed to (non-empty)
        start_time_ms: Start of the visibility window (video time, ms)
        duration_ms: Length of the visibility window (ms, >= 0)
        data: Category-specific payload; per-annotation style overrides
            live under data["style"]
        id: Optional identifier, used by find/remove
    """
    category: str
    start_time_ms: float = 0.0
    duration_ms: float = 0.0
    data: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.category, str) or not self.category:
            raise ConstructionError("Annotation must have a category")
        _as_time(self.start_time_ms, "start_time_ms")
        _as_time(self.duration_ms, "duration_ms")
        if self.duration_ms < 0:
            raise ConstructionError(
                f"Annotation duration must be >= 0, got {self.duration_ms}"
            )
        if self.data is None:
            object.__setattr__(self, "data", {})
        elif not isinstance(self.data, Mapping):
            raise ConstructionError("Annotation data must be a mapping")

    @property
    def end_time_ms(self) -> float:
        return self.start_time_ms + self.duration_ms

    @property
    def style(self) -> Dict[str, Any]:
        """Per-annotation style override (empty if none)."""
        style = self.data.get("style")
        return style if isinstance(style, Mapping) else {}

    def is_active_at(self, time_ms: float) -> bool:
        """Closed window: start <= t <= start + duration."""
        return self.start_time_ms <= time_ms <= self.end_time_ms

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "category": self.category,
            "startTimeMs": self.start_time_ms,
            "durationMs": self.duration_ms,
            "data": self.data,
        }
        if self.id is not None:
            out["id"] = self.id
        return out

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], category: Optional[str] = None) -> "Annotation":
        """
        Build an annotation from its plain form.

        Also accepts the older `timeRange: {startMs, endMs}` shape; a missing
        endMs runs to the end of the video.

        Args:
            raw: Plain annotation mapping
            category: Fallback category when the record carries none

        Raises:
            ConstructionError: On a missing category or invalid times
        """
        if isinstance(raw, Annotation):
            return raw
        if not isinstance(raw, Mapping):
            raise ConstructionError(f"Annotation must be a mapping, got {type(raw).__name__}")

        cat = raw.get("category") or category
        if "startTimeMs" in raw or "durationMs" in raw:
            start = raw.get("startTimeMs", 0)
            duration = raw.get("durationMs", 0)
        elif isinstance(raw.get("timeRange"), Mapping):
            time_range = raw["timeRange"]
            start = time_range.get("startMs", 0)
            end = time_range.get("endMs")
            if not isinstance(start, (int, float)) or not isinstance(end, (int, float, type(None))):
                raise ConstructionError(f"Invalid timeRange: {dict(time_range)!r}")
            duration = FULL_VIDEO_MS if end is None else end - start
        else:
            start, duration = 0, 0

        return cls(
            category=cat,
            start_time_ms=start,
            duration_ms=duration,
            data=dict(raw.get("data") or {}),
            id=raw.get("id"),
        )


AnnotationLike = Union[Annotation, Mapping[str, Any]]


class AnnotationManifest:
    """
    Versioned collection of annotations grouped by category.

    The manifest is the owner's working copy. Once handed to a VideoAnnotator
    it is only read: the annotator snapshots each requested category into a
    tuple.

    Usage:
        manifest = AnnotationManifest.create({"videoId": "abc123"})
        manifest.add(Annotation("detection", 1000, 4000, {"bbox": {...}}))
        active = manifest.active_at(2500)
    """

    def __init__(
        self,
        version: str = MANIFEST_VERSION,
        metadata: Optional[Mapping[str, Any]] = None,
        items: Optional[Mapping[str, List[AnnotationLike]]] = None
    ):
        self.version = version or MANIFEST_VERSION
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self._items: Dict[str, List[Annotation]] = {}

        if items is not None:
            if not isinstance(items, Mapping):
                raise ConstructionError("Manifest items must be a mapping of category -> list")
            for key, annotations in items.items():
                if isinstance(annotations, (str, bytes)) or not hasattr(annotations, "__iter__"):
                    raise ConstructionError(f"Annotations for category '{key}' must be a list")
                for raw in annotations:
                    ann = Annotation.from_dict(raw, category=key)
                    if ann.category != key:
                        logger.warning(
                            f"Annotation filed under '{key}' has category '{ann.category}'; "
                            f"routing it by its own category"
                        )
                    self.add(ann)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, annotation: AnnotationLike) -> Annotation:
        """Add an annotation (object or plain mapping) under its category."""
        ann = Annotation.from_dict(annotation)
        self._items.setdefault(ann.category, []).append(ann)
        return ann

    def remove(self, target: Union[Annotation, str]) -> bool:
        """
        Remove an annotation by identity or by id.

        Empty category lists are dropped.

        Returns:
            True if something was removed
        """
        for category, annotations in self._items.items():
            for index, ann in enumerate(annotations):
                if ann is target or (isinstance(target, str) and ann.id == target):
                    del annotations[index]
                    if not annotations:
                        del self._items[category]
                    return True
        return False

    def clear(self):
        """Remove all annotations."""
        self._items.clear()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def items(self) -> Dict[str, Tuple[Annotation, ...]]:
        """Read-only view: category -> tuple of annotations."""
        return {cat: tuple(anns) for cat, anns in self._items.items()}

    @property
    def categories(self) -> List[str]:
        return list(self._items.keys())

    @property
    def count(self) -> int:
        return sum(len(anns) for anns in self._items.values())

    def counts_by_category(self) -> Dict[str, int]:
        return {cat: len(anns) for cat, anns in self._items.items()}

    def by_category(self, category: str) -> Tuple[Annotation, ...]:
        """All annotations of one category, in insertion order."""
        return tuple(self._items.get(category, ()))

    def active_at(self, time_ms: float) -> List[Annotation]:
        """All annotations whose window covers time_ms."""
        return [
            ann
            for anns in self._items.values()
            for ann in anns
            if ann.is_active_at(time_ms)
        ]

    def find_by_id(self, annotation_id: str) -> Optional[Annotation]:
        for anns in self._items.values():
            for ann in anns:
                if ann.id == annotation_id:
                    return ann
        return None

    def __len__(self) -> int:
        return self.count

    def __repr__(self) -> str:
        return f"AnnotationManifest(version={self.version!r}, counts={self.counts_by_category()})"

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "metadata": dict(self.metadata),
            "items": {
                cat: [ann.to_dict() for ann in anns]
                for cat, anns in self._items.items()
            },
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "AnnotationManifest":
        if not isinstance(raw, Mapping):
            raise ConstructionError(f"Manifest must be a mapping, got {type(raw).__name__}")
        version = raw.get("version", MANIFEST_VERSION)
        if not isinstance(version, str):
            raise ConstructionError(f"Manifest version must be a string, got {version!r}")
        return cls(
            version=version,
            metadata=raw.get("metadata") or {},
            items=raw.get("items") or {},
        )

    @classmethod
    def create(cls, metadata: Optional[Mapping[str, Any]] = None) -> "AnnotationManifest":
        """Empty manifest with metadata."""
        return cls(version=MANIFEST_VERSION, metadata=metadata)


def load_manifest(path: Union[str, Path]) -> AnnotationManifest:
    """
    Read a manifest JSON file.

    Raises:
        ConstructionError: If the file is not valid JSON or not a manifest
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConstructionError(f"Manifest {path} is not valid JSON: {e}") from e
    manifest = AnnotationManifest.from_dict(raw)
    logger.info(f"Loaded manifest {path}: {manifest.counts_by_category()}")
    return manifest


def dump_manifest(manifest: AnnotationManifest, path: Union[str, Path], indent: int = 2):
    """Write a manifest to a JSON file."""
    Path(path).write_text(json.dumps(manifest.to_dict(), indent=indent), encoding="utf-8")
