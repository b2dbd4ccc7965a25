"""
AnnoLayer Errors - Exception taxonomy for the overlay engine

Only construction-time failures reach the caller. Everything raised while a
frame is being drawn is caught and logged by the renderer or the annotator.
"""

from typing import Optional


class AnnoLayerError(Exception):
    """Base class for all AnnoLayer errors."""


class ConstructionError(AnnoLayerError):
    """
    Raised synchronously when something cannot be built.

    Examples: an annotation without a category, a manifest that is not a
    mapping, or a missing render target.
    """


class MalformedAnnotationError(AnnoLayerError):
    """
    A renderer could not find a field it needs in one annotation.

    Raised inside renderers and caught by the renderer loop, which logs it
    and skips that single annotation.
    """

    def __init__(self, category: str, field: str, annotation_id: Optional[str] = None):
        self.category = category
        self.field = field
        self.annotation_id = annotation_id
        where = f" (id={annotation_id})" if annotation_id else ""
        super().__init__(f"{category} annotation{where} is missing or has an invalid '{field}'")


class ConfigError(AnnoLayerError):
    """Invalid configuration value."""
