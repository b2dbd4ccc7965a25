"""
AnnoLayer Config - Demo player settings

A JSON file with camelCase keys, all optional:

    {
        "video": "drive.mp4",
        "manifest": "annotations.json",
        "metadata": null,
        "categories": ["outward-bounding-boxes", "dsf"],
        "debugMode": false,
        "copySourceFrame": false,
        "loop": false,
        "logLevel": "INFO",
        "rendererOptions": {"detection": {"borderWidth": 3}}
    }

Command line flags override file values (DemoConfig.with_overrides).
"""

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import ConfigError

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class DemoConfig:
    """Settings for main_demo.py."""
    video: Optional[str] = None
    manifest: Optional[str] = None
    metadata: Optional[str] = None
    categories: Optional[Tuple[str, ...]] = None
    debug_mode: bool = False
    copy_source_frame: bool = False
    loop: bool = False
    log_level: str = "INFO"
    renderer_options: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "DemoConfig":
        """
        Validate and build from the JSON form.

        Raises:
            ConfigError: On a value of the wrong type or an unknown log level
        """
        if not isinstance(raw, Mapping):
            raise ConfigError(f"Config must be a JSON object, got {type(raw).__name__}")

        def text(key: str) -> Optional[str]:
            value = raw.get(key)
            if value is not None and not isinstance(value, str):
                raise ConfigError(f"'{key}' must be a string, got {value!r}")
            return value

        def flag(key: str) -> bool:
            value = raw.get(key, False)
            if not isinstance(value, bool):
                raise ConfigError(f"'{key}' must be true or false, got {value!r}")
            return value

        categories = raw.get("categories")
        if categories is not None:
            if not isinstance(categories, list) or not all(isinstance(c, str) for c in categories):
                raise ConfigError("'categories' must be a list of strings")
            categories = tuple(categories)

        log_level = raw.get("logLevel", "INFO")
        if not isinstance(log_level, str) or log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"'logLevel' must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}")

        renderer_options = raw.get("rendererOptions") or {}
        if not isinstance(renderer_options, Mapping) or not all(
            isinstance(v, Mapping) for v in renderer_options.values()
        ):
            raise ConfigError("'rendererOptions' must map category names to objects")

        return cls(
            video=text("video"),
            manifest=text("manifest"),
            metadata=text("metadata"),
            categories=categories,
            debug_mode=flag("debugMode"),
            copy_source_frame=flag("copySourceFrame"),
            loop=flag("loop"),
            log_level=log_level.upper(),
            renderer_options=dict(renderer_options),
        )

    def with_overrides(self, **overrides) -> "DemoConfig":
        """Copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "categories" in changes:
            changes["categories"] = tuple(changes["categories"])
        return replace(self, **changes)

    def annotator_options(self) -> Dict[str, Any]:
        """Options mapping for VideoAnnotator."""
        return {
            "debugMode": self.debug_mode,
            "copySourceFrame": self.copy_source_frame,
            "rendererOptions": dict(self.renderer_options),
        }


def load_config(path: Optional[str]) -> DemoConfig:
    """
    Load a DemoConfig from a JSON file.

    A missing file gives the defaults. So does a file that is not valid JSON,
    with a warning.

    Raises:
        ConfigError: If the JSON parses but holds values of the wrong type
    """
    if not path:
        return DemoConfig()
    config_path = Path(path).expanduser()
    if not config_path.is_file():
        logger.info(f"No config at {config_path}, using defaults")
        return DemoConfig()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read config {config_path}: {e}; using defaults")
        return DemoConfig()

    config = DemoConfig.from_dict(raw)
    logger.info(f"Loaded config from {config_path}")
    return config
