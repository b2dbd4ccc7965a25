"""
AnnoLayer Extraction - Session metadata to annotation manifest

Turns a raw video-session metadata record into an AnnotationManifest. One
extractor per category; each reads the part of the metadata it understands
and returns annotations in normalized coordinates and video-relative time.

This sits outside the rendering engine: VideoAnnotator never calls it.

Usage:
    manifest = convert_to_manifest(metadata, ["outward-bounding-boxes", "dsf"])
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ConstructionError
from .manifest import FULL_VIDEO_MS, Annotation, AnnotationManifest

logger = logging.getLogger(__name__)

CONVERTER_VERSION = "0.9.0"

# Outward camera frame the detector and lane calibration report in
OUTWARD_WIDTH = 1920
OUTWARD_HEIGHT = 1080

OUTWARD_CLASSES = (1, 2, 100, 200, 300, 20000)

CLASS_COLORS = {
    1: "#ff0000",
    2: "#00ff00",
    100: "#0000ff",
    200: "#ffff00",
    300: "#ff00ff",
    20000: "#00ffff",
}

Extractor = Callable[[Mapping[str, Any], Mapping[str, Any]], List[Annotation]]


def _observations(metadata: Mapping[str, Any]) -> Mapping[str, Any]:
    inference = metadata.get("inference_data") or {}
    return inference.get("observations_data") or {}


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


# =============================================================================
# EXTRACTORS
# =============================================================================

def extract_detections(metadata: Mapping[str, Any], options: Mapping[str, Any]) -> List[Annotation]:
    """
    Generic detections: metadata["detections"] = [{timestamp, bbox, confidence?, class?}].

    Detections without a bbox are skipped.
    """
    duration = options.get("detectionDurationMs", 5000)
    annotations = []
    for index, detection in enumerate(metadata.get("detections") or []):
        if not isinstance(detection, Mapping) or not isinstance(detection.get("bbox"), Mapping):
            logger.debug(f"Skipping detection {index} without bbox")
            continue
        annotations.append(Annotation(
            category="detection",
            start_time_ms=detection.get("timestamp") or 0,
            duration_ms=duration,
            data={
                "bbox": dict(detection["bbox"]),
                "confidence": detection.get("confidence", 0.95),
                "class": detection.get("class", "vehicle"),
            },
            id=f"detection-{index}",
        ))
    return annotations


def outward_detection_messages(metadata: Mapping[str, Any]) -> Dict[float, List[Mapping[str, Any]]]:
    """
    Per-timestamp outward detections of the tracked object classes.

    Reads carBoxTrackerListCompressed (or carBoxTrackerList): a list of
    [epoch_ms, [detection, ...]] pairs with pixel centre/size boxes.
    """
    observations = _observations(metadata)
    tracker_list = (
        observations.get("carBoxTrackerListCompressed")
        or observations.get("carBoxTrackerList")
        or []
    )
    messages: Dict[float, List[Mapping[str, Any]]] = {}
    for entry in tracker_list:
        if not isinstance(entry, (list, tuple)) or len(entry) < 2:
            continue
        timestamp, frame_detections = entry[0], entry[1]
        if not isinstance(timestamp, (int, float)):
            continue
        detections = [
            det for det in (frame_detections or [])
            if isinstance(det, Mapping) and det.get("objectClass") in OUTWARD_CLASSES
        ]
        messages.setdefault(timestamp, []).extend(detections)
    return messages


def extract_outward_bounding_boxes(metadata: Mapping[str, Any], options: Mapping[str, Any]) -> List[Annotation]:
    """
    Outward camera boxes, one short-lived annotation per detection.

    Times are relative to the first tracker timestamp. Boxes are converted
    from pixel centre/size to a normalized, clamped top-left box.
    """
    messages = outward_detection_messages(metadata)
    if not messages:
        return []
    video_start = min(messages)
    duration = options.get("boxDurationMs", 300)

    annotations = []
    for timestamp, detections in messages.items():
        for index, det in enumerate(detections):
            try:
                xctr, yctr = float(det["xctr"]), float(det["yctr"])
                width, height = float(det["width"]), float(det["height"])
            except (KeyError, TypeError, ValueError):
                logger.debug(f"Skipping outward detection without geometry at {timestamp}")
                continue
            object_class = det.get("objectClass")
            object_id = f"obj_{timestamp}_{index}"
            annotations.append(Annotation(
                category="outward-bounding-boxes",
                start_time_ms=timestamp - video_start,
                duration_ms=duration,
                data={
                    "bbox": {
                        "x": _clamp01((xctr - width / 2) / OUTWARD_WIDTH),
                        "y": _clamp01((yctr - height / 2) / OUTWARD_HEIGHT),
                        "width": _clamp01(width / OUTWARD_WIDTH),
                        "height": _clamp01(height / OUTWARD_HEIGHT),
                    },
                    "label": f"Class: {object_class}",
                    "class": object_class,
                    "trackId": object_id,
                    "style": {"borderColor": CLASS_COLORS.get(object_class, "#00ff00")},
                },
                id=object_id,
            ))
    return annotations


def lane_calibration_lines(metadata: Mapping[str, Any]) -> Optional[List[List[List[float]]]]:
    """
    Two lane lines from the lane calibration parameters.

    laneCalibrationParams = [vanishing_point, _, x_intercepts, image_height].
    Each line runs from its bottom-edge intercept to the vanishing point,
    rescaled to the canonical outward frame and normalized.
    """
    params = _observations(metadata).get("laneCalibrationParams")
    if not params:
        return None
    try:
        vanishing_point, _, x_intercepts, image_height = params[:4]
        scale = OUTWARD_HEIGHT / float(image_height)
        vp_x = float(vanishing_point[0]) * scale / OUTWARD_WIDTH
        vp_y = float(vanishing_point[1]) * scale / OUTWARD_HEIGHT
        intercepts = [float(x) * scale / OUTWARD_WIDTH for x in x_intercepts[:2]]
    except (TypeError, ValueError, IndexError, ZeroDivisionError) as e:
        logger.warning(f"Invalid laneCalibrationParams: {e}")
        return None
    return [[[x, 1.0], [vp_x, vp_y]] for x in intercepts]


def extract_calibration_lines(metadata: Mapping[str, Any], options: Mapping[str, Any]) -> List[Annotation]:
    lines = lane_calibration_lines(metadata)
    if not lines:
        return []
    return [Annotation(
        category=options.get("category", "dsf"),
        start_time_ms=0,
        duration_ms=FULL_VIDEO_MS,
        data={"lines": lines},
        id="lane-calibration",
    )]


def parse_accelerometer(sensor_metadata: Iterable[Any]) -> Optional[Tuple[List[float], List[List[float]]]]:
    """
    Parse "x y z epoch_ms" accelerometer strings.

    Returns:
        (epoch times, [x values, y values, z values]) or None if nothing parsed
    """
    times: List[float] = []
    axes: List[List[float]] = [[], [], []]
    for entry in sensor_metadata:
        if not isinstance(entry, Mapping) or not isinstance(entry.get("accelerometer"), str):
            continue
        parts = entry["accelerometer"].split()
        if len(parts) < 4:
            continue
        try:
            x, y, z = float(parts[0]), float(parts[1]), float(parts[2])
            epoch = int(float(parts[3]))
        except ValueError:
            continue
        if any(math.isnan(v) for v in (x, y, z)):
            continue
        for axis, value in zip(axes, (x, y, z)):
            axis.append(value)
        times.append(epoch)
    if not times:
        return None
    return times, axes


def extract_inertial_bar(metadata: Mapping[str, Any], options: Mapping[str, Any]) -> List[Annotation]:
    """
    Lateral (y axis) and driving (z axis) acceleration as a telemetry strip.

    Times become milliseconds since the first sample.
    """
    sensor_metadata = metadata.get("sensorMetaData")
    if not isinstance(sensor_metadata, list):
        return []
    parsed = parse_accelerometer(sensor_metadata)
    if parsed is None:
        return []
    epochs, (_, lateral, driving) = parsed
    start = min(epochs)
    return [Annotation(
        category="inertial-bar",
        start_time_ms=0,
        duration_ms=FULL_VIDEO_MS,
        data={
            "timesMs": [t - start for t in epochs],
            "series": [
                {"label": "lateral", "values": lateral},
                {"label": "driving", "values": driving},
            ],
            "rangeG": options.get("rangeG", 0.75),
        },
        id="inertial-bar",
    )]


def extract_header_banner(metadata: Mapping[str, Any], options: Mapping[str, Any]) -> List[Annotation]:
    """Session, device and alert summary across the top of the frame."""
    session = metadata.get("session_info") or {}
    device = metadata.get("device_info") or {}
    session_id = session.get("session_id", "Unknown Session")
    device_model = device.get("model", "Unknown Device")
    firmware = device.get("firmware_version", "Unknown")
    alert_id = metadata.get("alertId", "No Alert")
    alert_type = metadata.get("alert_type", "info")

    text = f"Session {session_id} | {device_model} (fw {firmware}) | Alert {alert_id} [{alert_type}]"
    return [Annotation(
        category="header-banner",
        start_time_ms=0,
        duration_ms=FULL_VIDEO_MS,
        data={
            "text": text,
            "position": {"x": 0.0, "y": 0.0},
            "anchor": "top-left",
            "maxWidth": 1.0,
            "sessionId": session_id,
            "startTime": session.get("start_time"),
            "style": {
                "backgroundColor": "rgba(0,0,0,0.7)",
                "color": "#ffffff",
                "fontSize": 16,
                "borderRadius": 4,
            },
        },
        id="header-banner",
    )]


def extract_alert_text(metadata: Mapping[str, Any], options: Mapping[str, Any]) -> List[Annotation]:
    """Short "Alert ID" caption shown between 1 s and 5 s."""
    return [Annotation(
        category="text",
        start_time_ms=1000,
        duration_ms=4000,
        data={
            "text": f"Alert ID: {metadata.get('alertId') or 'Unknown'}",
            "position": {"x": 0.02, "y": 0.02},
            "anchor": "top-left",
        },
        id="metadata-text",
    )]


def extract_debug_cross(metadata: Mapping[str, Any], options: Mapping[str, Any]) -> List[Annotation]:
    return [Annotation(
        category="debug-cross",
        start_time_ms=0,
        duration_ms=options.get("crossDurationMs", 30000),
        data={},
        id="debug-cross",
    )]


EXTRACTORS: Dict[str, Extractor] = {
    "detection": extract_detections,
    "outward-bounding-boxes": extract_outward_bounding_boxes,
    "dsf": extract_calibration_lines,
    "inertial-bar": extract_inertial_bar,
    "header-banner": extract_header_banner,
    "text": extract_alert_text,
    "debug-cross": extract_debug_cross,
}


# =============================================================================
# CONVERTER
# =============================================================================

def convert_to_manifest(
    metadata: Mapping[str, Any],
    categories: Optional[Iterable[str]] = None,
    options: Optional[Mapping[str, Any]] = None
) -> AnnotationManifest:
    """
    Run the extractors for the requested categories.

    A failing extractor is logged and its category left out; the rest of
    the manifest is still built.

    Args:
        metadata: Raw session metadata
        categories: Extractor names (default: all of EXTRACTORS)
        options: Passed to every extractor

    Returns:
        AnnotationManifest

    Raises:
        ConstructionError: If metadata is not a mapping
    """
    if not isinstance(metadata, Mapping):
        raise ConstructionError(f"Metadata must be a mapping, got {type(metadata).__name__}")
    options = options or {}
    categories = list(EXTRACTORS) if categories is None else list(categories)

    manifest = AnnotationManifest.create({
        "source": "metadata-converter",
        "version": CONVERTER_VERSION,
        "created": datetime.now(timezone.utc).isoformat(),
        "extractors": categories,
    })

    for category in categories:
        extractor = EXTRACTORS.get(category)
        if extractor is None:
            logger.warning(f"No extractor for category '{category}'")
            continue
        try:
            annotations = extractor(metadata, options)
        except Exception:
            logger.exception(f"Failed to extract '{category}' annotations")
            continue
        for annotation in annotations:
            manifest.add(annotation)
        logger.info(f"Extracted {len(annotations)} '{category}' annotation(s)")

    return manifest
