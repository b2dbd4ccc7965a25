#!/usr/bin/env python3
"""
AnnoLayer - Annotation Player Demo

Plays a recorded video with its annotation overlay:
1. Opens a video file
2. Loads an annotation manifest, or builds one from session metadata
3. Renders the requested categories in step with the video clock
4. Composites the overlay onto each frame and shows it

Usage:
    python main_demo.py --video drive.mp4 --manifest annotations.json
    python main_demo.py --video drive.mp4 --metadata session.json \
        --categories outward-bounding-boxes,dsf,inertial-bar

Controls:
    - H: Show/hide the overlay
    - SPACE / P: Pause/resume
    - Q/ESC: Quit
"""

import sys
import json
import logging
import argparse
from typing import List, Optional

import cv2  # pyright: ignore[reportMissingImports]
import numpy as np  # pyright: ignore[reportMissingImports]

# Add src to path
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from annolayer.annotator import VideoAnnotator
from annolayer.config import DemoConfig, load_config, LOG_LEVELS
from annolayer.drawing import Canvas
from annolayer.errors import AnnoLayerError, ConfigError
from annolayer.extraction import convert_to_manifest
from annolayer.manifest import AnnotationManifest, load_manifest
from annolayer.playback import VideoFilePlayback
from annolayer.registry import describe


class AnnotationPlayer:
    """
    Video window with a synchronized annotation overlay.
    """

    WINDOW_NAME = "AnnoLayer Player"

    def __init__(self, config: DemoConfig, manifest: AnnotationManifest):
        """
        Args:
            config: Resolved settings (file values plus CLI overrides)
            manifest: Annotations to draw
        """
        self.config = config
        self.manifest = manifest

        # Components
        self.playback: Optional[VideoFilePlayback] = None
        self.canvas = Canvas()
        self.annotator: Optional[VideoAnnotator] = None

        # State
        self._running = False
        self._paused = False

        self.logger = logging.getLogger("AnnotationPlayer")

    def _compose(self, frame: np.ndarray) -> np.ndarray:
        if self.config.copy_source_frame and self.annotator.is_visible:
            output = self.canvas.to_bgr()
            if output.shape[:2] != frame.shape[:2]:
                output = cv2.resize(output, (frame.shape[1], frame.shape[0]))
            return output
        return self.canvas.composite_onto(frame)

    def _handle_key(self, key: int):
        if key == -1 or key == 255:
            return

        if key == ord('q') or key == 27:
            self._running = False
        elif key in (ord('h'), ord('H')):
            visible = self.annotator.toggle()
            self.logger.info(f"Overlay {'shown' if visible else 'hidden'}")
        elif key in (ord(' '), ord('p'), ord('P')):
            self._paused = not self._paused
            self.logger.info("Paused" if self._paused else "Resumed")

    def run(self):
        """Run the player until the video ends and the user quits."""
        self.logger.info("Starting AnnoLayer player...")

        source_path = Path(self.config.video).expanduser()
        if not source_path.is_file():
            self.logger.error(f"Video file not found: {source_path}")
            return

        self.playback = VideoFilePlayback(str(source_path), loop=self.config.loop)
        if not self.playback.open():
            self.logger.error("Failed to open video")
            return

        self.annotator = VideoAnnotator(
            self.playback,
            self.manifest,
            self.canvas,
            self.config.categories,
            self.config.annotator_options(),
        )

        cv2.namedWindow(self.WINDOW_NAME)

        self._running = True
        frame: Optional[np.ndarray] = None
        frozen_output: Optional[np.ndarray] = None

        self.logger.info(f"Player running with categories {self.annotator.categories}")

        try:
            while self._running:
                if frozen_output is not None:
                    cv2.imshow(self.WINDOW_NAME, frozen_output)
                    key = cv2.waitKey(30) & 0xFF
                    if key in (ord('q'), 27):
                        self._running = False
                    continue

                if self._paused and frame is not None:
                    cv2.imshow(self.WINDOW_NAME, self._compose(frame))
                    self._handle_key(cv2.waitKey(30) & 0xFF)
                    continue

                next_frame = self.playback.step()
                if next_frame is None:
                    if frame is None:
                        self.logger.error("No frames received from video")
                        break
                    frozen_output = self._compose(frame)
                    cv2.putText(
                        frozen_output,
                        "EOF - Press Q/ESC to quit",
                        (20, 40),
                        cv2.FONT_HERSHEY_SIMPLEX,
                        0.8,
                        (0, 255, 255),
                        2,
                        cv2.LINE_AA,
                    )
                    continue

                frame = next_frame
                cv2.imshow(self.WINDOW_NAME, self._compose(frame))
                self._handle_key(cv2.waitKey(self.playback.wait_time_ms()) & 0xFF)

        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self.annotator.close()
            self.playback.close()
            cv2.destroyAllWindows()
            self.logger.info("Player stopped.")


def build_manifest(config: DemoConfig) -> AnnotationManifest:
    """
    Load the manifest file, or convert session metadata when only that is given.

    Raises:
        ConfigError: If neither source is configured or the metadata is unreadable
    """
    if config.manifest:
        return load_manifest(config.manifest)
    if config.metadata:
        try:
            with open(config.metadata, "r", encoding="utf-8") as f:
                metadata = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read metadata {config.metadata}: {e}")
        return convert_to_manifest(metadata, config.categories)
    raise ConfigError("Either --manifest or --metadata is required")


def _split_categories(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [c.strip() for c in value.split(",") if c.strip()]


def main():
    """Main entry point."""
    categories_help = "\n".join(f"  {name:<24}{cls}" for name, cls in describe().items())
    parser = argparse.ArgumentParser(
        description="AnnoLayer Annotation Player",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Controls:
  H            Show/hide the overlay
  SPACE / P    Pause/resume
  Q/ESC        Quit

Categories:
{categories_help}

Examples:
  python main_demo.py --video drive.mp4 --manifest annotations.json
  python main_demo.py --video drive.mp4 --metadata session.json --categories dsf,inertial-bar
  python main_demo.py --config player.json --debug
        """
    )

    parser.add_argument(
        "--video", "-v",
        default=None,
        help="Video file to play"
    )
    parser.add_argument(
        "--manifest", "-m",
        default=None,
        help="Annotation manifest (JSON)"
    )
    parser.add_argument(
        "--metadata",
        default=None,
        help="Raw session metadata (JSON), converted to a manifest on load"
    )
    parser.add_argument(
        "--categories", "-c",
        default=None,
        help="Comma-separated categories to render, in draw order (default: all)"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="JSON config file; command line flags take precedence"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Show the debug HUD"
    )
    parser.add_argument(
        "--copy-frame",
        action="store_true",
        default=None,
        help="Copy the video frame into the overlay canvas before drawing"
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        default=None,
        help="Loop the video when it reaches the end"
    )
    parser.add_argument(
        "--log-level",
        choices=list(LOG_LEVELS),
        default=None,
        help="Logging level"
    )

    args = parser.parse_args()

    # Setup logging
    logging.basicConfig(
        level=getattr(logging, args.log_level or "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        config = load_config(args.config).with_overrides(
            video=args.video,
            manifest=args.manifest,
            metadata=args.metadata,
            categories=_split_categories(args.categories),
            debug_mode=args.debug,
            copy_source_frame=args.copy_frame,
            loop=args.loop,
            log_level=args.log_level,
        )
        logging.getLogger().setLevel(getattr(logging, config.log_level))
        if not config.video:
            raise ConfigError("--video is required")
        manifest = build_manifest(config)
    except (AnnoLayerError, OSError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    # Print banner
    print("\n" + "=" * 60)
    print("  AnnoLayer Annotation Player")
    print("=" * 60)
    print(f"  Video: {config.video}")
    print(f"  Annotations: {manifest.count} in {len(manifest.categories)} categories")
    print(f"  Categories: {', '.join(config.categories or manifest.categories) or '-'}")
    print(f"  Debug HUD: {'Enabled' if config.debug_mode else 'Disabled'}")
    print("=" * 60)
    print("\n  Press 'H' to hide/show the overlay, SPACE to pause.\n")

    player = AnnotationPlayer(config, manifest)
    player.run()


if __name__ == "__main__":
    main()
