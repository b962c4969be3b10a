"""
Command-line replay tool for PLANARLOCK.

Builds a reference model from a target image and replays a sequence of
frame images through a tracker session, logging the decision per frame.

Usage:
    planarlock target.png frame_000.png frame_001.png ...
    planarlock target.png frames/*.png --config tracking.json --verbose
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

import cv2
import numpy as np

from .errors import TrackingInputError
from .session import build_reference_model, create_session
from .utils import get_config, setup_logging, validate_config

LOGGER = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="PLANARLOCK - replay frames against a planar AR target",
    )
    parser.add_argument("reference", help="Reference (target) image")
    parser.add_argument("frames", nargs="+", help="Frame images, in playback order")
    parser.add_argument("--config", "-c", default=None, help="JSON configuration file")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between frames in the replay timeline (default: min frame interval)",
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for geometric verification")
    parser.add_argument(
        "--verbose", "-V",
        action="store_true",
        help="Enable verbose/debug logging",
    )
    return parser.parse_args(argv)


def load_rgba(path: str) -> Optional[np.ndarray]:
    """Read an image file as RGBA pixels, or ``None`` if unreadable."""
    image = cv2.imread(path, cv2.IMREAD_UNCHANGED)
    if image is None:
        return None
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)


def run(argv: Optional[List[str]] = None) -> int:
    """Run the replay and return a process exit code."""
    args = parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    config = get_config(args.config)
    if not validate_config(config):
        return 2

    target = load_rgba(args.reference)
    if target is None:
        LOGGER.error("Could not read reference image %s", args.reference)
        return 1

    try:
        model = build_reference_model(target, target.shape[1], target.shape[0], config)
    except TrackingInputError as e:
        LOGGER.error("Invalid reference image %s: %s", args.reference, e)
        return 1

    session = create_session(model, config=config, seed=args.seed)
    interval = args.interval
    if interval is None:
        interval = session.config.min_frame_interval

    tracked = 0
    for index, path in enumerate(args.frames):
        frame = load_rgba(path)
        if frame is None:
            LOGGER.warning("Skipping unreadable frame %s", path)
            continue
        result = session.process_frame(
            frame, frame.shape[1], frame.shape[0], timestamp=index * interval
        )
        tracked += int(result.is_tracking)
        LOGGER.info(
            "%s: tracking=%s confidence=%s inliers=%d quality=%.2f%s",
            path,
            result.is_tracking,
            result.confidence.value,
            len(result.inliers),
            result.info.match_quality,
            " (skipped)" if result.skipped else "",
        )

    session.close()
    LOGGER.info("Tracked in %d of %d frames", tracked, len(args.frames))
    return 0


def main():
    """Main entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
