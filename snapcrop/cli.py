"""
Command line entry point: ``snapcrop -s 10.11.99.1 -o drawing``.
"""
from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from loguru import logger
from pydantic import ValidationError

from snapcrop.config import DEVICE_PRESETS, CaptureConfig, ExcludedRegion, load_config
from snapcrop.errors import ConfigError, ExtractError, SnapcropError
from snapcrop.log import setup_logging
from snapcrop.pipeline import CaptureResult, capture_raw, output_paths, process
from snapcrop.remote import SSHRemote, detect_device

parser = argparse.ArgumentParser(description="Screenshot and crop the reMarkable tablet")
parser.add_argument('-s',
                    help = "IP-address of the reMarkable tablet, default: 10.11.99.1",
                    dest = 'host',
                    type = str)
parser.add_argument('-u', '--user',
                    help = "SSH user, default: root",
                    type = str)
parser.add_argument('-k', '--key',
                    help = "Private key file used to log in",
                    type = str)
parser.add_argument('-o',
                    help = "Name of the output file, without the extension, default: a timestamp",
                    dest = 'name',
                    type = str)
parser.add_argument('-d', '--directory',
                    help = "Directory to save the output files",
                    default = ".",
                    type = Path)
parser.add_argument('-c', '--config',
                    help = "JSON configuration file",
                    type = Path)
parser.add_argument('--device',
                    help = "Device preset, default: detected from the tablet",
                    choices = ["auto", *DEVICE_PRESETS])
parser.add_argument('-inv',
                    help = "Whether or not to invert the colors of the cropped image.",
                    dest = 'invert',
                    action = 'store_true')
parser.add_argument('--transparent',
                    help = "Make the background of the cropped image transparent.",
                    action = 'store_true')
parser.add_argument('--threshold',
                    help = "Pixels darker than this count as ink (1-255)",
                    type = int)
parser.add_argument('--min-area',
                    help = "Smallest ink component kept, in pixels",
                    type = int)
parser.add_argument('--margin',
                    help = "Padding added around the detected content",
                    type = int)
parser.add_argument('--exclude',
                    help = "Extra UI region to ignore as x,y,width,height (repeatable)",
                    action = 'append',
                    default = [],
                    type = ExcludedRegion.parse)
parser.add_argument('--no-default-excludes',
                    help = "Do not ignore the configured UI regions",
                    action = 'store_true')
parser.add_argument('--debug-overlay',
                    help = "Also save an image with the detected ink regions drawn on it",
                    action = 'store_true')
parser.add_argument('--timeout',
                    help = "Seconds allowed for reading the framebuffer",
                    type = float)
parser.add_argument('--retries',
                    help = "How often to rerun the capture after a failed read",
                    default = 0,
                    type = int)
parser.add_argument('-v', '--verbose',
                    help = "Print debug output",
                    action = 'store_true')


def build_config(args: argparse.Namespace) -> CaptureConfig:
    """Merge the config file (or the defaults) with the command line flags."""
    config = load_config(args.config) if args.config else CaptureConfig()
    data = config.model_dump()

    for key, value in (("host", args.host), ("user", args.user), ("key_filename", args.key)):
        if value is not None:
            data["target"][key] = value

    detection = data["detection"]
    for key, value in (("threshold", args.threshold), ("min_area", args.min_area), ("margin", args.margin)):
        if value is not None:
            detection[key] = value
    if args.no_default_excludes:
        detection["excluded"] = []
    detection["excluded"] += [r.model_dump() for r in args.exclude]

    data["export"]["invert"] = data["export"]["invert"] or args.invert
    data["export"]["transparent"] = data["export"]["transparent"] or args.transparent
    if args.timeout is not None:
        data["read_timeout"] = args.timeout

    try:
        config = CaptureConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid settings: {e}") from e

    if args.device and args.device != "auto":
        config = config.with_preset(args.device)
    return config


def capture_once(config: CaptureConfig, device: Optional[str], args: argparse.Namespace) -> CaptureResult:
    full_path, cropped_path = output_paths(args.directory, args.name)
    overlay_path = full_path.with_name(full_path.stem + "_regions.png") if args.debug_overlay else None

    with SSHRemote.connect(config.target, lz4_path=config.lz4_path) as remote:
        if device == "auto":
            name = detect_device(remote)
            logger.info("Detected device {}", name)
            config = config.with_preset(name)
        region, raw = capture_raw(remote, config)

    return process(raw, region, config, full_path, cropped_path, overlay_path=overlay_path)


def main(argv: Optional[List[str]] = None) -> int:
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = build_config(args)
        # without a config file or an explicit preset, ask the tablet what it is
        device = args.device or (None if args.config else "auto")
        attempt = 0
        while True:
            try:
                result = capture_once(config, device, args)
                break
            except ExtractError as e:
                if attempt >= args.retries:
                    raise
                attempt += 1
                logger.warning("Capture failed ({}), retrying {}/{}", e, attempt, args.retries)
    except SnapcropError as e:
        logger.error("{}: {}", type(e).__name__, e)
        return e.exit_code

    if not result.box.has_content:
        logger.warning("No significant content found, the cropped image is the full screen")
    print(result.export.cropped_path)
    return 0
