"""Uploader entry point."""

import argparse
import os
import sys
import time
from pathlib import Path
from typing import Optional

from common.logging_config import setup_logging
from common.types import Completed
from uploader.config import DEFAULT_CONFIG_PATH, Config
from uploader.models import ErrorEvent, HashProgressEvent, ProgressEvent, UploadEvent, UploadOptions
from uploader.session import upload_file
from uploader.utils import format_file_size, format_speed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chunkferry", description="Resumable chunked file upload")
    parser.add_argument("path", help="File to upload")
    parser.add_argument("--chunk-size", type=int, default=None, help="Chunk size in bytes")
    parser.add_argument("--concurrency", type=int, default=None, help="Maximum chunks in flight")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Config file path")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[list] = None) -> int:
    """Entry point for the uploader."""
    args = build_parser().parse_args(argv)
    log_level = 'DEBUG' if args.debug else os.getenv('LOG_LEVEL', 'INFO')

    logger = setup_logging('uploader', log_level=log_level)
    setup_logging('common', log_level=log_level)

    config = Config(args.config)
    defaults = config.get_upload_defaults()
    try:
        options = UploadOptions(
            chunk_size=args.chunk_size or defaults['chunk_size'],
            max_concurrency=args.concurrency or defaults['max_concurrency'],
            chunk_timeout=defaults['chunk_timeout'],
        )
    except ValueError as e:
        logger.error(f"Invalid upload options: {e}")
        return 2

    started = time.monotonic()
    baseline: list = []

    def report(event: UploadEvent) -> None:
        if isinstance(event, HashProgressEvent):
            logger.debug(f"Hashing {event.percent}%")
        elif isinstance(event, ProgressEvent):
            snapshot = event.snapshot
            if not baseline:
                baseline.append(snapshot.bytes_uploaded)
            elapsed = time.monotonic() - started
            sent = snapshot.bytes_uploaded - baseline[0]
            rate = format_speed(sent / elapsed) if elapsed > 0 else "-"
            logger.info(
                f"Progress {snapshot.percent}%: {format_file_size(snapshot.bytes_uploaded)} / "
                f"{format_file_size(snapshot.total_bytes)} ({rate})"
            )
        elif isinstance(event, ErrorEvent) and event.chunk_index is not None:
            logger.error(f"Chunk {event.chunk_index} could not be uploaded; rerun to resume")

    try:
        outcome = upload_file(args.path, options, config=config, on_event=report)
    except FileNotFoundError as e:
        logger.error(str(e))
        return 1

    if isinstance(outcome, Completed):
        print(outcome.resource_url)
        return 0
    return 1


if __name__ == "__main__":
    sys.exit(main())
