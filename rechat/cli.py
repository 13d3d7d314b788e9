"""Command line entry point for the rechat tool."""
from __future__ import annotations

import argparse
import logging
import re
import sys
from datetime import timedelta
from pathlib import Path
from typing import List, Sequence
from urllib.parse import urlsplit

from .core import (
    CLIENT_ID_ENV,
    DEFAULT_USER_AGENT,
    DownloadOptions,
    default_download_path,
    download_file,
    process_file,
)
from .messages import format_offset

_VIDEO_ID_PATTERN = re.compile(r"^v?(\d+)$")
_VIDEO_PATH_PATTERN = re.compile(r"/videos?/v?(\d+)")


def _parse_video_id(value: str) -> str:
    value = value.strip()
    match = _VIDEO_ID_PATTERN.match(value)
    if match:
        return match.group(1)
    parsed = urlsplit(value if "://" in value else f"https://{value}")
    if parsed.netloc:
        match = _VIDEO_PATH_PATTERN.search(parsed.path)
        if match:
            return match.group(1)
    raise SystemExit(f"Unrecognized video id or URL: {value}")


def _is_glob(value: str) -> bool:
    return "*" in value or "?" in value


def _expand_inputs(pattern: str) -> List[Path]:
    if not _is_glob(pattern):
        return [Path(pattern)]
    path = Path(pattern)
    return sorted(p for p in path.parent.glob(path.name) if p.is_file())


def _print_progress(pages: int, offset: timedelta | None) -> None:
    status = f"\rDownloaded page {pages}"
    if offset is not None:
        status += f" (at {format_offset(offset, include_milliseconds=False)})"
    print(status, end="", flush=True)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--overwrite",
        action="store_true",
        help="Replace the output file if it already exists.",
    )
    common.add_argument(
        "--show-badges",
        action="store_true",
        help="Prefix user names with badge markers (* staff/admin, # broadcaster, @ moderator, + subscriber).",
    )
    common.add_argument(
        "--log-level",
        default="WARNING",
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
        help="Logging verbosity (default: WARNING).",
    )

    parser = argparse.ArgumentParser(
        description="Download replay chat for a video and convert it into a readable transcript."
    )
    subparsers = parser.add_subparsers(dest="mode", required=True)

    download = subparsers.add_parser(
        "download",
        parents=[common],
        help="Download the chat replay of a video as JSON.",
    )
    download.add_argument("video", help="Video id (e.g. 123456789) or video URL.")
    download.add_argument(
        "output",
        nargs="?",
        type=Path,
        default=None,
        help="Output JSON path (default: <video id>.json in the current directory).",
    )
    download.add_argument(
        "--process",
        action="store_true",
        help="Also write a readable .txt transcript next to the JSON file.",
    )
    download.add_argument(
        "--client-id",
        default="",
        help=f"Client-ID header sent with API requests (default: ${CLIENT_ID_ENV} or the public web client id).",
    )
    download.add_argument(
        "--user-agent",
        default=DEFAULT_USER_AGENT,
        help="Custom User-Agent header to send with requests.",
    )
    download.add_argument(
        "--retries",
        type=int,
        default=3,
        help="Attempts per page request before giving up (default: 3).",
    )
    download.add_argument(
        "--insecure",
        action="store_true",
        help="Disable TLS certificate verification (only if you trust the network).",
    )

    process = subparsers.add_parser(
        "process",
        parents=[common],
        help="Convert downloaded JSON chat files into readable text.",
    )
    process.add_argument("input", help="Input JSON path; may contain * or ? wildcards.")
    process.add_argument(
        "output",
        nargs="?",
        type=Path,
        default=None,
        help="Output text path (default: input path with a .txt extension).",
    )
    return parser.parse_args(argv)


def _run_download(args: argparse.Namespace) -> None:
    video_id = _parse_video_id(args.video)
    path = args.output or default_download_path(video_id)
    options = DownloadOptions(
        client_id=args.client_id,
        user_agent=args.user_agent,
        verify=not args.insecure,
        retries=args.retries,
    )
    try:
        result = download_file(video_id, path, args.overwrite, _print_progress, options=options)
    finally:
        print()
    if result.timestamp_error is not None:
        print(f"Warning: unable to set file timestamps: {result.timestamp_error}", file=sys.stderr)
    if args.process:
        process_file(path, overwrite=args.overwrite, show_badges=args.show_badges)
    print("Done!")


def _run_process(args: argparse.Namespace) -> None:
    paths = _expand_inputs(args.input)
    if _is_glob(args.input):
        if args.output is not None:
            raise SystemExit("An output path cannot be combined with a wildcard input.")
        if not paths:
            raise SystemExit(f"No files match {args.input}")
    for path in paths:
        process_file(path, args.output, overwrite=args.overwrite, show_badges=args.show_badges)
    print("Done!")


def main(argv: Sequence[str] | None = None) -> int:
    try:
        args = parse_args(argv)
    except SystemExit as exc:
        return 0 if exc.code in (0, None) else 1

    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    try:
        if args.mode == "download":
            _run_download(args)
        else:
            _run_process(args)
    except SystemExit as exc:
        if exc.code in (0, None):
            return 0
        if not isinstance(exc.code, int):
            print(f"Error: {exc.code}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 1
    except Exception as exc:  # noqa: BLE001 - report any failure as a non-zero exit
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
