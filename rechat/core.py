"""Core download and processing utilities for the rechat toolkit."""
from __future__ import annotations

import json
import logging
import os
import sys
import time
from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterator, TextIO

import requests

from .messages import Message, offset_from_seconds, parse_messages, to_readable_string

if sys.platform == "win32":
    from win32_setctime import setctime
else:
    setctime = None

logger = logging.getLogger(__name__)

GQL_URL = "https://gql.twitch.tv/gql"
DEFAULT_CLIENT_ID = "kimne78kx3ncx6brgo4mv6wki5h1ko"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
COMMENTS_OPERATION = "VideoCommentsByOffsetOrCursor"
COMMENTS_QUERY_HASH = "b70a3591ff0f4e0313d126c6a1502d79a1c02baebb288227c582044aa76adf6a"
CLIENT_ID_ENV = "RECHAT_CLIENT_ID"

ProgressCallback = Callable[[int, "timedelta | None"], None]


class RechatError(RuntimeError):
    """Fatal error raised while downloading or processing chat replays."""


class OutputExistsError(RechatError, FileExistsError):
    def __init__(self, path: Path) -> None:
        super().__init__(f"Output file already exists: {path}")
        self.path = path


@dataclass(slots=True)
class DownloadOptions:
    """HTTP settings used for a single download."""

    client_id: str = ""
    user_agent: str = DEFAULT_USER_AGENT
    verify: bool = True
    retries: int = 3
    backoff: float = 1.0
    timeout: float = 30.0

    def __post_init__(self) -> None:
        if not self.client_id:
            self.client_id = os.environ.get(CLIENT_ID_ENV) or DEFAULT_CLIENT_ID
        self.retries = max(1, int(self.retries))
        self.backoff = max(0.0, float(self.backoff))
        if self.timeout <= 0:
            raise ValueError(f"Timeout must be positive: {self.timeout}")


@dataclass(slots=True)
class CommentPage:
    comments: list[dict[str, Any]]
    cursor: str | None = None


@dataclass(slots=True)
class DownloadResult:
    path: Path
    pages: int = 0
    comment_count: int = 0
    video_start: datetime | None = None
    last_comment_at: datetime | None = None
    timestamp_error: Exception | None = field(default=None, repr=False)


def build_session(client_id: str, user_agent: str = DEFAULT_USER_AGENT, verify: bool = True) -> requests.Session:
    session = requests.Session()
    session.headers.update(
        {
            "User-Agent": user_agent,
            "Client-ID": client_id,
            "Accept": "application/json",
            "Content-Type": "text/plain;charset=UTF-8",
        }
    )
    session.verify = verify
    return session


def post_json(
    session: requests.Session,
    url: str,
    payload: Any,
    *,
    retries: int = 3,
    backoff: float = 1.0,
    timeout: float = 30.0,
    rate_limit_waits: int = 5,
) -> Any:
    last_exc: Exception | None = None
    attempt = 0
    rate_limited = 0
    wait_seconds = 60
    body = json.dumps(payload, separators=(",", ":"))
    while attempt < retries:
        try:
            response = session.post(url, data=body.encode("utf-8"), timeout=timeout)
        except requests.exceptions.RequestException as exc:
            attempt += 1
            last_exc = exc
            if attempt >= retries:
                break
            wait_time = backoff * (2 ** (attempt - 1))
            logger.warning(
                "Request error posting to %s (attempt %d/%d): %s; retrying in %.1f seconds",
                url,
                attempt,
                retries,
                exc,
                wait_time,
            )
            time.sleep(wait_time)
            continue

        if response.status_code == 429:
            last_exc = RechatError("HTTP 429 Too Many Requests")
            rate_limited += 1
            if rate_limited > rate_limit_waits:
                break
            logger.warning(
                "Rate limited posting to %s; waiting %d seconds before retrying.",
                url,
                wait_seconds,
            )
            time.sleep(wait_seconds)
            wait_seconds += 60
            continue

        attempt += 1

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as exc:
            last_exc = exc
            if attempt >= retries:
                break
            wait_time = backoff * (2 ** (attempt - 1))
            logger.warning(
                "HTTP error posting to %s (attempt %d/%d): %s; retrying in %.1f seconds",
                url,
                attempt,
                retries,
                exc,
                wait_time,
            )
            time.sleep(wait_time)
            continue

        try:
            return response.json()
        except ValueError as exc:
            last_exc = exc
            if attempt >= retries:
                break
            wait_time = backoff * (2 ** (attempt - 1))
            logger.warning(
                "Failed to decode JSON from %s (attempt %d/%d): %s; retrying in %.1f seconds",
                url,
                attempt,
                retries,
                exc,
                wait_time,
            )
            time.sleep(wait_time)
            continue
    raise RechatError(f"Failed to post to {url!r}: {last_exc}") from last_exc


def build_comments_query(video_id: str | int, cursor: str | None = None) -> list[dict[str, Any]]:
    variables: dict[str, Any] = {"videoID": str(video_id)}
    if cursor:
        variables["cursor"] = cursor
    else:
        variables["contentOffsetSeconds"] = 0
    return [
        {
            "operationName": COMMENTS_OPERATION,
            "variables": variables,
            "extensions": {
                "persistedQuery": {
                    "version": 1,
                    "sha256Hash": COMMENTS_QUERY_HASH,
                }
            },
        }
    ]


def extract_comment_page(payload: Any) -> CommentPage:
    """Pull the comment objects and the next cursor out of a GraphQL response."""
    if isinstance(payload, list):
        if not payload:
            raise RechatError("Empty response from comments API")
        payload = payload[0]
    if not isinstance(payload, dict):
        raise RechatError(f"Unrecognized response: {payload!r}")

    errors = payload.get("errors")
    if errors:
        messages = ", ".join(
            str(error.get("message", error) if isinstance(error, dict) else error)
            for error in errors
            if error
        )
        raise RechatError(f"Comments API returned errors: {messages}")

    data = payload.get("data")
    if not isinstance(data, dict) or "video" not in data:
        raise RechatError("Response is missing the video block")
    video = data["video"]
    if video is None:
        raise RechatError("Video not found")
    comments_block = video.get("comments")
    if not isinstance(comments_block, dict) or not isinstance(comments_block.get("edges"), list):
        raise RechatError("Response is missing comment edges")

    edges = comments_block["edges"]
    comments = [edge["node"] for edge in edges]
    cursor = edges[-1].get("cursor") if edges else None
    page_info = comments_block.get("pageInfo") or {}
    if page_info.get("hasNextPage") is False:
        cursor = None
    return CommentPage(comments=comments, cursor=cursor or None)


def iter_comment_pages(
    session: requests.Session,
    video_id: str | int,
    options: DownloadOptions,
) -> Iterator[CommentPage]:
    # Each request depends on the previous cursor, so pages are strictly sequential.
    cursor: str | None = None
    while True:
        payload = post_json(
            session,
            GQL_URL,
            build_comments_query(video_id, cursor),
            retries=options.retries,
            backoff=options.backoff,
            timeout=options.timeout,
        )
        page = extract_comment_page(payload)
        yield page
        if not page.cursor:
            break
        cursor = page.cursor


class JsonArrayWriter:
    """Writes a JSON array one element at a time."""

    def __init__(self, handle: TextIO) -> None:
        self._handle = handle
        self._count = 0
        self._closed = False
        self._handle.write("[")

    @property
    def count(self) -> int:
        return self._count

    def write(self, item: Any) -> None:
        if self._closed:
            raise ValueError("Array writer is already closed")
        if self._count:
            self._handle.write(",")
        json.dump(item, self._handle, ensure_ascii=False, separators=(",", ":"))
        self._count += 1

    def close(self) -> None:
        if not self._closed:
            self._handle.write("]")
            self._handle.flush()
            self._closed = True

    def __enter__(self) -> "JsonArrayWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()


def _try_content_offset(comment: dict[str, Any]) -> timedelta | None:
    try:
        return offset_from_seconds(comment["contentOffsetSeconds"])
    except (KeyError, TypeError, ValueError):
        return None


def _set_creation_time(path: Path, created: datetime) -> None:
    if setctime is None:
        logger.debug("Creation time cannot be set on %s; skipping", sys.platform)
        return
    setctime(str(path), created.timestamp())


def set_file_times(path: Path, created: datetime, modified: datetime) -> None:
    _set_creation_time(path, created)
    stat = path.stat()
    os.utime(path, (stat.st_atime, modified.timestamp()))


def _apply_file_times(result: DownloadResult, first: dict[str, Any], last: dict[str, Any]) -> None:
    try:
        first_message = Message.from_json(first)
        last_message = Message.from_json(last)
        result.video_start = first_message.created_at - first_message.content_offset
        result.last_comment_at = last_message.created_at
        set_file_times(result.path, result.video_start, result.last_comment_at)
    except (OSError, KeyError, TypeError, ValueError) as exc:
        result.timestamp_error = exc
        logger.warning("Unable to set file timestamps on %s: %s", result.path, exc)


def download_file(
    video_id: str | int,
    path: Path | str,
    overwrite: bool = False,
    progress_callback: ProgressCallback | None = None,
    *,
    session: requests.Session | None = None,
    options: DownloadOptions | None = None,
) -> DownloadResult:
    """Download every comment of ``video_id`` into ``path`` as a JSON array.

    Pages are streamed into a sibling ``.part`` file which only replaces
    ``path`` once the array is closed, so ``path`` never holds a truncated
    array even if the process is killed.
    """
    path = Path(path)
    if path.exists() and not overwrite:
        raise OutputExistsError(path)
    options = options or DownloadOptions()

    if session is None:
        with closing(build_session(options.client_id, options.user_agent, options.verify)) as scoped:
            return download_file(
                video_id,
                path,
                overwrite,
                progress_callback,
                session=scoped,
                options=options,
            )

    logger.info("Downloading chat replay for video %s -> %s", video_id, path)
    result = DownloadResult(path=path)
    first: dict[str, Any] | None = None
    last: dict[str, Any] | None = None
    part = partial_path(path)
    completed = False
    try:
        with part.open("w", encoding="utf-8") as handle:
            with JsonArrayWriter(handle) as writer:
                for page in iter_comment_pages(session, video_id, options):
                    for comment in page.comments:
                        writer.write(comment)
                        if first is None:
                            first = comment
                        last = comment
                    result.pages += 1
                    logger.debug("Fetched page %d (%d comments so far)", result.pages, writer.count)
                    if progress_callback is not None:
                        offset = _try_content_offset(last) if last is not None else None
                        progress_callback(result.pages, offset)
                result.comment_count = writer.count
        part.replace(path)
        completed = True
    finally:
        if not completed:
            logger.debug("Removing partial download %s", part)
            part.unlink(missing_ok=True)

    if first is not None and last is not None:
        _apply_file_times(result, first, last)
    logger.info(
        "Saved %d comments from %d page(s) to %s",
        result.comment_count,
        result.pages,
        path,
    )
    return result


def partial_path(path: Path) -> Path:
    return path.with_name(path.name + ".part")


def default_download_path(video_id: str | int) -> Path:
    return Path(f"{video_id}.json")


def default_transcript_path(path_in: Path | str) -> Path:
    path_in = Path(path_in)
    suffix = "-p" if path_in.suffix.lower() == ".txt" else ""
    return path_in.with_name(f"{path_in.stem}{suffix}.txt")


def process_file(
    path_in: Path | str,
    path_out: Path | str | None = None,
    overwrite: bool = False,
    show_badges: bool = False,
) -> Path:
    """Render a downloaded chat file into a readable transcript."""
    path_in = Path(path_in)
    path_out = Path(path_out) if path_out is not None else default_transcript_path(path_in)
    if path_out.exists() and not overwrite:
        raise OutputExistsError(path_out)

    part = partial_path(path_out)
    line_count = 0
    completed = False
    try:
        with part.open("w", encoding="utf-8", newline="\n") as handle:
            for message in parse_messages(path_in):
                handle.write(to_readable_string(message, show_badges=show_badges))
                handle.write("\n")
                line_count += 1
        part.replace(path_out)
        completed = True
    finally:
        if not completed:
            part.unlink(missing_ok=True)

    logger.info("Wrote %d line(s) to %s", line_count, path_out)
    return path_out
