"""Public package surface for rechat."""
from .core import (
    DEFAULT_CLIENT_ID,
    DEFAULT_USER_AGENT,
    GQL_URL,
    CommentPage,
    DownloadOptions,
    DownloadResult,
    JsonArrayWriter,
    OutputExistsError,
    RechatError,
    build_comments_query,
    build_session,
    default_download_path,
    default_transcript_path,
    download_file,
    extract_comment_page,
    iter_comment_pages,
    post_json,
    process_file,
    set_file_times,
)
from .messages import (
    Badge,
    Commenter,
    Message,
    format_badges,
    format_offset,
    format_user,
    iter_raw_comments,
    offset_from_seconds,
    parse_messages,
    parse_timestamp,
    to_readable_string,
)

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_CLIENT_ID",
    "DEFAULT_USER_AGENT",
    "GQL_URL",
    "Badge",
    "CommentPage",
    "Commenter",
    "DownloadOptions",
    "DownloadResult",
    "JsonArrayWriter",
    "Message",
    "OutputExistsError",
    "RechatError",
    "build_comments_query",
    "build_session",
    "default_download_path",
    "default_transcript_path",
    "download_file",
    "extract_comment_page",
    "format_badges",
    "format_offset",
    "format_user",
    "iter_comment_pages",
    "iter_raw_comments",
    "offset_from_seconds",
    "parse_messages",
    "parse_timestamp",
    "post_json",
    "process_file",
    "set_file_times",
    "to_readable_string",
    "__version__",
]
