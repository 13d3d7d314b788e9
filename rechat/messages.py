"""Message model, streaming parser and transcript renderer."""
from __future__ import annotations

import codecs
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, BinaryIO, Iterator

import ijson

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "???"

BADGE_ADMIN = "admin"
BADGE_STAFF = "staff"
BADGE_GLOBAL_MOD = "global_mod"
BADGE_BROADCASTER = "broadcaster"
BADGE_MODERATOR = "moderator"
BADGE_SUBSCRIBER = "subscriber"

_TIMESTAMP_PATTERN = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(?P<fraction>\d+))?(?P<zone>Z|[+-]\d{2}:\d{2})?$"
)


def parse_timestamp(value: str) -> datetime:
    """Parse an API timestamp into an aware UTC datetime.

    The API emits up to nine fractional digits and a ``Z`` suffix, neither of
    which ``datetime.fromisoformat`` accepts on every supported interpreter.
    """
    match = _TIMESTAMP_PATTERN.match(str(value).strip())
    if not match:
        raise ValueError(f"Unrecognized timestamp: {value!r}")
    fraction = (match.group("fraction") or "")[:6].ljust(6, "0")
    zone = match.group("zone") or "Z"
    if zone == "Z":
        zone = "+00:00"
    parsed = datetime.fromisoformat(f"{match.group('base')}.{fraction}{zone}")
    return parsed.astimezone(timezone.utc)


def offset_from_seconds(value: Any) -> timedelta:
    # Round to the nearest millisecond; truncating drifts every offset early.
    return timedelta(milliseconds=round(float(value) * 1000))


@dataclass(frozen=True, slots=True)
class Badge:
    set_id: str
    version: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Badge":
        set_id = data.get("setID")
        if set_id is None:
            set_id = data.get("setId", "")
        return cls(set_id=str(set_id or ""), version=str(data.get("version") or ""))

    def matches(self, name: str) -> bool:
        return self.set_id.casefold() == name.casefold()


@dataclass(frozen=True, slots=True)
class Commenter:
    login: str
    display_name: str

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Commenter":
        login = str(data.get("login") or "")
        display_name = str(data.get("displayName") or "").rstrip()
        return cls(login=login, display_name=display_name or login)


@dataclass(frozen=True, slots=True)
class Message:
    """A single chat comment, independent of the wire format it came from."""

    created_at: datetime
    content_offset: timedelta
    commenter: Commenter | None
    fragments: tuple[str, ...]
    is_action: bool = False
    badges: tuple[Badge, ...] = ()
    id: str | None = None
    source: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Message":
        body = data["message"]
        commenter_json = data.get("commenter")
        commenter = Commenter.from_json(commenter_json) if commenter_json else None
        fragments = tuple(
            str(fragment.get("text") or "") for fragment in body.get("fragments") or [] if fragment
        )
        badges = tuple(Badge.from_json(badge) for badge in body.get("userBadges") or [] if badge)
        return cls(
            created_at=parse_timestamp(data["createdAt"]),
            content_offset=offset_from_seconds(data["contentOffsetSeconds"]),
            commenter=commenter,
            fragments=fragments,
            is_action=bool(body.get("isAction")),
            badges=badges,
            id=data.get("id"),
            source=data,
        )

    @property
    def text(self) -> str:
        return "".join(self.fragments)

    def has_badge(self, name: str) -> bool:
        return any(badge.matches(name) for badge in self.badges)

    @property
    def user_is_admin(self) -> bool:
        return self.has_badge(BADGE_ADMIN)

    @property
    def user_is_staff(self) -> bool:
        return self.has_badge(BADGE_STAFF)

    @property
    def user_is_global_moderator(self) -> bool:
        return self.has_badge(BADGE_GLOBAL_MOD)

    @property
    def user_is_broadcaster(self) -> bool:
        return self.has_badge(BADGE_BROADCASTER)

    @property
    def user_is_moderator(self) -> bool:
        return self.has_badge(BADGE_MODERATOR)

    @property
    def user_is_subscriber(self) -> bool:
        return self.has_badge(BADGE_SUBSCRIBER)


def _skip_bom(handle: BinaryIO) -> None:
    prefix = handle.read(len(codecs.BOM_UTF8))
    if prefix != codecs.BOM_UTF8:
        handle.seek(0)


def iter_raw_comments(path: Path | str) -> Iterator[dict[str, Any]]:
    """Yield the raw comment objects of a downloaded file one at a time."""
    with Path(path).open("rb") as handle:
        _skip_bom(handle)
        for item in ijson.items(handle, "item", use_float=True):
            if isinstance(item, dict):
                yield item
            else:
                logger.debug("Skipping non-object array element in %s", path)


def parse_messages(path: Path | str) -> Iterator[Message]:
    for item in iter_raw_comments(path):
        yield Message.from_json(item)


def format_offset(offset: timedelta, include_milliseconds: bool = True) -> str:
    total_ms = round(offset.total_seconds() * 1000)
    sign = "-" if total_ms < 0 else ""
    total_ms = abs(total_ms)
    total_seconds, milliseconds = divmod(total_ms, 1000)
    minutes, seconds = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    formatted = f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"
    if include_milliseconds:
        formatted += f".{milliseconds:03d}"
    return formatted


def format_badges(message: Message) -> str:
    prefix = ""
    if message.user_is_admin or message.user_is_staff:
        prefix += "*"
    if message.user_is_broadcaster:
        prefix += "#"
    if message.user_is_moderator or message.user_is_global_moderator:
        prefix += "@"
    if message.user_is_subscriber:
        prefix += "+"
    return prefix


def format_user(message: Message) -> str:
    commenter = message.commenter
    if commenter is None:
        return ANONYMOUS_USER
    if commenter.display_name.casefold() == commenter.login.casefold():
        return commenter.display_name
    return f"{commenter.display_name} ({commenter.login})"


def to_readable_string(
    message: Message,
    show_badges: bool = False,
    include_milliseconds: bool = True,
) -> str:
    timestamp = format_offset(message.content_offset, include_milliseconds)
    badges = format_badges(message) if show_badges else ""
    separator = "" if message.is_action else ":"
    return f"[{timestamp}] {badges}{format_user(message)}{separator} {message.text}"
