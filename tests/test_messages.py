from __future__ import annotations

import codecs
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from rechat.messages import (
    Message,
    format_badges,
    format_offset,
    format_user,
    offset_from_seconds,
    parse_messages,
    parse_timestamp,
    to_readable_string,
)


def make_message(
    display_name: str | None = "Bob",
    login: str = "bob",
    badges: list[str] | None = None,
    is_action: bool = False,
    fragments: list[str] | None = None,
    offset: float = 0.0,
) -> Message:
    data = {
        "id": "abc",
        "createdAt": "2021-06-01T12:00:00.5Z",
        "contentOffsetSeconds": offset,
        "commenter": None if display_name is None else {"login": login, "displayName": display_name},
        "message": {
            "fragments": [{"text": text} for text in (fragments or ["hello"])],
            "isAction": is_action,
            "userBadges": [{"setID": name, "version": "1"} for name in badges or []],
        },
    }
    return Message.from_json(data)


def test_parse_timestamp_handles_long_fractions_and_zulu():
    parsed = parse_timestamp("2019-05-10T20:03:54.123456789Z")

    assert parsed == datetime(2019, 5, 10, 20, 3, 54, 123456, tzinfo=timezone.utc)
    assert parse_timestamp("2019-05-10T20:03:54Z") == datetime(2019, 5, 10, 20, 3, 54, tzinfo=timezone.utc)
    assert parse_timestamp("2019-05-10T22:03:54.5+02:00") == datetime(
        2019, 5, 10, 20, 3, 54, 500000, tzinfo=timezone.utc
    )

    with pytest.raises(ValueError):
        parse_timestamp("yesterday")


def test_offset_is_rounded_not_truncated():
    assert offset_from_seconds(3725.4) == timedelta(hours=1, minutes=2, seconds=5, milliseconds=400)
    assert offset_from_seconds(1.0006) == timedelta(seconds=1, milliseconds=1)
    assert format_offset(offset_from_seconds(3725.4)) == "01:02:05.400"


def test_format_offset_allows_long_videos_and_optional_milliseconds():
    offset = timedelta(hours=30, minutes=5, seconds=7, milliseconds=89)

    assert format_offset(offset) == "30:05:07.089"
    assert format_offset(offset, include_milliseconds=False) == "30:05:07"
    assert format_offset(timedelta(0)) == "00:00:00.000"


def test_message_from_json_normalizes_fields():
    message = make_message(display_name="Bob   ", fragments=["a", "b", " c"], offset=12.3456)

    assert message.commenter.display_name == "Bob"
    assert message.text == "ab c"
    assert message.content_offset == timedelta(seconds=12, milliseconds=346)
    assert message.created_at == datetime(2021, 6, 1, 12, 0, 0, 500000, tzinfo=timezone.utc)
    assert message.source["id"] == "abc"


def test_message_requires_message_block():
    with pytest.raises(KeyError):
        Message.from_json({"createdAt": "2021-06-01T12:00:00Z", "contentOffsetSeconds": 1})


def test_format_user_variants():
    assert format_user(make_message(display_name="Bob", login="bob")) == "Bob"
    assert format_user(make_message(display_name="Bob", login="robert99")) == "Bob (robert99)"
    assert format_user(make_message(display_name=None)) == "???"
    assert format_user(make_message(display_name="", login="quiet")) == "quiet"


def test_render_identity_and_action():
    assert to_readable_string(make_message(display_name="Bob", login="bob")) == "[00:00:00.000] Bob: hello"
    assert (
        to_readable_string(make_message(display_name="Bob", login="robert99"))
        == "[00:00:00.000] Bob (robert99): hello"
    )
    assert (
        to_readable_string(make_message(is_action=True, fragments=["waves"]))
        == "[00:00:00.000] Bob waves"
    )


def test_badge_prefix_order_and_case():
    message = make_message(badges=["subscriber", "Moderator"])

    assert format_badges(message) == "@+"
    assert to_readable_string(message, show_badges=True) == "[00:00:00.000] @+Bob: hello"
    assert to_readable_string(message, show_badges=False) == "[00:00:00.000] Bob: hello"

    everything = make_message(badges=["subscriber", "global_mod", "broadcaster", "staff"])
    assert format_badges(everything) == "*#@+"
    assert format_badges(make_message(badges=["ADMIN"])) == "*"
    assert format_badges(make_message(badges=["premium", "bits"])) == ""


def test_badge_accepts_camel_case_set_id():
    data = make_message().source
    data["message"]["userBadges"] = [{"setId": "broadcaster", "version": "1"}]

    assert format_badges(Message.from_json(data)) == "#"


def test_anonymous_commenter_with_badges():
    message = make_message(display_name=None, badges=["subscriber"])

    assert to_readable_string(message, show_badges=True, include_milliseconds=False) == "[00:00:00] +???: hello"


def test_parse_messages_streams_file_in_order(tmp_path: Path):
    items = [make_message(offset=float(i), fragments=[f"msg {i}"]).source for i in range(5)]
    path = tmp_path / "chat.json"
    path.write_bytes(codecs.BOM_UTF8 + json.dumps(items).encode("utf-8"))

    messages = parse_messages(path)

    assert iter(messages) is messages
    assert [m.text for m in messages] == [f"msg {i}" for i in range(5)]
    assert list(messages) == []


def test_null_fragments_are_skipped():
    data = make_message().source
    data["message"]["fragments"] = [{"text": "one "}, None, {"text": "two"}]

    assert Message.from_json(data).text == "one two"
