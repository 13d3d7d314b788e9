from __future__ import annotations

import json
from pathlib import Path

import pytest

import rechat.cli as cli
from rechat.core import DownloadResult, RechatError


def write_chat(path: Path, text: str = "hello") -> None:
    comment = {
        "createdAt": "2020-01-01T00:00:00Z",
        "contentOffsetSeconds": 5.0,
        "commenter": {"login": "bob", "displayName": "Bob"},
        "message": {"fragments": [{"text": text}], "userBadges": [{"setID": "moderator", "version": "1"}]},
    }
    path.write_text(json.dumps([comment]), encoding="utf-8")


@pytest.mark.parametrize(
    "value, expected",
    [
        ("123456789", "123456789"),
        ("v123456789", "123456789"),
        ("https://www.twitch.tv/videos/123456789", "123456789"),
        ("twitch.tv/videos/123456789?t=1h2m", "123456789"),
    ],
)
def test_parse_video_id(value, expected):
    assert cli._parse_video_id(value) == expected


def test_parse_video_id_rejects_garbage():
    with pytest.raises(SystemExit):
        cli._parse_video_id("https://example.com/clip/abc")


def test_usage_errors_exit_with_one(capsys):
    assert cli.main([]) == 1
    assert cli.main(["download"]) == 1
    assert cli.main(["--help"]) == 0


def test_process_single_file(tmp_path: Path, capsys):
    source = tmp_path / "chat.json"
    write_chat(source)

    assert cli.main(["process", str(source), "--show-badges"]) == 0
    assert (tmp_path / "chat.txt").read_text(encoding="utf-8") == "[00:00:05.000] @Bob: hello\n"

    assert cli.main(["process", str(source)]) == 1
    assert "already exists" in capsys.readouterr().err

    assert cli.main(["process", str(source), "--overwrite"]) == 0
    assert (tmp_path / "chat.txt").read_text(encoding="utf-8") == "[00:00:05.000] Bob: hello\n"


def test_process_glob(tmp_path: Path):
    write_chat(tmp_path / "a.json", "from a")
    write_chat(tmp_path / "b.json", "from b")

    assert cli.main(["process", str(tmp_path / "*.json")]) == 0
    assert "from a" in (tmp_path / "a.txt").read_text(encoding="utf-8")
    assert "from b" in (tmp_path / "b.txt").read_text(encoding="utf-8")

    assert cli.main(["process", str(tmp_path / "*.json"), str(tmp_path / "out.txt")]) == 1
    assert cli.main(["process", str(tmp_path / "*.nothing")]) == 1


def test_missing_input_exits_with_one(tmp_path: Path):
    assert cli.main(["process", str(tmp_path / "missing.json")]) == 1
    assert not (tmp_path / "missing.txt").exists()


def test_download_and_process(tmp_path: Path, monkeypatch, capsys):
    calls: list = []

    def fake_download(video_id, path, overwrite, progress_callback, *, options):
        calls.append((video_id, Path(path), overwrite, options.client_id))
        write_chat(Path(path))
        progress_callback(1, None)
        return DownloadResult(path=Path(path), pages=1, comment_count=1)

    monkeypatch.setattr(cli, "download_file", fake_download)
    output = tmp_path / "vod.json"

    code = cli.main(
        ["download", "https://www.twitch.tv/videos/42", str(output), "--process", "--client-id", "abc"]
    )

    assert code == 0
    assert calls == [("42", output, False, "abc")]
    assert (tmp_path / "vod.txt").exists()
    assert "Downloaded page 1" in capsys.readouterr().out


def test_download_failure_exits_with_one(tmp_path: Path, monkeypatch, capsys):
    def failing_download(*args, **kwargs):
        raise RechatError("Video not found")

    monkeypatch.setattr(cli, "download_file", failing_download)

    assert cli.main(["download", "42", str(tmp_path / "vod.json")]) == 1
    assert "Video not found" in capsys.readouterr().err
