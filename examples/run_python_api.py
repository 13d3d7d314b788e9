from __future__ import annotations

from pathlib import Path

from rechat import DownloadOptions, download_file, process_file


def main() -> None:
    """Demonstrate the Python API by downloading and rendering one chat replay."""
    options = DownloadOptions(user_agent="rechat-example/0.1", retries=5)
    output = Path("./example_runs/123456789.json")
    output.parent.mkdir(parents=True, exist_ok=True)

    def report(pages, offset):
        print(f"page {pages}: {offset}")

    result = download_file("123456789", output, overwrite=True, progress_callback=report, options=options)
    print(f"Saved {result.comment_count} comments, video started at {result.video_start}")

    transcript = process_file(output, overwrite=True, show_badges=True)
    print(f"Transcript written to {transcript}")


if __name__ == "__main__":
    main()
