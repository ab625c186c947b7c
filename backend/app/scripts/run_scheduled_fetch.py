from __future__ import annotations

import argparse
from collections.abc import Sequence

from backend.app.dependencies import get_ingestion_pipeline, get_settings
from backend.app.logging_config import configure_application_logging
from backend.app.services.ingestion_pipeline import PipelineRunResult


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run one scheduled video fetch and exit (for cron or systemd timers).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print per-channel and per-insert outcomes after the summary.",
    )
    return parser.parse_args(argv)


def format_outcomes(result: PipelineRunResult) -> list[str]:
    lines: list[str] = []
    for channel in result.channel_outcomes:
        line = (
            f"channel {channel.channel_id}: {channel.status} "
            f"searched={channel.searched_count} matched={channel.matched_count} "
            f"duplicates={channel.duplicate_count} new={len(channel.new_videos)}"
        )
        if channel.reason:
            line += f" ({channel.reason})"
        lines.append(line)
    for insert in result.insert_outcomes:
        line = f"insert {insert.video_id}: {insert.status} {insert.title}"
        if insert.reason:
            line += f" ({insert.reason})"
        lines.append(line)
    return lines


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_application_logging(get_settings())

    result = get_ingestion_pipeline().run()
    print(result.message)
    if args.verbose:
        for line in format_outcomes(result):
            print(line)
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
