"""
Report generation for the Basecamp to Fizzy migration tool
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any

import yaml

from basecamp_migrator.core.state import RunState
from basecamp_migrator.utils.logging import log_with_context

MAX_REPORTED_WARNINGS = 5
MAX_REPORTED_FAILURES = 10


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def run_duration(state: RunState, now: datetime | None = None) -> float:
    """Seconds between start and completion (or ``now`` for unfinished runs)."""
    started = _parse_iso(state.started_at)
    if started is None:
        return 0.0
    finished = _parse_iso(state.completed_at) or now or datetime.now(started.tzinfo)
    return max(0.0, (finished - started).total_seconds())


def format_duration(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs}s"


def build_summary(state: RunState) -> dict[str, Any]:
    """Build the final report of a run.

    Includes identifiers, status, duration, counters and the first
    ``MAX_REPORTED_WARNINGS`` warnings and ``MAX_REPORTED_FAILURES``
    failures, with totals for both.
    """
    duration = run_duration(state)
    return {
        "run_id": state.run_id,
        "status": state.status,
        "dry_run": state.dry_run,
        "started_at": state.started_at,
        "completed_at": state.completed_at,
        "duration_seconds": round(duration, 1),
        "duration": format_duration(duration),
        "source": {
            "project_id": state.source.project_id,
            "project_name": state.source.project_name,
            "card_table_id": state.source.card_table_id,
            "card_table_name": state.source.card_table_name,
            "total_cards": state.source.total_cards,
        },
        "target": {
            "account_slug": state.target.account_slug,
            "board_id": state.target.board_id,
            "board_name": state.target.board_name,
        },
        "progress": {
            "processed": state.progress.processed_cards,
            "successful": state.progress.successful_cards,
            "failed": state.progress.failed_cards,
            "skipped": state.progress.skipped_cards,
        },
        "metadata": {
            "comments_migrated": state.metadata.comments_migrated,
            "steps_migrated": state.metadata.steps_migrated,
            "columns_created": state.metadata.columns_created,
            "users_mapped": state.metadata.users_mapped,
            "cards_updated": state.metadata.cards_updated,
        },
        "column_actions": [dict(a) for a in state.column_actions],
        "warning_count": len(state.warnings),
        "warnings": [w["message"] for w in state.warnings[:MAX_REPORTED_WARNINGS]],
        "failure_count": len(state.failed_items),
        "failures": [
            {"source_id": i["source_id"], "title": i["title"], "error": i["error"]}
            for i in state.failed_items[:MAX_REPORTED_FAILURES]
        ],
        "resolved_count": len(state.resolved_items),
    }


def format_summary_lines(summary: dict[str, Any]) -> list[str]:
    """Plain-text lines of the summary, for the log."""
    progress = summary["progress"]
    metadata = summary["metadata"]
    lines = [
        f"Migration ID: {summary['run_id']}",
        f"Status: {summary['status']}",
        f"Duration: {summary['duration']}",
        f"Source: {summary['source']['project_name'] or summary['source']['project_id']} / "
        f"{summary['source']['card_table_name'] or summary['source']['card_table_id']}",
        f"Target: {summary['target']['board_name'] or summary['target']['board_id']} "
        f"(account {summary['target']['account_slug']})",
        f"Total cards: {summary['source']['total_cards']}",
        f"Processed: {progress['processed']}, successful: {progress['successful']}, "
        f"failed: {progress['failed']}, skipped: {progress['skipped']}",
        f"Comments migrated: {metadata['comments_migrated']}, steps migrated: "
        f"{metadata['steps_migrated']}, columns created: {metadata['columns_created']}, "
        f"users mapped: {metadata['users_mapped']}",
    ]

    if summary["warning_count"]:
        lines.append(f"Warnings ({summary['warning_count']}):")
        lines.extend(f"  {message}" for message in summary["warnings"])
        hidden = summary["warning_count"] - len(summary["warnings"])
        if hidden > 0:
            lines.append(f"  ... and {hidden} more warnings")

    if summary["failure_count"]:
        lines.append(f"Failed items ({summary['failure_count']}):")
        for failure in summary["failures"]:
            lines.append(f"  card {failure['source_id']}: {failure['title']} - {failure['error']}")
        hidden = summary["failure_count"] - len(summary["failures"])
        if hidden > 0:
            lines.append(f"  ... and {hidden} more failures")

    return lines


def write_report(state: RunState, output_dir: str) -> str:
    """Write ``migration_report.yaml`` into ``output_dir``.

    Returns:
        The path of the written report
    """
    os.makedirs(output_dir, exist_ok=True)
    report_file = os.path.join(output_dir, "migration_report.yaml")

    report = build_summary(state)
    report["generated_at"] = datetime.now().isoformat()
    report["all_failures"] = [dict(i) for i in state.failed_items]

    with open(report_file, "w") as f:
        yaml.safe_dump(report, f, default_flow_style=False, sort_keys=False)

    log_with_context(
        logging.INFO, f"Migration report written to {report_file}", run_id=state.run_id
    )
    return report_file
