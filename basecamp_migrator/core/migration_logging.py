"""
Final summary logging for the Basecamp to Fizzy migration tool.

Extracted from ``migrator.py`` to keep the orchestrator focused on control
flow. Records carry the key statistics as kwargs so they appear as extra
fields in JSON log output while remaining readable on the console.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from basecamp_migrator.core.report import build_summary, format_summary_lines
from basecamp_migrator.core.state import RunStatus
from basecamp_migrator.utils.logging import log_with_context

if TYPE_CHECKING:
    from basecamp_migrator.core.state import RunState


def log_migration_summary(state: RunState) -> None:
    """Log the outcome header and the summary lines of a run.

    Args:
        state: The run state after finalization.
    """
    summary = build_summary(state)
    progress = summary["progress"]
    stats = {
        "run_id": state.run_id,
        "status": state.status,
        "processed": progress["processed"],
        "successful": progress["successful"],
        "failed": progress["failed"],
        "skipped": progress["skipped"],
        "duration_seconds": summary["duration_seconds"],
    }

    if state.dry_run:
        log_with_context(logging.INFO, "DRY RUN COMPLETED", outcome="dry_run_complete", **stats)
    elif state.status == RunStatus.COMPLETED.value:
        log_with_context(logging.INFO, "MIGRATION COMPLETED SUCCESSFULLY", outcome="completed", **stats)
    elif state.status == RunStatus.PARTIAL.value:
        log_with_context(
            logging.WARNING,
            f"MIGRATION COMPLETED WITH {progress['failed']} FAILURES",
            outcome="partial",
            **stats,
        )
    else:
        log_with_context(logging.ERROR, f"MIGRATION {state.status.upper()}", outcome=state.status, **stats)

    for line in format_summary_lines(summary):
        log_with_context(logging.INFO, line, run_id=state.run_id)

    if state.failed_items:
        log_with_context(
            logging.INFO,
            f"Retry the failed cards with Migrator.retry_failed('{state.run_id}')",
            run_id=state.run_id,
        )
