"""
Column mapping between a Basecamp card table and a Fizzy board.

Every Basecamp column gets exactly one ``ColumnAction``. Triage, Not Now and
Done columns map to Fizzy's built-in workflow states; regular columns are
matched by name against the board's columns, or created.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from basecamp_migrator.constants import DRY_RUN_ID_PREFIX
from basecamp_migrator.types import (
    ActionType,
    ColumnAction,
    ColumnActionReport,
    ColumnType,
    FizzyColumn,
    SourceColumn,
)
from basecamp_migrator.utils.logging import log_with_context

DEFAULT_FIZZY_COLOR = "var(--color-card-default)"

BASECAMP_TO_FIZZY_COLORS = {
    "purple": "var(--color-card-7)",
    "orange": "var(--color-card-3)",
    "blue": "var(--color-card-default)",
    "gray": "var(--color-card-1)",
    "pink": "var(--color-card-8)",
    "yellow": "var(--color-card-2)",
    "green": "var(--color-card-4)",
    "red": "var(--color-card-5)",
    "default": DEFAULT_FIZZY_COLOR,
}

# Title keywords checked in order when a column carries no type tag
_TITLE_KEYWORDS: list[tuple[ColumnType, tuple[str, ...]]] = [
    (ColumnType.TRIAGE, ("triage", "maybe")),
    (ColumnType.NOT_NOW, ("not now", "later")),
    (ColumnType.DONE, ("done", "completed")),
]

_FIXED_ACTIONS = {
    ColumnType.TRIAGE: ActionType.KEEP_TRIAGE,
    ColumnType.NOT_NOW: ActionType.NOT_NOW,
    ColumnType.DONE: ActionType.CLOSE,
}


@dataclass
class ColumnMappingResult:
    """Outcome of mapping all columns of a card table."""

    mappings: dict[str, ColumnAction] = field(default_factory=dict)
    actions: list[ColumnActionReport] = field(default_factory=list)
    created: list[FizzyColumn] = field(default_factory=list)


def map_color(basecamp_color: str | None) -> str:
    """Map a Basecamp colour name to a Fizzy colour token."""
    if not basecamp_color:
        return DEFAULT_FIZZY_COLOR
    return BASECAMP_TO_FIZZY_COLORS.get(basecamp_color.lower(), DEFAULT_FIZZY_COLOR)


def detect_column_type(column: SourceColumn) -> ColumnType:
    """Return the workflow type of a column.

    An explicit type tag wins; unknown tags are regular columns. Without a
    tag the lower-cased title is searched for workflow keywords.
    """
    if column.type:
        try:
            return ColumnType(column.type)
        except ValueError:
            return ColumnType.REGULAR

    title = (column.title or "").lower()
    for column_type, keywords in _TITLE_KEYWORDS:
        if any(keyword in title for keyword in keywords):
            return column_type
    return ColumnType.REGULAR


def get_column_action(column_type: ColumnType, column_id: str | None = None) -> ColumnAction:
    """Return the placement action for a column type.

    Regular columns place cards in ``column_id``.
    """
    fixed = _FIXED_ACTIONS.get(column_type)
    if fixed is not None:
        return ColumnAction(fixed)
    return ColumnAction(ActionType.PLACE_IN_COLUMN, column_id)


def columns_match(source_title: str, destination_title: str) -> bool:
    """Case-insensitive, whitespace-trimmed title equality."""
    if not source_title or not destination_title:
        return False
    return source_title.strip().lower() == destination_title.strip().lower()


def find_matching_column(
    title: str, columns: list[FizzyColumn]
) -> FizzyColumn | None:
    for column in columns:
        if columns_match(title, column.title):
            return column
    return None


def map_columns(
    source_columns: list[SourceColumn],
    destination_columns: list[FizzyColumn],
    fizzy,
    board_id: str,
    dry_run: bool = False,
) -> ColumnMappingResult:
    """
    Compute one action per source column, creating missing Fizzy columns.

    Columns are processed in source order. A column created for an earlier
    source column is reused by a later one with the same title. Creation
    failures propagate: the caller treats them as fatal for the run.

    Args:
        source_columns: Columns of the Basecamp card table
        destination_columns: Columns already on the Fizzy board
        fizzy: FizzyAdapter used to create missing columns
        board_id: The Fizzy board id
        dry_run: If True, no column is created and a placeholder id is used

    Returns:
        ColumnMappingResult with mappings, report lines and created columns
    """
    result = ColumnMappingResult()
    known_columns = list(destination_columns)
    prefix = "[DRY RUN] " if dry_run else ""

    for source in source_columns:
        column_type = detect_column_type(source)
        report: ColumnActionReport = {
            "source_column_id": source.id,
            "source_column_name": source.title,
            "column_type": column_type.value,
        }

        if column_type is not ColumnType.REGULAR:
            action = get_column_action(column_type)
            log_with_context(
                logging.INFO,
                f"Column '{source.title}' ({column_type.value}) -> {action.type.value}",
                column=source.title,
            )
        else:
            destination = find_matching_column(source.title, known_columns)
            if destination is not None:
                log_with_context(
                    logging.INFO,
                    f"Column '{source.title}' matches existing Fizzy column '{destination.title}'",
                    column=source.title,
                )
            elif dry_run:
                log_with_context(
                    logging.INFO,
                    f"{prefix}Would create Fizzy column '{source.title}'",
                    column=source.title,
                )
                destination = FizzyColumn(
                    id=f"{DRY_RUN_ID_PREFIX}{source.id}", title=source.title
                )
                known_columns.append(destination)
            else:
                log_with_context(
                    logging.INFO,
                    f"Creating Fizzy column '{source.title}'",
                    column=source.title,
                )
                destination = fizzy.create_column(
                    board_id, source.title, map_color(source.color)
                )
                result.created.append(destination)
                known_columns.append(destination)

            action = get_column_action(ColumnType.REGULAR, destination.id)
            report["destination_column_id"] = destination.id
            report["destination_column_title"] = destination.title

        report["action"] = action.to_dict()
        result.mappings[source.id] = action
        result.actions.append(report)

    log_with_context(
        logging.INFO,
        f"{prefix}Column mapping complete: {len(result.mappings)} mapped, "
        f"{len(result.created)} created",
    )
    return result


def format_column_mapping_summary(actions: list[ColumnActionReport]) -> str:
    """Render the column mapping report as log-friendly lines."""
    lines = ["Column mapping summary:"]
    for report in actions:
        name = report.get("source_column_name", "")
        action_type = ActionType(report["action"]["type"])
        if action_type is ActionType.KEEP_TRIAGE:
            target = 'Keep in "Maybe?"'
        elif action_type is ActionType.NOT_NOW:
            target = 'Move to "Not Now"'
        elif action_type is ActionType.CLOSE:
            target = "Close card"
        else:
            target = report.get("destination_column_title", "")
        lines.append(f"  {name} -> {target}")
    return "\n".join(lines)
