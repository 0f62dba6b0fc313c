"""
Card transformation from Basecamp to Fizzy.

Pure functions: no I/O, no state. Given a Basecamp card and the run's
column and user mappings, build the Fizzy creation payload and the
follow-up instructions (placement, assignees, steps, closing).
"""

from __future__ import annotations

import re
from datetime import datetime

from basecamp_migrator.constants import (
    MAX_TITLE_LENGTH,
    SOURCE_SYSTEM,
    TITLE_OVERFLOW_DIVIDER,
)
from basecamp_migrator.types import (
    ColumnAction,
    Identity,
    MappedComment,
    SourceCard,
    SourceComment,
    TransformedCard,
    UserMapping,
)


def source_marker(source_id: str, system: str = SOURCE_SYSTEM) -> str:
    """The tag embedded in every migrated card body, e.g. ``#basecamp-id-42``."""
    return f"#{system}-id-{source_id}"


def extract_source_id(body: str | None, system: str = SOURCE_SYSTEM) -> str | None:
    """Recover the source id from a card body carrying a marker."""
    if not body:
        return None
    # The trailing marker wins over any quoted earlier in the body
    matches = re.findall(rf"#{re.escape(system)}-id-(\w+)", body)
    return matches[-1] if matches else None


def split_title(title: str, body: str) -> tuple[str, str]:
    """Keep the first ``MAX_TITLE_LENGTH`` characters as the title.

    The overflow is prepended to the body, separated by a horizontal rule,
    or becomes the body when there is none.
    """
    if len(title) <= MAX_TITLE_LENGTH:
        return title, body
    overflow = title[MAX_TITLE_LENGTH:]
    title = title[:MAX_TITLE_LENGTH]
    body = f"{overflow}{TITLE_OVERFLOW_DIVIDER}{body}" if body else overflow
    return title, body


def _mapped_id(identity: Identity, user_mappings: dict[str, UserMapping]) -> str | None:
    mapping = user_mappings.get(identity.id)
    if mapping is None or not mapping.destination_id:
        return None
    return mapping.destination_id


def transform_card(
    card: SourceCard,
    column_mappings: dict[str, ColumnAction],
    user_mappings: dict[str, UserMapping],
    system: str = SOURCE_SYSTEM,
) -> TransformedCard:
    """
    Build the Fizzy payload and follow-up instructions for a card.

    Args:
        card: The Basecamp card
        column_mappings: Column actions keyed by Basecamp column id
        user_mappings: User mappings keyed by Basecamp person id
        system: Source system name used in the marker

    Returns:
        TransformedCard with the payload and the placement, assignee and step
        instructions
    """
    # HTML passes through; Fizzy sanitizes on its side.
    body = (card.body or "").strip()
    title, body = split_title(card.title or "", body)

    marker = source_marker(card.id, system)
    description = f"{body}\n\n{marker}" if body else marker

    assignee_ids: list[str] = []
    unmapped: list[Identity] = []
    for assignee in card.assignees:
        destination_id = _mapped_id(assignee, user_mappings)
        if destination_id is None:
            unmapped.append(assignee)
        elif destination_id not in assignee_ids:
            assignee_ids.append(destination_id)

    steps = []
    dropped = []
    for step in card.steps:
        steps.append({"title": step.title, "completed": step.completed})
        # Fizzy steps have no assignee
        if step.assignee is not None:
            dropped.append(
                {
                    "step_title": step.title,
                    "assignee_id": step.assignee.id,
                    "assignee_name": step.assignee.name,
                    "mapped": _mapped_id(step.assignee, user_mappings) is not None,
                }
            )

    return TransformedCard(
        source_id=card.id,
        payload={"title": title, "description": description, "status": "published"},
        column_action=column_mappings.get(card.column_id) if card.column_id else None,
        assignee_ids=assignee_ids,
        unmapped_assignees=unmapped,
        steps=steps,
        dropped_step_assignees=dropped,
        completed=card.completed,
        comments_count=card.comments_count,
    )


def _format_date(value: str | None) -> str:
    if not value:
        return "unknown date"
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return value


def transform_comment(
    comment: SourceComment, user_mappings: dict[str, UserMapping]
) -> MappedComment:
    """Map a comment, attributing it in the body.

    Fizzy posts every comment as the token owner, so the original author is
    always named in a header: the mapped Fizzy user when there is one,
    otherwise the Basecamp person. ``needs_attribution`` marks authors with
    no Fizzy account.
    """
    body = (comment.body or "").strip()
    if comment.creator is None:
        return MappedComment(body=body)

    destination_id = _mapped_id(comment.creator, user_mappings)
    author = comment.creator.name
    if destination_id is not None:
        author = user_mappings[comment.creator.id].destination_name or author
    attribution = f"_Original comment by {author} on {_format_date(comment.created_at)}_"
    return MappedComment(
        body=f"{attribution}\n\n{body}",
        author_id=destination_id,
        needs_attribution=destination_id is None,
    )
