"""
User mapping between Basecamp people and Fizzy users.

Matches by normalized email, optionally confirmed or corrected by the
operator through ``click`` prompts, and persists confirmed mappings in a
JSON file shared by every run so nobody is asked twice.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import click

from basecamp_migrator.exceptions import UserMappingError
from basecamp_migrator.types import Identity, SourceCard, UserMapping
from basecamp_migrator.utils.logging import log_with_context


@dataclass
class UserMappingStats:
    total: int = 0
    existing: int = 0
    auto_matched: int = 0
    manually_mapped: int = 0
    skipped: int = 0


@dataclass
class UserMappingResult:
    """Mappings keyed by Basecamp person id, plus what happened to each person."""

    mappings: dict[str, UserMapping] = field(default_factory=dict)
    stats: UserMappingStats = field(default_factory=UserMappingStats)

    @property
    def mapped_count(self) -> int:
        return sum(1 for m in self.mappings.values() if m.destination_id)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_mapping(source: Identity, destination: Identity) -> UserMapping:
    """Build a timestamped mapping record."""
    return UserMapping(
        source_id=source.id,
        source_email=source.email,
        source_name=source.name,
        destination_id=destination.id,
        destination_email=destination.email,
        destination_name=destination.name,
        mapped_at=_now_iso(),
    )


def find_user_by_email(email: str, users: Iterable[Identity]) -> Identity | None:
    """Exact match on the normalized email; blank emails never match."""
    normalized = (email or "").strip().lower()
    if not normalized:
        return None
    for user in users:
        if user.email == normalized:
            return user
    return None


def _confirm_auto_match(source: Identity, destination: Identity) -> bool:
    return click.confirm(
        f'Match "{source.name}" ({source.email}) -> '
        f'"{destination.name}" ({destination.email or "no email"})?',
        default=True,
    )


def _prompt_for_manual_mapping(
    source: Identity, destination_users: list[Identity]
) -> Identity | None:
    """Show a numbered menu of Fizzy users; 0 skips this person."""
    click.echo(f"\nNo automatic match for: {source.name} ({source.email or 'no email'})")
    click.echo("  0. [ Skip this user ]")
    for index, user in enumerate(destination_users, start=1):
        click.echo(f"  {index}. {user.name} ({user.email or 'no email'})")

    choice = click.prompt(
        "Select a Fizzy user to map to",
        type=click.IntRange(0, len(destination_users)),
        default=0,
    )
    if choice == 0:
        return None
    return destination_users[choice - 1]


def map_users(
    source_users: list[Identity],
    destination_users: list[Identity],
    existing_mappings: dict[str, UserMapping] | None = None,
    interactive: bool = False,
) -> UserMappingResult:
    """
    Map Basecamp people to Fizzy users.

    People already mapped to a Fizzy user are kept without prompting. Others
    are matched by email: interactive runs confirm each match (default yes)
    and pick manually from a numbered list when there is none; non-interactive
    runs accept matches and skip the rest. Skipped people stay unmapped, which
    later surfaces as warnings on the cards they are assigned to.

    Args:
        source_users: Basecamp people on the project
        destination_users: Fizzy users in the account
        existing_mappings: Previously confirmed mappings keyed by Basecamp id
        interactive: Whether prompts may be shown

    Returns:
        UserMappingResult containing existing and new mappings
    """
    result = UserMappingResult(mappings=dict(existing_mappings or {}))
    stats = result.stats
    stats.total = len(source_users)

    log_with_context(
        logging.INFO,
        f"Mapping {len(source_users)} Basecamp people to {len(destination_users)} Fizzy users",
    )

    for source in source_users:
        current = result.mappings.get(source.id)
        if current is not None and current.destination_id:
            stats.existing += 1
            continue

        match = find_user_by_email(source.email, destination_users)
        if match is not None and (not interactive or _confirm_auto_match(source, match)):
            result.mappings[source.id] = create_mapping(source, match)
            stats.auto_matched += 1
            log_with_context(
                logging.INFO,
                f"Auto-matched {source.name} -> {match.name}",
                user=source.id,
            )
            continue

        if not interactive:
            stats.skipped += 1
            log_with_context(
                logging.WARNING,
                f"No Fizzy user for {source.name} ({source.email}), skipped",
                user=source.id,
            )
            continue

        selected = _prompt_for_manual_mapping(source, destination_users)
        if selected is None:
            stats.skipped += 1
            log_with_context(
                logging.WARNING, f"{source.name} skipped by operator", user=source.id
            )
        else:
            result.mappings[source.id] = create_mapping(source, selected)
            stats.manually_mapped += 1
            log_with_context(
                logging.INFO,
                f"Manually mapped {source.name} -> {selected.name}",
                user=source.id,
            )

    log_with_context(
        logging.INFO,
        f"User mapping complete: {stats.existing} existing, {stats.auto_matched} auto-matched, "
        f"{stats.manually_mapped} manual, {stats.skipped} skipped",
    )
    return result


def find_unmapped_users(
    cards: Iterable[SourceCard], mappings: dict[str, UserMapping]
) -> list[Identity]:
    """Unique assignees and step assignees with no Fizzy user, in first-seen order."""
    unmapped: dict[str, Identity] = {}

    def consider(identity: Identity | None) -> None:
        if identity is None or identity.id in unmapped:
            return
        mapping = mappings.get(identity.id)
        if mapping is None or not mapping.destination_id:
            unmapped[identity.id] = identity

    for card in cards:
        for assignee in card.assignees:
            consider(assignee)
        for step in card.steps:
            consider(step.assignee)

    return list(unmapped.values())


def format_user_mappings(mappings: dict[str, UserMapping]) -> str:
    mapped = [m for m in mappings.values() if m.destination_id]
    if not mapped:
        return "No user mappings"
    lines = ["User mappings:"]
    lines.extend(f"  {m.source_name} -> {m.destination_name}" for m in mapped)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def load_user_mappings(path: Path) -> dict[str, UserMapping]:
    """Load persisted mappings; a missing file is an empty mapping.

    Raises:
        UserMappingError: If the file exists but cannot be parsed
    """
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        raise UserMappingError(f"Failed to read user mappings {path}: {e}") from e
    if not isinstance(raw, dict):
        raise UserMappingError(f"User mappings file {path} has invalid format")
    return {
        str(source_id): UserMapping.from_dict({"source_id": source_id, **data})
        for source_id, data in raw.items()
    }


def save_user_mappings(path: Path, mappings: dict[str, UserMapping]) -> None:
    """Merge ``mappings`` into the file at ``path`` (last write wins per person).

    Raises:
        UserMappingError: If the file cannot be read or written
    """
    merged = load_user_mappings(path)
    merged.update(mappings)
    tmp = path.with_suffix(".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(
            json.dumps({k: v.to_dict() for k, v in merged.items()}, indent=2) + "\n"
        )
        tmp.replace(path)
    except OSError as e:
        raise UserMappingError(f"Failed to write user mappings {path}: {e}") from e
    log_with_context(
        logging.DEBUG, f"Saved {len(merged)} user mappings to {path}"
    )
