"""Immutable run configuration.

RunConfig is a frozen dataclass that holds everything the caller decided
about one migration run: which card table to read, which board to write,
and the mode flags. It is the sole input boundary into the migrator and is
shared read-only with the per-card processor.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from basecamp_migrator.constants import DEFAULT_BATCH_SIZE
from basecamp_migrator.exceptions import ConfigError


@dataclass(frozen=True)
class RunConfig:
    """Immutable parameters of a migration run. Created once, shared everywhere."""

    # Source
    project_id: str
    card_table_id: str

    # Destination; exactly one of board_id / create_board_name
    account_slug: str
    board_id: str | None = None
    create_board_name: str | None = None

    project_name: str | None = None

    # Mode flags
    migrate_comments: bool = True
    update_existing: bool = False
    dry_run: bool = False
    skip_user_mapping: bool = False
    interactive: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE

    @property
    def log_prefix(self) -> str:
        """Mode-aware log prefix, ``"[DRY RUN] "`` or empty."""
        return "[DRY RUN] " if self.dry_run else ""

    @property
    def options(self) -> dict[str, Any]:
        """The mode flags persisted in the run state."""
        return {
            "migrate_comments": self.migrate_comments,
            "update_existing": self.update_existing,
            "dry_run": self.dry_run,
            "batch_size": self.batch_size,
            "skip_user_mapping": self.skip_user_mapping,
        }

    def validate(self) -> None:
        """Raise ``ConfigError`` when the run cannot be started as configured."""
        if not self.project_id:
            raise ConfigError("project_id is required")
        if not self.card_table_id:
            raise ConfigError("card_table_id is required")
        if not self.account_slug:
            raise ConfigError("account_slug is required")
        if bool(self.board_id) == bool(self.create_board_name):
            raise ConfigError("Specify exactly one of board_id or create_board_name")
        if self.batch_size < 1:
            raise ConfigError("batch_size must be at least 1")
