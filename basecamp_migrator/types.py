"""Shared type definitions for the Basecamp to Fizzy migration tool.

Provides dataclasses for the normalized shapes the adapters produce from
Basecamp and Fizzy JSON, plus TypedDicts for the records persisted inside a
run state document.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypedDict

# ---------------------------------------------------------------------------
# Workflow and placement enums
# ---------------------------------------------------------------------------


class ColumnType(str, Enum):
    """Workflow type of a Basecamp card table column."""

    TRIAGE = "Kanban::Triage"
    NOT_NOW = "Kanban::NotNowColumn"
    DONE = "Kanban::DoneColumn"
    REGULAR = "Kanban::Column"


class ActionType(str, Enum):
    """Fizzy placement action applied to a card after creation."""

    KEEP_TRIAGE = "keep_triage"
    NOT_NOW = "not_now"
    CLOSE = "close"
    PLACE_IN_COLUMN = "triage_to_column"


@dataclass(frozen=True)
class ColumnAction:
    """Placement instruction for every card of one source column.

    ``target`` is only set for ``PLACE_IN_COLUMN`` and holds the Fizzy
    column id.
    """

    type: ActionType
    target: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "target": self.target}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ColumnAction:
        return cls(type=ActionType(data["type"]), target=data.get("target"))


# ---------------------------------------------------------------------------
# Normalized API shapes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Identity:
    """A person on either side, normalized once by the adapter layer."""

    id: str
    name: str = ""
    email: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", str(self.id))
        object.__setattr__(self, "email", (self.email or "").strip().lower())


@dataclass(frozen=True)
class SourceColumn:
    """A column (``list``) of a Basecamp card table."""

    id: str
    title: str
    color: str | None = None
    type: str | None = None


@dataclass(frozen=True)
class CardTable:
    """A Basecamp card table with its columns in display order."""

    id: str
    title: str
    columns: list[SourceColumn] = field(default_factory=list)


@dataclass(frozen=True)
class SourceStep:
    """A checklist step on a Basecamp card."""

    title: str
    completed: bool = False
    assignee: Identity | None = None


@dataclass(frozen=True)
class SourceCard:
    """A Basecamp card."""

    id: str
    title: str
    body: str = ""
    completed: bool = False
    assignees: list[Identity] = field(default_factory=list)
    steps: list[SourceStep] = field(default_factory=list)
    comments_count: int = 0
    column_id: str | None = None
    column_title: str | None = None
    app_url: str | None = None


@dataclass(frozen=True)
class SourceComment:
    """A comment on a Basecamp card."""

    id: str
    body: str
    creator: Identity | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class FizzyBoard:
    """A Fizzy board."""

    id: str
    name: str


@dataclass(frozen=True)
class FizzyColumn:
    """A column on a Fizzy board."""

    id: str
    title: str
    color: str | None = None
    position: int | None = None


@dataclass(frozen=True)
class FizzyCard:
    """A Fizzy card; ``number`` is the account-scoped card reference."""

    number: str
    title: str
    body: str = ""
    status: str | None = None
    closed: bool = False


# ---------------------------------------------------------------------------
# Mapping records
# ---------------------------------------------------------------------------


@dataclass
class UserMapping:
    """A confirmed link between a Basecamp person and a Fizzy user."""

    source_id: str
    source_email: str
    source_name: str
    destination_id: str | None
    destination_email: str | None
    destination_name: str | None
    mapped_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "source_email": self.source_email,
            "source_name": self.source_name,
            "destination_id": self.destination_id,
            "destination_email": self.destination_email,
            "destination_name": self.destination_name,
            "mapped_at": self.mapped_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserMapping:
        destination_id = data.get("destination_id")
        return cls(
            source_id=str(data["source_id"]),
            source_email=data.get("source_email", ""),
            source_name=data.get("source_name", ""),
            destination_id=str(destination_id) if destination_id else None,
            destination_email=data.get("destination_email"),
            destination_name=data.get("destination_name"),
            mapped_at=data.get("mapped_at"),
        )


class ColumnActionReport(TypedDict, total=False):
    """One line of the column mapping report."""

    source_column_id: str
    source_column_name: str
    column_type: str
    action: dict[str, Any]
    destination_column_id: str
    destination_column_title: str


# ---------------------------------------------------------------------------
# Run state records
# ---------------------------------------------------------------------------


class FailedItem(TypedDict):
    """A card or column that could not be migrated.

    ``completed_stages`` lists the per-card stages that finished before the
    failure, so a retry resumes where the card stopped.
    """

    kind: str
    source_id: str
    title: str
    error: str
    timestamp: str
    column_id: str | None
    attempts: int
    completed_stages: list[str]


class RunWarning(TypedDict):
    """A non-fatal problem recorded during a run."""

    message: str
    context: dict[str, Any]
    timestamp: str


# ---------------------------------------------------------------------------
# Transform and processing results
# ---------------------------------------------------------------------------


@dataclass
class TransformedCard:
    """Fizzy creation payload plus the follow-up instructions for one card."""

    source_id: str
    payload: dict[str, Any]
    column_action: ColumnAction | None = None
    assignee_ids: list[str] = field(default_factory=list)
    unmapped_assignees: list[Identity] = field(default_factory=list)
    steps: list[dict[str, Any]] = field(default_factory=list)
    dropped_step_assignees: list[dict[str, Any]] = field(default_factory=list)
    completed: bool = False
    comments_count: int = 0


@dataclass
class MappedComment:
    """A comment body ready for Fizzy, with attribution details."""

    body: str
    author_id: str | None = None
    needs_attribution: bool = False


class CardResult(str, Enum):
    """Terminal state of one card in a migration pass."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"
    FAILED = "failed"


@dataclass
class CardOutcome:
    """Structured result of processing one card.

    The processor never touches run state directly; the migrator applies
    outcomes so counters and maps have a single mutation path.
    """

    source_id: str
    title: str
    result: CardResult
    column_id: str | None = None
    destination_id: str | None = None
    error: str | None = None
    steps_migrated: int = 0
    comments_migrated: int = 0
    warnings: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    completed_stages: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True when the card exists on the board after this pass."""
        return self.result in (CardResult.CREATED, CardResult.UPDATED, CardResult.DRY_RUN)

    @property
    def failed(self) -> bool:
        return self.result is CardResult.FAILED
