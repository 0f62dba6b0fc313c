"""
Run state for a Basecamp to Fizzy migration.

Mutable tracking state for one run, separated from the immutable RunConfig.
The migrator owns the single RunState instance; phases hand back result
values and every counter or map changes through the methods here.

State is organized into typed sub-state dataclasses by concern area and
serializes to the JSON document persisted by ``RunStateStore``.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from basecamp_migrator.constants import RUN_ID_PREFIX, RUN_STATE_SCHEMA_VERSION
from basecamp_migrator.types import (
    CardOutcome,
    CardResult,
    ColumnAction,
    ColumnActionReport,
    FailedItem,
    RunWarning,
    UserMapping,
)


class RunStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class Phase(str, Enum):
    INITIALIZATION = "initialization"
    DISCOVERY = "discovery"
    COLUMN_SETUP = "column_setup"
    USER_MAPPING = "user_mapping"
    CARD_MIGRATION = "card_migration"
    FINALIZATION = "finalization"
    COMPLETED = "completed"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_run_id() -> str:
    """Time-derived run id, ``mig_<epoch milliseconds>``."""
    return f"{RUN_ID_PREFIX}{int(time.time() * 1000)}"


# ---------------------------------------------------------------------------
# Sub-state dataclasses
# ---------------------------------------------------------------------------


@dataclass
class SourceInfo:
    """The Basecamp card table being migrated."""

    project_id: str
    card_table_id: str
    project_name: str | None = None
    card_table_name: str | None = None
    total_cards: int = 0
    cards_per_column: dict[str, int] = field(default_factory=dict)


@dataclass
class TargetInfo:
    """The Fizzy board receiving the cards."""

    account_slug: str
    board_id: str | None = None
    board_name: str | None = None


@dataclass
class ProgressCounters:
    processed_cards: int = 0
    successful_cards: int = 0
    failed_cards: int = 0
    skipped_cards: int = 0
    current_phase: str = Phase.INITIALIZATION.value


@dataclass
class MetadataCounters:
    comments_migrated: int = 0
    steps_migrated: int = 0
    columns_created: int = 0
    users_mapped: int = 0
    cards_updated: int = 0


# ---------------------------------------------------------------------------
# Composed RunState
# ---------------------------------------------------------------------------


@dataclass
class RunState:
    """All persisted state of one migration run.

    - ``source`` / ``target``: what is migrated where
    - ``progress`` / ``metadata``: counters
    - ``column_mappings``, ``user_mappings``, ``existing_records``: the
      maps later phases and retries rely on
    - ``failed_items``, ``resolved_items``, ``warnings``: append-only logs
    """

    run_id: str
    source: SourceInfo
    target: TargetInfo
    options: dict[str, Any] = field(default_factory=dict)
    status: str = RunStatus.IN_PROGRESS.value
    started_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    completed_at: str | None = None
    progress: ProgressCounters = field(default_factory=ProgressCounters)
    metadata: MetadataCounters = field(default_factory=MetadataCounters)
    column_mappings: dict[str, ColumnAction] = field(default_factory=dict)
    column_actions: list[ColumnActionReport] = field(default_factory=list)
    user_mappings: dict[str, UserMapping] = field(default_factory=dict)
    existing_records: dict[str, str] = field(default_factory=dict)
    failed_items: list[FailedItem] = field(default_factory=list)
    resolved_items: list[FailedItem] = field(default_factory=list)
    warnings: list[RunWarning] = field(default_factory=list)
    schema_version: int = RUN_STATE_SCHEMA_VERSION

    @property
    def dry_run(self) -> bool:
        return bool(self.options.get("dry_run"))

    @property
    def is_finished(self) -> bool:
        return self.status != RunStatus.IN_PROGRESS.value

    # -- Phase and status ----------------------------------------------------

    def set_phase(self, phase: Phase) -> None:
        self.progress.current_phase = phase.value

    def mark_failed(self) -> None:
        self.status = RunStatus.FAILED.value
        self.completed_at = now_iso()

    def finalize(self) -> str:
        """Set the terminal status from the failure counter and stamp completion."""
        if self.progress.failed_cards > 0:
            self.status = RunStatus.PARTIAL.value
        else:
            self.status = RunStatus.COMPLETED.value
        self.completed_at = now_iso()
        self.progress.current_phase = Phase.COMPLETED.value
        return self.status

    # -- Logs ----------------------------------------------------------------

    def add_warning(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.warnings.append(
            RunWarning(message=message, context=context or {}, timestamp=now_iso())
        )

    def failed_item(self, source_id: str, kind: str = "card") -> FailedItem | None:
        for item in self.failed_items:
            if item["source_id"] == source_id and item["kind"] == kind:
                return item
        return None

    def record_column_failure(self, column_id: str, title: str, error: str) -> None:
        """Record a column whose cards could not be fetched.

        Counts as one failure so the run finishes as ``partial``; a repeated
        failure updates the existing item.
        """
        item = self.failed_item(column_id, kind="column")
        if item is not None:
            item["error"] = error
            item["timestamp"] = now_iso()
            item["attempts"] = item.get("attempts", 1) + 1
            return
        self.progress.failed_cards += 1
        self.failed_items.append(
            FailedItem(
                kind="column",
                source_id=column_id,
                title=title,
                error=error,
                timestamp=now_iso(),
                column_id=column_id,
                attempts=1,
                completed_stages=[],
            )
        )

    def resolve_column_failure(self, column_id: str) -> None:
        item = self.failed_item(column_id, kind="column")
        if item is None:
            return
        self.failed_items.remove(item)
        item["attempts"] = item.get("attempts", 1) + 1
        self.resolved_items.append(item)
        self.progress.failed_cards = max(0, self.progress.failed_cards - 1)

    # -- Mappings ------------------------------------------------------------

    def record_column_mapping(
        self,
        mappings: dict[str, ColumnAction],
        actions: list[ColumnActionReport],
        created_count: int,
    ) -> None:
        self.column_mappings = dict(mappings)
        self.column_actions = list(actions)
        self.metadata.columns_created = created_count

    def record_user_mappings(self, mappings: dict[str, UserMapping]) -> None:
        self.user_mappings = dict(mappings)
        self.metadata.users_mapped = sum(
            1 for m in self.user_mappings.values() if m.destination_id
        )

    def record_existing(self, existing: dict[str, str]) -> None:
        """Merge scanned card numbers; records from this run take precedence."""
        self.existing_records = {**existing, **self.existing_records}

    # -- Card outcomes -------------------------------------------------------

    def _apply_common(self, outcome: CardOutcome) -> None:
        if outcome.destination_id and outcome.result is not CardResult.DRY_RUN:
            self.existing_records[outcome.source_id] = outcome.destination_id
        self.metadata.steps_migrated += outcome.steps_migrated
        self.metadata.comments_migrated += outcome.comments_migrated
        for message, context in outcome.warnings:
            self.add_warning(message, context)

    def apply_outcome(self, outcome: CardOutcome) -> None:
        """Fold one card's outcome into the counters and maps."""
        self._apply_common(outcome)
        self.progress.processed_cards += 1

        if outcome.result is CardResult.SKIPPED:
            self.progress.skipped_cards += 1
        elif outcome.failed:
            self.progress.failed_cards += 1
            self.failed_items.append(
                FailedItem(
                    kind="card",
                    source_id=outcome.source_id,
                    title=outcome.title,
                    error=outcome.error or "Unknown error",
                    timestamp=now_iso(),
                    column_id=outcome.column_id,
                    attempts=1,
                    completed_stages=list(outcome.completed_stages),
                )
            )
        else:
            self.progress.successful_cards += 1
            if outcome.result is CardResult.UPDATED:
                self.metadata.cards_updated += 1

    def apply_retry_outcome(self, outcome: CardOutcome) -> bool:
        """Fold the outcome of retrying a failed card.

        A success moves the failed item to ``resolved_items`` and shifts one
        card from the failed to the successful counter. A repeated failure
        keeps the item with the latest error.

        Returns:
            True if the card succeeded
        """
        self._apply_common(outcome)
        item = self.failed_item(outcome.source_id)

        if outcome.failed:
            if item is not None:
                item["error"] = outcome.error or item["error"]
                item["timestamp"] = now_iso()
                item["attempts"] = item.get("attempts", 1) + 1
                item["completed_stages"] = list(outcome.completed_stages)
            return False

        if item is not None:
            self.failed_items.remove(item)
            item["attempts"] = item.get("attempts", 1) + 1
            self.resolved_items.append(item)
            self.progress.failed_cards = max(0, self.progress.failed_cards - 1)
            self.progress.successful_cards += 1
            if outcome.result is CardResult.UPDATED:
                self.metadata.cards_updated += 1
        return True

    # -- Serialization -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "run_id": self.run_id,
            "status": self.status,
            "started_at": self.started_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
            "source": asdict(self.source),
            "target": asdict(self.target),
            "options": dict(self.options),
            "progress": asdict(self.progress),
            "metadata": asdict(self.metadata),
            "column_mappings": {k: v.to_dict() for k, v in self.column_mappings.items()},
            "column_actions": [dict(a) for a in self.column_actions],
            "user_mappings": {k: v.to_dict() for k, v in self.user_mappings.items()},
            "existing_records": dict(self.existing_records),
            "failed_items": [dict(i) for i in self.failed_items],
            "resolved_items": [dict(i) for i in self.resolved_items],
            "warnings": [dict(w) for w in self.warnings],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunState:
        return cls(
            run_id=data["run_id"],
            schema_version=data.get("schema_version", RUN_STATE_SCHEMA_VERSION),
            status=data.get("status", RunStatus.IN_PROGRESS.value),
            started_at=data.get("started_at") or now_iso(),
            updated_at=data.get("updated_at") or now_iso(),
            completed_at=data.get("completed_at"),
            source=SourceInfo(**data["source"]),
            target=TargetInfo(**data["target"]),
            options=data.get("options") or {},
            progress=ProgressCounters(**(data.get("progress") or {})),
            metadata=MetadataCounters(**(data.get("metadata") or {})),
            column_mappings={
                k: ColumnAction.from_dict(v)
                for k, v in (data.get("column_mappings") or {}).items()
            },
            column_actions=list(data.get("column_actions") or []),
            user_mappings={
                k: UserMapping.from_dict(v)
                for k, v in (data.get("user_mappings") or {}).items()
            },
            existing_records={
                str(k): str(v) for k, v in (data.get("existing_records") or {}).items()
            },
            failed_items=list(data.get("failed_items") or []),
            resolved_items=list(data.get("resolved_items") or []),
            warnings=list(data.get("warnings") or []),
        )
