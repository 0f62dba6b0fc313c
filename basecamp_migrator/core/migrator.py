"""
Main migrator class for the Basecamp to Fizzy migration tool
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tqdm import tqdm

from basecamp_migrator.constants import DRY_RUN_ID_PREFIX, USER_MAPPINGS_FILENAME
from basecamp_migrator.core.card_processor import CardProcessor
from basecamp_migrator.core.config import MigrationConfig
from basecamp_migrator.core.context import RunConfig
from basecamp_migrator.core.migration_logging import log_migration_summary
from basecamp_migrator.core.report import build_summary
from basecamp_migrator.core.state import (
    Phase,
    RunState,
    SourceInfo,
    TargetInfo,
    new_run_id,
)
from basecamp_migrator.core.state_store import RunStateStore
from basecamp_migrator.exceptions import (
    AuthenticationError,
    ConfigError,
    MigrationAbortedError,
    MigratorError,
    UserMappingError,
)
from basecamp_migrator.services.column_mapper import (
    format_column_mapping_summary,
    map_columns,
)
from basecamp_migrator.services.duplicate_scanner import scan_existing_cards
from basecamp_migrator.services.user_mapper import (
    format_user_mappings,
    load_user_mappings,
    map_users,
    save_user_mappings,
)
from basecamp_migrator.types import (
    CardOutcome,
    CardResult,
    CardTable,
    FailedItem,
    FizzyBoard,
    SourceCard,
)
from basecamp_migrator.utils.logging import log_with_context


@dataclass
class DiscoveryResult:
    """What phase 1 found on both sides."""

    card_table: CardTable
    board: FizzyBoard
    cards_per_column: dict[str, int] = field(default_factory=dict)
    placeholder_board: bool = False

    @property
    def total_cards(self) -> int:
        return sum(self.cards_per_column.values())


@dataclass
class ResumeReport:
    """Where a persisted run stands and what a targeted retry would re-drive."""

    run_id: str
    status: str
    current_phase: str
    progress: dict[str, int]
    failed_items: list[FailedItem]
    warning_count: int
    summary: dict[str, Any]

    @property
    def can_retry(self) -> bool:
        return bool(self.failed_items)


class Migrator:
    """Orchestrates a card table migration in five sequential phases.

    ``discovery -> column_setup -> user_mapping -> card_migration ->
    finalization``. The migrator owns the run state; phase helpers return
    result values that are folded into it, and the state is checkpointed at
    every phase boundary and after every batch of cards.
    """

    def __init__(
        self,
        basecamp: Any,
        fizzy: Any,
        config: MigrationConfig | None = None,
        store: RunStateStore | None = None,
        user_mappings_path: Path | None = None,
    ) -> None:
        self.basecamp = basecamp
        self.fizzy = fizzy
        self.config = config or MigrationConfig()
        self.store = store or RunStateStore(self.config.state_path)
        self.user_mappings_path = user_mappings_path or (
            self.config.state_path / USER_MAPPINGS_FILENAME
        )

    # -- Public API ----------------------------------------------------------

    def run(self, run_config: RunConfig) -> RunState:
        """Run a full migration.

        Args:
            run_config: What to migrate where, and how

        Returns:
            The finalized run state (``completed`` or ``partial``)

        Raises:
            ConfigError: If the run configuration is invalid
            MigrationAbortedError: If discovery or column setup fails
            AuthenticationError: If a token is rejected and cannot be refreshed
        """
        run_config.validate()
        self._check_account(run_config.account_slug)
        prefix = run_config.log_prefix

        log_with_context(logging.INFO, f"{prefix}Starting migration process")
        discovery = self._discover(run_config)
        state = self._create_state(run_config, discovery)

        with self.store.lock(state.run_id):
            self.store.save(state)
            log_with_context(
                logging.INFO,
                f"{prefix}Created migration {state.run_id}",
                run_id=state.run_id,
            )

            try:
                self._setup_columns(state, run_config, discovery)

                if run_config.skip_user_mapping:
                    log_with_context(
                        logging.INFO, "Skipping user mapping", run_id=state.run_id
                    )
                else:
                    self._map_users(state, run_config)

                self._migrate_cards(state, run_config, discovery)
                self._finalize(state)
            except (MigratorError, OSError) as e:
                self._fail_run(state, e)
                raise
            except KeyboardInterrupt:
                log_with_context(
                    logging.WARNING,
                    f"Migration {state.run_id} interrupted, resume from the last checkpoint",
                    run_id=state.run_id,
                )
                raise

        log_migration_summary(state)
        return state

    def resume(self, run_id: str) -> ResumeReport:
        """Load a persisted run and report where it stands.

        Raises:
            RunStateNotFoundError: If the run does not exist
        """
        state = self.store.load(run_id)
        report = ResumeReport(
            run_id=state.run_id,
            status=state.status,
            current_phase=state.progress.current_phase,
            progress={
                "processed_cards": state.progress.processed_cards,
                "successful_cards": state.progress.successful_cards,
                "failed_cards": state.progress.failed_cards,
                "skipped_cards": state.progress.skipped_cards,
            },
            failed_items=[FailedItem(**item) for item in state.failed_items],
            warning_count=len(state.warnings),
            summary=build_summary(state),
        )
        log_with_context(
            logging.INFO,
            f"Migration {run_id} is {state.status} with {len(state.failed_items)} failed items",
            run_id=run_id,
        )
        return report

    def retry_failed(self, run_id: str) -> RunState:
        """Re-drive only the failed cards of a persisted run.

        Each failed card is re-fetched from its column and processed through
        the same per-card path, with the run's persisted mappings and
        existing records. A card that was created before it failed is
        updated rather than created again. Successes move to
        ``resolved_items``; the final status is recomputed and persisted.

        Raises:
            RunStateNotFoundError: If the run does not exist
            RunLockedError: If another process holds the run
        """
        state = self.store.load(run_id)
        self._check_account(state.target.account_slug)

        with self.store.lock(run_id):
            if not state.failed_items:
                log_with_context(logging.INFO, "No failed items to retry", run_id=run_id)
                return state

            run_config = self._run_config_from_state(state)
            processor = CardProcessor(
                run_config,
                self.basecamp,
                self.fizzy,
                state.target.board_id or "",
                system=self.config.source_system,
            )
            log_with_context(
                logging.INFO,
                f"{run_config.log_prefix}Retrying {len(state.failed_items)} failed items",
                run_id=run_id,
            )

            try:
                column_cards: dict[str, list[SourceCard]] = {}
                for item in list(state.failed_items):
                    if item["kind"] == "column":
                        self._retry_column(state, processor, item)
                    else:
                        outcome = self._retry_card(state, processor, item, column_cards)
                        state.apply_retry_outcome(outcome)
                    self.store.save(state)
                self._finalize(state)
            except (MigratorError, OSError) as e:
                self._fail_run(state, e)
                raise

        log_migration_summary(state)
        return state

    # -- Phase 1: discovery --------------------------------------------------

    def _discover(self, run_config: RunConfig) -> DiscoveryResult:
        prefix = run_config.log_prefix
        try:
            card_table = self.basecamp.get_card_table(
                run_config.project_id, run_config.card_table_id
            )
            board, placeholder = self._resolve_board(run_config)

            cards_per_column: dict[str, int] = {}
            for column in card_table.columns:
                count = sum(
                    len(page)
                    for page in self.basecamp.iter_card_pages(
                        run_config.project_id, column.id
                    )
                )
                cards_per_column[column.id] = count
                log_with_context(
                    logging.DEBUG,
                    f"Column '{column.title}' has {count} cards",
                    column=column.title,
                )
        except AuthenticationError:
            raise
        except MigratorError as e:
            raise MigrationAbortedError(f"Discovery failed: {e}") from e

        discovery = DiscoveryResult(
            card_table=card_table,
            board=board,
            cards_per_column=cards_per_column,
            placeholder_board=placeholder,
        )
        log_with_context(
            logging.INFO,
            f"{prefix}Found {discovery.total_cards} cards in {len(card_table.columns)} "
            f"columns of '{card_table.title}', target board '{board.name}'",
        )
        return discovery

    def _resolve_board(self, run_config: RunConfig) -> tuple[FizzyBoard, bool]:
        if run_config.board_id:
            return self.fizzy.get_board(run_config.board_id), False

        name = run_config.create_board_name or ""
        if run_config.dry_run:
            log_with_context(
                logging.INFO, f"{run_config.log_prefix}Would create board '{name}'"
            )
            return FizzyBoard(id=f"{DRY_RUN_ID_PREFIX}board", name=name), True

        log_with_context(logging.INFO, f"Creating board '{name}'")
        return self.fizzy.create_board(name), False

    def _create_state(self, run_config: RunConfig, discovery: DiscoveryResult) -> RunState:
        state = RunState(
            run_id=new_run_id(),
            source=SourceInfo(
                project_id=run_config.project_id,
                card_table_id=run_config.card_table_id,
                project_name=run_config.project_name,
                card_table_name=discovery.card_table.title,
                total_cards=discovery.total_cards,
                cards_per_column=dict(discovery.cards_per_column),
            ),
            target=TargetInfo(
                account_slug=run_config.account_slug,
                board_id=discovery.board.id,
                board_name=discovery.board.name,
            ),
            options=run_config.options,
        )
        state.set_phase(Phase.DISCOVERY)
        return state

    # -- Phase 2: column setup -----------------------------------------------

    def _setup_columns(
        self, state: RunState, run_config: RunConfig, discovery: DiscoveryResult
    ) -> None:
        state.set_phase(Phase.COLUMN_SETUP)
        self.store.save(state)
        try:
            existing_columns = (
                [] if discovery.placeholder_board else self.fizzy.get_columns(discovery.board.id)
            )
            result = map_columns(
                discovery.card_table.columns,
                existing_columns,
                self.fizzy,
                discovery.board.id,
                dry_run=run_config.dry_run,
            )
        except AuthenticationError:
            raise
        except MigratorError as e:
            log_with_context(
                logging.ERROR, f"Column setup failed: {e}", run_id=state.run_id
            )
            state.add_warning(f"Column setup failed: {e}", {"phase": Phase.COLUMN_SETUP.value})
            state.mark_failed()
            self.store.save(state)
            raise MigrationAbortedError(f"Column setup failed: {e}") from e

        state.record_column_mapping(result.mappings, result.actions, len(result.created))
        self.store.save(state)
        log_with_context(
            logging.INFO, format_column_mapping_summary(result.actions), run_id=state.run_id
        )

    # -- Phase 3: user mapping -----------------------------------------------

    def _map_users(self, state: RunState, run_config: RunConfig) -> None:
        state.set_phase(Phase.USER_MAPPING)
        self.store.save(state)

        try:
            persisted = load_user_mappings(self.user_mappings_path)
        except UserMappingError as e:
            log_with_context(logging.WARNING, str(e), run_id=state.run_id)
            state.add_warning(
                f"Ignoring unreadable user mappings: {e}",
                {"phase": Phase.USER_MAPPING.value},
            )
            persisted = {}

        try:
            people = self.basecamp.get_people(run_config.project_id)
            users = self.fizzy.get_users()
        except AuthenticationError:
            raise
        except MigratorError as e:
            # Mapping gaps only cost warnings, so fall back to what is on disk
            log_with_context(
                logging.WARNING,
                f"Could not fetch people for user mapping: {e}",
                run_id=state.run_id,
            )
            state.add_warning(
                f"User mapping skipped, could not fetch people: {e}",
                {"phase": Phase.USER_MAPPING.value},
            )
            state.record_user_mappings(persisted)
            self.store.save(state)
            return

        result = map_users(
            people,
            users,
            existing_mappings=persisted,
            interactive=run_config.interactive and not run_config.dry_run,
        )
        state.record_user_mappings(result.mappings)
        self.store.save(state)
        if not run_config.dry_run:
            try:
                save_user_mappings(self.user_mappings_path, result.mappings)
            except UserMappingError as e:
                log_with_context(logging.WARNING, str(e), run_id=state.run_id)
                state.add_warning(
                    f"User mappings not saved: {e}", {"phase": Phase.USER_MAPPING.value}
                )
        log_with_context(
            logging.DEBUG, format_user_mappings(result.mappings), run_id=state.run_id
        )

    # -- Phase 4: card migration ---------------------------------------------

    def _migrate_cards(
        self, state: RunState, run_config: RunConfig, discovery: DiscoveryResult
    ) -> None:
        state.set_phase(Phase.CARD_MIGRATION)
        prefix = run_config.log_prefix

        if discovery.placeholder_board:
            existing: dict[str, str] = {}
        else:
            existing, warning = scan_existing_cards(
                self.fizzy, discovery.board.id, self.config.source_system
            )
            if warning:
                state.add_warning(warning, {"board_id": discovery.board.id})
        state.record_existing(existing)
        self.store.save(state)

        processor = CardProcessor(
            run_config,
            self.basecamp,
            self.fizzy,
            discovery.board.id,
            system=self.config.source_system,
        )
        batch_size = run_config.batch_size

        for column in discovery.card_table.columns:
            log_with_context(
                logging.INFO,
                f"{prefix}Processing column: {column.title}",
                column=column.title,
            )
            try:
                cards = self.basecamp.get_cards(run_config.project_id, column.id)
            except AuthenticationError:
                raise
            except MigratorError as e:
                log_with_context(
                    logging.ERROR,
                    f"Failed to fetch cards of column '{column.title}': {e}",
                    column=column.title,
                )
                state.record_column_failure(column.id, column.title, str(e))
                self.store.save(state)
                continue

            with tqdm(total=len(cards), desc=f"{column.title} - Cards", unit="card") as pbar:
                for start in range(0, len(cards), batch_size):
                    for card in cards[start : start + batch_size]:
                        outcome = processor.process_card(card, state)
                        state.apply_outcome(outcome)
                        pbar.update(1)
                    # Checkpoint after each batch
                    self.store.save(state)

    # -- Phase 5: finalization -----------------------------------------------

    def _finalize(self, state: RunState) -> None:
        state.set_phase(Phase.FINALIZATION)
        status = state.finalize()
        self.store.save(state)
        log_with_context(
            logging.INFO, f"Migration {state.run_id} finished as {status}", run_id=state.run_id
        )

    # -- Targeted retry ------------------------------------------------------

    def _retry_card(
        self,
        state: RunState,
        processor: CardProcessor,
        item: FailedItem,
        column_cards: dict[str, list[SourceCard]],
    ) -> CardOutcome:
        source_id = item["source_id"]
        try:
            card = self._refetch_card(state, item, column_cards)
        except AuthenticationError:
            raise
        except MigratorError as e:
            return CardOutcome(
                source_id=source_id,
                title=item["title"],
                result=CardResult.FAILED,
                column_id=item.get("column_id"),
                error=f"Could not re-fetch card: {e}",
                completed_stages=list(item.get("completed_stages") or []),
            )
        # A card created before its failure is finished, never duplicated
        return processor.process_card(
            card,
            state,
            force_update=True,
            completed_stages=list(item.get("completed_stages") or []),
        )

    def _refetch_card(
        self,
        state: RunState,
        item: FailedItem,
        column_cards: dict[str, list[SourceCard]],
    ) -> SourceCard:
        project_id = state.source.project_id
        column_id = item.get("column_id")
        if column_id:
            if column_id not in column_cards:
                column_cards[column_id] = self.basecamp.get_cards(project_id, column_id)
            for card in column_cards[column_id]:
                if card.id == item["source_id"]:
                    return card
        return self.basecamp.get_card(project_id, item["source_id"])

    def _retry_column(
        self, state: RunState, processor: CardProcessor, item: FailedItem
    ) -> None:
        try:
            cards = self.basecamp.get_cards(state.source.project_id, item["source_id"])
        except AuthenticationError:
            raise
        except MigratorError as e:
            state.record_column_failure(item["source_id"], item["title"], str(e))
            return

        for card in cards:
            state.apply_outcome(processor.process_card(card, state))
        state.resolve_column_failure(item["source_id"])

    # -- Helpers -------------------------------------------------------------

    def _fail_run(self, state: RunState, error: Exception) -> None:
        """Mark the run failed and persist it before the error propagates."""
        log_with_context(
            logging.ERROR, f"Migration {state.run_id} failed: {error}", run_id=state.run_id
        )
        state.mark_failed()
        try:
            self.store.save(state)
        except OSError as e:
            log_with_context(
                logging.ERROR, f"Could not persist failed run state: {e}", run_id=state.run_id
            )

    def _check_account(self, account_slug: str) -> None:
        adapter_slug = getattr(self.fizzy, "account_slug", account_slug)
        if adapter_slug != account_slug.strip("/"):
            raise ConfigError(
                f"Fizzy adapter is bound to account '{adapter_slug}', not '{account_slug}'"
            )

    def _run_config_from_state(self, state: RunState) -> RunConfig:
        options = state.options
        return RunConfig(
            project_id=state.source.project_id,
            card_table_id=state.source.card_table_id,
            account_slug=state.target.account_slug,
            board_id=state.target.board_id,
            project_name=state.source.project_name,
            migrate_comments=options.get("migrate_comments", True),
            update_existing=options.get("update_existing", False),
            dry_run=options.get("dry_run", False),
            skip_user_mapping=options.get("skip_user_mapping", False),
            batch_size=options.get("batch_size", self.config.batch_size),
        )
