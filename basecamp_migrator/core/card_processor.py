"""Card-level processing logic extracted from the main migrator."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from basecamp_migrator.core.context import RunConfig
    from basecamp_migrator.core.state import RunState

from basecamp_migrator.constants import SOURCE_SYSTEM
from basecamp_migrator.exceptions import AuthenticationError, MigratorError
from basecamp_migrator.services.card_transform import transform_card, transform_comment
from basecamp_migrator.types import (
    ActionType,
    CardOutcome,
    CardResult,
    ColumnAction,
    SourceCard,
    TransformedCard,
    UserMapping,
)
from basecamp_migrator.utils.logging import log_with_context

# Per-card stages in the order they run
STAGE_CREATE = "create"
STAGE_PLACE = "place"
STAGE_ASSIGN = "assign"
STAGE_STEPS = "steps"
STAGE_CLOSE = "close"
STAGE_COMMENTS = "comments"


class CardProcessor:
    """Handles per-card processing during migration.

    Reads the run's mappings from ``RunState`` but never mutates it; every
    effect is reported back in a ``CardOutcome``.
    """

    def __init__(
        self,
        config: RunConfig,
        basecamp: Any,
        fizzy: Any,
        board_id: str,
        system: str = SOURCE_SYSTEM,
    ) -> None:
        self.config = config
        self.basecamp = basecamp
        self.fizzy = fizzy
        self.board_id = board_id
        self.system = system

    def process_card(
        self,
        card: SourceCard,
        state: RunState,
        force_update: bool = False,
        completed_stages: list[str] | None = None,
    ) -> CardOutcome:
        """Migrate a single card.

        Cards already on the board are skipped unless ``update_existing`` is
        set (or ``force_update``, used by targeted retries), in which case the
        existing Fizzy card is updated instead of creating a second one.
        A card whose ``completed_stages`` include ``create`` was created by an
        earlier pass that failed part way; only its missing stages are run.

        Args:
            card: The Basecamp card.
            state: Current run state, read only.
            force_update: Update a known card even without ``update_existing``.
            completed_stages: Stages finished by an earlier failed pass.

        Returns:
            CardOutcome describing what happened. Failures are reported, not
            raised, except ``AuthenticationError`` which ends the run.
        """
        outcome = CardOutcome(
            source_id=card.id,
            title=card.title,
            result=CardResult.FAILED,
            column_id=card.column_id,
        )
        existing_number = state.existing_records.get(card.id)
        resume = (
            existing_number is not None
            and completed_stages is not None
            and STAGE_CREATE in completed_stages
        )
        if resume:
            outcome.completed_stages = list(completed_stages or [])
        update = (
            not resume
            and existing_number is not None
            and (self.config.update_existing or force_update)
        )

        if existing_number is not None and not (update or resume):
            outcome.result = CardResult.SKIPPED
            outcome.destination_id = existing_number
            log_with_context(
                logging.DEBUG,
                f"Skipping '{card.title}', already migrated as card {existing_number}",
                card_id=card.id,
            )
            return outcome

        try:
            transformed = transform_card(
                card, state.column_mappings, state.user_mappings, self.system
            )
            outcome.warnings.extend(self._mapping_warnings(card, transformed))

            if self.config.dry_run:
                verb = "update" if update or resume else "create"
                log_with_context(
                    logging.INFO,
                    f"{self.config.log_prefix}Would {verb} card '{transformed.payload['title']}'",
                    card_id=card.id,
                )
                outcome.result = CardResult.DRY_RUN
                return outcome

            if resume:
                outcome.destination_id = existing_number
                self._finish_card(card, existing_number, transformed, outcome, state.user_mappings)
                outcome.result = CardResult.CREATED
                log_with_context(
                    logging.INFO,
                    f"Finished card {existing_number} from '{transformed.payload['title']}'",
                    card_id=card.id,
                )
            elif update:
                self._update_card(existing_number, transformed, outcome)
            else:
                self._create_card(card, transformed, outcome, state.user_mappings)
        except AuthenticationError:
            raise
        except Exception as e:
            # Any per-card failure becomes a failed item; the run goes on
            outcome.result = CardResult.FAILED
            outcome.error = str(e) or type(e).__name__
            log_with_context(
                logging.ERROR,
                f"Failed to migrate card '{card.title}': {outcome.error}",
                card_id=card.id,
                fizzy_card=outcome.destination_id,
            )
        return outcome

    # -- Create / update -----------------------------------------------------

    def _create_card(
        self,
        card: SourceCard,
        transformed: TransformedCard,
        outcome: CardOutcome,
        user_mappings: dict[str, UserMapping],
    ) -> None:
        fizzy_card = self.fizzy.create_card(self.board_id, transformed.payload)
        number = fizzy_card.number
        # Known from here on so a later failure still records the card
        outcome.destination_id = number
        outcome.completed_stages.append(STAGE_CREATE)

        self._finish_card(card, number, transformed, outcome, user_mappings)

        outcome.result = CardResult.CREATED
        log_with_context(
            logging.INFO,
            f"Migrated '{transformed.payload['title']}' as card {number}",
            card_id=card.id,
        )

    def _finish_card(
        self,
        card: SourceCard,
        number: str,
        transformed: TransformedCard,
        outcome: CardOutcome,
        user_mappings: dict[str, UserMapping],
    ) -> None:
        """Run every stage after creation that is not in ``outcome.completed_stages``."""
        done = outcome.completed_stages

        if STAGE_PLACE not in done:
            if self._place(number, transformed.column_action):
                done.append(STAGE_CLOSE)
            done.append(STAGE_PLACE)

        if STAGE_ASSIGN not in done:
            for assignee_id in transformed.assignee_ids:
                try:
                    self.fizzy.assign_user(number, assignee_id)
                except MigratorError as e:
                    outcome.warnings.append(
                        (
                            f"Failed to assign user {assignee_id} to card {number}",
                            {"card_id": card.id, "error": str(e)},
                        )
                    )
            done.append(STAGE_ASSIGN)

        if STAGE_STEPS not in done:
            for step in transformed.steps:
                try:
                    self.fizzy.create_step(number, step["title"], step["completed"])
                    outcome.steps_migrated += 1
                except MigratorError as e:
                    outcome.warnings.append(
                        (
                            f"Failed to create step for card {number}",
                            {"card_id": card.id, "step": step["title"], "error": str(e)},
                        )
                    )
            done.append(STAGE_STEPS)

        if STAGE_CLOSE not in done:
            if transformed.completed:
                self.fizzy.close_card(number)
            done.append(STAGE_CLOSE)

        if STAGE_COMMENTS not in done:
            if self.config.migrate_comments and transformed.comments_count > 0:
                self._migrate_comments(card, number, outcome, user_mappings)
            done.append(STAGE_COMMENTS)

    def _update_card(
        self, number: str, transformed: TransformedCard, outcome: CardOutcome
    ) -> None:
        outcome.destination_id = number
        self.fizzy.update_card(
            number,
            {
                "title": transformed.payload["title"],
                "description": transformed.payload["description"],
            },
        )
        closed = self._place(number, transformed.column_action)
        if transformed.completed and not closed:
            self.fizzy.close_card(number)

        outcome.result = CardResult.UPDATED
        log_with_context(
            logging.INFO,
            f"Updated card {number} from '{transformed.payload['title']}'",
            card_id=transformed.source_id,
        )

    def _place(self, number: str, action: ColumnAction | None) -> bool:
        """Apply the column action. Returns True if the card was closed."""
        if action is None or action.type is ActionType.KEEP_TRIAGE:
            return False
        if action.type is ActionType.NOT_NOW:
            self.fizzy.not_now_card(number)
            return False
        if action.type is ActionType.CLOSE:
            self.fizzy.close_card(number)
            return True
        if action.target:
            self.fizzy.triage_card(number, action.target)
        return False

    # -- Comments ------------------------------------------------------------

    def _migrate_comments(
        self,
        card: SourceCard,
        number: str,
        outcome: CardOutcome,
        user_mappings: dict[str, UserMapping],
    ) -> None:
        try:
            comments = self.basecamp.get_comments(self.config.project_id, card.id)
        except AuthenticationError:
            raise
        except MigratorError as e:
            outcome.warnings.append(
                (
                    f"Failed to fetch comments for card {card.id}",
                    {"card_id": card.id, "error": str(e)},
                )
            )
            return

        for comment in comments:
            mapped = transform_comment(comment, user_mappings)
            try:
                self.fizzy.create_comment(number, mapped.body)
                outcome.comments_migrated += 1
            except MigratorError as e:
                outcome.warnings.append(
                    (
                        f"Failed to migrate comment for card {number}",
                        {"card_id": card.id, "comment_id": comment.id, "error": str(e)},
                    )
                )

    # -- Warnings ------------------------------------------------------------

    def _mapping_warnings(
        self, card: SourceCard, transformed: TransformedCard
    ) -> list[tuple[str, dict[str, Any]]]:
        warnings: list[tuple[str, dict[str, Any]]] = []
        for assignee in transformed.unmapped_assignees:
            warnings.append(
                (
                    f"Unmapped assignee: {assignee.name} ({assignee.email})",
                    {"card_id": card.id, "assignee_id": assignee.id},
                )
            )
        for dropped in transformed.dropped_step_assignees:
            warnings.append(
                (
                    f"Step assignee {dropped['assignee_name']} dropped from "
                    f"'{dropped['step_title']}', Fizzy steps have no assignee",
                    {"card_id": card.id, **dropped},
                )
            )
        if card.column_id and transformed.column_action is None:
            warnings.append(
                (
                    f"No column mapping for column {card.column_id}, card stays in triage",
                    {"card_id": card.id, "column_id": card.column_id},
                )
            )
        return warnings
