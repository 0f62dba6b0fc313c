"""
Detection of cards migrated by earlier runs.

Scans every card on the target board once per run and reads the source
marker out of each description, so re-running a migration skips (or
updates) what already exists instead of creating duplicates.
"""

from __future__ import annotations

import logging

from basecamp_migrator.constants import SOURCE_SYSTEM
from basecamp_migrator.exceptions import AuthenticationError, MigratorError
from basecamp_migrator.services.card_transform import extract_source_id
from basecamp_migrator.utils.logging import log_with_context


def scan_existing_cards(
    fizzy, board_id: str, system: str = SOURCE_SYSTEM
) -> tuple[dict[str, str], str | None]:
    """
    Map source ids to Fizzy card numbers for every marked card on a board.

    A failed scan degrades to an empty map: the migration continues without
    duplicate protection and the caller records the returned warning.

    Args:
        fizzy: FizzyAdapter for the target account
        board_id: The board to scan
        system: Source system name used in the marker

    Returns:
        Tuple of (existing, warning) where existing maps source id to card
        number and warning is None unless the scan failed
    """
    existing: dict[str, str] = {}
    scanned = 0

    try:
        for page in fizzy.iter_card_pages(board_id):
            for card in page:
                scanned += 1
                source_id = extract_source_id(card.body, system)
                if source_id is not None:
                    existing[source_id] = card.number
    except AuthenticationError:
        raise
    except (MigratorError, OSError) as e:
        warning = f"Could not scan for existing cards: {e}"
        log_with_context(logging.WARNING, warning, board=board_id)
        return {}, warning

    log_with_context(
        logging.INFO,
        f"Found {len(existing)} previously migrated cards among {scanned} on the board",
        board=board_id,
    )
    return existing, None
