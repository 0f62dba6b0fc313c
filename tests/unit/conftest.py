"""Unit test configuration and shared fixtures."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from basecamp_migrator.core.context import RunConfig
from basecamp_migrator.core.state import RunState, SourceInfo, TargetInfo
from basecamp_migrator.exceptions import APIError
from basecamp_migrator.types import (
    CardTable,
    FizzyBoard,
    FizzyCard,
    FizzyColumn,
    Identity,
    SourceCard,
    SourceColumn,
    SourceComment,
)

# ---------------------------------------------------------------------------
# In-memory adapters
# ---------------------------------------------------------------------------


class FakeBasecamp:
    """Serves a card table from memory.

    ``failing_columns`` makes ``get_cards`` raise for those column ids;
    ``fail_comments`` does the same for ``get_comments``.
    """

    def __init__(
        self,
        card_table: CardTable,
        cards: dict[str, list[SourceCard]] | None = None,
        comments: dict[str, list[SourceComment]] | None = None,
        people: list[Identity] | None = None,
    ) -> None:
        self.card_table = card_table
        self.cards = cards or {}
        self.comments = comments or {}
        self.people = people or []
        self.failing_columns: set[str] = set()
        self.fail_people = False
        self.fail_comments = False
        self.calls: list[tuple[Any, ...]] = []

    def get_card_table(self, project_id, card_table_id):
        self.calls.append(("get_card_table", project_id, card_table_id))
        return self.card_table

    def iter_card_pages(self, project_id, column_id):
        yield list(self.cards.get(column_id, []))

    def get_cards(self, project_id, column_id):
        self.calls.append(("get_cards", column_id))
        if column_id in self.failing_columns:
            raise APIError(f"column {column_id} unavailable", status_code=503)
        return list(self.cards.get(column_id, []))

    def get_card(self, project_id, card_id):
        for cards in self.cards.values():
            for card in cards:
                if card.id == card_id:
                    return card
        raise APIError(f"card {card_id} not found", status_code=404)

    def get_comments(self, project_id, card_id):
        if self.fail_comments:
            raise APIError("comments unavailable", status_code=500)
        return list(self.comments.get(card_id, []))

    def get_people(self, project_id):
        if self.fail_people:
            raise APIError("people unavailable", status_code=500)
        return list(self.people)


class FakeFizzy:
    """Records every write and keeps boards, columns and cards in memory.

    Titles listed in ``fail_titles`` make ``create_card`` raise;
    ``fail_placement`` makes placement calls raise after the card exists;
    ``fail_steps`` makes every step creation raise.
    """

    def __init__(self, account_slug: str = "acct", users: list[Identity] | None = None) -> None:
        self.account_slug = account_slug
        self.users = users or []
        self.boards: dict[str, FizzyBoard] = {"b-1": FizzyBoard(id="b-1", name="Board")}
        self.columns: dict[str, list[FizzyColumn]] = {"b-1": []}
        self.cards: dict[str, FizzyCard] = {}
        self.card_boards: dict[str, str] = {}
        self.fail_titles: set[str] = set()
        self.fail_placement: set[str] = set()
        self.fail_steps = False
        self.fail_column_creation = False
        self.fail_scan = False
        self.calls: list[tuple[Any, ...]] = []
        self._next_number = 1

    # Boards and columns

    def get_board(self, board_id):
        return self.boards[board_id]

    def create_board(self, name):
        board = FizzyBoard(id=f"b-{len(self.boards) + 1}", name=name)
        self.boards[board.id] = board
        self.columns[board.id] = []
        self.calls.append(("create_board", name))
        return board

    def get_columns(self, board_id):
        return list(self.columns.get(board_id, []))

    def create_column(self, board_id, name, color=None):
        self.calls.append(("create_column", board_id, name, color))
        if self.fail_column_creation:
            raise APIError("column creation rejected", status_code=422)
        column = FizzyColumn(id=f"col-{name.lower().replace(' ', '-')}", title=name, color=color)
        self.columns.setdefault(board_id, []).append(column)
        return column

    def get_users(self):
        return list(self.users)

    # Cards

    def add_existing_card(self, board_id: str, title: str, body: str) -> FizzyCard:
        card = FizzyCard(number=str(self._next_number), title=title, body=body)
        self._next_number += 1
        self.cards[card.number] = card
        self.card_boards[card.number] = board_id
        return card

    def iter_card_pages(self, board_id):
        if self.fail_scan:
            raise APIError("scan failed", status_code=500)
        yield [c for n, c in self.cards.items() if self.card_boards.get(n) == board_id]

    def create_card(self, board_id, payload):
        self.calls.append(("create_card", board_id, payload["title"]))
        if payload["title"] in self.fail_titles:
            raise APIError(f"cannot create {payload['title']}", status_code=422)
        return self.add_existing_card(board_id, payload["title"], payload["description"])

    def update_card(self, number, payload):
        self.calls.append(("update_card", number, payload["title"]))
        current = self.cards[number]
        self.cards[number] = FizzyCard(
            number=number, title=payload["title"], body=payload["description"], closed=current.closed
        )

    def _placement(self, name, number, *args):
        self.calls.append((name, number, *args))
        if self.cards[number].title in self.fail_placement:
            raise APIError(f"{name} failed", status_code=500)

    def triage_card(self, number, column_id):
        self._placement("triage_card", number, column_id)

    def not_now_card(self, number):
        self._placement("not_now_card", number)

    def close_card(self, number):
        self._placement("close_card", number)

    def assign_user(self, number, assignee_id):
        self.calls.append(("assign_user", number, assignee_id))

    def create_step(self, number, title, completed=False):
        self.calls.append(("create_step", number, title, completed))
        if self.fail_steps:
            raise APIError("step rejected", status_code=422)

    def create_comment(self, number, body):
        self.calls.append(("create_comment", number, body))

    def calls_named(self, name: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]


# ---------------------------------------------------------------------------
# Data builders
# ---------------------------------------------------------------------------


def make_card(
    card_id: str = "1",
    title: str = "Card",
    column_id: str | None = "c-doing",
    **overrides: Any,
) -> SourceCard:
    """Build a SourceCard with sensible defaults."""
    fields: dict[str, Any] = {
        "id": card_id,
        "title": title,
        "body": f"<p>Body of {title}</p>",
        "column_id": column_id,
    }
    fields.update(overrides)
    return SourceCard(**fields)


def make_run_config(**overrides: Any) -> RunConfig:
    """Build a RunConfig targeting the fake board ``b-1``."""
    fields: dict[str, Any] = {
        "project_id": "p-1",
        "card_table_id": "ct-1",
        "account_slug": "acct",
        "board_id": "b-1",
    }
    fields.update(overrides)
    return RunConfig(**fields)


def make_state(**overrides: Any) -> RunState:
    """Build an in-progress RunState for project ``p-1`` and board ``b-1``."""
    fields: dict[str, Any] = {
        "run_id": "mig_1",
        "source": SourceInfo(project_id="p-1", card_table_id="ct-1", project_name="Project"),
        "target": TargetInfo(account_slug="acct", board_id="b-1", board_name="Board"),
    }
    fields.update(overrides)
    return RunState(**fields)


def make_response(
    status: int = 200,
    body: Any = None,
    headers: dict[str, str] | None = None,
) -> MagicMock:
    """Build a MagicMock shaped like a ``requests.Response``."""
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 400
    response.headers = headers or {}
    if body is None:
        response.content = b""
        response.json.side_effect = ValueError("no body")
    else:
        response.content = b"x"
        response.json.return_value = body
    return response


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def card_table():
    return CardTable(
        id="ct-1",
        title="Roadmap",
        columns=[
            SourceColumn(id="c-triage", title="Triage", type="Kanban::Triage"),
            SourceColumn(id="c-doing", title="In Progress", color="green", type="Kanban::Column"),
            SourceColumn(id="c-done", title="Done", type="Kanban::DoneColumn"),
        ],
    )


@pytest.fixture()
def fake_basecamp(card_table):
    cards = {
        "c-triage": [make_card("1", "Idea", column_id="c-triage")],
        "c-doing": [
            make_card("2", "Build it", column_id="c-doing"),
            make_card("3", "Test it", column_id="c-doing"),
        ],
        "c-done": [
            make_card("4", "Spec it", column_id="c-done", completed=True),
            make_card("5", "Plan it", column_id="c-done", completed=True),
        ],
    }
    return FakeBasecamp(card_table, cards=cards)


@pytest.fixture()
def fake_fizzy():
    return FakeFizzy()
