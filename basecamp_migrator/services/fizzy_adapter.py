"""Typed adapter for the Fizzy API.

Replaces raw ``client.post(f"{slug}/cards/{n}/triage", ...)`` calls with
explicit methods that are easier to mock, test, and type-check. All paths
are scoped to one account slug fixed at construction.

Fizzy answers creates with ``201`` and a ``Location`` header but no body,
so ``create_board``, ``create_column`` and ``create_card`` make one
follow-up read to return the created resource.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from typing import Any

from basecamp_migrator.core.config import MigrationConfig
from basecamp_migrator.exceptions import APIError
from basecamp_migrator.types import FizzyBoard, FizzyCard, FizzyColumn, Identity
from basecamp_migrator.utils.api import (
    ApiClient,
    RateLimiter,
    decode_json,
    parse_link_header,
)

_BOARD_LOCATION_RE = re.compile(r"/boards/([^./]+)")
_COLUMN_LOCATION_RE = re.compile(r"/columns/([^./]+)")
_CARD_LOCATION_RE = re.compile(r"/cards/(\d+)")


def identity_from_fizzy(data: dict[str, Any]) -> Identity:
    """Build an ``Identity`` from a Fizzy user object."""
    return Identity(
        id=str(data["id"]),
        name=data.get("name") or "",
        email=data.get("email_address") or data.get("email") or "",
    )


def board_from_fizzy(data: dict[str, Any]) -> FizzyBoard:
    return FizzyBoard(id=str(data["id"]), name=data.get("name") or "")


def column_from_fizzy(data: dict[str, Any]) -> FizzyColumn:
    return FizzyColumn(
        id=str(data["id"]),
        title=data.get("name") or data.get("title") or "",
        color=data.get("color"),
        position=data.get("position"),
    )


def card_from_fizzy(data: dict[str, Any]) -> FizzyCard:
    return FizzyCard(
        number=str(data["number"]),
        title=data.get("title") or "",
        body=data.get("description") or data.get("description_html") or "",
        status=data.get("status"),
        closed=bool(data.get("closed")),
    )


class FizzyAdapter:
    """Thin typed wrapper around the Fizzy API for one account."""

    def __init__(self, client: ApiClient, account_slug: str) -> None:
        self._client = client
        self.account_slug = account_slug.strip("/")

    @classmethod
    def from_config(
        cls, config: MigrationConfig, access_token: str, account_slug: str
    ) -> FizzyAdapter:
        """Build an adapter for one account from the Fizzy settings."""
        client = ApiClient(
            config.fizzy.api_url,
            access_token,
            rate_limiter=RateLimiter(config.fizzy.rate_limit),
            retry_config=config.retry_config,
            name="fizzy",
        )
        return cls(client, account_slug)

    def _path(self, suffix: str) -> str:
        return f"{self.account_slug}/{suffix}"

    # -- Identity and users ---------------------------------------------------

    def get_identity(self) -> dict[str, Any]:
        """Return the authenticated identity with its accounts."""
        result: dict[str, Any] = self._client.get_json("my/identity") or {}
        return result

    def get_users(self) -> list[Identity]:
        """Return every user of the account."""
        users = self._client.get_json(self._path("users")) or []
        return [identity_from_fizzy(u) for u in users]

    # -- Boards ---------------------------------------------------------------

    def get_boards(self) -> list[FizzyBoard]:
        boards = self._client.get_json(self._path("boards")) or []
        return [board_from_fizzy(b) for b in boards]

    def get_board(self, board_id: str) -> FizzyBoard:
        return board_from_fizzy(self._client.get_json(self._path(f"boards/{board_id}")))

    def create_board(self, name: str) -> FizzyBoard:
        """Create a board and return it.

        Args:
            name: Board name.

        Returns:
            The created board, read back through its ``Location``.
        """
        response = self._client.post(self._path("boards"), {"board": {"name": name}})
        match = _BOARD_LOCATION_RE.search(response.headers.get("Location") or "")
        if match:
            return self.get_board(match.group(1))
        body = decode_json(response)
        if isinstance(body, dict) and body.get("id") is not None:
            return board_from_fizzy(body)
        raise APIError(
            f"Board '{name}' created without a Location header",
            status_code=response.status_code,
        )

    # -- Columns --------------------------------------------------------------

    def get_columns(self, board_id: str) -> list[FizzyColumn]:
        columns = self._client.get_json(self._path(f"boards/{board_id}/columns")) or []
        return [column_from_fizzy(c) for c in columns]

    def create_column(
        self, board_id: str, name: str, color: str | None = None
    ) -> FizzyColumn:
        """Create a column on a board.

        Args:
            board_id: Board id.
            name: Column name.
            color: Fizzy colour token such as ``var(--color-card-4)``.

        Returns:
            The created column, looked up in the board's column list.
        """
        payload: dict[str, Any] = {"name": name}
        if color:
            payload["color"] = color
        response = self._client.post(
            self._path(f"boards/{board_id}/columns"), {"column": payload}
        )
        body = decode_json(response)
        if isinstance(body, dict) and body.get("id") is not None:
            return column_from_fizzy(body)

        match = _COLUMN_LOCATION_RE.search(response.headers.get("Location") or "")
        if match:
            column_id = match.group(1)
            for column in self.get_columns(board_id):
                if column.id == column_id:
                    return column
            return FizzyColumn(id=column_id, title=name, color=color)
        raise APIError(
            f"Column '{name}' created without a Location header",
            status_code=response.status_code,
        )

    # -- Cards ----------------------------------------------------------------

    def iter_card_pages(self, board_id: str) -> Iterator[list[FizzyCard]]:
        """Yield pages of cards on a board.

        An explicit page counter is advanced while the response carries a
        ``rel="next"`` link. Calling the method again restarts at page 1.
        """
        page = 1
        while True:
            response = self._client.get(
                self._path("cards"), params={"board_ids[]": board_id, "page": page}
            )
            yield [card_from_fizzy(c) for c in decode_json(response) or []]
            if "next" not in parse_link_header(response.headers.get("Link")):
                return
            page += 1

    def get_card(self, number: str) -> FizzyCard:
        return card_from_fizzy(self._client.get_json(self._path(f"cards/{number}")))

    def create_card(self, board_id: str, payload: dict[str, Any]) -> FizzyCard:
        """Create a card on a board.

        Args:
            board_id: Board id.
            payload: ``title``, ``description`` and ``status`` fields.

        Returns:
            The created card, read back by number.
        """
        response = self._client.post(
            self._path(f"boards/{board_id}/cards"), {"card": payload}
        )
        match = _CARD_LOCATION_RE.search(response.headers.get("Location") or "")
        if match:
            return self.get_card(match.group(1))
        body = decode_json(response)
        if isinstance(body, dict) and body.get("number") is not None:
            return card_from_fizzy(body)
        raise APIError(
            "Card created without a Location header", status_code=response.status_code
        )

    def update_card(self, number: str, payload: dict[str, Any]) -> None:
        self._client.put(self._path(f"cards/{number}"), {"card": payload})

    # -- Placement ------------------------------------------------------------

    def triage_card(self, number: str, column_id: str) -> None:
        """Move a card out of triage into a column."""
        self._client.post(self._path(f"cards/{number}/triage"), {"column_id": column_id})

    def not_now_card(self, number: str) -> None:
        self._client.post(self._path(f"cards/{number}/not_now"), {})

    def close_card(self, number: str) -> None:
        self._client.post(self._path(f"cards/{number}/closure"), {})

    # -- Card details ---------------------------------------------------------

    def assign_user(self, number: str, assignee_id: str) -> None:
        self._client.post(
            self._path(f"cards/{number}/assignments"), {"assignee_id": assignee_id}
        )

    def create_step(self, number: str, title: str, completed: bool = False) -> None:
        self._client.post(
            self._path(f"cards/{number}/steps"),
            {"step": {"title": title, "completed": completed}},
        )

    def create_comment(self, number: str, body: str) -> None:
        self._client.post(self._path(f"cards/{number}/comments"), {"comment": {"body": body}})

    # -- Tags -----------------------------------------------------------------

    def get_tags(self) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = self._client.get_json(self._path("tags")) or []
        return result

    def add_tag(self, number: str, tag_title: str) -> None:
        self._client.post(self._path(f"cards/{number}/taggings"), {"tag_title": tag_title})
