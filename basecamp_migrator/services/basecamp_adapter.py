"""Typed adapter for the Basecamp 3 API.

Wraps an ``ApiClient`` bound to ``{api_url}/{account_id}`` and converts the
raw JSON into the normalized shapes of ``basecamp_migrator.types``. This is
the only place Basecamp field names (``content``, ``email_address``,
``lists``, ``parent``) are known.

A 401 response triggers one transparent token refresh through the injected
``token_refresher`` followed by exactly one retry of the request.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Any

import requests

from basecamp_migrator.constants import BASECAMP_TOKEN_URL, REQUEST_TIMEOUT
from basecamp_migrator.core.config import MigrationConfig
from basecamp_migrator.exceptions import AuthenticationError, ConfigError
from basecamp_migrator.types import (
    CardTable,
    Identity,
    SourceCard,
    SourceColumn,
    SourceComment,
    SourceStep,
)
from basecamp_migrator.utils.api import (
    ApiClient,
    RateLimiter,
    decode_json,
    parse_link_header,
)
from basecamp_migrator.utils.logging import log_with_context

# Returns a fresh access token, or raises.
TokenRefresher = Callable[[], str]


def identity_from_basecamp(data: dict[str, Any] | None) -> Identity | None:
    """Build an ``Identity`` from a Basecamp person object."""
    if not data or data.get("id") is None:
        return None
    return Identity(
        id=str(data["id"]),
        name=data.get("name") or "",
        email=data.get("email_address") or data.get("email") or "",
    )


def _step_from_basecamp(data: dict[str, Any]) -> SourceStep:
    assignee = identity_from_basecamp(data.get("assignee"))
    if assignee is None and data.get("assignees"):
        assignee = identity_from_basecamp(data["assignees"][0])
    return SourceStep(
        title=data.get("content") or data.get("title") or "",
        completed=bool(data.get("completed")),
        assignee=assignee,
    )


def card_from_basecamp(data: dict[str, Any]) -> SourceCard:
    """Build a ``SourceCard`` from a Basecamp card object."""
    parent = data.get("parent") or {}
    assignees = [
        identity
        for identity in (identity_from_basecamp(a) for a in data.get("assignees") or [])
        if identity is not None
    ]
    return SourceCard(
        id=str(data["id"]),
        title=data.get("title") or "",
        body=data.get("content") or "",
        completed=bool(data.get("completed")),
        assignees=assignees,
        steps=[_step_from_basecamp(s) for s in data.get("steps") or []],
        comments_count=int(data.get("comments_count") or 0),
        column_id=str(parent["id"]) if parent.get("id") is not None else None,
        column_title=parent.get("title"),
        app_url=data.get("app_url"),
    )


def column_from_basecamp(data: dict[str, Any]) -> SourceColumn:
    """Build a ``SourceColumn`` from an entry of a card table's ``lists``."""
    return SourceColumn(
        id=str(data["id"]),
        title=data.get("title") or "",
        color=data.get("color"),
        type=data.get("type"),
    )


def make_token_refresher(
    refresh_token: str,
    client_id: str,
    client_secret: str,
    token_url: str = BASECAMP_TOKEN_URL,
    on_refresh: Callable[[dict[str, Any]], None] | None = None,
) -> TokenRefresher:
    """Build a refresher that exchanges a Launchpad refresh token.

    ``on_refresh`` receives the raw token response so the caller can
    persist the rotated tokens.
    """
    state = {"refresh_token": refresh_token}

    def refresh() -> str:
        try:
            response = requests.post(
                token_url,
                data={
                    "type": "refresh",
                    "refresh_token": state["refresh_token"],
                    "client_id": client_id,
                    "client_secret": client_secret,
                },
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            raise AuthenticationError(f"Failed to refresh Basecamp token: {e}") from e

        payload = decode_json(response)
        if not response.ok or not isinstance(payload, dict) or not payload.get("access_token"):
            raise AuthenticationError(
                f"Failed to refresh Basecamp token: HTTP {response.status_code}"
            )
        if payload.get("refresh_token"):
            state["refresh_token"] = payload["refresh_token"]
        if on_refresh:
            on_refresh(payload)
        return str(payload["access_token"])

    return refresh


class BasecampAdapter:
    """Thin typed wrapper around the Basecamp 3 API."""

    def __init__(
        self, client: ApiClient, token_refresher: TokenRefresher | None = None
    ) -> None:
        self._client = client
        self._token_refresher = token_refresher

    @classmethod
    def from_config(
        cls,
        config: MigrationConfig,
        access_token: str,
        token_refresher: TokenRefresher | None = None,
    ) -> BasecampAdapter:
        """Build an adapter bound to the configured Basecamp account.

        Raises:
            ConfigError: If no account id is configured
        """
        settings = config.basecamp
        if not settings.account_id:
            raise ConfigError("basecamp.account_id is required")
        client = ApiClient(
            f"{settings.api_url.rstrip('/')}/{settings.account_id}",
            access_token,
            rate_limiter=RateLimiter(settings.rate_limit),
            headers={"User-Agent": settings.user_agent},
            retry_config=config.retry_config,
            name="basecamp",
        )
        return cls(client, token_refresher)

    # -- Transport ------------------------------------------------------------

    def _get(self, path: str, params: dict[str, Any] | None = None) -> requests.Response:
        try:
            return self._client.get(path, params=params)
        except AuthenticationError:
            if self._token_refresher is None:
                raise
            log_with_context(
                logging.INFO, "Basecamp token rejected, refreshing", api="basecamp"
            )
            try:
                token = self._token_refresher()
            except AuthenticationError:
                raise
            except Exception as e:
                raise AuthenticationError(f"Failed to refresh Basecamp token: {e}") from e
            self._client.set_access_token(token)
            # Exactly one retry with the new token; a second 401 propagates.
            return self._client.get(path, params=params)

    def _iter_link_pages(
        self, path: str, params: dict[str, Any] | None = None
    ) -> Iterator[list[dict[str, Any]]]:
        next_url: str | None = path
        while next_url:
            response = self._get(next_url, params=params)
            # The next link already carries the query string.
            params = None
            page = decode_json(response) or []
            yield page
            next_url = parse_link_header(response.headers.get("Link")).get("next")

    # -- Projects -------------------------------------------------------------

    def iter_project_pages(
        self, status: str | None = None
    ) -> Iterator[list[dict[str, Any]]]:
        """Yield pages of raw project objects.

        Args:
            status: Optional project status filter (``archived``, ``trashed``).
        """
        params = {"status": status} if status else None
        yield from self._iter_link_pages("projects.json", params)

    def get_projects(self, status: str | None = None) -> list[dict[str, Any]]:
        """Return every project across all pages."""
        projects: list[dict[str, Any]] = []
        for page in self.iter_project_pages(status):
            projects.extend(page)
        return projects

    def get_project(self, project_id: str) -> dict[str, Any]:
        result: dict[str, Any] = decode_json(self._get(f"projects/{project_id}.json"))
        return result

    # -- Card tables ----------------------------------------------------------

    def get_card_table(self, project_id: str, card_table_id: str) -> CardTable:
        """Fetch a card table with its columns.

        Args:
            project_id: Basecamp project (bucket) id.
            card_table_id: Card table id.

        Returns:
            CardTable whose columns keep Basecamp's display order.
        """
        data = decode_json(
            self._get(f"buckets/{project_id}/card_tables/{card_table_id}.json")
        ) or {}
        return CardTable(
            id=str(data.get("id", card_table_id)),
            title=data.get("title") or "",
            columns=[column_from_basecamp(c) for c in data.get("lists") or []],
        )

    def iter_card_pages(
        self, project_id: str, column_id: str
    ) -> Iterator[list[SourceCard]]:
        """Yield pages of cards in a column.

        The generator is lazy and finite; calling the method again starts a
        fresh sequence from the first page.
        """
        path = f"buckets/{project_id}/card_tables/lists/{column_id}/cards.json"
        for page in self._iter_link_pages(path):
            yield [card_from_basecamp(c) for c in page]

    def get_cards(self, project_id: str, column_id: str) -> list[SourceCard]:
        """Return every card in a column, in source order."""
        cards: list[SourceCard] = []
        for page in self.iter_card_pages(project_id, column_id):
            cards.extend(page)
        return cards

    def get_card(self, project_id: str, card_id: str) -> SourceCard:
        data = decode_json(
            self._get(f"buckets/{project_id}/card_tables/cards/{card_id}.json")
        )
        return card_from_basecamp(data)

    # -- Comments and people --------------------------------------------------

    def get_comments(self, project_id: str, card_id: str) -> list[SourceComment]:
        """Return every comment on a card, oldest first."""
        comments: list[SourceComment] = []
        path = f"buckets/{project_id}/recordings/{card_id}/comments.json"
        for page in self._iter_link_pages(path):
            for c in page:
                comments.append(
                    SourceComment(
                        id=str(c["id"]),
                        body=c.get("content") or "",
                        creator=identity_from_basecamp(c.get("creator")),
                        created_at=c.get("created_at"),
                    )
                )
        return comments

    def get_people(self, project_id: str) -> list[Identity]:
        """Return the people with access to a project."""
        people: list[Identity] = []
        for page in self._iter_link_pages(f"projects/{project_id}/people.json"):
            for p in page:
                identity = identity_from_basecamp(p)
                if identity is not None:
                    people.append(identity)
        return people
