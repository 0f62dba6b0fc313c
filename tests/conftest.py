"""Shared test fixtures for the basecamp_migrator test suite."""

import json

import pytest

from basecamp_migrator.types import CardTable, Identity, SourceColumn


@pytest.fixture()
def sample_people():
    """Return Basecamp people as normalized identities."""
    return [
        Identity(id="1001", name="Alice Smith", email="Alice@Example.com"),
        Identity(id="1002", name="Bob Jones", email="bob@example.com"),
        Identity(id="1003", name="Carol White", email="carol@elsewhere.com"),
    ]


@pytest.fixture()
def sample_fizzy_users():
    """Return Fizzy users; Carol has no counterpart."""
    return [
        Identity(id="u-alice", name="Alice S.", email="alice@example.com"),
        Identity(id="u-bob", name="Bob J.", email="bob@example.com"),
        Identity(id="u-dave", name="Dave K.", email="dave@example.com"),
    ]


@pytest.fixture()
def sample_card_table():
    """Return a card table with one column of each workflow type."""
    return CardTable(
        id="ct-1",
        title="Roadmap",
        columns=[
            SourceColumn(id="c-triage", title="Triage", type="Kanban::Triage"),
            SourceColumn(id="c-doing", title="In Progress", color="green", type="Kanban::Column"),
            SourceColumn(id="c-later", title="Not now", type="Kanban::NotNowColumn"),
            SourceColumn(id="c-done", title="Done", type="Kanban::DoneColumn"),
        ],
    )


@pytest.fixture()
def config_file(tmp_path):
    """Write a small YAML config and return its path."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "basecamp:\n"
        "  account_id: 999\n"
        "  rate_limit: 2\n"
        "fizzy:\n"
        "  api_url: https://fizzy.test\n"
        "max_retries: 4\n"
        f"state_dir: {json.dumps(str(tmp_path / 'state'))}\n"
    )
    return path
