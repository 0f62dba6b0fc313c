"""Unit tests for user mapping and its persistence."""

import json
from unittest.mock import patch

import pytest

from basecamp_migrator.exceptions import UserMappingError
from basecamp_migrator.services.user_mapper import (
    create_mapping,
    find_unmapped_users,
    find_user_by_email,
    load_user_mappings,
    map_users,
    save_user_mappings,
)
from basecamp_migrator.types import Identity, SourceStep
from tests.unit.conftest import make_card


def _make_mapping(source_id="1001", destination_id="u-alice"):
    return create_mapping(
        Identity(id=source_id, name=f"Person {source_id}", email=f"{source_id}@example.com"),
        Identity(id=destination_id, name=f"User {destination_id}"),
    )


class TestFindUserByEmail:
    """Tests for find_user_by_email()."""

    def test_case_insensitive(self, sample_fizzy_users):
        assert find_user_by_email(" ALICE@example.com ", sample_fizzy_users).id == "u-alice"

    def test_blank_email_never_matches(self):
        users = [Identity(id="x", name="No Email")]
        assert find_user_by_email("", users) is None

    def test_no_match(self, sample_fizzy_users):
        assert find_user_by_email("nobody@example.com", sample_fizzy_users) is None


class TestMapUsers:
    """Tests for map_users()."""

    def test_non_interactive_auto_matches_and_skips(self, sample_people, sample_fizzy_users):
        result = map_users(sample_people, sample_fizzy_users)

        assert result.mappings["1001"].destination_id == "u-alice"
        assert result.mappings["1002"].destination_id == "u-bob"
        assert "1003" not in result.mappings
        assert result.stats.auto_matched == 2
        assert result.stats.skipped == 1
        assert result.mapped_count == 2

    def test_existing_mappings_are_kept_without_prompting(self, sample_people, sample_fizzy_users):
        existing = {"1003": _make_mapping("1003", "u-dave")}

        with patch("basecamp_migrator.services.user_mapper.click.confirm") as mock_confirm, patch(
            "basecamp_migrator.services.user_mapper.click.prompt"
        ) as mock_prompt:
            mock_confirm.return_value = True
            result = map_users(sample_people, sample_fizzy_users, existing, interactive=True)

        assert result.mappings["1003"].destination_id == "u-dave"
        assert result.stats.existing == 1
        assert mock_confirm.call_count == 2
        mock_prompt.assert_not_called()

    @patch("basecamp_migrator.services.user_mapper.click.prompt")
    @patch("basecamp_migrator.services.user_mapper.click.confirm")
    def test_interactive_rejection_falls_back_to_menu(
        self, mock_confirm, mock_prompt, sample_fizzy_users
    ):
        people = [Identity(id="1001", name="Alice", email="alice@example.com")]
        mock_confirm.return_value = False
        mock_prompt.return_value = 3

        result = map_users(people, sample_fizzy_users, interactive=True)

        assert result.mappings["1001"].destination_id == "u-dave"
        assert result.stats.manually_mapped == 1

    @patch("basecamp_migrator.services.user_mapper.click.prompt")
    def test_interactive_skip_choice(self, mock_prompt, sample_fizzy_users):
        people = [Identity(id="1003", name="Carol", email="carol@elsewhere.com")]
        mock_prompt.return_value = 0

        result = map_users(people, sample_fizzy_users, interactive=True)

        assert result.mappings == {}
        assert result.stats.skipped == 1


class TestFindUnmappedUsers:
    """Tests for find_unmapped_users()."""

    def test_collects_assignees_and_step_assignees_once(self):
        alice = Identity(id="1001", name="Alice")
        carol = Identity(id="1003", name="Carol")
        cards = [
            make_card("1", assignees=[alice, carol]),
            make_card("2", steps=[SourceStep(title="s", assignee=carol)]),
        ]

        unmapped = find_unmapped_users(cards, {"1001": _make_mapping("1001")})

        assert [u.id for u in unmapped] == ["1003"]


class TestPersistence:
    """Tests for loading and saving the shared mapping file."""

    def test_missing_file_is_empty(self, tmp_path):
        assert load_user_mappings(tmp_path / "user_mappings.json") == {}

    def test_round_trip(self, tmp_path):
        path = tmp_path / "state" / "user_mappings.json"
        save_user_mappings(path, {"1001": _make_mapping("1001")})

        loaded = load_user_mappings(path)

        assert loaded["1001"].destination_id == "u-alice"
        assert not path.with_suffix(".tmp").exists()

    def test_save_merges_last_write_wins(self, tmp_path):
        path = tmp_path / "user_mappings.json"
        save_user_mappings(path, {"1001": _make_mapping("1001", "u-old"), "1002": _make_mapping("1002", "u-bob")})
        save_user_mappings(path, {"1001": _make_mapping("1001", "u-new")})

        loaded = load_user_mappings(path)

        assert loaded["1001"].destination_id == "u-new"
        assert loaded["1002"].destination_id == "u-bob"

    def test_file_keyed_by_source_id(self, tmp_path):
        path = tmp_path / "user_mappings.json"
        save_user_mappings(path, {"1001": _make_mapping("1001")})

        raw = json.loads(path.read_text())
        assert raw["1001"]["destination_id"] == "u-alice"
        assert raw["1001"]["mapped_at"]

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "user_mappings.json"
        path.write_text("{not json")

        with pytest.raises(UserMappingError):
            load_user_mappings(path)
