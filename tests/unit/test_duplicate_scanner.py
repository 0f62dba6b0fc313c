"""Unit tests for the existing card scan."""

from unittest.mock import MagicMock

import pytest

from basecamp_migrator.exceptions import AuthenticationError
from basecamp_migrator.services.duplicate_scanner import scan_existing_cards
from tests.unit.conftest import FakeFizzy


class TestScanExistingCards:
    """Tests for scan_existing_cards()."""

    def test_maps_marked_cards(self):
        fizzy = FakeFizzy()
        first = fizzy.add_existing_card("b-1", "A", "<p>a</p>\n\n#basecamp-id-11")
        fizzy.add_existing_card("b-1", "Manual", "no marker")
        third = fizzy.add_existing_card("b-1", "C", "#basecamp-id-33")
        fizzy.add_existing_card("b-2", "Other board", "#basecamp-id-44")

        existing, warning = scan_existing_cards(fizzy, "b-1")

        assert existing == {"11": first.number, "33": third.number}
        assert warning is None

    def test_other_system_markers_ignored(self):
        fizzy = FakeFizzy()
        fizzy.add_existing_card("b-1", "A", "#trello-id-11")

        existing, _ = scan_existing_cards(fizzy, "b-1")
        assert existing == {}

    def test_failure_degrades_to_warning(self):
        fizzy = FakeFizzy()
        fizzy.fail_scan = True

        existing, warning = scan_existing_cards(fizzy, "b-1")

        assert existing == {}
        assert "Could not scan for existing cards" in warning

    def test_authentication_error_propagates(self):
        fizzy = MagicMock()
        fizzy.iter_card_pages.side_effect = AuthenticationError("token rejected")

        with pytest.raises(AuthenticationError):
            scan_existing_cards(fizzy, "b-1")

    def test_card_quoting_another_marker(self):
        fizzy = FakeFizzy()
        card = fizzy.add_existing_card("b-1", "B", "<p>See #basecamp-id-11</p>\n\n#basecamp-id-22")

        existing, _ = scan_existing_cards(fizzy, "b-1")
        assert existing == {"22": card.number}
