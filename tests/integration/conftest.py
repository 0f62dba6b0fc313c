"""Integration test configuration.

These tests talk to live Basecamp and Fizzy accounts and are skipped by
default. Set BASECAMP_ACCESS_TOKEN and FIZZY_ACCESS_TOKEN (plus
BASECAMP_ACCOUNT_ID and FIZZY_ACCOUNT_SLUG) to enable them.
"""

import os

import pytest

skip_no_creds = pytest.mark.skipif(
    not (os.environ.get("BASECAMP_ACCESS_TOKEN") and os.environ.get("FIZZY_ACCESS_TOKEN")),
    reason="Integration tests require BASECAMP_ACCESS_TOKEN and FIZZY_ACCESS_TOKEN env vars",
)
