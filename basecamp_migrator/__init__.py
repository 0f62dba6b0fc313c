#!/usr/bin/env python3
"""
Basecamp card table to Fizzy board migration tool
"""

__version__ = "0.1.0"

from basecamp_migrator.core.config import load_config
from basecamp_migrator.core.context import RunConfig

# Import the main classes for easier access
from basecamp_migrator.core.migrator import Migrator
from basecamp_migrator.core.state_store import RunStateStore
from basecamp_migrator.services.basecamp_adapter import (
    BasecampAdapter,
    make_token_refresher,
)
from basecamp_migrator.services.fizzy_adapter import FizzyAdapter
