"""Core migration logic including configuration, run state and orchestration."""

__all__ = [
    "card_processor",
    "config",
    "context",
    "migration_logging",
    "migrator",
    "report",
    "state",
    "state_store",
]
