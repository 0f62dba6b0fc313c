"""Service integrations for the Basecamp and Fizzy APIs and card mapping."""

__all__ = [
    "basecamp_adapter",
    "card_transform",
    "column_mapper",
    "duplicate_scanner",
    "fizzy_adapter",
    "user_mapper",
]
