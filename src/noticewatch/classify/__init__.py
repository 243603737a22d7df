"""Category classification."""

from noticewatch.classify.classifier import (
    DEFAULT_RULES,
    UNCATEGORIZED,
    CategoryClassifier,
    group_by_category,
    validate_rules,
)

__all__ = [
    "DEFAULT_RULES",
    "UNCATEGORIZED",
    "CategoryClassifier",
    "group_by_category",
    "validate_rules",
]
