"""
Priority-ordered category classification.

Rules are evaluated in ascending priority. The first rule whose keyword list
is empty (the catch-all) or contains a case-insensitive substring of
title + summary wins, so every record receives exactly one category.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence

from noticewatch.contracts.errors import ConfigError
from noticewatch.contracts.records import CategoryRule, Record

logger = logging.getLogger(__name__)

DEFAULT_CATCH_ALL = "Other"
UNCATEGORIZED = "Uncategorized"

DEFAULT_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(name="Policy", keywords=("policy", "regulation", "measures"), priority=1),
    CategoryRule(name="Procurement", keywords=("tender", "procurement", "bid"), priority=2),
    CategoryRule(name="Public Notice", keywords=("notice", "announcement", "publicity"), priority=3),
    CategoryRule(name=DEFAULT_CATCH_ALL, keywords=(), priority=999),
)


def validate_rules(rules: Sequence[CategoryRule]) -> list[str]:
    """
    Check rule-set invariants.

    Returns:
        Every problem found (empty when the rule set is valid).
    """
    errors: list[str] = []
    if not rules:
        return ["rule set is empty"]

    names: set[str] = set()
    priorities: set[int] = set()
    for index, rule in enumerate(rules, start=1):
        if rule.name in names:
            errors.append(f"rule {index}: duplicate name {rule.name!r}")
        names.add(rule.name)
        if rule.priority in priorities:
            errors.append(f"rule {index}: duplicate priority {rule.priority}")
        priorities.add(rule.priority)
        if any(not k.strip() for k in rule.keywords):
            errors.append(f"rule {index}: blank keyword in {rule.name!r}")

    catch_alls = [r.name for r in rules if r.is_catch_all]
    if len(catch_alls) != 1:
        errors.append(
            f"exactly one catch-all rule (empty keywords) required, found {len(catch_alls)}"
        )
    return errors


def group_by_category(
    records: Iterable[Record],
    category_order: Sequence[str] = (),
    category_of: Callable[[Record], str] | None = None,
) -> dict[str, list[Record]]:
    """
    Partition records by category.

    Known categories follow category_order; others are appended in
    first-seen order. Records keep their input order within a category.
    Records without a category go to category_of(record), or UNCATEGORIZED.
    """
    buckets: dict[str, list[Record]] = {}
    for record in records:
        category = record.category
        if not category:
            category = category_of(record) if category_of else UNCATEGORIZED
        buckets.setdefault(category, []).append(record)

    ordered: dict[str, list[Record]] = {}
    for name in category_order:
        if name in buckets:
            ordered[name] = buckets.pop(name)
    ordered.update(buckets)
    return ordered


class CategoryClassifier:
    """
    Deterministic, total record classifier.

    Evaluation order depends only on rule priority, never on the order rules
    were supplied in.
    """

    def __init__(self, rules: Iterable[CategoryRule]) -> None:
        rules = list(rules)
        errors = validate_rules(rules)
        if errors:
            raise ConfigError("invalid category rules: " + "; ".join(errors), {"errors": errors})

        self._rules: tuple[CategoryRule, ...] = tuple(sorted(rules, key=lambda r: r.priority))
        self._lowered: tuple[tuple[str, ...], ...] = tuple(
            tuple(k.lower() for k in rule.keywords) for rule in self._rules
        )

    @property
    def rules(self) -> tuple[CategoryRule, ...]:
        return self._rules

    @property
    def category_order(self) -> list[str]:
        """Category names in evaluation (priority) order."""
        return [rule.name for rule in self._rules]

    def classify(self, record: Record) -> str:
        text = record.search_text
        for rule, keywords in zip(self._rules, self._lowered, strict=True):
            if not keywords or any(k in text for k in keywords):
                return rule.name
        # Unreachable: validate_rules guarantees a catch-all
        raise AssertionError("no catch-all rule")

    def classify_all(self, records: Iterable[Record]) -> list[Record]:
        """Return copies of records with category set, in input order."""
        classified = [
            record.model_copy(update={"category": self.classify(record)}) for record in records
        ]
        if classified:
            logger.info(
                "Records classified",
                extra={"breakdown": self.category_breakdown(self.group(classified))},
            )
        return classified

    def group(self, records: Iterable[Record]) -> dict[str, list[Record]]:
        """
        Partition classified records by category.

        Categories follow rule priority; categories unknown to the rule set
        come last in first-seen order. Records keep their input order.
        """
        return group_by_category(records, self.category_order, category_of=self.classify)

    @staticmethod
    def category_breakdown(grouped: Mapping[str, Sequence[Record]]) -> dict[str, int]:
        return {name: len(records) for name, records in grouped.items()}
