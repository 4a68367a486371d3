"""Transaction classification.

A transaction is office evidence when it passes every decider in the
configured pipeline. Deciders are pure and short-circuit in order.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, FrozenSet, List, Literal
from zoneinfo import ZoneInfo

from inoffice.schemas.transaction import Transaction

from .settings import Settings

Decider = Callable[[Transaction], bool]
HourBasis = Literal["embedded", "utc", "reference"]

MONDAY_TO_FRIDAY: FrozenSet[int] = frozenset(range(0, 5))


@dataclass(frozen=True)
class ClassificationCriteria:
    min_units: int = -700
    max_units: int = -400
    hour_range_enabled: bool = False
    min_hour: int = 6
    max_hour: int = 12
    # which clock the hour is read from: the timestamp's own offset, UTC, or the reference zone
    hour_basis: HourBasis = "embedded"
    weekdays: FrozenSet[int] = MONDAY_TO_FRIDAY
    exclude_foreign: bool = True
    required_category: str = "restaurants-and-cafes"
    reference_timezone: str = "Australia/Melbourne"

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClassificationCriteria":
        return cls(
            min_units=settings.criteria_min_units,
            max_units=settings.criteria_max_units,
            hour_range_enabled=settings.criteria_hour_range_enabled,
            min_hour=settings.criteria_min_hour,
            max_hour=settings.criteria_max_hour,
            hour_basis=settings.criteria_hour_basis,
            required_category=settings.criteria_category,
            reference_timezone=settings.presence_timezone,
        )


def amount_between(min_units: int, max_units: int) -> Decider:
    def decide(tx: Transaction) -> bool:
        return min_units <= tx.amount <= max_units

    return decide


def hour_between(min_hour: int, max_hour: int, *, basis: HourBasis = "embedded", tz_name: str = "UTC") -> Decider:
    zone = ZoneInfo("UTC") if basis == "utc" else ZoneInfo(tz_name)

    def decide(tx: Transaction) -> bool:
        ts = tx.created_at if basis == "embedded" else tx.created_at.astimezone(zone)
        return min_hour <= ts.hour <= max_hour

    return decide


def weekday(days: FrozenSet[int] = MONDAY_TO_FRIDAY, *, tz_name: str) -> Decider:
    zone = ZoneInfo(tz_name)

    def decide(tx: Transaction) -> bool:
        return tx.created_at.astimezone(zone).weekday() in days

    return decide


def not_foreign() -> Decider:
    def decide(tx: Transaction) -> bool:
        return not tx.is_foreign

    return decide


def category(category_id: str) -> Decider:
    def decide(tx: Transaction) -> bool:
        return tx.category_id is not None and tx.category_id == category_id

    return decide


def check(tx: Transaction, *deciders: Decider) -> bool:
    for decide in deciders:
        if not decide(tx):
            return False
    return True


def build_deciders(criteria: ClassificationCriteria) -> List[Decider]:
    deciders: List[Decider] = [amount_between(criteria.min_units, criteria.max_units)]
    if criteria.hour_range_enabled:
        deciders.append(
            hour_between(
                criteria.min_hour,
                criteria.max_hour,
                basis=criteria.hour_basis,
                tz_name=criteria.reference_timezone,
            )
        )
    deciders.append(weekday(criteria.weekdays, tz_name=criteria.reference_timezone))
    if criteria.exclude_foreign:
        deciders.append(not_foreign())
    deciders.append(category(criteria.required_category))
    return deciders


def qualifies(tx: Transaction, criteria: ClassificationCriteria) -> bool:
    return check(tx, *build_deciders(criteria))


class TransactionClassifier:
    """Holds a prebuilt decider pipeline for one criteria value."""

    def __init__(self, criteria: ClassificationCriteria):
        self.criteria = criteria
        self._deciders = build_deciders(criteria)

    def __call__(self, tx: Transaction) -> bool:
        return check(tx, *self._deciders)
