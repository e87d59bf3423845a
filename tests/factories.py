"""Builders and fakes shared by the test modules."""
import random
from datetime import datetime, timezone

from ledgersort.models.patterns import Pattern, PatternType
from ledgersort.models.records import TransactionRecord
from ledgersort.services.audit import InMemoryEventSink


class NeverRandom(random.Random):
    """Random source that never triggers probabilistic merges."""

    def random(self):
        return 1.0


class FailingEventSink(InMemoryEventSink):
    def append(self, event, transaction=None):
        raise RuntimeError("event sink offline")


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_pattern(value, category_id="food", pattern_type=PatternType.MERCHANT, **kwargs) -> Pattern:
    return Pattern(category_id=category_id, pattern_type=pattern_type, value=value, **kwargs)


def make_record(merchant=None, description=None, amount=None, hour=None, **kwargs) -> TransactionRecord:
    when = datetime(2026, 3, 14, hour, 30, tzinfo=timezone.utc) if hour is not None else None
    return TransactionRecord(
        merchant_name=merchant,
        description=description,
        amount=amount,
        transaction_date=when,
        **kwargs,
    )
