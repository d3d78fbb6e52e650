"""
Seat number issuance.

Seat numbers look like ``SCC-2025-1285``: a per-year counter seeded at 1284
and incremented once per issuance. The read-increment-write runs under a
process lock and a row lock so concurrent submissions never share a number.
When the counter cannot be read or written the caller still gets a seat, but
a randomized one flagged as ``Fallback`` because it may collide.
"""
import logging
import random
import re
import threading
from dataclasses import dataclass
from typing import Optional, Union

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from .exceptions import CounterCorruptError
from .models import SeatCounter

logger = logging.getLogger(__name__)

SEAT_BASELINE = 1284
SEAT_RE = re.compile(r"^SCC-(?P<year>\d+)-(?P<seq>\d+)$")

counter_lock = threading.Lock()


@dataclass(frozen=True)
class Issued:
    """Seat taken from the persisted counter; unique."""
    value: str

    @property
    def guaranteed(self) -> bool:
        return True


@dataclass(frozen=True)
class Fallback:
    """Randomized seat issued while the counter was unavailable; best-effort only."""
    value: str

    @property
    def guaranteed(self) -> bool:
        return False


SeatIssue = Union[Issued, Fallback]


def exam_year() -> str:
    """Year the seats belong to: the last word of SCC_EXAM_DATE, else the current year."""
    token = (getattr(settings, 'SCC_EXAM_DATE', '') or '').strip().split(' ')[-1]
    if token.isdigit():
        return token
    return str(timezone.localdate().year)


def format_seat(year: str, sequence: int) -> str:
    return f"SCC-{year}-{sequence}"


def parse_seat(seat_number: str) -> Optional[tuple]:
    """Return (year, sequence) for a well-formed seat number, else None."""
    m = SEAT_RE.match(seat_number or '')
    if not m:
        return None
    return m.group('year'), int(m.group('seq'))


def next_seat_number(year: Optional[str] = None) -> SeatIssue:
    year = str(year or exam_year())
    try:
        with counter_lock, transaction.atomic():
            counter, _ = SeatCounter.objects.select_for_update().get_or_create(
                year=year, defaults={'value': SEAT_BASELINE}
            )
            if counter.value < SEAT_BASELINE:
                raise CounterCorruptError(f"Seat counter for {year} holds {counter.value}")
            counter.value += 1
            counter.save(update_fields=['value', 'updated_at'])
            sequence = counter.value
    except (DatabaseError, CounterCorruptError) as e:
        seat = format_seat(year, random.randint(1000, 9999))
        logger.warning("Seat counter unavailable for %s (%s); issued fallback seat %s", year, e, seat)
        return Fallback(seat)

    return Issued(format_seat(year, sequence))


def highest_sequences(seat_numbers) -> dict:
    """Largest sequence per year among the well-formed seat numbers given."""
    highest = {}
    for seat in seat_numbers:
        parsed = parse_seat(seat)
        if parsed:
            year, sequence = parsed
            highest[year] = max(sequence, highest.get(year, 0))
    return highest


def advance_counters(highest: dict) -> None:
    """Raise each year's counter to at least ``highest[year]`` so those seats are never reissued.

    The caller holds ``counter_lock`` and has opened the transaction, taking
    the lock before any counter row, as ``next_seat_number`` does.
    """
    for year, sequence in highest.items():
        counter, created = SeatCounter.objects.select_for_update().get_or_create(
            year=year, defaults={'value': max(sequence, SEAT_BASELINE)}
        )
        if not created and counter.value < sequence:
            counter.value = sequence
            counter.save(update_fields=['value', 'updated_at'])
