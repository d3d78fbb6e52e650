"""
Registration submission: the one path that creates a StudentRecord.

Steps, in order: referral check, seat issuance, own-code issuance, optional
remote submission (whose seat/code corrections win), ledger insert, draft
clearing. Nothing here retries; a failed submission is reported and the
student submits again.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from django.utils import timezone

from . import referrals
from .drafts import DraftAutosaver, DraftStore
from .exceptions import LedgerValidationError
from .ledger import StudentLedger
from .models import StudentRecord
from .sequence import next_seat_number
from .upstream import UpstreamClient, build_payload

logger = logging.getLogger(__name__)


@dataclass
class RegistrationOutcome:
    record: StudentRecord
    seat_guaranteed: bool
    persisted: bool
    warnings: List[str] = field(default_factory=list)


def register_student(data: dict, session=None, upstream: Optional[UpstreamClient] = None,
                     ledger: Optional[StudentLedger] = None,
                     autosaver: Optional[DraftAutosaver] = None) -> RegistrationOutcome:
    """Turn validated form data into a stored registration.

    A running ``autosaver`` is stopped once the submission has gone through.
    """
    ledger = ledger or StudentLedger()
    upstream = upstream or UpstreamClient()
    warnings = []

    code = referrals.normalize_code(data.get('referral_code'))
    if referrals.validate(code) == referrals.ReferralStatus.INVALID:
        raise LedgerValidationError(
            'Please enter a valid Referral Code or leave it blank.', field='referral_code'
        )

    seat = next_seat_number()
    if not seat.guaranteed:
        warnings.append('Seat number issued in fallback mode; please verify it with the office.')

    record = StudentRecord(
        **{k: v for k, v in data.items() if k != 'referral_code'},
        referral_code=code,
        seat_number=seat.value,
        own_referral_code=referrals.issue_code(data.get('full_name', '')),
        created_at=timezone.now(),
    )

    overrides = upstream.submit(build_payload(record))
    for name, value in overrides.items():
        logger.info("Upstream corrected %s: %s -> %s", name, getattr(record, name), value)
        setattr(record, name, value)

    result = ledger.insert(record)
    if result.error is not None:
        warnings.append(str(result.error))

    if session is not None:
        DraftStore(session).clear()
    if autosaver is not None:
        autosaver.stop()

    return RegistrationOutcome(
        record=result.record,
        seat_guaranteed=seat.guaranteed or 'seat_number' in overrides,
        persisted=result.persisted,
        warnings=warnings,
    )
