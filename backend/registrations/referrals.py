"""
Referral codes: issuing a student's own code and checking a presented one.

A presented code is accepted when it is a promotional code, a code already
issued to a registered student, or merely shaped like an issued code. The
last rule keeps registration from depending on a lookup of every record.
"""
import random
import re
from enum import Enum

from django.conf import settings

from .models import StudentRecord

REFERRAL_RE = re.compile(r"^REF-[A-Z]{3}\d{4}$")
DEFAULT_PREFIX = 'SCC'
DEFAULT_PROMO_CODES = ('SCC2025', 'TEACHER1', 'EARLYBIRD', 'TOPPER')


class ReferralStatus(Enum):
    IDLE = "idle"
    VALID = "valid"
    INVALID = "invalid"


def promo_codes():
    codes = getattr(settings, 'SCC_PROMO_CODES', None) or DEFAULT_PROMO_CODES
    return {c.strip().upper() for c in codes if c and c.strip()}


def normalize_code(code) -> str:
    return (code or '').strip().upper()


def issue_code(full_name: str) -> str:
    """REF- + first three letters of the name + four random digits.

    No collision check is made against codes already issued.
    """
    letters = re.sub(r'[^a-zA-Z]', '', full_name or '')[:3].upper()
    prefix = (letters + DEFAULT_PREFIX)[:3] if letters else DEFAULT_PREFIX
    suffix = random.randint(1000, 9999)
    return f"REF-{prefix}{suffix}"


def issued_codes():
    return set(
        StudentRecord.objects.exclude(own_referral_code='')
        .values_list('own_referral_code', flat=True)
    )


def known_codes():
    return promo_codes() | issued_codes()


def validate(code) -> ReferralStatus:
    if not code or not code.strip():
        return ReferralStatus.IDLE
    code = code.strip()
    if code in promo_codes() or REFERRAL_RE.match(code):
        return ReferralStatus.VALID
    if StudentRecord.objects.filter(own_referral_code=code).exists():
        return ReferralStatus.VALID
    return ReferralStatus.INVALID
