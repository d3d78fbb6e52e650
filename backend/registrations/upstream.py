"""
Client for the remote registration backend (a sheet-backed web script).

The payload is the full registration plus the locally issued seat number and
referral code. A ``success`` answer may carry corrected values for both,
which win over the local ones. With no URL configured the client runs in
demo mode and accepts everything locally.
"""
import logging

import requests
from django.conf import settings

from .exceptions import SubmissionFailed, SubmissionRejected

logger = logging.getLogger(__name__)


class UpstreamClient:

    def __init__(self, url=None, timeout=None, session=None):
        self.url = settings.SCC_UPSTREAM_URL if url is None else url
        self.timeout = timeout or settings.SCC_UPSTREAM_TIMEOUT
        self.http = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def submit(self, payload: dict) -> dict:
        """POST the registration and return the overrides the backend sent back.

        Returns ``{}`` in demo mode. Raises SubmissionRejected when the backend
        answers with anything but ``result == "success"`` and SubmissionFailed
        when it cannot be reached or does not answer JSON.
        """
        if not self.enabled:
            return {}

        try:
            response = self.http.post(self.url, json=payload, timeout=self.timeout)
            data = response.json()
        except ValueError as e:
            logger.error("Upstream returned an unreadable response: %s", e)
            raise SubmissionFailed('Registration server returned an invalid response.') from e
        except requests.RequestException as e:
            logger.error("Upstream submission failed for %s: %s", payload.get('seatNumber'), e)
            raise SubmissionFailed('Connection failed. Please check internet.') from e

        if not isinstance(data, dict) or data.get('result') != 'success':
            message = data.get('message') if isinstance(data, dict) else None
            logger.warning("Upstream rejected %s: %s", payload.get('seatNumber'), message)
            raise SubmissionRejected(message or 'Registration failed.')

        overrides = {}
        if data.get('seatNumber'):
            overrides['seat_number'] = data['seatNumber']
        if data.get('ownReferralCode'):
            overrides['own_referral_code'] = data['ownReferralCode']
        return overrides


def build_payload(record) -> dict:
    """Wire shape the remote script expects (camelCase keys)."""
    return {
        'fullName': record.full_name,
        'classStd': record.class_std,
        'parentName': record.parent_name,
        'mobile': record.mobile,
        'email': record.email,
        'schoolName': record.school_name,
        'location': record.location,
        'fieldOfInterest': record.field_of_interest,
        'whatsapp': record.whatsapp,
        'notes': record.notes,
        'referralCode': record.referral_code,
        'seatNumber': record.seat_number,
        'ownReferralCode': record.own_referral_code,
        'timestamp': record.created_at.isoformat(),
    }
