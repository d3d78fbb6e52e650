"""
Unsubmitted registration drafts.

A draft is kept per session (one slot per browser/device), not per student,
because no student identity exists before submission. Saving is best-effort:
failures are logged and the caller carries on.
"""
import logging
import threading

from django.conf import settings
from django.db import DatabaseError

logger = logging.getLogger(__name__)

DRAFT_SESSION_KEY = 'registration_draft'

DRAFT_FIELDS = (
    'full_name', 'parent_name', 'mobile', 'whatsapp', 'email', 'school_name',
    'class_std', 'field_of_interest', 'location', 'notes', 'referral_code',
)


def clean_draft(partial):
    """Keep only form fields; seat number and own referral code never belong in a draft."""
    return {k: v for k, v in (partial or {}).items() if k in DRAFT_FIELDS and v is not None}


class DraftStore:

    def __init__(self, session):
        self.session = session

    def save(self, partial) -> bool:
        draft = clean_draft(partial)
        try:
            self.session[DRAFT_SESSION_KEY] = draft
            self.session.save()
        except DatabaseError as e:
            logger.warning("Draft not saved: %s", e)
            return False
        return True

    def load(self):
        try:
            draft = self.session.get(DRAFT_SESSION_KEY)
        except DatabaseError as e:
            logger.warning("Draft could not be loaded: %s", e)
            return None
        return dict(draft) if draft else None

    def clear(self) -> None:
        try:
            if DRAFT_SESSION_KEY in self.session:
                del self.session[DRAFT_SESSION_KEY]
                self.session.save()
        except DatabaseError as e:
            logger.warning("Draft not cleared: %s", e)


class DraftAutosaver:
    """Periodically saves the form while it is being filled in.

    ``snapshot`` returns the current form data; nothing is written while its
    full name is blank. Errors are logged and the next tick tries again.

    The client collecting the form (a kiosk or desk app embedding the API)
    owns the saver and starts it when the form opens. Passing it to
    ``register_student`` stops it once a submission succeeds.
    """

    def __init__(self, store, snapshot, interval=None):
        self.store = store
        self.snapshot = snapshot
        self.interval = interval if interval is not None else settings.SCC_DRAFT_AUTOSAVE_SECONDS
        self._stop = threading.Event()
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name='draft-autosave', daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval + 1)
        self._thread = None

    def tick(self) -> bool:
        """One autosave attempt; True when something was written."""
        try:
            data = self.snapshot() or {}
            if not str(data.get('full_name') or '').strip():
                return False
            return bool(self.store.save(data))
        except Exception:
            logger.exception("Draft autosave failed")
            return False

    def _run(self):
        while not self._stop.wait(self.interval):
            self.tick()
