"""
StudentLedger: the store of registered students.

Every mutation is a single transactional write, so a record is either fully
stored or not at all. ``replace_all`` is the explicit whole-collection write
used when restoring a snapshot. Database failures on writes are logged and
reported back to the caller instead of propagating as a crash; failed reads
raise StorageError for the caller to turn into a warning.
"""
import logging
from collections import namedtuple

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Count, Q

from .exceptions import DuplicateSeatError, LedgerValidationError, StorageError
from .models import AttendanceStatus, Location, StudentRecord
from .sequence import advance_counters, counter_lock, highest_sequences

logger = logging.getLogger(__name__)

UNKNOWN_REFERRER = 'Unknown'
ALL_STATUSES = 'All'

SORTABLE_FIELDS = (
    'seat_number', 'full_name', 'parent_name', 'mobile', 'whatsapp', 'email',
    'school_name', 'class_std', 'field_of_interest', 'location', 'notes',
    'referral_code', 'own_referral_code', 'attendance', 'created_at',
)

InsertResult = namedtuple('InsertResult', ['record', 'persisted', 'error'])
WriteResult = namedtuple('WriteResult', ['changed', 'error'])
ReplaceResult = namedtuple('ReplaceResult', ['count', 'error'])


class StudentLedger:

    def _records(self):
        return StudentRecord.objects.all()

    def insert(self, record: StudentRecord) -> InsertResult:
        """Store a fully populated record.

        Raises DuplicateSeatError if the seat number is taken. A database
        failure leaves the record unsaved and is reported in the result.
        """
        try:
            taken = self._records().filter(seat_number=record.seat_number).exists()
            if not taken:
                with transaction.atomic():
                    record.save(force_insert=True)
        except IntegrityError:
            taken = True
        except DatabaseError as e:
            logger.warning("Could not persist registration %s: %s", record.seat_number, e)
            record.pk = None
            return InsertResult(record, False, StorageError(f"Registration kept in memory only: {e}"))

        if taken:
            logger.error("Duplicate seat number rejected: %s", record.seat_number)
            raise DuplicateSeatError(record.seat_number)
        logger.info("Registered %s as %s", record.full_name, record.seat_number)
        return InsertResult(record, True, None)

    def list(self, search='', status=ALL_STATUSES, sort=None, descending=False):
        """Filtered, sorted view of the ledger.

        Returns a lazy queryset; nothing is cached between calls. Ties in the
        sort key keep insertion order.
        """
        qs = self._records()
        search = (search or '').strip()
        if search:
            qs = qs.filter(
                Q(full_name__icontains=search)
                | Q(seat_number__icontains=search)
                | Q(mobile__contains=search)
            )

        status = status or ALL_STATUSES
        if status != ALL_STATUSES:
            if status not in AttendanceStatus.values:
                raise LedgerValidationError(f"Unknown attendance status: {status}", field='status')
            qs = qs.filter(attendance=status)

        if sort:
            if sort not in SORTABLE_FIELDS:
                raise LedgerValidationError(f"Cannot sort by {sort}", field='sort')
            qs = qs.order_by(f"-{sort}" if descending else sort, 'id')
        else:
            qs = qs.order_by('id')
        return qs

    def fetch(self, **filters):
        """``list`` evaluated now, with a database failure raised as StorageError."""
        qs = self.list(**filters)
        try:
            return list(qs)
        except DatabaseError as e:
            logger.warning("Could not read registrations: %s", e)
            raise StorageError(f"Registrations could not be loaded: {e}") from e

    def get(self, seat_number):
        try:
            return self._records().filter(seat_number=seat_number).first()
        except DatabaseError as e:
            logger.warning("Could not read registration %s: %s", seat_number, e)
            raise StorageError(f"Registration could not be loaded: {e}") from e

    def update_attendance(self, seat_number, status) -> WriteResult:
        if status not in AttendanceStatus.values:
            raise LedgerValidationError(f"Unknown attendance status: {status}", field='attendance')
        try:
            updated = self._records().filter(seat_number=seat_number).update(attendance=status)
        except DatabaseError as e:
            logger.warning("Could not update attendance for %s: %s", seat_number, e)
            return WriteResult(False, StorageError(f"Attendance not saved: {e}"))
        if not updated:
            logger.warning("Attendance update ignored, no seat %s", seat_number)
            return WriteResult(False, None)
        logger.info("Attendance for %s set to %s", seat_number, status)
        return WriteResult(True, None)

    def delete(self, seat_number) -> WriteResult:
        try:
            deleted, _ = self._records().filter(seat_number=seat_number).delete()
        except DatabaseError as e:
            logger.warning("Could not delete %s: %s", seat_number, e)
            return WriteResult(False, StorageError(f"Registration not deleted: {e}"))
        if deleted:
            logger.info("Deleted registration %s", seat_number)
        return WriteResult(bool(deleted), None)

    def referrer_map(self):
        """own referral code -> full name; a later duplicate code wins."""
        mapping = {}
        try:
            rows = self._records().order_by('id').values_list('own_referral_code', 'full_name')
            for code, name in rows:
                if code:
                    mapping[code] = name
        except DatabaseError as e:
            logger.warning("Could not read referral codes: %s", e)
            raise StorageError(f"Referrers could not be loaded: {e}") from e
        return mapping

    def resolve_referrer(self, code, mapping=None):
        if mapping is None:
            mapping = self.referrer_map()
        return mapping.get(code, UNKNOWN_REFERRER)

    def snapshot(self):
        fields = ('id',) + SORTABLE_FIELDS
        return [
            {k: v for k, v in row.items() if k != 'id'}
            for row in self._records().order_by('id').values(*fields)
        ]

    def replace_all(self, records) -> ReplaceResult:
        """Swap the whole ledger for ``records`` in one transaction.

        ``records`` are unsaved StudentRecord instances in the order they
        should be stored. Seat counters are advanced past every imported seat.
        On a database failure nothing changes and the error is returned.
        """
        seats = [r.seat_number for r in records]
        duplicates = sorted({s for s in seats if seats.count(s) > 1})
        if duplicates:
            raise DuplicateSeatError(duplicates[0])

        highest = highest_sequences(seats)
        try:
            # counter lock before any row lock, same order as seat issuance
            with counter_lock, transaction.atomic():
                self._records().delete()
                StudentRecord.objects.bulk_create(records)
                advance_counters(highest)
        except DatabaseError as e:
            logger.error("Ledger replacement failed, existing records kept: %s", e)
            return ReplaceResult(0, StorageError(f"Ledger not replaced: {e}"))

        logger.info("Ledger replaced with %d records", len(records))
        return ReplaceResult(len(records), None)

    def stats(self):
        qs = self._records()
        try:
            by_location = dict(qs.order_by().values_list('location').annotate(n=Count('id')))
            by_status = dict(qs.order_by().values_list('attendance').annotate(n=Count('id')))
            total = qs.count()
        except DatabaseError as e:
            logger.warning("Could not compute registration stats: %s", e)
            raise StorageError(f"Stats could not be loaded: {e}") from e
        return {
            'total': total,
            'locations': {loc: by_location.get(loc, 0) for loc in Location.values},
            'attendance': {st: by_status.get(st, 0) for st in AttendanceStatus.values},
        }
