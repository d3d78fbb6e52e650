import logging
from urllib.parse import quote

from django.conf import settings
from django.http import HttpResponse
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, BasePermission, IsAdminUser
from rest_framework.response import Response

from . import referrals
from .drafts import DraftStore
from .exceptions import (
    DuplicateSeatError,
    LedgerError,
    LedgerValidationError,
    StorageError,
    SubmissionFailed,
    SubmissionRejected,
)
from .ledger import ALL_STATUSES, StudentLedger
from .models import StudentRecord
from .sequence import next_seat_number
from .serializers import (
    AttendanceUpdateSerializer,
    DraftSerializer,
    RegistrationSubmissionSerializer,
    SnapshotRecordSerializer,
    StudentRecordSerializer,
)
from .services import register_student
from .utils_export import build_registrations_workbook, export_filename, save_export, to_table

logger = logging.getLogger(__name__)


class StaffReadsPublicSubmits(BasePermission):
    """Anyone may POST a registration; only staff may read the ledger."""

    def has_permission(self, request, view):
        if request.method == 'POST':
            return True
        return bool(request.user and request.user.is_staff)


def ledger_error_response(e: LedgerError):
    if isinstance(e, LedgerValidationError):
        return Response({'error': e.message, 'field': e.field}, status=status.HTTP_400_BAD_REQUEST)
    if isinstance(e, DuplicateSeatError):
        return Response({'error': str(e), 'seat_number': e.seat_number}, status=status.HTTP_409_CONFLICT)
    if isinstance(e, SubmissionRejected):
        return Response({'result': 'error', 'error': str(e)}, status=status.HTTP_502_BAD_GATEWAY)
    if isinstance(e, SubmissionFailed):
        return Response({'result': 'error', 'error': str(e)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
    if isinstance(e, StorageError):
        return Response({'error': 'Storage is unavailable, please try again.', 'warning': str(e)},
                        status=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response({'error': str(e)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


def referrer_context(ledger):
    """Serializer context with referrer names; names are left out if they can't be read."""
    try:
        return {'referrers': ledger.referrer_map()}
    except StorageError:
        return {}


def filtered_records(request, ledger):
    """Apply the admin table's search/status/sort query params."""
    params = request.query_params
    return ledger.fetch(
        search=params.get('search', ''),
        status=params.get('status', ALL_STATUSES),
        sort=params.get('sort') or None,
        descending=params.get('direction', 'asc').lower() == 'desc',
    )


@api_view(['GET', 'POST'])
@permission_classes([StaffReadsPublicSubmits])
def registrations(request):
    """List registrations (GET, staff) or submit the registration form (POST).

    POST validates the form, issues seat number and referral code, forwards
    the payload to the remote backend when one is configured, stores the
    record and clears the session draft.
    """
    ledger = StudentLedger()

    if request.method == 'GET':
        try:
            records = filtered_records(request, ledger)
        except LedgerError as e:
            return ledger_error_response(e)
        serializer = StudentRecordSerializer(records, many=True, context=referrer_context(ledger))
        return Response(serializer.data)

    form = RegistrationSubmissionSerializer(data=request.data)
    if not form.is_valid():
        return Response(
            {'error': 'Please complete all required fields.', 'fields': form.errors},
            status=status.HTTP_400_BAD_REQUEST,
        )

    try:
        outcome = register_student(form.validated_data, session=request.session, ledger=ledger)
    except LedgerError as e:
        return ledger_error_response(e)

    data = StudentRecordSerializer(outcome.record, context=referrer_context(ledger)).data
    data.update({
        'result': 'success',
        'message': 'Registration successful',
        'seat_guaranteed': outcome.seat_guaranteed,
        'persisted': outcome.persisted,
        'warnings': outcome.warnings,
    })
    return Response(data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'DELETE'])
@permission_classes([IsAdminUser])
def registration_detail(request, seat_number):
    """Fetch one registration, or delete it.

    Delete is idempotent: an unknown seat number answers 204 as well.
    Records that presented the deleted student's code are left untouched.
    """
    ledger = StudentLedger()
    if request.method == 'GET':
        try:
            record = ledger.get(seat_number)
        except LedgerError as e:
            return ledger_error_response(e)
        if record is None:
            return Response({'error': 'Registration not found'}, status=status.HTTP_404_NOT_FOUND)
        return Response(StudentRecordSerializer(record, context=referrer_context(ledger)).data)

    result = ledger.delete(seat_number)
    if result.error is not None:
        return Response({'deleted': False, 'warning': str(result.error)}, status=status.HTTP_200_OK)
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['PATCH', 'POST'])
@permission_classes([IsAdminUser])
def update_attendance(request, seat_number):
    """Set Pending/Present/Absent/Late. Unknown seat numbers are a no-op, not an error."""
    serializer = AttendanceUpdateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': 'Invalid attendance status', 'fields': serializer.errors},
                        status=status.HTTP_400_BAD_REQUEST)

    result = StudentLedger().update_attendance(seat_number, serializer.validated_data['attendance'])
    body = {'seat_number': seat_number, 'updated': result.changed}
    if result.error is not None:
        body['warning'] = str(result.error)
    return Response(body)


@api_view(['GET'])
@permission_classes([IsAdminUser])
def registration_stats(request):
    try:
        return Response(StudentLedger().stats())
    except LedgerError as e:
        return ledger_error_response(e)


@api_view(['GET'])
@permission_classes([IsAdminUser])
def export_csv(request):
    """Download the (optionally filtered/sorted) ledger as CSV, in table order."""
    ledger = StudentLedger()
    try:
        records = filtered_records(request, ledger)
        referrers = ledger.referrer_map()
    except LedgerError as e:
        return ledger_error_response(e)

    content = to_table(records, lambda code: ledger.resolve_referrer(code, referrers))
    filename = export_filename('csv')
    logger.info("CSV export of %d registrations", len(records))

    response = HttpResponse(content, content_type='text/csv; charset=utf-8')
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response


@api_view(['GET'])
@permission_classes([IsAdminUser])
def export_xlsx(request):
    """Generate an Excel export server-side and save it to exports/. Returns download URL."""
    ledger = StudentLedger()
    try:
        records = filtered_records(request, ledger)
        referrers = ledger.referrer_map()
    except LedgerError as e:
        return ledger_error_response(e)

    workbook = build_registrations_workbook(records, lambda code: ledger.resolve_referrer(code, referrers))
    filename = export_filename('xlsx')
    try:
        save_export(workbook, filename)
    except OSError as e:
        logger.error("Could not write export %s: %s", filename, e)
        return Response({'error': f'Failed to save file: {e}'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info("Excel export written to %s", filename)
    return Response({'filename': filename, 'url': f"/exports/{filename}"}, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT'])
@permission_classes([IsAdminUser])
def registrations_snapshot(request):
    """Read the whole ledger (GET) or replace it wholesale (PUT, a list of records)."""
    ledger = StudentLedger()
    if request.method == 'GET':
        try:
            records = ledger.fetch()
        except LedgerError as e:
            return ledger_error_response(e)
        return Response(SnapshotRecordSerializer(records, many=True).data)

    serializer = SnapshotRecordSerializer(data=request.data, many=True)
    if not serializer.is_valid():
        return Response({'error': 'Invalid snapshot', 'fields': serializer.errors},
                        status=status.HTTP_400_BAD_REQUEST)

    records = [StudentRecord(**item) for item in serializer.validated_data]
    try:
        result = ledger.replace_all(records)
    except LedgerError as e:
        return ledger_error_response(e)
    if result.error is not None:
        return Response({'replaced': 0, 'warning': str(result.error)}, status=status.HTTP_200_OK)
    return Response({'replaced': result.count})


@api_view(['GET'])
@permission_classes([IsAdminUser])
def whatsapp_confirmation(request, seat_number):
    """Confirmation message and wa.me link for a registered student."""
    try:
        record = StudentLedger().get(seat_number)
    except LedgerError as e:
        return ledger_error_response(e)
    if record is None:
        return Response({'error': 'Registration not found'}, status=status.HTTP_404_NOT_FOUND)

    message = (
        "*SCC SAT Registration Confirmed* ✅\n\n"
        f"Hello {record.full_name},\n"
        "Your registration for the Scholarship Exam is successful!\n\n"
        f"\U0001F4CC *Seat Number:* {record.seat_number}\n"
        f"\U0001F4C5 *Exam Date:* {settings.SCC_EXAM_DATE}\n"
        f"\U0001F4CD *Location:* {record.location} Branch\n\n"
        "Please present this message at the exam center.\n"
        "- Shiv Chhatrapati Classes"
    )
    number = ''.join(ch for ch in (record.whatsapp or record.mobile) if ch.isdigit())
    if len(number) == 10:
        number = '91' + number
    return Response({
        'seat_number': record.seat_number,
        'number': number,
        'message': message,
        'url': f"https://wa.me/{number}?text={quote(message)}",
    })


@api_view(['POST'])
@permission_classes([IsAdminUser])
def generate_seat(request):
    """Issue a seat number by hand (walk-in registrations)."""
    seat = next_seat_number(request.data.get('year') or None)
    return Response({'seat_number': seat.value, 'guaranteed': seat.guaranteed}, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([AllowAny])
def validate_referral(request):
    code = referrals.normalize_code(request.query_params.get('code'))
    return Response({'code': code, 'status': referrals.validate(code).value})


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([AllowAny])
def registration_draft(request):
    """The session's unsubmitted form: load (GET), save (PUT) or discard (DELETE)."""
    store = DraftStore(request.session)

    if request.method == 'GET':
        draft = store.load()
        if draft is None:
            return Response(status=status.HTTP_204_NO_CONTENT)
        return Response(draft)

    if request.method == 'DELETE':
        store.clear()
        return Response(status=status.HTTP_204_NO_CONTENT)

    serializer = DraftSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    if not store.save(serializer.validated_data):
        return Response({'saved': False, 'message': 'Unable to save.'})
    return Response({'saved': True, 'message': 'Progress Saved!'})
