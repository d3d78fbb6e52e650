import csv
import io
import os
from typing import Callable, Iterable, Optional

from django.conf import settings
from django.utils import timezone
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from .models import AttendanceStatus, StudentRecord

HEADERS = [
    'Seat Number', 'Name', 'Mobile', 'WhatsApp', 'Parent Name', 'Email', 'School', 'Class',
    'Field', 'Location', 'My Referral Code', 'Referred By Code', 'Referred By Name',
    'Attendance', 'Notes', 'Date',
]

ATTENDANCE_FILLS = {
    AttendanceStatus.PRESENT.value: 'FFC8E6C9',
    AttendanceStatus.ABSENT.value: 'FFFFD6D6',
    AttendanceStatus.LATE.value: 'FFFFF3C4',
}

Resolver = Callable[[str], str]


def format_date(dt) -> str:
    if not dt:
        return ''
    if timezone.is_aware(dt):
        dt = timezone.localtime(dt)
    return dt.strftime('%d/%m/%Y')


def record_row(record: StudentRecord, resolver: Resolver) -> list:
    """Column values for one record, in HEADERS order."""
    referrer_name = resolver(record.referral_code) if record.referral_code else ''
    return [
        record.seat_number,
        record.full_name,
        record.mobile,
        record.whatsapp,
        record.parent_name,
        record.email,
        record.school_name,
        record.class_std,
        record.field_of_interest,
        record.location,
        record.own_referral_code,
        record.referral_code,
        referrer_name,
        record.attendance or AttendanceStatus.PENDING.value,
        record.notes,
        format_date(record.created_at),
    ]


def to_table(records: Iterable[StudentRecord], resolver: Resolver) -> str:
    """Render records as comma-separated text, keeping the order they were given in.

    Fields holding a comma, double quote or line break are quoted with inner
    quotes doubled.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(HEADERS)
    for record in records:
        writer.writerow(record_row(record, resolver))
    return buffer.getvalue()


def build_registrations_workbook(records: Iterable[StudentRecord], resolver: Resolver) -> io.BytesIO:
    """Build an Excel workbook (in-memory) with the same columns as the CSV export.

    Attendance cells are shaded green/red/amber for Present/Absent/Late.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = 'Registrations'

    for col, header in enumerate(HEADERS, start=1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = Font(bold=True)
        cell.alignment = Alignment(horizontal='center', vertical='center')

    attendance_col = HEADERS.index('Attendance') + 1
    row = 2
    for record in records:
        for col, value in enumerate(record_row(record, resolver), start=1):
            ws.cell(row=row, column=col, value=value)
        fill_argb = ATTENDANCE_FILLS.get(record.attendance)
        if fill_argb:
            ws.cell(row=row, column=attendance_col).fill = PatternFill(
                fill_type='solid', start_color=fill_argb, end_color=fill_argb
            )
        row += 1

    for col, header in enumerate(HEADERS, start=1):
        ws.column_dimensions[get_column_letter(col)].width = max(12, len(header) + 2)
    ws.freeze_panes = 'A2'

    bio = io.BytesIO()
    wb.save(bio)
    bio.seek(0)
    return bio


def export_filename(extension: str, prefix: str = 'scc_registrations') -> str:
    return f"{prefix}_{timezone.localdate().isoformat()}.{extension}"


def save_export(content, filename: str, out_dir: Optional[os.PathLike] = None):
    """Write an export into EXPORTS_DIR (or ``out_dir``) and return its path."""
    out_dir = out_dir or settings.EXPORTS_DIR
    os.makedirs(out_dir, exist_ok=True)
    dest_path = os.path.join(str(out_dir), filename)
    if isinstance(content, io.BytesIO):
        content = content.getvalue()
    mode = 'wb' if isinstance(content, bytes) else 'w'
    encoding = None if mode == 'wb' else 'utf-8'
    with open(dest_path, mode, encoding=encoding, newline='' if mode == 'w' else None) as dest:
        dest.write(content)
    return dest_path
