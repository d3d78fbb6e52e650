import csv
import io
import os
import re
import shutil
import tempfile
import threading
from datetime import datetime, timezone as dt_timezone
from unittest import mock

import requests
from django.contrib.auth import get_user_model
from django.contrib.sessions.backends.db import SessionStore
from django.core.management import call_command
from django.db import DatabaseError, connection
from django.test import TestCase, TransactionTestCase, override_settings
from openpyxl import load_workbook
from rest_framework.test import APIClient

from . import referrals
from .drafts import DraftAutosaver, DraftStore
from .exceptions import (
	DuplicateSeatError,
	LedgerValidationError,
	StorageError,
	SubmissionFailed,
	SubmissionRejected,
)
from .ledger import StudentLedger
from .models import SeatCounter, StudentRecord
from .sequence import Fallback, Issued, exam_year, next_seat_number, parse_seat
from .services import register_student
from .upstream import UpstreamClient
from .utils_export import HEADERS, build_registrations_workbook, record_row, save_export, to_table

REFERRAL_PATTERN = re.compile(r'^REF-[A-Z]{3}\d{4}$')


def make_record(seat_number, **kwargs):
	data = {
		'full_name': 'Test Student',
		'parent_name': 'Test Parent',
		'mobile': '9876543210',
		'email': 'student@example.com',
		'school_name': 'Nashik High School',
		'field_of_interest': 'Engineering',
		'location': 'Satpur',
		'own_referral_code': 'REF-TES1000',
		'created_at': datetime(2025, 11, 2, 9, 30, tzinfo=dt_timezone.utc),
	}
	data.update(kwargs)
	return StudentRecord(seat_number=seat_number, **data)


def form_payload(**kwargs):
	data = {
		'full_name': 'Aarav Patil',
		'parent_name': 'Suresh Patil',
		'mobile': '98765 43210',
		'email': 'aarav@example.com',
		'school_name': 'Nashik High School',
		'field_of_interest': 'Engineering',
		'location': 'Satpur',
	}
	data.update(kwargs)
	return data


class FakeUpstream:
	def __init__(self, overrides=None, error=None):
		self.overrides = overrides or {}
		self.error = error
		self.payloads = []

	def submit(self, payload):
		self.payloads.append(payload)
		if self.error:
			raise self.error
		return self.overrides


@override_settings(SCC_EXAM_DATE='Sunday, 28th December 2025')
class SeatSequenceTestCase(TestCase):
	def test_first_seat_follows_baseline(self):
		seat = next_seat_number('2025')
		self.assertIsInstance(seat, Issued)
		self.assertEqual(seat.value, 'SCC-2025-1285')
		self.assertTrue(seat.guaranteed)

	def test_sequential_seats_strictly_increase(self):
		numbers = [parse_seat(next_seat_number().value) for _ in range(5)]
		self.assertTrue(all(year == '2025' for year, _ in numbers))
		sequences = [seq for _, seq in numbers]
		self.assertEqual(sequences, sorted(sequences))
		self.assertEqual(len(set(sequences)), 5)
		self.assertEqual(SeatCounter.objects.get(year='2025').value, sequences[-1])

	def test_years_have_separate_counters(self):
		next_seat_number('2025')
		next_seat_number('2025')
		self.assertEqual(next_seat_number('2026').value, 'SCC-2026-1285')

	def test_deleting_a_record_does_not_reuse_its_seat(self):
		first = next_seat_number().value
		StudentLedger().insert(make_record(first))
		StudentLedger().delete(first)
		self.assertNotEqual(next_seat_number().value, first)

	def test_unreadable_counter_falls_back_to_random_seat(self):
		with mock.patch.object(SeatCounter.objects, 'select_for_update', side_effect=DatabaseError('locked')):
			with self.assertLogs('registrations.sequence', level='WARNING'):
				seat = next_seat_number('2025')
		self.assertIsInstance(seat, Fallback)
		self.assertFalse(seat.guaranteed)
		year, sequence = parse_seat(seat.value)
		self.assertEqual(year, '2025')
		self.assertTrue(1000 <= sequence <= 9999)
		self.assertFalse(SeatCounter.objects.filter(year='2025').exists())

	def test_corrupt_counter_is_not_updated(self):
		SeatCounter.objects.create(year='2030', value=5)
		with self.assertLogs('registrations.sequence', level='WARNING'):
			seat = next_seat_number('2030')
		self.assertIsInstance(seat, Fallback)
		self.assertEqual(SeatCounter.objects.get(year='2030').value, 5)

	def test_exam_year_comes_from_exam_date(self):
		self.assertEqual(exam_year(), '2025')
		with override_settings(SCC_EXAM_DATE='To be announced'):
			self.assertTrue(exam_year().isdigit())


class ReferralTestCase(TestCase):
	def test_issued_codes_match_pattern(self):
		for name in ['Aarav Patil', 'sneha', '', '123 456', 'Al', 'O\'Neil-Smith', 'Ädam']:
			code = referrals.issue_code(name)
			self.assertRegex(code, REFERRAL_PATTERN, name)

	def test_issued_code_uses_name_prefix(self):
		self.assertTrue(referrals.issue_code('Aarav Patil').startswith('REF-AAR'))
		self.assertTrue(referrals.issue_code('  j. k. rowling').startswith('REF-JKR'))
		self.assertTrue(referrals.issue_code('1234').startswith('REF-SCC'))

	def test_validate(self):
		self.assertEqual(referrals.validate(''), referrals.ReferralStatus.IDLE)
		self.assertEqual(referrals.validate('SCC2025'), referrals.ReferralStatus.VALID)
		self.assertEqual(referrals.validate('REF-ABC1234'), referrals.ReferralStatus.VALID)
		self.assertEqual(referrals.validate('XYZ123'), referrals.ReferralStatus.INVALID)

	def test_previously_issued_code_is_valid(self):
		make_record('SCC-2025-1285', own_referral_code='LEGACY01').save()
		self.assertEqual(referrals.validate('LEGACY01'), referrals.ReferralStatus.VALID)
		self.assertIn('LEGACY01', referrals.known_codes())

	@override_settings(SCC_PROMO_CODES=['DIWALI'])
	def test_promo_codes_are_configurable(self):
		self.assertEqual(referrals.validate('DIWALI'), referrals.ReferralStatus.VALID)
		self.assertEqual(referrals.validate('TOPPER'), referrals.ReferralStatus.INVALID)


class StudentLedgerTestCase(TestCase):
	def setUp(self):
		self.ledger = StudentLedger()

	def test_insert_rejects_duplicate_seat(self):
		self.assertTrue(self.ledger.insert(make_record('SCC-2025-1285')).persisted)
		with self.assertRaises(DuplicateSeatError):
			self.ledger.insert(make_record('SCC-2025-1285', full_name='Someone Else'))
		self.assertEqual(StudentRecord.objects.count(), 1)

	def test_list_sorted_descending_by_seat(self):
		self.ledger.insert(make_record('SCC-2025-1285'))
		self.ledger.insert(make_record('SCC-2025-1286'))
		seats = [r.seat_number for r in self.ledger.list(sort='seat_number', descending=True)]
		self.assertEqual(seats, ['SCC-2025-1286', 'SCC-2025-1285'])

	def test_sort_ties_keep_insertion_order(self):
		for seat, name in [('SCC-2025-1285', 'Bela'), ('SCC-2025-1286', 'Aman'), ('SCC-2025-1287', 'Chirag')]:
			self.ledger.insert(make_record(seat, full_name=name, location='Meri'))
		for descending in (False, True):
			names = [r.full_name for r in self.ledger.list(sort='location', descending=descending)]
			self.assertEqual(names, ['Bela', 'Aman', 'Chirag'])

	def test_list_search_and_status_filter(self):
		self.ledger.insert(make_record('SCC-2025-1285', full_name='Aarav Patil', mobile='9000000001'))
		self.ledger.insert(make_record('SCC-2025-1286', full_name='Sneha Jadhav', mobile='9000000002'))
		self.ledger.update_attendance('SCC-2025-1286', 'Present')

		self.assertEqual([r.seat_number for r in self.ledger.list(search='aarav')], ['SCC-2025-1285'])
		self.assertEqual([r.seat_number for r in self.ledger.list(search='0002')], ['SCC-2025-1286'])
		self.assertEqual([r.seat_number for r in self.ledger.list(search='scc-2025-128')], ['SCC-2025-1285', 'SCC-2025-1286'])
		self.assertEqual([r.seat_number for r in self.ledger.list(status='Present')], ['SCC-2025-1286'])
		self.assertEqual([r.seat_number for r in self.ledger.list(status='Pending')], ['SCC-2025-1285'])
		self.assertEqual(self.ledger.list(status='All').count(), 2)

	def test_list_is_recomputed_each_call(self):
		records = self.ledger.list()
		self.assertEqual(records.count(), 0)
		self.ledger.insert(make_record('SCC-2025-1285'))
		self.assertEqual(self.ledger.list().count(), 1)

	def test_list_rejects_unknown_sort_and_status(self):
		with self.assertRaises(LedgerValidationError):
			self.ledger.list(sort='password')
		with self.assertRaises(LedgerValidationError):
			self.ledger.list(status='Excused')

	def test_update_attendance(self):
		self.ledger.insert(make_record('SCC-2025-1285'))
		result = self.ledger.update_attendance('SCC-2025-1285', 'Late')
		self.assertTrue(result.changed)
		self.assertEqual(StudentRecord.objects.get().attendance, 'Late')

	def test_update_attendance_unknown_seat_is_noop(self):
		self.ledger.insert(make_record('SCC-2025-1285'))
		before = self.ledger.snapshot()
		result = self.ledger.update_attendance('SCC-2025-9999', 'Present')
		self.assertFalse(result.changed)
		self.assertIsNone(result.error)
		self.assertEqual(self.ledger.snapshot(), before)

	def test_update_attendance_rejects_unknown_status(self):
		with self.assertRaises(LedgerValidationError):
			self.ledger.update_attendance('SCC-2025-1285', 'Sleeping')

	def test_delete_twice_is_same_as_once(self):
		self.ledger.insert(make_record('SCC-2025-1285'))
		self.ledger.insert(make_record('SCC-2025-1286'))
		self.assertTrue(self.ledger.delete('SCC-2025-1285').changed)
		once = self.ledger.snapshot()
		second = self.ledger.delete('SCC-2025-1285')
		self.assertFalse(second.changed)
		self.assertIsNone(second.error)
		self.assertEqual(self.ledger.snapshot(), once)

	def test_resolve_referrer_and_orphaned_code(self):
		self.ledger.insert(make_record('SCC-2025-1285', full_name='Asha Kale', own_referral_code='REF-AAB1234'))
		self.ledger.insert(make_record('SCC-2025-1286', full_name='Bhavesh More', referral_code='REF-AAB1234'))
		presented = StudentRecord.objects.get(seat_number='SCC-2025-1286').referral_code
		self.assertEqual(self.ledger.resolve_referrer(presented), 'Asha Kale')

		self.ledger.delete('SCC-2025-1285')
		self.assertEqual(self.ledger.resolve_referrer(presented), 'Unknown')
		self.assertEqual(StudentRecord.objects.get().referral_code, 'REF-AAB1234')

	def test_database_failure_on_insert_is_reported(self):
		with mock.patch.object(StudentRecord, 'save', side_effect=DatabaseError('disk I/O error')):
			with self.assertLogs('registrations.ledger', level='WARNING'):
				result = self.ledger.insert(make_record('SCC-2025-1285'))
		self.assertFalse(result.persisted)
		self.assertIsInstance(result.error, StorageError)
		self.assertEqual(result.record.seat_number, 'SCC-2025-1285')
		self.assertEqual(StudentRecord.objects.count(), 0)

	def test_database_failure_on_update_is_reported(self):
		self.ledger.insert(make_record('SCC-2025-1285'))
		with mock.patch('django.db.models.query.QuerySet.update', side_effect=DatabaseError('readonly')):
			result = self.ledger.update_attendance('SCC-2025-1285', 'Present')
		self.assertFalse(result.changed)
		self.assertIsInstance(result.error, StorageError)

	def test_replace_all_swaps_ledger_and_advances_counter(self):
		self.ledger.insert(make_record('SCC-2025-1285'))
		result = self.ledger.replace_all([
			make_record('SCC-2025-1400', full_name='Imported One'),
			make_record('SCC-2025-1401', full_name='Imported Two'),
		])
		self.assertEqual(result.count, 2)
		self.assertIsNone(result.error)
		self.assertEqual([r['full_name'] for r in self.ledger.snapshot()], ['Imported One', 'Imported Two'])
		self.assertEqual(next_seat_number('2025').value, 'SCC-2025-1402')

	def test_replace_all_rejects_duplicate_seats(self):
		self.ledger.insert(make_record('SCC-2025-1285'))
		with self.assertRaises(DuplicateSeatError):
			self.ledger.replace_all([make_record('SCC-2025-1300'), make_record('SCC-2025-1300')])
		self.assertEqual(self.ledger.snapshot()[0]['seat_number'], 'SCC-2025-1285')

	def test_replace_all_advances_each_year_to_its_highest_seat(self):
		self.ledger.replace_all([
			make_record('SCC-2025-1500'),
			make_record('SCC-2025-1300'),
			make_record('SCC-2026-2000'),
			make_record('WALKIN-7'),
		])
		self.assertEqual(SeatCounter.objects.get(year='2025').value, 1500)
		self.assertEqual(SeatCounter.objects.get(year='2026').value, 2000)

	def test_replace_all_storage_failure_keeps_ledger(self):
		self.ledger.insert(make_record('SCC-2025-1285', full_name='Kept'))
		with mock.patch.object(StudentRecord.objects, 'bulk_create', side_effect=DatabaseError('disk full')):
			with self.assertLogs('registrations.ledger', level='ERROR'):
				result = self.ledger.replace_all([make_record('SCC-2025-1400')])
		self.assertEqual(result.count, 0)
		self.assertIsInstance(result.error, StorageError)
		self.assertEqual([r['full_name'] for r in self.ledger.snapshot()], ['Kept'])
		self.assertFalse(SeatCounter.objects.exists())

	def test_reads_raise_storage_error(self):
		with mock.patch('django.db.models.query.QuerySet.count', side_effect=DatabaseError('locked')):
			with self.assertRaises(StorageError):
				self.ledger.stats()
		with mock.patch('django.db.models.query.QuerySet._fetch_all', side_effect=DatabaseError('locked')):
			with self.assertRaises(StorageError):
				self.ledger.fetch()
			with self.assertRaises(StorageError):
				self.ledger.referrer_map()
			with self.assertRaises(StorageError):
				self.ledger.get('SCC-2025-1285')

	def test_stats(self):
		self.ledger.insert(make_record('SCC-2025-1285', location='Satpur'))
		self.ledger.insert(make_record('SCC-2025-1286', location='Meri'))
		self.ledger.insert(make_record('SCC-2025-1287', location='Meri', attendance='Absent'))
		stats = self.ledger.stats()
		self.assertEqual(stats['total'], 3)
		self.assertEqual(stats['locations'], {'Satpur': 1, 'Meri': 2})
		self.assertEqual(stats['attendance']['Pending'], 2)
		self.assertEqual(stats['attendance']['Absent'], 1)
		self.assertEqual(stats['attendance']['Late'], 0)


@override_settings(TIME_ZONE='Asia/Kolkata')
class ExportTestCase(TestCase):
	def resolver(self, code):
		return {'REF-AAB1234': 'Asha Kale'}.get(code, 'Unknown')

	def test_fields_are_quoted_only_when_needed(self):
		record = make_record('SCC-2025-1285', full_name='Patil, Aarav', school_name='St. Mary\'s', notes='say "hi"\nthen leave')
		text = to_table([record], self.resolver)
		self.assertTrue(text.startswith('Seat Number,Name,Mobile,'))
		self.assertIn('SCC-2025-1285,"Patil, Aarav",9876543210,', text)
		self.assertIn(",St. Mary's,", text)
		self.assertIn(',"say ""hi""\nthen leave",', text)

	def test_table_round_trips_through_csv_reader(self):
		records = [
			make_record('SCC-2025-1285', full_name='Patil, Aarav', notes='Needs "front" seat'),
			make_record('SCC-2025-1286', notes='line one\nline two', referral_code='REF-AAB1234'),
			make_record('SCC-2025-1287', referral_code='REF-ZZZ9999', whatsapp='+919876543210'),
		]
		text = to_table(records, self.resolver)
		rows = list(csv.reader(io.StringIO(text, newline='')))
		self.assertEqual(rows[0], HEADERS)
		self.assertEqual(len(rows) - 1, len(records))
		for record, row in zip(records, rows[1:]):
			self.assertEqual(row, [str(v) for v in record_row(record, self.resolver)])

	def test_referrer_and_defaults(self):
		plain = make_record('SCC-2025-1285', created_at=datetime(2025, 1, 5, 20, 0, tzinfo=dt_timezone.utc))
		plain.attendance = ''
		referred = make_record('SCC-2025-1286', referral_code='REF-AAB1234')
		orphan = make_record('SCC-2025-1287', referral_code='REF-QQQ0000')
		rows = list(csv.reader(io.StringIO(to_table([plain, referred, orphan], self.resolver), newline='')))
		col = {h: i for i, h in enumerate(HEADERS)}
		self.assertEqual(rows[1][col['Referred By Name']], '')
		self.assertEqual(rows[1][col['Attendance']], 'Pending')
		self.assertEqual(rows[1][col['Date']], '06/01/2025')
		self.assertEqual(rows[2][col['Referred By Name']], 'Asha Kale')
		self.assertEqual(rows[3][col['Referred By Name']], 'Unknown')

	def test_export_keeps_caller_order(self):
		records = [make_record('SCC-2025-1290'), make_record('SCC-2025-1285'), make_record('SCC-2025-1287')]
		rows = list(csv.reader(io.StringIO(to_table(records, self.resolver), newline='')))
		self.assertEqual([r[0] for r in rows[1:]], ['SCC-2025-1290', 'SCC-2025-1285', 'SCC-2025-1287'])

	def test_workbook_has_header_and_rows(self):
		records = [make_record('SCC-2025-1285', attendance='Present'), make_record('SCC-2025-1286')]
		wb = load_workbook(build_registrations_workbook(records, self.resolver))
		ws = wb['Registrations']
		self.assertEqual([c.value for c in ws[1]], HEADERS)
		self.assertEqual(ws.max_row, 3)
		self.assertEqual(ws.cell(row=2, column=1).value, 'SCC-2025-1285')
		self.assertEqual(ws.cell(row=2, column=HEADERS.index('Attendance') + 1).fill.fill_type, 'solid')


class ExportFilesTestCase(TestCase):
	def setUp(self):
		self.out_dir = tempfile.mkdtemp()
		self.addCleanup(shutil.rmtree, self.out_dir, ignore_errors=True)

	def test_save_export_writes_text(self):
		path = save_export('a,b\n1,2', 'sample.csv', self.out_dir)
		with open(path, encoding='utf-8') as f:
			self.assertEqual(f.read(), 'a,b\n1,2')

	def test_management_command_exports_csv_and_xlsx(self):
		StudentLedger().insert(make_record('SCC-2025-1285'))
		out = io.StringIO()
		call_command('export_registrations', '--output', self.out_dir, stdout=out)
		self.assertIn('Exported 1 registrations', out.getvalue())
		call_command('export_registrations', '--format', 'xlsx', '--output', self.out_dir, stdout=io.StringIO())
		names = sorted(os.listdir(self.out_dir))
		self.assertEqual(len(names), 2)
		self.assertTrue(names[0].endswith('.csv'))
		self.assertTrue(names[1].endswith('.xlsx'))


class DraftStoreTestCase(TestCase):
	def test_save_load_clear(self):
		session = SessionStore()
		store = DraftStore(session)
		self.assertIsNone(store.load())
		self.assertTrue(store.save({'full_name': 'Aarav', 'mobile': '98765', 'seat_number': 'SCC-2025-1', 'own_referral_code': 'REF-X'}))

		reloaded = DraftStore(SessionStore(session_key=session.session_key))
		self.assertEqual(reloaded.load(), {'full_name': 'Aarav', 'mobile': '98765'})

		reloaded.clear()
		self.assertIsNone(DraftStore(SessionStore(session_key=session.session_key)).load())

	def test_save_overwrites_previous_draft(self):
		store = DraftStore(SessionStore())
		store.save({'full_name': 'First', 'school_name': 'Old School'})
		store.save({'full_name': 'Second'})
		self.assertEqual(store.load(), {'full_name': 'Second'})

	def test_storage_failure_is_logged_not_raised(self):
		session = SessionStore()
		with mock.patch.object(session, 'save', side_effect=DatabaseError('quota')):
			with self.assertLogs('registrations.drafts', level='WARNING'):
				self.assertFalse(DraftStore(session).save({'full_name': 'Aarav'}))


class RecordingStore:
	def __init__(self, fail=False):
		self.saved = []
		self.fail = fail
		self.event = threading.Event()

	def save(self, data):
		if self.fail:
			raise RuntimeError('storage unavailable')
		self.saved.append(dict(data))
		self.event.set()
		return True


class DraftAutosaverTestCase(TestCase):
	def test_tick_skips_blank_name(self):
		store = RecordingStore()
		saver = DraftAutosaver(store, lambda: {'full_name': '   ', 'mobile': '9876543210'}, interval=30)
		self.assertFalse(saver.tick())
		self.assertEqual(store.saved, [])

	def test_tick_saves_when_name_present(self):
		store = RecordingStore()
		saver = DraftAutosaver(store, lambda: {'full_name': 'Aarav'}, interval=30)
		self.assertTrue(saver.tick())
		self.assertEqual(store.saved, [{'full_name': 'Aarav'}])

	def test_tick_failure_is_logged(self):
		saver = DraftAutosaver(RecordingStore(fail=True), lambda: {'full_name': 'Aarav'}, interval=30)
		with self.assertLogs('registrations.drafts', level='ERROR'):
			self.assertFalse(saver.tick())

	def test_background_saves_until_stopped(self):
		store = RecordingStore()
		saver = DraftAutosaver(store, lambda: {'full_name': 'Aarav'}, interval=0.01)
		saver.start()
		self.assertTrue(saver.running)
		self.assertTrue(store.event.wait(2))
		saver.stop()
		self.assertFalse(saver.running)
		count = len(store.saved)
		store.event.clear()
		self.assertFalse(store.event.wait(0.05))
		self.assertEqual(len(store.saved), count)


@override_settings(SCC_EXAM_DATE='Sunday, 28th December 2025', SCC_UPSTREAM_URL='')
class RegistrationServiceTestCase(TestCase):
	def test_register_in_demo_mode(self):
		session = SessionStore()
		DraftStore(session).save({'full_name': 'Aarav'})
		outcome = register_student(form_payload(mobile='9876543210'), session=session)

		self.assertTrue(outcome.persisted)
		self.assertTrue(outcome.seat_guaranteed)
		self.assertEqual(outcome.record.seat_number, 'SCC-2025-1285')
		self.assertRegex(outcome.record.own_referral_code, REFERRAL_PATTERN)
		self.assertTrue(outcome.record.own_referral_code.startswith('REF-AAR'))
		self.assertEqual(outcome.record.attendance, 'Pending')
		self.assertIsNone(DraftStore(session).load())

	def test_invalid_referral_blocks_submission(self):
		with self.assertRaises(LedgerValidationError) as ctx:
			register_student(form_payload(referral_code='XYZ123'))
		self.assertEqual(ctx.exception.field, 'referral_code')
		self.assertEqual(StudentRecord.objects.count(), 0)
		self.assertFalse(SeatCounter.objects.exists())

	def test_presented_code_is_uppercased(self):
		outcome = register_student(form_payload(referral_code='scc2025'))
		self.assertEqual(outcome.record.referral_code, 'SCC2025')

	def test_upstream_overrides_win(self):
		upstream = FakeUpstream({'seat_number': 'SCC-2025-5000', 'own_referral_code': 'REF-SRV0001'})
		outcome = register_student(form_payload(), upstream=upstream)
		self.assertEqual(upstream.payloads[0]['seatNumber'], 'SCC-2025-1285')
		self.assertEqual(outcome.record.seat_number, 'SCC-2025-5000')
		self.assertEqual(StudentRecord.objects.get().own_referral_code, 'REF-SRV0001')

	def test_upstream_rejection_stores_nothing(self):
		upstream = FakeUpstream(error=SubmissionRejected('Duplicate mobile'))
		with self.assertRaises(SubmissionRejected):
			register_student(form_payload(), upstream=upstream)
		self.assertEqual(StudentRecord.objects.count(), 0)

	def test_fallback_seat_is_flagged(self):
		with mock.patch('registrations.services.next_seat_number', return_value=Fallback('SCC-2025-4321')):
			outcome = register_student(form_payload())
		self.assertFalse(outcome.seat_guaranteed)
		self.assertEqual(len(outcome.warnings), 1)

	def test_successful_submission_stops_autosave(self):
		saver = DraftAutosaver(RecordingStore(), lambda: {'full_name': 'Aarav'}, interval=30)
		saver.start()
		self.assertTrue(saver.running)
		register_student(form_payload(), autosaver=saver)
		self.assertFalse(saver.running)

	def test_rejected_submission_keeps_autosave_running(self):
		saver = DraftAutosaver(RecordingStore(), lambda: {'full_name': 'Aarav'}, interval=30)
		saver.start()
		self.addCleanup(saver.stop)
		with self.assertRaises(SubmissionRejected):
			register_student(form_payload(), upstream=FakeUpstream(error=SubmissionRejected('Sheet full')), autosaver=saver)
		self.assertTrue(saver.running)


class UpstreamClientTestCase(TestCase):
	def client_with(self, response=None, error=None):
		session = mock.Mock()
		if error is not None:
			session.post.side_effect = error
		else:
			session.post.return_value = response
		return UpstreamClient(url='https://example.test/submit', timeout=5, session=session)

	def response(self, data=None, json_error=None):
		resp = mock.Mock(status_code=200)
		if json_error is not None:
			resp.json.side_effect = json_error
		else:
			resp.json.return_value = data
		return resp

	def test_demo_mode_makes_no_call(self):
		session = mock.Mock()
		self.assertEqual(UpstreamClient(url='', session=session).submit({'seatNumber': 'X'}), {})
		session.post.assert_not_called()

	def test_success_returns_overrides(self):
		client = self.client_with(self.response({'result': 'success', 'seatNumber': 'SCC-2025-7000'}))
		self.assertEqual(client.submit({'seatNumber': 'SCC-2025-1285'}), {'seat_number': 'SCC-2025-7000'})
		client.http.post.assert_called_once_with('https://example.test/submit', json={'seatNumber': 'SCC-2025-1285'}, timeout=5)

	def test_non_success_raises_rejected(self):
		client = self.client_with(self.response({'result': 'error', 'message': 'Sheet full'}))
		with self.assertRaisesMessage(SubmissionRejected, 'Sheet full'):
			client.submit({})

	def test_connection_error_raises_failed(self):
		client = self.client_with(error=requests.ConnectionError('offline'))
		with self.assertRaisesMessage(SubmissionFailed, 'Connection failed'):
			client.submit({})

	def test_bad_json_raises_failed(self):
		client = self.client_with(self.response(json_error=ValueError('not json')))
		with self.assertRaises(SubmissionFailed):
			client.submit({})


@override_settings(SCC_EXAM_DATE='Sunday, 28th December 2025', SCC_UPSTREAM_URL='')
class RegistrationAPITestCase(TestCase):
	def setUp(self):
		self.client = APIClient()
		self.admin = get_user_model().objects.create_user(username='admin', password='admin-pass-123', is_staff=True)

	def as_admin(self):
		client = APIClient()
		client.force_authenticate(user=self.admin)
		return client

	def test_post_registration(self):
		res = self.client.post('/api/registrations/', form_payload(whatsapp='+91 98765 43210'), format='json')
		self.assertEqual(res.status_code, 201)
		data = res.json()
		self.assertEqual(data['result'], 'success')
		self.assertEqual(data['seat_number'], 'SCC-2025-1285')
		self.assertEqual(data['mobile'], '9876543210')
		self.assertEqual(data['whatsapp'], '+919876543210')
		self.assertEqual(data['class_std'], '10th')
		self.assertRegex(data['own_referral_code'], REFERRAL_PATTERN)
		self.assertEqual(StudentRecord.objects.count(), 1)

	def test_post_registration_with_invalid_referral(self):
		res = self.client.post('/api/registrations/', form_payload(referral_code='XYZ123'), format='json')
		self.assertEqual(res.status_code, 400)
		self.assertIn('referral_code', res.json()['fields'])
		self.assertEqual(StudentRecord.objects.count(), 0)

	def test_post_registration_missing_fields(self):
		res = self.client.post('/api/registrations/', {'full_name': 'Aarav'}, format='json')
		self.assertEqual(res.status_code, 400)
		fields = res.json()['fields']
		for name in ('parent_name', 'mobile', 'email', 'school_name', 'field_of_interest', 'location'):
			self.assertIn(name, fields)

	@override_settings(SCC_UPSTREAM_URL='https://example.test/submit')
	def test_post_registration_uses_upstream_corrections(self):
		resp = mock.Mock(status_code=200)
		resp.json.return_value = {'result': 'success', 'seatNumber': 'SCC-2025-8000', 'ownReferralCode': 'REF-SRV1234'}
		with mock.patch('registrations.upstream.requests.Session.post', return_value=resp):
			res = self.client.post('/api/registrations/', form_payload(), format='json')
		self.assertEqual(res.status_code, 201)
		self.assertEqual(res.json()['seat_number'], 'SCC-2025-8000')
		self.assertEqual(res.json()['own_referral_code'], 'REF-SRV1234')

	@override_settings(SCC_UPSTREAM_URL='https://example.test/submit')
	def test_post_registration_upstream_down(self):
		with mock.patch('registrations.upstream.requests.Session.post', side_effect=requests.ConnectionError('down')):
			res = self.client.post('/api/registrations/', form_payload(), format='json')
		self.assertEqual(res.status_code, 503)
		self.assertEqual(res.json()['result'], 'error')
		self.assertEqual(StudentRecord.objects.count(), 0)

	def test_list_requires_staff(self):
		res = self.client.get('/api/registrations/')
		self.assertIn(res.status_code, (401, 403))

	def test_list_sorted_with_referrer_names(self):
		ledger = StudentLedger()
		ledger.insert(make_record('SCC-2025-1285', full_name='Asha Kale', own_referral_code='REF-AAB1234'))
		ledger.insert(make_record('SCC-2025-1286', full_name='Bhavesh More', referral_code='REF-AAB1234'))
		res = self.as_admin().get('/api/registrations/', {'sort': 'seat_number', 'direction': 'desc'})
		self.assertEqual(res.status_code, 200)
		data = res.json()
		self.assertEqual([r['seat_number'] for r in data], ['SCC-2025-1286', 'SCC-2025-1285'])
		self.assertEqual(data[0]['referred_by_name'], 'Asha Kale')
		self.assertEqual(data[1]['referred_by_name'], '')

	def test_list_rejects_bad_sort(self):
		res = self.as_admin().get('/api/registrations/', {'sort': 'nope'})
		self.assertEqual(res.status_code, 400)
		self.assertEqual(res.json()['field'], 'sort')

	def test_attendance_update_and_unknown_seat(self):
		StudentLedger().insert(make_record('SCC-2025-1285'))
		admin = self.as_admin()
		res = admin.patch('/api/registrations/SCC-2025-1285/attendance/', {'attendance': 'Present'}, format='json')
		self.assertEqual(res.status_code, 200)
		self.assertTrue(res.json()['updated'])

		res = admin.patch('/api/registrations/SCC-2025-9999/attendance/', {'attendance': 'Present'}, format='json')
		self.assertEqual(res.status_code, 200)
		self.assertFalse(res.json()['updated'])

		res = admin.patch('/api/registrations/SCC-2025-1285/attendance/', {'attendance': 'Gone'}, format='json')
		self.assertEqual(res.status_code, 400)

	def test_delete_is_idempotent(self):
		StudentLedger().insert(make_record('SCC-2025-1285'))
		admin = self.as_admin()
		self.assertEqual(admin.delete('/api/registrations/SCC-2025-1285/').status_code, 204)
		self.assertEqual(admin.delete('/api/registrations/SCC-2025-1285/').status_code, 204)
		self.assertEqual(StudentRecord.objects.count(), 0)

	def test_detail_and_whatsapp_link(self):
		StudentLedger().insert(make_record('SCC-2025-1285', full_name='Asha Kale', mobile='9876543210'))
		admin = self.as_admin()
		self.assertEqual(admin.get('/api/registrations/SCC-2025-1285/').json()['full_name'], 'Asha Kale')
		self.assertEqual(admin.get('/api/registrations/SCC-2025-0000/').status_code, 404)
		data = admin.get('/api/registrations/SCC-2025-1285/whatsapp/').json()
		self.assertEqual(data['number'], '919876543210')
		self.assertTrue(data['url'].startswith('https://wa.me/919876543210?text='))
		self.assertIn('SCC-2025-1285', data['message'])

	def test_csv_export(self):
		StudentLedger().insert(make_record('SCC-2025-1285', full_name='Patil, Aarav'))
		res = self.as_admin().get('/api/registrations/export/')
		self.assertEqual(res.status_code, 200)
		self.assertTrue(res['Content-Type'].startswith('text/csv'))
		self.assertIn('attachment; filename="scc_registrations_', res['Content-Disposition'])
		rows = list(csv.reader(io.StringIO(res.content.decode('utf-8'), newline='')))
		self.assertEqual(rows[0], HEADERS)
		self.assertEqual(rows[1][1], 'Patil, Aarav')

	def test_xlsx_export_is_saved(self):
		out_dir = tempfile.mkdtemp()
		self.addCleanup(shutil.rmtree, out_dir, ignore_errors=True)
		StudentLedger().insert(make_record('SCC-2025-1285'))
		with override_settings(EXPORTS_DIR=out_dir):
			res = self.as_admin().get('/api/registrations/export/xlsx/')
		self.assertEqual(res.status_code, 201)
		self.assertTrue(res.json()['url'].startswith('/exports/scc_registrations_'))

	def test_stats(self):
		StudentLedger().insert(make_record('SCC-2025-1285', location='Meri'))
		data = self.as_admin().get('/api/registrations/stats/').json()
		self.assertEqual(data['total'], 1)
		self.assertEqual(data['locations']['Meri'], 1)

	def test_snapshot_round_trip(self):
		StudentLedger().insert(make_record('SCC-2025-1285', full_name='Old'))
		admin = self.as_admin()
		snapshot = admin.get('/api/registrations/snapshot/').json()
		self.assertEqual(len(snapshot), 1)

		snapshot[0]['full_name'] = 'Restored'
		snapshot.append(dict(snapshot[0], seat_number='SCC-2025-1290', full_name='Second'))
		res = admin.put('/api/registrations/snapshot/', snapshot, format='json')
		self.assertEqual(res.status_code, 200)
		self.assertEqual(res.json()['replaced'], 2)
		self.assertEqual(list(StudentRecord.objects.values_list('full_name', flat=True)), ['Restored', 'Second'])

	def test_snapshot_with_duplicate_seats_conflicts(self):
		admin = self.as_admin()
		record = form_payload(mobile='9876543210')
		record.update({'seat_number': 'SCC-2025-1300', 'own_referral_code': 'REF-AAR1000'})
		res = admin.put('/api/registrations/snapshot/', [record, record], format='json')
		self.assertEqual(res.status_code, 409)

	def test_snapshot_storage_failure_answers_with_warning(self):
		StudentLedger().insert(make_record('SCC-2025-1285', full_name='Kept'))
		admin = self.as_admin()
		snapshot = admin.get('/api/registrations/snapshot/').json()
		snapshot[0]['full_name'] = 'Replaced'
		with mock.patch.object(StudentRecord.objects, 'bulk_create', side_effect=DatabaseError('disk full')):
			res = admin.put('/api/registrations/snapshot/', snapshot, format='json')
		self.assertEqual(res.status_code, 200)
		self.assertEqual(res.json()['replaced'], 0)
		self.assertIn('disk full', res.json()['warning'])
		self.assertEqual(StudentRecord.objects.get().full_name, 'Kept')

	def test_admin_reads_report_storage_failure(self):
		admin = self.as_admin()
		with mock.patch('django.db.models.query.QuerySet._fetch_all', side_effect=DatabaseError('locked')):
			for url in ('/api/registrations/', '/api/registrations/stats/', '/api/registrations/export/',
						'/api/registrations/snapshot/', '/api/registrations/SCC-2025-1285/'):
				res = admin.get(url)
				self.assertEqual(res.status_code, 503, url)
				self.assertIn('locked', res.json()['warning'])

	def test_generate_seat(self):
		res = self.as_admin().post('/api/seats/next/', {}, format='json')
		self.assertEqual(res.status_code, 201)
		self.assertEqual(res.json(), {'seat_number': 'SCC-2025-1285', 'guaranteed': True})
		self.assertIn(self.client.post('/api/seats/next/', {}, format='json').status_code, (401, 403))

	def test_validate_referral_endpoint(self):
		for code, expected in [('', 'idle'), ('scc2025', 'valid'), ('REF-ABC1234', 'valid'), ('XYZ123', 'invalid')]:
			res = self.client.get('/api/referrals/validate/', {'code': code})
			self.assertEqual(res.json()['status'], expected, code)

	def test_draft_lifecycle_and_clear_on_submit(self):
		self.assertEqual(self.client.get('/api/draft/').status_code, 204)
		res = self.client.put('/api/draft/', {'full_name': 'Aarav', 'school_name': 'Nashik High'}, format='json')
		self.assertTrue(res.json()['saved'])
		self.assertEqual(self.client.get('/api/draft/').json(), {'full_name': 'Aarav', 'school_name': 'Nashik High'})

		self.assertEqual(self.client.post('/api/registrations/', form_payload(), format='json').status_code, 201)
		self.assertEqual(self.client.get('/api/draft/').status_code, 204)

	def test_draft_delete(self):
		self.client.put('/api/draft/', {'full_name': 'Aarav'}, format='json')
		self.assertEqual(self.client.delete('/api/draft/').status_code, 204)
		self.assertEqual(self.client.get('/api/draft/').status_code, 204)


@override_settings(SCC_EXAM_DATE='Sunday, 28th December 2025')
class ConcurrentSeatIssueTestCase(TransactionTestCase):
	workers = 8

	def run_in_threads(self, targets):
		errors = []

		def wrap(target):
			try:
				target()
			except Exception as e:
				errors.append(e)
			finally:
				connection.close()

		threads = [threading.Thread(target=wrap, args=(t,)) for t in targets]
		for t in threads:
			t.start()
		for t in threads:
			t.join(timeout=20)
		self.assertFalse(any(t.is_alive() for t in threads))
		self.assertEqual(errors, [])

	def test_concurrent_callers_get_distinct_increasing_seats(self):
		seats = []
		start = threading.Barrier(self.workers)

		def issue():
			start.wait()
			seats.append(next_seat_number('2025'))

		self.run_in_threads([issue] * self.workers)
		self.assertTrue(all(isinstance(s, Issued) for s in seats))
		sequences = sorted(parse_seat(s.value)[1] for s in seats)
		self.assertEqual(sequences, list(range(1285, 1285 + self.workers)))
		self.assertEqual(SeatCounter.objects.get(year='2025').value, 1284 + self.workers)

	def test_snapshot_import_alongside_seat_issue(self):
		seats = []
		imported = [make_record('SCC-2025-1400'), make_record('SCC-2025-1401')]

		def issue():
			seats.append(next_seat_number('2025'))

		def restore():
			result = StudentLedger().replace_all(imported)
			self.assertIsNone(result.error)

		self.run_in_threads([restore] + [issue] * 4)
		self.assertTrue(all(isinstance(s, Issued) for s in seats))
		self.assertEqual(len({s.value for s in seats}), 4)
		self.assertEqual(StudentRecord.objects.count(), 2)
		self.assertGreaterEqual(SeatCounter.objects.get(year='2025').value, 1401)
