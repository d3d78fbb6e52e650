from django.core.management.base import BaseCommand, CommandError

from registrations.exceptions import LedgerError
from registrations.ledger import StudentLedger
from registrations.utils_export import build_registrations_workbook, export_filename, save_export, to_table


class Command(BaseCommand):
    help = 'Export all registrations (with referrer names) to CSV or Excel'

    def add_arguments(self, parser):
        parser.add_argument('--format', choices=['csv', 'xlsx'], default='csv')
        parser.add_argument('--output', help='Directory to write into (defaults to EXPORTS_DIR)')
        parser.add_argument('--status', default='All', help='Only export this attendance status')

    def handle(self, *args, **options):
        ledger = StudentLedger()
        try:
            records = ledger.fetch(status=options['status'])
            referrers = ledger.referrer_map()
        except LedgerError as e:
            raise CommandError(str(e))

        def resolver(code):
            return ledger.resolve_referrer(code, referrers)

        fmt = options['format']
        if fmt == 'xlsx':
            content = build_registrations_workbook(records, resolver)
        else:
            content = to_table(records, resolver)

        path = save_export(content, export_filename(fmt), options.get('output'))
        self.stdout.write(self.style.SUCCESS(f'Exported {len(records)} registrations to {path}'))
