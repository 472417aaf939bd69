from django.core.management.base import BaseCommand
from radius.models import RadiusLog

LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


class Command(BaseCommand):
    help = 'Show accounting server logs'

    def add_arguments(self, parser):
        parser.add_argument(
            '-n', '--lines',
            type=int,
            default=50,
            help='Number of lines to show (default: 50)',
        )
        parser.add_argument(
            '-f', '--filter',
            type=str,
            default=None,
            help='Only show messages containing this text (case-insensitive)',
        )
        parser.add_argument(
            '-l', '--level',
            type=str.upper,
            choices=LEVELS,
            default=None,
            help='Only show entries at or above this level',
        )
        parser.add_argument(
            '--logger',
            type=str,
            default=None,
            help='Only show entries from loggers under this name (e.g. sessions)',
        )
        parser.add_argument(
            '-fl', '--flushlogs',
            action='store_true',
            help='Clear all logs',
        )

    def handle(self, *args, **options):
        if options['flushlogs']:
            self.stdout.write('Flushing all logs...')
            count, _ = RadiusLog.objects.all().delete()
            self.stdout.write(self.style.SUCCESS(f'Successfully deleted {count} logs.'))
            return

        logs = RadiusLog.objects.all()

        if options['filter']:
            logs = logs.filter(message__icontains=options['filter'])
        if options['level']:
            logs = logs.filter(level__in=LEVELS[LEVELS.index(options['level']):])
        if options['logger']:
            logs = logs.filter(logger__startswith=options['logger'])

        # Newest N, printed oldest first so it reads like a log file
        logs_list = list(logs[:options['lines']])
        logs_list.reverse()

        for log in logs_list:
            timestamp_str = log.timestamp.strftime('%Y-%m-%d %H:%M:%S')

            level_display = log.level
            if log.level in ('ERROR', 'CRITICAL'):
                level_display = self.style.ERROR(log.level)
            elif log.level == 'WARNING':
                level_display = self.style.WARNING(log.level)
            elif log.level == 'INFO':
                level_display = self.style.SUCCESS(log.level)

            self.stdout.write(f"[{timestamp_str}] {level_display} [{log.logger}] {log.message}")
