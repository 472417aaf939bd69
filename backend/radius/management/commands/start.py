"""
Django management command to run the RADIUS accounting server.

Usage:
    python manage.py start [options]
"""

from django.core.management.base import BaseCommand
from django.conf import settings


class Command(BaseCommand):
    help = 'Run the RADIUS accounting server'

    def add_arguments(self, parser):
        parser.add_argument(
            '--acct-port', type=int, default=None,
            help='Accounting port (default: from settings or 1813)'
        )
        parser.add_argument(
            '--bind', type=str, default=None,
            help='Bind address (default: from settings or 0.0.0.0)'
        )
        parser.add_argument(
            '--workers', type=int, default=None,
            help='Packet worker threads (default: from settings or 8)'
        )
        parser.add_argument(
            '--log-level', type=str, default=None,
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            help='Logging level (default: from settings or INFO)'
        )

    def handle(self, *args, **options):
        from radius.server import run_server

        radius_config = getattr(settings, 'RADIUS_CONFIG', {})

        acct_port = options['acct_port'] or radius_config.get('ACCT_PORT', 1813)
        bind_address = options['bind'] or radius_config.get('BIND_ADDRESS', '0.0.0.0')
        workers = options['workers'] or radius_config.get('ACCT_WORKERS', 8)
        log_level = options['log_level'] or radius_config.get('LOG_LEVEL', 'INFO')

        self.stdout.write(self.style.SUCCESS('Starting RADIUS Accounting Server...'))
        self.stdout.write(f'  Accounting port: {acct_port}')
        self.stdout.write(f'  Bind address: {bind_address}')
        self.stdout.write(f'  Workers: {workers}')
        self.stdout.write(f'  Log level: {log_level}')
        self.stdout.write('')

        # Blocks until interrupted
        run_server(
            acct_port=acct_port,
            bind_address=bind_address,
            log_level=log_level,
            workers=workers
        )
