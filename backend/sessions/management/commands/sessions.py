"""
Django management command for RADIUS accounting session management.

Usage:
    python manage.py sessions list [options]
    python manage.py sessions show <session_id>
    python manage.py sessions kick <session_id>
    python manage.py sessions reconcile <nas_ip>
    python manage.py sessions history [options]
"""

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from radius.exceptions import AccountingError
from sessions.ledger import SessionLedger
from sessions.locks import session_lock
from sessions.models import OnlineSession, UsageLog
from sessions.reconciliation import reconcile_nas
from sessions.settlement import close_session


class Command(BaseCommand):
    help = 'Manage RADIUS accounting sessions'

    def add_arguments(self, parser):
        subparsers = parser.add_subparsers(dest='action', help='Action to perform')

        # List online sessions
        list_parser = subparsers.add_parser('list', help='List online sessions')
        list_parser.add_argument(
            '--user', '-u', type=str, default=None,
            help='Filter by username'
        )
        list_parser.add_argument(
            '--nas', '-n', type=str, default=None,
            help='Filter by NAS IP address'
        )
        list_parser.add_argument(
            '--limit', '-l', type=int, default=50,
            help='Maximum number of sessions to show (default: 50)'
        )

        # Show session details
        show_parser = subparsers.add_parser('show', help='Show session details')
        show_parser.add_argument('session_id', type=str, help='Session ID to show')

        # Kick (settle) session
        kick_parser = subparsers.add_parser('kick', help='Settle and remove an online session')
        kick_parser.add_argument('session_id', type=str, help='Session ID to terminate')
        kick_parser.add_argument(
            '--force', '-f', action='store_true',
            help='Force termination without confirmation'
        )

        # Reconcile a NAS
        reconcile_parser = subparsers.add_parser(
            'reconcile', help='Settle every online session of a NAS'
        )
        reconcile_parser.add_argument('nas_ip', type=str, help='IP address of the NAS')

        # Usage history
        history_parser = subparsers.add_parser('history', help='Show settled usage logs')
        history_parser.add_argument(
            '--user', '-u', type=str, default=None,
            help='Filter by username'
        )
        history_parser.add_argument(
            '--limit', '-l', type=int, default=50,
            help='Maximum number of entries to show (default: 50)'
        )

    def handle(self, *args, **options):
        action = options.get('action')

        if action == 'list':
            self.list_sessions(options)
        elif action == 'show':
            self.show_session(options)
        elif action == 'kick':
            self.kick_session(options)
        elif action == 'reconcile':
            self.reconcile(options)
        elif action == 'history':
            self.show_history(options)
        else:
            self.stdout.write(self.style.ERROR(
                'Please specify an action: list, show, kick, reconcile, history'
            ))

    def list_sessions(self, options):
        """List online sessions."""
        sessions = OnlineSession.objects.all()
        if options['user']:
            sessions = sessions.filter(username=options['user'])
        if options['nas']:
            sessions = sessions.filter(nas_ip_address=options['nas'])

        total_count = sessions.count()
        if total_count == 0:
            self.stdout.write('No sessions found')
            return

        shown = list(sessions[:options['limit']])

        self._print_list_header()
        for session in shown:
            self._print_session_row(session)

        if total_count > len(shown):
            self.stdout.write(f"\nShowing {len(shown)} of {total_count} session(s)")
        else:
            self.stdout.write(f"\nTotal: {total_count} session(s)")

    def show_session(self, options):
        """Show details for a session."""
        session_id = options['session_id']

        session = SessionLedger().find(session_id)
        if not session:
            raise CommandError(f'Session "{session_id}" not found')

        self._print_session_details(session)

    def kick_session(self, options):
        """Settle an online session with the Admin-Reset cause."""
        session_id = options['session_id']
        ledger = SessionLedger()

        session = ledger.find(session_id)
        if not session:
            raise CommandError(f'Online session "{session_id}" not found')

        if not options['force']:
            self._print_session_details(session)
            confirm = input('\nAre you sure you want to terminate this session? [y/N] ')
            if confirm.lower() != 'y':
                self.stdout.write('Cancelled')
                return

        with session_lock(session_id):
            # Re-read under the lock; a Stop may have settled it meanwhile
            session = ledger.find(session_id)
            if session is None:
                raise CommandError(f'Online session "{session_id}" not found')
            try:
                close_session(
                    session,
                    session.upstream_bytes,
                    session.downstream_bytes,
                    UsageLog.TERMINATE_CAUSE_ADMIN_RESET,
                    ledger=ledger
                )
            except AccountingError as e:
                raise CommandError(f'Could not settle session "{session_id}": {e.message}')

        self.stdout.write(self.style.SUCCESS(f'Session "{session_id}" terminated'))

    def reconcile(self, options):
        """Settle every online session of a NAS in the foreground."""
        nas_ip = options['nas_ip']
        result = reconcile_nas(nas_ip, UsageLog.TERMINATE_CAUSE_ADMIN_RESET)

        if result.total == 0:
            self.stdout.write(f'No online sessions for NAS {nas_ip}')
            return

        self.stdout.write(self.style.SUCCESS(
            f'Settled {len(result.settled)} session(s) for NAS {nas_ip}'
        ))
        if result.skipped:
            self.stdout.write(self.style.WARNING(
                f'Skipped {len(result.skipped)} session(s): {", ".join(result.skipped)}'
            ))

    def show_history(self, options):
        """Show settled usage logs, newest first."""
        logs = UsageLog.objects.all()
        if options['user']:
            logs = logs.filter(username=options['user'])

        logs = list(logs[:options['limit']])
        if not logs:
            self.stdout.write('No usage logs found')
            return

        self.stdout.write(
            f"{'Session ID':<20} {'Username':<15} {'Stopped':<20} {'Duration':<10} "
            f"{'Up':<10} {'Down':<10} {'Cause':<6}"
        )
        self.stdout.write("-" * 95)
        for log in logs:
            stopped = timezone.localtime(log.stop_time).strftime('%Y-%m-%d %H:%M:%S')
            cause = str(log.terminate_cause) if log.terminate_cause is not None else '-'
            self.stdout.write(
                f"{log.acct_session_id[:20]:<20} {(log.username or 'N/A')[:15]:<15} "
                f"{stopped:<20} {self._format_duration(log.used_duration):<10} "
                f"{self._format_bytes(log.total_upstream):<10} "
                f"{self._format_bytes(log.total_downstream):<10} {cause:<6}"
            )

    def _print_session_details(self, session):
        """Print detailed session information."""
        online_for = int((timezone.now() - session.start_time).total_seconds())

        self.stdout.write(f"\nSession: {session.session_id}")
        self.stdout.write(f"  Username: {session.username or 'N/A'}")
        self.stdout.write(f"  NAS IP Address: {session.nas_ip_address}")
        self.stdout.write(f"  NAS Port: {session.nas_port_id or 'N/A'}")
        self.stdout.write(f"  Framed IP Address: {session.framed_ip_address or 'N/A'}")
        self.stdout.write(f"  MAC Address: {session.mac_address or 'N/A'}")
        self.stdout.write(f"  Start Time: {session.start_time}")
        self.stdout.write(f"  Last Updated: {session.last_updated}")
        self.stdout.write(f"  Online: {self._format_duration(max(0, online_for))}")
        self.stdout.write(f"  Upstream: {self._format_bytes(session.upstream_bytes)}")
        self.stdout.write(f"  Downstream: {self._format_bytes(session.downstream_bytes)}")

    def _format_duration(self, seconds):
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds}s"
        elif seconds < 3600:
            return f"{seconds // 60}m {seconds % 60}s"
        else:
            hours = seconds // 3600
            minutes = (seconds % 3600) // 60
            return f"{hours}h {minutes}m"

    def _format_bytes(self, bytes_count):
        """Format bytes in human-readable format."""
        if bytes_count < 1024:
            return f"{bytes_count} B"
        elif bytes_count < 1024 * 1024:
            return f"{bytes_count / 1024:.1f} KB"
        elif bytes_count < 1024 * 1024 * 1024:
            return f"{bytes_count / (1024 * 1024):.1f} MB"
        else:
            return f"{bytes_count / (1024 * 1024 * 1024):.1f} GB"

    def _print_list_header(self):
        """Print the header for session list."""
        self.stdout.write(
            f"{'Session ID':<20} {'Username':<15} {'Client IP':<15} {'MAC':<17} "
            f"{'NAS':<15} {'Up':<10} {'Down':<10} {'Started':<20} {'Last Updated':<20}"
        )
        self.stdout.write("-" * 150)

    def _print_session_row(self, session):
        """Print a single session row."""
        started = timezone.localtime(session.start_time).strftime('%Y-%m-%d %H:%M:%S')
        last_upd = timezone.localtime(session.last_updated).strftime('%Y-%m-%d %H:%M:%S')

        sid = str(session.session_id)
        username = str(session.username or 'N/A')
        client_ip = str(session.framed_ip_address or 'N/A')
        mac = str(session.mac_address or 'N/A')

        self.stdout.write(
            f"{sid[:20]:<20} {username[:15]:<15} {client_ip:<15} {mac[:17]:<17} "
            f"{session.nas_ip_address:<15} "
            f"{self._format_bytes(session.upstream_bytes):<10} "
            f"{self._format_bytes(session.downstream_bytes):<10} {started:<20} {last_upd:<20}"
        )
