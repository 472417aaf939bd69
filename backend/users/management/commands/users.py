"""
Django management command for RADIUS subscriber management.

Usage:
    python manage.py users add <username> [options]
    python manage.py users list [options]
    python manage.py users delete <username>
    python manage.py users update <username> [options]
    python manage.py users show <username>
"""

import re

from django.core.management.base import BaseCommand, CommandError
from users.models import RadiusUser
from sessions.models import OnlineSession, UsageLog

DURATION_UNITS = {'s': 1, 'm': 60, 'h': 3600, 'd': 86400}


class Command(BaseCommand):
    help = 'Manage RADIUS subscribers and their quotas'

    def add_arguments(self, parser):
        subparsers = parser.add_subparsers(dest='action', help='Action to perform')

        # Create subscriber
        create_parser = subparsers.add_parser('add', help='Create a new subscriber')
        create_parser.add_argument('username', type=str, help='Username')
        create_parser.add_argument(
            '--flow', '-t', type=str, default='0',
            help='Traffic allowance (e.g. 5G, 100M, or bytes)'
        )
        create_parser.add_argument(
            '--time', '-T', type=str, default='0',
            help='Online time allowance (e.g. 30d, 10h, 45m, or seconds)'
        )
        create_parser.add_argument(
            '--inactive', action='store_true',
            help='Create subscriber as inactive'
        )
        create_parser.add_argument(
            '--notes', '-n', type=str, default='',
            help='Notes about the subscriber'
        )

        # List subscribers
        list_parser = subparsers.add_parser('list', help='List all subscribers')
        list_parser.add_argument(
            '--active', '-a', action='store_true',
            help='Show only active subscribers'
        )
        list_parser.add_argument(
            '--inactive', '-i', action='store_true',
            help='Show only inactive subscribers'
        )
        list_parser.add_argument(
            '--exhausted', '-e', action='store_true',
            help='Show only subscribers with a used-up allowance'
        )

        # Delete subscriber
        delete_parser = subparsers.add_parser('delete', help='Delete a subscriber')
        delete_parser.add_argument('username', type=str, help='Username to delete')
        delete_parser.add_argument(
            '--force', '-f', action='store_true',
            help='Force deletion without confirmation'
        )

        # Update subscriber
        update_parser = subparsers.add_parser('update', help='Update a subscriber')
        update_parser.add_argument('username', type=str, help='Username to update')
        update_parser.add_argument(
            '--flow', '-t', type=str, default=None,
            help='Set the traffic allowance (e.g. 5G)'
        )
        update_parser.add_argument(
            '--time', '-T', type=str, default=None,
            help='Set the online time allowance (e.g. 30d)'
        )
        update_parser.add_argument(
            '--add-flow', type=str, default=None,
            help='Top up the traffic allowance (e.g. 1G)'
        )
        update_parser.add_argument(
            '--add-time', type=str, default=None,
            help='Top up the online time allowance (e.g. 24h)'
        )
        update_parser.add_argument(
            '--active', action='store_true',
            help='Set subscriber as active'
        )
        update_parser.add_argument(
            '--inactive', action='store_true',
            help='Set subscriber as inactive'
        )
        update_parser.add_argument(
            '--notes', '-n', type=str, default=None,
            help='Notes about the subscriber'
        )

        # Show subscriber details
        show_parser = subparsers.add_parser('show', help='Show subscriber details')
        show_parser.add_argument('username', type=str, help='Username to show')

    def handle(self, *args, **options):
        action = options.get('action')

        if action == 'add':
            self.create_user(options)
        elif action == 'list':
            self.list_users(options)
        elif action == 'delete':
            self.delete_user(options)
        elif action == 'update':
            self.update_user(options)
        elif action == 'show':
            self.show_user(options)
        else:
            self.stdout.write(self.style.ERROR('Please specify an action: add, list, delete, update, show'))

    def create_user(self, options):
        """Create a new subscriber."""
        username = options['username']

        if RadiusUser.objects.filter(username=username).exists():
            raise CommandError(f'User "{username}" already exists')

        user = RadiusUser.objects.create(
            username=username,
            available_flow=self._parse_traffic(options['flow']),
            available_time=self._parse_duration(options['time']),
            is_active=not options['inactive'],
            notes=options['notes']
        )

        self.stdout.write(self.style.SUCCESS(f'Successfully created user "{username}"'))
        self._print_user_details(user)

    def list_users(self, options):
        """List subscribers."""
        users = RadiusUser.objects.all()

        if options.get('active'):
            users = users.filter(is_active=True)
        elif options.get('inactive'):
            users = users.filter(is_active=False)

        users = list(users)
        if options.get('exhausted'):
            users = [u for u in users if not u.has_quota()]

        if not users:
            self.stdout.write('No users found')
            return

        self.stdout.write(
            f"{'Username':<20} {'Status':<10} {'Flow Left':<12} {'Time Left':<12} {'Online':<8}"
        )
        self.stdout.write("-" * 66)

        for user in users:
            self._print_user_row(user)

        self.stdout.write(f"Total: {len(users)} user(s)")

    def delete_user(self, options):
        """Delete a subscriber."""
        username = options['username']
        force = options['force']

        try:
            user = RadiusUser.objects.get(username=username)
        except RadiusUser.DoesNotExist:
            raise CommandError(f'User "{username}" not found')

        online = OnlineSession.objects.filter(username=username).count()
        if online > 0 and not force:
            raise CommandError(
                f'User "{username}" has {online} online session(s). '
                f'Use --force to delete anyway.'
            )

        if not force:
            confirm = input(f'Are you sure you want to delete user "{username}"? [y/N] ')
            if confirm.lower() != 'y':
                self.stdout.write('Cancelled')
                return

        user.delete()
        self.stdout.write(self.style.SUCCESS(f'Successfully deleted user "{username}"'))

    def update_user(self, options):
        """Update a subscriber's quota, status or notes."""
        username = options['username']
        try:
            user = RadiusUser.objects.get(username=username)
        except RadiusUser.DoesNotExist:
            raise CommandError(f'User "{username}" not found')

        updated = False

        if options['flow'] is not None:
            user.available_flow = self._parse_traffic(options['flow'])
            self.stdout.write(f'Flow allowance set to {self._format_bytes(user.available_flow)}')
            updated = True
        if options['add_flow'] is not None:
            user.available_flow += self._parse_traffic(options['add_flow'])
            self.stdout.write(f'Flow allowance is now {self._format_bytes(user.available_flow)}')
            updated = True
        if options['time'] is not None:
            user.available_time = self._parse_duration(options['time'])
            self.stdout.write(f'Time allowance set to {self._format_duration(user.available_time)}')
            updated = True
        if options['add_time'] is not None:
            user.available_time += self._parse_duration(options['add_time'])
            self.stdout.write(f'Time allowance is now {self._format_duration(user.available_time)}')
            updated = True

        if options['active']:
            user.is_active = True
            self.stdout.write('User activated')
            updated = True
        elif options['inactive']:
            user.is_active = False
            self.stdout.write('User deactivated')
            updated = True

        if options['notes'] is not None:
            user.notes = options['notes']
            self.stdout.write('Notes updated')
            updated = True

        if updated:
            user.save()
            self.stdout.write(self.style.SUCCESS(f'Successfully updated user "{username}"'))
        else:
            self.stdout.write('No changes made')

    def show_user(self, options):
        """Show details for a subscriber."""
        username = options['username']

        try:
            user = RadiusUser.objects.get(username=username)
        except RadiusUser.DoesNotExist:
            raise CommandError(f'User "{username}" not found')

        self._print_user_details(user)

        sessions = OnlineSession.objects.filter(username=username)
        if sessions:
            self.stdout.write('\nOnline Sessions:')
            self.stdout.write(f"  {'Session ID':<20} {'NAS':<15} {'IP Address':<15} {'Started':<20}")
            self.stdout.write("  " + "-" * 70)
            for session in sessions:
                self.stdout.write(
                    f"  {session.session_id[:20]:<20} {session.nas_ip_address:<15} "
                    f"{session.framed_ip_address or 'N/A':<15} "
                    f"{session.start_time.strftime('%Y-%m-%d %H:%M:%S'):<20}"
                )

        last = UsageLog.objects.filter(username=username).first()
        if last:
            self.stdout.write(
                f"\nLast settled session: {last.acct_session_id} at {last.stop_time} "
                f"({self._format_duration(last.used_duration)}, {self._format_bytes(last.total_bytes)})"
            )

    def _status(self, user):
        if not user.is_active:
            return 'Disabled'
        if not user.has_quota():
            return 'Exhausted'
        return 'OK'

    def _print_user_details(self, user):
        """Print detailed subscriber information."""
        self.stdout.write(f"\nUser: {user.username}")
        self.stdout.write(f"  Status: {self._status(user)}")
        self.stdout.write(f"  Flow Left: {self._format_bytes(user.available_flow)}")
        self.stdout.write(f"  Time Left: {self._format_duration(user.available_time)}")
        self.stdout.write(f"  Online Sessions: {OnlineSession.objects.filter(username=user.username).count()}")
        self.stdout.write(f"  Created: {user.created_at}")
        self.stdout.write(f"  Updated: {user.updated_at}")
        if user.notes:
            self.stdout.write(f"  Notes: {user.notes}")

    def _print_user_row(self, user):
        """Print a single subscriber row."""
        online = OnlineSession.objects.filter(username=user.username).count()
        self.stdout.write(
            f"{user.username:<20} {self._status(user):<10} "
            f"{self._format_bytes(user.available_flow):<12} "
            f"{self._format_duration(user.available_time):<12} {online:<8}"
        )

    def _parse_traffic(self, size_str):
        """Parse a traffic size string (e.g. "1G", "500M") into bytes."""
        size_str = size_str.strip().lower()
        units = {'k': 1024, 'm': 1024**2, 'g': 1024**3, 't': 1024**4, 'p': 1024**5}

        try:
            if size_str[-1] in units:
                value = int(float(size_str[:-1]) * units[size_str[-1]])
            else:
                value = int(size_str)
        except (ValueError, IndexError):
            raise CommandError(f"Invalid traffic size format: {size_str}. Use format like '1G', '500M', or bytes integer.")

        if value < 0:
            raise CommandError('Traffic allowance cannot be negative')
        return value

    def _parse_duration(self, duration_str):
        """Parse a duration string (e.g. "30d", "10h") into seconds."""
        match = re.fullmatch(r'(\d+)([smhd]?)', duration_str.strip().lower())
        if not match:
            raise CommandError(f"Invalid duration format: {duration_str}. Use format like '30d', '10h', '45m', or seconds.")
        amount, unit = match.groups()
        return int(amount) * DURATION_UNITS[unit or 's']

    def _format_bytes(self, size):
        """Format bytes into human-readable string."""
        for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
            if size < 1024.0:
                return f"{size:.2f} {unit}"
            size /= 1024.0
        return f"{size:.2f} PB"

    def _format_duration(self, seconds):
        """Format seconds as days/hours/minutes."""
        days, rest = divmod(seconds, 86400)
        hours, rest = divmod(rest, 3600)
        minutes = rest // 60
        if days:
            return f"{days}d {hours}h"
        if hours:
            return f"{hours}h {minutes}m"
        return f"{minutes}m {rest % 60}s"
