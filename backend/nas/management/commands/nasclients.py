"""
Django management command for NAS client management.

Usage:
    python manage.py nasclients add <identifier> <ip> <secret> [options]
    python manage.py nasclients list
    python manage.py nasclients delete <identifier>
    python manage.py nasclients update <identifier> [options]
    python manage.py nasclients show <identifier>
"""

from django.core.management.base import BaseCommand, CommandError
from django.db import IntegrityError
from nas.models import NASClient
from sessions.models import OnlineSession


class Command(BaseCommand):
    help = 'Manage NAS (Network Access Server) clients'

    def add_arguments(self, parser):
        subparsers = parser.add_subparsers(dest='action', help='Action to perform')

        # Add NAS
        add_parser = subparsers.add_parser('add', help='Add a new NAS client')
        add_parser.add_argument('identifier', type=str, help='NAS identifier (e.g., myrouter)')
        add_parser.add_argument('ip', type=str, help='NAS IP address')
        add_parser.add_argument('secret', type=str, help='Shared secret')
        add_parser.add_argument(
            '--acct-port', type=int, default=1813,
            help='Accounting port (default: 1813)'
        )
        add_parser.add_argument(
            '--description', '-d', type=str, default='',
            help='Description of the NAS'
        )
        add_parser.add_argument(
            '--inactive', action='store_true',
            help='Create NAS as inactive'
        )

        # List NAS clients
        list_parser = subparsers.add_parser('list', help='List all NAS clients')
        list_parser.add_argument(
            '--active', '-a', action='store_true',
            help='Show only active NAS clients'
        )

        # Delete NAS
        delete_parser = subparsers.add_parser('delete', help='Delete a NAS client')
        delete_parser.add_argument('identifier', type=str, help='NAS identifier to delete')
        delete_parser.add_argument(
            '--force', '-f', action='store_true',
            help='Force deletion without confirmation'
        )

        # Update NAS
        update_parser = subparsers.add_parser('update', help='Update a NAS client')
        update_parser.add_argument('identifier', type=str, help='NAS identifier to update')
        update_parser.add_argument('--ip', type=str, default=None, help='New IP address')
        update_parser.add_argument('--secret', type=str, default=None, help='New shared secret')
        update_parser.add_argument('--acct-port', type=int, default=None, help='New accounting port')
        update_parser.add_argument(
            '--description', '-d', type=str, default=None,
            help='New description'
        )
        update_parser.add_argument('--active', action='store_true', help='Set NAS as active')
        update_parser.add_argument('--inactive', action='store_true', help='Set NAS as inactive')

        # Show NAS details
        show_parser = subparsers.add_parser('show', help='Show NAS details')
        show_parser.add_argument('identifier', type=str, help='NAS identifier to show')

    def handle(self, *args, **options):
        action = options.get('action')

        if action == 'add':
            self.add_nas(options)
        elif action == 'list':
            self.list_nas(options)
        elif action == 'delete':
            self.delete_nas(options)
        elif action == 'update':
            self.update_nas(options)
        elif action == 'show':
            self.show_nas(options)
        else:
            self.stdout.write(self.style.ERROR('Please specify an action: add, list, delete, update, show'))

    def add_nas(self, options):
        identifier = options['identifier']

        if NASClient.objects.filter(identifier=identifier).exists():
            raise CommandError(f'NAS "{identifier}" already exists')

        try:
            new_nas = NASClient.objects.create(
                identifier=identifier,
                ip_address=options['ip'],
                shared_secret=options['secret'],
                acct_port=options['acct_port'],
                description=options['description'],
                is_active=not options['inactive']
            )
        except IntegrityError as e:
            raise CommandError(f'Error adding NAS: {e}')

        self.stdout.write(self.style.SUCCESS(f'Successfully added NAS "{identifier}"'))
        self._print_nas_details(new_nas)

    def list_nas(self, options):
        queryset = NASClient.objects.all()

        if options.get('active'):
            queryset = queryset.filter(is_active=True)

        if not queryset.exists():
            self.stdout.write('No NAS clients found')
            return

        self.stdout.write(
            f"{'Identifier':<20} {'IP Address':<15} {'Status':<10} "
            f"{'Acct Port':<10} {'Online':<8}"
        )
        self.stdout.write("-" * 68)

        for nas in queryset:
            status = 'Active' if nas.is_active else 'Inactive'
            online = OnlineSession.objects.filter(nas_ip_address=nas.ip_address).count()
            self.stdout.write(
                f"{nas.identifier:<20} {nas.ip_address:<15} {status:<10} "
                f"{nas.acct_port:<10} {online:<8}"
            )
        self.stdout.write(f"\nTotal: {queryset.count()} NAS client(s)")

    def delete_nas(self, options):
        identifier = options['identifier']

        try:
            nas = NASClient.objects.get(identifier=identifier)
        except NASClient.DoesNotExist:
            raise CommandError(f'NAS "{identifier}" not found')

        if not options['force']:
            confirm = input(f'Are you sure you want to delete NAS "{identifier}"? [y/N] ')
            if confirm.lower() != 'y':
                self.stdout.write('Cancelled')
                return

        nas.delete()
        self.stdout.write(self.style.SUCCESS(f'Successfully deleted NAS "{identifier}"'))

    def update_nas(self, options):
        identifier = options['identifier']

        try:
            nas = NASClient.objects.get(identifier=identifier)
        except NASClient.DoesNotExist:
            raise CommandError(f'NAS "{identifier}" not found')

        updated = False
        if options['ip']:
            nas.ip_address = options['ip']
            updated = True
        if options['secret']:
            nas.shared_secret = options['secret']
            updated = True
        if options['acct_port'] is not None:
            nas.acct_port = options['acct_port']
            updated = True
        if options['description'] is not None:
            nas.description = options['description']
            updated = True
        if options['active']:
            nas.is_active = True
            updated = True
        elif options['inactive']:
            nas.is_active = False
            updated = True

        if not updated:
            self.stdout.write('No changes made')
            return

        try:
            nas.save()
        except IntegrityError as e:
            raise CommandError(f'Error updating NAS: {e}')
        self.stdout.write(self.style.SUCCESS(f'Successfully updated NAS "{identifier}"'))

    def show_nas(self, options):
        identifier = options['identifier']

        try:
            nas = NASClient.objects.get(identifier=identifier)
        except NASClient.DoesNotExist:
            raise CommandError(f'NAS "{identifier}" not found')
        self._print_nas_details(nas)

    def _print_nas_details(self, nas):
        status = 'Active' if nas.is_active else 'Inactive'
        online = OnlineSession.objects.filter(nas_ip_address=nas.ip_address).count()
        self.stdout.write(f"\nNAS: {nas.identifier}")
        self.stdout.write(f"  IP Address: {nas.ip_address}")
        self.stdout.write(f"  Status: {status}")
        self.stdout.write(f"  Acct Port: {nas.acct_port}")
        self.stdout.write(f"  Shared Secret: {'*' * len(nas.shared_secret)}")
        self.stdout.write(f"  Online Sessions: {online}")
        self.stdout.write(f"  Created: {nas.created_at}")
        self.stdout.write(f"  Updated: {nas.updated_at}")
        if nas.description:
            self.stdout.write(f"  Description: {nas.description}")
