"""
Management command to recompute denormalized counters from edge tables.

Usage: python manage.py reconcile_counters [--kind post_like|comment_like|follow|comment]
"""

from django.core.management.base import BaseCommand

from social.services import RECONCILE_KINDS, reconcile_counters


class Command(BaseCommand):
    help = 'Recompute like/comment/follow counters from their edge tables and fix drift'

    def add_arguments(self, parser):
        parser.add_argument(
            '--kind',
            choices=RECONCILE_KINDS,
            default=None,
            help='Only reconcile counters of this kind'
        )

    def handle(self, *args, **options):
        repaired = reconcile_counters(kind=options['kind'])

        for label, fixed in repaired.items():
            line = f'  - {label}: {fixed} row(s) repaired'
            self.stdout.write(self.style.WARNING(line) if fixed else line)

        total = sum(repaired.values())
        self.stdout.write(self.style.SUCCESS(
            f'Reconciliation finished, {total} row(s) repaired'
        ))
