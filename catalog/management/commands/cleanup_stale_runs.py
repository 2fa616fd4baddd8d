"""
Management command to repair scrape and processing runs left running.

Usage:
    python manage.py cleanup_stale_runs
"""

from django.core.management.base import BaseCommand

from catalog.services.pipeline import get_orchestrator


class Command(BaseCommand):
    """Complete finished processing runs and fail runs past their time limit."""

    help = 'Complete finished processing runs and fail runs that exceeded their timeout'

    def handle(self, *args, **options):
        result = get_orchestrator().cleanup_stale_runs()

        self.stdout.write(f'Processing runs completed: {result["processing_completed"]}')
        self.stdout.write(f'Scrape runs failed (timeout): {result["scrape_failed"]}')
        self.stdout.write(f'Processing runs failed (timeout): {result["processing_failed"]}')

        if any(result.values()):
            self.stdout.write(self.style.SUCCESS('Stale runs cleaned up'))
        else:
            self.stdout.write(self.style.SUCCESS('No stale runs found'))
