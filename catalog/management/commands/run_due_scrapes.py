"""
Management command to start full pipeline runs for profiles that are due.

Usage:
    python manage.py run_due_scrapes
    python manage.py run_due_scrapes --dry-run
"""

from django.core.management.base import BaseCommand

from catalog.services.pipeline import get_orchestrator


class Command(BaseCommand):
    """Start a full pipeline run for every active profile whose scrape is due."""

    help = 'Start full pipeline runs for active profiles whose next scrape is due'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List due profiles without starting any runs',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        orchestrator = get_orchestrator()
        profiles = orchestrator.due_profiles()

        if not profiles:
            self.stdout.write(self.style.SUCCESS('No profiles are due for scraping'))
            return

        self.stdout.write(f'Found {len(profiles)} due profile(s)')

        if dry_run:
            for profile in profiles:
                self.stdout.write(f'  @{profile.username} (next scrape: {profile.next_scrape_at or "never scraped"})')
            self.stdout.write(self.style.WARNING(f'Dry run: Would have started {len(profiles)} run(s)'))
            return

        started = 0
        for profile in profiles:
            result = orchestrator.trigger_full_pipeline(profile)
            if result.success:
                started += 1
                self.stdout.write(f'  @{profile.username}: run {result.run_id} started')
            else:
                self.stdout.write(self.style.WARNING(f'  @{profile.username}: {result.message}'))

        self.stdout.write(self.style.SUCCESS(f'Started {started} pipeline run(s)'))
