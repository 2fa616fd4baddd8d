"""
Management command to reindex catalog documents into Typesense.

Usage:
    python manage.py sync_search_index
    python manage.py sync_search_index --model=catalog.category
    python manage.py sync_search_index --batch-size=200
"""

from django.apps import apps
from django.core.management.base import BaseCommand, CommandError

from catalog.services.search_index import COLLECTIONS, SearchIndexError, get_search_client


class Command(BaseCommand):
    """Upsert every Category, AttributeValue and Product document in batches."""

    help = 'Reindex catalog models into the search index'

    def add_arguments(self, parser):
        parser.add_argument(
            '--model',
            choices=sorted(COLLECTIONS),
            help='Only reindex this model (default: all indexed models)',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=100,
            help='Number of documents per import request (default: 100)',
        )

    def handle(self, *args, **options):
        batch_size = options['batch_size']
        if batch_size < 1:
            raise CommandError('--batch-size must be at least 1')

        labels = [options['model']] if options['model'] else sorted(COLLECTIONS)
        client = get_search_client()

        for label in labels:
            model = apps.get_model(label)
            collection = COLLECTIONS[label]
            queryset = model.objects.order_by('pk')
            total = queryset.count()
            self.stdout.write(f'Reindexing {total} {label} row(s) into "{collection}"')

            accepted = 0
            batch = []
            try:
                for row in queryset.iterator(chunk_size=batch_size):
                    batch.append(row.to_search_document())
                    if len(batch) >= batch_size:
                        accepted += client.upsert_documents(collection, batch)
                        batch = []
                if batch:
                    accepted += client.upsert_documents(collection, batch)
            except SearchIndexError as e:
                raise CommandError(f'Reindexing {label} failed: {e}')

            if accepted < total:
                self.stdout.write(self.style.WARNING(f'  {total - accepted} document(s) rejected'))
            self.stdout.write(self.style.SUCCESS(f'  {accepted}/{total} indexed'))
