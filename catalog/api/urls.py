"""
URL configuration for the catalog REST API.

Endpoints:
- POST /api/v1/profiles/<id>/scrape/             - Trigger a scrape
- POST /api/v1/profiles/<id>/label/              - Trigger labeling
- POST /api/v1/profiles/<id>/process/            - Trigger processing
- POST /api/v1/profiles/<id>/pipeline/           - Trigger the full pipeline
- POST /api/v1/profiles/<id>/reprocess-skipped/  - Reprocess skipped posts
- GET  /api/v1/profiles/<id>/labeling-status/    - Labeling status
- GET  /api/v1/profiles/<id>/skipped-posts/      - Skipped posts status
- GET  /api/v1/runs/<kind>/<id>/                 - Run status
- POST /api/v1/runs/<kind>/<id>/cancel/          - Cancel a run
- POST /api/v1/runs/cleanup/                     - Clean up stale runs
- GET  /api/v1/categories/tree/                  - Category tree
"""

from django.urls import path

from catalog.api.views import (
    cancel_run,
    category_tree,
    cleanup_runs,
    labeling_status,
    reprocess_skipped,
    run_status,
    skipped_posts,
    trigger_full_pipeline,
    trigger_labeling,
    trigger_processing,
    trigger_scrape,
)

app_name = 'catalog_api'

urlpatterns = [
    # Profile triggers
    path('profiles/<int:profile_id>/scrape/', trigger_scrape, name='trigger_scrape'),
    path('profiles/<int:profile_id>/label/', trigger_labeling, name='trigger_labeling'),
    path('profiles/<int:profile_id>/process/', trigger_processing, name='trigger_processing'),
    path('profiles/<int:profile_id>/pipeline/', trigger_full_pipeline, name='trigger_full_pipeline'),
    path('profiles/<int:profile_id>/reprocess-skipped/', reprocess_skipped, name='reprocess_skipped'),

    # Profile status
    path('profiles/<int:profile_id>/labeling-status/', labeling_status, name='labeling_status'),
    path('profiles/<int:profile_id>/skipped-posts/', skipped_posts, name='skipped_posts'),

    # Runs
    path('runs/cleanup/', cleanup_runs, name='cleanup_runs'),
    path('runs/<str:kind>/<int:run_id>/', run_status, name='run_status'),
    path('runs/<str:kind>/<int:run_id>/cancel/', cancel_run, name='cancel_run'),

    # Taxonomy
    path('categories/tree/', category_tree, name='category_tree'),
]
