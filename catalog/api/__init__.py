"""
Catalog REST API.

This module provides endpoints for:
- Triggering scrape, labeling, processing and full pipeline runs
- Run status, cancellation and stale-run cleanup
- Labeling and skipped-post status for a profile
- The category tree

All endpoints require authentication; trigger endpoints are rate limited.
"""
