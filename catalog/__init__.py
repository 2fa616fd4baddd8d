"""
Catalog Django application.

Turns scraped social media posts into structured catalog products:
scraping, classification, LLM extraction and taxonomy reconciliation.
"""

default_app_config = "catalog.apps.CatalogConfig"
