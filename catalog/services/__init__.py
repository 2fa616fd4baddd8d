"""
Catalog services: scrape client, media storage, LLM classification and
extraction, taxonomy reconciliation and pipeline orchestration.
"""
