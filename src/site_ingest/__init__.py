"""
site_ingest — crawl websites into embedded, retrieval-ready chunks.

Subpackages
-----------
- :mod:`site_ingest.crawling` — fetching and page discovery.
- :mod:`site_ingest.ingestion` — extraction, chunking, embedding.
- :mod:`site_ingest.storage` — entities and repositories.
- :mod:`site_ingest.pipeline` — orchestration, sessions, progress.
- :mod:`site_ingest.serving` — FastAPI transport.
"""

__version__ = "0.1.0"
