"""
Crawling — network retrieval and page discovery.

Public surface
--------------
- :class:`Fetcher` / :class:`FetchResult` — HTTP retrieval with retry policy.
- :class:`DiscoveryEngine` / :class:`CandidatePage` — sitemap + traversal ranking.
"""

from site_ingest.crawling.discovery import CandidatePage, DiscoveryEngine
from site_ingest.crawling.fetcher import FetchResult, Fetcher

__all__ = ["CandidatePage", "DiscoveryEngine", "FetchResult", "Fetcher"]
