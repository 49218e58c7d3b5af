"""Page discovery: sitemap parsing, breadth-first link traversal and ranking."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from urllib.parse import urldefrag, urljoin

from bs4 import BeautifulSoup

from site_ingest.crawling.fetcher import SITEMAP_CONTENT_TYPES, Fetcher
from site_ingest.crawling.urls import (
    base_url_of,
    clamp_priority,
    host_of,
    is_internal,
    is_well_formed,
    normalize_url,
    score_url,
    should_skip,
)
from site_ingest.errors import FetchFailure, RunFailure
from site_ingest.storage.models import DiscoveryMethod

logger = logging.getLogger(__name__)

SITEMAP_PATHS = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemaps.xml",
    "/sitemap/sitemap.xml",
    "/sitemap/index.xml",
)

NAV_LINK_SELECTOR = ", ".join(
    f"{container} a"
    for container in ("nav", "header", ".menu", ".navbar", ".navigation", ".main-nav", ".primary-nav")
)

_MAX_CHILD_SITEMAPS = 10


@dataclass
class CandidatePage:
    """A ranked URL produced by discovery.

    ``url`` is the address to fetch (fragment removed, query kept); its
    identity is ``normalize_url(url)``.
    """

    url: str
    priority: int
    discovery_method: DiscoveryMethod
    depth: int = 0
    last_modified: str | None = None
    link_text: str | None = None


@dataclass
class _LinkStats:
    url: str
    hops: int
    occurrences: int = 1
    in_nav: bool = False
    link_text: str | None = None


class DiscoveryEngine:
    """Find and rank candidate pages for a website.

    The sitemap is consulted first.  When it is missing or yields fewer
    than ``max_pages`` URLs, a breadth-first traversal from the root adds
    candidates.  Results are de-duplicated by normalised URL, sorted by
    descending priority and truncated to ``max_pages``.

    Parameters
    ----------
    fetcher:
        Shared :class:`Fetcher` used for sitemaps and traversal.
    timeout:
        Per-request timeout applied to discovery fetches.
    """

    def __init__(self, fetcher: Fetcher, *, timeout: float = 10.0) -> None:
        self._fetcher = fetcher
        self.timeout = timeout

    def discover(self, website_url: str, max_pages: int, max_depth: int) -> list[CandidatePage]:
        """Return at most *max_pages* unique candidates, best first.

        Raises
        ------
        RunFailure
            When no sitemap was found and the root page produced no HTTP
            response at all.
        """
        if not is_well_formed(website_url):
            raise RunFailure(f"Invalid website URL: {website_url!r}")

        root = base_url_of(website_url)
        candidates = self._from_sitemaps(root, max_pages)
        logger.info("Sitemap discovery for %s found %d URLs", root, len(candidates))

        if len(candidates) < max_pages:
            crawled, root_failure = self._traverse(website_url, max_pages, max_depth)
            if root_failure is not None and root_failure.unreachable and not candidates:
                raise RunFailure(f"Website unreachable: {root_failure.reason}")
            logger.info("Traversal of %s found %d URLs", website_url, len(crawled))
            candidates.extend(crawled)

        ranked = _merge(candidates)
        return ranked[:max_pages]

    # -- sitemap --------------------------------------------------------------

    def _from_sitemaps(self, root: str, max_pages: int) -> list[CandidatePage]:
        root_host = host_of(root)
        limit = max(max_pages * 5, 50)
        for path in SITEMAP_PATHS:
            entries = self._read_sitemap(root + path, limit=limit, follow_index=True)
            entries = [
                e for e in entries
                if is_well_formed(e[0]) and is_internal(e[0], root_host) and not should_skip(e[0])
            ]
            if entries:
                return _score_sitemap_entries(entries)
        return []

    def _read_sitemap(
        self,
        url: str,
        *,
        limit: int,
        follow_index: bool,
    ) -> list[tuple[str, str | None, float | None]]:
        try:
            result = self._fetcher.fetch(url, accept=SITEMAP_CONTENT_TYPES, timeout=self.timeout)
        except FetchFailure as exc:
            logger.debug("No sitemap at %s: %s", url, exc.reason)
            return []

        soup = BeautifulSoup(result.html, "html.parser")
        entries: list[tuple[str, str | None, float | None]] = []

        if follow_index:
            for child in soup.find_all("sitemap")[:_MAX_CHILD_SITEMAPS]:
                loc = child.find("loc")
                if loc and loc.get_text(strip=True):
                    entries.extend(
                        self._read_sitemap(loc.get_text(strip=True), limit=limit, follow_index=False)
                    )
                if len(entries) >= limit:
                    return entries[:limit]

        for node in soup.find_all("url"):
            loc = node.find("loc")
            if not loc or not loc.get_text(strip=True):
                continue
            lastmod = node.find("lastmod")
            priority = node.find("priority")
            entries.append(
                (
                    loc.get_text(strip=True),
                    lastmod.get_text(strip=True) if lastmod else None,
                    _parse_float(priority.get_text(strip=True)) if priority else None,
                )
            )
            if len(entries) >= limit:
                break
        return entries

    # -- traversal ------------------------------------------------------------

    def _traverse(
        self,
        start_url: str,
        max_pages: int,
        max_depth: int,
    ) -> tuple[list[CandidatePage], FetchFailure | None]:
        hosts = {host_of(start_url)}
        root_key = normalize_url(start_url)
        seen: dict[str, _LinkStats] = {root_key: _LinkStats(url=urldefrag(start_url)[0], hops=0)}
        queue: deque[tuple[str, int]] = deque([(start_url, 0)])
        visited: set[str] = set()
        root_failure: FetchFailure | None = None

        while queue and len(visited) < max_pages:
            url, hops = queue.popleft()
            key = normalize_url(url)
            if key in visited:
                continue
            visited.add(key)

            try:
                result = self._fetcher.fetch(url, timeout=self.timeout)
            except FetchFailure as exc:
                if hops == 0:
                    root_failure = exc
                logger.debug("Traversal skipped %s: %s", url, exc.reason)
                continue
            if hops == 0:
                hosts.add(host_of(result.final_url))

            for link, in_nav, text in _extract_links(result.html, result.final_url, hosts):
                link_key = normalize_url(link)
                stats = seen.get(link_key)
                if stats is None:
                    seen[link_key] = _LinkStats(url=link, hops=hops + 1, in_nav=in_nav, link_text=text)
                else:
                    stats.occurrences += 1
                    stats.in_nav = stats.in_nav or in_nav
                if hops + 1 < max_depth and link_key not in visited:
                    queue.append((link, hops + 1))

        if root_failure is not None and root_failure.unreachable:
            return [], root_failure

        pages = [
            CandidatePage(
                url=stats.url,
                priority=100 if key == root_key else score_url(
                    stats.url, in_nav=stats.in_nav, occurrences=stats.occurrences, hops=stats.hops,
                ),
                discovery_method=DiscoveryMethod.CRAWL,
                depth=stats.hops,
                link_text=stats.link_text,
            )
            for key, stats in seen.items()
        ]
        return pages, root_failure


# ── Helpers ─────────────────────────────────────────────────────────────


def _extract_links(html: str, base_url: str, hosts: set[str]) -> list[tuple[str, bool, str | None]]:
    """Internal, fetchable links on a page as ``(url, in_nav, text)``."""
    soup = BeautifulSoup(html, "html.parser")
    nav_links = {id(a) for a in soup.select(NAV_LINK_SELECTOR)}

    links: list[tuple[str, bool, str | None]] = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if should_skip(href):
            continue
        try:
            absolute, _fragment = urldefrag(urljoin(base_url, href))
        except ValueError:
            logger.debug("Ignoring unparsable link %r on %s", href, base_url)
            continue
        if not is_well_formed(absolute) or should_skip(absolute):
            continue
        if not any(is_internal(absolute, host) for host in hosts):
            continue
        text = anchor.get_text(" ", strip=True) or None
        links.append((absolute, id(anchor) in nav_links, text))
    return links


def _score_sitemap_entries(entries: list[tuple[str, str | None, float | None]]) -> list[CandidatePage]:
    now = datetime.now(timezone.utc)
    total = len(entries)
    pages: list[CandidatePage] = []
    for position, (loc, lastmod, sitemap_priority) in enumerate(entries):
        score = float(score_url(loc))
        score += 10 * (1 - position / total)
        score += _recency_bonus(lastmod, now)
        if sitemap_priority is not None:
            score += 10 * max(0.0, min(1.0, sitemap_priority))
        pages.append(
            CandidatePage(
                url=urldefrag(loc)[0],
                priority=clamp_priority(score),
                discovery_method=DiscoveryMethod.SITEMAP,
                last_modified=lastmod,
            )
        )
    return pages


def _recency_bonus(lastmod: str | None, now: datetime) -> int:
    if not lastmod:
        return 0
    try:
        stamp = datetime.fromisoformat(lastmod.replace("Z", "+00:00"))
    except ValueError:
        return 0
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    age_days = (now - stamp).days
    if age_days <= 30:
        return 10
    if age_days <= 365:
        return 5
    return 0


def _merge(candidates: list[CandidatePage]) -> list[CandidatePage]:
    """Deduplicate by normalised URL, keep the best priority, sort best first."""
    merged: dict[str, CandidatePage] = {}
    for candidate in candidates:
        key = normalize_url(candidate.url)
        current = merged.get(key)
        if current is None:
            merged[key] = candidate
        elif candidate.priority > current.priority:
            merged[key] = replace(current, priority=candidate.priority)
    return sorted(merged.values(), key=lambda c: c.priority, reverse=True)


def _parse_float(value: str) -> float | None:
    try:
        return float(value)
    except ValueError:
        return None
