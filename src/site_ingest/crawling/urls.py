"""URL helpers shared by discovery, validation and persistence.

Normalisation defines page identity: scheme + host + path, with the
fragment, query string and trailing slash removed.  Priority heuristics
live here too so sitemap and traversal candidates are scored on the same
scale.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

# ── Skip rules ──────────────────────────────────────────────────────────

_SKIP_SCHEMES = ("mailto:", "tel:", "javascript:", "data:", "ftp:")

_STATIC_EXTENSIONS = (
    ".css", ".js", ".mjs", ".map", ".json", ".ico", ".woff", ".woff2", ".ttf", ".otf", ".eot",
)
_DOCUMENT_EXTENSIONS = (
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".zip", ".tar", ".gz", ".rar",
    ".exe", ".dmg",
)
_MEDIA_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".bmp", ".mp3", ".mp4", ".wav", ".avi",
    ".mov", ".webm",
)

_SKIP_PATH = re.compile(r"^/(wp-admin|admin|login|signin|logout|wp-login\.php)(/|$)", re.IGNORECASE)

# ── Scoring tables ──────────────────────────────────────────────────────

_CATEGORY_BONUSES: list[tuple[re.Pattern[str], int]] = [
    (re.compile(r"/(docs?|documentation|guides?|help|faq|support|tutorials?)(/|$)", re.I), 20),
    (re.compile(r"/(about|about-us|company|team)(/|$)", re.I), 15),
    (re.compile(r"/(services|products|solutions|features)(/|$)", re.I), 15),
    (re.compile(r"/(pricing|plans)(/|$)", re.I), 15),
    (re.compile(r"/(contact|contact-us)(/|$)", re.I), 10),
    (re.compile(r"/(blog|news|articles|posts)(/|$)", re.I), 5),
]

_NEGATIVE_PATTERN = re.compile(
    r"/(login|signin|sign-in|signup|sign-up|register|privacy|terms|cookies?|legal|404|"
    r"search|cart|checkout|account|tag|tags|category|categories|author|feed)(/|$)",
    re.IGNORECASE,
)

NAV_BONUS = 15
HOP_PENALTY = 5


def is_well_formed(url: str) -> bool:
    """Return ``True`` for absolute ``http``/``https`` URLs with a host."""
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.hostname)


def host_of(url: str) -> str:
    """Lower-cased hostname of *url* (empty string if none)."""
    return (urlsplit(url).hostname or "").lower()


def base_url_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme.lower()}://{(parts.netloc or '').lower()}"


def normalize_url(url: str) -> str:
    """Return the identity key for *url*.

    >>> normalize_url("HTTPS://Example.com/Docs/?q=1#top")
    'https://example.com/Docs'
    """
    parts = urlsplit(url.strip())
    host = (parts.hostname or "").lower()
    if parts.port and not (
        (parts.scheme == "http" and parts.port == 80) or (parts.scheme == "https" and parts.port == 443)
    ):
        host = f"{host}:{parts.port}"
    path = re.sub(r"/{2,}", "/", parts.path).rstrip("/")
    return f"{parts.scheme.lower()}://{host}{path}"


def is_internal(url: str, root_host: str) -> bool:
    """Same host as *root_host* or one of its subdomains."""
    host = host_of(url)
    root_host = root_host.lower()
    return host == root_host or host.endswith("." + root_host)


def should_skip(url: str) -> bool:
    """Links that are never worth fetching as pages."""
    lowered = url.strip().lower()
    if not lowered or lowered.startswith("#") or lowered.startswith(_SKIP_SCHEMES):
        return True
    try:
        path = urlsplit(lowered).path
    except ValueError:
        return True
    if path.endswith(_STATIC_EXTENSIONS + _DOCUMENT_EXTENSIONS + _MEDIA_EXTENSIONS):
        return True
    return bool(_SKIP_PATH.search(path))


def path_segments(url: str) -> list[str]:
    return [seg for seg in urlsplit(url).path.split("/") if seg]


def score_url(
    url: str,
    *,
    in_nav: bool = False,
    occurrences: int = 1,
    hops: int = 0,
) -> int:
    """Heuristic 0–100 priority for a candidate URL.

    Parameters
    ----------
    url:
        Absolute candidate URL.
    in_nav:
        The link was found inside a navigation container.
    occurrences:
        How many times the link was seen across traversed pages.
    hops:
        Link distance from the root page.
    """
    segments = path_segments(url)
    if not segments:
        return 100

    score = 50
    path = "/" + "/".join(segments)
    for pattern, bonus in _CATEGORY_BONUSES:
        if pattern.search(path):
            score += bonus
            break

    if len(segments) == 1:
        score += 20
    elif len(segments) == 2:
        score += 10
    elif len(segments) > 4:
        score -= 15

    if _NEGATIVE_PATTERN.search(path):
        score -= 25

    query = urlsplit(url).query.lower()
    if "utm_" in query:
        score -= 15
    elif query:
        score -= 5

    if in_nav:
        score += NAV_BONUS
    score += min(15, 3 * max(0, occurrences - 1))
    score -= HOP_PENALTY * max(0, hops)

    return clamp_priority(score)


def clamp_priority(value: float) -> int:
    return int(max(0, min(100, round(value))))
