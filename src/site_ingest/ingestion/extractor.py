"""HTML → clean text extraction with a heuristic quality score."""

from __future__ import annotations

import logging
import math
import re
import unicodedata
from dataclasses import dataclass, field
from urllib.parse import unquote, urlsplit

from bs4 import BeautifulSoup, Tag
from bs4.builder import ParserRejectedMarkup

from site_ingest.errors import ExtractionFailure

logger = logging.getLogger(__name__)

_NOISE_TAGS = ["script", "style", "noscript", "iframe", "svg", "form", "template"]

_BOILERPLATE_SELECTORS = [
    "nav", "header", "footer", "aside",
    "[role=navigation]", "[role=banner]", "[role=contentinfo]", "[role=complementary]",
    ".sidebar", "#sidebar", ".ads", ".advertisement", "[class*=advert]",
    "[class*=social]", "[class*=share]",
    ".comments", "#comments", ".related", "[class*=related-posts]",
    "[class*=breadcrumb]", ".pagination", "[class*=cookie]",
    ".search", "[role=search]", "[class*=newsletter]",
    ".popup", ".modal", ".skip-link", "[class*=skip-to]",
]

_SEMANTIC_SELECTORS = [
    "main", "article", "[role=main]", "#content", "#main-content",
    ".main-content", ".post-content", ".entry-content", ".article-content", ".content",
]

_PATTERN_SELECTOR = (
    "div[class*=content], div[class*=article], div[class*=post], div[class*=entry], "
    "section[class*=content], div[id*=content]"
)

_BLOCK_TAGS = [
    "p", "h1", "h2", "h3", "h4", "h5", "h6", "li", "pre", "blockquote",
    "td", "th", "dt", "dd", "figcaption",
]
_HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]

_NAV_CLASS = re.compile(r"nav|menu|sidebar|footer|header", re.IGNORECASE)
_AD_CLASS = re.compile(r"\bads?\b|advert|sponsor|promo", re.IGNORECASE)
_TITLE_SUFFIX = re.compile(r"\s+[|\-–—]\s+")

MIN_SEMANTIC_CHARS = 200


@dataclass
class ExtractionResult:
    """Clean text and metadata extracted from one HTML document."""

    title: str
    description: str
    clean_text: str
    quality_score: float
    method: str
    word_count: int = 0
    token_estimate: int = 0
    language: str | None = None
    author: str | None = None
    canonical_url: str | None = None
    headings: list[str] = field(default_factory=list)
    quality_reasons: list[str] = field(default_factory=list)


class Extractor:
    """Strip boilerplate from HTML and isolate the main textual content.

    Three strategies are tried in order: semantic containers (``main``,
    ``article`` …), the best-scoring content-like ``div``, and finally
    the whole body.  The strategy used feeds into the quality score.
    """

    def __init__(self, *, min_semantic_chars: int = MIN_SEMANTIC_CHARS) -> None:
        self.min_semantic_chars = min_semantic_chars

    def extract(
        self,
        raw_html: str,
        *,
        url: str | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> ExtractionResult:
        """Extract clean text from *raw_html*.

        Parameters
        ----------
        raw_html:
            Decoded HTML document.
        url:
            Source URL, used as a last-resort title.
        title, description:
            Caller-supplied values that take precedence over derived ones.

        Raises
        ------
        ExtractionFailure
            When the document is empty or cannot be parsed.
        """
        if not raw_html or not raw_html.strip():
            raise ExtractionFailure("Empty document")
        try:
            soup = BeautifulSoup(raw_html, "html.parser")
        except ParserRejectedMarkup as exc:
            raise ExtractionFailure(f"Unparseable HTML: {exc}") from exc

        meta = _read_metadata(soup)
        derived_title = _derive_title(soup, url)

        for tag in soup(_NOISE_TAGS):
            tag.decompose()
        for selector in _BOILERPLATE_SELECTORS:
            for tag in soup.select(selector):
                if not tag.decomposed:
                    tag.decompose()

        root, method = self._main_content(soup)
        paragraphs = _paragraphs(root)
        clean_text = _normalise("\n\n".join(paragraphs))
        headings = [h.get_text(" ", strip=True) for h in root.find_all(_HEADING_TAGS)]
        words = len(clean_text.split())

        score, reasons = _quality(
            word_count=words,
            method=method,
            text_ratio=len(clean_text) / max(len(raw_html), 1),
            heading_count=len(headings),
            paragraph_count=len(paragraphs),
        )

        first_paragraph = next((p for p in paragraphs if len(p.split()) >= 5), "")
        return ExtractionResult(
            title=(title or derived_title).strip(),
            description=(description or meta["description"] or _truncate(first_paragraph, 200)).strip(),
            clean_text=clean_text,
            quality_score=score,
            method=method,
            word_count=words,
            token_estimate=math.ceil(words * 1.3),
            language=meta["language"],
            author=meta["author"],
            canonical_url=meta["canonical"],
            headings=[h for h in headings if h],
            quality_reasons=reasons,
        )

    # -- strategies -----------------------------------------------------------

    def _main_content(self, soup: BeautifulSoup) -> tuple[Tag, str]:
        for selector in _SEMANTIC_SELECTORS:
            element = soup.select_one(selector)
            if element is not None and len(element.get_text(" ", strip=True)) > self.min_semantic_chars:
                return element, "semantic"

        best: Tag | None = None
        best_score = 0.0
        for element in soup.select(_PATTERN_SELECTOR):
            score = _container_score(element)
            if score > best_score:
                best, best_score = element, score
        if best is not None:
            return best, "pattern"

        return soup.body or soup, "body"


# ── Helpers ─────────────────────────────────────────────────────────────


def _normalise(text: str) -> str:
    """Unicode NFC, collapse whitespace, strip control chars."""
    text = unicodedata.normalize("NFC", text)
    text = re.sub(r"[^\S\n]+", " ", text)       # collapse spaces (keep \n)
    text = re.sub(r" ?\n ?", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)       # max two consecutive newlines
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", text)  # ctrl chars
    return text.strip()


def _paragraphs(root: Tag) -> list[str]:
    """Text of leaf block elements, falling back to raw lines."""
    blocks: list[str] = []
    for element in root.find_all(_BLOCK_TAGS):
        if element.find(_BLOCK_TAGS) is not None:
            continue
        text = element.get_text(" ", strip=True)
        if text:
            blocks.append(re.sub(r"\s+", " ", text))

    all_text = root.get_text("\n", strip=True)
    if sum(len(b) for b in blocks) < 0.5 * len(all_text):
        # Markup without block structure: one paragraph per text line.
        return [re.sub(r"\s+", " ", line) for line in all_text.splitlines() if line.strip()]
    return blocks


def _container_score(element: Tag) -> float:
    text_length = len(element.get_text(" ", strip=True))
    score = min(text_length / 100, 50) + 2 * len(element.find_all("p"))
    classes = " ".join(element.get("class", [])) + " " + (element.get("id") or "")
    if _NAV_CLASS.search(classes):
        score -= 20
    if _AD_CLASS.search(classes):
        score -= 30
    return score


def _quality(
    *,
    word_count: int,
    method: str,
    text_ratio: float,
    heading_count: int,
    paragraph_count: int,
) -> tuple[float, list[str]]:
    if word_count == 0:
        return 0.0, ["no text extracted"]

    score = 50.0
    reasons: list[str] = []
    if word_count > 500:
        score += 20
        reasons.append("substantial content")
    elif word_count >= 100:
        score += 5
    else:
        score -= 20
        reasons.append("very short content")

    if method == "semantic":
        score += 20
        reasons.append("semantic main content")
    elif method == "pattern":
        score += 5
    else:
        score -= 15
        reasons.append("fell back to whole body")

    if text_ratio > 0.1:
        score += 10
    else:
        score -= 10
        reasons.append("low text density")

    if heading_count:
        score += 5
    if paragraph_count >= 3:
        score += 5

    return max(0.0, min(100.0, score)), reasons


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str | None:
    tag = soup.find("meta", attrs=attrs)
    if tag and tag.get("content"):
        return tag["content"].strip() or None
    return None


def _read_metadata(soup: BeautifulSoup) -> dict[str, str | None]:
    html = soup.find("html")
    canonical = soup.find("link", rel="canonical")
    return {
        "description": _meta_content(soup, name="description") or _meta_content(soup, property="og:description"),
        "language": html.get("lang") if isinstance(html, Tag) else None,
        "author": _meta_content(soup, name="author"),
        "canonical": canonical.get("href") if canonical else None,
    }


def _derive_title(soup: BeautifulSoup, url: str | None) -> str:
    og_title = _meta_content(soup, property="og:title")
    if og_title:
        return og_title

    if soup.title and soup.title.string and soup.title.string.strip():
        cleaned = _TITLE_SUFFIX.split(soup.title.string.strip())[0].strip()
        if cleaned:
            return cleaned

    h1 = soup.find("h1")
    if h1 and h1.get_text(strip=True):
        return h1.get_text(" ", strip=True)

    if url:
        segments = [s for s in urlsplit(url).path.split("/") if s]
        if segments:
            return unquote(segments[-1]).replace("-", " ").replace("_", " ").title()
    return "Untitled"


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rsplit(" ", 1)[0] + "..."
