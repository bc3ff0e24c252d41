"""Extraction of normalised documents from crawled HTML pages."""

import hashlib
import re
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from urllib.parse import urlparse

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from offline_docs.models import Document, Selectors

MIN_PARAGRAPH_LENGTH = 20
MAX_CODE_LENGTH = 2000
MIN_CONTENT_LENGTH = 100
# Text length band for blocks without a dedicated strategy
SENTENCE_BAND = (20, 500)
FALLBACK_SENTENCE_BAND = (20, 300)
MAX_FALLBACK_SENTENCES = 5
MAX_SLUG_LENGTH = 80

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
_HORIZONTAL_SPACE = re.compile(r"[ \t\r\f\v\xa0]+")
_EXTRA_BLANK_LINES = re.compile(r"\n{3,}")
_PAGE_EXTENSION = re.compile(r"\.(html?|php)$", re.IGNORECASE)


def document_id(url: str) -> str:
    """Derive a stable document id from its URL.

    Args:
        url: Page URL.

    Returns:
        Readable slug of the URL followed by a short hash of the full URL.
    """
    slug = re.sub(r"^https?://", "", url, flags=re.IGNORECASE)
    slug = re.sub(r"[^\w-]", "_", slug, flags=re.ASCII).lower()[:MAX_SLUG_LENGTH].strip("_")
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:12]
    return f"{slug}_{digest}" if slug else digest


def title_from_url(url: str) -> str:
    """Build a readable title from the last path segment of a URL.

    Args:
        url: Page URL.

    Returns:
        Title-cased segment, or "Untitled" if the URL has no path.
    """
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    name = _PAGE_EXTENSION.sub("", segments[-1]) if segments else ""
    name = re.sub(r"[-_]+", " ", name).strip()
    name = re.sub(r"\b\w", lambda m: m.group().upper(), name)
    return name or "Untitled"


def normalise_whitespace(text: str) -> str:
    """Collapse runs of spaces and blank lines, leaving fenced code intact."""
    lines = []
    in_fence = False
    for line in text.split("\n"):
        if line.lstrip().startswith("```"):
            in_fence = not in_fence
            lines.append(line.strip())
        elif in_fence:
            lines.append(line.rstrip())
        else:
            lines.append(_HORIZONTAL_SPACE.sub(" ", line).strip())
    return _EXTRA_BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


def _element_text(element: Tag) -> str:
    return " ".join(element.get_text(" ", strip=True).split())


def _decompose_all(elements: Iterable[Tag]) -> None:
    for element in elements:
        # Nested matches are already gone once an ancestor is decomposed
        if not element.decomposed:
            element.decompose()


class HtmlExtractor:
    """Turns a page of HTML into documents using a docset's selector rules."""

    ALWAYS_REMOVED = ("script", "style", "noscript", "template")
    CONTAINER_TAGS = ("div", "section", "article", "main")

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        """Initialise extractor.

        Args:
            clock: Source of the documents' last-updated time. Defaults to UTC now.
        """
        self._clock = clock or (lambda: datetime.now(UTC))
        self._strategies: dict[str, Callable[[Tag], list[str]]] = {
            "p": self._paragraph,
            "ul": self._list,
            "ol": self._list,
            "li": self._list_item,
            "pre": self._code,
            "code": self._code,
            "blockquote": self._quote,
        }
        for level in range(1, 7):
            self._strategies[f"h{level}"] = self._heading
        for name in self.CONTAINER_TAGS:
            self._strategies[name] = self._walk

    def extract(self, html: str, url: str, selectors: Selectors) -> list[Document]:
        """Extract documents from a page.

        Args:
            html: Raw HTML of the page.
            url: URL the page was fetched from.
            selectors: Title, content and exclusion selectors.

        Returns:
            A list holding one document, or an empty list when the page has no
            matching content region or no usable text.
        """
        soup = BeautifulSoup(html, "html.parser")
        _decompose_all(soup.find_all(list(self.ALWAYS_REMOVED)))
        if selectors.exclude.strip():
            _decompose_all(soup.select(selectors.exclude))

        region = soup.select_one(selectors.content)
        if region is None:
            return []

        content = self.extract_content(region)
        if not content:
            return []

        headings = self._collect_headings(soup, selectors.title)
        return [
            Document(
                id=document_id(url),
                title=headings[0] if headings else title_from_url(url),
                url=url,
                content=content,
                headings=headings,
                last_updated=self._clock(),
            )
        ]

    def extract_content(self, region: Tag) -> str:
        """Convert a content region into markdown-like text.

        Falls back to the leading sentences of the region's text when the
        structured walk produces too little.

        Args:
            region: Element holding the page content.

        Returns:
            Normalised text, possibly empty.
        """
        structured = normalise_whitespace("\n\n".join(self._walk(region)))
        if len(structured) >= MIN_CONTENT_LENGTH:
            return structured
        return self._sentence_fallback(region) or structured

    def _collect_headings(self, soup: BeautifulSoup, selector: str) -> list[str]:
        headings: list[str] = []
        if not selector.strip():
            return headings
        for element in soup.select(selector):
            text = _element_text(element)
            if text and text not in headings:
                headings.append(text)
        return headings

    def _walk(self, parent: Tag) -> list[str]:
        blocks: list[str] = []
        for child in parent.children:
            if isinstance(child, Tag):
                strategy = self._strategies.get(child.name, self._default)
                blocks.extend(strategy(child))
            elif isinstance(child, NavigableString) and not isinstance(child, PreformattedString):
                blocks.extend(self._sentence_block(" ".join(child.split())))
        return blocks

    def _heading(self, element: Tag) -> list[str]:
        text = _element_text(element)
        if not text:
            return []
        level = int(element.name[1])
        return [f"{'#' * level} {text}"]

    def _paragraph(self, element: Tag) -> list[str]:
        text = _element_text(element)
        return [text] if len(text) > MIN_PARAGRAPH_LENGTH else []

    def _list(self, element: Tag) -> list[str]:
        items = [_element_text(item) for item in element.find_all("li", recursive=False)]
        lines = [f"- {item}" for item in items if item]
        return ["\n".join(lines)] if lines else []

    def _list_item(self, element: Tag) -> list[str]:
        text = _element_text(element)
        return [f"- {text}"] if text else []

    def _code(self, element: Tag) -> list[str]:
        code = element.get_text().strip("\n").rstrip()
        if not code.strip() or len(code) > MAX_CODE_LENGTH:
            return []
        return [f"```\n{code}\n```"]

    def _quote(self, element: Tag) -> list[str]:
        lines = [" ".join(line.split()) for line in element.get_text("\n", strip=True).split("\n")]
        quoted = [f"> {line}" for line in lines if line]
        return ["\n".join(quoted)] if quoted else []

    def _default(self, element: Tag) -> list[str]:
        return self._sentence_block(_element_text(element))

    def _sentence_block(self, text: str) -> list[str]:
        low, high = SENTENCE_BAND
        return [text] if low <= len(text) <= high else []

    def _sentence_fallback(self, region: Tag) -> str:
        text = _element_text(region)
        low, high = FALLBACK_SENTENCE_BAND
        sentences = [sentence.strip() for sentence in _SENTENCE_END.split(text)]
        kept = [sentence for sentence in sentences if low <= len(sentence) <= high]
        if kept:
            return " ".join(kept[:MAX_FALLBACK_SENTENCES])
        if len(text) > high:
            # Unpunctuated or run-on text: keep its leading words
            head = text[: high + 1]
            return head.rsplit(" ", 1)[0] if " " in head else text[:high]
        return ""
