"""Data models for offline documentation sets."""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

DOCSET_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._-]*$")
RESERVED_DOCSET_NAMES = frozenset({"index"})


@dataclass
class Selectors:
    """CSS selectors that drive extraction for one docset."""

    title: str
    content: str
    exclude: str = ""


@dataclass
class ScrapeRules:
    """Entry points and selectors for crawling a docset."""

    entry_points: list[str]
    selectors: Selectors


@dataclass
class DocsetConfig:
    """Static definition of a fetchable documentation set."""

    name: str
    base_url: str
    description: str
    rules: ScrapeRules

    def __post_init__(self) -> None:
        """Validate the definition.

        Raises:
            ValueError: If the name, entry points or content selector are invalid.
        """
        if not self.name or not DOCSET_NAME_PATTERN.match(self.name):
            msg = f"Invalid docset name: {self.name!r}"
            raise ValueError(msg)
        if self.name in RESERVED_DOCSET_NAMES:
            msg = f"Docset name is reserved: {self.name}"
            raise ValueError(msg)
        if not self.rules.entry_points:
            msg = f"Docset {self.name} must have at least one entry point"
            raise ValueError(msg)
        if not self.rules.selectors.content.strip():
            msg = f"Docset {self.name} must define a content selector"
            raise ValueError(msg)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocsetConfig":
        """Build a docset definition from a catalog mapping.

        Args:
            data: Mapping with name, base_url, description and scrape_rules keys.

        Returns:
            DocsetConfig instance.
        """
        rules = data.get("scrape_rules") or {}
        selectors = rules.get("selectors") or {}
        return cls(
            name=data["name"],
            base_url=data["base_url"],
            description=data.get("description", ""),
            rules=ScrapeRules(
                entry_points=list(rules.get("entry_points") or []),
                selectors=Selectors(
                    title=selectors.get("title", "h1, h2, h3"),
                    content=selectors.get("content", ""),
                    exclude=selectors.get("exclude", ""),
                ),
            ),
        )


@dataclass
class Document:
    """Represents one crawled, normalised documentation page."""

    id: str
    title: str
    url: str
    content: str
    headings: list[str] = field(default_factory=list)
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "content": self.content,
            "headings": list(self.headings),
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Document":
        return cls(
            id=data["id"],
            title=data["title"],
            url=data["url"],
            content=data["content"],
            headings=list(data.get("headings") or []),
            last_updated=datetime.fromisoformat(data["last_updated"]),
        )


@dataclass
class DocsetMetadata:
    """Metadata persisted alongside an installed docset."""

    name: str
    version: str
    description: str
    base_url: str
    last_fetched: datetime
    total_docs: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "base_url": self.base_url,
            "last_fetched": self.last_fetched.isoformat(),
            "total_docs": self.total_docs,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocsetMetadata":
        last_fetched = datetime.fromisoformat(data["last_fetched"])
        if last_fetched.tzinfo is None:
            last_fetched = last_fetched.replace(tzinfo=UTC)
        return cls(
            name=data["name"],
            version=data.get("version", ""),
            description=data.get("description", ""),
            base_url=data.get("base_url", ""),
            last_fetched=last_fetched,
            total_docs=int(data.get("total_docs", 0)),
        )

    def age(self, now: datetime | None = None) -> timedelta:
        """Return how long ago the docset was fetched."""
        return (now or datetime.now(UTC)) - self.last_fetched

    def is_stale(self, max_age: timedelta = timedelta(days=7), now: datetime | None = None) -> bool:
        """Return True when the docset is older than max_age."""
        return self.age(now) > max_age


@dataclass
class InstalledDocset:
    """An installed docset as reported by listing."""

    name: str
    metadata: DocsetMetadata


@dataclass
class SearchOptions:
    """Tunable parameters for a federated search."""

    docset: str | None = None
    limit: int = 10
    min_score: float = 0.0


@dataclass
class SearchResult:
    """Represents a search result."""

    id: str
    title: str
    url: str
    snippet: str
    score: float
    docset: str
