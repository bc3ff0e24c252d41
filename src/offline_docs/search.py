"""Federated search across the indexes of installed docsets."""

import logging
import sqlite3
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

from offline_docs.config import Settings
from offline_docs.database import TextIndex
from offline_docs.errors import EmptyQueryError, UsageError
from offline_docs.models import SearchOptions, SearchResult
from offline_docs.storage import DocStore

logger = logging.getLogger(__name__)


class Explainer(Protocol):
    """Optional capability that turns search results into prose."""

    def explain(self, query: str, results: Sequence[SearchResult]) -> str: ...


class SearchAggregator:
    """Queries every docset in scope and merges results into one ranking."""

    PER_DOCSET_FACTOR = 5
    MIN_PER_DOCSET = 50

    def __init__(self, store: DocStore, max_workers: int = 4) -> None:
        """Initialise aggregator.

        Args:
            store: Store used to enumerate installed docsets and locate indexes.
            max_workers: Number of docsets queried in parallel.
        """
        self.store = store
        self.max_workers = max(1, max_workers)

    def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """Search one or all installed docsets.

        Args:
            query: Free text query.
            options: Docset filter, limit and minimum score.

        Returns:
            At most ``options.limit`` results scoring at least
            ``options.min_score``, highest score first. Ties keep docset
            order (alphabetical) and then the per-docset ranking.

        Raises:
            EmptyQueryError: If the query is blank.
            UsageError: If the limit is not positive.
        """
        if not query.strip():
            msg = "Search query cannot be empty"
            raise EmptyQueryError(msg)
        options = options or SearchOptions()
        if options.limit < 1:
            msg = f"Limit must be positive, got {options.limit}"
            raise UsageError(msg)

        if options.docset:
            if not self.store.docset_exists(options.docset):
                logger.warning("Docset %s is not installed", options.docset)
                return []
            docsets = [options.docset]
        else:
            docsets = self.store.list_docsets()

        per_docset_limit = max(options.limit * self.PER_DOCSET_FACTOR, self.MIN_PER_DOCSET)
        per_docset = self._query_docsets(docsets, query, per_docset_limit, options.min_score)

        merged = [result for results in per_docset for result in results if result.score >= options.min_score]
        # list.sort is stable, also with reverse=True
        merged.sort(key=lambda result: result.score, reverse=True)
        logger.debug("Merged %d results from %d docsets", len(merged), len(docsets))
        return merged[: options.limit]

    def _query_docsets(
        self, docsets: list[str], query: str, limit: int, min_score: float
    ) -> list[list[SearchResult]]:
        if len(docsets) <= 1 or self.max_workers == 1:
            return [self._query_docset(name, query, limit, min_score) for name in docsets]

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(docsets))) as executor:
            return list(executor.map(lambda name: self._query_docset(name, query, limit, min_score), docsets))

    def _query_docset(self, name: str, query: str, limit: int, min_score: float) -> list[SearchResult]:
        try:
            with TextIndex(self.store.index_dir, name).open() as index:
                return index.query(query, limit=limit, min_score=min_score)
        except sqlite3.Error as e:
            logger.warning("Failed to search docset %s: %s", name, e)
            return []


class SearchDocs:
    """Search entry point for the command layer."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: DocStore | None = None,
        explainer: Explainer | None = None,
    ) -> None:
        """Initialise search entry point.

        Args:
            settings: Settings used to locate the data directory.
            store: Store to search. Defaults to one rooted at settings.data_dir.
            explainer: Optional service that summarises results.
        """
        self.settings = settings or Settings.from_env()
        self.store = store or DocStore(self.settings.data_dir)
        self.aggregator = SearchAggregator(self.store, max_workers=self.settings.max_concurrency)
        self.explainer = explainer

    def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """Search installed documentation.

        Args:
            query: Free text query.
            options: Search options. Defaults to limit 10 and no score floor.

        Returns:
            Ranked search results, possibly empty.
        """
        results = self.aggregator.search(query, options or SearchOptions())
        if not results:
            logger.info("No results found for %r", query)
        return results

    def explain(self, query: str, results: Sequence[SearchResult]) -> str | None:
        """Summarise results with the configured explainer, if any."""
        if self.explainer is None or not results:
            return None
        return self.explainer.explain(query, results)
