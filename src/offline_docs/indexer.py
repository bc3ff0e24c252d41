"""Fetch, list and remove docsets in the local documentation cache."""

import asyncio
import logging
import sqlite3
from datetime import UTC, datetime, timedelta

from offline_docs.config import Settings, load_docset_catalog
from offline_docs.crawler import Crawler
from offline_docs.database import TextIndex
from offline_docs.errors import (
    DocsError,
    DocsetExistsError,
    DocsetNotInstalledError,
    FetchError,
    UnknownDocsetError,
)
from offline_docs.models import DocsetConfig, DocsetMetadata, Document, InstalledDocset
from offline_docs.storage import DocStore

logger = logging.getLogger(__name__)

METADATA_VERSION = "1.0.0"
STALE_AFTER = timedelta(days=7)


class FetchDocs:
    """Crawls a docset, stores its documents and builds its search index."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: DocStore | None = None,
        catalog: dict[str, DocsetConfig] | None = None,
        crawler: Crawler | None = None,
    ) -> None:
        """Initialise fetcher.

        Args:
            settings: Settings for the data directory and crawler.
            store: Store to install into. Defaults to one rooted at settings.data_dir.
            catalog: Known docsets. Defaults to the packaged catalog.
            crawler: Crawler used to fetch pages.
        """
        self.settings = settings or Settings.from_env()
        self.store = store or DocStore(self.settings.data_dir)
        self.catalog = catalog if catalog is not None else load_docset_catalog()
        self.crawler = crawler or Crawler(self.settings)
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, name: str) -> asyncio.Lock:
        return self._locks.setdefault(name, asyncio.Lock())

    async def run(self, docset_name: str, force: bool = False) -> DocsetMetadata:
        """Fetch and install a docset.

        Args:
            docset_name: Name of a docset in the catalog.
            force: Re-fetch even if the docset is already installed.

        Returns:
            Metadata of the installed docset.

        Raises:
            UnknownDocsetError: If the name is not in the catalog.
            DocsetExistsError: If the docset is installed and force is False.
            FetchError: If no documents could be extracted or they could not
                be stored.
        """
        config = self.catalog.get(docset_name)
        if config is None:
            msg = f"Unknown docset: {docset_name}. Available: {', '.join(sorted(self.catalog))}"
            raise UnknownDocsetError(msg)

        async with self._lock_for(docset_name):
            if not force and self.store.docset_exists(docset_name):
                msg = f"Docset {docset_name} already exists. Use force to re-fetch."
                raise DocsetExistsError(msg)

            logger.info("Fetching %s documentation...", docset_name)
            documents = await self.crawler.crawl(config.rules.entry_points, config.rules.selectors)
            if not documents:
                raise FetchError(docset_name, "no documentation found")

            logger.info("Found %d documents", len(documents))
            try:
                return await asyncio.to_thread(self._install, config, documents)
            except (sqlite3.Error, OSError) as e:
                raise FetchError(docset_name, str(e)) from e

    def run_sync(self, docset_name: str, force: bool = False) -> DocsetMetadata:
        """Blocking wrapper around run()."""
        return asyncio.run(self.run(docset_name, force))

    def _install(self, config: DocsetConfig, documents: list[Document]) -> DocsetMetadata:
        """Persist documents and index them, writing metadata last.

        Until the metadata is written the docset does not count as installed.

        Args:
            config: Docset definition.
            documents: Documents from the crawl.

        Returns:
            Metadata of the installed docset.
        """
        name = config.name
        self.store.clear_metadata(name)
        self.store.save_documents(name, documents)

        logger.info("Indexing %d documents...", len(documents))
        try:
            total_docs = self._build_index(name, documents)
        except sqlite3.OperationalError:
            raise
        except sqlite3.DatabaseError as e:
            # Not an SQLite file; every entry is rewritten from documents
            logger.warning("Discarding unreadable index for %s: %s", name, e)
            TextIndex(self.store.index_dir, name).delete()
            total_docs = self._build_index(name, documents)

        metadata = DocsetMetadata(
            name=name,
            version=METADATA_VERSION,
            description=config.description,
            base_url=config.base_url,
            last_fetched=datetime.now(UTC),
            total_docs=total_docs,
        )
        self.store.save_metadata(metadata)
        logger.info("Successfully fetched and indexed %s", name)
        return metadata

    def _build_index(self, name: str, documents: list[Document]) -> int:
        with TextIndex(self.store.index_dir, name).open(write=True) as index:
            index.bulk_insert(documents, prune=True)
            return index.get_document_count()

    async def update(self, names: list[str] | None = None) -> dict[str, DocsetMetadata | DocsError]:
        """Re-fetch installed docsets.

        A failing docset is logged and reported; the others are still updated.

        Args:
            names: Docsets to update. Defaults to every installed docset.

        Returns:
            Mapping of docset name to new metadata or to the error it raised.
        """
        outcomes: dict[str, DocsetMetadata | DocsError] = {}
        for name in names if names is not None else self.store.list_docsets():
            if not self.store.docset_exists(name):
                outcomes[name] = DocsetNotInstalledError(f"Docset {name} is not installed")
                continue
            try:
                outcomes[name] = await self.run(name, force=True)
            except DocsError as e:
                logger.error("Failed to update %s: %s", name, e)
                outcomes[name] = e
        return outcomes


class RemoveDocs:
    """Removes an installed docset and its index."""

    def __init__(self, settings: Settings | None = None, store: DocStore | None = None) -> None:
        self.settings = settings or Settings.from_env()
        self.store = store or DocStore(self.settings.data_dir)

    def remove(self, docset_name: str) -> None:
        """Remove a docset.

        Leftovers of an interrupted fetch are removed as well.

        Args:
            docset_name: Name of the docset.

        Raises:
            DocsetNotInstalledError: If nothing is stored for the docset.
        """
        index = TextIndex(self.store.index_dir, docset_name)
        if not (
            self.store.docset_exists(docset_name)
            or self.store.docset_dir(docset_name).exists()
            or self.store.index_path(docset_name).exists()
        ):
            msg = f"Docset {docset_name} is not installed"
            raise DocsetNotInstalledError(msg)

        self.store.clear_metadata(docset_name)
        index.delete()
        self.store.remove_docset(docset_name)
        logger.info("Successfully removed %s", docset_name)


class ListDocs:
    """Lists installed and available docsets."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: DocStore | None = None,
        catalog: dict[str, DocsetConfig] | None = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.store = store or DocStore(self.settings.data_dir)
        self._catalog = catalog

    @property
    def catalog(self) -> dict[str, DocsetConfig]:
        if self._catalog is None:
            self._catalog = load_docset_catalog()
        return self._catalog

    def get_all(self) -> list[InstalledDocset]:
        """Return installed docsets with their metadata, sorted by name."""
        installed = []
        for name in self.store.list_docsets():
            metadata = self.store.load_metadata(name)
            if metadata:
                installed.append(InstalledDocset(name=name, metadata=metadata))
        return installed

    def get_available(self) -> list[str]:
        """Return the names of every docset in the catalog."""
        return list(self.catalog)

    def get_stale(self, max_age: timedelta = STALE_AFTER, now: datetime | None = None) -> list[InstalledDocset]:
        """Return installed docsets last fetched longer than max_age ago."""
        return [docset for docset in self.get_all() if docset.metadata.is_stale(max_age, now)]
