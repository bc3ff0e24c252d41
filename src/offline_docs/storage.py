"""On-disk storage of docset metadata and document bodies."""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

from offline_docs.models import Document, DocsetMetadata

logger = logging.getLogger(__name__)

INDEX_DIR_NAME = "index"
METADATA_FILE = "metadata.json"
DOCS_DIR_NAME = "docs"


class DocStore:
    """Persists docsets under a root directory.

    Layout::

        <root>/<docset>/metadata.json
        <root>/<docset>/docs/<document id>.json
        <root>/index/<docset>.db

    A docset counts as installed only once its metadata file exists.
    """

    def __init__(self, root: Path) -> None:
        """Initialise store.

        Args:
            root: Data directory, created on first write.
        """
        self.root = root

    @property
    def index_dir(self) -> Path:
        return self.root / INDEX_DIR_NAME

    def index_path(self, name: str) -> Path:
        """Return the index store path for a docset."""
        return self.index_dir / f"{name}.db"

    def docset_dir(self, name: str) -> Path:
        return self.root / name

    def _metadata_path(self, name: str) -> Path:
        return self.docset_dir(name) / METADATA_FILE

    def _docs_dir(self, name: str) -> Path:
        return self.docset_dir(name) / DOCS_DIR_NAME

    @staticmethod
    def _write_json(path: Path, data: dict[str, Any]) -> None:
        """Write JSON atomically so readers never see a partial file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def save_metadata(self, metadata: DocsetMetadata) -> None:
        self._write_json(self._metadata_path(metadata.name), metadata.to_dict())

    def load_metadata(self, name: str) -> DocsetMetadata | None:
        """Load a docset's metadata.

        Args:
            name: Docset name.

        Returns:
            DocsetMetadata, or None if the docset is not installed or the
            metadata file is unreadable.
        """
        path = self._metadata_path(name)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return DocsetMetadata.from_dict(data)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError) as e:
            logger.warning("Ignoring unreadable metadata for %s: %s", name, e)
            return None

    def clear_metadata(self, name: str) -> None:
        """Mark a docset as not installed, keeping its files."""
        self._metadata_path(name).unlink(missing_ok=True)

    def save_documents(self, name: str, documents: list[Document]) -> None:
        """Persist document bodies, replacing the previous set.

        Bodies whose id is not in ``documents`` are deleted.

        Args:
            name: Docset name.
            documents: Documents to store.
        """
        docs_dir = self._docs_dir(name)
        docs_dir.mkdir(parents=True, exist_ok=True)

        keep = set()
        for doc in documents:
            path = docs_dir / f"{doc.id}.json"
            self._write_json(path, doc.to_dict())
            keep.add(path.name)

        for path in docs_dir.glob("*.json"):
            if path.name not in keep:
                path.unlink(missing_ok=True)
                logger.debug("Removed stale document %s from %s", path.stem, name)

    def load_document(self, name: str, doc_id: str) -> Document | None:
        """Load one document body.

        Args:
            name: Docset name.
            doc_id: Document id.

        Returns:
            Document instance or None if not found.
        """
        path = self._docs_dir(name) / f"{doc_id}.json"
        if path.parent != self._docs_dir(name):
            return None
        try:
            return Document.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            return None

    def load_documents(self, name: str) -> list[Document]:
        """Load every stored document of a docset, sorted by id."""
        docs_dir = self._docs_dir(name)
        if not docs_dir.is_dir():
            return []
        return [
            Document.from_dict(json.loads(path.read_text(encoding="utf-8")))
            for path in sorted(docs_dir.glob("*.json"))
        ]

    def docset_exists(self, name: str) -> bool:
        """Return True if the docset is installed."""
        return self._metadata_path(name).is_file()

    def list_docsets(self) -> list[str]:
        """Return the names of installed docsets, sorted."""
        if not self.root.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.root.iterdir()
            if entry.is_dir() and entry.name != INDEX_DIR_NAME and (entry / METADATA_FILE).is_file()
        )

    def remove_docset(self, name: str) -> None:
        """Delete a docset's directory. Missing directories are ignored."""
        docset_dir = self.docset_dir(name)
        if docset_dir.is_dir():
            shutil.rmtree(docset_dir)
            logger.info("Removed docset directory %s", docset_dir)
