"""SQLite FTS5 text index, one store per docset."""

import logging
import re
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from types import TracebackType

from offline_docs.models import Document, SearchResult

logger = logging.getLogger(__name__)

SNIPPET_TOKENS = 32
# Highlight markers. Control characters are stripped from indexed text
_MARK_OPEN = "\x02"
_MARK_CLOSE = "\x03"
_HIGHLIGHT = re.compile(f"{_MARK_OPEN}\\s*(.*?)\\s*{_MARK_CLOSE}", re.DOTALL)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS documents (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        doc_id TEXT UNIQUE NOT NULL,
        title TEXT NOT NULL,
        url TEXT NOT NULL,
        content TEXT NOT NULL,
        headings TEXT NOT NULL DEFAULT '',
        docset TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
        title,
        headings,
        content,
        content='documents',
        content_rowid='id',
        tokenize='porter unicode61'
    );

    CREATE TRIGGER IF NOT EXISTS documents_ai AFTER INSERT ON documents BEGIN
        INSERT INTO documents_fts(rowid, title, headings, content)
        VALUES (new.id, new.title, new.headings, new.content);
    END;

    CREATE TRIGGER IF NOT EXISTS documents_ad AFTER DELETE ON documents BEGIN
        INSERT INTO documents_fts(documents_fts, rowid, title, headings, content)
        VALUES ('delete', old.id, old.title, old.headings, old.content);
    END;

    CREATE TRIGGER IF NOT EXISTS documents_au AFTER UPDATE ON documents BEGIN
        INSERT INTO documents_fts(documents_fts, rowid, title, headings, content)
        VALUES ('delete', old.id, old.title, old.headings, old.content);
        INSERT INTO documents_fts(rowid, title, headings, content)
        VALUES (new.id, new.title, new.headings, new.content);
    END;
"""


def _clean(text: str) -> str:
    return _CONTROL_CHARS.sub(" ", text)


def format_snippet(raw: str) -> str:
    """Convert index highlight markers into ``**term**`` emphasis.

    Args:
        raw: Snippet text as returned by the FTS5 snippet() function.

    Returns:
        Snippet with matches wrapped in double asterisks.
    """
    return _HIGHLIGHT.sub(lambda m: f"**{m.group(1)}**" if m.group(1) else "", raw)


class TextIndex:
    """Full-text index over the documents of a single docset.

    The store is opened around each operation and closed afterwards. Use it as
    a context manager::

        with TextIndex(index_dir, "react").open() as index:
            results = index.query("use state")

    Read mode never creates a store: when the file is missing the index stays
    closed and queries return no results.
    """

    def __init__(self, index_dir: Path, docset: str) -> None:
        """Initialise index handle.

        Args:
            index_dir: Directory holding one ``<docset>.db`` file per docset.
            docset: Name of the docset this index belongs to.
        """
        self.index_dir = index_dir
        self.docset = docset
        self.db_path = index_dir / f"{docset}.db"
        self._conn: sqlite3.Connection | None = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> "TextIndex":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def open(self, write: bool = False) -> "TextIndex":
        """Open the underlying store.

        Args:
            write: Open for writing, creating the store and schema if needed.

        Returns:
            This index, for use in a ``with`` statement.
        """
        if self._conn is not None:
            return self

        if write:
            self.index_dir.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path)
            try:
                conn.executescript(_SCHEMA)
                conn.commit()
            except sqlite3.Error:
                conn.close()
                raise
        else:
            if not self.db_path.is_file():
                logger.warning("No index found for docset %s at %s", self.docset, self.db_path)
                return self
            conn = sqlite3.connect(f"{self.db_path.resolve().as_uri()}?mode=ro", uri=True)

        conn.row_factory = sqlite3.Row
        self._conn = conn
        return self

    def close(self) -> None:
        """Close the store. Safe to call when it was never opened."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            msg = f"Index for docset {self.docset} is not open"
            raise RuntimeError(msg)
        return self._conn

    def bulk_insert(self, documents: Iterable[Document], prune: bool = False) -> int:
        """Insert or replace documents in a single transaction.

        Args:
            documents: Documents to index. Entries with an existing id are
                replaced, never duplicated.
            prune: Also delete entries whose id is not among ``documents``.

        Returns:
            Number of documents written.
        """
        conn = self._require_connection()
        rows = [
            (doc.id, _clean(doc.title), doc.url, _clean(doc.content), _clean(" ".join(doc.headings)), self.docset)
            for doc in documents
        ]

        with conn:
            conn.executemany(
                """
                INSERT INTO documents (doc_id, title, url, content, headings, docset)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(doc_id) DO UPDATE SET
                    title = excluded.title,
                    url = excluded.url,
                    content = excluded.content,
                    headings = excluded.headings,
                    docset = excluded.docset,
                    updated_at = CURRENT_TIMESTAMP
                """,
                rows,
            )
            if prune:
                conn.execute("CREATE TEMP TABLE IF NOT EXISTS keep_ids (doc_id TEXT PRIMARY KEY)")
                conn.execute("DELETE FROM keep_ids")
                conn.executemany("INSERT OR IGNORE INTO keep_ids (doc_id) VALUES (?)", [(row[0],) for row in rows])
                cursor = conn.execute("DELETE FROM documents WHERE doc_id NOT IN (SELECT doc_id FROM keep_ids)")
                if cursor.rowcount:
                    logger.info("Pruned %d stale entries from %s index", cursor.rowcount, self.docset)

        logger.debug("Indexed %d documents into %s", len(rows), self.db_path)
        return len(rows)

    @staticmethod
    def build_match_expression(text: str) -> str:
        """Build an FTS5 MATCH expression from free text.

        Terms are split on whitespace, lower-cased and each wrapped in double
        quotes, so FTS5 operators and punctuation are taken literally. Terms
        are joined with spaces, which FTS5 treats as AND.

        Args:
            text: Raw user query.

        Returns:
            MATCH expression, or an empty string when there are no terms.
        """
        # Terms without letters or digits produce no tokens and are skipped
        terms = [term.lower().replace('"', '""') for term in text.split() if any(ch.isalnum() for ch in term)]
        return " ".join(f'"{term}"' for term in terms)

    def query(self, text: str, limit: int = 50, min_score: float = 0.0) -> list[SearchResult]:
        """Run a ranked query against the index.

        Args:
            text: Free text query.
            limit: Maximum number of results.
            min_score: Drop results scoring below this value.

        Returns:
            Results ordered by score, highest first. Empty when the store is
            missing or the query has no terms.
        """
        if self._conn is None:
            return []
        expression = self.build_match_expression(text)
        if not expression:
            return []

        cursor = self._conn.execute(
            """
            SELECT
                d.doc_id,
                d.title,
                d.url,
                snippet(documents_fts, 2, ?, ?, '...', ?) as snippet,
                bm25(documents_fts, 5.0, 2.0, 1.0) as bm25_score
            FROM documents_fts
            JOIN documents d ON documents_fts.rowid = d.id
            WHERE documents_fts MATCH ?
            ORDER BY bm25_score, d.id
            LIMIT ?
            """,
            (_MARK_OPEN, _MARK_CLOSE, SNIPPET_TOKENS, expression, limit),
        )

        results = []
        for row in cursor.fetchall():
            # bm25() is negative with lower meaning better
            score = max(0.0, -row["bm25_score"])
            if score < min_score:
                continue
            results.append(
                SearchResult(
                    id=row["doc_id"],
                    title=row["title"],
                    url=row["url"],
                    snippet=format_snippet(row["snippet"] or ""),
                    score=score,
                    docset=self.docset,
                )
            )
        return results

    def get_document_count(self) -> int:
        """Return the number of indexed documents, 0 when the store is missing."""
        if self._conn is None:
            return 0
        result = self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()
        return int(result[0]) if result else 0

    def get_document_ids(self) -> set[str]:
        """Return the ids of every indexed document."""
        if self._conn is None:
            return set()
        return {row[0] for row in self._conn.execute("SELECT doc_id FROM documents")}

    def delete(self) -> None:
        """Close and remove the store file. Missing files are ignored."""
        self.close()
        for suffix in ("", "-wal", "-shm", "-journal"):
            Path(f"{self.db_path}{suffix}").unlink(missing_ok=True)
        logger.info("Removed index for docset %s", self.docset)
