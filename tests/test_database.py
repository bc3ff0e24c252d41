"""Tests for the per-docset text index."""

from collections.abc import Generator
from pathlib import Path

import pytest

from offline_docs.database import TextIndex, format_snippet
from offline_docs.models import Document


@pytest.fixture
def index(tmp_path: Path) -> Generator[TextIndex, None, None]:
    """Create a writable index in a temporary directory.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Yields:
        Open TextIndex for docset "demo".
    """
    text_index = TextIndex(tmp_path / "index", "demo").open(write=True)
    yield text_index
    text_index.close()


def make_doc(doc_id: str, content: str, title: str = "Page", headings: list[str] | None = None) -> Document:
    """Build a document for indexing.

    Args:
        doc_id: Document id.
        content: Document body.
        title: Document title.
        headings: Document headings.

    Returns:
        Document instance.
    """
    return Document(
        id=doc_id,
        title=title,
        url=f"https://example.com/{doc_id}",
        content=content,
        headings=headings or [],
    )


@pytest.fixture
def filler_docs() -> list[Document]:
    """Documents that do not mention the test terms, so idf stays positive.

    Returns:
        List of unrelated documents.
    """
    return [make_doc(f"filler{i}", f"Unrelated page number {i} about configuration files.") for i in range(6)]


def test_bulk_insert(index: TextIndex) -> None:
    """Test inserting documents."""
    written = index.bulk_insert([make_doc("a", "Alpha content"), make_doc("b", "Beta content")])
    assert written == 2
    assert index.get_document_count() == 2


def test_bulk_insert_twice_replaces(index: TextIndex) -> None:
    """Test that inserting the same documents again does not duplicate them."""
    docs = [make_doc("a", "Alpha content"), make_doc("b", "Beta content")]
    index.bulk_insert(docs)
    index.bulk_insert(docs)
    assert index.get_document_count() == 2


def test_bulk_insert_updates_content(index: TextIndex) -> None:
    """Test that re-inserting an id replaces its searchable content."""
    index.bulk_insert([make_doc("a", "The old wording about kettles")])
    index.bulk_insert([make_doc("a", "The new wording about teapots")])

    assert index.get_document_count() == 1
    assert index.query("kettles") == []
    results = index.query("teapots")
    assert [r.id for r in results] == ["a"]


def test_bulk_insert_prune(index: TextIndex) -> None:
    """Test that prune removes entries missing from the new batch."""
    index.bulk_insert([make_doc("a", "Alpha content"), make_doc("b", "Beta content")])
    index.bulk_insert([make_doc("b", "Beta content")], prune=True)

    assert index.get_document_ids() == {"b"}
    assert index.query("alpha") == []


def test_reopen_keeps_entries(tmp_path: Path) -> None:
    """Test that opening for write again is idempotent."""
    with TextIndex(tmp_path, "demo").open(write=True) as first:
        first.bulk_insert([make_doc("a", "Alpha content")])
    with TextIndex(tmp_path, "demo").open(write=True) as second:
        second.bulk_insert([make_doc("a", "Alpha content")])
        assert second.get_document_count() == 1


def test_query_basic(index: TextIndex, filler_docs: list[Document]) -> None:
    """Test basic search functionality."""
    index.bulk_insert(
        [
            make_doc("s3", "Manage S3 buckets with encryption and lifecycle policies."),
            make_doc("ec2", "Manage EC2 instances with tagging and termination policies."),
            *filler_docs,
        ]
    )

    results = index.query("S3")
    assert len(results) == 1
    assert results[0].id == "s3"
    assert results[0].docset == "demo"
    assert results[0].url == "https://example.com/s3"


def test_query_with_stemming(index: TextIndex) -> None:
    """Test that the porter tokenizer matches word variants."""
    index.bulk_insert([make_doc("p", "Cloud policies for managing resources.")])
    results = index.query("policy")
    assert len(results) == 1


def test_query_uses_and_semantics(index: TextIndex, filler_docs: list[Document]) -> None:
    """Test that every query term must match."""
    index.bulk_insert(
        [
            make_doc("both", "Widgets are configured through the registry."),
            make_doc("one", "Widgets are painted blue."),
            *filler_docs,
        ]
    )

    results = index.query("widgets registry")
    assert [r.id for r in results] == ["both"]


def test_query_is_case_insensitive(index: TextIndex) -> None:
    """Test that upper-case query terms match lower-case content."""
    index.bulk_insert([make_doc("a", "the router handles navigation")])
    assert len(index.query("ROUTER")) == 1


def test_query_relevance_ordering(index: TextIndex, filler_docs: list[Document]) -> None:
    """Test that more term occurrences rank higher."""
    index.bulk_insert(
        [
            make_doc("low", "Some content mentioning hooks once among many other words here."),
            make_doc("high", "Hooks hooks hooks: hooks let you use state."),
            *filler_docs,
        ]
    )

    results = index.query("hooks")
    assert [r.id for r in results] == ["high", "low"]
    assert results[0].score >= results[1].score


def test_scores_are_positive(index: TextIndex, filler_docs: list[Document]) -> None:
    """Test that bm25 scores are converted to non-negative, higher-is-better values."""
    index.bulk_insert([make_doc("a", "Routing with the router"), *filler_docs])
    results = index.query("router")
    assert len(results) == 1
    assert results[0].score > 0


def test_query_min_score(index: TextIndex, filler_docs: list[Document]) -> None:
    """Test that results below the minimum score are dropped."""
    index.bulk_insert([make_doc("a", "Routing with the router"), *filler_docs])
    score = index.query("router")[0].score
    assert index.query("router", min_score=score + 1.0) == []
    assert len(index.query("router", min_score=score)) == 1


def test_query_with_limit(index: TextIndex) -> None:
    """Test search with result limit."""
    index.bulk_insert([make_doc(f"test{i}", "Shared test content") for i in range(10)])
    results = index.query("test", limit=5)
    assert len(results) == 5


def test_query_no_results(index: TextIndex) -> None:
    """Test search with no matching results."""
    index.bulk_insert([make_doc("a", "Alpha content")])
    assert index.query("nonexistent_term_xyz") == []


def test_snippet_highlights_terms(index: TextIndex) -> None:
    """Test that snippets mark matches with double asterisks."""
    index.bulk_insert([make_doc("a", "The Widget API lets you create widgets.")])
    snippet = index.query("widget api")[0].snippet

    # Adjacent matches may share one emphasis span
    assert "**widget" in snippet.lower()
    assert "api**" in snippet.lower()
    assert "\x02" not in snippet
    assert "<mark>" not in snippet


def test_snippet_is_bounded(index: TextIndex) -> None:
    """Test that snippets are excerpts rather than the whole document."""
    content = " ".join(f"word{i}" for i in range(500)) + " needle " + " ".join(f"tail{i}" for i in range(500))
    index.bulk_insert([make_doc("long", content)])
    snippet = index.query("needle")[0].snippet

    assert "**needle**" in snippet
    assert len(snippet.split()) < 60


def test_query_with_special_characters(index: TextIndex) -> None:
    """Test that FTS5 operator characters in queries do not raise."""
    index.bulk_insert([make_doc("a", "Use s3.bucket.name with (parentheses) and * asterisks")])

    for query in ["s3.bucket", '"s3 bucket"', "test*", "(parentheses)", "a AND b", "x OR y", "NOT z", "-", "col:val"]:
        assert isinstance(index.query(query), list)


def test_query_with_hyphens(index: TextIndex) -> None:
    """Test hyphenated terms are matched as phrases."""
    index.bulk_insert([make_doc("a", "The marked-for-op action tags resources.")])
    results = index.query("marked-for-op")
    assert [r.id for r in results] == ["a"]


def test_build_match_expression() -> None:
    """Test FTS5 expression building."""
    assert TextIndex.build_match_expression("Widget API") == '"widget" "api"'
    assert TextIndex.build_match_expression('say "hi"') == '"say" """hi"""'
    assert TextIndex.build_match_expression("a AND b") == '"a" "and" "b"'
    assert TextIndex.build_match_expression("  ") == ""
    assert TextIndex.build_match_expression("- ?") == ""


def test_format_snippet() -> None:
    """Test conversion of highlight markers."""
    assert format_snippet("use \x02 Widget \x03 here") == "use **Widget** here"
    assert format_snippet("\x02api\x03 and \x02docs\x03") == "**api** and **docs**"
    assert format_snippet("plain text") == "plain text"


def test_read_mode_missing_store(tmp_path: Path) -> None:
    """Test that a missing store in read mode is a soft miss."""
    with TextIndex(tmp_path, "absent").open() as index:
        assert not index.is_open
        assert index.query("anything") == []
        assert index.get_document_count() == 0
    assert not (tmp_path / "absent.db").exists()


def test_read_mode_existing_store(tmp_path: Path) -> None:
    """Test reading an index written earlier."""
    with TextIndex(tmp_path, "demo").open(write=True) as writer:
        writer.bulk_insert([make_doc("a", "Alpha content")])

    with TextIndex(tmp_path, "demo").open() as reader:
        assert reader.is_open
        assert [r.id for r in reader.query("alpha")] == ["a"]


def test_bulk_insert_requires_open_index(tmp_path: Path) -> None:
    """Test that writing to a closed index fails loudly."""
    index = TextIndex(tmp_path, "demo")
    with pytest.raises(RuntimeError, match="not open"):
        index.bulk_insert([make_doc("a", "Alpha content")])


def test_close_is_idempotent(tmp_path: Path) -> None:
    """Test that close can be called repeatedly and without open."""
    index = TextIndex(tmp_path, "demo")
    index.close()
    index.open(write=True)
    index.close()
    index.close()
    assert not index.is_open


def test_delete(tmp_path: Path) -> None:
    """Test removing the store file."""
    index = TextIndex(tmp_path, "demo").open(write=True)
    index.bulk_insert([make_doc("a", "Alpha content")])
    index.delete()

    assert not index.is_open
    assert not (tmp_path / "demo.db").exists()
    # Deleting again is harmless
    index.delete()
