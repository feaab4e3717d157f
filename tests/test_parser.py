"""Tests for the RST page record extractor."""

from pathlib import Path

import pytest

from doc_search_index.models import SymbolKind
from doc_search_index.parser import PageRecordExtractor


@pytest.fixture
def parser() -> PageRecordExtractor:
    """Create a PageRecordExtractor instance.

    Returns:
        PageRecordExtractor instance.
    """
    return PageRecordExtractor()


@pytest.fixture
def temp_docs_dir(tmp_path: Path) -> Path:
    """Create a temporary docs directory.

    Args:
        tmp_path: Pytest temporary directory fixture.

    Returns:
        Path to temporary docs directory.
    """
    docs_dir = tmp_path / "source"
    docs_dir.mkdir()
    return docs_dir


def test_parse_page_and_sections(parser: PageRecordExtractor, temp_docs_dir: Path) -> None:
    """Test that the title becomes a page record and subsections section records."""
    rst_content = """
Getting Started
===============

Morpho is a programmable environment for shape optimisation.

Installation
------------

Build from source.

Functionals
-----------

Integrals over a mesh.
"""
    file_path = temp_docs_dir / "getting-started.rst"
    file_path.write_text(rst_content)

    records = parser.parse_file(file_path, temp_docs_dir)

    assert [record.display_name for record in records] == ["Getting Started", "Installation", "Functionals"]
    page, install, functionals = records
    assert page.kind is SymbolKind.PAGE
    assert page.label == "page"
    assert page.target_url == "getting-started.html"
    assert install.kind is SymbolKind.SECTION
    assert install.label == "Getting Started"
    assert install.target_url == "getting-started.html#installation"
    assert functionals.target_url == "getting-started.html#functionals"


def test_compute_url_in_subdirectory(parser: PageRecordExtractor, temp_docs_dir: Path) -> None:
    """Test URL generation for pages in subdirectories."""
    guide_dir = temp_docs_dir / "guide"
    guide_dir.mkdir()
    file_path = guide_dir / "mesh.rst"
    file_path.write_text("""
Meshes
======

Content.
""")

    records = parser.parse_file(file_path, temp_docs_dir)

    assert records[0].target_url == "guide/mesh.html"


def test_url_prefix(temp_docs_dir: Path) -> None:
    """Test that a configured prefix is prepended to page URLs."""
    file_path = temp_docs_dir / "index.rst"
    file_path.write_text("""
Index
=====
""")

    records = PageRecordExtractor(url_prefix="manual/").parse_file(file_path, temp_docs_dir)

    assert records[0].target_url == "manual/index.html"


def test_fallback_title_from_filename(parser: PageRecordExtractor, temp_docs_dir: Path) -> None:
    """Test fallback to filename when no title is found."""
    file_path = temp_docs_dir / "my-test-file.rst"
    file_path.write_text("""
Just some content without a title.
""")

    records = parser.parse_file(file_path, temp_docs_dir)

    assert len(records) == 1
    assert records[0].display_name == "My Test File"


def test_titles_in_code_blocks_are_ignored(parser: PageRecordExtractor, temp_docs_dir: Path) -> None:
    """Test that headings inside literal blocks are not indexed."""
    file_path = temp_docs_dir / "example.rst"
    file_path.write_text("""
Example
=======

Here is some markup::

    Not A Title
    ===========

Done.
""")

    records = parser.parse_file(file_path, temp_docs_dir)

    assert [record.display_name for record in records] == ["Example"]


def test_parse_rest_extension(parser: PageRecordExtractor, temp_docs_dir: Path) -> None:
    """Test parsing .rest files (alternative RST extension)."""
    file_path = temp_docs_dir / "alternative.rest"
    file_path.write_text("""
Alternative Extension
=====================

This file uses .rest extension.
""")

    records = parser.parse_file(file_path, temp_docs_dir)

    assert records[0].display_name == "Alternative Extension"
    assert records[0].target_url == "alternative.html"


def test_parse_invalid_rst(parser: PageRecordExtractor, temp_docs_dir: Path) -> None:
    """Test that unreadable files return no records."""
    file_path = temp_docs_dir / "invalid.rst"
    file_path.write_bytes(b"\xff\xfe")

    assert parser.parse_file(file_path, temp_docs_dir) == []


def test_parse_empty_file(parser: PageRecordExtractor, temp_docs_dir: Path) -> None:
    """Test parsing an empty RST file."""
    file_path = temp_docs_dir / "empty.rst"
    file_path.write_text("")

    records = parser.parse_file(file_path, temp_docs_dir)

    assert len(records) == 1
    assert records[0].display_name == "Empty"
    assert records[0].target_url == "empty.html"
