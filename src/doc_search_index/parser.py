"""Extracts page and section records from reStructuredText documentation pages."""

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import docutils.frontend  # type: ignore[import-untyped]
import docutils.nodes  # type: ignore[import-untyped]
import docutils.parsers.rst  # type: ignore[import-untyped]
import docutils.utils  # type: ignore[import-untyped]

from doc_search_index.models import SymbolKind, SymbolRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Heading:
    """A section title found in a page."""

    title: str
    anchor: str | None
    depth: int


class HeadingVisitor(docutils.nodes.GenericNodeVisitor):  # type: ignore[misc]
    """Visitor collecting section titles and their anchor ids."""

    def __init__(self, document: docutils.nodes.document) -> None:
        """Initialise heading visitor.

        Args:
            document: Docutils document tree.
        """
        super().__init__(document)
        self.headings: list[Heading] = []

    def visit_title(self, node: docutils.nodes.title) -> None:
        """Record a section title.

        Args:
            node: Title node.
        """
        section = node.parent
        if not isinstance(section, docutils.nodes.section):
            return
        ids = section.get("ids") or []
        depth = 0
        parent = section.parent
        while parent is not None:
            if isinstance(parent, docutils.nodes.section):
                depth += 1
            parent = parent.parent
        self.headings.append(Heading(title=node.astext().strip(), anchor=ids[0] if ids else None, depth=depth))

    def visit_literal_block(self, node: docutils.nodes.literal_block) -> None:
        """Skip code blocks.

        Args:
            node: Literal block node.

        Raises:
            docutils.nodes.SkipNode: Always raised to skip code blocks.
        """
        raise docutils.nodes.SkipNode

    def default_visit(self, node: docutils.nodes.Node) -> None:
        """Default visit handler (no-op).

        Args:
            node: Any node.
        """

    def default_departure(self, node: docutils.nodes.Node) -> None:
        """Default departure handler (no-op).

        Args:
            node: Any node.
        """


class PageRecordExtractor:
    """Turns RST pages into Page and Section symbol records."""

    def __init__(self, url_prefix: str = "") -> None:
        """Initialise extractor.

        Args:
            url_prefix: Prefix prepended to every generated relative URL.
        """
        self.url_prefix = url_prefix

    def parse_file(self, file_path: Path, base_path: Path) -> list[SymbolRecord]:
        """Parse an RST page and return its records.

        Args:
            file_path: Path to the RST file.
            base_path: Root of the documentation tree.

        Returns:
            One Page record followed by one Section record per subsection,
            or an empty list if the page cannot be read or parsed.
        """
        try:
            source = file_path.read_text(encoding="utf-8")
            doctree = self._parse_rst(source, file_path)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to parse page: %s", file_path, exc_info=True)
            return []

        visitor = HeadingVisitor(doctree)
        doctree.walk(visitor)

        page_url = self._compute_url(file_path.relative_to(base_path))
        headings = visitor.headings
        if headings and headings[0].depth == 0:
            page_title, subsections = headings[0].title, headings[1:]
        else:
            page_title, subsections = self._fallback_title(file_path), headings

        records = [SymbolRecord(display_name=page_title, kind=SymbolKind.PAGE, label="page", target_url=page_url)]
        for heading in subsections:
            if heading.anchor is None:
                continue
            records.append(
                SymbolRecord(
                    display_name=heading.title,
                    kind=SymbolKind.SECTION,
                    label=page_title,
                    target_url=f"{page_url}#{heading.anchor}",
                )
            )
        return records

    def _parse_rst(self, source: str, file_path: Path) -> docutils.nodes.document:
        """Parse RST source into docutils document tree.

        Args:
            source: RST source text.
            file_path: Path to the file (for error reporting).

        Returns:
            Docutils document tree.
        """
        parser = docutils.parsers.rst.Parser()
        settings = docutils.frontend.get_default_settings(docutils.parsers.rst.Parser)
        settings.report_level = 5  # Suppress warnings
        document = docutils.utils.new_document(str(file_path), settings)
        parser.parse(source, document)
        return document

    @staticmethod
    def _fallback_title(file_path: Path) -> str:
        return file_path.stem.replace("-", " ").replace("_", " ").title()

    def _compute_url(self, relative_path: Path) -> str:
        """Compute the relative URL of the rendered page.

        Args:
            relative_path: Path relative to the documentation root.

        Returns:
            Relative HTML URL with POSIX separators.
        """
        html_path = PurePosixPath(relative_path.as_posix()).with_suffix(".html")
        return f"{self.url_prefix}{html_path}"
