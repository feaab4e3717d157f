"""Builds a search index artifact from a documentation source tree."""

import json
import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from doc_search_index.artifact import ArtifactWriter
from doc_search_index.builder import BuildReport, IndexBuilder
from doc_search_index.doxygen import parse_search_data, render_search_data
from doc_search_index.models import SearchIndex, SymbolKind, SymbolRecord
from doc_search_index.normaliser import bucket_slug
from doc_search_index.parser import PageRecordExtractor

logger = logging.getLogger(__name__)


class SearchIndexer:
    """Collects symbol records from a documentation tree and publishes the artifact.

    Three kinds of source are understood:

    * ``*.rst`` / ``*.rest`` pages, indexed by page and section title;
    * ``*.jsonl`` record streams from an upstream extractor, one
      ``{"name", "kind", "label", "url"}`` object per line;
    * Doxygen ``all_*.js`` search data files.
    """

    PAGE_PATTERNS = ("*.rst", "*.rest")
    RECORD_PATTERN = "*.jsonl"
    SEARCH_DATA_PATTERN = "all_*.js"
    JS_EXPORT_DIR = "search"

    def __init__(self, writer: ArtifactWriter, export_js: bool = False, url_prefix: str = "", workers: int = 1) -> None:
        """Initialise indexer with an artifact writer.

        Args:
            writer: ArtifactWriter the finished index is published through.
            export_js: Also publish Doxygen-compatible ``search/all_*.js`` files.
            url_prefix: Prefix for URLs of pages parsed from RST sources.
            workers: Number of source files read in parallel.
        """
        self.writer = writer
        self.export_js = export_js
        self.workers = max(1, workers)
        self.parser = PageRecordExtractor(url_prefix=url_prefix)

    def index_records(self, records: Iterable[SymbolRecord]) -> BuildReport:
        """Build and publish an index from records already in memory.

        Args:
            records: Symbol records in any order.

        Returns:
            Report of accepted, duplicate and rejected records.
        """
        builder = IndexBuilder()
        builder.add_all(records)
        return self._publish(builder)

    def index_from_path(self, docs_path: Path) -> BuildReport:
        """Build and publish an index from every source under a directory.

        Args:
            docs_path: Path to the documentation directory.

        Returns:
            Report of accepted, duplicate and rejected records.

        Raises:
            ValueError: If the documentation path does not exist.
        """
        if not docs_path.exists():
            msg = f"Documentation path does not exist: {docs_path}"
            raise ValueError(msg)

        sources = self._find_sources(docs_path)
        logger.info("Found %d source files to index", len(sources))

        builder = IndexBuilder()
        if self.workers == 1:
            for file_path in sources:
                self._index_file(builder, file_path, docs_path)
        else:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                shards = pool.map(lambda path: self._index_shard(path, docs_path), sources)
                for shard in shards:
                    builder.merge(shard)

        return self._publish(builder)

    def _find_sources(self, docs_path: Path) -> list[Path]:
        patterns = (*self.PAGE_PATTERNS, self.RECORD_PATTERN, self.SEARCH_DATA_PATTERN)
        found = {path for pattern in patterns for path in docs_path.rglob(pattern) if path.is_file()}
        return sorted(found)

    def _index_shard(self, file_path: Path, docs_path: Path) -> IndexBuilder:
        shard = IndexBuilder()
        self._index_file(shard, file_path, docs_path)
        return shard

    def _index_file(self, builder: IndexBuilder, file_path: Path, docs_path: Path) -> None:
        """Add the records of one source file to a builder.

        Args:
            builder: Builder receiving the records.
            file_path: Source file.
            docs_path: Root of the documentation tree.
        """
        if file_path.suffix == ".jsonl":
            self._index_record_file(builder, file_path)
        elif file_path.suffix == ".js":
            self._index_search_data(builder, file_path)
        else:
            records = self.parser.parse_file(file_path, docs_path)
            if not records:
                builder.reject(str(file_path), "unparsable page")
            builder.add_all(records)
        logger.debug("Indexed source: %s", file_path)

    @staticmethod
    def _index_record_file(builder: IndexBuilder, file_path: Path) -> None:
        """Add records from a JSON Lines stream.

        Args:
            builder: Builder receiving the records.
            file_path: ``.jsonl`` file.
        """
        try:
            lines = file_path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as exc:
            builder.reject(str(file_path), f"unreadable record file: {exc}")
            return

        for line_number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            location = f"{file_path}:{line_number}"
            try:
                item = json.loads(line)
            except json.JSONDecodeError as exc:
                builder.reject(location, f"invalid JSON: {exc.msg}")
                continue
            if not isinstance(item, dict):
                builder.reject(location, "record is not an object")
                continue
            builder.add(
                SymbolRecord(
                    display_name=str(item.get("name") or ""),
                    kind=str(item.get("kind") or SymbolKind.SYMBOL.value),
                    label=str(item.get("label") or ""),
                    target_url=str(item.get("url") or ""),
                )
            )

    @staticmethod
    def _index_search_data(builder: IndexBuilder, file_path: Path) -> None:
        """Add records from a Doxygen search data file.

        Args:
            builder: Builder receiving the records.
            file_path: ``all_*.js`` file.
        """
        try:
            records = parse_search_data(file_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            builder.reject(str(file_path), f"unreadable search data: {exc}")
            return
        builder.add_all(records)

    def _render_js(self, index: SearchIndex) -> dict[str, str]:
        files = {}
        number = 0
        for bucket in index.bucket_names():
            entries = index.partitions[bucket]
            files[f"{self.JS_EXPORT_DIR}/all_{bucket_slug(bucket)}.js"] = render_search_data(entries, start=number)
            number += len(entries)
        return files

    def _publish(self, builder: IndexBuilder) -> BuildReport:
        index = builder.build()
        extra_files = self._render_js(index) if self.export_js else None
        self.writer.write(index, extra_files=extra_files)

        report = builder.report
        if report.rejected:
            logger.warning("%d records were rejected during the build", report.rejected_count)
        logger.info("Successfully indexed %d entries", len(index))
        return report
