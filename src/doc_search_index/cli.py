"""Command line interface for building and querying search index artifacts."""

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from doc_search_index.artifact import ArtifactWriter
from doc_search_index.errors import CorruptArtifactError
from doc_search_index.indexer import SearchIndexer
from doc_search_index.models import SearchResults
from doc_search_index.query import QuerySession

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_BAD_INPUT = 1
EXIT_UNAVAILABLE = 2


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser.

    Returns:
        Configured ArgumentParser with ``build`` and ``query`` commands.
    """
    parser = argparse.ArgumentParser(prog="doc-search-index", description=__doc__)
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity")
    commands = parser.add_subparsers(dest="command", required=True)

    build = commands.add_parser("build", help="Build an artifact from a documentation tree")
    build.add_argument("source", type=Path, help="Directory of .rst pages, .jsonl records or Doxygen all_*.js files")
    build.add_argument("output", type=Path, help="Artifact directory to (re)write")
    build.add_argument("--js", action="store_true", help="Also write Doxygen-compatible search/all_*.js files")
    build.add_argument("--url-prefix", default="", help="Prefix for URLs of RST pages")
    build.add_argument("--workers", type=int, default=1, help="Source files read in parallel")

    query = commands.add_parser("query", help="Query an artifact")
    query.add_argument("artifact", type=Path, help="Artifact directory")
    query.add_argument("terms", nargs="+", help="Queries, run in order as if typed")
    query.add_argument("--limit", type=int, default=None, help="Maximum results per query")
    query.add_argument("--home-bucket-only", action="store_true", help="Do not scan other buckets for substrings")
    return parser


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _run_build(args: argparse.Namespace) -> int:
    indexer = SearchIndexer(
        ArtifactWriter(args.output),
        export_js=args.js,
        url_prefix=args.url_prefix,
        workers=args.workers,
    )
    try:
        report = indexer.index_from_path(args.source)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_BAD_INPUT

    for rejected in report.rejected:
        print(f"warning: rejected {rejected.record!r}: {rejected.reason}", file=sys.stderr)
    print(
        f"Indexed {report.accepted} records into {args.output} "
        f"({report.duplicates} duplicates collapsed, {report.rejected_count} rejected)"
    )
    return EXIT_OK


def _print_results(results: SearchResults) -> None:
    print(f"{results.query}: {len(results.matches)} results")
    for match in results.matches:
        entry = match.entry
        print(f"  {entry.display_name}  [{match.tier.name.lower()}]")
        for occurrence in entry.occurrences:
            print(f"      {occurrence.label}  ({occurrence.kind.value})  -> {occurrence.target_url}")
    if results.degraded:
        print(f"warning: partitions unavailable: {', '.join(results.missing_buckets)}", file=sys.stderr)


async def _query_all(session: QuerySession, terms: Sequence[str], limit: int | None) -> None:
    async with session:
        for term in terms:
            results = await session.query(term, limit=limit)
            if results is not None:
                _print_results(results)


def _run_query(args: argparse.Namespace) -> int:
    try:
        session = QuerySession.open(args.artifact, scan_all_buckets=not args.home_bucket_only)
    except CorruptArtifactError as exc:
        print(f"search unavailable: {exc}", file=sys.stderr)
        return EXIT_UNAVAILABLE

    try:
        asyncio.run(_query_all(session, args.terms, args.limit))
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_BAD_INPUT
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line interface.

    Args:
        argv: Arguments, defaulting to ``sys.argv[1:]``.

    Returns:
        Process exit status.
    """
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    logger.debug("Running %s", args.command)
    if args.command == "build":
        return _run_build(args)
    return _run_query(args)


if __name__ == "__main__":
    sys.exit(main())
