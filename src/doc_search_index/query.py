"""Incremental query engine over a bucketed search index artifact."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType

from doc_search_index.artifact import ArtifactReader
from doc_search_index.errors import MissingPartitionError
from doc_search_index.models import Entry, Match, MatchTier, SearchResults
from doc_search_index.normaliser import bucket_for, normalise_key

logger = logging.getLogger(__name__)

PartitionLoader = Callable[[str], Awaitable[Sequence[Entry]]]


def classify(key: str, query: str) -> MatchTier | None:
    """Return the match tier of a key for an already normalised query.

    Args:
        key: Entry key.
        query: Normalised query.

    Returns:
        MatchTier, or None if the key does not contain the query.
    """
    if key == query:
        return MatchTier.EXACT
    if key.startswith(query):
        return MatchTier.PREFIX
    if query in key:
        return MatchTier.SUBSTRING
    return None


def rank(entries: Iterable[Entry], query: str, limit: int | None = None) -> list[Match]:
    """Rank entries against a query.

    Exact matches come first, then prefix matches, then substring matches.
    Within a tier shorter keys rank higher, ties broken by key.

    Args:
        entries: Candidate entries.
        query: Normalised, non-empty query.
        limit: Optional maximum number of matches.

    Returns:
        Matches in rank order.
    """
    matches = []
    for entry in entries:
        tier = classify(entry.key, query)
        if tier is not None:
            matches.append(Match(entry=entry, tier=tier))
    matches.sort(key=lambda match: (match.tier, len(match.entry.key), match.entry.key))
    return matches if limit is None else matches[:limit]


@dataclass
class SessionStats:
    """Counters for one query session."""

    queries: int = 0
    superseded: int = 0
    refinements: int = 0
    loads: int = 0
    missing_partitions: int = 0


@dataclass(frozen=True)
class _Answer:
    query: str
    matches: tuple[Match, ...]
    missing_buckets: tuple[str, ...]


class QuerySession:
    """Query engine state owned by a single documentation view.

    Partitions are fetched lazily the first time a query needs them and
    cached until the session is closed. Concurrent queries needing the same
    partition share one pending load. When a newer query is issued while an
    older one is still waiting for a load, the older query returns None
    instead of its results.
    """

    def __init__(self, loader: PartitionLoader, buckets: Iterable[str], scan_all_buckets: bool = True) -> None:
        """Initialise a session.

        Args:
            loader: Coroutine function returning the entries of a bucket;
                raises MissingPartitionError for an unusable partition.
            buckets: Buckets present in the artifact.
            scan_all_buckets: Search every partition for substring matches.
                When False only the bucket of the query's first character
                is searched.
        """
        self._loader = loader
        self._buckets = sorted(set(buckets))
        self._scan_all_buckets = scan_all_buckets
        self._loads: dict[str, asyncio.Task[tuple[Entry, ...]]] = {}
        self._missing: set[str] = set()
        self._generation = 0
        self._last: _Answer | None = None
        self._closed = False
        self.stats = SessionStats()

    @classmethod
    def open(cls, artifact_path: Path, scan_all_buckets: bool = True) -> "QuerySession":
        """Open a session over an artifact directory.

        Args:
            artifact_path: Directory holding the artifact.
            scan_all_buckets: See :class:`QuerySession`.

        Returns:
            New session.

        Raises:
            CorruptArtifactError: If the artifact header is unusable.
        """
        reader = ArtifactReader(artifact_path)
        buckets = reader.bucket_names()

        async def load(bucket: str) -> tuple[Entry, ...]:
            return await asyncio.to_thread(reader.load_partition, bucket)

        return cls(load, buckets, scan_all_buckets=scan_all_buckets)

    @property
    def buckets(self) -> list[str]:
        """Return the buckets known to this session."""
        return list(self._buckets)

    def is_loaded(self, bucket: str) -> bool:
        """Return True if the bucket's partition has finished loading."""
        task = self._loads.get(bucket)
        return task is not None and task.done()

    async def _load(self, bucket: str) -> tuple[Entry, ...]:
        self.stats.loads += 1
        logger.debug("Loading partition %r", bucket)
        try:
            return tuple(await self._loader(bucket))
        except MissingPartitionError as exc:
            logger.warning("Search partition %r unavailable: %s", bucket, exc.reason)
            self.stats.missing_partitions += 1
            self._missing.add(bucket)
            return ()

    async def partition(self, bucket: str) -> tuple[Entry, ...]:
        """Return the entries of a bucket, loading it at most once.

        Args:
            bucket: Bucket name.

        Returns:
            Entries of the bucket; empty when the bucket is unknown or its
            partition is unavailable.
        """
        if bucket not in self._buckets:
            return ()
        task = self._loads.get(bucket)
        if task is None:
            task = asyncio.ensure_future(self._load(bucket))
            self._loads[bucket] = task
        # A superseded caller must not cancel a load other callers share
        return await asyncio.shield(task)

    def _buckets_for(self, query: str) -> list[str]:
        home = bucket_for(query)
        if not self._scan_all_buckets:
            return [home]
        # Only the home bucket holds exact and prefix matches. It is requested
        # first, but every listed bucket is then loaded concurrently.
        return [home] + [bucket for bucket in self._buckets if bucket != home]

    async def query(self, text: str, limit: int | None = None) -> SearchResults | None:
        """Run a query as the user types.

        Args:
            text: Partial, case-insensitive query.
            limit: Optional maximum number of results.

        Returns:
            Ranked results, or None if a newer query was issued before
            this one finished loading.

        Raises:
            ValueError: If the query is blank or the limit is not positive.
            RuntimeError: If the session has been closed.
        """
        if self._closed:
            msg = "Query session is closed"
            raise RuntimeError(msg)
        if limit is not None and limit < 1:
            msg = f"limit must be positive, got {limit}"
            raise ValueError(msg)
        query = normalise_key(text)
        if not query:
            msg = "Query must not be empty"
            raise ValueError(msg)

        self._generation += 1
        generation = self._generation
        self.stats.queries += 1

        previous = self._last
        if previous is not None and query.startswith(previous.query):
            # Every key containing the longer query contains the shorter one
            self.stats.refinements += 1
            candidates: Iterable[Entry] = (match.entry for match in previous.matches)
            missing = previous.missing_buckets
        else:
            buckets = self._buckets_for(query)
            partitions = await asyncio.gather(*(self.partition(bucket) for bucket in buckets))
            if generation != self._generation:
                self.stats.superseded += 1
                logger.debug("Discarding superseded query %r", text)
                return None
            candidates = [entry for entries in partitions for entry in entries]
            missing = tuple(bucket for bucket in buckets if bucket in self._missing)

        matches = rank(candidates, query)
        self._last = _Answer(query=query, matches=tuple(matches), missing_buckets=missing)
        return SearchResults(
            query=query,
            matches=matches if limit is None else matches[:limit],
            missing_buckets=list(missing),
        )

    def close(self) -> None:
        """Discard cached partitions and cancel pending loads."""
        for task in self._loads.values():
            if not task.done():
                task.cancel()
        self._loads.clear()
        self._missing.clear()
        self._last = None
        self._closed = True

    async def __aenter__(self) -> "QuerySession":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
