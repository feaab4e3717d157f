"""Index builder: folds symbol records into bucketed, ordered entries."""

import logging
import unicodedata
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from doc_search_index.errors import MalformedRecordError
from doc_search_index.models import SCHEMA_VERSION, Entry, Occurrence, SearchIndex, SymbolKind, SymbolRecord
from doc_search_index.normaliser import bucket_for, normalise_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RejectedRecord:
    """A record the builder refused, with the reason."""

    record: SymbolRecord | str
    reason: str


@dataclass
class BuildReport:
    """Counters surfaced to the operator after a build."""

    accepted: int = 0
    duplicates: int = 0
    rejected: list[RejectedRecord] = field(default_factory=list)

    @property
    def rejected_count(self) -> int:
        """Return the number of rejected records."""
        return len(self.rejected)

    def absorb(self, other: "BuildReport") -> None:
        """Add another report's counters to this one.

        Args:
            other: Report from a shard builder.
        """
        self.accepted += other.accepted
        self.duplicates += other.duplicates
        self.rejected.extend(other.rejected)


@dataclass
class _PendingEntry:
    display_name: str
    occurrences: dict[tuple[str, str], Occurrence] = field(default_factory=dict)


class IndexBuilder:
    """Accumulates symbol records for a single documentation build.

    Record order never affects the result: entries are ordered by key and
    occurrences by target URL when the index is built, so builders for
    separate input shards can be merged and still produce identical output.
    """

    def __init__(self) -> None:
        """Initialise an empty builder."""
        self._entries: dict[str, _PendingEntry] = {}
        self.report = BuildReport()

    @staticmethod
    def _validate(record: SymbolRecord) -> str:
        """Check a record and compute its key.

        Args:
            record: Record to validate.

        Returns:
            Normalised key for the record.

        Raises:
            MalformedRecordError: If the record cannot be indexed.
        """
        if not record.display_name or not record.display_name.strip():
            raise MalformedRecordError("empty display name", record)
        if not record.target_url or not record.target_url.strip():
            raise MalformedRecordError("empty target URL", record)
        if any(unicodedata.category(char) == "Cc" for char in record.display_name):
            raise MalformedRecordError("control characters in display name", record)

        key = normalise_key(record.display_name)
        if not key:
            raise MalformedRecordError("display name normalises to an empty key", record)
        return key

    def add(self, record: SymbolRecord) -> bool:
        """Add one record to the index.

        Malformed records are logged, counted in the report and skipped.

        Args:
            record: Symbol record from an upstream extractor.

        Returns:
            True if the record was accepted.
        """
        try:
            key = self._validate(record)
        except MalformedRecordError as exc:
            self.reject(record, exc.reason)
            return False

        display_name = record.display_name.strip()
        occurrence = Occurrence(
            label=record.label or "",
            target_url=record.target_url.strip(),
            kind=SymbolKind.parse(record.kind),
        )

        pending = self._entries.get(key)
        if pending is None:
            pending = _PendingEntry(display_name=display_name)
            self._entries[key] = pending
        elif display_name < pending.display_name:
            pending.display_name = display_name

        self.report.accepted += 1
        self._add_occurrence(pending, occurrence)
        logger.debug("Indexed %s -> %s", key, occurrence.target_url)
        return True

    def _add_occurrence(self, pending: _PendingEntry, occurrence: Occurrence) -> None:
        existing = pending.occurrences.get(occurrence.identity)
        if existing is None:
            pending.occurrences[occurrence.identity] = occurrence
            return
        self.report.duplicates += 1
        # Identical location reported with two kinds: keep one deterministically
        if occurrence.kind.value < existing.kind.value:
            pending.occurrences[occurrence.identity] = occurrence

    def add_all(self, records: Iterable[SymbolRecord]) -> BuildReport:
        """Add every record from an iterable.

        Args:
            records: Symbol records in any order.

        Returns:
            The builder's cumulative report.
        """
        for record in records:
            self.add(record)
        return self.report

    def reject(self, source: SymbolRecord | str, reason: str) -> None:
        """Record input that could not be turned into an entry.

        Args:
            source: The offending record, or a description of unreadable
                input such as ``records.jsonl:12``.
            reason: Why it was rejected.
        """
        name = source.display_name if isinstance(source, SymbolRecord) else source
        logger.warning("Rejected record %r: %s", name, reason)
        self.report.rejected.append(RejectedRecord(record=source, reason=reason))

    def merge(self, other: "IndexBuilder") -> None:
        """Merge the entries of a builder that processed another input shard.

        Occurrences are merged per key; nothing is overwritten.

        Args:
            other: Builder for a different shard of the same build.
        """
        for key, theirs in other._entries.items():
            ours = self._entries.get(key)
            if ours is None:
                ours = _PendingEntry(display_name=theirs.display_name)
                self._entries[key] = ours
            elif theirs.display_name < ours.display_name:
                ours.display_name = theirs.display_name
            for occurrence in theirs.occurrences.values():
                self._add_occurrence(ours, occurrence)
        self.report.absorb(other.report)

    def build(self) -> SearchIndex:
        """Produce the partitioned index from everything added so far.

        Returns:
            SearchIndex with buckets and entries in ordinal key order.
        """
        partitions: dict[str, list[Entry]] = defaultdict(list)
        for key in sorted(self._entries):
            pending = self._entries[key]
            occurrences = sorted(
                pending.occurrences.values(),
                key=lambda occ: (occ.target_url, occ.label, occ.kind.value),
            )
            bucket = bucket_for(key)
            partitions[bucket].append(
                Entry(
                    key=key,
                    display_name=pending.display_name,
                    bucket=bucket,
                    occurrences=tuple(occurrences),
                )
            )

        logger.info(
            "Built index: %d entries in %d buckets (%d accepted, %d duplicates, %d rejected)",
            len(self._entries),
            len(partitions),
            self.report.accepted,
            self.report.duplicates,
            self.report.rejected_count,
        )
        return SearchIndex(
            partitions={bucket: tuple(entries) for bucket, entries in sorted(partitions.items())},
            schema_version=SCHEMA_VERSION,
        )
