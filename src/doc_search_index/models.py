"""Data models for the documentation search index."""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum, IntEnum

SCHEMA_VERSION = 1


class SymbolKind(str, Enum):
    """Kind of documented symbol, used by viewers for grouping and icons."""

    FUNCTION = "function"
    STRUCT = "struct"
    CLASS = "class"
    UNION = "union"
    ENUM = "enum"
    ENUM_VALUE = "enumvalue"
    TYPEDEF = "typedef"
    FIELD = "field"
    VARIABLE = "variable"
    MACRO = "macro"
    FILE = "file"
    NAMESPACE = "namespace"
    GROUP = "group"
    PAGE = "page"
    SECTION = "section"
    SYMBOL = "symbol"

    @classmethod
    def parse(cls, value: "str | SymbolKind") -> "SymbolKind":
        """Convert a raw kind name into a SymbolKind.

        Unknown names degrade to the generic SYMBOL kind so that artifacts
        written by newer builders stay readable.

        Args:
            value: Kind name (case-insensitive) or SymbolKind.

        Returns:
            Matching SymbolKind, or SYMBOL if the name is unknown.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.SYMBOL


@dataclass(frozen=True)
class SymbolRecord:
    """Raw symbol record as supplied by an upstream documentation extractor."""

    display_name: str
    kind: SymbolKind | str
    label: str
    target_url: str


@dataclass(frozen=True)
class Occurrence:
    """One place where an entry is documented."""

    label: str
    target_url: str
    kind: SymbolKind

    @property
    def identity(self) -> tuple[str, str]:
        """Return the (label, target_url) pair used to collapse duplicates."""
        return (self.label, self.target_url)


@dataclass(frozen=True)
class Entry:
    """A named symbol or page, with every location it is documented at."""

    key: str
    display_name: str
    bucket: str
    occurrences: tuple[Occurrence, ...]

    def __post_init__(self) -> None:
        if not self.key:
            msg = "Entry key must not be empty"
            raise ValueError(msg)
        if not self.occurrences:
            msg = f"Entry {self.key!r} has no occurrences"
            raise ValueError(msg)


@dataclass(frozen=True)
class SearchIndex:
    """In-memory form of a complete artifact: entries partitioned by bucket."""

    partitions: Mapping[str, tuple[Entry, ...]]
    schema_version: int = SCHEMA_VERSION

    def bucket_names(self) -> list[str]:
        """Return bucket names in artifact order."""
        return sorted(self.partitions)

    def entries(self) -> Iterator[Entry]:
        """Iterate over every entry in artifact order."""
        for bucket in self.bucket_names():
            yield from self.partitions[bucket]

    def __len__(self) -> int:
        return sum(len(entries) for entries in self.partitions.values())


class MatchTier(IntEnum):
    """Ranking tier of a query match; lower ranks first."""

    EXACT = 0
    PREFIX = 1
    SUBSTRING = 2


@dataclass(frozen=True)
class Match:
    """A ranked query hit."""

    entry: Entry
    tier: MatchTier


@dataclass
class SearchResults:
    """Results delivered for one query.

    ``missing_buckets`` lists partitions that could not be loaded, so an
    empty answer caused by a damaged artifact can be told apart from a
    genuine miss.
    """

    query: str
    matches: list[Match] = field(default_factory=list)
    missing_buckets: list[str] = field(default_factory=list)

    @property
    def entries(self) -> list[Entry]:
        """Return matched entries in rank order."""
        return [match.entry for match in self.matches]

    @property
    def degraded(self) -> bool:
        """Return True when part of the index was unavailable."""
        return bool(self.missing_buckets)
