"""Reading and writing the on-disk search index artifact.

An artifact is a directory holding a small JSON header plus one JSON file
per bucket, so a browser client can download a single partition at a time:

    index.json        {"schema_version": 1, "generator": ..., "buckets": [...]}
    all_6c.json       entries whose key starts with "l"
    all_misc.json     entries whose key starts with a non-letter
"""

import hashlib
import json
import logging
import shutil
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from doc_search_index.errors import CorruptArtifactError, MissingPartitionError
from doc_search_index.models import SCHEMA_VERSION, Entry, Occurrence, SearchIndex, SymbolKind
from doc_search_index.normaliser import bucket_slug

logger = logging.getLogger(__name__)

HEADER_FILE = "index.json"
GENERATOR = "doc-search-index"


def _dump(payload: Any) -> bytes:
    """Serialise JSON in the stable, diffable layout used for every artifact file."""
    return (json.dumps(payload, indent=1, ensure_ascii=False) + "\n").encode("utf-8")


def encode_partition(entries: Iterable[Entry]) -> bytes:
    """Serialise the entries of one bucket.

    Args:
        entries: Entries in artifact order.

    Returns:
        UTF-8 encoded JSON document.
    """
    return _dump(
        [
            {
                "key": entry.key,
                "display_name": entry.display_name,
                "occurrences": [[occ.label, occ.target_url, occ.kind.value] for occ in entry.occurrences],
            }
            for entry in entries
        ]
    )


def decode_partition(data: bytes, bucket: str) -> tuple[Entry, ...]:
    """Parse the entries of one bucket.

    Args:
        data: Raw partition file contents.
        bucket: Bucket the file was stored under.

    Returns:
        Tuple of entries in file order.

    Raises:
        ValueError: If the document is not a valid partition.
    """
    payload = json.loads(data.decode("utf-8"))
    if not isinstance(payload, list):
        msg = "partition is not a list of entries"
        raise ValueError(msg)

    entries = []
    for item in payload:
        occurrences = tuple(
            Occurrence(label=str(label), target_url=str(target_url), kind=SymbolKind.parse(kind))
            for label, target_url, kind in item["occurrences"]
        )
        entries.append(
            Entry(
                key=str(item["key"]),
                display_name=str(item["display_name"]),
                bucket=bucket,
                occurrences=occurrences,
            )
        )
    return tuple(entries)


@dataclass(frozen=True)
class PartitionInfo:
    """Header record describing one bucket file."""

    bucket: str
    file: str
    entries: int
    sha256: str


@dataclass(frozen=True)
class ArtifactHeader:
    """Parsed artifact header."""

    schema_version: int
    generator: str
    partitions: Mapping[str, PartitionInfo]


class ArtifactWriter:
    """Writes a complete artifact, replacing any previous build wholesale."""

    def __init__(self, artifact_path: Path) -> None:
        """Initialise writer for the given directory.

        Args:
            artifact_path: Directory the artifact is written to.
        """
        self.artifact_path = artifact_path

    def write(self, index: SearchIndex, extra_files: Mapping[str, str] | None = None) -> Path:
        """Write the index and swap it into place.

        Args:
            index: Index to persist.
            extra_files: Additional text files (relative path to content)
                published alongside the partitions.

        Returns:
            Path to the artifact directory.
        """
        staging = self.artifact_path.with_name(self.artifact_path.name + ".tmp")
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)

        buckets = []
        for bucket in index.bucket_names():
            entries = index.partitions[bucket]
            payload = encode_partition(entries)
            file_name = f"all_{bucket_slug(bucket)}.json"
            (staging / file_name).write_bytes(payload)
            buckets.append(
                {
                    "bucket": bucket,
                    "file": file_name,
                    "entries": len(entries),
                    "sha256": hashlib.sha256(payload).hexdigest(),
                }
            )

        header = {"schema_version": index.schema_version, "generator": GENERATOR, "buckets": buckets}
        (staging / HEADER_FILE).write_bytes(_dump(header))

        for relative, content in (extra_files or {}).items():
            target = staging / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        self._swap_in(staging)
        logger.info("Wrote %d buckets to %s", len(buckets), self.artifact_path)
        return self.artifact_path

    def _swap_in(self, staging: Path) -> None:
        """Replace the published artifact with the staged one."""
        retired = self.artifact_path.with_name(self.artifact_path.name + ".old")
        if retired.exists():
            shutil.rmtree(retired)
        if self.artifact_path.exists():
            self.artifact_path.rename(retired)
        staging.rename(self.artifact_path)
        if retired.exists():
            shutil.rmtree(retired)


class ArtifactReader:
    """Loads an artifact header and its partitions on demand."""

    def __init__(self, artifact_path: Path) -> None:
        """Initialise reader for the given directory.

        Args:
            artifact_path: Directory holding the artifact.
        """
        self.artifact_path = artifact_path
        self._header: ArtifactHeader | None = None

    def load_header(self) -> ArtifactHeader:
        """Read and validate the artifact header.

        Returns:
            Parsed header, cached after the first call.

        Raises:
            CorruptArtifactError: If the header is missing, unparsable,
                structurally invalid or written by a newer schema.
        """
        if self._header is not None:
            return self._header

        header_path = self.artifact_path / HEADER_FILE
        try:
            payload = json.loads(header_path.read_bytes().decode("utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            msg = f"Cannot read artifact header {header_path}: {exc}"
            raise CorruptArtifactError(msg) from exc

        try:
            self._header = self._parse_header(payload)
        except (KeyError, TypeError, ValueError) as exc:
            msg = f"Invalid artifact header {header_path}: {exc}"
            raise CorruptArtifactError(msg) from exc
        return self._header

    @staticmethod
    def _parse_header(payload: Any) -> ArtifactHeader:
        if not isinstance(payload, dict):
            msg = "header is not an object"
            raise TypeError(msg)

        schema_version = payload["schema_version"]
        if not isinstance(schema_version, int) or schema_version < 1:
            msg = f"bad schema version {schema_version!r}"
            raise ValueError(msg)
        if schema_version > SCHEMA_VERSION:
            msg = f"schema version {schema_version} is newer than supported version {SCHEMA_VERSION}"
            raise ValueError(msg)

        partitions = {}
        for item in payload["buckets"]:
            info = PartitionInfo(
                bucket=str(item["bucket"]),
                file=str(item["file"]),
                entries=int(item["entries"]),
                sha256=str(item["sha256"]),
            )
            # Partition files must sit directly inside the artifact directory
            if len(info.bucket) != 1 or Path(info.file).name != info.file:
                msg = f"bad partition record {item!r}"
                raise ValueError(msg)
            partitions[info.bucket] = info

        return ArtifactHeader(
            schema_version=schema_version,
            generator=str(payload.get("generator", "")),
            partitions=partitions,
        )

    def bucket_names(self) -> list[str]:
        """Return the buckets listed in the header."""
        return sorted(self.load_header().partitions)

    def load_partition(self, bucket: str) -> tuple[Entry, ...]:
        """Load the entries of one bucket.

        Args:
            bucket: Bucket name.

        Returns:
            Entries of the bucket in artifact order.

        Raises:
            CorruptArtifactError: If the header itself is unusable.
            MissingPartitionError: If the bucket is absent, its file is
                missing, or its contents fail verification.
        """
        info = self.load_header().partitions.get(bucket)
        if info is None:
            raise MissingPartitionError(bucket, "not listed in artifact header")

        partition_path = self.artifact_path / info.file
        try:
            data = partition_path.read_bytes()
        except OSError as exc:
            raise MissingPartitionError(bucket, f"cannot read {partition_path}: {exc}") from exc

        if hashlib.sha256(data).hexdigest() != info.sha256:
            raise MissingPartitionError(bucket, f"checksum mismatch for {partition_path}")

        try:
            return decode_partition(data, bucket)
        except (UnicodeDecodeError, KeyError, TypeError, ValueError) as exc:
            raise MissingPartitionError(bucket, f"cannot parse {partition_path}: {exc}") from exc

    def load_index(self) -> SearchIndex:
        """Load every partition into memory.

        Returns:
            The complete index.

        Raises:
            CorruptArtifactError: If the header is unusable.
            MissingPartitionError: If any partition is unusable.
        """
        header = self.load_header()
        return SearchIndex(
            partitions={bucket: self.load_partition(bucket) for bucket in sorted(header.partitions)},
            schema_version=header.schema_version,
        )
