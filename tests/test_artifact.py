"""Tests for artifact reading and writing."""

import json
import random
from pathlib import Path

import pytest

from doc_search_index.artifact import HEADER_FILE, ArtifactReader, ArtifactWriter, decode_partition
from doc_search_index.builder import IndexBuilder
from doc_search_index.errors import CorruptArtifactError, MissingPartitionError
from doc_search_index.models import SearchIndex, SymbolKind, SymbolRecord

RECORDS = [
    SymbolRecord("lex", SymbolKind.FUNCTION, "lex(lexer *l, token *tok, error *err): parse.c", "parse_8c.html#ac8f"),
    SymbolRecord("lex", SymbolKind.FUNCTION, "lex(lexer *l, token *tok, error *err): parse.c", "parse_8h.html#ac8f"),
    SymbolRecord("lexer", SymbolKind.STRUCT, "", "structlexer.html"),
    SymbolRecord("linedit.c", SymbolKind.FILE, "", "linedit_8c.html"),
    SymbolRecord("functional_validateargs", SymbolKind.FUNCTION, "functional.c", "functional_8c.html#a1"),
    SymbolRecord("2d_area", SymbolKind.FUNCTION, "functional.c", "functional_8c.html#a2"),
    SymbolRecord("Überblick", SymbolKind.PAGE, "page", "ueberblick.html"),
]


def _build(records: list[SymbolRecord]) -> SearchIndex:
    builder = IndexBuilder()
    builder.add_all(records)
    return builder.build()


@pytest.fixture
def index() -> SearchIndex:
    """Build the sample index.

    Returns:
        SearchIndex built from RECORDS.
    """
    return _build(RECORDS)


@pytest.fixture
def artifact(tmp_path: Path, index: SearchIndex) -> Path:
    """Write the sample index to a temporary artifact.

    Args:
        tmp_path: Pytest temporary directory fixture.
        index: Sample index fixture.

    Returns:
        Path to the artifact directory.
    """
    return ArtifactWriter(tmp_path / "index").write(index)


def test_write_creates_header_and_partitions(artifact: Path) -> None:
    """Test the artifact layout."""
    header = json.loads((artifact / HEADER_FILE).read_text(encoding="utf-8"))

    assert header["schema_version"] == 1
    assert [item["bucket"] for item in header["buckets"]] == ["_", "f", "l", "ü"]
    assert [item["file"] for item in header["buckets"]] == ["all_misc.json", "all_66.json", "all_6c.json", "all_fc.json"]
    assert (artifact / "all_6c.json").exists()


def test_partition_file_contents(artifact: Path) -> None:
    """Test the serialised form of one bucket."""
    payload = json.loads((artifact / "all_6c.json").read_text(encoding="utf-8"))

    assert [item["key"] for item in payload] == ["lex", "lexer", "linedit.c"]
    assert payload[0]["occurrences"][0] == [
        "lex(lexer *l, token *tok, error *err): parse.c",
        "parse_8c.html#ac8f",
        "function",
    ]


def test_round_trip(artifact: Path, index: SearchIndex) -> None:
    """Test that a written artifact loads back to an equal index."""
    loaded = ArtifactReader(artifact).load_index()

    assert loaded == index


def test_rebuild_is_byte_identical(tmp_path: Path) -> None:
    """Test that shuffled input produces byte-identical artifacts."""
    shuffled = list(RECORDS)
    random.Random(7).shuffle(shuffled)

    first = ArtifactWriter(tmp_path / "first").write(_build(RECORDS))
    second = ArtifactWriter(tmp_path / "second").write(_build(shuffled))

    first_files = sorted(path.name for path in first.iterdir())
    assert first_files == sorted(path.name for path in second.iterdir())
    for name in first_files:
        assert (first / name).read_bytes() == (second / name).read_bytes()


def test_write_replaces_previous_artifact(tmp_path: Path) -> None:
    """Test that a rebuild removes partitions the new index no longer has."""
    target = tmp_path / "index"
    ArtifactWriter(target).write(_build(RECORDS))

    ArtifactWriter(target).write(_build([SymbolRecord("zeta", SymbolKind.VARIABLE, "", "zeta.html")]))

    assert sorted(path.name for path in target.iterdir()) == ["all_7a.json", HEADER_FILE]
    assert not (tmp_path / "index.tmp").exists()
    assert not (tmp_path / "index.old").exists()


def test_write_extra_files(tmp_path: Path, index: SearchIndex) -> None:
    """Test that extra files are published with the artifact."""
    target = ArtifactWriter(tmp_path / "index").write(index, extra_files={"search/all_6c.js": "var searchData=[];\n"})

    assert (target / "search" / "all_6c.js").read_text(encoding="utf-8") == "var searchData=[];\n"


def test_load_single_partition(artifact: Path) -> None:
    """Test lazy loading of one bucket."""
    entries = ArtifactReader(artifact).load_partition("_")

    assert [entry.key for entry in entries] == ["2d_area"]
    assert entries[0].bucket == "_"


def test_missing_bucket(artifact: Path) -> None:
    """Test that a bucket absent from the header is reported missing."""
    with pytest.raises(MissingPartitionError, match="not listed"):
        ArtifactReader(artifact).load_partition("q")


def test_missing_partition_file(artifact: Path) -> None:
    """Test that a deleted partition file is reported missing."""
    (artifact / "all_6c.json").unlink()
    reader = ArtifactReader(artifact)

    with pytest.raises(MissingPartitionError) as excinfo:
        reader.load_partition("l")

    assert excinfo.value.bucket == "l"
    # Other buckets stay readable
    assert reader.load_partition("f")


def test_tampered_partition(artifact: Path) -> None:
    """Test that a partition failing its checksum is reported missing."""
    path = artifact / "all_6c.json"
    path.write_text(path.read_text(encoding="utf-8").replace("lexer", "lexed"), encoding="utf-8")

    with pytest.raises(MissingPartitionError, match="checksum"):
        ArtifactReader(artifact).load_partition("l")


def test_load_index_fails_on_missing_partition(artifact: Path) -> None:
    """Test that a full load requires every partition."""
    (artifact / "all_66.json").unlink()

    with pytest.raises(MissingPartitionError):
        ArtifactReader(artifact).load_index()


def test_missing_header(tmp_path: Path) -> None:
    """Test that a directory without a header is corrupt."""
    with pytest.raises(CorruptArtifactError, match="Cannot read artifact header"):
        ArtifactReader(tmp_path).load_header()


def test_unparsable_header(artifact: Path) -> None:
    """Test that a garbled header is corrupt."""
    (artifact / HEADER_FILE).write_text("{not json", encoding="utf-8")

    with pytest.raises(CorruptArtifactError):
        ArtifactReader(artifact).load_header()


def test_structurally_invalid_header(artifact: Path) -> None:
    """Test that a header with missing fields is corrupt."""
    (artifact / HEADER_FILE).write_text(json.dumps({"schema_version": 1}), encoding="utf-8")

    with pytest.raises(CorruptArtifactError, match="Invalid artifact header"):
        ArtifactReader(artifact).load_header()


def test_header_rejects_partition_outside_artifact(artifact: Path) -> None:
    """Test that partition files must live inside the artifact directory."""
    header = json.loads((artifact / HEADER_FILE).read_text(encoding="utf-8"))
    header["buckets"][0]["file"] = "../elsewhere.json"
    (artifact / HEADER_FILE).write_text(json.dumps(header), encoding="utf-8")

    with pytest.raises(CorruptArtifactError):
        ArtifactReader(artifact).load_header()


def test_newer_schema_version(artifact: Path) -> None:
    """Test that an artifact from a newer schema is refused."""
    header = json.loads((artifact / HEADER_FILE).read_text(encoding="utf-8"))
    header["schema_version"] = 99
    (artifact / HEADER_FILE).write_text(json.dumps(header), encoding="utf-8")

    with pytest.raises(CorruptArtifactError, match="newer"):
        ArtifactReader(artifact).load_header()


def test_decode_unknown_kind() -> None:
    """Test that kinds unknown to this reader degrade to a generic symbol."""
    data = json.dumps(
        [{"key": "sortable", "display_name": "Sortable", "occurrences": [["concept", "sortable.html", "concept"]]}]
    ).encode("utf-8")

    (entry,) = decode_partition(data, "s")

    assert entry.occurrences[0].kind is SymbolKind.SYMBOL


def test_decode_rejects_entry_without_occurrences() -> None:
    """Test that an entry with no occurrences is invalid."""
    data = json.dumps([{"key": "x", "display_name": "x", "occurrences": []}]).encode("utf-8")

    with pytest.raises(ValueError, match="no occurrences"):
        decode_partition(data, "x")
