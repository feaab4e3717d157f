"""Import and export of Doxygen ``searchData`` JavaScript files.

Doxygen publishes its search index as ``search/all_<n>.js`` files of the form::

    var searchData=
    [
      ['lex_5finit_173',['lex_init',['../parse_8c.html#a53...',1,'lex_init(lexer *l):&#160;parse.c']]]
    ];

Reading them lets an existing Doxygen site be re-indexed without access to
its sources; writing them lets a build feed Doxygen's own search front end.
"""

import html
import re
from collections.abc import Iterable
from typing import Any

from doc_search_index.models import Entry, SymbolKind, SymbolRecord
from doc_search_index.normaliser import strip_markup

DEFAULT_URL_PREFIX = "../"

_TOKEN_RE = re.compile(
    r"""\s*(?:
        (?P<open>\[)
      | (?P<close>\])
      | (?P<comma>,)
      | '(?P<string>(?:[^'\\]|\\.)*)'
      | (?P<number>-?\d+)
    )""",
    re.VERBOSE | re.DOTALL,
)
_JS_ESCAPE_RE = re.compile(r"\\(?:u(?P<code>[0-9a-fA-F]{4})|(?P<char>.))", re.DOTALL)
_JS_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}
# Characters that may not appear raw inside a JavaScript string literal
_JS_QUOTED = {"\\": "\\\\", "'": "\\'", "\n": "\\n", "\r": "\\r", "\t": "\\t", "\u2028": "\\u2028", "\u2029": "\\u2029"}
_FILE_PAGE_RE = re.compile(r"_8[a-z0-9]+\.html$")
_HEADER_RE = re.compile(r"^\s*var\s+searchData\s*=\s*", re.DOTALL)


def _unescape_one(match: re.Match[str]) -> str:
    if match.group("code") is not None:
        return chr(int(match.group("code"), 16))
    char = match.group("char")
    return _JS_ESCAPES.get(char, char)


def _unescape_js(text: str) -> str:
    return _JS_ESCAPE_RE.sub(_unescape_one, text)


def _escape_js(text: str) -> str:
    return "".join(_JS_QUOTED.get(char, char) for char in text)


class _ArrayParser:
    """Parser for the array-of-arrays literal Doxygen emits."""

    def __init__(self, text: str, pos: int) -> None:
        self.text = text
        self.pos = pos

    def _next(self) -> re.Match[str]:
        match = _TOKEN_RE.match(self.text, self.pos)
        if match is None:
            msg = f"Unexpected input at offset {self.pos}: {self.text[self.pos:self.pos + 20]!r}"
            raise ValueError(msg)
        self.pos = match.end()
        return match

    def parse_value(self) -> Any:
        token = self._next()
        if token.group("open") is not None:
            return self._parse_array()
        if token.group("string") is not None:
            return _unescape_js(token.group("string"))
        if token.group("number") is not None:
            return int(token.group("number"))
        msg = f"Expected a value at offset {token.start()}"
        raise ValueError(msg)

    def _parse_array(self) -> list[Any]:
        items: list[Any] = []
        peek = _TOKEN_RE.match(self.text, self.pos)
        if peek is not None and peek.group("close") is not None:
            self.pos = peek.end()
            return items
        while True:
            items.append(self.parse_value())
            token = self._next()
            if token.group("close") is not None:
                return items
            if token.group("comma") is None:
                msg = f"Expected ',' or ']' at offset {token.start()}"
                raise ValueError(msg)


def infer_kind(target_url: str, label: str) -> SymbolKind:
    """Guess a symbol kind from the Doxygen page a record links to.

    Args:
        target_url: Relative URL without the ``../`` prefix.
        label: Record label; a parameter list marks a function.

    Returns:
        Best matching SymbolKind.
    """
    page, _, anchor = target_url.partition("#")
    page = page.rsplit("/", 1)[-1]
    is_callable = "(" in label

    for prefix, kind in (("struct", SymbolKind.STRUCT), ("union", SymbolKind.UNION), ("class", SymbolKind.CLASS)):
        if page.startswith(prefix):
            if not anchor:
                return kind
            return SymbolKind.FUNCTION if is_callable else SymbolKind.FIELD
    if page.startswith("namespace"):
        return SymbolKind.NAMESPACE if not anchor else SymbolKind.SYMBOL
    if page.startswith("group__"):
        return SymbolKind.GROUP if not anchor else SymbolKind.SYMBOL
    if _FILE_PAGE_RE.search(page):
        if not anchor:
            return SymbolKind.FILE
        return SymbolKind.FUNCTION if is_callable else SymbolKind.VARIABLE
    return SymbolKind.PAGE if not anchor else SymbolKind.SECTION


def parse_search_data(text: str, url_prefix: str = DEFAULT_URL_PREFIX) -> list[SymbolRecord]:
    """Read the records held in a Doxygen ``searchData`` file.

    Args:
        text: JavaScript source of the file.
        url_prefix: Prefix to remove from every target URL.

    Returns:
        One record per occurrence, in file order.

    Raises:
        ValueError: If the file does not contain a searchData array.
    """
    header = _HEADER_RE.match(text)
    if header is None:
        msg = "Not a Doxygen searchData file"
        raise ValueError(msg)

    parser = _ArrayParser(text, header.end())
    data = parser.parse_value()
    trailer = text[parser.pos:].strip()
    if not isinstance(data, list) or trailer not in ("", ";"):
        msg = "Malformed searchData array"
        raise ValueError(msg)

    records = []
    for item in data:
        try:
            _search_id, (display_name, *occurrences) = item
        except (TypeError, ValueError) as exc:
            msg = f"Malformed searchData entry: {item!r}"
            raise ValueError(msg) from exc
        for occurrence in occurrences:
            if not isinstance(occurrence, list) or len(occurrence) != 3:
                msg = f"Malformed occurrence for {display_name!r}: {occurrence!r}"
                raise ValueError(msg)
            target_url, _flag, label = occurrence
            target_url = str(target_url).removeprefix(url_prefix)
            label = strip_markup(str(label))
            records.append(
                SymbolRecord(
                    display_name=strip_markup(str(display_name)),
                    kind=infer_kind(target_url, label),
                    label=label,
                    target_url=target_url,
                )
            )
    return records


def search_id(key: str) -> str:
    """Encode a key the way Doxygen builds search ids.

    ASCII letters and digits are kept; every other character becomes ``_``
    followed by the hex value of each of its UTF-8 bytes.

    Args:
        key: Normalised key.

    Returns:
        Encoded id, e.g. ``lex_5finit`` for ``lex_init``.
    """
    parts = []
    for char in key:
        if char.isascii() and char.isalnum():
            parts.append(char.lower())
        else:
            parts.extend(f"_{byte:02x}" for byte in char.encode("utf-8"))
    return "".join(parts)


def render_search_data(entries: Iterable[Entry], start: int = 0, url_prefix: str = DEFAULT_URL_PREFIX) -> str:
    """Render one partition as a Doxygen ``searchData`` file.

    Args:
        entries: Entries in artifact order.
        start: Running number of the first entry.
        url_prefix: Prefix prepended to every target URL.

    Returns:
        JavaScript source.
    """
    lines = []
    for number, entry in enumerate(entries, start=start):
        occurrences = ",".join(
            f"['{_escape_js(url_prefix + occ.target_url)}',1,'{_escape_js(html.escape(occ.label, quote=False))}']"
            for occ in entry.occurrences
        )
        name = _escape_js(html.escape(entry.display_name, quote=False))
        lines.append(f"  ['{search_id(entry.key)}_{number}',['{name}',{occurrences}]]")
    return "var searchData=\n[\n" + ",\n".join(lines) + "\n];\n"
