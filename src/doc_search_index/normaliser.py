"""Search key normalisation and bucket assignment.

The builder and the query engine must agree on both rules, so they live here
and nowhere else.
"""

import html
import re

CATCH_ALL_BUCKET = "_"

_TAG_RE = re.compile(r"</?[A-Za-z][^<>]*>")
_GENERIC_RE = re.compile(r"<[^<>]*>")
_TRAILING_PARAMS_RE = re.compile(r"(?<=[\w>])\([^()]*\)\s*(?:const)?\s*$")
_WHITESPACE_RE = re.compile(r"\s+")


def strip_markup(text: str) -> str:
    """Remove HTML markup from a display string.

    Args:
        text: Display name or label, possibly holding tags or entities.

    Returns:
        Plain text with entities decoded and non-breaking spaces flattened.
    """
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    return text.replace("\xa0", " ")


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalise_key(display_name: str) -> str:
    """Derive the search key for a display name.

    Markup, template arguments, a parameter list attached to the name and
    any ``::`` scope qualifiers are dropped before case folding, so
    ``token::line()`` and ``Line`` share the key ``line``. A parenthesised
    remark set off by a space, as in ``Installation (Linux)``, is kept.

    Args:
        display_name: Human-readable symbol or page name.

    Returns:
        Normalised key, or an empty string for a blank name.
    """
    plain = strip_markup(display_name)

    stripped = plain
    # Nested generics need repeated passes
    while True:
        reduced = _GENERIC_RE.sub("", stripped)
        if reduced == stripped:
            break
        stripped = reduced
    stripped = _TRAILING_PARAMS_RE.sub("", stripped)
    stripped = stripped.rsplit("::", 1)[-1]

    key = _collapse(stripped.casefold())
    if not key:
        key = _collapse(plain.casefold())
    return key


def bucket_for(key: str) -> str:
    """Return the partition bucket for a normalised key.

    Keys starting with a letter are bucketed by that letter. Everything else
    (digits, underscores, operators) shares the catch-all bucket.

    Args:
        key: Normalised, non-empty key.

    Returns:
        Single-character bucket name.

    Raises:
        ValueError: If the key is empty.
    """
    if not key:
        msg = "Cannot bucket an empty key"
        raise ValueError(msg)
    first = key[0]
    return first if first.isalpha() else CATCH_ALL_BUCKET


def bucket_slug(bucket: str) -> str:
    """Return a file-name-safe token for a bucket.

    Args:
        bucket: Bucket name as returned by :func:`bucket_for`.

    Returns:
        Hex code point of the bucket letter, or ``misc`` for the catch-all.
    """
    if bucket == CATCH_ALL_BUCKET:
        return "misc"
    return f"{ord(bucket):x}"
