"""Key=Value tokenizer for loosely formatted terminal lines."""

from collections.abc import Mapping
from typing import Dict, Iterator, List, Optional, Tuple

# Record-family names some firmwares repeat in front of the first key
TABLE_PREFIXES = ("BIODATA", "FACE", "FP", "USER")


class KeyValueLine(Mapping):
    """Read-only, case-insensitive view of the Key=Value pairs of one line.

    ``leading_tag`` holds the table prefix the line started with, if any.
    """

    def __init__(self, pairs: List[Tuple[str, str]], leading_tag: Optional[str] = None, raw: str = ""):
        self._data: Dict[str, Tuple[str, str]] = {}
        for key, value in pairs:
            # first occurrence wins
            self._data.setdefault(key.lower(), (key, value))
        self.leading_tag = leading_tag
        self.raw = raw

    def __getitem__(self, key: str) -> str:
        return self._data[key.lower()][1]

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._data.values())

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key) -> bool:
        return isinstance(key, str) and key.lower() in self._data

    def first(self, *keys: str, default: Optional[str] = None) -> Optional[str]:
        """Value of the first key present with a non-empty value"""
        for key in keys:
            value = self.get(key)
            if value not in (None, ""):
                return value
        return default

    def int_of(self, *keys: str, default: int = 0) -> int:
        value = self.first(*keys)
        if value is None:
            return default
        try:
            return int(value.strip())
        except ValueError:
            return default

    def __repr__(self):
        return f"KeyValueLine({dict(self.items())!r}, leading_tag={self.leading_tag!r})"


def _strip_prefix(token: str, prefixes) -> Tuple[str, Optional[str]]:
    upper = token.upper()
    for prefix in prefixes:
        if upper.startswith(prefix + " "):
            return token[len(prefix) + 1:].lstrip(), prefix
    return token, None


def leading_tag_of(line: str, prefixes=TABLE_PREFIXES) -> Optional[str]:
    """Table prefix the line starts with (``FACE PIN=..`` -> ``FACE``)"""
    head = line.lstrip().split(None, 1)
    if not head:
        return None
    word = head[0].upper()
    for prefix in prefixes:
        if word == prefix:
            return prefix
    return None


def tokenize_key_values(line: str, prefixes=TABLE_PREFIXES) -> KeyValueLine:
    """Split a line into Key=Value pairs.

    Tabs separate tokens when the line has any; otherwise any whitespace does.
    In whitespace mode a token without ``=`` continues the previous value, which
    keeps multi-word names intact.
    """
    line = line.rstrip("\r\n")
    tag = leading_tag_of(line, prefixes)
    tab_mode = "\t" in line
    tokens = line.split("\t") if tab_mode else line.split()

    pairs: List[Tuple[str, str]] = []
    for token in tokens:
        token = token.strip()
        if not token:
            continue
        if tab_mode:
            token, _ = _strip_prefix(token, prefixes)
        elif not pairs and token.upper() in prefixes:
            continue

        key, sep, value = token.partition("=")
        if not sep:
            if pairs and not tab_mode:
                prev_key, prev_value = pairs[-1]
                pairs[-1] = (prev_key, f"{prev_value} {token}".strip())
            continue
        key = key.strip()
        if key:
            pairs.append((key, value.strip()))

    return KeyValueLine(pairs, leading_tag=tag, raw=line)
