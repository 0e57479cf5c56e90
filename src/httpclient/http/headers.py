"""
HTTP header collection.

Header names are case-INSENSITIVE ("Content-Type" == "content-type"), but
order and duplicates matter on the wire: a response may carry several
Set-Cookie lines and they must all survive, in order.

Headers stores the raw (name, value) pairs in arrival order and does
case-insensitive lookups over them.
"""

from typing import Iterable, Iterator, List, Mapping, MutableMapping, Optional, Tuple, Union


HeadersInit = Union["Headers", Mapping[str, str], Iterable[Tuple[str, str]], None]


class Headers(MutableMapping):
    """
    Ordered, case-insensitive multi-map of header fields.

        headers = Headers([("Set-Cookie", "a=1"), ("set-cookie", "b=2")])
        headers["SET-COOKIE"]          # "a=1, b=2"
        headers.get_all("Set-Cookie")  # ["a=1", "b=2"]
        headers["Accept"] = "*/*"      # replaces any existing Accept
        headers.add("Accept", "text/html")  # appends a duplicate

    Mapping access joins duplicates with ", ". Use get_all() for fields
    that cannot be joined, like Set-Cookie.
    """

    def __init__(self, headers: HeadersInit = None):
        self._items: List[Tuple[str, str]] = []
        if headers is None:
            return
        if isinstance(headers, Headers):
            self._items = list(headers._items)
        elif isinstance(headers, Mapping):
            for name, value in headers.items():
                self.add(name, value)
        else:
            for name, value in headers:
                self.add(name, value)

    def add(self, name: str, value: str) -> None:
        """Append a field, keeping any existing ones with the same name."""
        self._items.append((_check_name(name), _check_value(value)))

    def get_all(self, name: str) -> List[str]:
        lname = name.lower()
        return [v for n, v in self._items if n.lower() == lname]

    def multi_items(self) -> List[Tuple[str, str]]:
        """All (name, value) pairs in order, duplicates included."""
        return list(self._items)

    def copy(self) -> "Headers":
        return Headers(self)

    # ─────────────────────────────────────────────────────────────────────
    # MutableMapping protocol
    # ─────────────────────────────────────────────────────────────────────

    def __getitem__(self, name: str) -> str:
        values = self.get_all(name)
        if not values:
            raise KeyError(name)
        return ", ".join(values)

    def __setitem__(self, name: str, value: str) -> None:
        """Replace every field called `name`, keeping the first one's position."""
        lname = name.lower()
        value = _check_value(value)
        replaced = False
        items = []
        for n, v in self._items:
            if n.lower() != lname:
                items.append((n, v))
            elif not replaced:
                items.append((n, value))
                replaced = True
        if not replaced:
            items.append((_check_name(name), value))
        self._items = items

    def __delitem__(self, name: str) -> None:
        lname = name.lower()
        items = [(n, v) for n, v in self._items if n.lower() != lname]
        if len(items) == len(self._items):
            raise KeyError(name)
        self._items = items

    def __iter__(self) -> Iterator[str]:
        seen = set()
        for name, _ in self._items:
            if name.lower() not in seen:
                seen.add(name.lower())
                yield name

    def __len__(self) -> int:
        return len({name.lower() for name, _ in self._items})

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        lname = name.lower()
        return any(n.lower() == lname for n, _ in self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Headers):
            return _normalized(self._items) == _normalized(other._items)
        if isinstance(other, Mapping):
            return _normalized(self._items) == _normalized(Headers(other)._items)
        return NotImplemented

    def __repr__(self) -> str:
        return f"Headers({self._items!r})"


def merge_headers(*sources: HeadersInit) -> Headers:
    """
    Merge header sources left to right; later sources win per name.

        merge_headers({"Accept": "*/*"}, {"accept": "text/html"})
        # Headers([("Accept", "text/html")])
    """
    merged = Headers()
    for source in sources:
        if source is None:
            continue
        source = source if isinstance(source, Headers) else Headers(source)
        for name in source:
            values = source.get_all(name)
            merged[name] = values[0]
            for extra in values[1:]:
                merged.add(name, extra)
    return merged


def _normalized(items: List[Tuple[str, str]]) -> List[Tuple[str, str]]:
    return [(n.lower(), v) for n, v in items]


def _check_name(name: str) -> str:
    if not name or any(c in name for c in ":\r\n \t"):
        raise ValueError(f"Invalid header name: {name!r}")
    return name


def _check_value(value: Optional[str]) -> str:
    value = str(value)
    if "\r" in value or "\n" in value:
        # CRLF in a value would let it inject extra header lines.
        raise ValueError(f"Invalid header value: {value!r}")
    return value
