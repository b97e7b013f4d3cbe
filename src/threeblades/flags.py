from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from typing import Any, Iterator, Mapping


def parse_filters(value: str) -> dict[str, str]:
    """Parse ``"a=1,b=2"`` into ``{"a": "1", "b": "2"}``."""
    out: dict[str, str] = {}
    for pair in value.split(","):
        pair = pair.strip()
        if not pair:
            continue
        if "=" not in pair:
            raise ValueError(f"Expected key=value, got {pair!r}")
        k, v = pair.split("=", 1)
        k = k.strip()
        if not k:
            raise ValueError(f"Empty filter key in {pair!r}")
        out[k] = v.strip()
    return out


class FilterSet(Mapping[str, str]):
    """
    Ordered key=value filters collected from repeated ``--filter`` flags.

    Each ``set`` call overlays the new pairs onto what is already there, so
    ``--filter a=1,b=2 --filter b=3,c=4`` ends up as ``{a: 1, b: 3, c: 4}``.
    """

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._value: dict[str, str] = dict(initial or {})

    def set(self, value: str) -> None:
        self._value.update(parse_filters(value))

    def get(self, key: str, default: str | None = None) -> str | None:  # type: ignore[override]
        return self._value.get(key, default)

    def __getitem__(self, key: str) -> str:
        return self._value[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._value)

    def __len__(self) -> int:
        return len(self._value)

    def __str__(self) -> str:
        return "[" + " ".join(f"{k}={v}" for k, v in self._value.items()) + "]"

    def __repr__(self) -> str:
        return f"FilterSet({self._value!r})"


class FilterAction(argparse.Action):
    """argparse action that merges every ``--filter`` occurrence into one FilterSet."""

    def __call__(self, parser, namespace, values, option_string=None) -> None:
        current = getattr(namespace, self.dest, None)
        filters = FilterSet(current) if current is not None else FilterSet()
        try:
            filters.set(str(values))
        except ValueError as e:
            parser.error(f"{option_string}: {e}")
        setattr(namespace, self.dest, filters)


def add_filter_argument(parser: argparse.ArgumentParser, example: str = "name=test") -> None:
    parser.add_argument(
        "--filter",
        dest="filters",
        action=FilterAction,
        default=None,
        metavar="KEY=VALUE[,KEY=VALUE]",
        help=f"Filter results (ex. --filter {example}); repeatable",
    )


@dataclass
class ListFlags:
    limit: int = 0
    offset: int = 0
    order: str = ""

    def apply(self, query: dict[str, Any]) -> dict[str, Any]:
        """Add pagination and ordering to a list request's query mapping."""
        if self.limit > 0:
            query["limit"] = str(self.limit)
        if self.offset > 0:
            query["offset"] = str(self.offset)
        if self.order:
            query["ordering"] = self.order
        return query

    @classmethod
    def from_args(cls, args: argparse.Namespace, default_limit: int = 0) -> "ListFlags":
        limit = args.limit if args.limit is not None else default_limit
        return cls(limit=limit, offset=args.offset, order=args.order or "")


def add_list_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--limit", type=int, default=None, help="Limit list results (default: config limit)")
    parser.add_argument("--offset", type=int, default=0, help="Offset list results")
    parser.add_argument("--order", default="", help="Output order, e.g. name or -created_at")


def json_value(s: str) -> Any:
    """argparse ``type=`` for flags that take a JSON document; an empty string means null."""
    if s == "":
        return None
    try:
        return json.loads(s)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}") from e


def comma_list(s: str) -> list[str]:
    return [part.strip() for part in s.split(",") if part.strip()]
