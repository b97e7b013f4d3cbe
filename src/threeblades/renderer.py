from __future__ import annotations

import dataclasses
import json
import re
import sys
from typing import Any, Mapping, Protocol, TextIO

from .client import ThreeBladesError


class TemplateError(ThreeBladesError):
    pass


class EncodingError(ThreeBladesError):
    pass


NO_VALUE = "<no value>"
NIL = "<nil>"

_ACTION_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_FIELD_PATH_RE = re.compile(r"^(?:\.[A-Za-z_][A-Za-z0-9_]*)+$")
_ACRONYM_RE = re.compile(r"([A-Z]+)([A-Z][a-z])")
_CAMEL_RE = re.compile(r"([a-z0-9])([A-Z])")
_HEADER_STRIP = ("{{", "}}", ".", " ")
# Written as \u escapes, as encoding/json does.
_HTML_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026", "\u2028": "\\u2028", "\u2029": "\\u2029"}

_MISSING = object()


class Renderer(Protocol):
    def render(self, out: TextIO) -> None: ...


def snake_case(name: str) -> str:
    """ImageName -> image_name, ProjectID -> project_id, IP -> ip."""
    s = _ACRONYM_RE.sub(r"\1_\2", name)
    s = _CAMEL_RE.sub(r"\1_\2", s)
    return s.lower()


def _json_default(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class JSONRenderer:
    def __init__(self, target: Any) -> None:
        self.target = target

    def render(self, out: TextIO) -> None:
        try:
            text = json.dumps(self.target, indent=4, ensure_ascii=False, default=_json_default)
        except (TypeError, ValueError) as e:
            raise EncodingError(f"Cannot encode output as JSON: {e}") from e
        for char, escaped in _HTML_ESCAPES.items():
            text = text.replace(char, escaped)
        out.write(text + "\n")


def parse_template(fmt: str) -> list[str | tuple[str, ...]]:
    """
    Split a row template into literal text and field paths.

    ``"{{.Name}}\\t{{.Owner.Email}}"`` -> ``[("Name",), "\\t", ("Owner", "Email")]``.
    ``{{.}}`` is the empty path, i.e. the row itself.
    """
    parts: list[str | tuple[str, ...]] = []
    pos = 0
    for m in _ACTION_RE.finditer(fmt):
        if m.start() > pos:
            parts.append(fmt[pos : m.start()])
        action = m.group(1).strip()
        if action == "":
            raise TemplateError(f"missing value for command at offset {m.start()}")
        if action == ".":
            parts.append(())
        elif _FIELD_PATH_RE.match(action):
            parts.append(tuple(action[1:].split(".")))
        else:
            raise TemplateError(f"unsupported action {{{{{action}}}}}: only field references like {{{{.Name}}}} are allowed")
        pos = m.end()
    tail = fmt[pos:]
    if "{{" in tail:
        raise TemplateError(f"unclosed action at offset {pos + tail.index('{{')}")
    if tail:
        parts.append(tail)
    return parts


def _lookup(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        if name in obj:
            return obj[name]
        snake = snake_case(name)
        if snake in obj:
            return obj[snake]
        lowered = name.lower()
        for key in obj:
            if isinstance(key, str) and key.lower() == lowered:
                return obj[key]
        return _MISSING
    if obj is None:
        return _MISSING
    for attr in (name, snake_case(name)):
        if hasattr(obj, attr):
            return getattr(obj, attr)
    raise TemplateError(f"can't evaluate field {name} in type {type(obj).__name__}")


def format_value(value: Any) -> str:
    if value is _MISSING:
        return NO_VALUE
    if value is None:
        return NIL
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(format_value(v) for v in value) + "]"
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "map[" + " ".join(f"{k}:{format_value(v)}" for k, v in items) + "]"
    return str(value)


class TableRenderer:
    def __init__(self, target: Any, fmt: str) -> None:
        self.target = target
        self.format = fmt

    def header(self) -> str:
        columns = self.format
        for token in _HEADER_STRIP:
            columns = columns.replace(token, "")
        return columns

    def rows(self) -> list[Any]:
        if self.target is None:
            return []
        if isinstance(self.target, (list, tuple)):
            return list(self.target)
        return [self.target]

    def render(self, out: TextIO) -> None:
        parts = parse_template(self.format)
        lines = [self.header()]
        for row in self.rows():
            chunks: list[str] = []
            for part in parts:
                if isinstance(part, str):
                    chunks.append(part)
                    continue
                value = row
                for name in part:
                    value = _lookup(value, name)
                    if value is _MISSING:
                        break
                chunks.append(format_value(value))
            lines.append("".join(chunks))
        # Nothing is written unless every row rendered.
        out.write("".join(line + "\n" for line in lines))


def new_renderer(fmt: str, target: Any) -> Renderer:
    # Only a literal leading "json" word selects JSON; " json" is a template.
    if fmt.split(" ", 1)[0] == "json":
        return JSONRenderer(target)
    return TableRenderer(target, fmt)


def render(fmt: str, target: Any, out: TextIO | None = None) -> None:
    new_renderer(fmt, target).render(out if out is not None else sys.stdout)
