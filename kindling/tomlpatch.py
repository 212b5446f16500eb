"""Patching TOML documents with merge patches and JSON 6902 patches."""

from __future__ import annotations

import datetime as _dt
import math
import re
import tomllib
from decimal import Decimal
from typing import Any, Iterable

from kindling.jsonpatch import PatchError, decode_patch, merge_patch

_BARE_KEY = re.compile(r"[A-Za-z0-9_-]+")
_ESCAPES = {'"': '\\"', "\\": "\\\\", "\t": "\\t", "\n": "\\n", "\r": "\\r"}
_INDENT = "  "


def patch_toml(
    to_patch: str,
    patches: Iterable[str] | None = None,
    patches_6902: Iterable[str] | None = None,
) -> str:
    """Apply TOML merge patches, then JSON 6902 patches, to a TOML document."""
    data = toml_to_data(to_patch)
    for patch in patches or ():
        data = merge_patch(data, toml_to_data(patch))
    for patch in patches_6902 or ():
        data = decode_patch(patch).apply(data)
    return dump_toml(data)


def toml_to_data(text: str | bytes) -> dict[str, Any]:
    """Parse TOML into JSON compatible data.

    Values take the shape they have after a trip through JSON: dates and
    times become strings, integral floats become integers, and empty arrays
    held by a table become null.
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PatchError(f"invalid TOML: {exc}") from exc
    try:
        parsed = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise PatchError(f"invalid TOML: {exc}") from exc
    return _normalize_table(parsed)


def _normalize_table(table: dict[str, Any]) -> dict[str, Any]:
    return {
        key: None if isinstance(value, list) and not value else _normalize(value)
        for key, value in table.items()
    }


def _normalize(value: Any) -> Any:
    if isinstance(value, dict):
        return _normalize_table(value)
    if isinstance(value, list):
        return [_normalize(item) for item in value]
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise PatchError(f"unsupported float value {value!r}")
        if value.is_integer() and abs(value) < 1e21:
            return int(value)
        return value
    if isinstance(value, (_dt.datetime, _dt.date, _dt.time)):
        return _format_datetime(value)
    return value


def _format_datetime(value: _dt.datetime | _dt.date | _dt.time) -> str:
    text = value.isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def dump_toml(data: dict[str, Any]) -> str:
    """Encode a mapping as TOML, with sub-tables indented by depth."""
    if not isinstance(data, dict):
        raise PatchError("toml: top level value must be a table")
    writer = _Writer()
    writer.table([], data)
    return writer.getvalue()


def _quote(text: str) -> str:
    out = []
    for ch in text:
        if ch in _ESCAPES:
            out.append(_ESCAPES[ch])
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\u{ord(ch):04X}")
        else:
            out.append(ch)
    return '"' + "".join(out) + '"'


def _key_part(key: str) -> str:
    return key if _BARE_KEY.fullmatch(key) else _quote(key)


def _dotted(path: list[str]) -> str:
    return ".".join(_key_part(part) for part in path)


def _indent(path: list[str]) -> str:
    return _INDENT * (len(path) - 1)


def _is_table_like(value: Any) -> bool:
    if isinstance(value, dict):
        return True
    return isinstance(value, list) and bool(value) and isinstance(value[0], dict)


def _value_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "table"
    if isinstance(value, (_dt.datetime, _dt.date, _dt.time)):
        return "datetime"
    raise PatchError(f"toml: unsupported value {value!r}")


def _format_float(value: float) -> str:
    if not math.isfinite(value):
        raise PatchError(f"toml: unsupported float value {value!r}")
    text = format(Decimal(repr(value)), "f")
    return text if "." in text else text + ".0"


def _format_value(value: Any) -> str:
    kind = _value_type(value)
    if kind == "boolean":
        return "true" if value else "false"
    if kind == "integer":
        return str(value)
    if kind == "float":
        return _format_float(value)
    if kind == "string":
        return _quote(value)
    if kind == "datetime":
        return _format_datetime(value)
    if kind == "array":
        types = {_value_type(item) for item in value}
        if "table" in types:
            raise PatchError("toml: inline tables inside arrays are not supported")
        if len(types) > 1:
            raise PatchError("toml: cannot encode an array with mixed element types")
        return "[" + ", ".join(_format_value(item) for item in value) + "]"
    raise PatchError("toml: inline tables are not supported")


class _Writer:
    def __init__(self) -> None:
        self._parts: list[str] = []

    def write(self, text: str) -> None:
        self._parts.append(text)

    def newline(self) -> None:
        if self._parts:
            self._parts.append("\n")

    def getvalue(self) -> str:
        return "".join(self._parts)

    def table(self, key: list[str], table: dict[str, Any]) -> None:
        direct = sorted(name for name, value in table.items() if not _is_table_like(value))
        nested = sorted(name for name, value in table.items() if _is_table_like(value))
        for name in direct + nested:
            value = table[name]
            if value is None:
                continue
            path = [*key, name]
            if isinstance(value, dict):
                if len(path) == 1:
                    self.newline()
                self.write(f"{_indent(path)}[{_dotted(path)}]")
                self.newline()
                self.table(path, value)
            elif _is_table_like(value):
                self.array_of_tables(path, value)
            else:
                self.write(f"{_indent(path)}{_key_part(name)} = {_format_value(value)}")
                self.newline()

    def array_of_tables(self, path: list[str], items: list[Any]) -> None:
        for item in items:
            if item is None:
                continue
            if not isinstance(item, dict):
                raise PatchError("toml: cannot encode an array with mixed element types")
            self.newline()
            self.write(f"{_indent(path)}[[{_dotted(path)}]]")
            self.newline()
            self.table(path, item)