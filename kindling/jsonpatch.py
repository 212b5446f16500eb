"""JSON merge patches, JSON 6902 patches, and patch matching metadata."""

from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass
from typing import Any, Callable

import yaml


class PatchError(ValueError):
    """A patch or document could not be parsed or applied."""


@dataclass(frozen=True)
class MatchInfo:
    """The kind and apiVersion used to match patches to documents."""

    kind: str = ""
    api_version: str = ""


@dataclass
class PatchJSON6902:
    """A JSON 6902 patch targeted at documents of a group/version/kind."""

    group: str = ""
    version: str = ""
    kind: str = ""
    patch: str = ""


class _Loader(yaml.SafeLoader):
    """Safe loader that keeps timestamps as plain strings."""


_Loader.yaml_implicit_resolvers = {
    first: [(tag, rx) for tag, rx in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _json_key(key: Any) -> str:
    return key if isinstance(key, str) else json.dumps(key) if isinstance(key, (bool, int, float, type(None))) else str(key)


def _jsonify(value: Any) -> Any:
    if isinstance(value, dict):
        return {_json_key(k): _jsonify(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonify(v) for v in value]
    return value


def _load_yaml(raw: str) -> Any:
    """Parse one YAML document into JSON compatible data."""
    try:
        return _jsonify(yaml.load(raw, Loader=_Loader))
    except yaml.YAMLError as exc:
        raise PatchError(str(exc)) from exc


def parse_yaml_match_info(raw: str) -> MatchInfo:
    """Read the kind and apiVersion of a YAML document."""
    try:
        data = _load_yaml(raw)
    except PatchError as exc:
        raise PatchError(f"failed to parse type meta for {raw!r}: {exc}") from exc
    if data is None:
        return MatchInfo()
    if not isinstance(data, dict):
        raise PatchError(f"failed to parse type meta for {raw!r}: not a mapping")
    kind, api_version = data.get("kind"), data.get("apiVersion")
    for value in (kind, api_version):
        if value is not None and not isinstance(value, str):
            raise PatchError(f"failed to parse type meta for {raw!r}: expected a string")
    return MatchInfo(kind=kind or "", api_version=api_version or "")


def group_version_to_api_version(group: str, version: str) -> str:
    return version if not group else f"{group}/{version}"


def match_info_for_json6902_patch(patch: PatchJSON6902) -> MatchInfo:
    return MatchInfo(kind=patch.kind, api_version=group_version_to_api_version(patch.group, patch.version))


def merge_patch(doc: Any, patch: Any) -> Any:
    """Apply an RFC 7386 merge patch, returning a new document."""
    return _merge(copy.deepcopy(doc), copy.deepcopy(patch))


def _merge(target: Any, patch: Any) -> Any:
    if not isinstance(patch, dict):
        return patch
    if not isinstance(target, dict):
        target = {}
    for key, value in patch.items():
        if value is None:
            target.pop(key, None)
        else:
            target[key] = _merge(target.get(key), value)
    return target


def _parse_pointer(path: str) -> list[str]:
    if path == "":
        return []
    if not path.startswith("/"):
        raise PatchError(f"invalid JSON pointer {path!r}")
    return [part.replace("~1", "/").replace("~0", "~") for part in path[1:].split("/")]


def _index(token: str, length: int, insert: bool) -> int:
    if insert and token == "-":
        return length
    if not re.fullmatch(r"-?[0-9]+", token):
        raise PatchError(f"invalid array index {token!r}")
    index = int(token)
    if index < 0:
        index += length
    upper = length if insert else length - 1
    if not 0 <= index <= upper:
        raise PatchError(f"array index {token} out of range")
    return index


def _resolve(doc: Any, parts: list[str]) -> Any:
    current = doc
    for part in parts:
        if isinstance(current, dict):
            if part not in current:
                raise PatchError(f"missing key {part!r}")
            current = current[part]
        elif isinstance(current, list):
            current = current[_index(part, len(current), insert=False)]
        else:
            raise PatchError(f"cannot descend into a scalar at {part!r}")
    return current


def _add(doc: Any, parts: list[str], value: Any) -> Any:
    if not parts:
        return value
    parent, key = _resolve(doc, parts[:-1]), parts[-1]
    if isinstance(parent, dict):
        parent[key] = value
    elif isinstance(parent, list):
        parent.insert(_index(key, len(parent), insert=True), value)
    else:
        raise PatchError(f"cannot add to a scalar at {key!r}")
    return doc


def _remove(doc: Any, parts: list[str]) -> Any:
    if not parts:
        raise PatchError("cannot remove the whole document")
    parent, key = _resolve(doc, parts[:-1]), parts[-1]
    if isinstance(parent, dict):
        if key not in parent:
            raise PatchError(f"remove operation does not apply: missing key {key!r}")
        return parent.pop(key)
    if isinstance(parent, list):
        return parent.pop(_index(key, len(parent), insert=False))
    raise PatchError(f"cannot remove from a scalar at {key!r}")


def _replace(doc: Any, parts: list[str], value: Any) -> Any:
    if not parts:
        return value
    parent, key = _resolve(doc, parts[:-1]), parts[-1]
    if isinstance(parent, dict):
        if key not in parent:
            raise PatchError(f"replace operation does not apply: missing key {key!r}")
        parent[key] = value
    elif isinstance(parent, list):
        parent[_index(key, len(parent), insert=False)] = value
    else:
        raise PatchError(f"cannot replace in a scalar at {key!r}")
    return doc


def _json_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(_json_equal(a[k], b[k]) for k in a)
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(_json_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, (dict, list)) or isinstance(b, (dict, list)):
        return False
    return a == b


def _path(op: dict, key: str = "path") -> list[str]:
    value = op.get(key)
    if not isinstance(value, str):
        raise PatchError(f"operation {op.get('op')!r} is missing {key!r}")
    return _parse_pointer(value)


def _value(op: dict) -> Any:
    if "value" not in op:
        raise PatchError(f"operation {op.get('op')!r} is missing 'value'")
    return copy.deepcopy(op["value"])


def _op_add(doc: Any, op: dict) -> Any:
    return _add(doc, _path(op), _value(op))


def _op_remove(doc: Any, op: dict) -> Any:
    _remove(doc, _path(op))
    return doc


def _op_replace(doc: Any, op: dict) -> Any:
    return _replace(doc, _path(op), _value(op))


def _op_move(doc: Any, op: dict) -> Any:
    source, target = _path(op, "from"), _path(op)
    if source == target:
        return doc
    return _add(doc, target, _remove(doc, source))


def _op_copy(doc: Any, op: dict) -> Any:
    value = copy.deepcopy(_resolve(doc, _path(op, "from")))
    return _add(doc, _path(op), value)


def _op_test(doc: Any, op: dict) -> Any:
    parts, expected = _path(op), op.get("value")
    try:
        actual = _resolve(doc, parts)
    except PatchError:
        if expected is None:
            return doc
        raise PatchError(f"testing value {op['path']!r} failed: missing") from None
    if not _json_equal(actual, expected):
        raise PatchError(f"testing value {op['path']!r} failed")
    return doc


_OPERATIONS: dict[str, Callable[[Any, dict], Any]] = {
    "add": _op_add,
    "remove": _op_remove,
    "replace": _op_replace,
    "move": _op_move,
    "copy": _op_copy,
    "test": _op_test,
}


class JSONPatch:
    """An RFC 6902 JSON patch: a list of operations."""

    def __init__(self, operations: list[dict] | None) -> None:
        operations = [] if operations is None else operations
        if not isinstance(operations, list) or not all(isinstance(op, dict) for op in operations):
            raise PatchError("a JSON patch must be a list of operation objects")
        self.operations = copy.deepcopy(operations)

    def apply(self, doc: Any) -> Any:
        """Apply the operations in order, returning a new document."""
        result = copy.deepcopy(doc)
        for op in self.operations:
            handler = _OPERATIONS.get(op.get("op"))
            if handler is None:
                raise PatchError(f"unexpected operation {op.get('op')!r} in patch")
            result = handler(result, op)
        return result

    def __len__(self) -> int:
        return len(self.operations)


def decode_patch(raw: str | bytes) -> JSONPatch:
    """Parse a JSON 6902 patch from JSON text."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise PatchError(f"invalid JSON patch: {exc}") from exc
    return JSONPatch(data)