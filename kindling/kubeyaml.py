"""Patching Kubernetes YAML document streams."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import yaml

from kindling.jsonpatch import (
    JSONPatch,
    MatchInfo,
    PatchError,
    PatchJSON6902,
    _load_yaml,
    match_info_for_json6902_patch,
    merge_patch,
    parse_yaml_match_info,
)

_SEPARATOR = "\n---"
_MAX_TOKEN_SIZE = 64 * 1024


def _check_size(chunk: str) -> None:
    if len(chunk.encode("utf-8")) > _MAX_TOKEN_SIZE:
        raise PatchError("error splitting documents: token too long")


def split_yaml_documents(stream: str) -> list[str]:
    """Split a YAML stream on lines starting with '---'.

    A separator line that is not terminated by a newline ends the stream,
    and whatever precedes it is dropped.
    """
    documents: list[str] = []
    rest = stream
    while rest:
        i = rest.find(_SEPARATOR)
        if i < 0:
            _check_size(rest)
            documents.append(rest)
            break
        after = rest[i + len(_SEPARATOR):]
        if not after:
            _check_size(rest)
            documents.append(rest[:i])
            break
        j = after.find("\n")
        if j < 0:
            break
        consumed = i + len(_SEPARATOR) + j + 1
        _check_size(rest[:consumed])
        documents.append(rest[:i])
        rest = rest[consumed:]
    return documents


@dataclass
class _Document:
    data: Any
    match_info: MatchInfo

    def matches(self, other: MatchInfo) -> bool:
        # a patch without apiVersion applies across versions
        return self.match_info.kind == other.kind and (
            other.api_version == "" or self.match_info.api_version == other.api_version
        )


def _parse_documents(stream: str) -> list[_Document]:
    return [
        _Document(data=_load_yaml(raw), match_info=parse_yaml_match_info(raw))
        for raw in split_yaml_documents(stream)
    ]


def _to_yaml(data: Any) -> str:
    text = yaml.safe_dump(data, default_flow_style=False, sort_keys=True, allow_unicode=True)
    if text.endswith("\n...\n"):
        text = text[:-4]
    return text


def kube_yaml(to_patch: str, patches: list[str], patches_6902: list[PatchJSON6902]) -> str:
    """Apply merge and JSON 6902 patches to a YAML document stream.

    Patches match documents by kind and, when the patch sets it, apiVersion.
    """
    try:
        resources = _parse_documents(to_patch)
    except PatchError as exc:
        raise PatchError(f"failed to parse yaml to patch: {exc}") from exc
    try:
        merge_patches = [doc for raw in patches for doc in _parse_documents(raw)]
    except PatchError as exc:
        raise PatchError(f"failed to parse patches: {exc}") from exc
    try:
        json_patches = [
            (match_info_for_json6902_patch(cfg), JSONPatch(_load_yaml(cfg.patch)))
            for cfg in patches_6902
        ]
    except PatchError as exc:
        raise PatchError(f"failed to parse JSON 6902 patches: {exc}") from exc

    rendered = []
    for resource in resources:
        for patch in merge_patches:
            if resource.matches(patch.match_info):
                resource.data = merge_patch(resource.data, patch.data)
        for info, patch in json_patches:
            if resource.matches(info):
                try:
                    resource.data = patch.apply(resource.data)
                except PatchError as exc:
                    raise PatchError(f"failed to apply JSON 6902 patch: {exc}") from exc
        rendered.append(_to_yaml(resource.data))
    return "---\n".join(rendered)