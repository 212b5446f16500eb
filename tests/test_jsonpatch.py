import pytest

from kindling.jsonpatch import (
    JSONPatch,
    MatchInfo,
    PatchError,
    PatchJSON6902,
    decode_patch,
    group_version_to_api_version,
    match_info_for_json6902_patch,
    merge_patch,
    parse_yaml_match_info,
)


def test_merge_patch_removes_nulls_and_merges_nested():
    doc = {"a": 1, "b": {"c": 2}}
    assert merge_patch(doc, {"b": {"c": None, "d": 3}}) == {"a": 1, "b": {"d": 3}}


def test_merge_patch_does_not_mutate_inputs():
    doc = {"a": {"b": 1}}
    patch = {"a": {"b": 2}}
    merge_patch(doc, patch)
    assert doc == {"a": {"b": 1}}
    assert patch == {"a": {"b": 2}}


def test_merge_patch_with_non_object_patch_replaces():
    assert merge_patch({"a": 1}, [1, 2]) == [1, 2]


def test_merge_patch_into_non_object_prunes_nulls():
    assert merge_patch(None, {"a": 1, "b": None}) == {"a": 1}


def test_add_and_append():
    patch = decode_patch('[{"op": "add", "path": "/list/-", "value": 3},'
                         ' {"op": "add", "path": "/list/0", "value": 0},'
                         ' {"op": "add", "path": "/new", "value": "x"}]')
    assert patch.apply({"list": [1, 2]}) == {"list": [0, 1, 2, 3], "new": "x"}


def test_remove_replace_move_copy():
    patch = JSONPatch([
        {"op": "remove", "path": "/a"},
        {"op": "replace", "path": "/b", "value": 5},
        {"op": "move", "from": "/c", "path": "/d"},
        {"op": "copy", "from": "/b", "path": "/e"},
    ])
    assert patch.apply({"a": 1, "b": 2, "c": 3}) == {"b": 5, "d": 3, "e": 5}


def test_apply_does_not_mutate_document():
    doc = {"a": 1}
    JSONPatch([{"op": "remove", "path": "/a"}]).apply(doc)
    assert doc == {"a": 1}


def test_pointer_escapes():
    patch = JSONPatch([{"op": "add", "path": "/a~1b/c~0d", "value": 1}])
    assert patch.apply({"a/b": {}}) == {"a/b": {"c~d": 1}}


@pytest.mark.parametrize(
    "ops",
    [
        [{"op": "remove", "path": "/missing"}],
        [{"op": "replace", "path": "/missing", "value": 1}],
        [{"op": "add", "path": "/list/5", "value": 1}],
        [{"op": "test", "path": "/a", "value": 2}],
        [{"op": "test", "path": "/a", "value": True}],
        [{"op": "frobnicate", "path": "/a"}],
        [{"op": "add", "value": 1}],
    ],
)
def test_failing_operations(ops):
    with pytest.raises(PatchError):
        JSONPatch(ops).apply({"a": 1, "list": []})


def test_test_operation_passes():
    doc = {"a": {"b": [1, 2]}}
    assert JSONPatch([{"op": "test", "path": "/a", "value": {"b": [1, 2]}}]).apply(doc) == doc


@pytest.mark.parametrize("raw", ["🏰", '{"op": "add"}', "[1]"])
def test_decode_patch_rejects_bad_input(raw):
    with pytest.raises(PatchError):
        decode_patch(raw)


def test_decode_patch_counts_operations():
    assert len(decode_patch('[{"op": "remove", "path": "/a"}]')) == 1


def test_parse_yaml_match_info():
    info = parse_yaml_match_info("apiVersion: kubeadm.k8s.io/v1beta2\nkind: ClusterConfiguration\n")
    assert info == MatchInfo(kind="ClusterConfiguration", api_version="kubeadm.k8s.io/v1beta2")


def test_parse_yaml_match_info_empty_document():
    assert parse_yaml_match_info("") == MatchInfo()


@pytest.mark.parametrize("raw", ["kind: [1", "- a\n- b\n", "kind: [1]\n"])
def test_parse_yaml_match_info_errors(raw):
    with pytest.raises(PatchError):
        parse_yaml_match_info(raw)


def test_group_version_to_api_version():
    assert group_version_to_api_version("", "v1") == "v1"
    assert group_version_to_api_version("apps", "v1") == "apps/v1"


def test_match_info_for_json6902_patch():
    patch = PatchJSON6902(group="kubeadm.k8s.io", version="v1beta2", kind="ClusterConfiguration")
    assert match_info_for_json6902_patch(patch) == MatchInfo(
        kind="ClusterConfiguration", api_version="kubeadm.k8s.io/v1beta2"
    )