import pytest

from kindling.jsonpatch import PatchError
from kindling.tomlpatch import dump_toml, patch_toml, toml_to_data

RUNSC = "io.containerd.runsc.v1"
DISABLED = 'disabled_plugins = ["restart"]'
REMOVE_DISABLED = '[{"op": "remove", "path": "/disabled_plugins"}]'


def _lines(*rows):
    return "\n".join(rows)


def _render(rows):
    return "".join("  " * depth + text + "\n" for depth, text in rows)


BASE = _lines(
    DISABLED,
    "[plugins.linux]",
    "  shim_debug = true",
    "[plugins.cri.containerd.runtimes.runsc]",
    f'  runtime_type = "{RUNSC}"',
)

_CRI = [
    (1, "[plugins.cri]"),
    (2, "[plugins.cri.containerd]"),
    (3, "[plugins.cri.containerd.runtimes]"),
    (4, "[plugins.cri.containerd.runtimes.runsc]"),
    (5, f'runtime_type = "{RUNSC}"'),
]
_LINUX = [(1, "[plugins.linux]"), (2, "shim_debug = true")]
_REGISTRY = [
    (2, "[plugins.cri.registry]"),
    (3, "[plugins.cri.registry.mirrors]"),
    (4, '[plugins.cri.registry.mirrors."registry:5000"]'),
    (5, 'endpoint = ["http://registry:5000"]'),
]

NO_DISABLED = _render([(0, "[plugins]"), *_CRI, *_LINUX])
WITH_DISABLED = DISABLED + "\n\n" + NO_DISABLED
WITH_REGISTRY = DISABLED + "\n\n" + _render([(0, "[plugins]"), *_CRI, *_REGISTRY, *_LINUX])

REGISTRY_PATCH = _lines(
    "[plugins.cri.registry.mirrors]",
    '  [plugins.cri.registry.mirrors."registry:5000"]',
    '    endpoint = ["http://registry:5000"]',
)

CASES = [
    ("invalid TOML", "🗿", None, None, True, ""),
    ("no patches", BASE, None, None, False, WITH_DISABLED),
    ("invalid patch TOML", BASE, ["🏰"], None, True, ""),
    ("invalid 6902 patch JSON", BASE, None, ["🏰"], True, ""),
    ("trivial patch", BASE, ["disabled_plugins=[]"], None, False, NO_DISABLED),
    ("trivial 6902 patch", BASE, None, [REMOVE_DISABLED], False, NO_DISABLED),
    (
        "trivial patch and trivial 6902 patch",
        BASE,
        ['disabled_plugins=["foo"]'],
        [REMOVE_DISABLED],
        False,
        NO_DISABLED,
    ),
    (
        "invalid path 6902 patch",
        BASE,
        None,
        ['[{"op": "remove", "path": "/fooooooo"}]'],
        True,
        NO_DISABLED,
    ),
    ("patch registry", BASE, [REGISTRY_PATCH], None, False, WITH_REGISTRY),
]


@pytest.mark.parametrize(
    "to_patch, patches, patches_6902, expect_error, expected",
    [case[1:] for case in CASES],
    ids=[case[0] for case in CASES],
)
def test_patch_toml(to_patch, patches, patches_6902, expect_error, expected):
    if expect_error:
        with pytest.raises(PatchError):
            patch_toml(to_patch, patches, patches_6902)
    else:
        assert patch_toml(to_patch, patches, patches_6902) == expected


def test_empty_array_becomes_null():
    assert toml_to_data("a = []\nb = 1") == {"a": None, "b": 1}


def test_utc_datetime_becomes_string():
    assert toml_to_data("d = 1979-05-27T07:32:00Z") == {"d": "1979-05-27T07:32:00Z"}


def test_integral_float_becomes_integer():
    data = toml_to_data("x = 2.0\ny = 2.5")
    assert data == {"x": 2, "y": 2.5}
    assert isinstance(data["x"], int)


def test_dump_array_of_tables():
    data = {"a": 1, "t": [{"x": 1}, {"x": 2}]}
    assert dump_toml(data) == "a = 1\n\n[[t]]\n  x = 1\n\n[[t]]\n  x = 2\n"


def test_dump_round_trip():
    source = 'name = "kind"\n\n[net]\n  ports = [1, 2]\n'
    assert dump_toml(toml_to_data(source)) == source


def test_dump_rejects_mixed_arrays():
    with pytest.raises(PatchError):
        dump_toml({"a": [1, "two"]})


def test_dump_rejects_non_mapping_root():
    with pytest.raises(PatchError):
        dump_toml([1, 2])