import io
import json

import pytest

from kindling import nodeutils
from kindling.process import Cmd, Node, RunError


class FakeCmd(Cmd):
    def __init__(self, node, name, *args):
        super().__init__(name, *args)
        self.node = node

    def run(self):
        stdin = self.stdin
        if stdin is not None and hasattr(stdin, "read"):
            stdin = stdin.read()
        self.node.calls.append(([self.name, *self.args], stdin))
        result = self.node.responses.get(self.name, b"")
        if isinstance(result, BaseException):
            raise result
        if self.stdout is not None:
            self.stdout.write(result)


class FakeNode(Node):
    def __init__(self, name, role="worker", responses=None):
        self.name = name
        self.role_value = role
        self.responses = responses or {}
        self.calls = []

    def command(self, command, *args):
        return FakeCmd(self, command, *args)

    def __str__(self):
        return self.name

    def role(self):
        if isinstance(self.role_value, BaseException):
            raise self.role_value
        return self.role_value

    def ip(self):
        return ("", "")

    def serial_logs(self, writer):
        pass


def cluster():
    return [
        FakeNode("kind-worker", "worker"),
        FakeNode("kind-control-plane2", "control-plane"),
        FakeNode("kind-external-load-balancer", "external-load-balancer"),
        FakeNode("kind-control-plane", "control-plane"),
        FakeNode("kind-worker2", "worker"),
    ]


def names(nodes):
    return [str(n) for n in nodes]


def test_select_nodes_by_role_keeps_order():
    nodes = cluster()
    assert names(nodeutils.select_nodes_by_role(nodes, "worker")) == ["kind-worker", "kind-worker2"]


def test_select_nodes_by_role_propagates_role_error():
    nodes = [FakeNode("a", RuntimeError("boom"))]
    with pytest.raises(RuntimeError, match="boom"):
        nodeutils.select_nodes_by_role(nodes, "worker")


def test_internal_nodes_excludes_load_balancer():
    result = names(nodeutils.internal_nodes(cluster()))
    assert "kind-external-load-balancer" not in result
    assert len(result) == 4


def test_external_load_balancer_node():
    assert str(nodeutils.external_load_balancer_node(cluster())) == "kind-external-load-balancer"
    assert nodeutils.external_load_balancer_node([FakeNode("w", "worker")]) is None


def test_external_load_balancer_node_rejects_two():
    nodes = [FakeNode("a", "external-load-balancer"), FakeNode("b", "external-load-balancer")]
    with pytest.raises(ValueError, match="unexpected number"):
        nodeutils.external_load_balancer_node(nodes)


def test_api_server_endpoint_prefers_load_balancer():
    assert str(nodeutils.api_server_endpoint_node(cluster())) == "kind-external-load-balancer"


def test_api_server_endpoint_single_control_plane():
    nodes = [FakeNode("w", "worker"), FakeNode("cp", "control-plane")]
    assert str(nodeutils.api_server_endpoint_node(nodes)) == "cp"


def test_api_server_endpoint_two_control_planes_no_balancer():
    nodes = [FakeNode("a", "control-plane"), FakeNode("b", "control-plane")]
    with pytest.raises(ValueError, match="expected one control plane node"):
        nodeutils.api_server_endpoint_node(nodes)


def test_api_server_endpoint_wraps_selection_errors():
    nodes = [FakeNode("a", "external-load-balancer"), FakeNode("b", "external-load-balancer")]
    with pytest.raises(RuntimeError, match="failed to find api-server endpoint node") as info:
        nodeutils.api_server_endpoint_node(nodes)
    assert isinstance(info.value.__cause__, ValueError)


def test_control_plane_nodes_sorted_by_name():
    assert names(nodeutils.control_plane_nodes(cluster())) == [
        "kind-control-plane",
        "kind-control-plane2",
    ]


def test_bootstrap_and_secondary_control_planes():
    nodes = cluster()
    assert str(nodeutils.bootstrap_control_plane_node(nodes)) == "kind-control-plane"
    assert names(nodeutils.secondary_control_plane_nodes(nodes)) == ["kind-control-plane2"]


def test_bootstrap_requires_control_plane():
    nodes = [FakeNode("w", "worker")]
    with pytest.raises(ValueError, match="expected at least one control-plane node"):
        nodeutils.bootstrap_control_plane_node(nodes)
    with pytest.raises(ValueError):
        nodeutils.secondary_control_plane_nodes(nodes)


def test_kube_version():
    node = FakeNode("n", responses={"cat": b"v1.20.2\n"})
    assert nodeutils.kube_version(node) == "v1.20.2"
    assert node.calls[0][0] == ["cat", "/kind/version"]


def test_kube_version_rejects_multiple_lines():
    node = FakeNode("n", responses={"cat": b"a\nb\n"})
    with pytest.raises(ValueError, match="got 2 lines"):
        nodeutils.kube_version(node)


def test_kube_version_wraps_run_error():
    node = FakeNode("n", responses={"cat": RunError(["cat"], b"", 1)})
    with pytest.raises(RuntimeError, match="failed to get file"):
        nodeutils.kube_version(node)


def test_write_file():
    node = FakeNode("n")
    nodeutils.write_file(node, "/kind/dir/file.txt", "hello")
    assert node.calls == [
        (["mkdir", "-p", "/kind/dir"], None),
        (["cp", "/dev/stdin", "/kind/dir/file.txt"], "hello"),
    ]


def test_write_file_mkdir_failure():
    node = FakeNode("n", responses={"mkdir": RunError(["mkdir"], b"", 1)})
    with pytest.raises(RuntimeError, match="failed to create directory /etc"):
        nodeutils.write_file(node, "/etc/x", "data")


def test_copy_node_to_node():
    source = FakeNode("a", responses={"cat": b"contents"})
    target = FakeNode("b")
    nodeutils.copy_node_to_node(source, target, "/etc/file")
    assert source.calls == [(["cat", "/etc/file"], None)]
    assert target.calls == [
        (["mkdir", "-p", "/etc"], None),
        (["cp", "/dev/stdin", "/etc/file"], b"contents"),
    ]


def test_copy_node_to_node_read_failure():
    source = FakeNode("a", responses={"cat": RunError(["cat"], b"", 1)})
    with pytest.raises(RuntimeError, match="failed to read"):
        nodeutils.copy_node_to_node(source, FakeNode("b"), "/etc/file")


def test_load_image_archive():
    node = FakeNode("n")
    nodeutils.load_image_archive(node, io.BytesIO(b"archive"))
    assert node.calls == [(["ctr", "--namespace=k8s.io", "images", "import", "-"], b"archive")]


def test_load_image_archive_failure():
    node = FakeNode("n", responses={"ctr": RunError(["ctr"], b"", 1)})
    with pytest.raises(RuntimeError, match="failed to load image"):
        nodeutils.load_image_archive(node, b"archive")


def test_image_id():
    payload = json.dumps({"status": {"id": "sha256:abc", "size": "1"}}).encode()
    node = FakeNode("n", responses={"crictl": payload})
    assert nodeutils.image_id(node, "busybox") == "sha256:abc"
    assert node.calls[0][0] == ["crictl", "inspecti", "busybox"]


def test_image_id_invalid_json():
    node = FakeNode("n", responses={"crictl": b"not json"})
    with pytest.raises(ValueError):
        nodeutils.image_id(node, "busybox")