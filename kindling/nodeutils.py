"""Selecting cluster nodes by role and common operations on nodes."""

from __future__ import annotations

import io
import json
import posixpath
from typing import IO, Any

from kindling.process import Node, RunError, output_lines
from kindling.types import NodeRole

CONTROL_PLANE_ROLE = NodeRole.CONTROL_PLANE.value
WORKER_ROLE = NodeRole.WORKER.value
EXTERNAL_LOAD_BALANCER_ROLE = "external-load-balancer"


def select_nodes_by_role(all_nodes: list[Node], role: str) -> list[Node]:
    """Return the nodes whose role is role, keeping their order."""
    return [node for node in all_nodes if node.role() == role]


def internal_nodes(all_nodes: list[Node]) -> list[Node]:
    """Return the Kubernetes nodes, leaving out e.g. the external load balancer."""
    return [
        node for node in all_nodes if node.role() in (WORKER_ROLE, CONTROL_PLANE_ROLE)
    ]


def external_load_balancer_node(all_nodes: list[Node]) -> Node | None:
    """Return the external load balancer node, or None if there is none."""
    balancers = select_nodes_by_role(all_nodes, EXTERNAL_LOAD_BALANCER_ROLE)
    if not balancers:
        return None
    if len(balancers) > 1:
        raise ValueError(
            f"unexpected number of {EXTERNAL_LOAD_BALANCER_ROLE} nodes {len(balancers)}"
        )
    return balancers[0]


def api_server_endpoint_node(all_nodes: list[Node]) -> Node:
    """Return the node hosting the API server endpoint.

    That is the load balancer if there is one, otherwise the single
    control plane node.
    """
    try:
        balancer = external_load_balancer_node(all_nodes)
        if balancer is not None:
            return balancer
        control_planes = control_plane_nodes(all_nodes)
    except Exception as exc:
        raise RuntimeError(f"failed to find api-server endpoint node: {exc}") from exc
    if len(control_planes) != 1:
        raise ValueError(
            "expected one control plane node or a load balancer, "
            f"not {len(control_planes)} and none"
        )
    return control_planes[0]


def control_plane_nodes(all_nodes: list[Node]) -> list[Node]:
    """Return the control plane nodes sorted by name; the first bootstraps."""
    return sorted(select_nodes_by_role(all_nodes, CONTROL_PLANE_ROLE), key=str)


def bootstrap_control_plane_node(all_nodes: list[Node]) -> Node:
    """Return the bootstrap control plane node."""
    nodes = control_plane_nodes(all_nodes)
    if not nodes:
        raise ValueError(f"expected at least one {CONTROL_PLANE_ROLE} node")
    return nodes[0]


def secondary_control_plane_nodes(all_nodes: list[Node]) -> list[Node]:
    """Return the control plane nodes other than the bootstrap one."""
    nodes = control_plane_nodes(all_nodes)
    if not nodes:
        raise ValueError(f"expected at least one {CONTROL_PLANE_ROLE} node")
    return nodes[1:]


def kube_version(node: Node) -> str:
    """Return the Kubernetes version installed on the node."""
    try:
        lines = output_lines(node.command("cat", "/kind/version"))
    except (RunError, OSError) as exc:
        raise RuntimeError(f"failed to get file: {exc}") from exc
    if len(lines) != 1:
        raise ValueError(f"file should only be one line, got {len(lines)} lines")
    return lines[0]


def _parent_dir(path: str) -> str:
    return posixpath.normpath(posixpath.dirname(path) or ".")


def write_file(node: Node, dest: str, content: str) -> None:
    """Write content to dest on the node, creating its directory."""
    directory = _parent_dir(dest)
    try:
        node.command("mkdir", "-p", directory).run()
    except (RunError, OSError) as exc:
        raise RuntimeError(f"failed to create directory {directory}: {exc}") from exc
    node.command("cp", "/dev/stdin", dest).set_stdin(content).run()


def copy_node_to_node(a: Node, b: Node, file: str) -> None:
    """Copy file from node a to the same path on node b."""
    directory = _parent_dir(file)
    try:
        b.command("mkdir", "-p", directory).run()
    except (RunError, OSError) as exc:
        raise RuntimeError(f"failed to create directory {directory!r}: {exc}") from exc
    buffer = io.BytesIO()
    try:
        a.command("cat", file).set_stdout(buffer).run()
    except (RunError, OSError) as exc:
        raise RuntimeError(f"failed to read {file!r} from node: {exc}") from exc
    try:
        b.command("cp", "/dev/stdin", file).set_stdin(buffer.getvalue()).run()
    except (RunError, OSError) as exc:
        raise RuntimeError(f"failed to write {file!r} to node: {exc}") from exc


def load_image_archive(node: Node, image: IO[Any] | bytes) -> None:
    """Import the image archive read from image into the node's containerd."""
    cmd = node.command("ctr", "--namespace=k8s.io", "images", "import", "-").set_stdin(image)
    try:
        cmd.run()
    except (RunError, OSError) as exc:
        raise RuntimeError(f"failed to load image: {exc}") from exc


def image_id(node: Node, image: str) -> str:
    """Return the ID of the named image on the node."""
    buffer = io.BytesIO()
    node.command("crictl", "inspecti", image).set_stdout(buffer).run()
    data = json.loads(buffer.getvalue())
    status = data.get("status") if isinstance(data, dict) else None
    image_identifier = status.get("id", "") if isinstance(status, dict) else ""
    return image_identifier if isinstance(image_identifier, str) else ""