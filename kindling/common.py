"""Helpers shared by the node providers."""

from __future__ import annotations

import os
import socket
from concurrent.futures import ThreadPoolExecutor
from importlib import metadata
from typing import IO, Any, Callable, Iterable

from kindling.process import Cmd, Node
from kindling.types import ClusterConfig

API_SERVER_INTERNAL_PORT = 6443
"""Port the control plane listens on inside the node network."""

HTTP_PROXY = "HTTP_PROXY"
HTTPS_PROXY = "HTTPS_PROXY"
NO_PROXY = "NO_PROXY"


def port_or_get_free_port(port: int, listen_addr: str) -> int:
    """Return port, a free port for 0, or 0 for -1 (let the runtime pick)."""
    if port == -1:
        return 0
    if port == 0:
        return get_free_port(listen_addr)
    return port


def get_free_port(listen_addr: str) -> int:
    """Return a TCP port that is currently free on listen_addr."""
    host = listen_addr or None
    infos = socket.getaddrinfo(host, 0, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE)
    infos.sort(key=lambda info: info[0] != socket.AF_INET)
    last_error: OSError | None = None
    for family, socktype, proto, _, sockaddr in infos:
        try:
            with socket.socket(family, socktype, proto) as sock:
                sock.bind(sockaddr)
                sock.listen(1)
                return sock.getsockname()[1]
        except OSError as exc:
            last_error = exc
    raise last_error or OSError(f"no address to listen on for {listen_addr!r}")


def required_node_images(cfg: ClusterConfig) -> set[str]:
    """Return the set of node images the config uses."""
    return {node.image for node in cfg.nodes}


def file_on_host(path: str | os.PathLike[str]) -> IO[bytes]:
    """Create the file at path for writing, creating parent directories."""
    parent = os.path.dirname(os.fspath(path))
    if parent:
        os.makedirs(parent, exist_ok=True)
    return open(path, "wb")


def _display_version() -> str:
    try:
        return f"kindling v{metadata.version('kindling')}"
    except metadata.PackageNotFoundError:
        return "kindling (unknown version)"


def _run_concurrently(tasks: Iterable[Callable[[], None]], message: str) -> None:
    tasks = list(tasks)
    with ThreadPoolExecutor(max_workers=max(1, len(tasks))) as pool:
        futures = [pool.submit(task) for task in tasks]
    errors = [exc for exc in (future.exception() for future in futures) if exc is not None]
    if errors:
        raise ExceptionGroup(message, errors)


def collect_logs(node: Node, dir: str | os.PathLike[str]) -> None:
    """Write version info and journal logs of node into dir.

    All collections run; failures are raised together as an ExceptionGroup.
    """

    def exec_to_path(cmd: Cmd, name: str) -> Callable[[], None]:
        def task() -> None:
            with file_on_host(os.path.join(dir, name)) as handle:
                cmd.set_stdout(handle).set_stderr(handle).run()

        return task

    def write_to_path(text: str, name: str) -> Callable[[], None]:
        def task() -> None:
            with file_on_host(os.path.join(dir, name)) as handle:
                handle.write(text.encode("utf-8"))

        return task

    _run_concurrently(
        [
            write_to_path(_display_version(), "kind-version.txt"),
            exec_to_path(node.command("cat", "/kind/version"), "kubernetes-version.txt"),
            exec_to_path(node.command("journalctl", "--no-pager"), "journal.log"),
            exec_to_path(
                node.command("journalctl", "--no-pager", "-u", "kubelet.service"), "kubelet.log"
            ),
            exec_to_path(
                node.command("journalctl", "--no-pager", "-u", "containerd.service"),
                "containerd.log",
            ),
        ],
        "failed to collect node logs",
    )


def make_node_namer(cluster_name: str) -> Callable[[str], str]:
    """Return a function naming nodes by role: the first of a role has no suffix."""
    counter: dict[str, int] = {}

    def namer(role: str) -> str:
        count = counter.get(role, 0) + 1
        counter[role] = count
        suffix = str(count) if count > 1 else ""
        return f"{cluster_name}-{role}{suffix}"

    return namer


def get_proxy_envs(
    cfg: ClusterConfig, getenv: Callable[[str], Any] | None = None
) -> dict[str, str]:
    """Return proxy variables in upper and lower case.

    When any proxy is set, NO_PROXY is extended with the cluster subnets.
    """
    lookup = getenv or os.environ.get
    envs: dict[str, str] = {}
    for name in (HTTP_PROXY, HTTPS_PROXY, NO_PROXY):
        value = lookup(name) or lookup(name.lower()) or ""
        if value:
            envs[name] = value
            envs[name.lower()] = value
    if envs:
        no_proxy = envs.get(NO_PROXY, "")
        if no_proxy:
            no_proxy += ","
        no_proxy += f"{cfg.networking.service_subnet},{cfg.networking.pod_subnet}"
        envs[NO_PROXY] = no_proxy
        envs[NO_PROXY.lower()] = no_proxy
    return envs