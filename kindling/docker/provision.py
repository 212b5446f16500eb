"""Planning and running the creation of node containers with docker."""

from __future__ import annotations

import os
from enum import Enum
from functools import partial
from typing import Any, Callable, Iterable

from kindling.common import (
    API_SERVER_INTERNAL_PORT,
    NO_PROXY,
    get_proxy_envs,
    make_node_namer,
    port_or_get_free_port,
)
from kindling.docker.images import mount_dev_mapper, userns_remap
from kindling.docker.node import CLUSTER_LABEL_KEY, NODE_ROLE_LABEL_KEY
from kindling.loadbalancer import IMAGE as LOAD_BALANCER_IMAGE
from kindling.nodeutils import EXTERNAL_LOAD_BALANCER_ROLE
from kindling.process import RunError, command, output_lines
from kindling.types import (
    ClusterConfig,
    IPFamily,
    Mount,
    MountPropagation,
    NodeConfig,
    NodeRole,
    PortMapping,
    PortMappingProtocol,
)

_KUBECONFIG_ENV = "KUBECONFIG=/etc/kubernetes/admin.conf"
_SUPPORTED_PROTOCOLS = {protocol.value for protocol in PortMappingProtocol}


def _text(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def _join_host_port(host: str, port: int | str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _cluster_is_ipv6(cfg: ClusterConfig) -> bool:
    return _text(cfg.networking.ip_family) == IPFamily.IPV6.value


def cluster_has_implicit_load_balancer(cfg: ClusterConfig) -> bool:
    """Return True if the cluster has more than one control plane node."""
    control_planes = sum(
        1 for node in cfg.nodes if _text(node.role) == NodeRole.CONTROL_PLANE.value
    )
    return control_planes > 1


def _create_container(args: list[str]) -> None:
    try:
        command("docker", *args).run()
    except (RunError, OSError) as exc:
        raise RuntimeError(f"docker run error: {exc}") from exc


def _create_load_balancer(cfg: ClusterConfig, name: str, generic_args: list[str]) -> None:
    _create_container(run_args_for_load_balancer(cfg, name, generic_args))


def _create_control_plane(
    node: NodeConfig,
    ip_family: Any,
    name: str,
    generic_args: list[str],
    api_server_address: str,
    api_server_port: int,
) -> None:
    with_api_server = node.copy()
    with_api_server.extra_port_mappings.append(
        PortMapping(
            listen_address=api_server_address,
            host_port=api_server_port,
            container_port=API_SERVER_INTERNAL_PORT,
        )
    )
    _create_container(run_args_for_node(with_api_server, ip_family, name, generic_args))


def _create_worker(node: NodeConfig, ip_family: Any, name: str, generic_args: list[str]) -> None:
    _create_container(run_args_for_node(node, ip_family, name, generic_args))


def plan_creation(cfg: ClusterConfig, network_name: str) -> list[Callable[[], None]]:
    """Return callables that each create one container of the cluster."""
    # all names are needed up front for NO_PROXY
    namer = make_node_namer(cfg.name)
    names = [namer(_text(node.role)) for node in cfg.nodes]
    have_load_balancer = cluster_has_implicit_load_balancer(cfg)
    if have_load_balancer:
        names.append(namer(EXTERNAL_LOAD_BALANCER_ROLE))

    generic_args = common_args(cfg.name, cfg, network_name, names)

    # with several control planes only the load balancer publishes the port
    api_server_port = cfg.networking.api_server_port
    api_server_address = cfg.networking.api_server_address
    tasks: list[Callable[[], None]] = []
    if have_load_balancer:
        api_server_port = 0
        api_server_address = "::1" if _cluster_is_ipv6(cfg) else "127.0.0.1"
        tasks.append(partial(_create_load_balancer, cfg, names[-1], generic_args))

    ip_family = cfg.networking.ip_family
    for node_cfg, name in zip(cfg.nodes, names):
        node = node_cfg.copy()
        # docker can only handle absolute host paths
        for mount in node.extra_mounts:
            if not os.path.isabs(mount.host_path):
                try:
                    mount.host_path = os.path.abspath(mount.host_path)
                except OSError as exc:
                    raise RuntimeError(
                        "unable to resolve absolute path for hostPath: "
                        f'"{mount.host_path}": {exc}'
                    ) from exc

        role = _text(node.role)
        if role == NodeRole.CONTROL_PLANE.value:
            tasks.append(
                partial(
                    _create_control_plane,
                    node,
                    ip_family,
                    name,
                    generic_args,
                    api_server_address,
                    api_server_port,
                )
            )
        elif role == NodeRole.WORKER.value:
            tasks.append(partial(_create_worker, node, ip_family, name, generic_args))
        else:
            raise ValueError(f'unknown node role: "{role}"')
    return tasks


def common_args(
    cluster: str, cfg: ClusterConfig, network_name: str, node_names: list[str]
) -> list[str]:
    """Return the docker run arguments shared by all containers of a cluster."""
    args = [
        "--detach",
        "--tty",
        "--label",
        f"{CLUSTER_LABEL_KEY}={cluster}",
        "--net",
        network_name,
        # restart on host or dockerd reboot, retry a failure only once
        "--restart=on-failure:1",
        # the entrypoint must be PID 1
        "--init=false",
    ]

    if _cluster_is_ipv6(cfg):
        args += [
            "--sysctl=net.ipv6.conf.all.disable_ipv6=0",
            "--sysctl=net.ipv6.conf.all.forwarding=1",
        ]

    try:
        proxy_env = get_proxy_env(cfg, network_name, node_names)
    except (RuntimeError, ValueError, OSError) as exc:
        raise RuntimeError(f"proxy setup error: {exc}") from exc
    for key, value in proxy_env.items():
        args += ["-e", f"{key}={value}"]

    if userns_remap():
        args.append("--userns=host")

    if mount_dev_mapper():
        args += ["--volume", "/dev/mapper:/dev/mapper"]

    return args


def run_args_for_node(
    node: NodeConfig, cluster_ip_family: Any, name: str, args: list[str]
) -> list[str]:
    """Return the full docker run arguments for a Kubernetes node."""
    result = [
        "run",
        "--hostname",
        name,
        "--name",
        name,
        "--label",
        f"{NODE_ROLE_LABEL_KEY}={_text(node.role)}",
        "--privileged",
        "--security-opt",
        "seccomp=unconfined",
        "--security-opt",
        "apparmor=unconfined",
        "--tmpfs",
        "/tmp",
        "--tmpfs",
        "/run",
        "--volume",
        "/var",
        "--volume",
        "/lib/modules:/lib/modules:ro",
        *args,
    ]
    result += generate_mount_bindings(node.extra_mounts)
    result += generate_port_mappings(cluster_ip_family, node.extra_port_mappings)
    if _text(node.role) == NodeRole.CONTROL_PLANE.value:
        result += ["-e", _KUBECONFIG_ENV]
    result.append(node.image)
    return result


def run_args_for_load_balancer(cfg: ClusterConfig, name: str, args: list[str]) -> list[str]:
    """Return the full docker run arguments for the external load balancer."""
    result = [
        "run",
        "--hostname",
        name,
        "--name",
        name,
        "--label",
        f"{NODE_ROLE_LABEL_KEY}={EXTERNAL_LOAD_BALANCER_ROLE}",
        *args,
    ]
    result += generate_port_mappings(
        cfg.networking.ip_family,
        [
            PortMapping(
                listen_address=cfg.networking.api_server_address,
                host_port=cfg.networking.api_server_port,
                container_port=API_SERVER_INTERNAL_PORT,
            )
        ],
    )
    result.append(LOAD_BALANCER_IMAGE)
    return result


def get_proxy_env(
    cfg: ClusterConfig, network_name: str, node_names: list[str]
) -> dict[str, str]:
    """Return proxy variables, with network subnets and node names in NO_PROXY."""
    envs = get_proxy_envs(cfg)
    if envs:
        subnets = _get_subnets(network_name)
        no_proxy_list = [
            *subnets,
            envs.get(NO_PROXY, ""),
            *node_names,
            # best effort for in-cluster service names
            ".svc",
            ".svc.cluster",
            ".svc.cluster.local",
        ]
        joined = ",".join(no_proxy_list)
        envs[NO_PROXY] = joined
        envs[NO_PROXY.lower()] = joined
    return envs


def _get_subnets(network_name: str) -> list[str]:
    template = '{{range (index (index . "IPAM") "Config")}}{{index . "Subnet"}} {{end}}'
    try:
        lines = output_lines(
            command("docker", "network", "inspect", "-f", template, network_name)
        )
    except (RunError, OSError) as exc:
        raise RuntimeError(f"failed to get subnets: {exc}") from exc
    if not lines:
        raise RuntimeError("failed to get subnets: no output")
    return lines[0].strip().split(" ")


def generate_mount_bindings(mounts: Iterable[Mount]) -> list[str]:
    """Convert mounts to docker --volume arguments with their options."""
    args = []
    for mount in mounts:
        bind = f"{mount.host_path}:{mount.container_path}"
        attrs = []
        if mount.readonly:
            attrs.append("ro")
        if mount.selinux_relabel:
            attrs.append("Z")
        propagation = _text(mount.propagation)
        if propagation == MountPropagation.BIDIRECTIONAL.value:
            attrs.append("rshared")
        elif propagation == MountPropagation.HOST_TO_CONTAINER.value:
            attrs.append("rslave")
        if attrs:
            bind = f"{bind}:{','.join(attrs)}"
        args.append(f"--volume={bind}")
    return args


def generate_port_mappings(
    cluster_ip_family: Any, port_mappings: Iterable[PortMapping]
) -> list[str]:
    """Convert port mappings to docker --publish arguments."""
    family = _text(cluster_ip_family)
    args = []
    for mapping in port_mappings:
        listen_address = mapping.listen_address
        if not listen_address:
            if family == IPFamily.IPV4.value:
                listen_address = "0.0.0.0"
            elif family == IPFamily.IPV6.value:
                listen_address = "::"
            else:
                raise ValueError(f"unknown cluster IP family: {family}")
        protocol = _text(mapping.protocol) if mapping.protocol else ""
        if not protocol:
            protocol = PortMappingProtocol.TCP.value
        if protocol not in _SUPPORTED_PROTOCOLS:
            raise ValueError(f"unknown port mapping protocol: {protocol}")

        try:
            host_port = port_or_get_free_port(mapping.host_port, listen_address)
        except OSError as exc:
            raise RuntimeError(
                f"failed to get random host port for port mapping: {exc}"
            ) from exc

        binding = _join_host_port(listen_address, host_port)
        args.append(f"--publish={binding}:{mapping.container_port}/{protocol}")
    return args