"""Cluster configuration, provider info and the provider interface."""

from __future__ import annotations

import abc
import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from kindling.process import Node


@dataclass
class ProviderInfo:
    """Facts about the node provider on this host."""

    rootless: bool = False


class NodeRole(str, Enum):
    """Role of a node within a cluster."""

    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


class IPFamily(str, Enum):
    """IP family used by the cluster network."""

    IPV4 = "ipv4"
    IPV6 = "ipv6"


class MountPropagation(str, Enum):
    """Mount propagation mode of an extra mount."""

    NONE = "None"
    HOST_TO_CONTAINER = "HostToContainer"
    BIDIRECTIONAL = "Bidirectional"


class PortMappingProtocol(str, Enum):
    """Transport protocol of a port mapping."""

    TCP = "TCP"
    UDP = "UDP"
    SCTP = "SCTP"


@dataclass
class Mount:
    """A host path mounted into a node."""

    host_path: str = ""
    container_path: str = ""
    readonly: bool = False
    selinux_relabel: bool = False
    propagation: MountPropagation = MountPropagation.NONE


@dataclass
class PortMapping:
    """A container port published on the host.

    A host port of 0 asks for a free port to be picked; -1 leaves the
    choice to the container runtime.
    """

    container_port: int = 0
    host_port: int = 0
    listen_address: str = ""
    protocol: PortMappingProtocol = PortMappingProtocol.TCP


@dataclass
class NodeConfig:
    """Configuration of a single node."""

    role: NodeRole = NodeRole.CONTROL_PLANE
    image: str = ""
    extra_mounts: list[Mount] = field(default_factory=list)
    extra_port_mappings: list[PortMapping] = field(default_factory=list)

    def copy(self) -> NodeConfig:
        """Return a deep copy that can be modified independently."""
        return copy.deepcopy(self)


@dataclass
class Networking:
    """Cluster wide network settings."""

    ip_family: IPFamily = IPFamily.IPV4
    api_server_port: int = 0
    api_server_address: str = ""
    pod_subnet: str = ""
    service_subnet: str = ""


@dataclass
class ClusterConfig:
    """Configuration of a whole cluster."""

    name: str = "kind"
    nodes: list[NodeConfig] = field(default_factory=list)
    networking: Networking = field(default_factory=Networking)


class Status(Protocol):
    """Reports the progress of a long running step."""

    def start(self, message: str) -> None: ...

    def end(self, success: bool) -> None: ...


class NoopStatus:
    """A status reporter that reports nothing."""

    def start(self, message: str) -> None:
        pass

    def end(self, success: bool) -> None:
        pass


class Provider(abc.ABC):
    """A provider of cluster node infrastructure."""

    @abc.abstractmethod
    def provision(self, status: Status, cfg: ClusterConfig) -> None:
        """Create and start the nodes, short of starting Kubernetes."""

    @abc.abstractmethod
    def list_clusters(self) -> list[str]:
        """Return the names of clusters that have resources here."""

    @abc.abstractmethod
    def list_nodes(self, cluster: str) -> list[Node]:
        """Return the nodes of the named cluster."""

    @abc.abstractmethod
    def delete_nodes(self, nodes: list[Node]) -> None:
        """Delete the given nodes."""

    @abc.abstractmethod
    def get_api_server_endpoint(self, cluster: str) -> str:
        """Return the host endpoint of the cluster's API server."""

    @abc.abstractmethod
    def get_api_server_internal_endpoint(self, cluster: str) -> str:
        """Return the in-network endpoint of the cluster's API server."""

    @abc.abstractmethod
    def collect_logs(self, dir: str, nodes: list[Node]) -> None:
        """Populate dir with logs and debug files."""

    @abc.abstractmethod
    def info(self) -> ProviderInfo:
        """Return facts about the provider."""