"""Configuration of the external control plane load balancer."""

from __future__ import annotations

from dataclasses import dataclass, field

IMAGE = "kindest/haproxy:v20200708-548e36db"
"""The load balancer image and tag."""

CONFIG_PATH = "/usr/local/etc/haproxy/haproxy.cfg"
"""Path of the config file inside the image."""


@dataclass
class ConfigData:
    """Values the load balancer config is rendered from."""

    control_plane_port: int
    backend_servers: dict[str, str] = field(default_factory=dict)
    ipv6: bool = False


_HEADER = """# generated by kindling
global
  log /dev/log local0
  log /dev/log local1 notice
  daemon

resolvers docker
  nameserver dns 127.0.0.11:53

defaults
  log global
  mode tcp
  option dontlognull
  # tune these
  timeout connect 5000
  timeout client 50000
  timeout server 50000
  # allow to boot despite dns don't resolve backends
  default-server init-addr none

"""


def config(data: ConfigData) -> str:
    """Render the haproxy config for data; servers appear sorted by name."""
    port = data.control_plane_port
    ipv6_bind = f"bind :::{port};" if data.ipv6 else ""
    prefer = "ipv6" if data.ipv6 else "ipv4"
    servers = "".join(
        f"\n  server {server} {address} check check-ssl verify none"
        f" resolvers docker resolve-prefer {prefer}"
        for server, address in sorted(data.backend_servers.items())
    )
    return (
        _HEADER
        + "frontend control-plane\n"
        + f"  bind *:{port}\n"
        + f"  {ipv6_bind}\n"
        + "  default_backend kube-apiservers\n"
        + "\n"
        + "backend kube-apiservers\n"
        + "  option httpchk GET /healthz\n"
        + "  # backends are not verified\n"
        + f"  {servers}\n"
    )