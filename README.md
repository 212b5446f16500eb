# kindling

kindling is a library of building blocks for local Kubernetes clusters whose
"nodes" are Docker containers. It describes a cluster as plain dataclasses and
runs commands on the host and inside node containers. It prepares the Docker
network the nodes join, and it plans the `docker run` calls that create the
nodes. It also selects nodes by role, copies logs off nodes, renders the
HAProxy config for the control plane load balancer, and patches YAML and TOML
configuration.

## Modules

- `kindling.types`: the cluster configuration. This is `ClusterConfig` with its
  `Networking` and a list of `NodeConfig`, each holding `Mount` and
  `PortMapping` entries. It also has the enums `NodeRole`, `IPFamily`,
  `MountPropagation` and `PortMappingProtocol`, plus `ProviderInfo`. The
  `Status` protocol and `NoopStatus` report progress. `Provider` is an abstract
  interface for node backends.
- `kindling.process`: runs host commands.
  - `command(name, *args)` returns a `Cmd`. Its `set_env`, `set_stdin`,
    `set_stdout` and `set_stderr` return the command itself, so calls can be
    chained, and `run()` raises `RunError` on a non-zero exit.
  - `output(cmd)` and `output_lines(cmd)` capture stdout.
  - `run_error_for(exc)` finds a `RunError` in the cause chain of an exception.
  - `Node` is the abstract node interface.
- `kindling.docker.node`: `DockerNode`, a node that is a named container.
  - `role()` reads the role label of the container.
  - `ip()` returns its IPv4 and IPv6 addresses.
  - `command(...)` returns a `NodeCmd`, which runs through `docker exec --privileged`.
  - `serial_logs(writer)` writes out the container logs.
- `kindling.docker.network`: `ensure_network(name)` makes sure exactly one
  bridge network of that name exists.
  - The network gets an IPv6 subnet taken from `fc00::/8`, worked out by
    `generate_ula_subnet_from_name(name, attempt)`.
  - It probes further subnets when a pool overlaps.
  - If IPv6 is unavailable, it creates the network without one.
  - When there are duplicates, it keeps the network with the most containers,
    then the lowest ID; see `sort_network_inspect_entries`.
- `kindling.docker.images`: `ensure_node_images(status, cfg)` checks each node
  image the config uses. It pulls a missing image and retries a failed pull
  with growing pauses.
  - `sanitize_image` strips a `@sha256:` digest for display.
  - `is_available()`, `userns_remap()` and `mount_dev_mapper()` probe the
    Docker host.
- `kindling.docker.provision`: `plan_creation(cfg, network_name)` returns one
  callable per container to create.
  - With more than one control plane node, an extra callable creates the
    external load balancer, and only the load balancer publishes the API
    server port.
  - Helper functions build the argument lists: `common_args`,
    `run_args_for_node`, `run_args_for_load_balancer`,
    `generate_mount_bindings`, `generate_port_mappings` and `get_proxy_env`.
- `kindling.nodeutils`: selects nodes by role with `select_nodes_by_role`,
  `internal_nodes`, `control_plane_nodes`, `bootstrap_control_plane_node`,
  `secondary_control_plane_nodes`, `external_load_balancer_node` and
  `api_server_endpoint_node`. Its node helpers are `kube_version`,
  `write_file`, `copy_node_to_node`, `load_image_archive` and `image_id`.
- `kindling.logs`:
  - `dump_dir(node, node_dir, host_dir)` streams a node directory out as a tar
    archive.
  - `untar(stream, dir)` extracts regular files and directories, and logs a
    warning for other entry types.
- `kindling.common`: shared helpers.
  - `make_node_namer`, `port_or_get_free_port`, `get_free_port`,
    `required_node_images` and `get_proxy_envs`.
  - `collect_logs(node, dir)` writes version and journal logs of a node.
    Failures are raised together as an `ExceptionGroup`.
  - `file_on_host(path)` creates a file together with its parent directories.
- `kindling.loadbalancer`: `config(ConfigData(...))` renders the HAProxy
  config, listing backend servers sorted by name. `IMAGE` and `CONFIG_PATH`
  name the image and the config file location.
- `kindling.jsonpatch`:
  - `merge_patch(doc, patch)` applies an RFC 7386 merge patch.
  - `decode_patch(text)` parses an RFC 6902 patch into a `JSONPatch`, whose
    `apply(doc)` returns a new document.
  - Failures raise `PatchError`.
- `kindling.kubeyaml`: `kube_yaml(to_patch, patches, patches_6902)` patches a
  multi-document YAML stream.
- `kindling.tomlpatch`: `patch_toml(to_patch, patches, patches_6902)` patches
  TOML.

## Examples

Node names follow the cluster name and the role. Later nodes with the same
role get a number:

```python
from kindling.common import make_node_namer

namer = make_node_namer("kind")
namer("control-plane")  # "kind-control-plane"
namer("worker")         # "kind-worker"
namer("worker")         # "kind-worker2"
```

Patching Kubernetes YAML:

```python
from kindling.kubeyaml import kube_yaml

documents = """kind: ClusterConfiguration
apiVersion: kubeadm.k8s.io/v1beta2
networking:
  podSubnet: 10.244.0.0/16
"""
patch = """kind: ClusterConfiguration
networking:
  podSubnet: 10.100.0.0/16
"""
print(kube_yaml(documents, [patch], []))
```

A patch applies to every document whose `kind` matches. If the patch sets
`apiVersion`, that has to match as well.

Patching TOML, such as a containerd config, with a merge patch and then a
JSON 6902 patch:

```python
from kindling.tomlpatch import patch_toml

config = '''disabled_plugins = ["restart"]
[plugins.linux]
  shim_debug = true
'''
patched = patch_toml(
    config,
    ['disabled_plugins=["foo"]'],
    ['[{"op": "remove", "path": "/disabled_plugins"}]'],
)
```

Rendering the load balancer config:

```python
from kindling.loadbalancer import ConfigData, config

text = config(ConfigData(
    control_plane_port=6443,
    backend_servers={"kind-control-plane": "kind-control-plane:6443"},
))
```

Creating the containers of a cluster, which needs a working `docker` command:

```python
from kindling.docker.network import ensure_network
from kindling.docker.provision import plan_creation
from kindling.types import ClusterConfig, NodeConfig, NodeRole

cfg = ClusterConfig(name="demo", nodes=[
    NodeConfig(role=NodeRole.CONTROL_PLANE, image="kindest/node:v1.20.2"),
    NodeConfig(role=NodeRole.WORKER, image="kindest/node:v1.20.2"),
])
ensure_network("kind")
for create in plan_creation(cfg, "kind"):
    create()
```

Malformed input and failed patches raise exceptions. Failed commands raise
`RunError`, or an error whose cause chain holds one.

## What it does not do

kindling is a library of parts, not a finished tool:

- It has no command line.
- It has no implementation of the `kindling.types.Provider` interface. Nothing
  in it lists clusters, deletes node containers or looks up the API server
  endpoint of a cluster.
- It does not detect which container runtime is installed.
- It does not start Kubernetes inside the nodes. `plan_creation` only creates
  the containers.

## Requirements

- Python 3.11 or later.
- PyYAML.
- A working `docker` command on the host for anything that touches
  containers, images or networks. The patching, naming and config rendering
  helpers work without it.