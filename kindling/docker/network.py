"""Managing the docker network that cluster nodes are attached to."""

from __future__ import annotations

import hashlib
import io
import ipaddress
import json
import struct
from dataclasses import dataclass, field
from typing import Any

from kindling.process import RunError, command, output, run_error_for

FIXED_NETWORK_NAME = "kind"
"""Name of the user defined network nodes join unless overridden."""

_MAX_ATTEMPTS = 5
_GO_REGEX_SPECIALS = set("\\.+*?()|[]{}^$")


@dataclass
class NetworkInspectEntry:
    """The parts of `docker network inspect` output used for sorting."""

    id: str
    containers: dict[str, dict[str, str]] = field(default_factory=dict)


def _quote_meta(text: str) -> str:
    return "".join("\\" + ch if ch in _GO_REGEX_SPECIALS else ch for ch in text)


def _name_filter(name: str) -> str:
    return f"--filter=name=^{_quote_meta(name)}$"


def _output_text(error: BaseException | None) -> str | None:
    rerr = run_error_for(error)
    if rerr is None:
        return None
    return rerr.output.decode("utf-8", errors="replace")


def _is_ipv6_unavailable_error(error: BaseException) -> bool:
    text = _output_text(error)
    return text is not None and text.startswith(
        "Error response from daemon: Cannot read IPv6 setup for bridge"
    )


def _is_pool_overlap_error(error: BaseException) -> bool:
    text = _output_text(error)
    return text is not None and text.startswith(
        "Error response from daemon: Pool overlaps with other one on this address space"
    )


def _is_network_already_exists_error(error: BaseException) -> bool:
    text = _output_text(error)
    return (
        text is not None
        and text.startswith("Error response from daemon: network with name")
        and "already exists" in text
    )


def is_only_error_no_such_network(error: BaseException | None) -> bool:
    """Return True if the failed command only reported missing networks."""
    text = _output_text(error)
    if text is None:
        return False
    # only newline terminated lines are considered
    for line in text.split("\n")[:-1]:
        if line.startswith("Error: No such network:"):
            continue
        if line.startswith("Error: "):
            return False
    return True


def generate_ula_subnet_from_name(name: str, attempt: int = 0) -> str:
    """Derive a /64 IPv6 subnet in fc00::/8 from name and a probing attempt."""
    digest = hashlib.sha1(name.encode("utf-8") + struct.pack("<i", attempt)).digest()
    address = bytes([0xFC, 0x00]) + digest[2:8] + bytes(8)
    network = ipaddress.IPv6Network((int.from_bytes(address, "big"), 64))
    return str(network)


def sort_network_inspect_entries(networks: list[NetworkInspectEntry]) -> None:
    """Sort in place: networks with more containers first, then by ID."""
    networks.sort(key=lambda entry: (-len(entry.containers), entry.id))


def networks_with_name(name: str) -> list[str]:
    """Return the IDs of networks named exactly name."""
    out = output(command("docker", "network", "ls", _name_filter(name), "--format={{.ID}}"))
    cleaned = out.decode("utf-8", errors="replace").removesuffix("\n")
    if not cleaned:
        return []
    return cleaned.split("\n")


def check_if_network_exists(name: str) -> bool:
    """Return True if a network named name is listed."""
    out = output(command("docker", "network", "ls", _name_filter(name), "--format={{.Name}}"))
    return out.decode("utf-8", errors="replace").startswith(name)


def delete_networks(*args: str) -> None:
    """Remove the given networks."""
    command("docker", "network", "rm", *args).run()


def _entry_from_json(data: Any) -> NetworkInspectEntry:
    if not isinstance(data, dict):
        raise ValueError("failed to decode networks list: entry is not an object")
    containers = data.get("Containers") or {}
    if not isinstance(containers, dict):
        raise ValueError("failed to decode networks list: Containers is not an object")
    return NetworkInspectEntry(id=str(data.get("Id", "")), containers=containers)


def _inspect_networks(network_ids: list[str]) -> list[NetworkInspectEntry]:
    buffer = io.BytesIO()
    try:
        command("docker", "network", "inspect", *network_ids).set_stdout(buffer).run()
    except RunError as exc:
        # a missing network shows up as absent from the output anyway
        if not is_only_error_no_such_network(exc):
            raise
    try:
        data = json.loads(buffer.getvalue())
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValueError(f"failed to decode networks list: {exc}") from exc
    if not isinstance(data, list):
        raise ValueError("failed to decode networks list: not a list")
    return [_entry_from_json(item) for item in data]


def _sorted_networks_with_name(name: str) -> list[str]:
    ids = networks_with_name(name)
    if len(ids) < 2:
        return ids
    networks = _inspect_networks(ids)
    sort_network_inspect_entries(networks)
    return [entry.id for entry in networks]


def _remove_duplicate_networks(name: str) -> bool:
    networks = _sorted_networks_with_name(name)
    if len(networks) > 1:
        try:
            delete_networks(*networks[1:])
        except RunError as exc:
            if not is_only_error_no_such_network(exc):
                raise
    return bool(networks)


def _create_network(name: str, ipv6_subnet: str) -> None:
    args = [
        "network",
        "create",
        "-d=bridge",
        "-o",
        "com.docker.network.bridge.enable_ip_masquerade=true",
    ]
    if ipv6_subnet:
        args += ["--ipv6", "--subnet", ipv6_subnet]
    command("docker", *args, name).run()


def _create_network_no_duplicates(name: str, ipv6_subnet: str) -> None:
    try:
        _create_network(name, ipv6_subnet)
    except (RunError, OSError) as exc:
        if not _is_network_already_exists_error(exc):
            raise
    _remove_duplicate_networks(name)


def ensure_network(name: str) -> None:
    """Make sure exactly one network named name exists, creating it if needed.

    The network gets an IPv6 subnet derived from its name, probing other
    subnets when one overlaps an existing pool.
    """
    if _remove_duplicate_networks(name):
        return

    try:
        _create_network_no_duplicates(name, generate_ula_subnet_from_name(name, 0))
        return
    except (RunError, OSError) as exc:
        if _is_ipv6_unavailable_error(exc):
            _create_network_no_duplicates(name, "")
            return
        if not _is_pool_overlap_error(exc):
            raise
        # another process may have created the network meanwhile
        if check_if_network_exists(name):
            return

    for attempt in range(1, _MAX_ATTEMPTS):
        try:
            _create_network_no_duplicates(name, generate_ula_subnet_from_name(name, attempt))
            return
        except (RunError, OSError) as exc:
            if not _is_pool_overlap_error(exc):
                raise
            if check_if_network_exists(name):
                return
    raise RuntimeError("exhausted attempts trying to find a non-overlapping subnet")