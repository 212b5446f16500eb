"""Cluster nodes backed by docker containers."""

from __future__ import annotations

from typing import IO, Any

from kindling.process import Cmd, Node, RunError, command, output_lines

CLUSTER_LABEL_KEY = "io.x-k8s.kind.cluster"
"""Label identifying the cluster a node container belongs to."""

NODE_ROLE_LABEL_KEY = "io.x-k8s.kind.role"
"""Label holding the role of a node container."""


class DockerNode(Node):
    """A node that is a docker container, named by its container name."""

    def __init__(self, name: str) -> None:
        self.name = name

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"DockerNode({self.name!r})"

    def role(self) -> str:
        cmd = command(
            "docker",
            "inspect",
            "--format",
            f'{{{{ index .Config.Labels "{NODE_ROLE_LABEL_KEY}"}}}}',
            self.name,
        )
        try:
            lines = output_lines(cmd)
        except (RunError, OSError) as exc:
            raise RuntimeError(f"failed to get role for node: {exc}") from exc
        if len(lines) != 1:
            raise ValueError(f"failed to get role for node: output lines {len(lines)} != 1")
        return lines[0]

    def ip(self) -> tuple[str, str]:
        cmd = command(
            "docker",
            "inspect",
            "-f",
            "{{range .NetworkSettings.Networks}}{{.IPAddress}},{{.GlobalIPv6Address}}{{end}}",
            self.name,
        )
        try:
            lines = output_lines(cmd)
        except (RunError, OSError) as exc:
            raise RuntimeError(f"failed to get container details: {exc}") from exc
        if len(lines) != 1:
            raise ValueError(f"file should only be one line, got {len(lines)} lines")
        ips = lines[0].split(",")
        if len(ips) != 2:
            raise ValueError(f"container addresses should have 2 values, got {len(ips)} values")
        return ips[0], ips[1]

    def command(self, command: str, *args: str) -> NodeCmd:
        return NodeCmd(self.name, command, *args)

    def serial_logs(self, writer: IO[Any]) -> None:
        command("docker", "logs", self.name).set_stdout(writer).set_stderr(writer).run()


class NodeCmd(Cmd):
    """A command run inside a node container through docker exec."""

    def __init__(self, name_or_id: str, command: str, *args: str) -> None:
        super().__init__(command, *args)
        self.name_or_id = name_or_id

    def argv(self) -> list[str]:
        """Return the docker arguments that run this command in the container."""
        args = ["exec", "--privileged"]
        if self.stdin is not None:
            args.append("-i")
        for entry in self.env or ():
            args += ["-e", entry]
        return [*args, self.name_or_id, self.name, *self.args]

    def run(self) -> None:
        cmd = command("docker", *self.argv())
        if self.stdin is not None:
            cmd.set_stdin(self.stdin)
        if self.stderr is not None:
            cmd.set_stderr(self.stderr)
        if self.stdout is not None:
            cmd.set_stdout(self.stdout)
        cmd.run()