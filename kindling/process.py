"""Running commands on the host, and the node interface."""

from __future__ import annotations

import abc
import io
import os
import subprocess
from typing import IO, Any


class RunError(Exception):
    """A command ran but exited with a non-zero status."""

    def __init__(self, command: list[str], output: bytes, returncode: int) -> None:
        self.command = list(command)
        self.output = output
        self.returncode = returncode
        super().__init__(
            f'command "{" ".join(self.command)}" failed with error: exit status {returncode}'
        )


def _read_input(source: Any) -> bytes | None:
    if source is None:
        return None
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    if isinstance(source, str):
        return source.encode("utf-8")
    data = source.read()
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


def _write(stream: IO[Any], data: bytes) -> None:
    if isinstance(stream, io.TextIOBase):
        stream.write(data.decode("utf-8", errors="replace"))
    else:
        stream.write(data)


class Cmd:
    """A command to run on the host, configured fluently before run()."""

    def __init__(self, name: str, *args: str) -> None:
        self.name = name
        self.args = list(args)
        self.env: list[str] | None = None
        self.stdin: Any = None
        self.stdout: IO[Any] | None = None
        self.stderr: IO[Any] | None = None

    def set_env(self, *args: str) -> Cmd:
        """Replace the environment with KEY=VALUE entries."""
        self.env = list(args)
        return self

    def set_stdin(self, stream: Any) -> Cmd:
        self.stdin = stream
        return self

    def set_stdout(self, stream: IO[Any]) -> Cmd:
        self.stdout = stream
        return self

    def set_stderr(self, stream: IO[Any]) -> Cmd:
        self.stderr = stream
        return self

    def run(self) -> None:
        """Run the command, raising RunError on a non-zero exit status."""
        argv = [self.name, *self.args]
        env = None
        if self.env is not None:
            env = dict(entry.split("=", 1) if "=" in entry else (entry, "") for entry in self.env)
        data = _read_input(self.stdin)
        combined = self.stdout is self.stderr
        proc = subprocess.run(
            argv,
            input=data,
            stdin=subprocess.DEVNULL if data is None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if combined else subprocess.PIPE,
            env=env,
            check=False,
        )
        out = proc.stdout or b""
        err = b"" if combined else (proc.stderr or b"")
        if self.stdout is not None:
            _write(self.stdout, out)
        if self.stderr is not None and not combined:
            _write(self.stderr, err)
        if proc.returncode != 0:
            raise RunError(argv, out + err, proc.returncode)

    def __repr__(self) -> str:
        return f"Cmd({' '.join([self.name, *self.args])!r})"


def command(name: str, *args: str) -> Cmd:
    """Return a host command."""
    return Cmd(name, *args)


def output(cmd: Cmd) -> bytes:
    """Run cmd and return what it wrote to stdout."""
    buffer = io.BytesIO()
    cmd.set_stdout(buffer).run()
    return buffer.getvalue()


def output_lines(cmd: Cmd) -> list[str]:
    """Run cmd and return its stdout split into lines."""
    text = output(cmd).decode("utf-8", errors="replace")
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def run_error_for(error: BaseException | None) -> RunError | None:
    """Return the RunError behind error, following its causes, if any."""
    seen: set[int] = set()
    current = error
    while current is not None and id(current) not in seen:
        if isinstance(current, RunError):
            return current
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return None


class Node(abc.ABC):
    """A cluster node that commands can be run against."""

    @abc.abstractmethod
    def command(self, command: str, *args: str) -> Cmd:
        """Return a command that runs on the node."""

    @abc.abstractmethod
    def __str__(self) -> str:
        """Return the node name."""

    @abc.abstractmethod
    def role(self) -> str:
        """Return the node's role."""

    @abc.abstractmethod
    def ip(self) -> tuple[str, str]:
        """Return the node's IPv4 and IPv6 addresses."""

    @abc.abstractmethod
    def serial_logs(self, writer: IO[Any]) -> None:
        """Write the node container's logs to writer."""


__all__ = ["Cmd", "Node", "RunError", "command", "output", "output_lines", "run_error_for", "os"]