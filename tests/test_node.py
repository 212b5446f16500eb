import io
import subprocess
from unittest.mock import patch

import pytest

from kindling.docker.node import DockerNode
from kindling.process import RunError, output


def completed(stdout, returncode=0):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=b"")


def test_node_name():
    assert str(DockerNode("kind-control-plane")) == "kind-control-plane"


def test_command_argv_plain():
    cmd = DockerNode("kind-worker").command("ls", "-l")
    assert cmd.argv() == ["exec", "--privileged", "kind-worker", "ls", "-l"]


def test_command_argv_with_stdin_and_env():
    cmd = DockerNode("n").command("cat").set_stdin(b"data").set_env("A=1", "B=2")
    assert cmd.argv() == ["exec", "--privileged", "-i", "-e", "A=1", "-e", "B=2", "n", "cat"]


@patch("kindling.process.subprocess.run")
def test_command_run_goes_through_docker_exec(run):
    run.return_value = completed(b"v1.20.2\n")
    buffer = io.BytesIO()
    DockerNode("n").command("cat", "/kind/version").set_stdout(buffer).run()
    assert run.call_args.args[0] == ["docker", "exec", "--privileged", "n", "cat", "/kind/version"]
    assert buffer.getvalue() == b"v1.20.2\n"


@patch("kindling.process.subprocess.run")
def test_command_run_passes_stdin(run):
    run.return_value = completed(b"ok")
    cmd = DockerNode("n").command("cp", "/dev/stdin", "/x").set_stdin("content")
    assert output(cmd) == b"ok"
    assert run.call_args.args[0][:4] == ["docker", "exec", "--privileged", "-i"]
    assert run.call_args.kwargs["input"] == b"content"


@patch("kindling.process.subprocess.run")
def test_command_run_failure(run):
    run.return_value = completed(b"oops", returncode=1)
    with pytest.raises(RunError):
        DockerNode("n").command("false").run()


@patch("kindling.process.subprocess.run")
def test_role(run):
    run.return_value = completed(b"worker\n")
    assert DockerNode("kind-worker").role() == "worker"
    argv = run.call_args.args[0]
    assert argv[:3] == ["docker", "inspect", "--format"]
    assert "io.x-k8s.kind.role" in argv[3]
    assert argv[-1] == "kind-worker"


@patch("kindling.process.subprocess.run")
def test_role_rejects_multiple_lines(run):
    run.return_value = completed(b"a\nb\n")
    with pytest.raises(ValueError, match="output lines 2 != 1"):
        DockerNode("n").role()


@patch("kindling.process.subprocess.run")
def test_role_wraps_run_error(run):
    run.return_value = completed(b"", returncode=1)
    with pytest.raises(RuntimeError, match="failed to get role for node"):
        DockerNode("n").role()


@patch("kindling.process.subprocess.run")
def test_ip(run):
    run.return_value = completed(b"172.18.0.2,fc00:f853:ccd:e793::2\n")
    assert DockerNode("n").ip() == ("172.18.0.2", "fc00:f853:ccd:e793::2")


@patch("kindling.process.subprocess.run")
def test_ip_requires_two_values(run):
    run.return_value = completed(b"172.18.0.2\n")
    with pytest.raises(ValueError, match="got 1 values"):
        DockerNode("n").ip()


@patch("kindling.process.subprocess.run")
def test_serial_logs(run):
    run.return_value = completed(b"booting\n")
    writer = io.BytesIO()
    DockerNode("n").serial_logs(writer)
    assert run.call_args.args[0] == ["docker", "logs", "n"]
    assert writer.getvalue() == b"booting\n"