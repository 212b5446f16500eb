"""Copying directories from nodes to the host."""

from __future__ import annotations

import io
import logging
import os
import posixpath
import shlex
import tarfile
from typing import IO, Any

from kindling.process import Node

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024


def dump_dir(node: Node, node_dir: str, host_dir: str | os.PathLike[str]) -> None:
    """Copy the directory node_dir on the node into host_dir on the host."""
    # tar exits 1 when a file changed while archiving; only 2 is fatal
    script = (
        f"tar --hard-dereference -C {shlex.quote(posixpath.normpath(node_dir) + '/')}"
        " -chf - . || (r=$?; [ $r -eq 1 ] || exit $r)"
    )
    buffer = io.BytesIO()
    node.command("sh", "-c", script).set_stdout(buffer).run()
    buffer.seek(0)
    try:
        untar(buffer, host_dir)
    except (RuntimeError, OSError) as exc:
        raise RuntimeError(f"Untarring {node_dir!r}: {exc}") from exc


def untar(stream: IO[bytes], dir: str | os.PathLike[str]) -> None:
    """Extract regular files and directories of the tar read from stream into dir."""
    data = stream.read()
    if not data:
        return
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as archive:
            for member in archive:
                _extract(archive, member, os.fspath(dir))
    except tarfile.TarError as exc:
        raise RuntimeError(f"tar reading error: {exc}") from exc


def _extract(archive: tarfile.TarFile, member: tarfile.TarInfo, dir: str) -> None:
    target = os.path.join(dir, member.name.replace("/", os.sep))
    if member.isreg():
        source = archive.extractfile(member)
        fd = os.open(target, os.O_CREAT | os.O_RDWR, member.mode & 0o7777)
        written = 0
        try:
            with os.fdopen(fd, "wb") as out:
                while chunk := source.read(_CHUNK):
                    out.write(chunk)
                    written += len(chunk)
        except OSError as exc:
            raise RuntimeError(f"error writing to {target}: {exc}") from exc
        if written != member.size:
            raise RuntimeError(
                f"only wrote {written} bytes to {target}; expected {member.size}"
            )
    elif member.isdir():
        if not os.path.exists(target):
            os.makedirs(target, mode=0o755, exist_ok=True)
    else:
        logger.warning(
            "tar file entry %s contained unsupported file type %r", member.name, member.type
        )