"""Pulling node images and probing the docker host."""

from __future__ import annotations

import json
import logging
import time

from kindling.common import required_node_images
from kindling.process import RunError, command, output_lines
from kindling.types import ClusterConfig, Status

logger = logging.getLogger(__name__)


def ensure_node_images(status: Status, cfg: ClusterConfig) -> None:
    """Make sure every node image the config uses is present locally."""
    for image in sorted(required_node_images(cfg)):
        friendly, image = sanitize_image(image)
        status.start(f"Ensuring node image ({friendly}) 🖼")
        try:
            pull_if_not_present(image, 4)
        except Exception:
            status.end(False)
            raise


def pull_if_not_present(image: str, retries: int) -> bool:
    """Pull image unless present; return True if a pull was attempted."""
    try:
        command("docker", "inspect", "--type=image", image).run()
    except (RunError, OSError):
        pull(image, retries)
        return True
    logger.debug("Image: %s present locally", image)
    return False


def pull(image: str, retries: int) -> None:
    """Pull image, retrying up to retries times with growing pauses."""
    logger.debug("Pulling image: %s ...", image)
    error: Exception | None = None
    try:
        command("docker", "pull", image).run()
    except (RunError, OSError) as exc:
        error = exc
    if error is not None:
        for attempt in range(retries):
            time.sleep(attempt + 1)
            logger.debug("Trying again to pull image: %r ... %s", image, error)
            try:
                command("docker", "pull", image).run()
            except (RunError, OSError) as exc:
                error = exc
            else:
                error = None
                break
    if error is not None:
        raise RuntimeError(f'failed to pull image "{image}": {error}') from error


def sanitize_image(image: str) -> tuple[str, str]:
    """Return a readable image name and the pullable image reference."""
    if "@sha256:" in image:
        return image.split("@sha256:")[0], image
    return image, image


def is_available() -> bool:
    """Return True if the docker command is usable."""
    try:
        lines = output_lines(command("docker", "-v"))
    except (RunError, OSError):
        return False
    if len(lines) != 1:
        return False
    return lines[0].startswith("Docker version")


def userns_remap() -> bool:
    """Return True if user namespace remapping is enabled in dockerd."""
    try:
        lines = output_lines(
            command("docker", "info", "--format", "'{{json .SecurityOptions}}'")
        )
    except (RunError, OSError):
        return False
    return bool(lines) and "name=userns" in lines[0]


_DRIVERS_NEEDING_DEV_MAPPER = {"btrfs", "zfs", "devicemapper"}
_FILESYSTEMS_NEEDING_DEV_MAPPER = {"btrfs", "zfs", "xfs"}


def mount_dev_mapper() -> bool:
    """Return True if /dev/mapper should be mounted into nodes.

    That is the case for btrfs, zfs or devicemapper storage drivers, or a
    btrfs, zfs or xfs backing filesystem.
    """
    try:
        lines = output_lines(command("docker", "info", "-f", "{{.Driver}}"))
    except (RunError, OSError):
        return False
    if len(lines) != 1:
        return False
    storage = lines[0].strip().lower()
    if storage in _DRIVERS_NEEDING_DEV_MAPPER:
        return True

    try:
        lines = output_lines(command("docker", "info", "-f", "{{json .DriverStatus }}"))
    except (RunError, OSError):
        return False
    if len(lines) != 1:
        return False
    try:
        status = json.loads(lines[0])
    except json.JSONDecodeError:
        return False
    if not isinstance(status, list):
        return False
    for item in status:
        if isinstance(item, list) and len(item) >= 2 and item[0] == "Backing Filesystem":
            storage = str(item[1]).lower()
            break
    return storage in _FILESYSTEMS_NEEDING_DEV_MAPPER