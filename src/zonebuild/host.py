"""Adapters for the external systems a build drives."""

from __future__ import annotations

import gzip
import hashlib
import json
import logging
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel

from .config import Manifest
from .errors import CommandError

logger = logging.getLogger(__name__)

DEFAULT_ZPOOL = "zones"
PKG_ADD = "/opt/local/sbin/pkg_add"
PKG_INFO = "/opt/local/sbin/pkg_info"

_CHUNK_SIZE = 1024 * 1024


def run_command(
    command: Sequence[str],
    *,
    check: bool = True,
    capture: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Execute a command and return the completed process.

    With capture disabled the command shares this process's stdout and stderr.
    """
    logger.debug("Running: %s", " ".join(command))
    pipe = subprocess.PIPE if capture else None
    result = subprocess.run(list(command), stdout=pipe, stderr=pipe, text=True, check=False)
    if check and result.returncode != 0:
        err = CommandError(command, result.returncode, result.stdout or "", result.stderr or "")
        logger.error("FAILED(stdout): %s", err.stdout)
        logger.error("FAILED(stderr): %s", err.stderr)
        logger.error("FAILED(err): %s", err)
        raise err
    return result


class Host(ABC):
    """Filesystem, mount and package operations on the build host."""

    @abstractmethod
    def clone_dataset(self, snapshot: str, target: str, mountpoint: str) -> None:
        """Clone a snapshot into a new dataset mounted at mountpoint."""

    @abstractmethod
    def destroy_dataset(self, target: str) -> None:
        """Destroy a dataset and its snapshots."""

    @abstractmethod
    def make_dirs(self, path: str) -> None:
        """Create a directory and any missing parents."""

    @abstractmethod
    def bind_mount(self, source: str, dest: str) -> None:
        """Mount source read-only on dest."""

    @abstractmethod
    def unmount(self, dest: str) -> None:
        """Unmount dest."""

    @abstractmethod
    def sync_files(self, source: str, dest: str, *, verbose: bool = False) -> int:
        """Mirror source into dest, returning the exit code."""

    @abstractmethod
    def install_packages(self, root: str, packages: Sequence[str]) -> int:
        """Install packages inside the chroot at root, returning the exit code."""

    @abstractmethod
    def list_packages(self, root: str) -> str:
        """Return the installed packages inside root as 'name description' lines."""

    @abstractmethod
    def remove_dir(self, path: str) -> None:
        """Remove an empty directory."""


class SystemHost(Host):
    """Host operations backed by the illumos command line tools."""

    def clone_dataset(self, snapshot: str, target: str, mountpoint: str) -> None:
        run_command(["/usr/sbin/zfs", "clone", "-o", f"mountpoint={mountpoint}", snapshot, target])

    def destroy_dataset(self, target: str) -> None:
        run_command(["/usr/sbin/zfs", "destroy", "-r", target])

    def make_dirs(self, path: str) -> None:
        run_command(["/usr/bin/mkdir", "-p", path])

    def bind_mount(self, source: str, dest: str) -> None:
        run_command(["/usr/sbin/mount", "-F", "lofs", "-r", source, dest])

    def unmount(self, dest: str) -> None:
        run_command(["/usr/sbin/umount", dest])

    def sync_files(self, source: str, dest: str, *, verbose: bool = False) -> int:
        flags = "-vaP" if verbose else "-a"
        src = source.rstrip("/") + "/"
        dst = dest.rstrip("/") + "/"
        return run_command(["/usr/bin/rsync", flags, src, dst], check=False, capture=False).returncode

    def install_packages(self, root: str, packages: Sequence[str]) -> int:
        command = ["/usr/sbin/chroot", root, PKG_ADD, "-U", *packages]
        return run_command(command, check=False, capture=False).returncode

    def list_packages(self, root: str) -> str:
        return run_command(["/usr/sbin/chroot", root, PKG_INFO, "-a"]).stdout

    def remove_dir(self, path: str) -> None:
        run_command(["/usr/bin/rmdir", path])


@dataclass(frozen=True)
class ImageRef:
    """Location of an installed base image."""

    dataroot: str
    snapshot: str


class ZoneDescriptor(BaseModel):
    """Describes the zone analog to the image tool as if it were a stopped VM."""

    uuid: UUID
    image_uuid: UUID
    state: str = "stopped"
    zfs_filesystem: str
    zpool: str


class ImageRequest(BaseModel):
    """Everything needed to assemble an image from a zone analog."""

    manifest: Manifest
    zone: ZoneDescriptor
    origin: str
    save_prefix: Path
    compression: str = "gzip"
    incremental: bool = True


@dataclass(frozen=True)
class ImageFiles:
    """The manifest and file written for a new image."""

    manifest: Path
    file: Path


class ImageTool(ABC):
    """Image registry operations: import base images and assemble new ones."""

    @abstractmethod
    def resolve(self, image: UUID) -> ImageRef:
        """Make sure the image is installed and return where it lives."""

    @abstractmethod
    def create_image(self, request: ImageRequest) -> ImageFiles:
        """Assemble an image from the zone analog described in request."""


class ImgadmTool(ImageTool):
    """Image operations using imgadm and zfs send."""

    def __init__(self, zpool: str = DEFAULT_ZPOOL) -> None:
        self.zpool = zpool

    def resolve(self, image: UUID) -> ImageRef:
        logger.info("Calling imgadm to import image")
        run_command(["/usr/sbin/imgadm", "import", "-q", "-P", self.zpool, str(image)])
        snapshot = f"{self.zpool}/{image}@final"
        run_command(["/usr/sbin/zfs", "list", "-H", "-o", "name", snapshot])
        return ImageRef(dataroot=self.zpool, snapshot=snapshot)

    def create_image(self, request: ImageRequest) -> ImageFiles:
        if request.compression not in ("gzip", "none"):
            raise ValueError(f"unsupported compression: '{request.compression}'")

        snapshot = f"{request.zone.zfs_filesystem}@final"
        run_command(["/usr/sbin/zfs", "snapshot", snapshot])

        suffix = ".zfs.gz" if request.compression == "gzip" else ".zfs"
        file_path = Path(f"{request.save_prefix}{suffix}")
        manifest_path = Path(f"{request.save_prefix}.imgmanifest")

        command = ["/usr/sbin/zfs", "send"]
        if request.incremental:
            command += ["-i", request.origin]
        command.append(snapshot)
        logger.info("Sending %s to %s", snapshot, file_path)
        self._send(command, file_path, compress=request.compression == "gzip")

        manifest = self._manifest(request, file_path)
        manifest_path.write_text(json.dumps(manifest, indent=2) + "\n")
        logger.info("Created image %s (%s)", manifest["uuid"], manifest_path)
        return ImageFiles(manifest=manifest_path, file=file_path)

    def _send(self, command: list[str], path: Path, *, compress: bool) -> None:
        """Stream the output of a zfs send into path.

        A failed send removes whatever was written to path.
        """
        opener = gzip.open if compress else open
        with tempfile.TemporaryFile() as errlog:
            try:
                with subprocess.Popen(command, stdout=subprocess.PIPE, stderr=errlog) as proc:
                    assert proc.stdout is not None
                    with opener(path, "wb") as out:
                        shutil.copyfileobj(proc.stdout, out, _CHUNK_SIZE)
                    returncode = proc.wait()
                if returncode != 0:
                    errlog.seek(0)
                    stderr = errlog.read().decode(errors="replace")
                    raise CommandError(command, returncode, "", stderr)
            except BaseException:
                path.unlink(missing_ok=True)
                raise

    def _manifest(self, request: ImageRequest, file_path: Path) -> dict[str, Any]:
        """Build the image manifest for the written file."""
        sha1 = hashlib.sha1()
        with file_path.open("rb") as fh:
            for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
                sha1.update(chunk)

        data: dict[str, Any] = {
            "v": 2,
            "uuid": str(uuid4()),
            "type": "zone-dataset",
            "os": "smartos",
            "state": "active",
            "published_at": datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
        }
        data.update(request.manifest.model_dump())
        if request.incremental:
            data["origin"] = str(request.zone.image_uuid)
        data["files"] = [
            {
                "sha1": sha1.hexdigest(),
                "size": file_path.stat().st_size,
                "compression": request.compression,
            }
        ]
        return data
