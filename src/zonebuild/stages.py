"""Forward build stages, in execution order."""

from __future__ import annotations

import json
import logging
import textwrap
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from .context import BuildContext
from .errors import (
    CloneError,
    CommandError,
    DestroyError,
    FileSyncError,
    ImageCreateError,
    ImageResolutionError,
    PackageInstallError,
    PackageListError,
    RemoveDirError,
)
from .host import ImageRequest, ZoneDescriptor
from .mounts import mount_all, unmount_all

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Stage:
    """A named step of the build pipeline."""

    name: str
    func: Callable[[BuildContext], None]

    def __call__(self, ctx: BuildContext) -> None:
        self.func(ctx)


def ensure_image(ctx: BuildContext) -> None:
    """Import the base image and locate its final snapshot."""
    image = ctx.config.image
    try:
        ref = ctx.images.resolve(image)
    except (CommandError, OSError) as exc:
        raise ImageResolutionError(f"unable to import image {image}: {exc}") from exc
    ctx.derive(dataroot=ref.dataroot, image_snapshot=ref.snapshot)
    logger.info("Using base image %s (%s)", image, ref.snapshot)


def create_zone_analog(ctx: BuildContext) -> None:
    """Clone the base snapshot into a new dataset with its own mount point."""
    dataroot = ctx.require("dataroot")
    snapshot = ctx.require("image_snapshot")
    zone_uuid = uuid.uuid4()
    mountpoint = str(ctx.config.mount_root / f"zoneproto-{zone_uuid}")
    target = f"{dataroot}/{zone_uuid}"

    logger.info("Creating zone analog (%s)", zone_uuid)
    ctx.derive(zone_uuid=zone_uuid, mountpoint=mountpoint, target=target)

    try:
        ctx.host.clone_dataset(snapshot, target, mountpoint)
    except (CommandError, OSError) as exc:
        raise CloneError(f"failed to clone {snapshot}: {exc}") from exc

    # zfs creates the mount point directory as part of the clone
    ctx.dataset_exists = True
    ctx.mountdir_exists = True
    logger.info("Created %s, and mounted on %s", target, mountpoint)


def install_files(ctx: BuildContext) -> None:
    """Copy the source directory into the zone analog's root."""
    source = str(ctx.config.dir)
    dest = ctx.chroot_root
    logger.info("Copying files from %s to %s", source, ctx.mountpoint)
    try:
        code = ctx.host.sync_files(source, dest, verbose=ctx.config.verbose)
    except (CommandError, OSError) as exc:
        raise FileSyncError(f"failed to copy files: {exc}") from exc

    logger.info("File sync exited with code %d", code)
    if code != 0:
        if ctx.config.strict_sync:
            raise FileSyncError(f"file sync exited with code {code}")
        logger.warning("File sync reported errors (exit code %d); continuing", code)


def setup_chroot(ctx: BuildContext) -> None:
    """Mount the required host directories read-only inside the chroot."""
    mount_all(ctx)


def install_packages(ctx: BuildContext) -> None:
    """Install the requested packages inside the chroot."""
    packages = ctx.config.packages
    if not packages:
        logger.info("No packages to install, skipping")
        return

    logger.info("Installing packages: %s", ", ".join(packages))
    try:
        code = ctx.host.install_packages(ctx.chroot_root, packages)
    except (CommandError, OSError) as exc:
        raise PackageInstallError(f"failed to install packages: {exc}") from exc

    logger.info("Package installer exited with code %d", code)
    if code != 0:
        raise PackageInstallError("failed to install packages")
    logger.info("Installed %s", ", ".join(packages))


def load_packages(ctx: BuildContext) -> None:
    """Log the packages present in the chroot."""
    try:
        output = ctx.host.list_packages(ctx.chroot_root)
    except (CommandError, OSError) as exc:
        raise PackageListError(f"failed to list packages: {exc}") from exc

    lines = sorted(line for line in output.strip().splitlines() if line)
    names = [line.split(" ")[0] for line in lines]
    logger.info("Packages:\n%s", textwrap.indent(json.dumps(names, indent=4), "    "))


def unsetup_chroot(ctx: BuildContext) -> None:
    """Unmount the chroot directories."""
    unmount_all(ctx)


def cleanup_zone_analog(ctx: BuildContext) -> None:
    """Hook for tidying the zone analog before the image is taken."""
    logger.debug("Nothing to clean up in %s", ctx.mountpoint)


def create_image(ctx: BuildContext) -> None:
    """Assemble an incremental, compressed image from the zone analog."""
    config = ctx.config
    dataroot = ctx.require("dataroot")
    request = ImageRequest(
        manifest=config.manifest,
        zone=ZoneDescriptor(
            uuid=ctx.require("zone_uuid"),
            image_uuid=config.image,
            zfs_filesystem=ctx.require("target"),
            zpool=dataroot,
        ),
        origin=ctx.require("image_snapshot"),
        save_prefix=config.save_dir / config.manifest.save_name,
    )
    try:
        files = ctx.images.create_image(request)
    except (CommandError, OSError, ValueError) as exc:
        raise ImageCreateError(f"failed to create image: {exc}") from exc
    logger.info("Wrote image %s and manifest %s", files.file, files.manifest)


def destroy_zone_analog(ctx: BuildContext) -> None:
    """Destroy the cloned dataset."""
    target = ctx.require("target")
    try:
        ctx.host.destroy_dataset(target)
    except (CommandError, OSError) as exc:
        raise DestroyError(f"failed to destroy {target}: {exc}") from exc
    ctx.dataset_exists = False
    logger.info("Destroyed %s", target)


def destroy_mountdir(ctx: BuildContext) -> None:
    """Remove the (now empty) mount point directory."""
    mountpoint = ctx.require("mountpoint")
    try:
        ctx.host.remove_dir(mountpoint)
    except (CommandError, OSError) as exc:
        raise RemoveDirError(f"failed to remove {mountpoint}: {exc}") from exc
    ctx.mountdir_exists = False
    logger.info("Deleted %s", mountpoint)


FORWARD_STAGES: tuple[Stage, ...] = tuple(
    Stage(func.__name__, func)
    for func in (
        ensure_image,
        create_zone_analog,
        install_files,
        setup_chroot,
        install_packages,
        load_packages,
        unsetup_chroot,
        cleanup_zone_analog,
        create_image,
        destroy_zone_analog,
        destroy_mountdir,
    )
)
