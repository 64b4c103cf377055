"""zonebuild error hierarchy."""

from __future__ import annotations

from collections.abc import Sequence


class BuildError(Exception):
    """Base exception for a failed build stage."""

    stage = "build"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.stage}: {self.message}"


class ImageResolutionError(BuildError):
    """Base image could not be found or imported."""

    stage = "ensure_image"


class CloneError(BuildError):
    """Cloning the base snapshot into the zone analog failed."""

    stage = "create_zone_analog"


class FileSyncError(BuildError):
    """Copying the source directory into the zone analog failed."""

    stage = "install_files"


class MountError(BuildError):
    """Preparing or mounting a chroot directory failed."""

    stage = "setup_chroot"


class PackageInstallError(BuildError):
    """The package installer exited non-zero."""

    stage = "install_packages"


class PackageListError(BuildError):
    """Listing packages inside the chroot failed."""

    stage = "load_packages"


class UnmountError(BuildError):
    """Unmounting a chroot directory failed."""

    stage = "unsetup_chroot"


class ImageCreateError(BuildError):
    """Assembling the image from the zone analog failed."""

    stage = "create_image"


class DestroyError(BuildError):
    """Destroying the cloned dataset failed."""

    stage = "destroy_zone_analog"


class RemoveDirError(BuildError):
    """Removing the mount point directory failed."""

    stage = "destroy_mountdir"


class CommandError(RuntimeError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, command: Sequence[str], returncode: int, stdout: str = "", stderr: str = "") -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"Command {' '.join(self.command)} failed with exit code {returncode}")
