"""Runtime state threaded through a single image build."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from .config import CHROOT_MOUNT_DIRS, BuildConfig
from .host import Host, ImageTool

_DERIVED_FIELDS = ("dataroot", "image_snapshot", "mountpoint", "target", "zone_uuid")


@dataclass(frozen=True)
class BindMount:
    """A read-only view of a host directory inside the chroot."""

    source: str
    dest: str


class BuildContext:
    """Configuration, derived fields and resource flags for one build.

    The resource flags record which side effects currently exist so that a
    failed build can release exactly those.
    """

    def __init__(self, config: BuildConfig, host: Host, images: ImageTool) -> None:
        self.config = config
        self.host = host
        self.images = images

        self.dataroot: str | None = None
        self.image_snapshot: str | None = None
        self.mountpoint: str | None = None
        self.target: str | None = None
        self.zone_uuid: UUID | None = None

        self.dataset_exists = False
        self.mountdir_exists = False
        self.mounted: set[str] = set()

        self.warnings: list[str] = []

    def derive(self, **fields: Any) -> None:
        """Record derived fields; each may only be set once per build."""
        for name, value in fields.items():
            if name not in _DERIVED_FIELDS:
                raise AttributeError(f"unknown derived field: '{name}'")
            if getattr(self, name) is not None:
                raise RuntimeError(f"derived field already set: '{name}'")
            setattr(self, name, value)

    def require(self, name: str) -> Any:
        """Return a derived field, failing if its stage has not run yet."""
        value = getattr(self, name)
        if value is None:
            raise RuntimeError(f"'{name}' is not available yet")
        return value

    @property
    def chroot_root(self) -> str:
        return f"{self.require('mountpoint')}/root"

    def chroot_mounts(self) -> list[BindMount]:
        root = self.chroot_root
        return [BindMount(source=d, dest=f"{root}{d}") for d in CHROOT_MOUNT_DIRS]

    @property
    def chroot_is_mounted(self) -> bool:
        """All required chroot directories are mounted."""
        required = {m.dest for m in self.chroot_mounts()} if self.mountpoint else set()
        return bool(required) and required <= self.mounted

    def __repr__(self) -> str:
        return (
            f"BuildContext(image={self.config.image}, target={self.target}, "
            f"dataset_exists={self.dataset_exists}, mountdir_exists={self.mountdir_exists}, "
            f"mounted={len(self.mounted)})"
        )
