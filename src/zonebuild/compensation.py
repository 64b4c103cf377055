"""Best-effort release of whatever a failed build left behind."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from .context import BuildContext
from .mounts import unmount_all
from .stages import destroy_mountdir, destroy_zone_analog

logger = logging.getLogger(__name__)


class Release(ABC):
    """A resource that a failed build may need to give back."""

    description: str = ""

    @abstractmethod
    def exists(self, ctx: BuildContext) -> bool:
        """The resource is currently held."""

    @abstractmethod
    def release(self, ctx: BuildContext) -> None:
        """Give the resource back."""


class ChrootMounts(Release):
    description = "unsetup chroot"

    def exists(self, ctx: BuildContext) -> bool:
        return bool(ctx.mounted)

    def release(self, ctx: BuildContext) -> None:
        unmount_all(ctx, sorted(ctx.mounted))


class ZoneDataset(Release):
    description = "destroy zone analog"

    def exists(self, ctx: BuildContext) -> bool:
        return ctx.dataset_exists

    def release(self, ctx: BuildContext) -> None:
        destroy_zone_analog(ctx)


class MountDir(Release):
    description = "destroy mount dir"

    def exists(self, ctx: BuildContext) -> bool:
        return ctx.mountdir_exists

    def release(self, ctx: BuildContext) -> None:
        destroy_mountdir(ctx)


COMPENSATION_STEPS: tuple[Release, ...] = (ChrootMounts(), ZoneDataset(), MountDir())


def compensate(ctx: BuildContext, steps: tuple[Release, ...] = COMPENSATION_STEPS) -> list[str]:
    """Release every held resource in order, returning the failures as warnings.

    A failing step never prevents the later ones from running.
    """
    warnings: list[str] = []
    for step in steps:
        if not step.exists(ctx):
            logger.debug("Skipping %s; not present", step.description)
            continue
        logger.info("Cleaning up: %s", step.description)
        try:
            step.release(ctx)
        except Exception as exc:  # best effort
            message = f"failed to {step.description}: {exc}"
            logger.warning("%s", message)
            warnings.append(message)
    ctx.warnings.extend(warnings)
    return warnings
