"""Parallel mount and unmount of the chroot directories."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TypeVar

from .context import BindMount, BuildContext
from .errors import CommandError, MountError, UnmountError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def fan_out(
    func: Callable[[T], None],
    items: Iterable[T],
    *,
    on_done: Callable[[T], None] | None = None,
) -> None:
    """Run func on every item concurrently and wait for all of them.

    on_done is called from the calling thread for each item that succeeded.
    Once every call has finished, the first error observed is raised; the
    remaining calls are never cancelled.
    """
    items = list(items)
    if not items:
        return

    first_error: BaseException | None = None
    with ThreadPoolExecutor(max_workers=len(items)) as pool:
        futures = {pool.submit(func, item): item for item in items}
        for future in as_completed(futures):
            exc = future.exception()
            if exc is None:
                if on_done is not None:
                    on_done(futures[future])
            elif first_error is None:
                first_error = exc
            else:
                logger.debug("Additional failure: %s", exc)

    if first_error is not None:
        raise first_error


def mount_all(ctx: BuildContext) -> None:
    """Mount every chroot directory, recording each mount as it succeeds."""

    def _mount(mount: BindMount) -> None:
        try:
            ctx.host.make_dirs(mount.dest)
        except (CommandError, OSError) as exc:
            raise MountError(f"failed to create {mount.dest}: {exc}") from exc
        try:
            ctx.host.bind_mount(mount.source, mount.dest)
        except (CommandError, OSError) as exc:
            raise MountError(f"failed to mount {mount.source} on {mount.dest}: {exc}") from exc
        logger.info("Mounted %s on %s", mount.source, mount.dest)

    fan_out(_mount, ctx.chroot_mounts(), on_done=lambda m: ctx.mounted.add(m.dest))


def unmount_all(ctx: BuildContext, dests: Iterable[str] | None = None) -> None:
    """Unmount the given chroot destinations (all of them by default)."""
    if dests is None:
        dests = [m.dest for m in ctx.chroot_mounts()]

    def _unmount(dest: str) -> None:
        try:
            ctx.host.unmount(dest)
        except (CommandError, OSError) as exc:
            raise UnmountError(f"failed to unmount {dest}: {exc}") from exc
        logger.info("Unmounted %s", dest)

    fan_out(_unmount, dests, on_done=ctx.mounted.discard)
