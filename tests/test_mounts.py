"""Tests for zonebuild.mounts."""

from __future__ import annotations

import threading

import pytest

from zonebuild.errors import MountError, UnmountError
from zonebuild.mounts import fan_out, mount_all, unmount_all


class TestFanOut:
    def test_runs_every_item(self):
        seen = []
        fan_out(seen.append, [1, 2, 3])
        assert sorted(seen) == [1, 2, 3]

    def test_empty_is_noop(self):
        fan_out(lambda item: None, [])

    def test_runs_concurrently(self):
        barrier = threading.Barrier(3, timeout=5)
        fan_out(lambda item: barrier.wait(), ["a", "b", "c"])

    def test_on_done_only_for_successes(self):
        def _func(item):
            if item == "bad":
                raise ValueError(item)

        done = []
        with pytest.raises(ValueError):
            fan_out(_func, ["a", "bad", "c"], on_done=done.append)
        assert sorted(done) == ["a", "c"]

    def test_waits_for_siblings_after_failure(self):
        finished = []
        release = threading.Event()

        def _func(item):
            if item == "bad":
                release.set()
                raise RuntimeError("bad")
            release.wait(timeout=5)
            finished.append(item)

        with pytest.raises(RuntimeError, match="bad"):
            fan_out(_func, ["bad", "slow1", "slow2"])
        assert sorted(finished) == ["slow1", "slow2"]

    def test_single_error_is_raised_as_is(self):
        err = KeyError("x")

        def _func(item):
            if item == 2:
                raise err

        with pytest.raises(KeyError) as excinfo:
            fan_out(_func, [1, 2, 3])
        assert excinfo.value is err


class TestMountAll:
    def test_mounts_every_directory(self, ctx, host):
        ctx.derive(mountpoint="/zp")
        mount_all(ctx)
        assert sorted(host.args_of("make_dirs")) == sorted((m.dest,) for m in ctx.chroot_mounts())
        assert sorted(host.args_of("bind_mount")) == sorted((m.source, m.dest) for m in ctx.chroot_mounts())
        assert ctx.chroot_is_mounted is True

    def test_creates_directory_before_mounting(self, ctx, host):
        ctx.derive(mountpoint="/zp")
        mount_all(ctx)
        for mount in ctx.chroot_mounts():
            assert host.calls.index(("make_dirs", mount.dest)) < host.calls.index(
                ("bind_mount", mount.source, mount.dest)
            )

    def test_partial_failure_tracks_mounted_directories(self, ctx, host):
        ctx.derive(mountpoint="/zp")
        host.fail_on["bind_mount"] = {"/sbin"}
        with pytest.raises(MountError, match="/sbin"):
            mount_all(ctx)
        assert ctx.chroot_is_mounted is False
        assert ctx.mounted == {"/zp/root/dev", "/zp/root/lib", "/zp/root/proc", "/zp/root/usr"}

    def test_mkdir_failure(self, ctx, host):
        ctx.derive(mountpoint="/zp")
        host.fail_on["make_dirs"] = {"/zp/root/dev"}
        with pytest.raises(MountError, match="failed to create /zp/root/dev"):
            mount_all(ctx)
        assert ("bind_mount", "/dev", "/zp/root/dev") not in host.calls
        assert "/zp/root/dev" not in ctx.mounted


class TestUnmountAll:
    def test_unmounts_everything_by_default(self, ctx, host):
        ctx.derive(mountpoint="/zp")
        mount_all(ctx)
        unmount_all(ctx)
        assert len(host.args_of("unmount")) == 5
        assert ctx.mounted == set()

    def test_only_given_destinations(self, ctx, host):
        ctx.derive(mountpoint="/zp")
        ctx.mounted.update({"/zp/root/dev", "/zp/root/usr"})
        unmount_all(ctx, ["/zp/root/dev"])
        assert host.args_of("unmount") == [("/zp/root/dev",)]
        assert ctx.mounted == {"/zp/root/usr"}

    def test_failure_keeps_failed_destination(self, ctx, host):
        ctx.derive(mountpoint="/zp")
        mount_all(ctx)
        host.fail_on["unmount"] = {"/zp/root/proc"}
        with pytest.raises(UnmountError, match="/zp/root/proc"):
            unmount_all(ctx)
        assert ctx.mounted == {"/zp/root/proc"}
        assert len(host.args_of("unmount")) == 5
