"""Shared fakes for the external systems a build drives."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from uuid import UUID

import pytest

from zonebuild.config import BuildConfig
from zonebuild.context import BuildContext
from zonebuild.errors import CommandError
from zonebuild.host import Host, ImageFiles, ImageRef, ImageRequest, ImageTool

BASE_IMAGE = "11111111-1111-1111-1111-111111111111"


class FakeHost(Host):
    """Records every call; fails the calls named in fail_on.

    fail_on maps a method name to True (always fail) or to a set of first
    arguments that should fail.
    """

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.fail_on: dict[str, bool | set[str]] = {}
        self.sync_code = 0
        self.install_code = 0
        self.package_output = ""

    def _call(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        rule = self.fail_on.get(name)
        if rule is True or (isinstance(rule, set) and args and args[0] in rule):
            raise CommandError([name, *map(str, args)], 1, "", "boom")

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def args_of(self, name: str) -> list[tuple]:
        return [call[1:] for call in self.calls if call[0] == name]

    def clone_dataset(self, snapshot: str, target: str, mountpoint: str) -> None:
        self._call("clone_dataset", snapshot, target, mountpoint)

    def destroy_dataset(self, target: str) -> None:
        self._call("destroy_dataset", target)

    def make_dirs(self, path: str) -> None:
        self._call("make_dirs", path)

    def bind_mount(self, source: str, dest: str) -> None:
        self._call("bind_mount", source, dest)

    def unmount(self, dest: str) -> None:
        self._call("unmount", dest)

    def sync_files(self, source: str, dest: str, *, verbose: bool = False) -> int:
        self._call("sync_files", source, dest, verbose)
        return self.sync_code

    def install_packages(self, root: str, packages: Sequence[str]) -> int:
        self._call("install_packages", root, list(packages))
        return self.install_code

    def list_packages(self, root: str) -> str:
        self._call("list_packages", root)
        return self.package_output

    def remove_dir(self, path: str) -> None:
        self._call("remove_dir", path)


class FakeImages(ImageTool):
    def __init__(self) -> None:
        self.resolved: list[UUID] = []
        self.requests: list[ImageRequest] = []
        self.fail_resolve = False
        self.fail_create = False

    def resolve(self, image: UUID) -> ImageRef:
        self.resolved.append(image)
        if self.fail_resolve:
            raise CommandError(["imgadm", "import", str(image)], 1, "", "not found")
        return ImageRef(dataroot="zones", snapshot=f"zones/{image}@final")

    def create_image(self, request: ImageRequest) -> ImageFiles:
        self.requests.append(request)
        if self.fail_create:
            raise CommandError(["zfs", "send"], 1, "", "boom")
        prefix = request.save_prefix
        return ImageFiles(manifest=Path(f"{prefix}.imgmanifest"), file=Path(f"{prefix}.zfs.gz"))


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def images() -> FakeImages:
    return FakeImages()


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides) -> BuildConfig:
        attrs = {
            "dir": tmp_path,
            "image": BASE_IMAGE,
            "manifest": {"name": "test", "version": "1.0.0"},
            "save_dir": tmp_path,
        }
        attrs.update(overrides)
        return BuildConfig(**attrs)

    return _make


@pytest.fixture
def config(make_config) -> BuildConfig:
    return make_config()


@pytest.fixture
def ctx(config, host, images) -> BuildContext:
    return BuildContext(config, host=host, images=images)
