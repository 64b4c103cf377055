"""Build configuration models and input parsing."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Annotated, Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, DirectoryPath, Field, ValidationError

CHROOT_MOUNT_DIRS = ("/dev", "/lib", "/proc", "/sbin", "/usr")

# pkgsrc package name characters, plus ',' as the list separator
_PACKAGES_SPEC = re.compile(r"^[A-Za-z0-9\-_.+,]*$")

PackageName = Annotated[str, Field(pattern=r"^[A-Za-z0-9\-_.+]+$")]


class Manifest(BaseModel):
    """Image manifest data; anything beyond name and version is passed through."""

    model_config = ConfigDict(extra="allow", frozen=True)

    name: str = Field(min_length=1)
    version: str = Field(min_length=1)

    @property
    def save_name(self) -> str:
        return f"{self.name}-{self.version}"


class BuildConfig(BaseModel):
    """Validated inputs for a single image build."""

    model_config = ConfigDict(frozen=True)

    dir: DirectoryPath
    image: UUID
    manifest: Manifest
    packages: list[PackageName] = Field(default_factory=list)
    verbose: bool = False
    strict_sync: bool = False
    mount_root: Path = Path("/")
    save_dir: Path = Path("/tmp")


def parse_packages(text: str | None) -> list[str]:
    """Split a comma separated package specification into package names.

    Raises ValueError if the specification contains anything other than
    package name characters and commas.
    """
    if not text:
        return []
    if not _PACKAGES_SPEC.match(text):
        raise ValueError(f"invalid packages specification: '{text}'")
    return [pkg for pkg in text.split(",") if pkg]


def parse_manifest(text: str) -> Manifest:
    """Parse a JSON object into a Manifest."""
    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"failed to parse manifest: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("manifest must be a JSON object")
    try:
        return Manifest.model_validate(data)
    except ValidationError as exc:
        raise ValueError("manifest must include name and version") from exc
