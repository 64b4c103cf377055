"""HCL build files: parse .hcl files into BuildConfigs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import hcl2
import jinja2

from .config import BuildConfig, parse_packages

logger = logging.getLogger(__name__)


def load(
    file: Path,
    *,
    context: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Load and parse a single HCL file, rendering Jinja2 templates with context."""
    text = file.read_text()
    ctx = context if context is not None else {}
    env = jinja2.Environment(
        undefined=jinja2.StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )
    try:
        template = env.from_string(text)
        text = template.render(ctx)
    except jinja2.TemplateError as exc:
        raise ValueError(f"{file}: {exc}") from exc
    return hcl2.loads(text)


def _unwrap_block(value: Any) -> Any:
    """Accept `manifest { ... }` blocks as well as `manifest = { ... }` maps."""
    if isinstance(value, list) and len(value) == 1 and isinstance(value[0], dict):
        value = value[0]
    if isinstance(value, dict):
        return {k: v for k, v in value.items() if not k.startswith("__")}
    return value


def _decode_build(name: str, data: dict[str, Any], base: Path) -> BuildConfig:
    """Decode a single build block into a BuildConfig."""
    attrs = {k: _unwrap_block(v) for k, v in data.items() if not k.startswith("__")}

    packages = attrs.get("packages")
    if isinstance(packages, str):
        attrs["packages"] = parse_packages(packages)

    # relative source directories are taken from the build file's location
    if "dir" in attrs:
        attrs["dir"] = base / str(attrs["dir"])

    logger.debug("Decoding build '%s'", name)
    return BuildConfig(**attrs)


def load_builds(
    file: str | Path,
    *,
    context: dict[str, Any] | None = None,
) -> dict[str, BuildConfig]:
    """Return every `build "<name>" { ... }` block in file, keyed by name.

    Raises ValueError if a build is duplicated or does not validate.
    """
    file = Path(file)
    data = load(file, context=context)

    builds: dict[str, BuildConfig] = {}
    for block in data.get("build", []):
        for name, attrs in block.items():
            if name in builds:
                raise ValueError(f"{file}: duplicate build: '{name}'")
            try:
                builds[name] = _decode_build(name, attrs, file.parent)
            except ValueError as exc:
                raise ValueError(f"{file}: invalid build '{name}': {exc}") from exc
    return builds
